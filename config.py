import os

from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# Database
DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "marketplace")

# JWT Config
SECRET_KEY = os.getenv("JWT_SECRET", "dev-secret-change")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))

# Uploads: local disk outside production, Cloudinary in production
APP_ENV = os.getenv("APP_ENV", "development")
UPLOAD_DIR = os.getenv("UPLOAD_DIR", os.path.join("uploads", "images"))
# URL path the local upload dir is served under
MEDIA_URL_PREFIX = "/uploads/images"
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", "500000"))
CLOUDINARY_CLOUD_NAME = os.getenv("CLOUDINARY_CLOUD_NAME")
CLOUDINARY_API_KEY = os.getenv("CLOUDINARY_API_KEY")
CLOUDINARY_API_SECRET = os.getenv("CLOUDINARY_API_SECRET")
CLOUDINARY_FOLDER = os.getenv("CLOUDINARY_FOLDER", "marketplace/images")

# Mail
RESEND_API_KEY = (os.getenv("RESEND_API_KEY") or "").strip()
MAIL_FROM = os.getenv("MAIL_FROM", "Marketplace <no-reply@marketplace.local>")

# Cart policy: off means unlimited virtual stock
CART_ENFORCE_STOCK = _flag("CART_ENFORCE_STOCK")

# Where a copy of every rendered invoice is kept, unset to disable
INVOICE_DIR = os.getenv("INVOICE_DIR")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
PORT = int(os.getenv("PORT", 8000))
