"""
Image uploads.

Outside production images are written to ``UPLOAD_DIR`` and served from
``/uploads/images``; in production they go to Cloudinary. Either way the rest
of the app only ever sees the returned URL string.
"""

import logging
import os
import re
import uuid
from typing import Optional

import cloudinary.uploader

import config
from errors import StoreUnavailable, ValidationFailed

logger = logging.getLogger(__name__)

MIME_TYPE_MAP = {
    "image/png": "png",
    "image/jpeg": "jpeg",
    "image/jpg": "jpg",
}


def image_extension(content_type: Optional[str], size: int, max_bytes: int) -> str:
    ext = MIME_TYPE_MAP.get((content_type or "").lower())
    if not ext:
        raise ValidationFailed("Invalid mime type!")
    if size == 0:
        raise ValidationFailed("No image provided")
    if size > max_bytes:
        raise ValidationFailed(f"Image is too large, the limit is {max_bytes} bytes.")
    return ext


class LocalMediaStorage:
    def __init__(self, upload_dir: str, url_prefix: str = config.MEDIA_URL_PREFIX, max_bytes: int = config.MAX_UPLOAD_BYTES):
        self.upload_dir = upload_dir
        self.url_prefix = url_prefix.rstrip("/")
        self.max_bytes = max_bytes
        os.makedirs(upload_dir, exist_ok=True)

    def save(self, data: bytes, content_type: Optional[str]) -> str:
        ext = image_extension(content_type, len(data), self.max_bytes)
        name = f"{uuid.uuid4()}.{ext}"
        path = self.path_for(name)
        try:
            with open(path, "wb") as f:
                f.write(data)
        except OSError:
            logger.exception("Writing upload to %s failed", path)
            raise StoreUnavailable("Image upload failed")
        return f"{self.url_prefix}/{name}"

    def path_for(self, name: str) -> str:
        return os.path.join(self.upload_dir, name)

    def delete(self, url: Optional[str]) -> None:
        if not url:
            return
        name = url[len(self.url_prefix) + 1:] if url.startswith(self.url_prefix + "/") else ""
        if not name or "/" in name or name in (".", ".."):
            logger.warning("Not removing %s, it is not under %s", url, self.url_prefix)
            return
        try:
            os.remove(self.path_for(name))
        except OSError as e:
            logger.warning("Could not remove image %s: %s", url, e)


class CloudinaryMediaStorage:
    def __init__(self, cloud_name: str, api_key: str, api_secret: str, folder: str, max_bytes: int = config.MAX_UPLOAD_BYTES):
        self.credentials = {"cloud_name": cloud_name, "api_key": api_key, "api_secret": api_secret}
        self.folder = folder
        self.max_bytes = max_bytes

    def save(self, data: bytes, content_type: Optional[str]) -> str:
        ext = image_extension(content_type, len(data), self.max_bytes)
        try:
            result = cloudinary.uploader.upload(
                data,
                folder=self.folder,
                public_id=f"image_{uuid.uuid4()}",
                format=ext,
                transformation=[{"width": 500, "height": 500, "crop": "limit"}],
                **self.credentials,
            )
        except Exception:
            logger.exception("Cloudinary upload failed")
            raise StoreUnavailable("Image upload failed")
        logger.info("Uploaded image to %s", result["secure_url"])
        return result["secure_url"]

    def delete(self, url: Optional[str]) -> None:
        public_id = self.public_id(url)
        if not public_id:
            return
        try:
            cloudinary.uploader.destroy(public_id, **self.credentials)
        except Exception as e:
            logger.warning("Could not remove image %s: %s", url, e)

    @staticmethod
    def public_id(url: Optional[str]) -> Optional[str]:
        # https://res.cloudinary.com/<cloud>/image/upload/v123/<folder>/<name>.<ext>
        match = re.search(r"/upload/(?:v\d+/)?(.+?)(?:\.[A-Za-z0-9]+)?$", url or "")
        return match.group(1) if match else None


def build_media_storage():
    if config.APP_ENV == "production":
        return CloudinaryMediaStorage(
            config.CLOUDINARY_CLOUD_NAME,
            config.CLOUDINARY_API_KEY,
            config.CLOUDINARY_API_SECRET,
            config.CLOUDINARY_FOLDER,
        )
    return LocalMediaStorage(config.UPLOAD_DIR)
