import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Literal, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, File, Form, Header, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, EmailStr, Field, ValidationError, field_validator
from starlette.exceptions import HTTPException as StarletteHTTPException

import config
import database
from auth import bearer_token, create_access_token, decode_token, hash_password, verify_password
from cart import CartEngine, order_total
from database import serialize_doc
from errors import AppError, Forbidden, NotFound, StoreUnavailable, Unauthorized, ValidationFailed
from invoice import archive_invoice, invoice_filename, render_invoice
from mailer import SIGNUP_HTML, SIGNUP_SUBJECT, build_mailer
from media import build_media_storage
from schemas import Comment as CommentSchema, Product as ProductSchema, User as UserSchema
from stores import AccountStore, CatalogStore
from wishlist import WishlistStore

logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.db = database.connect(config.DATABASE_URL, config.DATABASE_NAME)
    app.state.media = build_media_storage()
    app.state.mailer = build_mailer()
    yield


app = FastAPI(title="Marketplace API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.mount(config.MEDIA_URL_PREFIX, StaticFiles(directory=config.UPLOAD_DIR, check_dir=False), name="images")


# Errors

@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    return JSONResponse(status_code=exc.status_code, content={"message": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=422, content={"message": ValidationFailed.default_message})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    message = "Could not find this route." if exc.status_code == 404 else exc.detail
    return JSONResponse(status_code=exc.status_code, content={"message": message})


def validated(model, **data):
    try:
        return model(**data)
    except ValidationError:
        raise ValidationFailed()


# Dependencies

def get_db(request: Request):
    db = getattr(request.app.state, "db", None)
    if db is None:
        raise StoreUnavailable("Database is not available, please try again later.")
    return db


def get_accounts(db=Depends(get_db)) -> AccountStore:
    return AccountStore(db)


def get_catalog(db=Depends(get_db)) -> CatalogStore:
    return CatalogStore(db)


def get_wishlists(db=Depends(get_db), accounts: AccountStore = Depends(get_accounts)) -> WishlistStore:
    return WishlistStore(db, accounts)


def get_engine(
    db=Depends(get_db),
    accounts: AccountStore = Depends(get_accounts),
    catalog: CatalogStore = Depends(get_catalog),
) -> CartEngine:
    return CartEngine(db, accounts, catalog, enforce_stock=config.CART_ENFORCE_STOCK)


def get_media(request: Request):
    return request.app.state.media


def get_mailer(request: Request):
    return request.app.state.mailer


def get_current_user(
    authorization: Optional[str] = Header(default=None),
    accounts: AccountStore = Depends(get_accounts),
):
    payload = decode_token(bearer_token(authorization))
    try:
        return accounts.find_user_by_id(payload["userId"])
    except NotFound:
        raise Unauthorized("User not found")


def require_admin(user: Dict[str, Any]) -> None:
    if user.get("role") != "Admin":
        raise Forbidden("User must be an admin to perform this action.")


def require_creator(product: Dict[str, Any], user: Dict[str, Any]) -> None:
    require_admin(user)
    if product.get("creator") != str(user["_id"]):
        raise Forbidden("You are not allowed to change this product.")


def public_user(user: Dict[str, Any]) -> Dict[str, Any]:
    user = serialize_doc(user)
    # Never send password hash
    user.pop("password_hash", None)
    return user


def cart_payload(user: Dict[str, Any]) -> List[Dict[str, Any]]:
    return [dict(item) for item in user.get("cart", {}).get("items", [])]


# Request models

class SignupInput(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)
    role: Literal["Shopper", "Admin"] = "Shopper"


class LoginInput(BaseModel):
    email: EmailStr
    password: str
    role: Optional[Literal["Shopper", "Admin"]] = None


class UserUpdate(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)


class CartRequest(BaseModel):
    product_id: str
    user_id: Optional[str] = None


class WishlistInput(BaseModel):
    title: str
    author: str
    description: str
    category: str
    stock: str
    price: float = Field(..., ge=0)
    image_url: str
    product_id: str
    user_id: Optional[str] = None

    @field_validator("stock", mode="before")
    @classmethod
    def stock_as_text(cls, v):
        return str(v) if isinstance(v, (int, float)) else v


class CommentInput(BaseModel):
    title: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    product_id: str
    user_image_url: Optional[str] = None


class ProductInput(BaseModel):
    title: str = Field(..., min_length=1)
    author: str = Field(..., min_length=1)
    description: str = Field(..., min_length=5)
    category: str = Field(..., min_length=1)
    stock: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)


# Routes

@app.get("/")
def read_root():
    return {"message": "Marketplace API"}


@app.get("/test")
def test_database(request: Request):
    db = getattr(request.app.state, "db", None)
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_name": None,
        "collections": [],
    }
    if db is None:
        return response
    try:
        response["database_name"] = db.name
        response["collections"] = db.list_collection_names()
        response["database"] = "✅ Available"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# Users

@app.post("/api/users/signup", status_code=201)
def signup(
    background_tasks: BackgroundTasks,
    name: str = Form(...),
    email: str = Form(...),
    password: str = Form(...),
    role: str = Form("Shopper"),
    image: Optional[UploadFile] = File(None),
    accounts: AccountStore = Depends(get_accounts),
    media=Depends(get_media),
    mailer=Depends(get_mailer),
):
    payload = validated(SignupInput, name=name, email=email, password=password, role=role)
    if accounts.email_taken(payload.email):
        raise ValidationFailed("User exists already, please login instead.")
    if image is None:
        raise ValidationFailed("No image provided")

    image_url = media.save(image.file.read(), image.content_type)
    user_model = UserSchema(
        name=payload.name,
        email=payload.email.lower(),
        password_hash=hash_password(payload.password),
        image=image_url,
        role=payload.role,
    )
    try:
        user = accounts.create_user(user_model.model_dump())
    except AppError:
        media.delete(image_url)
        raise

    user_id = str(user["_id"])
    token = create_access_token(user_id, user["email"])
    background_tasks.add_task(mailer.send_safely, user["email"], SIGNUP_SUBJECT, SIGNUP_HTML)
    logger.info("User %s signed up as %s", user_id, user["role"])
    return {"user_id": user_id, "email": user["email"], "token": token, "role": user["role"]}


@app.post("/api/users/login")
def login(payload: LoginInput, accounts: AccountStore = Depends(get_accounts)):
    try:
        user = accounts.find_user_by_email(payload.email)
    except NotFound:
        raise Unauthorized("User doesn't exist, could not log you in.")
    if payload.role is not None and user.get("role") != payload.role:
        raise Unauthorized("Invalid credentials, provide valid user role.")
    if not verify_password(payload.password, user.get("password_hash", "")):
        raise Unauthorized("Password is not valid, could not log you in.")
    user_id = str(user["_id"])
    token = create_access_token(user_id, user["email"])
    return {"user_id": user_id, "email": user["email"], "token": token, "role": user["role"]}


@app.get("/api/users/{uid}")
def get_user(uid: str, accounts: AccountStore = Depends(get_accounts)):
    return {"user": public_user(accounts.find_user_by_id(uid))}


@app.patch("/api/users/{uid}")
def update_user(uid: str, payload: UserUpdate, accounts: AccountStore = Depends(get_accounts)):
    user = accounts.find_user_by_id(uid)
    if accounts.email_taken(payload.email, exclude_id=uid):
        raise ValidationFailed("Email is already in use by another account.")
    user = accounts.update_profile(user["_id"], {
        "name": payload.name,
        "email": payload.email.lower(),
        "password_hash": hash_password(payload.password),
    })
    return {"user": public_user(user)}


@app.get("/api/users/list/{uid}")
def get_wishlist_by_user(uid: str, wishlists: WishlistStore = Depends(get_wishlists)):
    entries = wishlists.list_wishlist_by_user(uid)
    if not entries:
        raise NotFound("Could not find wishlist entries for the provided user id.")
    return {"products": [serialize_doc(e) for e in entries]}


@app.get("/api/users/product/cart/{uid}")
def get_cart(uid: str, engine: CartEngine = Depends(get_engine)):
    lines, total = engine.get_cart(uid)
    return {
        "products": [{**line, "product": serialize_doc(line["product"])} for line in lines],
        "total": total,
    }


@app.post("/api/users/cart/add")
def add_to_cart(payload: CartRequest, current_user=Depends(get_current_user), engine: CartEngine = Depends(get_engine)):
    user = engine.add_to_cart(payload.user_id or str(current_user["_id"]), payload.product_id)
    return {"cart": cart_payload(user)}


@app.patch("/api/users/cart/increase-quantity")
def increase_cart_quantity(payload: CartRequest, current_user=Depends(get_current_user), engine: CartEngine = Depends(get_engine)):
    user = engine.increase_quantity(payload.user_id or str(current_user["_id"]), payload.product_id)
    return {"cart": cart_payload(user)}


@app.patch("/api/users/cart/decrease-quantity")
def decrease_cart_quantity(payload: CartRequest, current_user=Depends(get_current_user), engine: CartEngine = Depends(get_engine)):
    user = engine.decrease_quantity(payload.user_id or str(current_user["_id"]), payload.product_id)
    return {"cart": cart_payload(user)}


@app.delete("/api/users/{uid}/cart/{pid}")
def delete_cart_item(uid: str, pid: str, current_user=Depends(get_current_user), engine: CartEngine = Depends(get_engine)):
    user = engine.remove_from_cart(uid, pid)
    return {"message": "product removed from cart!", "cart": cart_payload(user)}


@app.post("/api/users/wishlist", status_code=201)
def create_wishlist(payload: WishlistInput, current_user=Depends(get_current_user), wishlists: WishlistStore = Depends(get_wishlists)):
    snapshot = payload.model_dump(exclude={"product_id", "user_id"})
    entry = wishlists.add_wishlist_entry(payload.user_id or str(current_user["_id"]), {**snapshot, "item_id": payload.product_id})
    return {"product": serialize_doc(entry)}


@app.delete("/api/users/wishlist/{pid}")
def delete_wishlist(pid: str, current_user=Depends(get_current_user), wishlists: WishlistStore = Depends(get_wishlists)):
    wishlists.remove_wishlist_entry(pid)
    return {"message": "wishlist removed!"}


# Products

@app.get("/api/products")
def list_products(catalog: CatalogStore = Depends(get_catalog)):
    return {"products": [serialize_doc(p) for p in catalog.list_products()]}


@app.get("/api/products/{pid}")
def get_product(pid: str, catalog: CatalogStore = Depends(get_catalog)):
    return {"product": serialize_doc(catalog.find_product_by_id(pid))}


@app.get("/api/products/user/{uid}")
def get_products_by_user(uid: str, accounts: AccountStore = Depends(get_accounts), catalog: CatalogStore = Depends(get_catalog)):
    user = accounts.find_user_by_id(uid)
    products = catalog.list_products_by_ids(user.get("products", []))
    if not products:
        raise NotFound("Could not find products for the provided user id.")
    return {"products": [serialize_doc(p) for p in products]}


@app.get("/api/products/order/{uid}")
def get_orders(uid: str, engine: CartEngine = Depends(get_engine)):
    orders, total = engine.list_orders(uid)
    return {"orders": [serialize_doc(o) for o in orders], "total": total}


@app.post("/api/products/order/{uid}")
def post_order(uid: str, current_user=Depends(get_current_user), engine: CartEngine = Depends(get_engine)):
    order = engine.checkout(uid)
    return {"order_id": str(order["_id"]), "orders": order["products"], "total": order_total(order)}


@app.delete("/api/products/order/{oid}")
def cancel_order(oid: str, current_user=Depends(get_current_user), engine: CartEngine = Depends(get_engine)):
    engine.cancel_order(oid)
    return {"message": "order removed!"}


@app.get("/api/products/user/{uid}/orders/{order_id}")
def get_invoice(uid: str, order_id: str, engine: CartEngine = Depends(get_engine)):
    order = engine.get_order(order_id)
    if order["user"]["user_id"] != uid:
        raise Forbidden("This order belongs to another user.")
    data = render_invoice(order)
    archive_invoice(config.INVOICE_DIR, order_id, data)
    return Response(
        content=data,
        media_type="application/pdf",
        headers={"Content-Disposition": f'inline; filename="{invoice_filename(order_id)}"'},
    )


@app.post("/api/products/comments/add", status_code=201)
def post_comment(payload: CommentInput, catalog: CatalogStore = Depends(get_catalog)):
    comment = CommentSchema(**payload.model_dump()).model_dump()
    return {"comments": serialize_doc(catalog.append_comment(payload.product_id, comment))}


@app.get("/api/products/comments/{pid}")
def get_comments(pid: str, catalog: CatalogStore = Depends(get_catalog)):
    return {"comments": [serialize_doc(c) for c in catalog.list_comments(pid)]}


# Admin

@app.get("/api/admin/users")
def list_users(accounts: AccountStore = Depends(get_accounts)):
    return {"users": [public_user(u) for u in accounts.list_users()]}


@app.get("/api/admin")
def admin_list_products(catalog: CatalogStore = Depends(get_catalog)):
    return {"products": [serialize_doc(p) for p in catalog.list_products()]}


@app.get("/api/admin/{pid}")
def admin_get_product(pid: str, catalog: CatalogStore = Depends(get_catalog)):
    return {"product": serialize_doc(catalog.find_product_by_id(pid))}


@app.post("/api/admin/create-product", status_code=201)
def create_product(
    title: str = Form(...),
    author: str = Form(...),
    description: str = Form(...),
    category: str = Form(...),
    stock: str = Form(...),
    price: str = Form(...),
    image: Optional[UploadFile] = File(None),
    current_user=Depends(get_current_user),
    accounts: AccountStore = Depends(get_accounts),
    catalog: CatalogStore = Depends(get_catalog),
    media=Depends(get_media),
):
    require_admin(current_user)
    data = validated(ProductInput, title=title, author=author, description=description, category=category, stock=stock, price=price)
    if image is None:
        raise ValidationFailed("No image provided")

    image_url = media.save(image.file.read(), image.content_type)
    product = ProductSchema(**data.model_dump(), image_url=image_url, creator=str(current_user["_id"]))
    try:
        created = catalog.create_product(product.model_dump(), accounts)
    except AppError:
        media.delete(image_url)
        raise
    logger.info("Product %s created by %s", created["_id"], current_user["_id"])
    return {"product": serialize_doc(created)}


@app.patch("/api/admin/{pid}")
def update_product(
    pid: str,
    title: str = Form(...),
    author: str = Form(...),
    description: str = Form(...),
    category: str = Form(...),
    stock: str = Form(...),
    price: str = Form(...),
    image: Optional[UploadFile] = File(None),
    current_user=Depends(get_current_user),
    catalog: CatalogStore = Depends(get_catalog),
    media=Depends(get_media),
):
    product = catalog.find_product_by_id(pid)
    require_creator(product, current_user)
    data = validated(ProductInput, title=title, author=author, description=description, category=category, stock=stock, price=price)

    old_image = product.get("image_url")
    new_image = media.save(image.file.read(), image.content_type) if image is not None else None
    product.update(data.model_dump())
    if new_image:
        product["image_url"] = new_image
    try:
        catalog.save_product(product)
    except AppError:
        media.delete(new_image)
        raise
    if new_image:
        media.delete(old_image)
    return {"product": serialize_doc(product)}


@app.delete("/api/admin/{pid}")
def delete_product(
    pid: str,
    current_user=Depends(get_current_user),
    accounts: AccountStore = Depends(get_accounts),
    catalog: CatalogStore = Depends(get_catalog),
    media=Depends(get_media),
):
    product = catalog.find_product_by_id(pid)
    require_creator(product, current_user)
    catalog.delete_product(product, accounts)
    media.delete(product.get("image_url"))
    return {"message": "Deleted product."}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
