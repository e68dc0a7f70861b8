import os

os.environ.setdefault("BCRYPT_ROUNDS", "4")

import mongomock
import pytest
from fastapi.testclient import TestClient

import main
from auth import create_access_token, hash_password
from cart import CartEngine
from database import ensure_indexes
from media import LocalMediaStorage
from schemas import Product as ProductSchema, User as UserSchema
from stores import AccountStore, CatalogStore
from wishlist import WishlistStore


class RecordingMailer:
    def __init__(self):
        self.sent = []

    def send_safely(self, to_email, subject, html):
        self.sent.append((to_email, subject, html))


@pytest.fixture
def db():
    db = mongomock.MongoClient().db
    ensure_indexes(db)
    return db


@pytest.fixture
def accounts(db):
    return AccountStore(db)


@pytest.fixture
def catalog(db):
    return CatalogStore(db)


@pytest.fixture
def engine(db, accounts, catalog):
    return CartEngine(db, accounts, catalog)


@pytest.fixture
def wishlists(db, accounts):
    return WishlistStore(db, accounts)


@pytest.fixture
def media(tmp_path):
    return LocalMediaStorage(str(tmp_path / "images"))


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def client(db, media, mailer):
    main.app.dependency_overrides[main.get_db] = lambda: db
    main.app.dependency_overrides[main.get_media] = lambda: media
    main.app.dependency_overrides[main.get_mailer] = lambda: mailer
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


@pytest.fixture
def make_user(accounts):
    def _make(name="Ann", email="ann@marketplace.io", role="Shopper", password="secret123"):
        user = UserSchema(
            name=name,
            email=email,
            password_hash=hash_password(password),
            image="uploads/images/ann.png",
            role=role,
        )
        return accounts.create_user(user.model_dump())
    return _make


@pytest.fixture
def make_product(catalog, accounts, make_user):
    admin = {}

    def _make(title="Dune", price=10.0, stock="10", creator=None):
        if creator is None:
            if not admin:
                admin["user"] = make_user(name="Root", email="root@marketplace.io", role="Admin")
            creator = admin["user"]
        product = ProductSchema(
            title=title,
            author="Frank Herbert",
            description="A desert planet epic.",
            category="Books",
            stock=stock,
            price=price,
            image_url="uploads/images/dune.png",
            creator=str(creator["_id"]),
        )
        return catalog.create_product(product.model_dump(), accounts)
    return _make


@pytest.fixture
def auth_headers():
    def _headers(user):
        return {"Authorization": f"Bearer {create_access_token(str(user['_id']), user['email'])}"}
    return _headers
