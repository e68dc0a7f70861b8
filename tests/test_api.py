import os

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64

PRODUCT_FORM = {
    "title": "Dune",
    "author": "Frank Herbert",
    "description": "A desert planet epic.",
    "category": "Books",
    "stock": "5",
    "price": "10",
}


def image():
    return {"image": ("cover.png", PNG, "image/png")}


def signup(client, email="ann@marketplace.io", role="Shopper", password="secret123"):
    return client.post(
        "/api/users/signup",
        data={"name": "Ann", "email": email, "password": password, "role": role},
        files=image(),
    )


# Users

def test_signup_issues_token_and_sends_mail(client, mailer, accounts, media):
    res = signup(client, email="Ann@Marketplace.io")

    assert res.status_code == 201
    body = res.json()
    assert body["email"] == "ann@marketplace.io"
    assert body["role"] == "Shopper"
    assert body["token"]
    user = accounts.find_user_by_id(body["user_id"])
    assert user["image"].startswith("/uploads/images/")
    assert os.path.exists(media.path_for(os.path.basename(user["image"])))
    assert user["password_hash"] != "secret123"
    assert mailer.sent[0][0] == "ann@marketplace.io"


def test_signup_duplicate_email(client):
    signup(client)
    res = signup(client)

    assert res.status_code == 422
    assert res.json() == {"message": "User exists already, please login instead."}


def test_signup_rejects_short_password(client):
    res = signup(client, password="123")

    assert res.status_code == 422
    assert res.json() == {"message": "Invalid inputs passed, please check your data."}


def test_signup_requires_image(client, db):
    res = client.post(
        "/api/users/signup",
        data={"name": "Ann", "email": "ann@marketplace.io", "password": "secret123"},
    )

    assert res.status_code == 422
    assert res.json() == {"message": "No image provided"}
    assert db["user"].count_documents({}) == 0


def test_login(client):
    signup(client)

    ok = client.post("/api/users/login", json={"email": "ann@marketplace.io", "password": "secret123", "role": "Shopper"})
    wrong_password = client.post("/api/users/login", json={"email": "ann@marketplace.io", "password": "nope-nope"})
    wrong_role = client.post("/api/users/login", json={"email": "ann@marketplace.io", "password": "secret123", "role": "Admin"})
    unknown = client.post("/api/users/login", json={"email": "bob@marketplace.io", "password": "secret123"})

    assert ok.status_code == 200
    assert ok.json()["token"]
    assert wrong_password.status_code == 401
    assert wrong_role.status_code == 401
    assert unknown.status_code == 401


def test_get_user_hides_password(client, make_user):
    user = make_user()
    res = client.get(f"/api/users/{user['_id']}")

    assert res.status_code == 200
    assert res.json()["user"]["email"] == "ann@marketplace.io"
    assert "password_hash" not in res.json()["user"]


def test_get_unknown_user(client):
    assert client.get("/api/users/5f0000000000000000000000").status_code == 404
    assert client.get("/api/users/garbage").status_code == 404


def test_update_user(client, make_user):
    user = make_user()
    make_user(name="Bob", email="bob@marketplace.io")

    taken = client.patch(f"/api/users/{user['_id']}", json={"name": "Ann", "email": "bob@marketplace.io", "password": "secret123"})
    ok = client.patch(f"/api/users/{user['_id']}", json={"name": "Annie", "email": "annie@marketplace.io", "password": "secret456"})

    assert taken.status_code == 422
    assert ok.status_code == 200
    assert ok.json()["user"]["name"] == "Annie"
    login = client.post("/api/users/login", json={"email": "annie@marketplace.io", "password": "secret456"})
    assert login.status_code == 200


# Cart and orders

def test_cart_requires_token(client, make_product):
    product = make_product()
    res = client.post("/api/users/cart/add", json={"product_id": str(product["_id"])})

    assert res.status_code == 401
    assert "message" in res.json()


def test_cart_rejects_bad_token(client, make_product):
    product = make_product()
    res = client.post(
        "/api/users/cart/add",
        json={"product_id": str(product["_id"])},
        headers={"Authorization": "Bearer not-a-jwt"},
    )

    assert res.status_code == 401


def test_cart_flow(client, make_user, make_product, auth_headers):
    user = make_user()
    headers = auth_headers(user)
    product = make_product(price=4)
    pid = str(product["_id"])

    client.post("/api/users/cart/add", json={"product_id": pid}, headers=headers)
    res = client.patch("/api/users/cart/increase-quantity", json={"product_id": pid}, headers=headers)
    assert res.json()["cart"] == [{"product_id": pid, "quantity": 2}]

    cart = client.get(f"/api/users/product/cart/{user['_id']}").json()
    assert cart["total"] == 8
    assert cart["products"][0]["product"]["id"] == pid

    client.patch("/api/users/cart/decrease-quantity", json={"product_id": pid}, headers=headers)
    res = client.patch("/api/users/cart/decrease-quantity", json={"product_id": pid}, headers=headers)
    assert res.json()["cart"] == []

    missing = client.patch("/api/users/cart/decrease-quantity", json={"product_id": pid}, headers=headers)
    assert missing.status_code == 404


def test_delete_cart_item(client, make_user, make_product, auth_headers):
    user = make_user()
    headers = auth_headers(user)
    pid = str(make_product()["_id"])
    client.post("/api/users/cart/add", json={"product_id": pid}, headers=headers)

    res = client.delete(f"/api/users/{user['_id']}/cart/{pid}", headers=headers)

    assert res.status_code == 200
    assert res.json() == {"message": "product removed from cart!", "cart": []}


def test_checkout_list_and_cancel(client, catalog, make_user, make_product, auth_headers):
    user = make_user()
    uid = str(user["_id"])
    headers = auth_headers(user)
    a = make_product(title="A", price=10)
    b = make_product(title="B", price=5)
    for pid in (a["_id"], a["_id"], b["_id"]):
        client.post("/api/users/cart/add", json={"product_id": str(pid)}, headers=headers)

    placed = client.post(f"/api/products/order/{uid}", headers=headers)
    assert placed.status_code == 200
    assert placed.json()["total"] == 25
    assert [line["quantity"] for line in placed.json()["orders"]] == [2, 1]
    assert client.get(f"/api/users/product/cart/{uid}").json()["products"] == []

    a["price"] = 100
    catalog.save_product(a)
    listed = client.get(f"/api/products/order/{uid}").json()
    assert listed["total"] == 25
    assert len(listed["orders"]) == 1

    order_id = placed.json()["order_id"]
    assert client.delete(f"/api/products/order/{order_id}", headers=headers).json() == {"message": "order removed!"}
    assert client.delete(f"/api/products/order/{order_id}", headers=headers).status_code == 404
    assert client.get(f"/api/products/order/{uid}").json() == {"orders": [], "total": 0}


def test_checkout_empty_cart(client, make_user, auth_headers):
    user = make_user()
    res = client.post(f"/api/products/order/{user['_id']}", headers=auth_headers(user))

    assert res.status_code == 422


def test_invoice(client, make_user, make_product, auth_headers):
    user = make_user()
    other = make_user(name="Bob", email="bob@marketplace.io")
    headers = auth_headers(user)
    client.post("/api/users/cart/add", json={"product_id": str(make_product()["_id"])}, headers=headers)
    order_id = client.post(f"/api/products/order/{user['_id']}", headers=headers).json()["order_id"]

    res = client.get(f"/api/products/user/{user['_id']}/orders/{order_id}")
    assert res.status_code == 200
    assert res.headers["content-type"] == "application/pdf"
    assert f'filename="invoice-{order_id}.pdf"' in res.headers["content-disposition"]
    assert res.content.startswith(b"%PDF")

    assert client.get(f"/api/products/user/{other['_id']}/orders/{order_id}").status_code == 403
    assert client.get(f"/api/products/user/{user['_id']}/orders/5f0000000000000000000000").status_code == 404


# Wishlist

def test_wishlist_flow(client, make_user, make_product, auth_headers):
    user = make_user()
    headers = auth_headers(user)
    product = make_product()
    assert client.get(f"/api/users/list/{user['_id']}").status_code == 404

    created = client.post(
        "/api/users/wishlist",
        json={
            "title": "Dune",
            "author": "Frank Herbert",
            "description": "A desert planet epic.",
            "category": "Books",
            "stock": 10,
            "price": 10,
            "image_url": "uploads/images/dune.png",
            "product_id": str(product["_id"]),
        },
        headers=headers,
    )
    assert created.status_code == 201
    entry = created.json()["product"]
    assert entry["stock"] == "10"
    assert entry["item_id"] == str(product["_id"])

    listed = client.get(f"/api/users/list/{user['_id']}").json()["products"]
    assert [e["id"] for e in listed] == [entry["id"]]

    removed = client.delete(f"/api/users/wishlist/{entry['id']}", headers=headers)
    assert removed.json() == {"message": "wishlist removed!"}
    assert client.get(f"/api/users/{user['_id']}").json()["user"]["wishlists"] == []


# Catalog and comments

def test_products_listing(client, make_product):
    product = make_product()

    assert [p["id"] for p in client.get("/api/products").json()["products"]] == [str(product["_id"])]
    assert client.get(f"/api/products/{product['_id']}").json()["product"]["title"] == "Dune"
    assert client.get("/api/products/5f0000000000000000000000").status_code == 404
    assert client.get(f"/api/admin/{product['_id']}").status_code == 200
    assert len(client.get("/api/admin").json()["products"]) == 1


def test_products_by_user(client, make_user, make_product):
    admin = make_user(name="Root", email="root@marketplace.io", role="Admin")
    product = make_product(creator=admin)
    shopper = make_user()

    res = client.get(f"/api/products/user/{admin['_id']}")
    assert [p["id"] for p in res.json()["products"]] == [str(product["_id"])]
    assert client.get(f"/api/products/user/{shopper['_id']}").status_code == 404


def test_comments(client, make_product):
    product = make_product()
    pid = str(product["_id"])
    for title in ("First", "Second"):
        res = client.post(
            "/api/products/comments/add",
            json={"title": title, "description": "Great read", "product_id": pid, "user_image_url": "u.png"},
        )
        assert res.status_code == 201

    comments = client.get(f"/api/products/comments/{pid}").json()["comments"]
    assert [c["title"] for c in comments] == ["First", "Second"]
    assert comments[0]["product_id"] == pid


def test_comment_validation_and_unknown_product(client):
    empty = client.post("/api/products/comments/add", json={"title": "", "description": "x", "product_id": "x"})
    unknown = client.post(
        "/api/products/comments/add",
        json={"title": "Hi", "description": "x", "product_id": "5f0000000000000000000000"},
    )

    assert empty.status_code == 422
    assert unknown.status_code == 404


# Admin

def test_shopper_cannot_create_product(client, db, make_user, auth_headers):
    shopper = make_user()
    res = client.post("/api/admin/create-product", data=PRODUCT_FORM, files=image(), headers=auth_headers(shopper))

    assert res.status_code == 403
    assert db["product"].count_documents({}) == 0


def test_admin_product_lifecycle(client, accounts, media, make_user, auth_headers):
    admin = make_user(name="Root", email="root@marketplace.io", role="Admin")
    rival = make_user(name="Rival", email="rival@marketplace.io", role="Admin")
    headers = auth_headers(admin)

    created = client.post("/api/admin/create-product", data=PRODUCT_FORM, files=image(), headers=headers)
    assert created.status_code == 201
    product = created.json()["product"]
    assert product["creator"] == str(admin["_id"])
    assert product["price"] == 10
    assert accounts.find_user_by_id(str(admin["_id"]))["products"] == [product["id"]]

    update = {**PRODUCT_FORM, "price": "12.5"}
    assert client.patch(f"/api/admin/{product['id']}", data=update, headers=auth_headers(rival)).status_code == 403
    updated = client.patch(f"/api/admin/{product['id']}", data=update, headers=headers)
    assert updated.json()["product"]["price"] == 12.5
    assert updated.json()["product"]["image_url"] == product["image_url"]

    assert client.delete(f"/api/admin/{product['id']}", headers=auth_headers(rival)).status_code == 403
    deleted = client.delete(f"/api/admin/{product['id']}", headers=headers)
    assert deleted.json() == {"message": "Deleted product."}
    assert accounts.find_user_by_id(str(admin["_id"]))["products"] == []
    assert not os.path.exists(media.path_for(os.path.basename(product["image_url"])))
    assert client.get(f"/api/products/{product['id']}").status_code == 404


def test_admin_create_product_validation(client, make_user, auth_headers):
    admin = make_user(name="Root", email="root@marketplace.io", role="Admin")
    res = client.post(
        "/api/admin/create-product",
        data={**PRODUCT_FORM, "description": "bad"},
        files=image(),
        headers=auth_headers(admin),
    )

    assert res.status_code == 422


def test_admin_users_listing(client, make_user):
    make_user()
    users = client.get("/api/admin/users").json()["users"]

    assert [u["email"] for u in users] == ["ann@marketplace.io"]
    assert "password_hash" not in users[0]


def test_unknown_route(client):
    res = client.get("/api/nowhere")

    assert res.status_code == 404
    assert res.json() == {"message": "Could not find this route."}
