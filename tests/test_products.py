from bson import ObjectId

from database import PRODUCTS


def test_list_and_get_are_public(client, make_product):
    product_id = make_product(name="Lamp", price=25.0, stock=3)

    listed = client.get("/products").json()
    assert [p["name"] for p in listed] == ["Lamp"]
    assert listed[0]["id"] == str(product_id)

    response = client.get(f"/products/{product_id}")
    assert response.status_code == 200
    assert response.json()["stock"] == 3


def test_get_product_bad_and_missing_ids(client):
    assert client.get("/products/not-an-id").status_code == 400
    assert client.get(f"/products/{ObjectId()}").status_code == 404


def test_admin_creates_product(client, db, admin_headers):
    response = client.post("/products", json={"name": "Desk", "price": 120.5, "stock": 4}, headers=admin_headers)
    assert response.status_code == 201
    body = response.json()
    assert body["name"] == "Desk"
    assert db[PRODUCTS].count_documents({"_id": ObjectId(body["id"])}) == 1


def test_product_validation(client, admin_headers):
    assert client.post("/products", json={"name": "Bad", "price": -1, "stock": 1}, headers=admin_headers).status_code == 400
    assert client.post("/products", json={"name": "Bad", "price": 1, "stock": -1}, headers=admin_headers).status_code == 400


def test_non_admin_cannot_manage_products(client, db, auth_headers, make_product):
    product_id = make_product()
    assert client.post("/products", json={"name": "X", "price": 1}, headers=auth_headers).status_code == 403
    assert client.put(f"/products/{product_id}", json={"price": 1}, headers=auth_headers).status_code == 403
    assert client.delete(f"/products/{product_id}", headers=auth_headers).status_code == 403
    assert client.post("/products", json={"name": "X", "price": 1}).status_code == 401
    assert db[PRODUCTS].count_documents({}) == 1


def test_admin_updates_product(client, db, admin_headers, make_product):
    product_id = make_product(price=5.0, stock=1)
    response = client.put(f"/products/{product_id}", json={"stock": 50}, headers=admin_headers)
    assert response.status_code == 200
    product = db[PRODUCTS].find_one({"_id": product_id})
    assert product["stock"] == 50
    assert product["price"] == 5.0

    assert client.put(f"/products/{product_id}", json={}, headers=admin_headers).status_code == 400
    assert client.put(f"/products/{ObjectId()}", json={"stock": 1}, headers=admin_headers).status_code == 404


def test_admin_deletes_product(client, db, admin_headers, make_product):
    product_id = make_product()
    assert client.delete(f"/products/{product_id}", headers=admin_headers).status_code == 200
    assert db[PRODUCTS].count_documents({}) == 0
    assert client.delete(f"/products/{product_id}", headers=admin_headers).status_code == 404


def test_null_update_leaves_product_orderable(client, db, admin_headers, auth_headers, test_user, make_product):
    product_id = make_product(price=5.0, stock=3)
    for body in ({"stock": None}, {"price": None}, {"stock": None, "price": None}, {"name": None}):
        assert client.put(f"/products/{product_id}", json=body, headers=admin_headers).status_code == 400
    product = db[PRODUCTS].find_one({"_id": product_id})
    assert product["stock"] == 3
    assert product["price"] == 5.0

    response = client.put(f"/products/{product_id}", json={"description": None}, headers=admin_headers)
    assert response.status_code == 200

    client.post("/cart", json={"product_id": str(product_id), "quantity": 1}, headers=auth_headers)
    assert client.post("/order", json={"payment_method": "card"}, headers=auth_headers).status_code == 201
