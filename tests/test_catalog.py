from bson import ObjectId

PRODUCT = {
    "name": "Cold Pressed Groundnut Oil",
    "category": "organic-oils",
    "description": "Wood pressed groundnut oil from Tamil Nadu farms",
    "price": 320,
    "unit": "litre",
    "availableQuantities": ["500ml", "1L"],
}


def test_list_filters(client, make_product):
    make_product("Farm Fresh Milk", price=55, category="milk")
    make_product("Buffalo Milk", price=70, category="milk", in_stock=False)
    make_product("Country Chicken", price=450, category="meat",
                 description="Free range chicken, cleaned and cut")

    assert len(client.get("/products").json()) == 3
    assert {p["name"] for p in client.get("/products?category=milk").json()} == {"Farm Fresh Milk", "Buffalo Milk"}
    assert [p["name"] for p in client.get("/products?category=milk&inStock=true").json()] == ["Farm Fresh Milk"]
    assert [p["name"] for p in client.get("/products?inStock=false").json()] == ["Buffalo Milk"]
    assert [p["name"] for p in client.get("/products?search=FREE range").json()] == ["Country Chicken"]


def test_list_newest_first(client, make_product):
    make_product("First")
    make_product("Second")
    assert [p["name"] for p in client.get("/products").json()] == ["Second", "First"]


def test_search_treats_input_literally(client, make_product):
    make_product("Turmeric (Lakadong)", category="organic-powders")
    res = client.get("/products?search=(Lakadong")
    assert res.status_code == 200
    assert [p["name"] for p in res.json()] == ["Turmeric (Lakadong)"]
    assert client.get("/products?search=.*").json() == []


def test_unknown_category_is_rejected(client):
    assert client.get("/products?category=toys").status_code == 400


def test_get_product(client, make_product):
    pid = make_product("Farm Fresh Milk")
    res = client.get(f"/products/{pid}")
    assert res.status_code == 200
    assert res.json()["id"] == pid
    assert res.json()["inStock"] is True
    assert client.get(f"/products/{ObjectId()}").status_code == 404
    assert client.get("/products/not-an-id").status_code == 404
    assert "isFavorite" not in res.json()


def test_product_detail_marks_favorites_for_signed_in_users(client, user_auth, make_product):
    headers, _ = user_auth
    pid = make_product("Farm Fresh Milk")
    assert client.get(f"/products/{pid}", headers=headers).json()["isFavorite"] is False
    client.post(f"/users/favorites/{pid}", headers=headers)
    assert client.get(f"/products/{pid}", headers=headers).json()["isFavorite"] is True

    # a bad token degrades to an anonymous view
    res = client.get(f"/products/{pid}", headers={"Authorization": "Bearer garbage"})
    assert res.status_code == 200
    assert "isFavorite" not in res.json()


def test_admin_creates_product(client, admin_auth):
    headers, _ = admin_auth
    res = client.post("/products", json=PRODUCT, headers=headers)
    assert res.status_code == 201
    body = res.json()
    assert body["name"] == PRODUCT["name"]
    assert body["inStock"] is True
    assert body["availableQuantities"] == ["500ml", "1L"]


def test_product_writes_require_admin(client, user_auth, make_product):
    headers, _ = user_auth
    pid = make_product()
    assert client.post("/products", json=PRODUCT).status_code == 401
    assert client.post("/products", json=PRODUCT, headers=headers).status_code == 403
    assert client.put(f"/products/{pid}", json={"price": 1}, headers=headers).status_code == 403
    assert client.delete(f"/products/{pid}", headers=headers).status_code == 403


def test_product_validation(client, admin_auth):
    headers, _ = admin_auth
    bad = dict(PRODUCT, description="short", price=-1, availableQuantities=[], category="toys")
    res = client.post("/products", json=bad, headers=headers)
    assert res.status_code == 400
    fields = {e["field"] for e in res.json()["errors"]}
    assert {"description", "price", "availableQuantities", "category"} <= fields


def test_admin_updates_and_deletes_product(client, admin_auth, make_product, db):
    headers, _ = admin_auth
    pid = make_product("Farm Fresh Milk", price=55)
    res = client.put(f"/products/{pid}", json={"price": 58, "inStock": False}, headers=headers)
    assert res.status_code == 200
    assert res.json()["price"] == 58
    assert res.json()["inStock"] is False
    assert res.json()["name"] == "Farm Fresh Milk"

    res = client.delete(f"/products/{pid}", headers=headers)
    assert res.json() == {"message": "Product deleted successfully"}
    assert db["product"].count_documents({}) == 0
    assert client.delete(f"/products/{pid}", headers=headers).status_code == 404
