import pytest

import catalog
import orders
import reviews
from conftest import bearer
from errors import Conflict, NotFound, ValidationError


def test_normalize_images_puts_primary_first():
    assert catalog.normalize_images("a.png", ["b.png", "a.png", " ", "c.png", "b.png"]) == ["a.png", "b.png", "c.png"]
    assert catalog.normalize_images(None, ["b.png"]) == ["b.png"]
    assert catalog.normalize_images("", None) == []


@pytest.mark.parametrize("price,original,expected", [
    (75, 100, 25),
    (9.99, 12.5, 20),
    (10, 10, None),
    (12, 10, None),
    (10, None, None),
])
def test_compute_discount(price, original, expected):
    assert catalog.compute_discount(price, original) == expected


# ===================== Categories =====================

def test_category_crud(client, admin_user):
    headers = bearer("admin-token")
    resp = client.post("/categories", json={"name": "Pizza", "image": "https://img/pizza.png"}, headers=headers)
    assert resp.status_code == 201
    category_id = resp.json()["data"]["_id"]

    resp = client.put(f"/categories/{category_id}", json={"name": "Pizzas"}, headers=headers)
    updated = resp.json()["data"]
    assert updated["name"] == "Pizzas"
    assert updated["image"] == "https://img/pizza.png"

    assert [c["name"] for c in client.get("/categories").json()["data"]] == ["Pizzas"]
    assert client.delete(f"/categories/{category_id}", headers=headers).status_code == 200
    assert client.get(f"/categories/{category_id}").status_code == 404


def test_category_writes_need_admin(client, customer):
    assert client.post("/categories", json={"name": "Pizza"}).status_code == 401
    assert client.post("/categories", json={"name": "Pizza"}, headers=bearer("customer-token")).status_code == 403


def test_category_in_use_cannot_be_deleted(db, category, product):
    with pytest.raises(Conflict):
        catalog.delete_category(db, category["_id"])
    assert catalog.get_category(db, category["_id"])["name"] == "Burgers"


def test_upper_case_reference_is_stored_canonically(client, db, admin_user, category, make_restaurant):
    restaurant = make_restaurant()
    resp = client.post("/products", headers=bearer("admin-token"), json={
        "name": "Falafel",
        "price": 2,
        "category_id": category["_id"].upper(),
        "restaurant_id": restaurant["_id"].upper(),
    })
    assert resp.status_code == 201
    product = resp.json()["data"]
    assert product["category_id"] == category["_id"]
    assert product["category"]["name"] == "Burgers"
    assert product["restaurant"]["name"] == "Koshary Corner"

    resp = client.delete(f"/categories/{category['_id']}", headers=bearer("admin-token"))
    assert resp.status_code == 409
    assert catalog.get_category(db, category["_id"])["name"] == "Burgers"

    listed = client.get("/products", params={"category_id": category["_id"].upper()}).json()
    assert [p["name"] for p in listed["data"]] == ["Falafel"]


def test_update_canonicalises_category(db, make_product):
    product = make_product()
    pizza = catalog.create_category(db, {"name": "Pizza"})
    updated = catalog.update_product(db, product["_id"], {"category_id": pizza["_id"].upper()})
    assert updated["category_id"] == pizza["_id"]
    with pytest.raises(Conflict):
        catalog.delete_category(db, pizza["_id"])


# ===================== Products =====================

def test_create_product(client, admin_user, category):
    resp = client.post("/products", headers=bearer("admin-token"), json={
        "name": "Shawarma",
        "price": 75,
        "original_price": 100,
        "image": "https://img/main.png",
        "images": ["https://img/side.png", "https://img/main.png"],
        "category_id": category["_id"],
        "rate": 5,
    })
    assert resp.status_code == 201
    product = resp.json()["data"]
    assert product["images"] == ["https://img/main.png", "https://img/side.png"]
    assert product["image"] == "https://img/main.png"
    assert product["discount_percent"] == 25
    assert product["rate"] is None
    assert product["category"]["name"] == "Burgers"
    assert product["reviews"] == []


def test_create_product_unknown_category(db):
    with pytest.raises(NotFound):
        catalog.create_product(db, {"name": "Ghost", "price": 1, "category_id": "64b000000000000000000009"})


def test_update_product_image_stays_first(db, make_product):
    product = make_product(image="https://img/old.png")
    updated = catalog.update_product(db, product["_id"], {"image": "https://img/new.png", "price": 2.5})
    assert updated["images"] == ["https://img/new.png", "https://img/old.png"]
    assert updated["price"] == 2.5


def test_update_product_ignores_nulls_for_required_fields(db, make_product):
    product = make_product(name="Fries", price=3.5)
    updated = catalog.update_product(db, product["_id"], {"name": None, "price": None, "description": "Crispy"})
    assert updated["name"] == "Fries"
    assert updated["price"] == 3.5
    assert updated["description"] == "Crispy"


def test_product_list_filters_and_embeds(client, db, customer, make_product, make_restaurant):
    restaurant = make_restaurant()
    dish = make_product(name="Koshary", restaurant_id=restaurant["_id"])
    make_product(name="Fries")
    reviews.submit_review(db, customer, dish["_id"], 5, "Best in town")

    resp = client.get("/products", params={"restaurant_id": restaurant["_id"]})
    body = resp.json()
    assert body["count"] == 1
    [listed] = body["data"]
    assert listed["restaurant"]["name"] == "Koshary Corner"
    assert listed["reviews"][0]["user"]["full_name"] == "Carla Customer"
    assert listed["rate"] == 5

    assert client.get("/products").json()["count"] == 2


def test_ordered_product_cannot_be_deleted(db, customer, product):
    orders.create_order(db, customer, [{"product_id": product["_id"], "quantity": 1}])
    with pytest.raises(ValidationError):
        catalog.delete_product(db, product["_id"])


def test_delete_product_removes_its_reviews(db, customer, product):
    reviews.submit_review(db, customer, product["_id"], 3)
    catalog.delete_product(db, product["_id"])
    assert db["review"].count_documents({}) == 0
    with pytest.raises(NotFound):
        catalog.get_product(db, product["_id"])


# ===================== Restaurants =====================

def test_restaurant_crud(client, admin_user):
    headers = bearer("admin-token")
    resp = client.post("/restaurants", headers=headers, json={
        "name": "Felfela", "type": "Egyptian", "location": "Downtown", "latitude": 30.05, "longitude": 31.24,
    })
    assert resp.status_code == 201
    restaurant = resp.json()["data"]
    assert restaurant["rating"] == 0

    resp = client.patch(f"/restaurants/{restaurant['_id']}", json={"rating": 4.5}, headers=headers)
    assert resp.json()["data"]["rating"] == 4.5

    assert client.patch(f"/restaurants/{restaurant['_id']}", json={}, headers=headers).status_code == 400
    assert client.post("/restaurants", headers=headers, json={
        "name": "Nowhere", "type": "x", "location": "y", "latitude": 91,
    }).status_code == 400


def test_deleting_restaurant_detaches_products(db, make_product, make_restaurant):
    restaurant = make_restaurant()
    dish = make_product(restaurant_id=restaurant["_id"])
    catalog.delete_restaurant(db, restaurant["_id"])
    assert catalog.get_product(db, dish["_id"])["restaurant_id"] is None


# ===================== Search & stats =====================

def test_search_recommendations(client, make_product, make_restaurant):
    make_restaurant(name="Burger Barn", rating=4)
    make_restaurant(name="Sushi Place", rating=5)
    make_product(name="Double Burger", price=7)
    make_product(name="Salad", price=4, description="no burger here")
    make_product(name="Soup", price=3)

    data = client.get("/search/recommendations", params={"q": "  BURGER "}).json()["data"]
    assert [r["name"] for r in data["restaurants"]] == ["Burger Barn"]
    assert sorted(p["name"] for p in data["products"]) == ["Double Burger", "Salad"]
    assert data["products"][0]["category"]["name"] == "Burgers"

    assert client.get("/search/recommendations", params={"q": " "}).json()["data"] == {
        "restaurants": [], "products": []}


def test_search_escapes_regex(db, make_product):
    make_product(name="Fries (large)")
    found = catalog.search_recommendations(db, "(large")
    assert [p["name"] for p in found["products"]] == ["Fries (large)"]


def test_dashboard_stats(client, db, customer, admin_user, product):
    first = orders.create_order(db, customer, [{"product_id": product["_id"], "quantity": 2}])
    orders.create_order(db, customer, [{"product_id": product["_id"], "quantity": 1}])
    orders.update_order_status(db, admin_user, first["_id"], "COMPLETED")

    assert client.get("/admin/stats", headers=bearer("customer-token")).status_code == 403
    stats = client.get("/admin/stats", headers=bearer("admin-token")).json()["data"]
    assert stats["users"]["total"] == 2
    assert stats["orders"] == {"total": 2, "pending": 1, "completed": 1, "cancelled": 0}
    assert stats["products"]["total"] == 1
    assert stats["revenue"]["total"] == pytest.approx(19.98)
