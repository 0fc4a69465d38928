import re
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional

from database import Database, canonical_id, serialize_doc, to_object_id, utcnow
from errors import Conflict, NotFound, ValidationError
from reviews import NEWEST_FIRST, attach_reviewers
from schemas import Category, Product, Restaurant

OLDEST_FIRST = [("created_at", 1), ("_id", 1)]
SEARCH_LIMIT_MAX = 20


def normalize_images(primary: Optional[str], images: Optional[Iterable[str]] = None) -> List[str]:
    """Ordered, de-duplicated image list with the primary image first."""
    ordered = []
    for url in [primary, *(images or [])]:
        url = (url or "").strip()
        if url and url not in ordered:
            ordered.append(url)
    return ordered


def compute_discount(price: Optional[float], original_price: Optional[float]) -> Optional[int]:
    if not price or not original_price or original_price <= price:
        return None
    return round((original_price - price) / original_price * 100)


# ===================== Categories =====================

def list_categories(db: Database) -> List[dict]:
    return db.get_documents("category", sort=OLDEST_FIRST)


def get_category(db: Database, category_id: str) -> dict:
    category = db.get_document_by_id("category", category_id)
    if not category:
        raise NotFound("Category not found")
    return category


def create_category(db: Database, data: Dict[str, Any]) -> dict:
    category = Category(name=data["name"], image=data.get("image") or None)
    return db.get_document_by_id("category", db.create_document("category", category))


def update_category(db: Database, category_id: str, data: Dict[str, Any]) -> dict:
    existing = get_category(db, category_id)
    update = {
        "name": data["name"],
        "image": data.get("image") or existing.get("image"),
    }
    db.update_document("category", existing["_id"], update)
    return get_category(db, existing["_id"])


def delete_category(db: Database, category_id: str) -> None:
    existing = get_category(db, category_id)
    if db["product"].count_documents({"category_id": existing["_id"]}) > 0:
        raise Conflict("Cannot delete category with existing products. Remove or reassign products first.")
    db.delete_document("category", existing["_id"])


# ===================== Products =====================

def _embed(db: Database, products: List[dict]) -> List[dict]:
    categories = db.get_documents_by_ids("category", [p.get("category_id") for p in products])
    restaurants = db.get_documents_by_ids("restaurant", [p.get("restaurant_id") for p in products])

    product_ids = [p["_id"] for p in products]
    reviews = [serialize_doc(r) for r in
               db["review"].find({"product_id": {"$in": product_ids}}).sort(NEWEST_FIRST)]
    attach_reviewers(db, reviews)
    by_product = defaultdict(list)
    for review in reviews:
        by_product[review["product_id"]].append(review)

    for product in products:
        product["images"] = product.get("images") or []
        product["category"] = categories.get(product.get("category_id"))
        product["restaurant"] = restaurants.get(product.get("restaurant_id"))
        product["reviews"] = by_product[product["_id"]]
    return products


def list_products(db: Database, category_id: Optional[str] = None,
                  restaurant_id: Optional[str] = None) -> List[dict]:
    filter_q = {}
    if category_id is not None:
        filter_q["category_id"] = canonical_id(category_id)
    if restaurant_id is not None:
        filter_q["restaurant_id"] = canonical_id(restaurant_id)
    return _embed(db, db.get_documents("product", filter_q, sort=OLDEST_FIRST))


def get_product(db: Database, product_id: str) -> dict:
    product = db.get_document_by_id("product", product_id)
    if not product:
        raise NotFound("Product not found")
    return _embed(db, [product])[0]


def _check_references(db: Database, data: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of data with category and restaurant ids in stored form."""
    data = dict(data)
    if data.get("category_id") is not None:
        category = db.get_document_by_id("category", data["category_id"])
        if not category:
            raise NotFound("Category not found")
        data["category_id"] = category["_id"]
    if data.get("restaurant_id"):
        restaurant = db.get_document_by_id("restaurant", data["restaurant_id"])
        if not restaurant:
            raise NotFound("Restaurant not found")
        data["restaurant_id"] = restaurant["_id"]
    return data


def create_product(db: Database, data: Dict[str, Any]) -> dict:
    data = _check_references(db, data)
    images = normalize_images(data.get("image"), data.get("images"))
    discount = compute_discount(data["price"], data.get("original_price"))
    product = Product(
        name=data["name"],
        description=data.get("description") or None,
        price=data["price"],
        original_price=data.get("original_price"),
        discount_percent=discount if discount is not None else data.get("discount_percent"),
        image=images[0] if images else None,
        images=images,
        is_featured=data.get("is_featured", False),
        category_id=data["category_id"],
        restaurant_id=data.get("restaurant_id") or None,
    )
    return get_product(db, db.create_document("product", product))


def update_product(db: Database, product_id: str, data: Dict[str, Any]) -> dict:
    existing = db.get_document_by_id("product", product_id)
    if not existing:
        raise NotFound("Product not found")
    data = _check_references(db, data)

    update = {k: v for k, v in data.items()
              if k in ("description", "original_price", "discount_percent", "restaurant_id")}
    # required fields can be changed but never cleared
    update.update({k: v for k, v in data.items()
                   if k in ("name", "price", "is_featured", "category_id") and v is not None})

    if "image" in data or "images" in data:
        primary = data["image"] if "image" in data else existing.get("image")
        rest = data["images"] if data.get("images") is not None else existing.get("images")
        images = normalize_images(primary, rest)
        update["image"] = images[0] if images else None
        update["images"] = images

    price = update.get("price", existing.get("price"))
    original_price = update.get("original_price", existing.get("original_price"))
    discount = compute_discount(price, original_price)
    if discount is not None:
        update["discount_percent"] = discount

    db.update_document("product", existing["_id"], update)
    return get_product(db, existing["_id"])


def delete_product(db: Database, product_id: str) -> None:
    existing = db.get_document_by_id("product", product_id)
    if not existing:
        raise NotFound("Product not found")
    if db["order"].count_documents({"items.product_id": existing["_id"]}) > 0:
        raise ValidationError("Cannot delete product because it is referenced by other records (e.g., order items).")
    with db.transaction() as session:
        db["review"].delete_many({"product_id": existing["_id"]}, session=session)
        db["product"].delete_one({"_id": to_object_id(existing["_id"])}, session=session)


# ===================== Restaurants =====================

def list_restaurants(db: Database) -> List[dict]:
    return db.get_documents("restaurant", sort=[("created_at", -1), ("_id", -1)])


def get_restaurant(db: Database, restaurant_id: str) -> dict:
    restaurant = db.get_document_by_id("restaurant", restaurant_id)
    if not restaurant:
        raise NotFound("Restaurant not found")
    return restaurant


def create_restaurant(db: Database, data: Dict[str, Any]) -> dict:
    restaurant = Restaurant(**{**data, "image_url": data.get("image_url") or None})
    return get_restaurant(db, db.create_document("restaurant", restaurant))


def update_restaurant(db: Database, restaurant_id: str, data: Dict[str, Any]) -> dict:
    existing = get_restaurant(db, restaurant_id)
    update = dict(data)
    if "image_url" in update:
        update["image_url"] = update["image_url"] or None
    db.update_document("restaurant", existing["_id"], update)
    return get_restaurant(db, existing["_id"])


def delete_restaurant(db: Database, restaurant_id: str) -> None:
    existing = get_restaurant(db, restaurant_id)
    with db.transaction() as session:
        db["product"].update_many(
            {"restaurant_id": existing["_id"]},
            {"$set": {"restaurant_id": None, "updated_at": utcnow()}},
            session=session,
        )
        db["restaurant"].delete_one({"_id": to_object_id(existing["_id"])}, session=session)


# ===================== Search =====================

def search_recommendations(db: Database, q: Optional[str], limit: int = 10) -> Dict[str, List[dict]]:
    if not q or not q.strip():
        return {"restaurants": [], "products": []}
    limit = max(1, min(limit or 10, SEARCH_LIMIT_MAX))
    pattern = {"$regex": re.escape(q.strip()), "$options": "i"}

    restaurants = db.get_documents(
        "restaurant",
        {"$or": [{"name": pattern}, {"type": pattern}, {"location": pattern}]},
        limit=limit,
        sort=[("rating", -1)],
    )
    products = db.get_documents(
        "product",
        {"$or": [{"name": pattern}, {"description": pattern}]},
        limit=limit,
        sort=[("is_featured", -1), ("rate", -1)],
    )
    categories = db.get_documents_by_ids("category", [p.get("category_id") for p in products])
    by_restaurant = db.get_documents_by_ids("restaurant", [p.get("restaurant_id") for p in products])
    for product in products:
        product["images"] = product.get("images") or []
        category = categories.get(product.get("category_id"))
        restaurant = by_restaurant.get(product.get("restaurant_id"))
        product["category"] = {"_id": category["_id"], "name": category["name"]} if category else None
        product["restaurant"] = (
            {"_id": restaurant["_id"], "name": restaurant["name"], "image_url": restaurant.get("image_url")}
            if restaurant else None
        )
    return {"restaurants": restaurants, "products": products}
