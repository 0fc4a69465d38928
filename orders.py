"""
Order lifecycle.

Orders are created PENDING from cart lines priced server-side, and move once
to COMPLETED or CANCELLED; both are terminal. Admins may set either target
on any order, customers may only cancel their own.
"""

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from pymongo import ReturnDocument

from database import Database, canonical_id, to_object_id, utcnow
from errors import (
    Forbidden,
    InvalidTransition,
    NotFound,
    ProductsNotFound,
    ValidationError,
)
from schemas import ORDER_STATUSES, TERMINAL_STATUSES, Order, OrderItem
from users import CONTACT_FIELDS, project

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
NEWEST_FIRST = [("created_at", -1), ("_id", -1)]
PRODUCT_FIELDS = ("_id", "name", "image", "price")
RATED_PRODUCT_FIELDS = PRODUCT_FIELDS + ("rate",)
RESTAURANT_FIELDS = ("_id", "name", "type", "image_url")
ADMIN_USER_FIELDS = CONTACT_FIELDS + ("email",)


def to_price(value: Any) -> Decimal:
    return Decimal(str(value)).quantize(CENT)


def price_items(items: List[Dict[str, Any]], products: Dict[str, dict]) -> Tuple[List[OrderItem], Decimal]:
    """Snapshot each product's current price onto its line and total them."""
    lines = []
    total = Decimal("0")
    for item in items:
        price = to_price(products[item["product_id"]]["price"])
        total += price * item["quantity"]
        lines.append(OrderItem(
            id=str(ObjectId()),
            product_id=item["product_id"],
            quantity=item["quantity"],
            price=str(price),
        ))
    return lines, total.quantize(CENT)


def present(db: Database, orders: List[dict], product_fields=PRODUCT_FIELDS,
            user_fields=None, with_restaurant: bool = False) -> List[dict]:
    products = db.get_documents_by_ids(
        "product", {item["product_id"] for order in orders for item in order.get("items", [])}
    )
    restaurants = {}
    if with_restaurant:
        restaurants = db.get_documents_by_ids("restaurant", [p.get("restaurant_id") for p in products.values()])
    users = db.get_documents_by_ids("user", [o["user_id"] for o in orders]) if user_fields else {}

    for order in orders:
        for item in order.get("items", []):
            product = products.get(item["product_id"])
            view = project(product, product_fields)
            if view is not None and with_restaurant:
                view["restaurant"] = project(restaurants.get(product.get("restaurant_id")), RESTAURANT_FIELDS)
            item["product"] = view
        if user_fields:
            order["user"] = project(users.get(order["user_id"]), user_fields)
    return orders


def create_order(db: Database, user: dict, items: List[Dict[str, Any]],
                 location: Optional[str] = None) -> dict:
    if not items:
        raise ValidationError("Validation error", details=["At least one item is required"])
    if any(int(item["quantity"]) < 1 for item in items):
        raise ValidationError("Validation error", details=["quantity must be at least 1"])

    items = [{"product_id": canonical_id(i["product_id"]), "quantity": int(i["quantity"])} for i in items]
    requested = list(dict.fromkeys(i["product_id"] for i in items))
    products = db.get_documents_by_ids("product", requested)
    missing = [pid for pid in requested if pid not in products]
    if missing:
        raise ProductsNotFound(missing)

    lines, total = price_items(items, products)
    if total <= 0:
        raise ValidationError("Invalid total price calculated")

    # one document holds the order and its lines, so the insert is all-or-nothing
    order = Order(
        user_id=user["_id"],
        total_price=str(total),
        status="PENDING",
        location=location or None,
        items=lines,
    )
    order_id = db.create_document("order", order)
    logger.info("Order %s created for user %s, total %s", order_id, user["_id"], total)
    created = db.get_document_by_id("order", order_id)
    return present(db, [created], user_fields=CONTACT_FIELDS)[0]


def list_my_orders(db: Database, user: dict) -> List[dict]:
    orders = db.get_documents("order", {"user_id": user["_id"]}, sort=NEWEST_FIRST)
    return present(db, orders, product_fields=RATED_PRODUCT_FIELDS, with_restaurant=True)


def status_filter(status: Optional[str]) -> Optional[str]:
    """Case-insensitive status filter; unknown values mean no filter."""
    if not status:
        return None
    if status.upper() in ORDER_STATUSES:
        return status.upper()
    logger.debug("Ignoring unknown order status filter %r", status)
    return None


def list_all_orders(db: Database, status: Optional[str] = None) -> List[dict]:
    filter_q = {}
    wanted = status_filter(status)
    if wanted:
        filter_q["status"] = wanted
    orders = db.get_documents("order", filter_q, sort=NEWEST_FIRST)
    return present(db, orders, user_fields=ADMIN_USER_FIELDS)


def _load(db: Database, order_id: str) -> dict:
    order = db.get_document_by_id("order", order_id)
    if not order:
        raise NotFound("Order not found")
    return order


def get_order(db: Database, user: dict, order_id: str) -> dict:
    order = _load(db, order_id)
    if order["user_id"] != user["_id"] and user.get("type") != "admin":
        raise Forbidden("Access denied")
    return present(db, [order], product_fields=RATED_PRODUCT_FIELDS, user_fields=CONTACT_FIELDS)[0]


def update_order_status(db: Database, user: dict, order_id: str, status: str) -> dict:
    if status not in TERMINAL_STATUSES:
        raise ValidationError("Validation error", details=["status must be one of: COMPLETED, CANCELLED"])

    order = _load(db, order_id)
    is_admin = user.get("type") == "admin"
    if not is_admin:
        if order["user_id"] != user["_id"]:
            raise Forbidden("You do not have permission to update this order")
        if status != "CANCELLED":
            raise Forbidden("You can only cancel your own orders. Only admins can complete orders.")

    if order["status"] in TERMINAL_STATUSES:
        raise InvalidTransition(order["status"])

    oid = to_object_id(order["_id"])
    updated = db["order"].find_one_and_update(
        {"_id": oid, "status": "PENDING"},
        {"$set": {"status": status, "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        # another request settled the order first
        current = db["order"].find_one({"_id": oid})
        if current is None:
            raise NotFound("Order not found")
        raise InvalidTransition(current["status"])

    logger.info("Order %s moved to %s by user %s", order["_id"], status, user["_id"])
    return present(db, [_load(db, order["_id"])], user_fields=CONTACT_FIELDS)[0]


def delete_order(db: Database, order_id: str) -> None:
    order = _load(db, order_id)
    if order["status"] not in TERMINAL_STATUSES:
        raise ValidationError("Only completed or cancelled orders can be deleted")
    db.delete_document("order", order["_id"])
