from decimal import Decimal

from database import Database


def dashboard_stats(db: Database) -> dict:
    orders = db["order"]
    revenue = sum(
        (Decimal(doc["total_price"]) for doc in orders.find({"status": "COMPLETED"}, {"total_price": 1})),
        Decimal("0"),
    )
    return {
        "users": {"total": db["user"].count_documents({})},
        "restaurants": {"total": db["restaurant"].count_documents({})},
        "orders": {
            "total": orders.count_documents({}),
            "pending": orders.count_documents({"status": "PENDING"}),
            "completed": orders.count_documents({"status": "COMPLETED"}),
            "cancelled": orders.count_documents({"status": "CANCELLED"}),
        },
        "categories": {"total": db["category"].count_documents({})},
        "products": {"total": db["product"].count_documents({})},
        "revenue": {"total": float(revenue)},
    }
