"""
Product reviews and the derived `product.rate`.

A user holds at most one review per product: submitting again rewrites it.
After every write the product's rate is recomputed from a full scan of its
reviews inside the same `Database.transaction()`, and is None once the last
review is gone.
"""

import logging
from typing import Iterable, List, Optional, Tuple

from database import Database, canonical_id, serialize_doc, to_object_id, utcnow
from errors import Forbidden, NotFound, ProductNotFound
from users import PUBLIC_FIELDS, project

logger = logging.getLogger(__name__)

NEWEST_FIRST = [("created_at", -1), ("_id", -1)]


def mean_rating(ratings: Iterable[int]) -> Optional[float]:
    ratings = list(ratings)
    if not ratings:
        return None
    return sum(ratings) / len(ratings)


def recompute_rate(db: Database, product_id: str, session=None) -> Optional[float]:
    cursor = db["review"].find({"product_id": product_id}, {"rating": 1}, session=session)
    rate = mean_rating(doc["rating"] for doc in cursor)
    db["product"].update_one(
        {"_id": to_object_id(product_id)},
        {"$set": {"rate": rate, "updated_at": utcnow()}},
        session=session,
    )
    return rate


def attach_reviewers(db: Database, reviews: List[dict]) -> List[dict]:
    reviewers = db.get_documents_by_ids("user", [r.get("user_id") for r in reviews])
    for review in reviews:
        review["user"] = project(reviewers.get(review.get("user_id")), PUBLIC_FIELDS)
    return reviews


def submit_review(db: Database, user: dict, product_id: str, rating: int,
                  comment: Optional[str] = None) -> Tuple[dict, bool]:
    """Create or rewrite the caller's review. Returns (review, created)."""
    product = db.get_document_by_id("product", product_id)
    if product is None:
        raise ProductNotFound()
    product_id = product["_id"]
    key = {"product_id": product_id, "user_id": user["_id"]}
    now = utcnow()

    with db.transaction() as session:
        result = db["review"].update_one(
            key,
            {
                "$set": {"rating": rating, "comment": comment or None, "updated_at": now},
                "$setOnInsert": {"created_at": now},
            },
            upsert=True,
            session=session,
        )
        rate = recompute_rate(db, product_id, session=session)
        review = db["review"].find_one(key, session=session)

    created = result.upserted_id is not None
    logger.info("Review %s for product %s, rate now %s",
                "created" if created else "updated", product_id, rate)
    review = serialize_doc(review)
    review["user"] = project(user, PUBLIC_FIELDS)
    return review, created


def delete_review(db: Database, user: dict, review_id: str) -> None:
    review = db.get_document_by_id("review", review_id)
    if review is None:
        raise NotFound("Review not found")
    # TODO: decide whether admins may remove other users' reviews
    if review["user_id"] != user["_id"]:
        raise Forbidden("You can only delete your own reviews")

    with db.transaction() as session:
        db["review"].delete_one({"_id": to_object_id(review["_id"])}, session=session)
        recompute_rate(db, review["product_id"], session=session)


def list_product_reviews(db: Database, product_id: str) -> List[dict]:
    reviews = [serialize_doc(doc) for doc in
               db["review"].find({"product_id": canonical_id(product_id)}).sort(NEWEST_FIRST)]
    return attach_reviewers(db, reviews)
