"""
Database Helper Functions

MongoDB persistence handle for the ordering API.
A `Database` is built once (from the environment, or around a test double)
and handed to every service function; nothing in the app reaches for a
module-level client.
"""

import logging
import os
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Union, Optional, Dict, Any, List

from bson import ObjectId
from bson.errors import InvalidId
from dotenv import load_dotenv
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient

# Load environment variables from .env file
load_dotenv()

logger = logging.getLogger(__name__)

COLLECTIONS = ["user", "category", "product", "restaurant", "review", "order"]


def _to_dict(data: Union[BaseModel, dict]) -> dict:
    if isinstance(data, BaseModel):
        return data.model_dump()
    return dict(data)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_object_id(value: Any) -> Optional[ObjectId]:
    """Parse an id coming from a URL or payload; None if it is not an ObjectId."""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


def canonical_id(value: Any) -> str:
    """The 24-char lower-case form of an id, so stored references compare equal."""
    oid = to_object_id(value)
    return str(oid) if oid is not None else str(value)


class Database:
    def __init__(self, db, client=None, transactions: bool = False):
        self.db = db
        self.client = client
        self.transactions = transactions

    @classmethod
    def from_env(cls) -> Optional["Database"]:
        database_url = os.getenv("DATABASE_URL")
        database_name = os.getenv("DATABASE_NAME")
        if not (database_url and database_name):
            logger.warning("DATABASE_URL / DATABASE_NAME not set, running without a database")
            return None
        client = MongoClient(database_url)
        transactions = os.getenv("MONGO_TRANSACTIONS", "false").lower() in ("1", "true", "yes")
        return cls(client[database_name], client=client, transactions=transactions)

    def __getitem__(self, collection_name: str):
        return self.db[collection_name]

    def ensure_indexes(self) -> None:
        self.db["user"].create_index("firebase_uid", unique=True)
        self.db["user"].create_index("mobile_number", unique=True)
        self.db["user"].create_index(
            "email", unique=True, partialFilterExpression={"email": {"$type": "string"}}
        )
        self.db["review"].create_index(
            [("product_id", ASCENDING), ("user_id", ASCENDING)], unique=True
        )
        self.db["order"].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])

    @contextmanager
    def transaction(self):
        """Yield a session bound to a transaction, or None when disabled.

        Multi-document writes pass the yielded value as ``session=``; with
        transactions disabled they run as plain sequential writes.
        """
        if not self.transactions or self.client is None:
            yield None
            return
        with self.client.start_session() as session:
            with session.start_transaction():
                yield session

    # CRUD helpers

    def create_document(self, collection_name: str, data: Union[BaseModel, dict], session=None) -> str:
        payload = _to_dict(data)
        now = utcnow()
        payload['created_at'] = now
        payload['updated_at'] = now
        result = self.db[collection_name].insert_one(payload, session=session)
        return str(result.inserted_id)

    def get_documents(self, collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None, sort: Optional[list] = None) -> List[dict]:
        cursor = self.db[collection_name].find(filter_dict or {})
        if sort:
            cursor = cursor.sort(sort)
        if limit:
            cursor = cursor.limit(int(limit))
        return [serialize_doc(doc) for doc in cursor]

    def get_document_by_id(self, collection_name: str, _id: Any) -> Optional[dict]:
        oid = to_object_id(_id)
        if oid is None:
            return None
        doc = self.db[collection_name].find_one({"_id": oid})
        return serialize_doc(doc) if doc else None

    def get_documents_by_ids(self, collection_name: str, ids) -> Dict[str, dict]:
        oids = {oid for oid in (to_object_id(i) for i in ids if i) if oid is not None}
        if not oids:
            return {}
        cursor = self.db[collection_name].find({"_id": {"$in": list(oids)}})
        return {str(doc["_id"]): serialize_doc(doc) for doc in cursor}

    def update_document(self, collection_name: str, _id: Any, update_data: Dict[str, Any]) -> bool:
        oid = to_object_id(_id)
        if oid is None:
            return False
        update = {"$set": _to_dict(update_data)}
        update["$set"]["updated_at"] = utcnow()
        result = self.db[collection_name].update_one({"_id": oid}, update)
        return result.matched_count > 0

    def delete_document(self, collection_name: str, _id: Any) -> bool:
        oid = to_object_id(_id)
        if oid is None:
            return False
        result = self.db[collection_name].delete_one({"_id": oid})
        return result.deleted_count > 0


# Utility

def serialize_doc(doc: Optional[dict]) -> Optional[dict]:
    if not doc:
        return None
    d = dict(doc)
    if "_id" in d:
        d["_id"] = str(d["_id"])  # convert ObjectId to string
    return d
