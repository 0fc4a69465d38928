import logging
from typing import Any, Dict, Iterable, Optional

from pymongo.errors import DuplicateKeyError

from database import Database, serialize_doc, to_object_id, utcnow
from errors import Conflict, Forbidden, NotRegistered
from schemas import User

logger = logging.getLogger(__name__)

PUBLIC_FIELDS = ("_id", "full_name", "image")
CONTACT_FIELDS = ("_id", "full_name", "mobile_number")


def project(doc: Optional[dict], fields: Iterable[str]) -> Optional[dict]:
    if doc is None:
        return None
    return {f: doc.get(f) for f in fields}


def duplicate_message(error: DuplicateKeyError) -> str:
    """Name the user field a unique index rejected."""
    key_pattern = (error.details or {}).get("keyPattern") or {}
    if "email" in key_pattern:
        return "Email already in use by another account"
    return "Mobile number already in use by another account"


def get_user_by_uid(db: Database, uid: str) -> Optional[dict]:
    return serialize_doc(db["user"].find_one({"firebase_uid": uid}))


def register_user(db: Database, identity, full_name: str, mobile_number: str) -> dict:
    """Create the user record for a freshly verified identity.

    Fails with Conflict when the uid or the mobile number already belongs to
    an account; nothing is written in that case.
    """
    existing = db["user"].find_one({
        "$or": [
            {"firebase_uid": identity.uid},
            {"mobile_number": mobile_number},
        ]
    })
    if existing:
        raise Conflict("User already exists")

    user = User(firebase_uid=identity.uid, full_name=full_name, mobile_number=mobile_number)
    try:
        user_id = db.create_document("user", user)
    except DuplicateKeyError:
        raise Conflict("User already exists")
    logger.info("Registered user %s", user_id)
    return db.get_document_by_id("user", user_id)


def login_user(db: Database, identity) -> dict:
    user = get_user_by_uid(db, identity.uid)
    if user is None:
        raise NotRegistered("User not found. Please register.")
    return user


def update_profile(db: Database, user: dict, changes: Dict[str, Any]) -> dict:
    mobile_number = changes.get("mobile_number")
    if mobile_number and mobile_number != user.get("mobile_number"):
        if db["user"].find_one({"mobile_number": mobile_number}):
            raise Conflict("Mobile number already in use by another account")

    if "email" in changes:
        email = changes["email"] or None
        if email and email != user.get("email"):
            if db["user"].find_one({"email": email}):
                raise Conflict("Email already in use by another account")

    if "type" in changes and changes["type"] != user.get("type"):
        raise Forbidden("You cannot change your user type. Please contact an administrator.")

    update = {}
    if changes.get("full_name") is not None:
        update["full_name"] = changes["full_name"]
    if "email" in changes:
        update["email"] = changes["email"] or None
    if "image" in changes:
        update["image"] = changes["image"] or None
    if changes.get("mobile_number") is not None:
        update["mobile_number"] = changes["mobile_number"]

    if update:
        update["updated_at"] = utcnow()
        try:
            db["user"].update_one({"_id": to_object_id(user["_id"])}, {"$set": update})
        except DuplicateKeyError as e:
            raise Conflict(duplicate_message(e))
    return db.get_document_by_id("user", user["_id"])
