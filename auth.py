import logging
import os
from abc import ABC, abstractmethod
from typing import Dict, Optional

from fastapi import Depends, Header, Request
from pydantic import BaseModel

from database import Database
from errors import Forbidden, InternalError, NotRegistered, Unauthenticated
from users import get_user_by_uid

logger = logging.getLogger(__name__)


class Identity(BaseModel):
    uid: str
    phone_number: Optional[str] = None


class IdentityVerifier(ABC):
    """Turns a bearer token into a verified Identity or raises Unauthenticated."""

    @abstractmethod
    def verify(self, token: str) -> Identity:
        ...


class FirebaseVerifier(IdentityVerifier):
    def __init__(self, credentials_path: Optional[str] = None):
        import firebase_admin
        from firebase_admin import auth as firebase_auth, credentials

        self._auth = firebase_auth
        path = credentials_path or os.getenv("FIREBASE_CREDENTIALS", "serviceAccountKey.json")
        try:
            self._app = firebase_admin.get_app()
        except ValueError:
            self._app = firebase_admin.initialize_app(credentials.Certificate(path))

    def verify(self, token: str) -> Identity:
        try:
            decoded = self._auth.verify_id_token(token, app=self._app)
        except (ValueError, self._auth.InvalidIdTokenError, self._auth.CertificateFetchError,
                self._auth.UserDisabledError) as e:
            logger.info("Rejected id token: %s", e)
            raise Unauthenticated()
        return Identity(
            uid=decoded["uid"],
            phone_number=decoded.get("phone_number") or decoded.get("phoneNumber"),
        )


class InMemoryVerifier(IdentityVerifier):
    def __init__(self, tokens: Optional[Dict[str, Identity]] = None):
        self.tokens = dict(tokens or {})

    def add(self, token: str, uid: str, phone_number: Optional[str] = None) -> Identity:
        identity = Identity(uid=uid, phone_number=phone_number)
        self.tokens[token] = identity
        return identity

    def verify(self, token: str) -> Identity:
        identity = self.tokens.get(token)
        if identity is None:
            raise Unauthenticated()
        return identity


# ===================== Request dependencies =====================

def get_db(request: Request) -> Database:
    db = getattr(request.app.state, "db", None)
    if db is None:
        raise InternalError("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")
    return db


def get_verifier(request: Request) -> IdentityVerifier:
    verifier = getattr(request.app.state, "verifier", None)
    if verifier is None:
        raise InternalError("Identity verification is not configured")
    return verifier


def get_identity(
    authorization: Optional[str] = Header(None),
    verifier: IdentityVerifier = Depends(get_verifier),
) -> Identity:
    if not authorization:
        raise Unauthenticated("Missing Authorization header")
    parts = authorization.split()
    if len(parts) != 2 or parts[0] != "Bearer":
        raise Unauthenticated("Invalid Authorization header")
    return verifier.verify(parts[1])


def get_current_user(
    identity: Identity = Depends(get_identity),
    db: Database = Depends(get_db),
) -> dict:
    user = get_user_by_uid(db, identity.uid)
    if user is None:
        raise NotRegistered()
    return user


def require_admin(user: dict = Depends(get_current_user)) -> dict:
    if user.get("type") != "admin":
        raise Forbidden("Access denied. Admin privileges required.")
    return user
