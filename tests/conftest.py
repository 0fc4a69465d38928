import itertools

import mongomock
import pytest
from fastapi.testclient import TestClient

import catalog
from auth import InMemoryVerifier
from database import Database
from main import create_app
from schemas import User

_mobiles = itertools.count(201000000001)


@pytest.fixture
def db():
    database = Database(mongomock.MongoClient()["buzzer_test"])
    database.ensure_indexes()
    return database


@pytest.fixture
def verifier():
    return InMemoryVerifier()


@pytest.fixture
def client(db, verifier):
    with TestClient(create_app(database=db, verifier=verifier)) as c:
        yield c


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


def add_user(db, verifier, token, user_type="user", full_name="Test User"):
    uid = f"uid-{token}"
    verifier.add(token, uid)
    user = User(firebase_uid=uid, full_name=full_name, mobile_number=f"+{next(_mobiles)}", type=user_type)
    return db.get_document_by_id("user", db.create_document("user", user))


@pytest.fixture
def customer(db, verifier):
    return add_user(db, verifier, "customer-token", full_name="Carla Customer")


@pytest.fixture
def other_customer(db, verifier):
    return add_user(db, verifier, "other-token", full_name="Omar Other")


@pytest.fixture
def admin_user(db, verifier):
    return add_user(db, verifier, "admin-token", user_type="admin", full_name="Ada Admin")


@pytest.fixture
def category(db):
    return catalog.create_category(db, {"name": "Burgers"})


@pytest.fixture
def product(db, category):
    return catalog.create_product(db, {"name": "Cheese Burger", "price": 9.99, "category_id": category["_id"]})


@pytest.fixture
def make_product(db, category):
    def _make(name="Fries", price=3.5, **extra):
        return catalog.create_product(db, {"name": name, "price": price, "category_id": category["_id"], **extra})
    return _make


@pytest.fixture
def make_restaurant(db):
    def _make(name="Koshary Corner", rating=4.0, latitude=None, longitude=None, **extra):
        data = {"name": name, "type": "Egyptian", "location": "Cairo", "rating": rating,
                "latitude": latitude, "longitude": longitude, **extra}
        return catalog.create_restaurant(db, data)
    return _make
