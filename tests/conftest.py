import os

os.environ.pop("DATABASE_URL", None)

import mongomock
import pytest
from fastapi.testclient import TestClient

from database import create_document, get_db
from main import app
from security import Principal, create_user_token, get_password_hash

PASSWORD = "Password@123!"

ADDRESS = {
    "street": "300 Birch Boulevard",
    "city": "Austin",
    "state": "Texas",
    "zipCode": "73301",
    "country": "USA",
}


@pytest.fixture(scope="session")
def password_hash():
    return get_password_hash(PASSWORD)


@pytest.fixture
def db():
    return mongomock.MongoClient(tz_aware=True)["storefront_test"]


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db, password_hash):
    def _make(email, role="user", active=True):
        return create_document(db, "user", {
            "name": email.split("@")[0],
            "email": email,
            "password": password_hash,
            "role": role,
            "active": active,
        })
    return _make


@pytest.fixture
def user(make_user):
    return make_user("user@example.com")


@pytest.fixture
def other_user(make_user):
    return make_user("other@example.com")


@pytest.fixture
def admin(make_user):
    return make_user("admin@example.com", role="admin")


def auth_header(user):
    return {"Authorization": f"Bearer {create_user_token(user)}"}


def principal_of(user):
    return Principal(id=str(user["_id"]), role=user["role"])


@pytest.fixture
def make_product(db, admin):
    def _make(name="Test Product", price=100.0, stock=10, category="electronics"):
        return create_document(db, "product", {
            "name": name,
            "description": "A product for testing",
            "price": price,
            "category": category,
            "stock": stock,
            "createdBy": admin["_id"],
            "ratings": [],
            "averageRating": 0,
        })
    return _make


@pytest.fixture
def product(make_product):
    return make_product()


def order_body(*lines, address=ADDRESS, payment="creditCard"):
    """lines are (product_doc_or_id, quantity) pairs."""
    items = []
    for prod, qty in lines:
        pid = prod["_id"] if isinstance(prod, dict) else prod
        items.append({"product": str(pid), "quantity": qty})
    return {"items": items, "shippingAddress": address, "paymentMethod": payment}


def stock_of(db, prod):
    return db["product"].find_one({"_id": prod["_id"]})["stock"]
