import os
import tempfile

os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="shop-uploads-"))

import mongomock
import pytest
from fastapi.testclient import TestClient

import database
import main
from security import create_token, hash_password


@pytest.fixture(autouse=True)
def db(monkeypatch):
    mock_db = mongomock.MongoClient()["testshop"]
    mock_db["printsize"].create_index("name", unique=True)
    mock_db["cart"].create_index("session_id", unique=True)
    mock_db["order"].create_index("payment_id", unique=True, sparse=True)
    monkeypatch.setattr(database, "db", mock_db)
    return mock_db


@pytest.fixture
def client():
    return TestClient(main.app)


def _user(db, email, is_admin):
    user = {
        "name": "Admin" if is_admin else "Customer",
        "email": email,
        "password_hash": hash_password("secret123"),
        "is_admin": is_admin,
    }
    user["_id"] = db["user"].insert_one(dict(user)).inserted_id
    return user


@pytest.fixture
def admin_headers(db):
    user = _user(db, "admin@example.com", True)
    return {"Authorization": f"Bearer {create_token(user)}"}


@pytest.fixture
def customer_headers(db):
    user = _user(db, "customer@example.com", False)
    return {"Authorization": f"Bearer {create_token(user)}"}


@pytest.fixture
def session_headers():
    return {"X-Session-Id": "session-one"}


@pytest.fixture
def make_product(db):
    def _make(**overrides):
        doc = {
            "name": "Harbour at Dusk",
            "description": "Giclee print on cotton rag",
            "price": 20.0,
            "category": "Prints",
            "images": ["https://cdn.example.com/harbour.jpg"],
            "quantity": 5,
            "variants": [],
        }
        doc.update(overrides)
        if doc["variants"]:
            doc.pop("quantity", None)
        return str(db["product"].insert_one(doc).inserted_id)

    return _make


@pytest.fixture
def variant_product(make_product):
    return make_product(
        name="Lighthouse",
        variants=[
            {"size": "8x10", "quantity": 2, "additional_price": 0.0},
            {"size": "11x14", "quantity": 3, "additional_price": 5.0},
        ],
    )
