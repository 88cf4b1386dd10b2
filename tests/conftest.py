import mongomock
import pytest
from fastapi.testclient import TestClient
from jose import jwt

import auth
import database
from catalog import slugify
from main import app

SECRET = "test-secret"


def token_for(uid, email=None, name=None, picture=None):
    claims = {"sub": uid, "email": email or f"{uid}@example.com", "name": name or uid.title()}
    if picture:
        claims["picture"] = picture
    return jwt.encode(claims, SECRET, algorithm="HS256")


def headers_for(uid, **claims):
    return {"x-auth-token": token_for(uid, **claims)}


@pytest.fixture
def db():
    mock_db = mongomock.MongoClient()["storefront_test"]
    database.ensure_indexes(mock_db)
    return mock_db


@pytest.fixture
def client(db):
    app.dependency_overrides[database.get_db] = lambda: db
    app.dependency_overrides[database.get_optional_db] = lambda: db
    app.dependency_overrides[auth.get_identity_provider] = lambda: auth.JoseIdentityProvider(SECRET, ["HS256"])
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def user_headers():
    return headers_for("u1", name="Alice")


@pytest.fixture
def admin_headers(db):
    db["user"].insert_one({"uid": "admin1", "email": "admin@example.com", "name": "Admin", "role": "admin", "status": "active"})
    return headers_for("admin1")


@pytest.fixture
def make_product(db):
    def _make(title="Lamp", price=20.0, stock=5, discount_percentage=0, category="home"):
        doc = {
            "title": title,
            "slug": slugify(title),
            "price": price,
            "discount_percentage": discount_percentage,
            "description": f"A {title.lower()}",
            "category": category,
            "image": f"https://img.example.com/{slugify(title)}.png",
            "stock": stock,
            "rating": {"rate": 0, "count": 0},
            "created_at": database.now(),
            "updated_at": database.now(),
        }
        return str(db["product"].insert_one(doc).inserted_id)
    return _make
