import os

os.environ.setdefault("ENVIRONMENT", "test")

import mongomock  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

import database  # noqa: E402
from main import app  # noqa: E402
from schemas import User  # noqa: E402
from security import generate_token, hash_password  # noqa: E402

PASSWORD = "secret123"


@pytest.fixture(autouse=True)
def db():
    """Every test gets a fresh in-memory store."""
    database.init_db(mongomock.MongoClient(), name="ngebaju_test")
    yield database.db
    database.close_db()


@pytest.fixture()
def client(db):
    return TestClient(app)


def make_user(username, role="customer"):
    user = User(
        username=username,
        email=f"{username}@example.com",
        password=hash_password(PASSWORD),
        role=role,
    )
    user_id = database.create_document("user", user)
    public = {"id": user_id, "email": user.email, "username": username, "role": role}
    return {**public, "headers": {"Authorization": f"Bearer {generate_token(public)}"}}


def make_category(name="Shirts"):
    category_id = database.create_document("category", {"name": name, "description": f"All {name.lower()}"})
    return category_id


def make_product(name="Basic Tee", price=100.0, stock=10, sizes=None, category_id=None):
    product_id = database.create_document(
        "product",
        {
            "name": name,
            "description": "A comfortable cotton t-shirt",
            "price": price,
            "stock": stock,
            "category_id": category_id or make_category(f"Category for {name}"),
            "images": [f"https://img.example.com/{name.lower().replace(' ', '-')}.jpg"],
        },
    )
    for size, size_stock in (sizes or {}).items():
        database.get_db().product_size.insert_one({"product_id": product_id, "size": size, "stock": size_stock})
    return product_id


def product_stock(product_id):
    return database.get_db().product.find_one({"_id": database.oid(product_id)})["stock"]


def size_stock(product_id, size):
    return database.get_db().product_size.find_one({"product_id": product_id, "size": size})["stock"]


@pytest.fixture()
def customer():
    return make_user("alice")


@pytest.fixture()
def other_customer():
    return make_user("bob")


@pytest.fixture()
def admin():
    return make_user("admin_user", role="admin")
