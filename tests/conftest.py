"""
Shared fixtures: an in-memory MongoDB (mongomock) and factories for users,
products and orders.
"""
import mongomock
import pytest
from fastapi.testclient import TestClient

import catalog
import main
import orders
from auth import issue_token, new_user
from database import create_document, ensure_indexes, get_db, to_object_id
from schemas import Actor, ProductPayload


@pytest.fixture
def db():
    database = mongomock.MongoClient()["marketplace_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def client(db):
    main.app.dependency_overrides[get_db] = lambda: db
    with TestClient(main.app) as c:
        yield c
    main.app.dependency_overrides.clear()


class Users:
    def __init__(self, db):
        self.db = db
        self.count = 0

    def make(self, role: str = "buyer", name: str = None, password: str = "secret-pass"):
        """Create a user; returns (actor, bearer headers)."""
        self.count += 1
        name = name or f"{role}{self.count}"
        user = new_user(name, f"{name}@example.com", password, role=role)
        uid = create_document("user", user, database=self.db)
        token = issue_token(self.db, self.db["user"].find_one({"_id": to_object_id(uid)}))
        return Actor(id=uid, role=role), {"Authorization": f"Bearer {token}"}


@pytest.fixture
def users(db):
    return Users(db)


@pytest.fixture
def buyer(users):
    return users.make("buyer", name="bina")


@pytest.fixture
def seller(users):
    return users.make("seller", name="sagar")


@pytest.fixture
def admin(users):
    return users.make("admin", name="root")


@pytest.fixture
def make_product(db, seller):
    def _make(price: float = 1000, title: str = "Used bicycle", owner: Actor = None, **extra):
        payload = ProductPayload(title=title, price=price, category="Sports", condition="Good", **extra)
        return catalog.create_product(db, owner or seller[0], payload)
    return _make


@pytest.fixture
def place_order(db, buyer, make_product):
    def _place(method: str = "COD", price: float = 1000, address: str = "X", who: Actor = None):
        product = make_product(price=price)
        return orders.create_order(db, who or buyer[0], product["id"], method, address)
    return _place
