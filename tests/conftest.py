import threading

import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

import catalog
import database
import main
from schemas import Dish


@pytest.fixture(autouse=True)
def mongo(monkeypatch):
    db = mongomock.MongoClient()["food_ordering_test"]
    monkeypatch.setattr(database, "db", db)
    monkeypatch.setattr(database, "_client", None)
    monkeypatch.setenv("PAYMENT_SIGNING_SECRET", "test-signing-secret")
    monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", "whsec_test")
    database.ensure_indexes()
    return db


@pytest.fixture
def atomic_writes(monkeypatch):
    """Serialize mongomock writes; a real server applies each single-document write atomically."""
    lock = threading.RLock()
    for name in ("insert_one", "update_one", "find_one_and_update"):
        original = getattr(mongomock.Collection, name)

        def locked(self, *args, _original=original, **kwargs):
            with lock:
                return _original(self, *args, **kwargs)

        monkeypatch.setattr(mongomock.Collection, name, locked)


@pytest.fixture
def client():
    return TestClient(main.app)


def auth_headers(user):
    return {"X-User-Id": user["_id"]}


@pytest.fixture
def make_user(mongo):
    def _make_user(*, name: str = "Asha Rao", role: str = "customer") -> dict:
        doc = {
            "name": name,
            "email": f"{ObjectId()}@example.com",
            "phone": "9876543210",
            "password_hash": "not-a-real-hash",
            "role": role,
            "is_admin": role == "admin",
            "restaurant_id": None,
            "is_active": True,
        }
        mongo["user"].insert_one(doc)
        doc["_id"] = str(doc["_id"])
        return doc

    return _make_user


@pytest.fixture
def customer(make_user):
    return make_user()


@pytest.fixture
def owner(make_user):
    return make_user(name="Ravi Menon", role="restaurant")


@pytest.fixture
def admin(make_user):
    return make_user(name="Site Admin", role="admin")


@pytest.fixture
def courier(make_user):
    return make_user(name="Dev Courier", role="delivery")


@pytest.fixture
def make_restaurant(make_user):
    def _make_restaurant(*, name: str = "Spice Garden", owner: dict = None) -> dict:
        owner = owner or make_user(name=f"Owner of {name}", role="restaurant")
        return catalog.create_restaurant(owner["_id"], name=name, cuisine="Indian", address="55 Curry Ave")

    return _make_restaurant


@pytest.fixture
def restaurant(make_restaurant, owner):
    return make_restaurant(owner=owner)


@pytest.fixture
def make_dish():
    def _make_dish(restaurant: dict, *, name: str = "Paneer Tikka", price: float = 100.0,
                   is_available: bool = True) -> dict:
        dish = Dish(
            restaurant_id=restaurant["_id"],
            name=name,
            price=price,
            image_url=f"https://img.example.com/{name.lower().replace(' ', '-')}.jpg",
            is_available=is_available,
            diet_types=["vegetarian"],
        )
        return catalog.get_dish(database.create_document("dish", dish))

    return _make_dish


@pytest.fixture
def address():
    return {"address": "12 MG Road", "city": "Bengaluru", "pincode": "560001", "phone": "9876543210"}
