"""
Catalog store: restaurants and their dishes.

Prices and names stored here are the only ones the order engine trusts.
"""
import logging
from typing import Dict, Iterable, List, Optional

from pymongo import ReturnDocument

from database import (
    collection,
    create_document,
    delete_document,
    get_document_by_id,
    get_documents,
    now_utc,
    serialize_doc,
    to_object_id,
)
from errors import NotFound, ValidationError
from schemas import Dish, Restaurant

log = logging.getLogger(__name__)

RESTAURANT_FIELDS = ("name", "address", "description", "cuisine", "image_url", "phone")
DISH_FIELDS = (
    "name", "description", "price", "image_url", "is_available",
    "nutrition", "diet_types", "health_goals", "prep_time",
)
# hides the per-order ledger behind the aggregate counters
RESTAURANT_VIEW = {"counted_orders": 0}


# ===================== Restaurants =====================

def get_restaurant(restaurant_id: str) -> dict:
    restaurant = get_document_by_id("restaurant", restaurant_id, RESTAURANT_VIEW)
    if not restaurant:
        raise NotFound("Restaurant not found")
    return restaurant


def restaurant_for_owner(user: dict) -> dict:
    restaurants = get_documents("restaurant", {"owner_id": user["_id"]}, limit=1, projection=RESTAURANT_VIEW)
    if not restaurants:
        raise NotFound("Restaurant not found for this user")
    return restaurants[0]


def list_restaurants() -> List[dict]:
    return get_documents("restaurant", {"is_active": True}, sort=[("name", 1)], projection=RESTAURANT_VIEW)


def create_restaurant(owner_id: str, **fields) -> dict:
    owner = get_document_by_id("user", owner_id)
    if not owner:
        raise NotFound("Owner not found")
    if get_documents("restaurant", {"owner_id": owner_id}, limit=1):
        raise ValidationError("User already owns a restaurant")
    restaurant = Restaurant(owner_id=owner_id, **fields)
    restaurant_id = create_document("restaurant", restaurant)
    collection("user").update_one(
        {"_id": to_object_id(owner_id)},
        {"$set": {"role": "restaurant", "restaurant_id": restaurant_id, "updated_at": now_utc()}},
    )
    log.info("Created restaurant %s for owner %s", restaurant_id, owner_id)
    return get_restaurant(restaurant_id)


def update_restaurant_profile(user: dict, changes: dict) -> dict:
    restaurant = restaurant_for_owner(user)
    updates = {k: v for k, v in changes.items() if k in RESTAURANT_FIELDS and v not in (None, "")}
    updates["updated_at"] = now_utc()
    doc = collection("restaurant").find_one_and_update(
        {"_id": to_object_id(restaurant["_id"])},
        {"$set": updates},
        projection=RESTAURANT_VIEW,
        return_document=ReturnDocument.AFTER,
    )
    return serialize_doc(doc)


# ===================== Dishes =====================

def get_dish(dish_id: str) -> dict:
    dish = get_document_by_id("dish", dish_id)
    if not dish:
        raise NotFound("Dish not found")
    return dish


def get_dishes_by_ids(dish_ids: Iterable[str]) -> Dict[str, dict]:
    """Batch lookup. Ids that are malformed or absent are simply missing from the result."""
    oids = []
    for dish_id in set(dish_ids):
        try:
            oids.append(to_object_id(dish_id))
        except NotFound:
            continue
    if not oids:
        return {}
    docs = collection("dish").find({"_id": {"$in": oids}})
    return {str(doc["_id"]): serialize_doc(doc) for doc in docs}


def dishes_for_restaurant(restaurant_id: str) -> List[dict]:
    return get_documents("dish", {"restaurant_id": restaurant_id}, sort=[("name", 1)])


def random_dishes(size: int = 100) -> List[dict]:
    docs = collection("dish").aggregate([
        {"$match": {"is_available": True}},
        {"$sample": {"size": size}},
    ])
    return [serialize_doc(doc) for doc in docs]


def add_dish(user: dict, fields: dict) -> dict:
    restaurant = restaurant_for_owner(user)
    dish = Dish(restaurant_id=restaurant["_id"], **{k: v for k, v in fields.items() if k in DISH_FIELDS and v is not None})
    dish_id = create_document("dish", dish)
    return get_dish(dish_id)


def _owned_dish(user: dict, dish_id: str) -> dict:
    restaurant = restaurant_for_owner(user)
    dish = get_document_by_id("dish", dish_id)
    if not dish or dish["restaurant_id"] != restaurant["_id"]:
        raise NotFound("Dish not found")
    return dish


def update_dish(user: dict, dish_id: str, changes: dict) -> dict:
    _owned_dish(user, dish_id)
    updates = {k: v for k, v in changes.items() if k in DISH_FIELDS and v is not None}
    if "price" in updates and updates["price"] <= 0:
        raise ValidationError("Price must be positive")
    updates["updated_at"] = now_utc()
    doc = collection("dish").find_one_and_update(
        {"_id": to_object_id(dish_id)},
        {"$set": updates},
        return_document=ReturnDocument.AFTER,
    )
    return serialize_doc(doc)


def delete_dish(user: dict, dish_id: str) -> Optional[bool]:
    _owned_dish(user, dish_id)
    return delete_document("dish", dish_id)
