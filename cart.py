"""
Per-user cart.

One ``cart`` document per user holds the lines. Every mutation is a single
conditional update on that document, so two requests adding the same dish
can neither duplicate the line nor lose an increment.
"""
import logging

from bson import ObjectId

from catalog import get_dish, get_dishes_by_ids
from database import collection, now_utc
from errors import ConflictError, NotFound, ValidationError

log = logging.getLogger(__name__)

MAX_MERGE_ATTEMPTS = 5


def _ensure_cart(user_id: str):
    collection("cart").update_one(
        {"user_id": user_id},
        {"$setOnInsert": {"user_id": user_id, "items": [], "created_at": now_utc(), "updated_at": now_utc()}},
        upsert=True,
    )


def add_item(user_id: str, dish_id: str, quantity: int = 1) -> list:
    if quantity is None or quantity < 1:
        raise ValidationError("Quantity must be at least 1")
    dish = get_dish(dish_id)
    _ensure_cart(user_id)
    carts = collection("cart")
    for _ in range(MAX_MERGE_ATTEMPTS):
        merged = carts.update_one(
            {"user_id": user_id, "items.dish": dish["_id"]},
            {"$inc": {"items.$.quantity": quantity}, "$set": {"updated_at": now_utc()}},
        )
        if merged.matched_count:
            break
        pushed = carts.update_one(
            {"user_id": user_id, "items.dish": {"$ne": dish["_id"]}},
            {
                "$push": {"items": {"line_id": str(ObjectId()), "dish": dish["_id"], "quantity": quantity}},
                "$set": {"updated_at": now_utc()},
            },
        )
        if pushed.matched_count:
            break
        # the line appeared between the two updates; merge into it
    else:
        raise ConflictError("Cart is busy, please retry")
    return get_cart(user_id)


def set_quantity(user_id: str, line_id: str, quantity: int) -> list:
    carts = collection("cart")
    if quantity <= 0:
        result = carts.update_one(
            {"user_id": user_id, "items.line_id": line_id},
            {"$pull": {"items": {"line_id": line_id}}, "$set": {"updated_at": now_utc()}},
        )
    else:
        result = carts.update_one(
            {"user_id": user_id, "items.line_id": line_id},
            {"$set": {"items.$.quantity": quantity, "updated_at": now_utc()}},
        )
    if not result.matched_count:
        raise NotFound("Item not found in cart")
    return get_cart(user_id)


def clear(user_id: str) -> None:
    collection("cart").update_one(
        {"user_id": user_id},
        {"$set": {"items": [], "updated_at": now_utc()}},
    )


def get_cart(user_id: str) -> list:
    """Cart lines with each dish resolved; lines whose dish left the catalog are dropped."""
    cart = collection("cart").find_one({"user_id": user_id})
    lines = cart["items"] if cart else []
    dishes = get_dishes_by_ids(line["dish"] for line in lines)
    resolved = []
    for line in lines:
        dish = dishes.get(line["dish"])
        if dish is None:
            log.warning("Dropping cart line %s for missing dish %s", line["line_id"], line["dish"])
            continue
        resolved.append({"_id": line["line_id"], "dish": dish, "quantity": line["quantity"]})
    return resolved
