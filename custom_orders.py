"""
Custom orders: bespoke recipe requests negotiated with a restaurant.

Once accepted with a price the customer may pay; a verified payment turns
the request into a regular order carrying one basic item.
"""
import logging
from typing import List, Optional

from pymongo import ReturnDocument

from catalog import get_restaurant, restaurant_for_owner
from database import (
    collection,
    create_document,
    get_document_by_id,
    get_documents,
    now_utc,
    serialize_doc,
    to_object_id,
    update_document,
)
from errors import ConflictError, NotFound, ValidationError
from orders import get_order, place_order
from payments import charge_matches
from schemas import Customorder
from workflow import custom_order_payable, custom_order_transition

log = logging.getLogger(__name__)

ONLINE_PAYMENT = "online"


def create_custom_order(user_id: str, restaurant_id: str, name: str, default_ingredients: Optional[List[str]] = None,
                        extra_ingredients: Optional[str] = None, special_instructions: Optional[str] = None,
                        delivery_address: Optional[dict] = None) -> dict:
    restaurant = get_restaurant(restaurant_id)
    custom = Customorder(
        user_id=user_id,
        restaurant_id=restaurant["_id"],
        name=name,
        default_ingredients=default_ingredients or [],
        extra_ingredients=extra_ingredients,
        special_instructions=special_instructions,
        delivery_address=delivery_address,
    )
    custom_id = create_document("customorder", custom)
    log.info("Custom order %s requested from restaurant %s", custom_id, restaurant["_id"])
    return get_custom_order(custom_id)


def get_custom_order(custom_id: str) -> dict:
    custom = get_document_by_id("customorder", custom_id)
    if not custom:
        raise NotFound("Custom order not found")
    return custom


def my_custom_orders(user_id: str) -> List[dict]:
    return get_documents("customorder", {"user_id": user_id}, sort=[("created_at", -1)])


def restaurant_custom_orders(user: dict) -> List[dict]:
    restaurant = restaurant_for_owner(user)
    return get_documents("customorder", {"restaurant_id": restaurant["_id"]}, sort=[("created_at", -1)])


def update_custom_order_status(custom_id: str, new_status: str, user: dict, price: Optional[float] = None) -> dict:
    custom = get_custom_order(custom_id)
    restaurant = get_document_by_id("restaurant", custom["restaurant_id"])
    changes = custom_order_transition(custom, new_status, user, restaurant, price=price)
    if changes is None:
        return custom
    changes["updated_at"] = now_utc()
    doc = collection("customorder").find_one_and_update(
        {"_id": to_object_id(custom_id), "status": custom["status"]},
        {"$set": changes},
        return_document=ReturnDocument.AFTER,
    )
    if doc is None:
        raise ConflictError("Custom order changed meanwhile, reload and retry")
    log.info("Custom order %s: %s -> %s", custom_id, custom["status"], new_status)
    return serialize_doc(doc)


def payable_custom_order(custom_id: str, user_id: str) -> dict:
    custom = get_custom_order(custom_id)
    if custom["user_id"] != user_id:
        raise NotFound("Custom order not found")
    if custom.get("payment_status") == "Paid":
        raise ValidationError("Custom order is already paid")
    if not custom_order_payable(custom):
        raise ValidationError("Custom order is not ready for payment")
    return custom


def attach_charge(custom_id: str, ref: dict) -> None:
    """Record the provider charge that may settle this custom order."""
    collection("customorder").update_one(
        {"_id": to_object_id(custom_id), "payment_status": {"$ne": "Paid"}},
        {"$set": {"payment_ref": ref, "updated_at": now_utc()}},
    )


def custom_order_for_charge(provider_order_id: str) -> Optional[dict]:
    found = get_documents("customorder", {"payment_ref.provider_order_id": provider_order_id}, limit=1)
    return found[0] if found else None


def promote_to_order(custom_id: str, user_id: str, provider_order_id: str) -> dict:
    """Create the regular order for a paid custom order, exactly once.

    ``provider_order_id`` must be the charge recorded for the custom order's
    current price.
    """
    custom = get_custom_order(custom_id)
    if custom["user_id"] != user_id:
        raise NotFound("Custom order not found")
    if custom.get("order_id"):
        return get_order(custom["order_id"])
    if not custom_order_payable(custom):
        raise ValidationError("Custom order is not ready for payment")
    if not charge_matches(custom.get("payment_ref"), provider_order_id, custom["price"]):
        log.warning("Payment %s does not match custom order %s", provider_order_id, custom_id)
        raise ValidationError("Payment does not match this custom order")

    claimed = collection("customorder").find_one_and_update(
        {
            "_id": to_object_id(custom_id),
            "payment_status": {"$ne": "Paid"},
            "payment_ref.provider_order_id": provider_order_id,
            "price": custom["price"],
        },
        {"$set": {"payment_status": "Paid", "updated_at": now_utc()}},
        return_document=ReturnDocument.AFTER,
    )
    if claimed is None:
        # a concurrent confirmation got here first
        current = get_custom_order(custom_id)
        if current.get("order_id"):
            return get_order(current["order_id"])
        raise ConflictError("Custom order payment is being confirmed, retry shortly")

    try:
        order = place_order(
            user_id,
            basic_items=[{"dish": custom["name"], "name": custom["name"], "price": custom["price"], "quantity": 1}],
            delivery_address=custom.get("delivery_address"),
            payment_method=ONLINE_PAYMENT,
            restaurant_id=custom["restaurant_id"],
            custom_order_id=custom_id,
        )
    except Exception:
        update_document("customorder", custom_id, {"payment_status": "Pending"})
        raise
    update_document("customorder", custom_id, {"order_id": order["_id"]})
    log.info("Custom order %s promoted to order %s", custom_id, order["_id"])
    return order
