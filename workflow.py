"""
Status state machines for regular and custom orders.

Regular orders::

    pending -> preparing -> ready -> on-the-way -> delivered
    (any non-terminal status) -> cancelled

Each edge names who may take it. The functions here are pure: they look at
the order, the acting user and the owning restaurant and either return the
fields to write or raise.
"""
from typing import Optional

from errors import Forbidden, ValidationError

ORDER_STATUSES = ("pending", "preparing", "ready", "on-the-way", "delivered", "cancelled")
TERMINAL_STATUSES = frozenset({"delivered", "cancelled"})

# next status -> role allowed to take the edge
ORDER_TRANSITIONS = {
    "pending": {"preparing": "restaurant", "cancelled": "customer"},
    "preparing": {"ready": "restaurant", "cancelled": "customer"},
    "ready": {"on-the-way": "delivery", "cancelled": "customer"},
    "on-the-way": {"delivered": "delivery", "cancelled": "admin"},
}

CUSTOM_ORDER_STATUSES = ("pending", "accepted", "rejected", "in-progress", "completed")
CUSTOM_ORDER_TRANSITIONS = {
    "pending": {"accepted", "rejected"},
    "accepted": {"in-progress"},
    "in-progress": {"completed"},
}
CUSTOM_ORDER_PAYABLE = frozenset({"accepted", "in-progress", "completed"})


def _is_admin(user: dict) -> bool:
    return bool(user.get("is_admin")) or user.get("role") == "admin"


def _owns_restaurant(user: dict, restaurant: Optional[dict]) -> bool:
    return restaurant is not None and restaurant.get("owner_id") == user["_id"]


def is_order_party(order: dict, user: dict, restaurant: Optional[dict]) -> bool:
    """Customer, owning restaurant, assigned partner, admin, or a partner who may claim it."""
    if _is_admin(user) or user["_id"] in (order["user_id"], order.get("delivery_partner_id")):
        return True
    if _owns_restaurant(user, restaurant):
        return True
    return (
        user.get("role") == "delivery"
        and order["order_status"] == "ready"
        and not order.get("delivery_partner_id")
    )


def order_transition(order: dict, new_status: str, user: dict, restaurant: Optional[dict]) -> Optional[dict]:
    """Return the fields to set for ``order`` moving to ``new_status``.

    None means the order is already in that status and nothing changes.
    """
    if not is_order_party(order, user, restaurant):
        raise Forbidden("Not authorized to update this order")
    if new_status not in ORDER_STATUSES:
        raise ValidationError(f"Unknown order status: {new_status}")
    current = order["order_status"]
    if new_status == current:
        return None
    allowed = ORDER_TRANSITIONS.get(current, {})
    if new_status not in allowed:
        raise ValidationError(f"Cannot move order from {current} to {new_status}")

    actor = allowed[new_status]
    if actor == "restaurant":
        if not _owns_restaurant(user, restaurant):
            raise Forbidden("Only the restaurant that received the order can do this")
    elif actor == "delivery":
        if user.get("role") != "delivery":
            raise Forbidden("Only delivery partners can do this")
        assigned = order.get("delivery_partner_id")
        if new_status == "delivered" and assigned != user["_id"]:
            raise Forbidden("Order is assigned to another delivery partner")
    elif actor == "customer":
        if not (_is_admin(user) or order["user_id"] == user["_id"]):
            raise Forbidden("Only the customer or an admin can cancel this order")
    elif not _is_admin(user):
        raise Forbidden("Only an admin can cancel an order on its way")

    changes = {"order_status": new_status}
    if new_status == "on-the-way":
        changes["delivery_partner_id"] = user["_id"]
    return changes


def custom_order_transition(custom_order: dict, new_status: str, user: dict, restaurant: Optional[dict],
                            price: Optional[float] = None) -> Optional[dict]:
    if new_status not in CUSTOM_ORDER_STATUSES:
        raise ValidationError(f"Unknown custom order status: {new_status}")
    if not _owns_restaurant(user, restaurant):
        raise Forbidden("Only the restaurant that received the request can do this")
    current = custom_order["status"]
    if new_status == current:
        return None
    if new_status not in CUSTOM_ORDER_TRANSITIONS.get(current, set()):
        raise ValidationError(f"Cannot move custom order from {current} to {new_status}")

    changes = {"status": new_status}
    if new_status == "accepted":
        if price is None or price <= 0:
            raise ValidationError("A positive price is required to accept a custom order")
        changes["price"] = float(price)
    return changes


def custom_order_payable(custom_order: dict) -> bool:
    return (
        custom_order["status"] in CUSTOM_ORDER_PAYABLE
        and custom_order.get("price", 0) > 0
        and custom_order.get("payment_status") != "Paid"
    )
