"""
Order placement engine and order queries.

Placing an order never trusts client pricing: every line is rebuilt from
the catalog and the total is recomputed here. The owning restaurant's
``total_orders``/``total_revenue`` move exactly once per persisted order:
one update on the restaurant document increments both counters and records
the order id in ``counted_orders``, and skips orders already recorded there.
The order's ``stats_applied`` flag is set afterwards, so an order still
flagged False is always safe to hand to ``reconcile_restaurant_stats``.
With MONGO_TRANSACTIONS enabled the insert and the increment share one
transaction.
"""
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List, Optional

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from catalog import get_dishes_by_ids, get_restaurant
from codes import order_code
from database import (
    collection,
    create_document,
    get_document_by_id,
    get_documents,
    now_utc,
    serialize_doc,
    to_object_id,
    transaction,
)
from errors import ConflictError, Forbidden, IntegrityError, NotFound, ValidationError
from payments import charge_matches, to_minor_units
from schemas import BasicItem, Order, OrderItem
from workflow import is_order_party, order_transition

log = logging.getLogger(__name__)

CASH_ON_DELIVERY = "cod"
CENTS = Decimal("0.01")
NEWEST_FIRST = [("created_at", -1)]
INSERT_ATTEMPTS = 3
# most recent order ids kept per restaurant in counted_orders
COUNTED_ORDERS_KEPT = 5000


def _money(value) -> Decimal:
    return Decimal(str(value))


def build_line_items(order_items: Iterable[dict]) -> List[dict]:
    """Snapshot each requested dish from the catalog; one unknown dish fails the lot."""
    order_items = list(order_items)
    dishes = get_dishes_by_ids(str(item["dish"]) for item in order_items)
    lines = []
    for item in order_items:
        qty = item.get("qty")
        if not isinstance(qty, int) or isinstance(qty, bool) or qty < 1:
            raise ValidationError("Item quantity must be a positive integer")
        dish = dishes.get(str(item["dish"]))
        if dish is None:
            raise NotFound(f"Dish not found for ID: {item['dish']}")
        if not dish.get("is_available", True):
            raise ValidationError(f"Dish is not available: {dish['name']}")
        lines.append(OrderItem(
            dish=dish["_id"],
            restaurant_id=dish["restaurant_id"],
            name=dish["name"],
            price=dish["price"],
            image_url=dish.get("image_url"),
            qty=qty,
        ).model_dump())
    return lines


def compute_total(lines: List[dict], basic_items: List[dict]) -> float:
    total = sum((_money(line["price"]) * line["qty"] for line in lines), Decimal(0))
    total += sum((_money(item["price"]) * item["quantity"] for item in basic_items), Decimal(0))
    return float(total.quantize(CENTS, rounding=ROUND_HALF_UP))


def _order_restaurant(lines: List[dict], restaurant_id: Optional[str]) -> str:
    if lines:
        if len({line["restaurant_id"] for line in lines}) > 1:
            raise ValidationError("All items in an order must come from the same restaurant")
        restaurant_id = lines[0]["restaurant_id"]
    elif not restaurant_id:
        raise ValidationError("A restaurant is required for orders without menu items")
    return get_restaurant(restaurant_id)["_id"]


def _code_taken(code: str) -> bool:
    return collection("order").count_documents({"order_code": code}, limit=1) > 0


def place_order(
    user_id: str,
    order_items: Optional[List[dict]] = None,
    basic_items: Optional[List[dict]] = None,
    delivery_address: Optional[dict] = None,
    payment_method: str = CASH_ON_DELIVERY,
    estimated_time: Optional[int] = None,
    restaurant_id: Optional[str] = None,
    custom_order_id: Optional[str] = None,
) -> dict:
    basic_items = [BasicItem(**item).model_dump() for item in basic_items or []]
    if not order_items and not basic_items:
        raise ValidationError("No order items")

    lines = build_line_items(order_items or [])
    restaurant_id = _order_restaurant(lines, restaurant_id)
    total = compute_total(lines, basic_items)
    now = now_utc()
    order = Order(
        user_id=user_id,
        restaurant_id=restaurant_id,
        order_code=order_code(_code_taken),
        order_items=lines,
        basic_items=basic_items,
        delivery_address=delivery_address,
        total_price=total,
        payment_method=payment_method,
        payment_status="Pending" if payment_method == CASH_ON_DELIVERY else "Paid",
        order_status="pending",
        estimated_time=estimated_time,
        custom_order_id=custom_order_id,
        status_history=[{"status": "pending", "by": user_id, "at": now}],
    )

    for attempt in range(1, INSERT_ATTEMPTS + 1):
        try:
            with transaction() as session:
                transactional = session is not None
                order_id = create_document("order", order, session=session)
                if transactional:
                    apply_restaurant_stats(order_id, session=session)
            break
        except DuplicateKeyError:
            log.warning("Order code %s already taken (attempt %d)", order.order_code, attempt)
            if attempt == INSERT_ATTEMPTS:
                raise ConflictError("Order code collision, please retry")
            order.order_code = order_code(_code_taken)

    if not transactional:
        try:
            apply_restaurant_stats(order_id)
        except IntegrityError:
            log.exception(
                "Order %s persisted but restaurant %s aggregates were not updated; flagged for reconciliation",
                order_id, restaurant_id,
            )

    log.info("Order %s placed (code=%s, restaurant=%s, total=%.2f)", order_id, order.order_code, restaurant_id, total)
    return get_document_by_id("order", order_id)


# ===================== Restaurant aggregates =====================

def _count_on_restaurant(order: dict, session=None) -> bool:
    """Increment the restaurant counters for ``order`` unless its id is already in the ledger."""
    restaurants = collection("restaurant")
    restaurant_oid = to_object_id(order["restaurant_id"])
    order_id = str(order["_id"])
    result = restaurants.update_one(
        {"_id": restaurant_oid, "counted_orders": {"$ne": order_id}},
        {
            "$inc": {"total_orders": 1, "total_revenue": order["total_price"]},
            "$push": {"counted_orders": {"$each": [order_id], "$slice": -COUNTED_ORDERS_KEPT}},
        },
        session=session,
    )
    if result.matched_count:
        return True
    if not restaurants.count_documents({"_id": restaurant_oid}, limit=1, session=session):
        raise IntegrityError(f"Restaurant {order['restaurant_id']} missing for order {order_id}")
    return False


def apply_restaurant_stats(order_id: str, session=None) -> bool:
    """Add one order and its total to the restaurant counters, at most once per order.

    Returns False when the order was already counted.
    """
    oid = to_object_id(order_id)
    orders = collection("order")
    order = orders.find_one({"_id": oid}, session=session)
    if order is None:
        raise NotFound("Order not found")
    if order.get("stats_applied"):
        return False
    try:
        counted = _count_on_restaurant(order, session=session)
        orders.update_one({"_id": oid}, {"$set": {"stats_applied": True}}, session=session)
    except PyMongoError as exc:
        raise IntegrityError(f"Could not update restaurant stats for order {order_id}") from exc
    if counted:
        log.info("Restaurant %s stats: +1 order, +%.2f revenue", order["restaurant_id"], order["total_price"])
    return counted


def reconcile_restaurant_stats(limit: Optional[int] = None) -> dict:
    """Apply aggregates for every order still flagged as not counted."""
    pending = get_documents("order", {"stats_applied": False}, limit=limit, sort=[("created_at", 1)])
    applied, failed = 0, []
    for order in pending:
        try:
            if apply_restaurant_stats(order["_id"]):
                applied += 1
        except IntegrityError:
            log.exception("Reconciliation failed for order %s", order["_id"])
            failed.append(order["_id"])
    log.info("Reconciled restaurant stats: %d applied, %d failed", applied, len(failed))
    return {"checked": len(pending), "applied": applied, "failed": failed}


# ===================== Queries =====================

def get_order(order_id: str) -> dict:
    order = get_document_by_id("order", order_id)
    if not order:
        raise NotFound("Order not found")
    return order


def get_order_for(user: dict, order_id: str) -> dict:
    order = get_order(order_id)
    restaurant = get_document_by_id("restaurant", order["restaurant_id"], {"owner_id": 1})
    if not is_order_party(order, user, restaurant):
        raise Forbidden("Not authorized to view this order")
    return order


def my_orders(user_id: str) -> List[dict]:
    return get_documents("order", {"user_id": user_id}, sort=NEWEST_FIRST)


def delivery_partner_orders(user_id: str) -> List[dict]:
    return get_documents("order", {
        "$or": [
            {"order_status": "ready"},
            {"delivery_partner_id": user_id, "order_status": {"$in": ["on-the-way", "delivered"]}},
        ],
    }, sort=NEWEST_FIRST)


def all_orders() -> List[dict]:
    return get_documents("order", {}, sort=NEWEST_FIRST)


def restaurant_orders(restaurant_id: str, status: Optional[str] = None) -> List[dict]:
    filt = {"restaurant_id": restaurant_id}
    if status:
        filt["order_status"] = status
    return get_documents("order", filt, sort=NEWEST_FIRST)


# ===================== Mutations =====================

def update_order_status(order_id: str, new_status: str, user: dict) -> dict:
    order = get_order(order_id)
    restaurant = get_document_by_id("restaurant", order["restaurant_id"])
    changes = order_transition(order, new_status, user, restaurant)
    if changes is None:
        return order
    now = now_utc()
    changes["updated_at"] = now
    doc = collection("order").find_one_and_update(
        {"_id": to_object_id(order_id), "order_status": order["order_status"]},
        {"$set": changes, "$push": {"status_history": {"status": new_status, "by": user["_id"], "at": now}}},
        return_document=ReturnDocument.AFTER,
    )
    if doc is None:
        raise ConflictError("Order status changed meanwhile, reload and retry")
    log.info("Order %s: %s -> %s by %s", order_id, order["order_status"], new_status, user["_id"])
    return serialize_doc(doc)


def _own_order(order_id: str, user_id: str) -> dict:
    order = get_order(order_id)
    if order["user_id"] != user_id:
        raise NotFound("Order not found")
    return order


def chargeable_order(order_id: str, user_id: str) -> dict:
    order = _own_order(order_id, user_id)
    if order["payment_status"] == "Paid":
        raise ValidationError("Order is already paid")
    if order["order_status"] == "cancelled":
        raise ValidationError("Order is cancelled")
    return order


def attach_charge(order_id: str, ref: dict) -> None:
    """Record the provider charge that may settle this order."""
    collection("order").update_one(
        {"_id": to_object_id(order_id), "payment_status": {"$ne": "Paid"}},
        {"$set": {"payment_ref": ref, "updated_at": now_utc()}},
    )


def order_for_charge(provider_order_id: str) -> Optional[dict]:
    found = get_documents("order", {"payment_ref.provider_order_id": provider_order_id}, limit=1)
    return found[0] if found else None


def mark_order_paid(order_id: str, user_id: str, provider_order_id: str) -> dict:
    """Mark the caller's order paid once ``provider_order_id`` is proven to cover its total."""
    order = _own_order(order_id, user_id)
    if order["payment_status"] == "Paid":
        return order
    if not charge_matches(order.get("payment_ref"), provider_order_id, order["total_price"]):
        log.warning("Payment %s does not match order %s", provider_order_id, order_id)
        raise ValidationError("Payment does not match this order")
    doc = collection("order").find_one_and_update(
        {
            "_id": to_object_id(order_id),
            "payment_ref.provider_order_id": provider_order_id,
            "payment_ref.amount": to_minor_units(order["total_price"]),
        },
        {"$set": {"payment_status": "Paid", "updated_at": now_utc()}},
        return_document=ReturnDocument.AFTER,
    )
    if doc is None:
        raise ConflictError("Order payment changed meanwhile, reload and retry")
    log.info("Order %s paid through %s", order_id, provider_order_id)
    return serialize_doc(doc)
