import logging
import logging.config
import os
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel
from starlette.concurrency import run_in_threadpool

import auth
import cart
import catalog
import custom_orders
import database
import orders
import payments
from auth import current_user, require_admin, require_role
from errors import AppError, ValidationError
from schemas import BasicItem, DeliveryAddress, Nutrition

logging.config.dictConfig({
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "simple": {
            "format": "[%(levelname)s] %(asctime)s %(name)s: %(message)s",
        }
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "simple",
        }
    },
    "root": {"handlers": ["console"], "level": os.getenv("LOG_LEVEL", "INFO")},
    "loggers": {
        "uvicorn.access": {"level": "WARNING"},
    },
})

log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is not None:
        database.ensure_indexes()
    yield


app = FastAPI(title="Food Ordering API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ===================== Error handlers =====================
@app.exception_handler(AppError)
def handle_app_error(request, exc: AppError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(RequestValidationError)
def handle_request_validation(request, exc: RequestValidationError):
    errors = [{"loc": list(e["loc"]), "msg": e["msg"]} for e in exc.errors()]
    return JSONResponse(status_code=400, content={"detail": errors})


@app.exception_handler(Exception)
def handle_unexpected(request, exc: Exception):
    log.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


class CamelModel(BaseModel):
    """Request body accepting both camelCase and snake_case keys."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ===================== Public Endpoints =====================
@app.get("/")
def root():
    return {"message": "Food Ordering API running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        if database.db is not None:
            response["database"] = "✅ Available"
            response["connection_status"] = "Connected"
            response["collections"] = database.db.list_collection_names()
        else:
            response["database"] = "⚠️  Available but not initialized"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
    response["database_name"] = "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set"
    return response


# ===================== Auth & Users =====================
class SignupRequest(BaseModel):
    name: str
    email: EmailStr
    phone: Optional[str] = None
    password: str = Field(..., min_length=6)
    role: str = "customer"


class LoginRequest(BaseModel):
    email: EmailStr
    password: str
    role: Optional[str] = None


class ProfileUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    password: Optional[str] = None


@app.post("/auth/signup", status_code=201)
def signup(payload: SignupRequest):
    if payload.role not in auth.ROLES:
        raise ValidationError("Invalid role")
    return auth.signup(payload.name, payload.email, payload.password, phone=payload.phone, role=payload.role)


@app.post("/auth/login")
def login(payload: LoginRequest):
    return auth.login(payload.email, payload.password, role=payload.role)


@app.get("/users/profile")
def get_profile(user: dict = Depends(current_user)):
    return auth.get_profile(user)


@app.put("/users/profile")
def update_profile(payload: ProfileUpdate, user: dict = Depends(current_user)):
    return auth.update_profile(user, **payload.model_dump())


@app.get("/users/stats")
def user_stats(user: dict = Depends(require_admin)):
    return auth.user_stats()


# ===================== Restaurants & Dishes =====================
class RestaurantCreate(CamelModel):
    owner_id: str
    name: str
    address: Optional[str] = None
    description: Optional[str] = None
    cuisine: Optional[str] = None
    image_url: Optional[str] = None
    phone: Optional[str] = None


class RestaurantUpdate(CamelModel):
    name: Optional[str] = None
    address: Optional[str] = None
    description: Optional[str] = None
    cuisine: Optional[str] = None
    image_url: Optional[str] = None
    phone: Optional[str] = None


class DishCreate(CamelModel):
    name: str
    description: Optional[str] = None
    price: float = Field(..., gt=0)
    image_url: Optional[str] = None
    is_available: bool = True
    nutrition: Optional[Nutrition] = None
    diet_types: List[str] = []
    health_goals: List[str] = []
    prep_time: Optional[int] = Field(None, ge=0)


class DishUpdate(CamelModel):
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = None
    image_url: Optional[str] = None
    is_available: Optional[bool] = None
    nutrition: Optional[Nutrition] = None
    diet_types: Optional[List[str]] = None
    health_goals: Optional[List[str]] = None
    prep_time: Optional[int] = None


class StatusUpdate(CamelModel):
    order_status: str


@app.get("/restaurants")
def list_restaurants():
    return catalog.list_restaurants()


@app.post("/admin/restaurants", status_code=201)
def create_restaurant(payload: RestaurantCreate, user: dict = Depends(require_admin)):
    fields = payload.model_dump(exclude={"owner_id"}, exclude_none=True)
    return catalog.create_restaurant(payload.owner_id, **fields)


@app.get("/restaurants/profile")
def get_restaurant_profile(user: dict = Depends(require_role("restaurant"))):
    return catalog.restaurant_for_owner(user)


@app.put("/restaurants/profile")
def update_restaurant_profile(payload: RestaurantUpdate, user: dict = Depends(require_role("restaurant"))):
    return catalog.update_restaurant_profile(user, payload.model_dump(exclude_none=True))


@app.get("/restaurants/menu")
def get_restaurant_menu(user: dict = Depends(require_role("restaurant"))):
    restaurant = catalog.restaurant_for_owner(user)
    return catalog.dishes_for_restaurant(restaurant["_id"])


@app.post("/restaurants/menu", status_code=201)
def add_dish(payload: DishCreate, user: dict = Depends(require_role("restaurant"))):
    return catalog.add_dish(user, payload.model_dump(exclude_none=True))


@app.put("/restaurants/menu/{dish_id}")
def update_dish(dish_id: str, payload: DishUpdate, user: dict = Depends(require_role("restaurant"))):
    return catalog.update_dish(user, dish_id, payload.model_dump(exclude_none=True))


@app.delete("/restaurants/menu/{dish_id}")
def delete_dish(dish_id: str, user: dict = Depends(require_role("restaurant"))):
    catalog.delete_dish(user, dish_id)
    return {"message": "Dish removed"}


@app.get("/restaurants/orders")
def get_restaurant_orders(user: dict = Depends(require_role("restaurant"))):
    restaurant = catalog.restaurant_for_owner(user)
    return orders.restaurant_orders(restaurant["_id"])


@app.get("/restaurants/orders/report/completed")
def completed_orders_report(user: dict = Depends(require_role("restaurant"))):
    restaurant = catalog.restaurant_for_owner(user)
    return orders.restaurant_orders(restaurant["_id"], status="delivered")


@app.put("/restaurants/orders/{order_id}/status")
def restaurant_update_order_status(order_id: str, payload: StatusUpdate, user: dict = Depends(require_role("restaurant"))):
    return orders.update_order_status(order_id, payload.order_status, user)


@app.get("/restaurants/{restaurant_id}/dishes")
def get_dishes_by_restaurant(restaurant_id: str):
    return catalog.dishes_for_restaurant(restaurant_id)


@app.get("/restaurants/{restaurant_id}")
def get_restaurant(restaurant_id: str):
    return catalog.get_restaurant(restaurant_id)


@app.get("/dishes/random")
def random_dishes():
    return catalog.random_dishes()


# ===================== Cart =====================
class CartAdd(CamelModel):
    dish_id: str
    quantity: int = 1


class CartUpdate(CamelModel):
    line_id: str
    quantity: int


@app.post("/cart")
def add_to_cart(payload: CartAdd, user: dict = Depends(current_user)):
    return cart.add_item(user["_id"], payload.dish_id, payload.quantity)


@app.get("/cart")
def get_cart(user: dict = Depends(current_user)):
    return cart.get_cart(user["_id"])


@app.put("/cart")
def update_cart(payload: CartUpdate, user: dict = Depends(current_user)):
    return cart.set_quantity(user["_id"], payload.line_id, payload.quantity)


@app.delete("/cart")
def clear_cart(user: dict = Depends(current_user)):
    cart.clear(user["_id"])
    return {"message": "Cart cleared successfully"}


# ===================== Orders =====================
class OrderLine(BaseModel):
    dish: str
    qty: int = Field(..., ge=1)
    # client-side copies, never used for pricing
    name: Optional[str] = None
    price: Optional[float] = None


class CreateOrderRequest(CamelModel):
    order_items: List[OrderLine] = []
    basic_items: List[BasicItem] = []
    delivery_address: DeliveryAddress
    estimated_time: Optional[int] = None
    payment_method: str
    payment_status: Optional[str] = None
    total_price: Optional[float] = None
    restaurant: Optional[str] = None


@app.post("/orders", status_code=201)
def create_order(payload: CreateOrderRequest, user: dict = Depends(current_user)):
    return orders.place_order(
        user["_id"],
        order_items=[line.model_dump(include={"dish", "qty"}) for line in payload.order_items],
        basic_items=[item.model_dump() for item in payload.basic_items],
        delivery_address=payload.delivery_address.model_dump(),
        payment_method=payload.payment_method,
        estimated_time=payload.estimated_time,
        restaurant_id=payload.restaurant,
    )


@app.get("/orders/myorders")
def get_my_orders(user: dict = Depends(current_user)):
    return orders.my_orders(user["_id"])


@app.get("/orders/deliverypartner")
def get_delivery_partner_orders(user: dict = Depends(require_role("delivery"))):
    return orders.delivery_partner_orders(user["_id"])


@app.get("/orders/all")
def get_all_orders(user: dict = Depends(require_admin)):
    return orders.all_orders()


@app.get("/orders/{order_id}")
def get_order(order_id: str, user: dict = Depends(current_user)):
    return orders.get_order_for(user, order_id)


@app.put("/orders/{order_id}/status")
def update_order_status(order_id: str, payload: StatusUpdate, user: dict = Depends(current_user)):
    return orders.update_order_status(order_id, payload.order_status, user)


@app.post("/admin/orders/reconcile")
def reconcile_orders(user: dict = Depends(require_admin)):
    return orders.reconcile_restaurant_stats()


# ===================== Custom Orders =====================
class CustomOrderCreate(CamelModel):
    restaurant: str
    name: str
    default_ingredients: List[str] = []
    extra_ingredients: Optional[str] = None
    special_instructions: Optional[str] = None
    delivery_address: Optional[DeliveryAddress] = None


class CustomOrderStatusUpdate(CamelModel):
    status: str
    price: Optional[float] = None


@app.post("/custom-orders", status_code=201)
def create_custom_order(payload: CustomOrderCreate, user: dict = Depends(current_user)):
    address = payload.delivery_address.model_dump() if payload.delivery_address else None
    return custom_orders.create_custom_order(
        user["_id"],
        payload.restaurant,
        payload.name,
        default_ingredients=payload.default_ingredients,
        extra_ingredients=payload.extra_ingredients,
        special_instructions=payload.special_instructions,
        delivery_address=address,
    )


@app.get("/custom-orders/myorders")
def get_my_custom_orders(user: dict = Depends(current_user)):
    return custom_orders.my_custom_orders(user["_id"])


@app.get("/custom-orders/restaurant")
def get_restaurant_custom_orders(user: dict = Depends(require_role("restaurant"))):
    return custom_orders.restaurant_custom_orders(user)


@app.put("/custom-orders/{custom_order_id}/status")
def update_custom_order_status(custom_order_id: str, payload: CustomOrderStatusUpdate,
                               user: dict = Depends(require_role("restaurant"))):
    return custom_orders.update_custom_order_status(custom_order_id, payload.status, user, price=payload.price)


# ===================== Payments =====================
class ChargeRequest(CamelModel):
    amount: Optional[float] = Field(None, gt=0)
    currency: Optional[str] = None
    order: Optional[str] = None


class VerifyRequest(CamelModel):
    order_id: str
    payment_id: str
    signature: str
    order: Optional[str] = None


class CustomChargeRequest(CamelModel):
    custom_order_id: str
    currency: Optional[str] = None


class CustomVerifyRequest(CamelModel):
    order_id: str
    payment_id: str
    signature: str
    custom_order_id: str


@app.post("/payment/order")
def create_payment_order(payload: ChargeRequest, user: dict = Depends(current_user)):
    if payload.order:
        order = orders.chargeable_order(payload.order, user["_id"])
        charge = payments.create_charge(order["total_price"], payload.currency)
        orders.attach_charge(order["_id"], payments.payment_ref(charge))
        return charge
    if payload.amount is None:
        raise ValidationError("Either an order or an amount is required")
    return payments.create_charge(payload.amount, payload.currency)


@app.post("/payment/verify")
def verify_payment(payload: VerifyRequest, user: dict = Depends(current_user)):
    if not payments.verify_signature(payload.order_id, payload.payment_id, payload.signature):
        raise ValidationError("Payment verification failed")
    response = {"message": "Payment verified successfully"}
    if payload.order:
        response["order"] = orders.mark_order_paid(payload.order, user["_id"], payload.order_id)
    return response


@app.post("/payment/custom-order")
def create_custom_order_payment(payload: CustomChargeRequest, user: dict = Depends(current_user)):
    custom = custom_orders.payable_custom_order(payload.custom_order_id, user["_id"])
    charge = payments.create_charge(custom["price"], payload.currency)
    custom_orders.attach_charge(custom["_id"], payments.payment_ref(charge))
    return charge


@app.post("/payment/custom-order/verify")
def verify_custom_order_payment(payload: CustomVerifyRequest, user: dict = Depends(current_user)):
    if not payments.verify_signature(payload.order_id, payload.payment_id, payload.signature):
        raise ValidationError("Payment verification failed")
    order = custom_orders.promote_to_order(payload.custom_order_id, user["_id"], payload.order_id)
    return {"message": "Payment verified successfully", "order": order}


def settle_intent(intent) -> Optional[dict]:
    """Apply a succeeded PaymentIntent to the order or custom order carrying its charge."""
    provider_order_id = intent["id"]
    order = orders.order_for_charge(provider_order_id)
    target = order or custom_orders.custom_order_for_charge(provider_order_id)
    if target is None:
        log.warning("[payment] No order carries provider charge %s", provider_order_id)
        return None
    if intent["amount_received"] != target["payment_ref"]["amount"]:
        log.warning("[payment] Charge %s received %s, expected %s", provider_order_id,
                    intent["amount_received"], target["payment_ref"]["amount"])
        return None
    if order is not None:
        return orders.mark_order_paid(order["_id"], order["user_id"], provider_order_id)
    return custom_orders.promote_to_order(target["_id"], target["user_id"], provider_order_id)


@app.post("/payment/webhook")
async def payment_webhook(request: Request):
    event = payments.parse_webhook(await request.body(), request.headers.get("stripe-signature"))
    if event["type"] == payments.PAYMENT_SUCCEEDED:
        await run_in_threadpool(settle_intent, event["data"]["object"])
    return {"received": True}


# ===================== Schema Export for Docs =====================
@app.get("/schema")
def get_schema():
    return {
        "collections": [
            "user",
            "restaurant",
            "dish",
            "cart",
            "order",
            "customorder"
        ],
        "notes": "Each class in schemas.py maps to a MongoDB collection (lowercase)."
    }


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
