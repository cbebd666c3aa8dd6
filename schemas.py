"""
Database Schemas for the Food Ordering Service

Each Pydantic model below corresponds to a MongoDB collection.
The collection name is the lowercase class name (e.g., User -> "user").
References between collections are stored as string ids.
"""
from typing import List, Optional, Literal
from pydantic import BaseModel, Field, EmailStr

Role = Literal["customer", "restaurant", "delivery", "admin"]
OrderStatus = Literal["pending", "preparing", "ready", "on-the-way", "delivered", "cancelled"]
CustomOrderStatus = Literal["pending", "accepted", "rejected", "in-progress", "completed"]
PaymentStatus = Literal["Pending", "Paid"]


class User(BaseModel):
    name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Unique email address")
    phone: Optional[str] = None
    password_hash: str = Field(..., description="BCrypt password hash")
    role: Role = "customer"
    is_admin: bool = Field(False, description="Admin privileges")
    restaurant_id: Optional[str] = Field(None, description="Restaurant owned by this user")
    is_active: bool = True


class Restaurant(BaseModel):
    owner_id: str = Field(..., description="Reference to the owning user _id")
    name: str
    address: Optional[str] = None
    description: Optional[str] = None
    cuisine: Optional[str] = None
    image_url: Optional[str] = None
    phone: Optional[str] = None
    total_orders: int = Field(0, ge=0)
    total_revenue: float = Field(0.0, ge=0)
    counted_orders: List[str] = Field([], description="Ids of the latest orders already in the counters")
    is_active: bool = True


class Nutrition(BaseModel):
    calories: Optional[float] = None
    protein: Optional[float] = None
    carbs: Optional[float] = None
    fat: Optional[float] = None


class Dish(BaseModel):
    restaurant_id: str = Field(..., description="Reference to restaurant _id")
    name: str
    description: Optional[str] = None
    price: float = Field(..., gt=0)
    image_url: Optional[str] = None
    is_available: bool = True
    nutrition: Nutrition = Field(default_factory=Nutrition)
    diet_types: List[str] = []
    health_goals: List[str] = []
    prep_time: Optional[int] = Field(None, ge=0, description="Preparation time in minutes")


class CartLine(BaseModel):
    line_id: str
    dish: str = Field(..., description="Reference to dish _id")
    quantity: int = Field(..., ge=1)


class Cart(BaseModel):
    user_id: str
    items: List[CartLine] = []


class DeliveryAddress(BaseModel):
    address: str
    city: Optional[str] = None
    pincode: Optional[str] = None
    phone: Optional[str] = None


class OrderItem(BaseModel):
    """Snapshot of a dish at the moment the order was placed."""
    dish: str
    restaurant_id: str
    name: str
    price: float
    image_url: Optional[str] = None
    qty: int = Field(..., ge=1)


class BasicItem(BaseModel):
    dish: Optional[str] = Field(None, description="Free-form label, not a catalog reference")
    name: str
    price: float = Field(..., ge=0)
    quantity: int = Field(1, ge=1)


class PaymentRef(BaseModel):
    """Provider charge a payment confirmation must match."""
    provider_order_id: str
    amount: int = Field(..., gt=0, description="Charged amount in minor units")
    currency: str


class Order(BaseModel):
    user_id: str
    restaurant_id: str
    order_code: str = Field(..., description="Human-friendly 6 character code")
    order_items: List[OrderItem] = []
    basic_items: List[BasicItem] = []
    delivery_address: Optional[DeliveryAddress] = None
    total_price: float = Field(..., ge=0)
    payment_method: str
    payment_status: PaymentStatus = "Pending"
    order_status: OrderStatus = "pending"
    estimated_time: Optional[int] = Field(None, description="Estimated delivery time in minutes")
    delivery_partner_id: Optional[str] = None
    custom_order_id: Optional[str] = None
    payment_ref: Optional[PaymentRef] = None
    stats_applied: bool = Field(False, description="Restaurant aggregates include this order")
    status_history: List[dict] = []


class Customorder(BaseModel):
    user_id: str
    restaurant_id: str
    name: str = Field(..., description="Name of the requested recipe")
    default_ingredients: List[str] = []
    extra_ingredients: Optional[str] = None
    special_instructions: Optional[str] = None
    delivery_address: Optional[DeliveryAddress] = None
    status: CustomOrderStatus = "pending"
    price: float = Field(0.0, ge=0)
    payment_status: PaymentStatus = "Pending"
    payment_ref: Optional[PaymentRef] = None
    order_id: Optional[str] = Field(None, description="Regular order created once paid")
