"""
Users and the request identity.

Authentication stays tokenless: signup/login hand back the user id and
authenticated requests send it in the ``X-User-Id`` header.
"""
import logging
import os
from typing import Optional

from fastapi import Depends, Header
from passlib.context import CryptContext
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from database import collection, create_document, get_document_by_id, get_documents, now_utc, serialize_doc, to_object_id
from errors import AuthError, ConflictError, Forbidden
from schemas import User

log = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

ROLES = ("customer", "restaurant", "delivery", "admin")


def user_summary(user: dict) -> dict:
    return {
        "_id": user["_id"],
        "name": user["name"],
        "email": user["email"],
        "phone": user.get("phone") or "",
        "role": user.get("role", "customer"),
        "is_admin": user.get("is_admin", False),
        "restaurant_id": user.get("restaurant_id"),
    }


def signup(name: str, email: str, password: str, phone: Optional[str] = None, role: str = "customer") -> dict:
    if get_documents("user", {"email": email}, limit=1):
        raise ConflictError("User already exists")
    admin_email = os.getenv("ADMIN_EMAIL", "")
    if admin_email and email.lower().strip() == admin_email.lower().strip():
        role = "admin"
    elif role == "admin":
        raise Forbidden("Admin accounts cannot be self-registered")
    user = User(
        name=name,
        email=email,
        phone=phone,
        password_hash=pwd_context.hash(password),
        role=role,
        is_admin=role == "admin",
    )
    try:
        user_id = create_document("user", user)
    except DuplicateKeyError:
        raise ConflictError("User already exists")
    log.info("Registered user %s with role %s", user_id, role)
    return user_summary(get_document_by_id("user", user_id))


def login(email: str, password: str, role: Optional[str] = None) -> dict:
    users = get_documents("user", {"email": email}, limit=1)
    if not users or not pwd_context.verify(password, users[0]["password_hash"]):
        raise AuthError("Invalid email or password")
    user = users[0]
    if role and user.get("role") != role:
        raise AuthError("Invalid role selected for this user.")
    return user_summary(user)


def get_profile(user: dict) -> dict:
    profile = user_summary(user)
    profile["restaurant_name"] = None
    if user.get("restaurant_id"):
        restaurant = get_document_by_id("restaurant", user["restaurant_id"])
        if restaurant:
            profile["restaurant_name"] = restaurant["name"]
    return profile


def update_profile(user: dict, name: Optional[str] = None, email: Optional[str] = None,
                   phone: Optional[str] = None, password: Optional[str] = None) -> dict:
    changes = {
        "name": name or user["name"],
        "email": email or user["email"],
        "phone": phone or user.get("phone"),
        "updated_at": now_utc(),
    }
    if password:
        changes["password_hash"] = pwd_context.hash(password)
    try:
        doc = collection("user").find_one_and_update(
            {"_id": to_object_id(user["_id"])}, {"$set": changes}, return_document=ReturnDocument.AFTER
        )
    except DuplicateKeyError:
        raise ConflictError("Email already registered")
    return get_profile(serialize_doc(doc))


def user_stats() -> dict:
    users = collection("user")
    return {
        "total_users": users.count_documents({}),
        "active_restaurants": users.count_documents({"restaurant_id": {"$ne": None}}),
        "delivery_partners": users.count_documents({"role": "delivery"}),
    }


# ===================== Dependencies =====================

def current_user(x_user_id: Optional[str] = Header(None)) -> dict:
    if not x_user_id:
        raise AuthError("Not authorized, no user id")
    user = get_document_by_id("user", x_user_id)
    if not user or not user.get("is_active", True):
        raise AuthError("Not authorized, unknown user")
    return user


def require_role(*roles: str):
    def dependency(user: dict = Depends(current_user)) -> dict:
        if user.get("role") not in roles and not user.get("is_admin"):
            raise Forbidden("Not authorized for this action")
        return user
    return dependency


def require_admin(user: dict = Depends(current_user)) -> dict:
    if not user.get("is_admin"):
        raise Forbidden("Not authorized as an admin")
    return user
