import logging
from datetime import datetime, timezone
from typing import Optional, Tuple

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import create_document
from errors import AccountDisabled, BadRequest, Conflict, InvalidCredentials, NotFound
from schemas import User as UserSchema
from security import create_access_token, hash_password, verify_password

logger = logging.getLogger(__name__)


def register(db: Database, username: str, email: str, password: str) -> Tuple[dict, str]:
    email = email.strip().lower()
    username = username.strip()

    # Pre-check gives a precise message; the unique indexes decide races.
    existing = db["user"].find_one({"$or": [{"email": email}, {"username": username}]})
    if existing:
        details = "Email already registered" if existing["email"] == email else "Username already taken"
        raise Conflict(details, error="User already exists")

    user = UserSchema(username=username, email=email, password=hash_password(password))
    try:
        doc = create_document(db, "user", user)
    except DuplicateKeyError:
        raise Conflict("Email or username already registered", error="User already exists")

    logger.info("New user registered: %s", doc["email"])
    return doc, create_access_token(doc)


def login(db: Database, email: str, password: str) -> Tuple[dict, str]:
    user = db["user"].find_one({"email": email.strip().lower()})
    if not verify_password(password, user.get("password") if user else None):
        raise InvalidCredentials()
    if not user.get("isActive", True):
        raise AccountDisabled()

    now = datetime.now(timezone.utc)
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"lastLogin": now}})
    user["lastLogin"] = now

    logger.info("User logged in: %s", user["email"])
    return user, create_access_token(user)


def get_user(db: Database, user_id) -> dict:
    if isinstance(user_id, str):
        if not ObjectId.is_valid(user_id):
            raise NotFound(error="User not found")
        user_id = ObjectId(user_id)
    user = db["user"].find_one({"_id": user_id}, {"password": 0})
    if not user:
        raise NotFound(error="User not found")
    return user


def update_profile(db: Database, user: dict, username: Optional[str] = None,
                   email: Optional[str] = None) -> dict:
    update = {}
    if username:
        update["username"] = username.strip()
    if email:
        update["email"] = email.strip().lower()

    if "email" in update and update["email"] != user["email"]:
        if db["user"].find_one({"email": update["email"], "_id": {"$ne": user["_id"]}}):
            raise Conflict("This email is already registered by another user", error="Email already taken")
    if "username" in update and update["username"] != user["username"]:
        if db["user"].find_one({"username": update["username"], "_id": {"$ne": user["_id"]}}):
            raise Conflict("This username is already in use", error="Username already taken")

    update["updatedAt"] = datetime.now(timezone.utc)
    try:
        updated = db["user"].find_one_and_update(
            {"_id": user["_id"]},
            {"$set": update},
            projection={"password": 0},
            return_document=ReturnDocument.AFTER,
        )
    except DuplicateKeyError:
        raise Conflict("This username is already in use", error="Username already taken")
    if not updated:
        raise NotFound(error="User not found")

    logger.info("User profile updated: %s", updated["email"])
    return updated


def change_password(db: Database, user: dict, current_password: str, new_password: str) -> None:
    stored = db["user"].find_one({"_id": user["_id"]})
    if not stored or not verify_password(current_password, stored.get("password")):
        raise BadRequest(error="Current password is incorrect")

    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"password": hash_password(new_password), "updatedAt": datetime.now(timezone.utc)}},
    )
    logger.info("Password changed for user: %s", stored["email"])
