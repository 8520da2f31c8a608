from typing import Annotated, Callable, Optional

from bson import ObjectId
from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from pymongo.database import Database

import config
from database import get_db
from errors import Forbidden, Unauthenticated
from security import decode_token


# ---------------------------------------------------------------------------
# 1. Token comes from the session cookie, or the Authorization header
# ---------------------------------------------------------------------------
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


def public_user(user: dict) -> dict:
    """User document without its password hash, ready for JSON."""
    return {
        "id": str(user["_id"]),
        "username": user["username"],
        "email": user["email"],
        "role": user.get("role", "user"),
        "isActive": user.get("isActive", True),
        "lastLogin": user.get("lastLogin"),
        "createdAt": user.get("createdAt"),
        "updatedAt": user.get("updatedAt"),
    }


# ---------------------------------------------------------------------------
# 2. Current user from the JWT
# ---------------------------------------------------------------------------
def get_current_user(
    request: Request,
    bearer: Annotated[Optional[str], Depends(oauth2_scheme)],
    db: Annotated[Database, Depends(get_db)],
) -> dict:
    """
    Decode the token and load the user it names.
    401 when the token is missing, expired, invalid, or the user is gone or inactive.
    """
    token = request.cookies.get(config.COOKIE_NAME) or bearer
    if not token:
        raise Unauthenticated(error="Access denied. No token provided.", code="NO_TOKEN")

    payload = decode_token(token)
    user_id = payload.get("id")
    user = None
    if user_id and ObjectId.is_valid(user_id):
        user = db["user"].find_one({"_id": ObjectId(user_id)}, {"password": 0})

    if not user or not user.get("isActive", True):
        raise Unauthenticated(error="Invalid token. User not found or inactive.", code="INVALID_USER")

    request.state.user = user
    return user


# ---------------------------------------------------------------------------
# 3. Role gates
# ---------------------------------------------------------------------------
def require_role(*allowed_roles: str) -> Callable:
    """
    Use as Depends(require_role("admin")).
    Returns the current user when the role is allowed, otherwise 403.
    """

    def _wrapper(user: Annotated[dict, Depends(get_current_user)]) -> dict:
        role = user.get("role")
        if role not in allowed_roles:
            raise Forbidden(required=list(allowed_roles), current=role)
        return user

    return _wrapper


require_admin = require_role("admin")


def require_admin_or_owner(id_field: str = "userId") -> Callable:
    """Admins pass; other users only when ``id_field`` in the path or query is their own id."""

    def _wrapper(request: Request, user: Annotated[dict, Depends(get_current_user)]) -> dict:
        owner_id = request.path_params.get(id_field) or request.query_params.get(id_field)
        if user.get("role") == "admin" or str(user["_id"]) == owner_id:
            return user
        raise Forbidden()

    return _wrapper
