import logging
import sys
import time
import traceback
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Annotated

from bson import ObjectId
from fastapi import Depends, FastAPI, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError
from starlette.exceptions import HTTPException as StarletteHTTPException

import accounts
import clusters
import config
import contacts
import database
from auth import get_current_user, public_user, require_admin, require_admin_or_owner
from database import get_db
from errors import ApiError
from validation import (
    BULK_UPDATE_RULES,
    CHANGE_PASSWORD_RULES,
    CLUSTER_RULES,
    CONTACT_ID_RULES,
    CONTACT_PATCH_RULES,
    CONTACT_RULES,
    LOGIN_RULES,
    PAGINATION_RULES,
    PROFILE_RULES,
    REGISTRATION_RULES,
    VILLA_SEARCH_RULES,
    field_path,
    validate_body,
    validate_path,
    validate_query,
    validate_request,
)

# ─── LOGGING ───────────────────────────────────────────────────────────────
handlers = [logging.StreamHandler(sys.stdout)]
if config.LOG_FILE:
    handlers.append(logging.FileHandler(config.LOG_FILE))
logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s: %(message)s",
    handlers=handlers,
)
logger = logging.getLogger(__name__)

STARTED = time.monotonic()

DB = Annotated[Database, Depends(get_db)]
Admin = Annotated[dict, Depends(require_admin)]
CurrentUser = Annotated[dict, Depends(get_current_user)]


@asynccontextmanager
async def lifespan(app: FastAPI):
    database.ensure_indexes(database.db)
    logger.info("Server starting on port %s in %s mode", config.PORT, config.ENV)
    yield
    logger.info("Shutting down gracefully...")
    database.close()


app = FastAPI(title="EastVille Backend API", version=config.APP_VERSION, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[config.CORS_ORIGIN],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Utility

def serialize(obj):
    """ObjectIds to strings, datetimes to ISO strings."""
    return jsonable_encoder(obj, custom_encoder={ObjectId: str})


def set_token_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        config.COOKIE_NAME,
        token,
        max_age=config.JWT_EXPIRES_MINUTES * 60,
        httponly=config.is_production(),
        secure=config.is_production(),
        samesite="lax",
    )


# ─── MIDDLEWARE & ERROR HANDLERS ───────────────────────────────────────────
@app.middleware("http")
async def log_requests(request: Request, call_next):
    response = await call_next(request)
    user = getattr(request.state, "user", None)
    logger.info(
        "%s %s %s ip=%s user_agent=%s user=%s",
        request.method, request.url.path, response.status_code,
        request.client.host if request.client else None,
        request.headers.get("user-agent"),
        user and str(user["_id"]),
    )
    return response


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError):
    return JSONResponse(status_code=exc.status_code, content=serialize(exc.to_dict()))


def _field_errors(errors) -> list:
    return [
        {
            "field": field_path(err["loc"]),
            "message": err["msg"],
            "value": err.get("input"),
        }
        for err in errors
    ]


@app.exception_handler(ValidationError)
async def schema_error_handler(request: Request, exc: ValidationError):
    body = {"error": "Validation failed", "details": _field_errors(exc.errors())}
    return JSONResponse(status_code=400, content=serialize(body))


@app.exception_handler(RequestValidationError)
async def request_error_handler(request: Request, exc: RequestValidationError):
    body = {"error": "Validation failed", "details": _field_errors(exc.errors())}
    return JSONResponse(status_code=400, content=serialize(body))


@app.exception_handler(DuplicateKeyError)
async def duplicate_key_handler(request: Request, exc: DuplicateKeyError):
    return JSONResponse(status_code=400, content={"error": "Duplicate field value entered"})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    message = f"Not Found - {request.url.path}" if exc.status_code == 404 else exc.detail
    return JSONResponse(status_code=exc.status_code, content={"error": message})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    user = getattr(request.state, "user", None)
    logger.error(
        "Error occurred: %s url=%s method=%s ip=%s user_agent=%s user=%s",
        exc, request.url, request.method,
        request.client.host if request.client else None,
        request.headers.get("user-agent"),
        user and str(user["_id"]),
        exc_info=exc,
    )
    body = {"error": "Internal Server Error"}
    if not config.is_production():
        body["stack"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return JSONResponse(status_code=500, content=body)


# ─── ROOT & HEALTH ─────────────────────────────────────────────────────────
@app.get("/health", tags=["Health"])
def health_check():
    return {
        "status": "OK",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": time.monotonic() - STARTED,
        "environment": config.ENV,
        "version": config.APP_VERSION,
    }


@app.get("/api", include_in_schema=False)
def api_index():
    return {
        "message": "EastVille Backend API",
        "version": config.APP_VERSION,
        "endpoints": {
            "auth": "/api/auth",
            "clusters": "/api/clusters",
            "contacts": "/api/contacts",
        },
    }


# ─── AUTH ──────────────────────────────────────────────────────────────────
@app.post("/api/auth/register", status_code=201, tags=["Auth"])
def register(response: Response, db: DB, payload: dict = Depends(validate_body(REGISTRATION_RULES))):
    user, token = accounts.register(db, payload["username"], payload["email"], payload["password"])
    set_token_cookie(response, token)
    return serialize({"message": "User registered successfully!", "user": public_user(user), "token": token})


@app.post("/api/auth/login", tags=["Auth"])
def login(response: Response, db: DB, payload: dict = Depends(validate_body(LOGIN_RULES))):
    user, token = accounts.login(db, payload["email"], payload["password"])
    set_token_cookie(response, token)
    return serialize({"message": "Login successful", "user": public_user(user), "token": token})


@app.post("/api/auth/logout", tags=["Auth"])
def logout(response: Response):
    # Stateless: the token itself stays valid until it expires.
    response.delete_cookie(config.COOKIE_NAME)
    logger.info("User logged out")
    return {"message": "Logged out successfully!"}


@app.get("/api/auth/profile", tags=["Auth"])
def get_profile(user: CurrentUser):
    return serialize({"user": public_user(user)})


@app.put("/api/auth/profile", tags=["Auth"])
def update_profile(user: CurrentUser, db: DB, payload: dict = Depends(validate_body(PROFILE_RULES))):
    updated = accounts.update_profile(db, user, payload.get("username"), payload.get("email"))
    return serialize({"message": "Profile updated successfully", "user": public_user(updated)})


@app.put("/api/auth/change-password", tags=["Auth"])
def change_password(user: CurrentUser, db: DB, payload: dict = Depends(validate_body(CHANGE_PASSWORD_RULES))):
    accounts.change_password(db, user, payload["currentPassword"], payload["newPassword"])
    return {"message": "Password changed successfully"}


@app.get("/api/auth/users/{userId}", tags=["Auth"])
def get_user(userId: str, db: DB, _: dict = Depends(require_admin_or_owner("userId"))):
    return serialize({"user": public_user(accounts.get_user(db, userId))})


# ─── CLUSTERS ──────────────────────────────────────────────────────────────
@app.get("/api/clusters", tags=["Clusters"])
def list_clusters(db: DB, query: dict = Depends(validate_query(PAGINATION_RULES))):
    items = clusters.list_clusters(db, query.get("status"), query.get("search"))
    return serialize({"clusters": items})


@app.get("/api/clusters/stats", tags=["Clusters"])
def cluster_stats(db: DB):
    return serialize(clusters.cluster_stats(db))


@app.get("/api/clusters/clusterId/{clusterId}", tags=["Clusters"])
def get_cluster(clusterId: str, db: DB):
    cluster = clusters.get_cluster(db, clusterId)
    logger.info("Retrieved cluster: %s", clusterId)
    return serialize({"cluster": cluster, "stats": clusters.villa_stats(cluster)})


@app.get("/api/clusters/villa/search/{combinedId}", tags=["Clusters"])
def search_villa(combinedId: str, db: DB, _: dict = Depends(validate_path(VILLA_SEARCH_RULES))):
    return serialize(clusters.search_villa(db, combinedId))


@app.post("/api/clusters", status_code=201, tags=["Clusters"])
def create_cluster(admin: Admin, db: DB, payload: dict = Depends(validate_body(CLUSTER_RULES))):
    cluster = clusters.create_cluster(db, payload, admin)
    return serialize({
        "message": "Cluster created successfully!",
        "cluster": cluster,
        "stats": clusters.villa_stats(cluster),
    })


@app.put("/api/clusters/{clusterId}", tags=["Clusters"])
def update_cluster(clusterId: str, admin: Admin, db: DB, payload: dict = Depends(validate_body(CLUSTER_RULES))):
    cluster = clusters.update_cluster(db, clusterId, payload, admin)
    return serialize({
        "message": "Cluster updated successfully!",
        "cluster": cluster,
        "stats": clusters.villa_stats(cluster),
    })


@app.delete("/api/clusters/{clusterId}", tags=["Clusters"])
def delete_cluster(clusterId: str, admin: Admin, db: DB):
    clusters.delete_cluster(db, clusterId, admin)
    return {"message": "Cluster deleted successfully!"}


# ─── CONTACTS ──────────────────────────────────────────────────────────────
@app.post("/api/contacts", status_code=201, tags=["Contacts"])
def create_contact(db: DB, payload: dict = Depends(validate_body(CONTACT_RULES))):
    contact = contacts.create_contact(db, payload)
    return serialize({
        "message": "Your message has been received! We will get back to you soon.",
        "contact": contacts.summary(contact),
    })


@app.get("/api/contacts", tags=["Contacts"])
def list_contacts(admin: Admin, db: DB, query: dict = Depends(validate_query(PAGINATION_RULES))):
    result = contacts.list_contacts(
        db,
        status=query.get("status"),
        priority=query.get("priority"),
        source=query.get("source"),
        search=query.get("search"),
        page=int(query.get("page", 1)),
        limit=int(query.get("limit", contacts.DEFAULT_LIMIT)),
        sort_by=query.get("sortBy", "createdAt"),
        sort_order=query.get("sortOrder", "desc"),
    )
    return serialize(result)


@app.get("/api/contacts/stats", tags=["Contacts"])
def contact_stats(admin: Admin, db: DB):
    return serialize(contacts.contact_stats(db))


@app.get("/api/contacts/export", tags=["Contacts"])
def export_contacts(admin: Admin, db: DB, request: Request):
    params = request.query_params
    fmt = params.get("format", "json")
    filters = {key: params.get(key) for key in ("status", "priority", "source")}
    items = contacts.export_contacts(db, **filters)
    logger.info("Exported %d contacts in %s format", len(items), fmt)

    if fmt == "csv":
        return Response(
            content=contacts.to_csv(items),
            media_type="text/csv",
            headers={"Content-Disposition": "attachment; filename=contacts.csv"},
        )
    return serialize({
        "contacts": items,
        "exportInfo": {"total": len(items), "filters": filters, "exportedAt": datetime.now(timezone.utc)},
    })


@app.put("/api/contacts/bulk/update", tags=["Contacts"])
def bulk_update_contacts(admin: Admin, db: DB, payload: dict = Depends(validate_body(BULK_UPDATE_RULES))):
    modified = contacts.bulk_update(db, payload.get("contactIds"), payload.get("updateData") or {}, admin)
    return {"message": f"Successfully updated {modified} contacts", "modifiedCount": modified}


@app.get("/api/contacts/{id}", tags=["Contacts"])
def get_contact(id: str, admin: Admin, db: DB):
    contact = contacts.get_contact(db, id)
    logger.info("Retrieved contact: %s", id)
    return serialize({"contact": contact})


@app.put("/api/contacts/{id}", tags=["Contacts"])
def update_contact(id: str, admin: Admin, db: DB,
                   payload: dict = Depends(validate_request(CONTACT_ID_RULES, CONTACT_PATCH_RULES))):
    contact = contacts.update_contact(db, id, payload, admin)
    return serialize({"message": "Contact updated successfully", "contact": contact})


@app.delete("/api/contacts/{id}", tags=["Contacts"])
def delete_contact(id: str, admin: Admin, db: DB):
    contacts.delete_contact(db, id, admin)
    return {"message": "Contact deleted successfully"}


# ─── Uvicorn LAUNCH ────────────────────────────────────────────────────────
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
