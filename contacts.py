"""
Contact inquiries and their triage by admins.

Status moves Pending -> In Progress -> Resolved, with Cancelled reachable from
either open state. Transitions are not policed: any status is accepted from
any prior status. Every admin change stamps ``updatedBy`` with a copy of the
acting user, which is not refreshed if that user changes later.
"""
import logging
import math
import re
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.database import Database

from database import create_document, get_documents
from errors import BadRequest, NotFound
from schemas import CONTACT_STATUSES, Contact as ContactSchema, ContactPatch, UpdatedBy, status_key

logger = logging.getLogger(__name__)

PUBLIC_FIELDS = ("name", "email", "phone", "interestedUnit", "message", "source")
SEARCH_FIELDS = ("name", "email", "phone", "message", "interestedUnit")
CSV_HEADER = "Name,Email,Phone,Interested Unit,Message,Status,Priority,Source,Created At\n"

DEFAULT_LIMIT = 10
MAX_LIMIT = 100


def summary(contact: dict) -> dict:
    return {
        "id": contact["_id"],
        "name": contact["name"],
        "email": contact["email"],
        "phone": contact["phone"],
        "status": contact["status"],
        "priority": contact["priority"],
        "createdAt": contact["createdAt"],
        "interestedUnit": contact.get("interestedUnit"),
    }


def _object_id(contact_id) -> Optional[ObjectId]:
    if isinstance(contact_id, ObjectId):
        return contact_id
    if isinstance(contact_id, str) and ObjectId.is_valid(contact_id):
        return ObjectId(contact_id)
    return None


def _stamp(patch: dict, actor: dict) -> dict:
    stamped = dict(patch)
    stamped["updatedBy"] = UpdatedBy(
        username=actor["username"],
        email=actor["email"],
        user_id=str(actor["_id"]),
    ).model_dump(by_alias=True)
    stamped["updatedAt"] = datetime.now(timezone.utc)
    return stamped


def build_filter(status: Optional[str] = None, priority: Optional[str] = None,
                 source: Optional[str] = None, search: Optional[str] = None) -> dict:
    query = {}
    if status:
        query["status"] = status
    if priority:
        query["priority"] = priority
    if source:
        query["source"] = source
    if search:
        pattern = re.escape(search)
        query["$or"] = [{field: {"$regex": pattern, "$options": "i"}} for field in SEARCH_FIELDS]
    return query


def create_contact(db: Database, data: dict) -> dict:
    contact = ContactSchema.model_validate({k: data[k] for k in PUBLIC_FIELDS if data.get(k) is not None})
    doc = create_document(db, "contact", contact)
    logger.info("New contact inquiry created: %s", doc["email"])
    return doc


def list_contacts(db: Database, status: Optional[str] = None, priority: Optional[str] = None,
                  source: Optional[str] = None, search: Optional[str] = None,
                  page: int = 1, limit: int = DEFAULT_LIMIT,
                  sort_by: str = "createdAt", sort_order: str = "desc") -> dict:
    page = max(int(page), 1)
    limit = min(max(int(limit), 1), MAX_LIMIT)
    query = build_filter(status, priority, source, search)
    direction = DESCENDING if sort_order == "desc" else ASCENDING

    items = list(
        db["contact"].find(query)
        .sort(sort_by or "createdAt", direction)
        .skip((page - 1) * limit)
        .limit(limit)
    )
    total = db["contact"].count_documents(query)

    logger.info("Retrieved %d contacts", len(items))
    return {
        "contacts": items,
        "pagination": {
            "current": page,
            "total": math.ceil(total / limit),
            "hasNext": page * limit < total,
            "hasPrev": page > 1,
            "totalItems": total,
        },
    }


def get_contact(db: Database, contact_id) -> dict:
    oid = _object_id(contact_id)
    contact = db["contact"].find_one({"_id": oid}) if oid else None
    if not contact:
        raise NotFound("The requested contact does not exist", error="Contact not found")
    return contact


def update_contact(db: Database, contact_id, data: dict, actor: dict) -> dict:
    patch = ContactPatch.model_validate(data).to_update()
    oid = _object_id(contact_id)
    contact = None
    if oid:
        contact = db["contact"].find_one_and_update(
            {"_id": oid},
            {"$set": _stamp(patch, actor)},
            return_document=ReturnDocument.AFTER,
        )
    if not contact:
        raise NotFound("The requested contact does not exist", error="Contact not found")

    logger.info("Contact updated: %s by user: %s", contact["_id"], actor["email"])
    return contact


def delete_contact(db: Database, contact_id, actor: dict) -> None:
    oid = _object_id(contact_id)
    result = db["contact"].delete_one({"_id": oid}) if oid else None
    if not result or result.deleted_count == 0:
        raise NotFound("The requested contact does not exist", error="Contact not found")
    logger.info("Contact deleted: %s by user: %s", oid, actor["email"])


def bulk_update(db: Database, contact_ids, data: dict, actor: dict) -> int:
    """Apply one patch to many contacts; returns how many were modified.

    Unknown or malformed ids are skipped. Not atomic across documents.
    """
    if not isinstance(contact_ids, list) or not contact_ids:
        raise BadRequest("Contact IDs array is required", error="Invalid request")

    patch = ContactPatch.model_validate(data or {}).to_update()
    ids = [oid for oid in map(_object_id, contact_ids) if oid is not None]
    if not ids:
        return 0

    result = db["contact"].update_many({"_id": {"$in": ids}}, {"$set": _stamp(patch, actor)})
    logger.info("Bulk updated %d contacts by user: %s", result.modified_count, actor["email"])
    return result.modified_count


def _group_counts(db: Database, field: str) -> list:
    pipeline = [{"$group": {"_id": f"${field}", "count": {"$sum": 1}}}]
    return list(db["contact"].aggregate(pipeline))


def contact_stats(db: Database, now: Optional[datetime] = None) -> dict:
    status_stats = {"total": 0}
    status_stats.update({status_key(s): 0 for s in CONTACT_STATUSES})
    for group in _group_counts(db, "status"):
        status_stats["total"] += group["count"]
        if group["_id"]:
            status_stats[status_key(group["_id"])] = group["count"]

    since = (now or datetime.now(timezone.utc)) - timedelta(days=7)
    days = Counter(
        doc["createdAt"].strftime("%Y-%m-%d")
        for doc in db["contact"].find({"createdAt": {"$gte": since}}, {"createdAt": 1})
    )

    logger.info("Contact statistics retrieved")
    return {
        "statusStats": status_stats,
        "priorityStats": _group_counts(db, "priority"),
        "sourceStats": _group_counts(db, "source"),
        "recentActivity": [{"_id": day, "count": days[day]} for day in sorted(days)],
    }


def export_contacts(db: Database, status: Optional[str] = None, priority: Optional[str] = None,
                    source: Optional[str] = None) -> list:
    query = build_filter(status, priority, source)
    return get_documents(db, "contact", query, sort=[("createdAt", DESCENDING)])


def to_csv(contacts: Iterable[dict]) -> str:
    # Values are quoted but embedded quotes are left as-is; missing values are empty.
    rows = []
    for c in contacts:
        created = c.get("createdAt")
        values = [
            c.get("name"),
            c.get("email"),
            c.get("phone"),
            c.get("interestedUnit"),
            c.get("message"),
            c.get("status"),
            c.get("priority"),
            c.get("source"),
            created.isoformat() if isinstance(created, datetime) else created,
        ]
        rows.append(",".join('"{}"'.format("" if v is None else v) for v in values))
    return CSV_HEADER + "\n".join(rows)
