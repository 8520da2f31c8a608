"""
Request validation rule sets.

A rule set is an ordered tuple of ``Rule(field, check, message, optional)``.
Every rule is evaluated and every violation is reported, so a client gets the
full list of problems in one 400 response. ``*`` in a field path expands over
list elements (``villas.*.id`` -> ``villas[0].id``, ``villas[1].id`` ...).
"""
import json
import re
from datetime import datetime
from typing import Any, Callable, Iterable, List, NamedTuple

from bson import ObjectId
from email_validator import EmailNotValidError, validate_email
from fastapi import Request

from errors import ValidationFailed
from schemas import CONTACT_STATUSES, PRIORITIES, SOURCES, VILLA_STATUSES

_MISSING = object()


class Rule(NamedTuple):
    field: str
    check: Callable[[Any], bool]
    message: str
    optional: bool = False


# ─── predicates ────────────────────────────────────────────────────────────
def _text(value) -> str:
    if value is None or value is _MISSING:
        return ""
    if isinstance(value, (dict, list)):
        return ""
    return str(value).strip()


def length(min_len: int = 0, max_len: int = None) -> Callable[[Any], bool]:
    def check(value) -> bool:
        n = len(_text(value))
        return n >= min_len and (max_len is None or n <= max_len)
    return check


def matches(pattern: str) -> Callable[[Any], bool]:
    regex = re.compile(pattern)
    return lambda value: bool(regex.search(_text(value)))


def not_empty(value) -> bool:
    return _text(value) != ""


def one_of(choices: Iterable[str]) -> Callable[[Any], bool]:
    allowed = frozenset(choices)
    return lambda value: isinstance(value, str) and value in allowed


def is_email(value) -> bool:
    try:
        validate_email(_text(value), check_deliverability=False)
    except EmailNotValidError:
        return False
    return True


def is_numeric(value) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return True
    try:
        float(_text(value))
    except ValueError:
        return False
    return True


def is_positive(value) -> bool:
    return is_numeric(value) and float(value) > 0


def number_at_least(minimum: float) -> Callable[[Any], bool]:
    return lambda value: is_numeric(value) and float(value) >= minimum


def int_between(min_value: int = None, max_value: int = None) -> Callable[[Any], bool]:
    def check(value) -> bool:
        if isinstance(value, bool):
            return False
        text = _text(value)
        if isinstance(value, int):
            number = value
        elif re.fullmatch(r"[+-]?\d+", text):
            number = int(text)
        else:
            return False
        if min_value is not None and number < min_value:
            return False
        return max_value is None or number <= max_value
    return check


def non_empty_list(value) -> bool:
    return isinstance(value, list) and len(value) > 0


def is_string_list(value) -> bool:
    return isinstance(value, list) and all(
        isinstance(item, (str, int, float)) and not isinstance(item, bool) for item in value
    )


def is_datetime(value) -> bool:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return True
    if not isinstance(value, str):
        return False
    try:
        datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return False
    return True


def unique_by(key: str) -> Callable[[Any], bool]:
    """List items carry distinct ``key`` values (items without one are ignored)."""
    def check(value) -> bool:
        if not isinstance(value, list):
            return True
        keys = [_text(item.get(key)) for item in value if isinstance(item, dict) and item.get(key) is not None]
        return len(keys) == len(set(keys))
    return check


def is_object_id(value) -> bool:
    return isinstance(value, str) and ObjectId.is_valid(value)


# ─── patterns ──────────────────────────────────────────────────────────────
USERNAME_PATTERN = r"^[a-zA-Z0-9_]+$"
PASSWORD_PATTERN = r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)"
PHONE_PATTERN = r"^[+]?[1-9][0-9]{0,15}$"
NAME_PATTERN = r"^[a-zA-Z\s]+$"
CLUSTER_ID_PATTERN = r"^[a-zA-Z0-9_-]+$"
COMBINED_ID_PATTERN = r"^[a-zA-Z0-9_-]+_[a-zA-Z0-9_-]+$"

PASSWORD_MESSAGE = "Password must contain at least one uppercase letter, one lowercase letter, and one number"

# ─── rule sets ─────────────────────────────────────────────────────────────
REGISTRATION_RULES = (
    Rule("username", length(3, 30), "Username must be between 3 and 30 characters"),
    Rule("username", matches(USERNAME_PATTERN), "Username can only contain letters, numbers, and underscores"),
    Rule("email", is_email, "Please provide a valid email address"),
    Rule("password", length(6), "Password must be at least 6 characters long"),
    Rule("password", matches(PASSWORD_PATTERN), PASSWORD_MESSAGE),
)

LOGIN_RULES = (
    Rule("email", is_email, "Please provide a valid email address"),
    Rule("password", not_empty, "Password is required"),
)

PROFILE_RULES = (
    Rule("username", length(3, 30), "Username must be between 3 and 30 characters", optional=True),
    Rule("username", matches(USERNAME_PATTERN), "Username can only contain letters, numbers, and underscores",
         optional=True),
    Rule("email", is_email, "Please provide a valid email address", optional=True),
)

CHANGE_PASSWORD_RULES = (
    Rule("currentPassword", not_empty, "Current password is required"),
    Rule("newPassword", length(6), "Password must be at least 6 characters long"),
    Rule("newPassword", matches(PASSWORD_PATTERN), PASSWORD_MESSAGE),
)

CONTACT_RULES = (
    Rule("name", length(2, 100), "Name must be between 2 and 100 characters"),
    Rule("name", matches(NAME_PATTERN), "Name can only contain letters and spaces"),
    Rule("email", is_email, "Please provide a valid email address"),
    Rule("phone", matches(PHONE_PATTERN), "Please provide a valid phone number"),
    Rule("message", length(10, 1000), "Message must be between 10 and 1000 characters"),
    Rule("interestedUnit", length(0, 200), "Interested unit cannot exceed 200 characters", optional=True),
    Rule("source", one_of(SOURCES), "Invalid source value", optional=True),
)

CLUSTER_RULES = (
    Rule("clusterName", length(2, 100), "Cluster name must be between 2 and 100 characters"),
    Rule("clusterId", length(1, 50), "Cluster ID must be between 1 and 50 characters"),
    Rule("clusterId", matches(CLUSTER_ID_PATTERN),
         "Cluster ID can only contain letters, numbers, hyphens, and underscores"),
    Rule("x", is_numeric, "X coordinate must be a number"),
    Rule("y", is_numeric, "Y coordinate must be a number"),
    Rule("description", length(0, 1000), "Description cannot exceed 1000 characters", optional=True),
    Rule("amenities", is_string_list, "Amenities must be a list of strings", optional=True),
    Rule("villas", non_empty_list, "At least one villa is required"),
    Rule("villas", unique_by("id"), "Villa IDs must be unique within a cluster"),
    Rule("villas.*.id", not_empty, "Villa ID is required"),
    Rule("villas.*.size", is_positive, "Villa size must be a positive number"),
    Rule("villas.*.type", not_empty, "Villa type is required"),
    Rule("villas.*.status", one_of(VILLA_STATUSES), "Invalid villa status value", optional=True),
    Rule("villas.*.price", number_at_least(0), "Villa price cannot be negative", optional=True),
    Rule("villas.*.bedrooms", int_between(1), "Bedrooms must be at least 1", optional=True),
    Rule("villas.*.bathrooms", int_between(1), "Bathrooms must be at least 1", optional=True),
    Rule("villas.*.description", length(0, 500), "Villa description cannot exceed 500 characters", optional=True),
    Rule("villas.*.features", is_string_list, "Features must be a list of strings", optional=True),
    Rule("villas.*.images", is_string_list, "Images must be a list of strings", optional=True),
)

VILLA_SEARCH_RULES = (
    Rule("combinedId", matches(COMBINED_ID_PATTERN), "Combined ID must be in format: clusterId_villaId"),
)

CONTACT_PATCH_RULES = (
    Rule("status", one_of(CONTACT_STATUSES), "Invalid status value", optional=True),
    Rule("priority", one_of(PRIORITIES), "Invalid priority value", optional=True),
    Rule("source", one_of(SOURCES), "Invalid source value", optional=True),
    Rule("salesComment", length(0, 500), "Sales comment cannot exceed 500 characters", optional=True),
    Rule("followUpDate", is_datetime, "Follow-up date must be a valid date", optional=True),
    Rule("tags", is_string_list, "Tags must be a list of strings", optional=True),
)

CONTACT_ID_RULES = (
    Rule("id", is_object_id, "Invalid contact ID format"),
)

BULK_UPDATE_RULES = tuple(
    rule._replace(field="updateData." + rule.field) for rule in CONTACT_PATCH_RULES
)

PAGINATION_RULES = (
    Rule("page", int_between(1), "Page must be a positive integer", optional=True),
    Rule("limit", int_between(1, 100), "Limit must be between 1 and 100", optional=True),
)


# ─── evaluation ────────────────────────────────────────────────────────────
def _resolve(data, path: List[str], prefix: str = ""):
    """Yield (field_name, value) pairs for a dotted path, expanding ``*``."""
    if not path:
        yield prefix, data
        return
    head, rest = path[0], path[1:]
    if head == "*":
        if isinstance(data, list):
            for i, item in enumerate(data):
                yield from _resolve(item, rest, f"{prefix}[{i}]")
        return
    name = f"{prefix}.{head}" if prefix else head
    value = data.get(head, _MISSING) if isinstance(data, dict) else _MISSING
    yield from _resolve(value, rest, name)


def field_path(loc) -> str:
    """Render a pydantic error location the way rule paths read: ``villas[0].price``."""
    path = ""
    for part in loc:
        if isinstance(part, int):
            path += f"[{part}]"
        elif part != "body":
            path = f"{path}.{part}" if path else str(part)
    return path


def validate(rules: Iterable[Rule], data: dict) -> List[dict]:
    """Run every rule against ``data`` and return all violations."""
    errors = []
    for rule in rules:
        for field, value in _resolve(data, rule.field.split(".")):
            if rule.optional and (value is _MISSING or value is None):
                continue
            if not rule.check(value):
                errors.append({
                    "field": field,
                    "message": rule.message,
                    "value": None if value is _MISSING else value,
                })
    return errors


def check(rules: Iterable[Rule], data: dict) -> dict:
    errors = validate(rules, data)
    if errors:
        raise ValidationFailed(errors)
    return data


# ─── FastAPI dependencies ──────────────────────────────────────────────────
async def _json_body(request: Request) -> dict:
    raw = await request.body()
    if not raw:
        return {}
    try:
        body = json.loads(raw)
    except ValueError:
        raise ValidationFailed([{"field": "body", "message": "Body must be valid JSON", "value": None}])
    if not isinstance(body, dict):
        raise ValidationFailed([{"field": "body", "message": "Body must be a JSON object", "value": None}])
    return body


def validate_body(rules) -> Callable:
    """Depends(validate_body(RULES)) -> the validated JSON body."""

    async def dependency(request: Request) -> dict:
        return check(rules, await _json_body(request))

    return dependency


def validate_query(rules) -> Callable:
    def dependency(request: Request) -> dict:
        return check(rules, dict(request.query_params))

    return dependency


def validate_path(rules) -> Callable:
    def dependency(request: Request) -> dict:
        return check(rules, dict(request.path_params))

    return dependency


def validate_request(path_rules, body_rules) -> Callable:
    """Path and body rules evaluated together into one error list."""

    async def dependency(request: Request) -> dict:
        body = await _json_body(request)
        errors = validate(path_rules, dict(request.path_params)) + validate(body_rules, body)
        if errors:
            raise ValidationFailed(errors)
        return body

    return dependency
