import re
from datetime import date

from flask import request

from ..errors import ValidationError

DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def get_json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def require_fields(data: dict, *names: str) -> dict:
    missing = {name: "required" for name in names if data.get(name) in (None, "")}
    if missing:
        raise ValidationError(f"Missing required fields ({', '.join(missing)})", fields=missing)
    return data


def require_string(data: dict, name: str, max_length: int = 255) -> str:
    value = data.get(name)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{name} is required", fields={name: "required"})
    if len(value) > max_length:
        raise ValidationError(f"{name} is too long", fields={name: f"max {max_length} characters"})
    return value.strip()


def parse_date(value, name: str) -> date:
    if not isinstance(value, str) or not DATE_RE.match(value):
        raise ValidationError(f"{name} must be YYYY-MM-DD", fields={name: "expected YYYY-MM-DD"})
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValidationError(f"{name} is not a valid date", fields={name: "invalid date"})


def parse_time(value, name: str) -> str:
    if not isinstance(value, str) or not TIME_RE.match(value):
        raise ValidationError(f"{name} must be HH:MM", fields={name: "expected HH:MM"})
    return value


def parse_limit(value, default: int, maximum: int) -> int:
    if value in (None, ""):
        return default
    try:
        limit = int(value)
    except (TypeError, ValueError):
        raise ValidationError("limit must be an integer", fields={"limit": "integer"})
    if limit < 1:
        raise ValidationError("limit must be positive", fields={"limit": "minimum 1"})
    return min(limit, maximum)
