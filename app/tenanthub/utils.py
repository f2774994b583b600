from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping

from app.tenanthub.errors import ApiError


def utcnow() -> datetime:
    """Naive UTC timestamp (all DateTime columns are timezone=False)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def isoformat(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat() + "Z" if value.tzinfo is None else value.isoformat()


def str_field(payload: Mapping[str, Any], key: str, default: str = "") -> str:
    """Stripped string value of a JSON field; missing/null gives `default`, any other type is a 400."""
    raw = payload.get(key)
    if raw is None:
        return default
    if not isinstance(raw, str):
        raise ApiError(400, "VALIDATION_ERROR", f"{key} must be a string.", {"field": key})
    return raw.strip()


def parse_int(raw: Any, *, default: int, minimum: int | None = None, maximum: int | None = None) -> int:
    """Lenient int parsing for query-string values; clamps to [minimum, maximum]."""
    try:
        value = int(raw) if raw not in (None, "") else default
    except (TypeError, ValueError):
        value = default
    if minimum is not None and value < minimum:
        value = minimum
    if maximum is not None and value > maximum:
        value = maximum
    return value


def parse_bool(raw: Any) -> bool:
    if isinstance(raw, bool):
        return raw
    return str(raw or "").strip().lower() in ("1", "true", "yes", "on")
