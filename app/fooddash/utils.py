from __future__ import annotations

import json
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any
from zoneinfo import ZoneInfo

from flask import current_app, has_app_context, request

MAX_PAGE_SIZE = 100
DEFAULT_TIMEZONE = "Africa/Brazzaville"


def request_payload() -> dict[str, Any]:
    """JSON body when present, otherwise form fields."""
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    return request.form.to_dict()


def clean_str(value: Any) -> str | None:
    if value is None:
        return None
    v = str(value).strip()
    return v or None


def parse_date(value: Any) -> date | None:
    """Parse YYYY-MM-DD; empty -> None; invalid -> ValueError."""
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    s = str(value).strip()
    if not s:
        return None
    try:
        return date.fromisoformat(s)
    except ValueError:
        raise ValueError(f"Invalid date '{s}' (expected YYYY-MM-DD).") from None


def parse_datetime(value: Any) -> datetime | None:
    """Parse ISO 8601 timestamps; naive UTC is stored."""
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    s = str(value).strip()
    if not s:
        return None
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        raise ValueError(f"Invalid timestamp '{value}'.") from None
    if dt.tzinfo is not None:
        dt = (dt - dt.utcoffset()).replace(tzinfo=None)  # type: ignore[operator]
    return dt


def parse_decimal(value: Any, *, field: str = "amount", minimum: Decimal | None = None) -> Decimal | None:
    if value in (None, ""):
        return None
    try:
        d = Decimal(str(value).strip().replace(",", "."))
    except (InvalidOperation, ValueError):
        raise ValueError(f"{field} must be a number.") from None
    if not d.is_finite():
        raise ValueError(f"{field} must be a number.")
    if minimum is not None and d < minimum:
        raise ValueError(f"{field} must be at least {minimum}.")
    return d


def parse_int(value: Any, *, field: str = "value", minimum: int | None = None, maximum: int | None = None) -> int | None:
    if value in (None, ""):
        return None
    try:
        i = int(str(value).strip())
    except ValueError:
        raise ValueError(f"{field} must be an integer.") from None
    if minimum is not None and i < minimum:
        raise ValueError(f"{field} must be at least {minimum}.")
    if maximum is not None and i > maximum:
        raise ValueError(f"{field} must be at most {maximum}.")
    return i


def parse_bool(value: Any, default: bool = False) -> bool:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def parse_json_object(raw: Any, *, field: str = "value") -> dict | None:
    """Accept a dict or a JSON string encoding an object."""
    if raw in (None, ""):
        return None
    if isinstance(raw, dict):
        return raw
    try:
        value = json.loads(raw)
    except (TypeError, json.JSONDecodeError) as e:
        raise ValueError(f"{field} JSON is invalid: {e}") from None
    if not isinstance(value, dict):
        raise ValueError(f"{field} must be a JSON object.")
    return value


def money(value: Decimal | int | float | None) -> float:
    if value is None:
        return 0.0
    return float(Decimal(value).quantize(Decimal("0.01")))


def iso(value: date | datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def page_args() -> tuple[int, int]:
    """(page, per_page) from the query string, bounded."""
    page = max(1, request.args.get("page", 1, type=int) or 1)
    per_page = request.args.get("per_page", 25, type=int) or 25
    per_page = max(1, min(per_page, MAX_PAGE_SIZE))
    return page, per_page


def local_now(utc_now: datetime | None = None) -> datetime:
    """Naive wall-clock time in the business timezone (opening hours, 'today')."""
    tz_name = DEFAULT_TIMEZONE
    if has_app_context():
        tz_name = current_app.config.get("BUSINESS_TIMEZONE") or DEFAULT_TIMEZONE
    base = (utc_now or datetime.utcnow()).replace(tzinfo=ZoneInfo("UTC"))
    return base.astimezone(ZoneInfo(tz_name)).replace(tzinfo=None)
