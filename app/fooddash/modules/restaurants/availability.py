"""
Opening-hours arithmetic.

Times are "HH:MM" strings in the restaurant's local clock; callers pass `now`
in that same clock. Windows are half-open: [open, close). A close time earlier
than the open time means the window runs past midnight.
"""
from __future__ import annotations

import re
from datetime import datetime
from typing import Any

DAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
MINUTES_PER_DAY = 24 * 60

_HHMM = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")


def parse_hhmm(value: str) -> int:
    """'09:30' -> 570 (minutes since midnight)."""
    m = _HHMM.match((value or "").strip())
    if not m:
        raise ValueError(f"Invalid time '{value}' (expected HH:MM).")
    return int(m.group(1)) * 60 + int(m.group(2))


def _day_name(now: datetime, offset: int = 0) -> str:
    return DAYS[(now.weekday() + offset) % 7]


def _minutes(now: datetime) -> int:
    return now.hour * 60 + now.minute


def validate_business_hours(hours: Any) -> dict[str, dict[str, Any]] | None:
    """Normalise a business-hours mapping; raises ValueError on bad input."""
    if hours in (None, {}):
        return None
    if not isinstance(hours, dict):
        raise ValueError("business_hours must be an object keyed by weekday.")
    out: dict[str, dict[str, Any]] = {}
    for day, entry in hours.items():
        key = str(day).strip().lower()
        if key not in DAYS:
            raise ValueError(f"Unknown weekday '{day}'.")
        if not isinstance(entry, dict):
            raise ValueError(f"Hours for {key} must be an object.")
        closed = bool(entry.get("closed"))
        if closed:
            out[key] = {"open": entry.get("open") or "00:00", "close": entry.get("close") or "00:00", "closed": True}
            continue
        open_at, close_at = entry.get("open"), entry.get("close")
        parse_hhmm(open_at)
        parse_hhmm(close_at)
        if open_at == close_at:
            raise ValueError(f"Opening and closing times for {key} are identical.")
        out[key] = {"open": open_at, "close": close_at, "closed": False}
    return out


def _window(entry: dict[str, Any] | None) -> tuple[int, int] | None:
    if not entry or entry.get("closed"):
        return None
    try:
        open_t = parse_hhmm(entry.get("open", ""))
        close_t = parse_hhmm(entry.get("close", ""))
    except ValueError:
        return None
    if close_t < open_t:
        close_t += MINUTES_PER_DAY
    return open_t, close_t


def is_restaurant_open(hours: dict[str, Any] | None, now: datetime) -> bool:
    """
    No hours configured means always open. Only today's entry counts: a
    window closing after midnight also covers the early hours before today's
    opening time.
    """
    if not hours:
        return True
    window = _window(hours.get(_day_name(now)))
    if window is None:
        return False
    open_t, close_t = window
    current = _minutes(now)
    if close_t > MINUTES_PER_DAY and current < open_t:
        return current + MINUTES_PER_DAY < close_t
    return open_t <= current < close_t


def next_open_time(hours: dict[str, Any] | None, now: datetime) -> tuple[str, str] | None:
    """(weekday, 'HH:MM') of the next opening within a week, or None."""
    if not hours:
        return None
    current = _minutes(now)
    for offset in range(7):
        day = _day_name(now, offset)
        window = _window(hours.get(day))
        if window is None:
            continue
        if offset == 0 and current >= window[0]:
            continue
        return day, hours[day]["open"]
    return None


def is_menu_item_available(availability: dict[str, Any] | None, now: datetime) -> bool:
    if not availability:
        return True
    days = [str(d).lower() for d in (availability.get("available_days") or [])]
    if days and _day_name(now) not in days:
        return False
    start, until = availability.get("available_from"), availability.get("available_until")
    if start and until:
        try:
            from_t, until_t = parse_hhmm(start), parse_hhmm(until)
        except ValueError:
            return True
        current = _minutes(now)
        if current < from_t or current >= until_t:
            return False
    return True


def is_paused(paused_at: datetime | None, pause_until: datetime | None, now: datetime) -> bool:
    if paused_at is None:
        return False
    return pause_until is None or pause_until > now


def accepts_orders(restaurant: Any, now: datetime, *, utc_now: datetime | None = None) -> bool:
    """
    Active, validated, not paused, and open at `now` (local clock).
    Pauses are stored in UTC, so `utc_now` is compared against them.
    """
    if not restaurant.is_active or not restaurant.is_validated:
        return False
    if is_paused(restaurant.paused_at, restaurant.pause_until, utc_now or now):
        return False
    return is_restaurant_open(restaurant.business_hours, now)
