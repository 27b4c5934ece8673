from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from app.fooddash.modules.restaurants.availability import (
    accepts_orders,
    is_menu_item_available,
    is_paused,
    is_restaurant_open,
    next_open_time,
    parse_hhmm,
    validate_business_hours,
)

# 2026-03-02 is a Monday
MONDAY_NOON = datetime(2026, 3, 2, 12, 0)

HOURS = {
    "monday": {"open": "09:00", "close": "22:00", "closed": False},
    "tuesday": {"open": "18:00", "close": "02:00", "closed": False},
    "wednesday": {"open": "09:00", "close": "22:00", "closed": True},
}


def test_parse_hhmm():
    assert parse_hhmm("09:30") == 570
    assert parse_hhmm("0:05") == 5
    with pytest.raises(ValueError):
        parse_hhmm("24:00")
    with pytest.raises(ValueError):
        parse_hhmm("9h30")


def test_no_hours_means_always_open():
    assert is_restaurant_open(None, MONDAY_NOON) is True
    assert is_restaurant_open({}, MONDAY_NOON) is True


def test_window_is_half_open():
    assert is_restaurant_open(HOURS, MONDAY_NOON.replace(hour=9, minute=0)) is True
    assert is_restaurant_open(HOURS, MONDAY_NOON.replace(hour=21, minute=59)) is True
    assert is_restaurant_open(HOURS, MONDAY_NOON.replace(hour=22, minute=0)) is False
    assert is_restaurant_open(HOURS, MONDAY_NOON.replace(hour=8, minute=59)) is False


def test_window_past_midnight_counts_on_its_own_day():
    tuesday_early = datetime(2026, 3, 3, 1, 0)
    tuesday_late = datetime(2026, 3, 3, 23, 30)
    tuesday_afternoon = datetime(2026, 3, 3, 15, 0)
    assert is_restaurant_open(HOURS, tuesday_early) is True
    assert is_restaurant_open(HOURS, tuesday_late) is True
    assert is_restaurant_open(HOURS, tuesday_early.replace(hour=2)) is False
    assert is_restaurant_open(HOURS, tuesday_afternoon) is False


def test_closed_day_stays_closed_after_previous_late_window():
    wednesday_early = datetime(2026, 3, 4, 1, 30)
    assert is_restaurant_open(HOURS, wednesday_early) is False


def test_missing_day_is_closed():
    thursday = datetime(2026, 3, 5, 12, 0)
    assert is_restaurant_open(HOURS, thursday) is False


def test_next_open_time():
    assert next_open_time(HOURS, MONDAY_NOON.replace(hour=7)) == ("monday", "09:00")
    assert next_open_time(HOURS, MONDAY_NOON) == ("tuesday", "18:00")
    assert next_open_time(None, MONDAY_NOON) is None


def test_next_open_time_scans_one_week():
    monday_only = {"monday": {"open": "09:00", "close": "17:00", "closed": False}}
    assert next_open_time(monday_only, MONDAY_NOON.replace(hour=8)) == ("monday", "09:00")
    # Next Monday is seven days out, past the scan.
    assert next_open_time(monday_only, MONDAY_NOON) is None


def test_validate_business_hours():
    assert validate_business_hours(None) is None
    out = validate_business_hours({"Monday": {"open": "09:00", "close": "17:00"}, "sunday": {"closed": True}})
    assert out["monday"] == {"open": "09:00", "close": "17:00", "closed": False}
    assert out["sunday"]["closed"] is True
    with pytest.raises(ValueError):
        validate_business_hours({"funday": {"open": "09:00", "close": "17:00"}})
    with pytest.raises(ValueError):
        validate_business_hours({"monday": {"open": "09:00", "close": "09:00"}})
    with pytest.raises(ValueError):
        validate_business_hours(["monday"])


def test_menu_item_availability():
    lunch = {"available_days": ["monday", "tuesday"], "available_from": "11:00", "available_until": "15:00"}
    assert is_menu_item_available(None, MONDAY_NOON) is True
    assert is_menu_item_available(lunch, MONDAY_NOON) is True
    assert is_menu_item_available(lunch, MONDAY_NOON.replace(hour=15)) is False
    assert is_menu_item_available(lunch, datetime(2026, 3, 4, 12, 0)) is False


def test_pause_until_time_passes():
    paused_at = MONDAY_NOON - timedelta(hours=1)
    assert is_paused(None, None, MONDAY_NOON) is False
    assert is_paused(paused_at, None, MONDAY_NOON) is True
    assert is_paused(paused_at, MONDAY_NOON + timedelta(minutes=1), MONDAY_NOON) is True
    assert is_paused(paused_at, MONDAY_NOON, MONDAY_NOON) is False


def _restaurant(**overrides):
    base = dict(is_active=True, is_validated=True, paused_at=None, pause_until=None, business_hours=HOURS)
    base.update(overrides)
    return SimpleNamespace(**base)


def test_accepts_orders_requires_every_condition():
    assert accepts_orders(_restaurant(), MONDAY_NOON) is True
    assert accepts_orders(_restaurant(is_validated=False), MONDAY_NOON) is False
    assert accepts_orders(_restaurant(is_active=False), MONDAY_NOON) is False
    assert accepts_orders(_restaurant(paused_at=MONDAY_NOON - timedelta(minutes=5)), MONDAY_NOON) is False
    assert accepts_orders(_restaurant(), MONDAY_NOON.replace(hour=23)) is False
