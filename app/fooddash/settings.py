"""
Platform settings: admin-editable business tunables stored as JSON values.
Reads fall back to DEFAULTS so a fresh database behaves sensibly before seeding.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy.orm import Session

from app.fooddash.audit import record_event
from app.fooddash.models import PlatformSetting, User

# key -> (category, default, description)
DEFAULTS: dict[str, tuple[str, Any, str]] = {
    "commission_rate": ("payments", 15, "Platform commission on restaurant sales (%)"),
    "driver_payout_percentage": ("payments", 80, "Share of the delivery fee paid to the driver (%)"),
    "default_min_payout_amount": ("payments", 5000, "Default minimum payout amount (FCFA)"),
    "delivery_fee_base": ("delivery", 1000, "Delivery fee when the restaurant defines none (FCFA)"),
    "delivery_fee_per_km": ("delivery", 200, "Indicative fee per km (FCFA)"),
    "max_delivery_radius": ("delivery", 15, "Maximum delivery radius (km)"),
    "min_order_amount": ("orders", 0, "Platform-wide minimum order subtotal (FCFA)"),
    "maintenance_mode": ("general", False, "Reject new orders while true"),
    "promo_banner_enabled": ("marketing", False, "Show the top promo banner"),
    "promo_banner_text": ("marketing", "", "Top promo banner text"),
    "app_version": ("general", "1.0.0", "Client version string"),
    # Affiliate program
    "reward_amount": ("affiliate", 1000, "Reward per qualifying referral (FCFA)"),
    "min_orders_required": ("affiliate", 3, "Delivered orders a referral needs to qualify"),
    "min_withdrawal_amount": ("affiliate", 5000, "Minimum withdrawal (FCFA)"),
    "withdrawal_delay_hours": ("affiliate", 24, "Review delay before a withdrawal is paid"),
    "program_enabled": ("affiliate", True, "Affiliate program switch"),
    "legal_message": ("affiliate", "", "Program terms shown to affiliates"),
}


def get_setting(s: Session, key: str) -> Any:
    row = s.query(PlatformSetting).filter(PlatformSetting.key == key).one_or_none()
    if row is not None and row.value is not None:
        return row.value
    default = DEFAULTS.get(key)
    return default[1] if default else None


def get_decimal(s: Session, key: str) -> Decimal:
    value = get_setting(s, key)
    try:
        return Decimal(str(value))
    except ArithmeticError:
        return Decimal(str(DEFAULTS[key][1]))


def get_int(s: Session, key: str) -> int:
    value = get_setting(s, key)
    try:
        return int(value)
    except (TypeError, ValueError):
        return int(DEFAULTS[key][1])


def get_bool(s: Session, key: str) -> bool:
    value = get_setting(s, key)
    if isinstance(value, str):
        return value.strip().strip('"').lower() in ("1", "true", "yes", "on")
    return bool(value)


def get_settings(s: Session, category: str | None = None) -> dict[str, Any]:
    """Merged view: stored values over defaults."""
    out: dict[str, Any] = {}
    for key, (cat, default, _desc) in DEFAULTS.items():
        if category is None or cat == category:
            out[key] = default
    q = s.query(PlatformSetting)
    if category is not None:
        q = q.filter(PlatformSetting.category == category)
    for row in q.all():
        out[row.key] = row.value
    return out


def _coerce(key: str, value: Any) -> Any:
    default = DEFAULTS[key][1]
    if isinstance(default, bool):
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() in ("1", "true", "yes", "on")
    if isinstance(default, (int, float)):
        try:
            number = Decimal(str(value))
        except ArithmeticError:
            raise ValueError(f"Setting '{key}' must be a number.") from None
        if not number.is_finite():
            raise ValueError(f"Setting '{key}' must be a finite number.")
        if number < 0:
            raise ValueError(f"Setting '{key}' cannot be negative.")
        if key in ("commission_rate", "driver_payout_percentage") and number > 100:
            raise ValueError(f"Setting '{key}' is a percentage (0-100).")
        return int(number) if number == number.to_integral_value() else float(number)
    return "" if value is None else str(value)


def update_settings(s: Session, updates: dict[str, Any], user: User) -> dict[str, Any]:
    unknown = sorted(k for k in updates if k not in DEFAULTS)
    if unknown:
        raise ValueError(f"Unknown setting(s): {', '.join(unknown)}")

    changes: dict[str, dict[str, Any]] = {}
    now = datetime.utcnow()
    for key, raw in updates.items():
        value = _coerce(key, raw)
        row = s.query(PlatformSetting).filter(PlatformSetting.key == key).one_or_none()
        old = row.value if row is not None else DEFAULTS[key][1]
        if row is None:
            row = PlatformSetting(key=key, category=DEFAULTS[key][0], description=DEFAULTS[key][2])
            s.add(row)
        if old != value:
            changes[key] = {"old": old, "new": value}
        row.value = value
        row.updated_at = now
        row.updated_by_user_id = user.id

    if changes:
        record_event(
            s,
            actor=user,
            action="settings.update",
            entity_type="PlatformSetting",
            entity_id=",".join(sorted(changes)),
            metadata={"changes": changes},
        )
    s.flush()
    return {k: v["new"] for k, v in changes.items()}


def seed_default_settings(s: Session) -> None:
    """Insert rows for missing keys (idempotent; existing values are kept)."""
    existing = {k for (k,) in s.query(PlatformSetting.key).all()}
    for key, (cat, default, desc) in DEFAULTS.items():
        if key not in existing:
            s.add(PlatformSetting(key=key, category=cat, value=default, description=desc))
