from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import func

from app.fooddash.audit import record_event
from app.fooddash.realtime import ADMIN_CHANNEL, record_change, restaurant_channel, user_channel
from app.fooddash.settings import get_decimal
from app.fooddash.utils import clean_str, iso, local_now, money, parse_decimal, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from app.fooddash.models import User
    from app.fooddash.modules.drivers.models import DriverProfile
    from app.fooddash.modules.orders.models import Order

VEHICLE_TYPES = ("moto", "bike", "car", "scooter", "foot")
ACTIVE_DELIVERY_STATUSES = ("pickup_accepted", "picked_up", "delivering")


def get_or_create_profile(s: "Session", user: "User") -> "DriverProfile":
    from app.fooddash.modules.drivers.models import DriverProfile

    profile = s.query(DriverProfile).filter(DriverProfile.user_id == user.id).one_or_none()
    if profile is None:
        profile = DriverProfile(user_id=user.id, is_available=False, is_validated=False)
        s.add(profile)
        s.flush()
    return profile


def update_profile(s: "Session", profile: "DriverProfile", payload: dict, user: "User") -> "DriverProfile":
    changes: dict[str, Any] = {}
    if "vehicle_type" in payload:
        vehicle = (clean_str(payload.get("vehicle_type")) or "").lower() or None
        if vehicle and vehicle not in VEHICLE_TYPES:
            raise ValueError(f"Invalid vehicle_type. Must be one of: {', '.join(VEHICLE_TYPES)}")
        changes["vehicle_type"] = {"old": profile.vehicle_type, "new": vehicle}
        profile.vehicle_type = vehicle
    if "license_number" in payload:
        lic = clean_str(payload.get("license_number"))
        changes["license_number"] = {"old": profile.license_number, "new": lic}
        profile.license_number = lic
    profile.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="driver.profile_edit",
        entity_type="DriverProfile",
        entity_id=str(profile.id),
        metadata={"changes": changes},
    )
    s.flush()
    return profile


def set_availability(s: "Session", profile: "DriverProfile", user: "User", *, available: bool) -> "DriverProfile":
    if available and not profile.is_validated:
        raise ValueError("Your account must be validated before you can take deliveries.")
    if profile.is_available == available:
        return profile
    profile.is_available = available
    profile.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="driver.available" if available else "driver.unavailable",
        entity_type="DriverProfile",
        entity_id=str(profile.id),
    )
    record_change(s, channels=[ADMIN_CHANNEL, user_channel(profile.user_id)], table="driver_profiles", row_id=profile.id)
    s.flush()
    return profile


def active_orders_for_driver(s: "Session", driver_user_id: int) -> list["Order"]:
    from app.fooddash.modules.orders.models import Order

    return (
        s.query(Order)
        .filter(Order.driver_id == driver_user_id)
        .filter(Order.status.in_(ACTIVE_DELIVERY_STATUSES))
        .order_by(Order.created_at.asc())
        .all()
    )


def update_location(s: "Session", profile: "DriverProfile", latitude: Any, longitude: Any) -> "DriverProfile":
    """Store the driver's position and push it to everyone following the driver's orders."""
    lat = parse_decimal(latitude, field="latitude")
    lng = parse_decimal(longitude, field="longitude")
    if lat is None or lng is None:
        raise ValueError("latitude and longitude are required.")
    if not (-90 <= lat <= 90) or not (-180 <= lng <= 180):
        raise ValueError("Coordinates out of range.")
    now = datetime.utcnow()
    profile.latitude = lat.quantize(Decimal("0.000001"))
    profile.longitude = lng.quantize(Decimal("0.000001"))
    profile.location_updated_at = now

    payload = {"driver_id": profile.user_id, "latitude": float(lat), "longitude": float(lng), "at": now.isoformat()}
    channels = [ADMIN_CHANNEL]
    for order in active_orders_for_driver(s, profile.user_id):
        if order.user_id:
            channels.append(user_channel(order.user_id))
        channels.append(restaurant_channel(order.restaurant_id))
    record_change(s, channels=channels, table="driver_locations", row_id=profile.user_id, payload=payload)
    s.flush()
    return profile


def earnings_summary(s: "Session", driver_user_id: int, *, utc_now: datetime | None = None) -> dict[str, Any]:
    """Delivered-order counts and earnings for today, this week (Monday start) and this month."""
    from app.fooddash.modules.orders.models import Order
    from app.fooddash.modules.payouts.earnings import driver_earning

    utc_now = utc_now or datetime.utcnow()
    now = local_now(utc_now)
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    starts = {
        "today": today,
        "week": today - timedelta(days=today.weekday()),
        "month": today.replace(day=1),
    }
    pct = get_decimal(s, "driver_payout_percentage")
    orders = (
        s.query(Order)
        .filter(Order.driver_id == driver_user_id)
        .filter(Order.status == "delivered")
        .filter(Order.delivered_at.isnot(None))
        .filter(Order.delivered_at >= utc_now - timedelta(days=32))
        .all()
    )
    out: dict[str, Any] = {key: {"deliveries": 0, "earnings": Decimal("0")} for key in starts}
    for order in orders:
        when = local_now(order.delivered_at)
        earning = driver_earning(order.delivery_fee, pct)
        for key, start in starts.items():
            if when >= start:
                out[key]["deliveries"] += 1
                out[key]["earnings"] += earning

    total_count, total_fees = (
        s.query(func.count(Order.id), func.coalesce(func.sum(Order.delivery_fee), 0))
        .filter(Order.driver_id == driver_user_id)
        .filter(Order.status == "delivered")
        .one()
    )
    result = {key: {"deliveries": v["deliveries"], "earnings": money(v["earnings"])} for key, v in out.items()}
    result["all_time"] = {"deliveries": int(total_count or 0), "earnings": money(driver_earning(Decimal(str(total_fees)), pct))}
    result["payout_percentage"] = float(pct)
    return result


def validate_driver(s: "Session", profile: "DriverProfile", user: "User", *, approved: bool, notes: str | None = None) -> "DriverProfile":
    notes = clean_str(notes)
    if not approved and not notes:
        raise ValueError("A reason is required to reject a driver.")
    now = datetime.utcnow()
    profile.is_validated = approved
    profile.validated_at = now if approved else None
    profile.validated_by_user_id = user.id
    profile.validation_notes = notes
    if not approved:
        profile.is_available = False
    profile.updated_at = now
    record_event(
        s,
        actor=user,
        action="driver.validate" if approved else "driver.reject",
        entity_type="DriverProfile",
        entity_id=str(profile.id),
        reason=notes,
    )
    record_change(s, channels=[ADMIN_CHANNEL, user_channel(profile.user_id)], table="driver_profiles", row_id=profile.id)
    s.flush()
    return profile


def add_validation_document(s: "Session", profile: "DriverProfile", doc: dict[str, Any], user: "User") -> list[dict]:
    docs = list(profile.validation_documents or [])
    docs.append({**doc, "uploaded_at": datetime.utcnow().isoformat()})
    profile.validation_documents = docs
    record_event(
        s,
        actor=user,
        action="driver.document_upload",
        entity_type="DriverProfile",
        entity_id=str(profile.id),
        metadata={"key": doc.get("key"), "size": doc.get("size")},
    )
    s.flush()
    return docs


def rate_driver(s: "Session", order: "Order", customer: "User", payload: dict) -> Any:
    """One rating per delivered order, by the customer who placed it."""
    from app.fooddash.modules.drivers.models import DriverProfile, DriverReview

    if order.user_id != customer.id:
        raise PermissionError("Only the customer can rate this delivery.")
    if order.status != "delivered" or not order.driver_id:
        raise ValueError("Only delivered orders can be rated.")
    rating = parse_int(payload.get("rating"), field="rating", minimum=1, maximum=5)
    if rating is None:
        raise ValueError("rating is required.")
    if s.query(DriverReview.id).filter(DriverReview.order_id == order.id).first():
        raise ValueError("This delivery has already been rated.")

    review = DriverReview(
        order_id=order.id,
        driver_user_id=order.driver_id,
        customer_user_id=customer.id,
        rating=rating,
        comment=clean_str(payload.get("comment")),
    )
    s.add(review)
    s.flush()

    avg, count = (
        s.query(func.avg(DriverReview.rating), func.count(DriverReview.id))
        .filter(DriverReview.driver_user_id == order.driver_id)
        .one()
    )
    profile = s.query(DriverProfile).filter(DriverProfile.user_id == order.driver_id).one_or_none()
    if profile is not None:
        profile.rating = Decimal(str(avg)).quantize(Decimal("0.01")) if avg is not None else None
        profile.reviews_count = int(count or 0)
    record_event(
        s,
        actor=customer,
        action="driver.rate",
        entity_type="DriverReview",
        entity_id=str(review.id),
        metadata={"order_id": order.id, "driver_id": order.driver_id, "rating": rating},
    )
    return review


def serialize_driver(profile: "DriverProfile", *, include_private: bool = False) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": profile.id,
        "user_id": profile.user_id,
        "full_name": profile.user.full_name if profile.user else None,
        "vehicle_type": profile.vehicle_type,
        "is_available": profile.is_available,
        "is_validated": profile.is_validated,
        "rating": float(profile.rating) if profile.rating is not None else None,
        "reviews_count": profile.reviews_count,
        "latitude": float(profile.latitude) if profile.latitude is not None else None,
        "longitude": float(profile.longitude) if profile.longitude is not None else None,
        "location_updated_at": iso(profile.location_updated_at),
    }
    if include_private:
        data.update(
            {
                "email": profile.user.email if profile.user else None,
                "phone": profile.user.phone if profile.user else None,
                "license_number": profile.license_number,
                "validated_at": iso(profile.validated_at),
                "validation_notes": profile.validation_notes,
                "validation_documents": profile.validation_documents or [],
                "created_at": iso(profile.created_at),
            }
        )
    return data
