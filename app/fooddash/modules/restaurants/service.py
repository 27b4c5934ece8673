from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from app.fooddash.audit import record_event
from app.fooddash.modules.restaurants.availability import (
    accepts_orders,
    is_menu_item_available,
    is_paused,
    is_restaurant_open,
    next_open_time,
    parse_hhmm,
    validate_business_hours,
)
from app.fooddash.realtime import ADMIN_CHANNEL, record_change, restaurant_channel
from app.fooddash.utils import clean_str, iso, money, parse_bool, parse_datetime, parse_decimal, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from app.fooddash.models import User
    from app.fooddash.modules.restaurants.models import Bundle, MenuItem, MenuOption, MenuOptionGroup, Restaurant

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
BUNDLE_CATEGORIES = ("side", "drink", "sauce", "extra", "dessert")


# ---------- Validation ----------
def validate_restaurant_payload(payload: dict, *, partial: bool = False) -> list[str]:
    errors = []
    if not partial or "name" in payload:
        if not clean_str(payload.get("name")):
            errors.append("Name is required.")
    if not partial or "address" in payload:
        if not clean_str(payload.get("address")):
            errors.append("Address is required.")
    for field in ("delivery_fee", "min_order"):
        try:
            parse_decimal(payload.get(field), field=field, minimum=Decimal("0"))
        except ValueError as e:
            errors.append(str(e))
    try:
        _parse_coordinates(payload)
    except ValueError as e:
        errors.append(str(e))
    if "business_hours" in payload:
        try:
            validate_business_hours(payload.get("business_hours"))
        except ValueError as e:
            errors.append(str(e))
    return errors


def _parse_coordinates(payload: dict) -> tuple[Decimal | None, Decimal | None]:
    lat = parse_decimal(payload.get("latitude"), field="latitude")
    lng = parse_decimal(payload.get("longitude"), field="longitude")
    if lat is not None and not (-90 <= lat <= 90):
        raise ValueError("latitude must be between -90 and 90.")
    if lng is not None and not (-180 <= lng <= 180):
        raise ValueError("longitude must be between -180 and 180.")
    return lat, lng


def _raise_errors(errors: list[str]) -> None:
    if errors:
        raise ValueError(" ".join(errors))


def _notify(s: "Session", restaurant: "Restaurant", op: str = "update") -> None:
    record_change(
        s,
        channels=[restaurant_channel(restaurant.id), ADMIN_CHANNEL],
        table="restaurants",
        row_id=restaurant.id,
        op=op,
    )


# ---------- Restaurants ----------
_EDITABLE_TEXT = ("name", "description", "address", "city", "phone", "cuisine_type", "image_url", "delivery_time")


def create_restaurant(s: "Session", payload: dict, user: "User") -> "Restaurant":
    """Owner submits a restaurant; it stays hidden until an admin validates it."""
    from app.fooddash.modules.restaurants.models import Restaurant

    _raise_errors(validate_restaurant_payload(payload))
    lat, lng = _parse_coordinates(payload)
    now = datetime.utcnow()
    r = Restaurant(
        owner_id=user.id,
        name=clean_str(payload.get("name")),
        description=clean_str(payload.get("description")),
        address=clean_str(payload.get("address")),
        city=clean_str(payload.get("city")),
        phone=clean_str(payload.get("phone")),
        cuisine_type=clean_str(payload.get("cuisine_type")),
        image_url=clean_str(payload.get("image_url")),
        delivery_time=clean_str(payload.get("delivery_time")),
        delivery_fee=parse_decimal(payload.get("delivery_fee"), field="delivery_fee"),
        min_order=parse_decimal(payload.get("min_order"), field="min_order"),
        latitude=lat,
        longitude=lng,
        business_hours=validate_business_hours(payload.get("business_hours")),
        is_active=True,
        is_validated=False,
        created_at=now,
        updated_at=now,
    )
    s.add(r)
    s.flush()
    record_event(
        s,
        actor=user,
        action="restaurant.create",
        entity_type="Restaurant",
        entity_id=str(r.id),
        metadata={"name": r.name},
    )
    _notify(s, r, "insert")
    return r


def update_restaurant(s: "Session", r: "Restaurant", payload: dict, user: "User") -> "Restaurant":
    _raise_errors(validate_restaurant_payload(payload, partial=True))
    changes: dict[str, Any] = {}

    for field in _EDITABLE_TEXT:
        if field not in payload:
            continue
        new = clean_str(payload.get(field))
        if field in ("name", "address") and not new:
            continue
        if new != getattr(r, field):
            changes[field] = {"old": getattr(r, field), "new": new}
            setattr(r, field, new)

    for field in ("delivery_fee", "min_order"):
        if field in payload:
            new = parse_decimal(payload.get(field), field=field)
            if new != getattr(r, field):
                changes[field] = {"old": str(getattr(r, field)), "new": str(new)}
                setattr(r, field, new)

    if "latitude" in payload or "longitude" in payload:
        lat, lng = _parse_coordinates(payload)
        r.latitude, r.longitude = lat, lng
        changes["location"] = {"new": [str(lat), str(lng)]}

    if "business_hours" in payload:
        hours = validate_business_hours(payload.get("business_hours"))
        if hours != r.business_hours:
            changes["business_hours"] = {"old": r.business_hours, "new": hours}
            r.business_hours = hours

    r.updated_at = datetime.utcnow()
    if changes:
        record_event(
            s,
            actor=user,
            action="restaurant.edit",
            entity_type="Restaurant",
            entity_id=str(r.id),
            metadata={"changes": changes},
        )
        _notify(s, r)
    s.flush()
    return r


def pause_restaurant(s: "Session", r: "Restaurant", user: "User", *, until: Any = None, message: str | None = None) -> "Restaurant":
    now = datetime.utcnow()
    pause_until = parse_datetime(until)
    if pause_until is not None and pause_until <= now:
        raise ValueError("pause_until must be in the future.")
    r.paused_at = now
    r.pause_until = pause_until
    r.pause_message = clean_str(message)
    r.updated_at = now
    record_event(
        s,
        actor=user,
        action="restaurant.pause",
        entity_type="Restaurant",
        entity_id=str(r.id),
        metadata={"until": iso(pause_until), "message": r.pause_message},
    )
    _notify(s, r)
    s.flush()
    return r


def resume_restaurant(s: "Session", r: "Restaurant", user: "User | None") -> "Restaurant":
    r.paused_at = None
    r.pause_until = None
    r.pause_message = None
    r.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="restaurant.resume", entity_type="Restaurant", entity_id=str(r.id))
    _notify(s, r)
    s.flush()
    return r


def auto_resume_restaurants(s: "Session", now: datetime | None = None) -> list[int]:
    """Clear pauses whose pause_until has passed. Returns the resumed ids."""
    from app.fooddash.modules.restaurants.models import Restaurant

    now = now or datetime.utcnow()
    expired = (
        s.query(Restaurant)
        .filter(Restaurant.paused_at.isnot(None))
        .filter(Restaurant.pause_until.isnot(None))
        .filter(Restaurant.pause_until <= now)
        .all()
    )
    for r in expired:
        resume_restaurant(s, r, None)
    return [r.id for r in expired]


def validate_restaurant(s: "Session", r: "Restaurant", user: "User", *, approved: bool, notes: str | None = None) -> "Restaurant":
    notes = clean_str(notes)
    if not approved and not notes:
        raise ValueError("A reason is required to reject a restaurant.")
    now = datetime.utcnow()
    r.is_validated = approved
    r.validated_at = now if approved else None
    r.validated_by_user_id = user.id
    r.validation_notes = notes
    r.updated_at = now
    record_event(
        s,
        actor=user,
        action="restaurant.validate" if approved else "restaurant.reject",
        entity_type="Restaurant",
        entity_id=str(r.id),
        reason=notes,
    )
    _notify(s, r)
    s.flush()
    return r


def set_restaurant_active(s: "Session", r: "Restaurant", user: "User", *, active: bool, reason: str | None = None) -> "Restaurant":
    if r.is_active == active:
        return r
    r.is_active = active
    r.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="restaurant.activate" if active else "restaurant.deactivate",
        entity_type="Restaurant",
        entity_id=str(r.id),
        reason=clean_str(reason),
    )
    _notify(s, r)
    s.flush()
    return r


def sponsor_restaurant(s: "Session", r: "Restaurant", user: "User", payload: dict) -> "Restaurant":
    sponsored = parse_bool(payload.get("is_sponsored"), default=True)
    position = parse_int(payload.get("sponsored_position"), field="sponsored_position", minimum=1)
    until = parse_datetime(payload.get("sponsored_until"))
    r.is_sponsored = sponsored
    r.sponsored_position = position if sponsored else None
    r.sponsored_until = until if sponsored else None
    r.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="restaurant.sponsor",
        entity_type="Restaurant",
        entity_id=str(r.id),
        metadata={"is_sponsored": sponsored, "position": position, "until": iso(until)},
    )
    _notify(s, r)
    s.flush()
    return r


def recompute_rating(s: "Session", r: "Restaurant") -> None:
    from sqlalchemy import func

    from app.fooddash.modules.orders.models import Review

    avg, count = s.query(func.avg(Review.rating), func.count(Review.id)).filter(Review.restaurant_id == r.id).one()
    r.reviews_count = int(count or 0)
    r.rating = Decimal(str(avg)).quantize(Decimal("0.01")) if avg is not None else None


def is_sponsored_now(r: "Restaurant", now: datetime) -> bool:
    return bool(r.is_sponsored and (r.sponsored_until is None or r.sponsored_until > now))


def list_public_restaurants(
    s: "Session",
    *,
    city: str | None = None,
    cuisine: str | None = None,
    search: str | None = None,
    open_now: bool = False,
    local_now: datetime,
    utc_now: datetime | None = None,
) -> list["Restaurant"]:
    """Active validated restaurants; current sponsors first by position, then by rating."""
    from app.fooddash.modules.restaurants.models import Restaurant

    utc_now = utc_now or datetime.utcnow()
    q = s.query(Restaurant).filter(Restaurant.is_active.is_(True)).filter(Restaurant.is_validated.is_(True))
    if city:
        q = q.filter(Restaurant.city.ilike(city))
    if cuisine:
        q = q.filter(Restaurant.cuisine_type.ilike(f"%{cuisine}%"))
    if search:
        like = f"%{search}%"
        q = q.filter((Restaurant.name.ilike(like)) | (Restaurant.cuisine_type.ilike(like)) | (Restaurant.description.ilike(like)))
    rows = q.all()
    if open_now:
        rows = [r for r in rows if accepts_orders(r, local_now, utc_now=utc_now)]

    def sort_key(r: "Restaurant"):
        sponsored = is_sponsored_now(r, utc_now)
        return (
            0 if sponsored else 1,
            (r.sponsored_position or 10**6) if sponsored else 0,
            -(r.rating or Decimal("0")),
            r.name.lower(),
        )

    return sorted(rows, key=sort_key)


# ---------- Menu ----------
def _menu_item_fields(payload: dict, *, partial: bool) -> dict[str, Any]:
    out: dict[str, Any] = {}
    if not partial or "name" in payload:
        name = clean_str(payload.get("name"))
        if not name:
            raise ValueError("Name is required.")
        out["name"] = name
    if not partial or "price" in payload:
        price = parse_decimal(payload.get("price"), field="price", minimum=Decimal("0"))
        if price is None:
            raise ValueError("price is required.")
        out["price"] = price
    for field in ("description", "category", "image_url"):
        if field in payload:
            out[field] = clean_str(payload.get(field))
    if "is_available" in payload:
        out["is_available"] = parse_bool(payload.get("is_available"), default=True)
    if "display_order" in payload:
        out["display_order"] = parse_int(payload.get("display_order"), field="display_order") or 0
    if "availability" in payload:
        out["availability"] = _validate_item_availability(payload.get("availability"))
    return out


def _validate_item_availability(raw: Any) -> dict | None:
    if raw in (None, {}):
        return None
    if not isinstance(raw, dict):
        raise ValueError("availability must be an object.")
    days = [str(d).strip().lower() for d in (raw.get("available_days") or [])]
    bad = [d for d in days if d not in WEEKDAYS]
    if bad:
        raise ValueError(f"Unknown weekday(s): {', '.join(bad)}")
    start, until = clean_str(raw.get("available_from")), clean_str(raw.get("available_until"))
    if bool(start) != bool(until):
        raise ValueError("available_from and available_until go together.")
    if start and until and parse_hhmm(start) >= parse_hhmm(until):
        raise ValueError("available_from must be before available_until.")
    out: dict[str, Any] = {}
    if days:
        out["available_days"] = days
    if start and until:
        out["available_from"], out["available_until"] = start, until
    return out or None


def create_menu_item(s: "Session", r: "Restaurant", payload: dict, user: "User") -> "MenuItem":
    from app.fooddash.modules.restaurants.models import MenuItem

    now = datetime.utcnow()
    item = MenuItem(created_at=now, updated_at=now, **_menu_item_fields(payload, partial=False))
    r.menu_items.append(item)
    s.flush()
    record_event(
        s,
        actor=user,
        action="menu_item.create",
        entity_type="MenuItem",
        entity_id=str(item.id),
        metadata={"restaurant_id": r.id, "name": item.name, "price": str(item.price)},
    )
    record_change(s, channels=[restaurant_channel(r.id)], table="menu_items", row_id=item.id, op="insert")
    return item


def update_menu_item(s: "Session", item: "MenuItem", payload: dict, user: "User") -> "MenuItem":
    changes = {}
    for field, value in _menu_item_fields(payload, partial=True).items():
        if getattr(item, field) != value:
            changes[field] = {"old": str(getattr(item, field)), "new": str(value)}
            setattr(item, field, value)
    item.updated_at = datetime.utcnow()
    if changes:
        record_event(
            s,
            actor=user,
            action="menu_item.edit",
            entity_type="MenuItem",
            entity_id=str(item.id),
            metadata={"changes": changes},
        )
        record_change(s, channels=[restaurant_channel(item.restaurant_id)], table="menu_items", row_id=item.id)
    s.flush()
    return item


def delete_menu_item(s: "Session", item: "MenuItem", user: "User") -> None:
    record_event(
        s,
        actor=user,
        action="menu_item.delete",
        entity_type="MenuItem",
        entity_id=str(item.id),
        metadata={"restaurant_id": item.restaurant_id, "name": item.name},
    )
    record_change(s, channels=[restaurant_channel(item.restaurant_id)], table="menu_items", row_id=item.id, op="delete")
    item.restaurant.menu_items.remove(item)


def _group_fields(payload: dict, *, partial: bool, current: "MenuOptionGroup | None" = None) -> dict[str, Any]:
    out: dict[str, Any] = {}
    if not partial or "name" in payload:
        name = clean_str(payload.get("name"))
        if not name:
            raise ValueError("Name is required.")
        out["name"] = name
    if "description" in payload:
        out["description"] = clean_str(payload.get("description"))
    if "is_required" in payload:
        out["is_required"] = parse_bool(payload.get("is_required"))
    if "display_order" in payload:
        out["display_order"] = parse_int(payload.get("display_order"), field="display_order") or 0
    if "min_selections" in payload:
        out["min_selections"] = parse_int(payload.get("min_selections"), field="min_selections", minimum=0) or 0
    if "max_selections" in payload:
        out["max_selections"] = parse_int(payload.get("max_selections"), field="max_selections", minimum=1)

    min_sel = out.get("min_selections", current.min_selections if current else 0)
    max_sel = out["max_selections"] if "max_selections" in out else (current.max_selections if current else None)
    if max_sel is not None and min_sel > max_sel:
        raise ValueError("min_selections cannot exceed max_selections.")
    required = out.get("is_required", current.is_required if current else False)
    if required and min_sel < 1:
        out["min_selections"] = 1
    return out


def create_option_group(s: "Session", item: "MenuItem", payload: dict, user: "User") -> "MenuOptionGroup":
    from app.fooddash.modules.restaurants.models import MenuOptionGroup

    group = MenuOptionGroup(created_at=datetime.utcnow(), **_group_fields(payload, partial=False))
    item.option_groups.append(group)
    s.flush()
    record_event(
        s,
        actor=user,
        action="option_group.create",
        entity_type="MenuOptionGroup",
        entity_id=str(group.id),
        metadata={"menu_item_id": item.id, "name": group.name},
    )
    return group


def update_option_group(s: "Session", group: "MenuOptionGroup", payload: dict, user: "User") -> "MenuOptionGroup":
    fields = _group_fields(payload, partial=True, current=group)
    for field, value in fields.items():
        setattr(group, field, value)
    record_event(
        s,
        actor=user,
        action="option_group.edit",
        entity_type="MenuOptionGroup",
        entity_id=str(group.id),
        metadata={k: str(v) for k, v in fields.items()},
    )
    return group


def delete_option_group(s: "Session", group: "MenuOptionGroup", user: "User") -> None:
    record_event(s, actor=user, action="option_group.delete", entity_type="MenuOptionGroup", entity_id=str(group.id))
    group.menu_item.option_groups.remove(group)


def create_option(s: "Session", group: "MenuOptionGroup", payload: dict, user: "User") -> "MenuOption":
    from app.fooddash.modules.restaurants.models import MenuOption

    name = clean_str(payload.get("name"))
    if not name:
        raise ValueError("Name is required.")
    opt = MenuOption(
        name=name,
        price_modifier=parse_decimal(payload.get("price_modifier"), field="price_modifier") or Decimal("0"),
        is_available=parse_bool(payload.get("is_available"), default=True),
        display_order=parse_int(payload.get("display_order"), field="display_order") or 0,
        created_at=datetime.utcnow(),
    )
    group.options.append(opt)
    s.flush()
    record_event(
        s,
        actor=user,
        action="option.create",
        entity_type="MenuOption",
        entity_id=str(opt.id),
        metadata={"group_id": group.id, "name": name, "price_modifier": str(opt.price_modifier)},
    )
    return opt


def update_option(s: "Session", opt: "MenuOption", payload: dict, user: "User") -> "MenuOption":
    if "name" in payload:
        name = clean_str(payload.get("name"))
        if not name:
            raise ValueError("Name is required.")
        opt.name = name
    if "price_modifier" in payload:
        opt.price_modifier = parse_decimal(payload.get("price_modifier"), field="price_modifier") or Decimal("0")
    if "is_available" in payload:
        opt.is_available = parse_bool(payload.get("is_available"), default=True)
    if "display_order" in payload:
        opt.display_order = parse_int(payload.get("display_order"), field="display_order") or 0
    record_event(s, actor=user, action="option.edit", entity_type="MenuOption", entity_id=str(opt.id))
    s.flush()
    return opt


def delete_option(s: "Session", opt: "MenuOption", user: "User") -> None:
    record_event(s, actor=user, action="option.delete", entity_type="MenuOption", entity_id=str(opt.id))
    opt.group.options.remove(opt)


# ---------- Bundles ----------
def _bundle_fields(payload: dict, *, partial: bool) -> dict[str, Any]:
    out: dict[str, Any] = {}
    if not partial or "name" in payload:
        name = clean_str(payload.get("name"))
        if not name:
            raise ValueError("Name is required.")
        out["name"] = name
    if not partial or "category" in payload:
        category = (clean_str(payload.get("category")) or "").lower()
        if category not in BUNDLE_CATEGORIES:
            raise ValueError(f"Invalid category. Must be one of: {', '.join(BUNDLE_CATEGORIES)}")
        out["category"] = category
    if not partial or "price" in payload:
        out["price"] = parse_decimal(payload.get("price"), field="price", minimum=Decimal("0")) or Decimal("0")
    if "description" in payload:
        out["description"] = clean_str(payload.get("description"))
    if "is_available" in payload:
        out["is_available"] = parse_bool(payload.get("is_available"), default=True)
    if "display_order" in payload:
        out["display_order"] = parse_int(payload.get("display_order"), field="display_order") or 0
    return out


def create_bundle(s: "Session", r: "Restaurant", payload: dict, user: "User") -> "Bundle":
    from app.fooddash.modules.restaurants.models import Bundle

    now = datetime.utcnow()
    b = Bundle(created_at=now, updated_at=now, **_bundle_fields(payload, partial=False))
    r.bundles.append(b)
    s.flush()
    record_event(
        s,
        actor=user,
        action="bundle.create",
        entity_type="Bundle",
        entity_id=str(b.id),
        metadata={"restaurant_id": r.id, "name": b.name, "category": b.category, "price": str(b.price)},
    )
    record_change(s, channels=[restaurant_channel(r.id)], table="bundles", row_id=b.id, op="insert")
    return b


def update_bundle(s: "Session", b: "Bundle", payload: dict, user: "User") -> "Bundle":
    changes = {}
    for field, value in _bundle_fields(payload, partial=True).items():
        if getattr(b, field) != value:
            changes[field] = {"old": str(getattr(b, field)), "new": str(value)}
            setattr(b, field, value)
    if changes:
        b.updated_at = datetime.utcnow()
        record_event(s, actor=user, action="bundle.edit", entity_type="Bundle", entity_id=str(b.id), metadata={"changes": changes})
        record_change(s, channels=[restaurant_channel(b.restaurant_id)], table="bundles", row_id=b.id)
    s.flush()
    return b


def toggle_bundle_availability(s: "Session", b: "Bundle", user: "User") -> "Bundle":
    return update_bundle(s, b, {"is_available": not b.is_available}, user)


def delete_bundle(s: "Session", b: "Bundle", user: "User") -> None:
    record_event(
        s,
        actor=user,
        action="bundle.delete",
        entity_type="Bundle",
        entity_id=str(b.id),
        metadata={"restaurant_id": b.restaurant_id, "name": b.name},
    )
    record_change(s, channels=[restaurant_channel(b.restaurant_id)], table="bundles", row_id=b.id, op="delete")
    b.restaurant.bundles.remove(b)
    s.flush()


def serialize_bundle(b: "Bundle") -> dict[str, Any]:
    return {
        "id": b.id,
        "restaurant_id": b.restaurant_id,
        "name": b.name,
        "description": b.description,
        "category": b.category,
        "price": money(b.price),
        "is_available": b.is_available,
        "display_order": b.display_order,
    }


# ---------- Favourites ----------
def toggle_favorite(s: "Session", user: "User", r: "Restaurant") -> bool:
    """Returns True when the restaurant is now a favourite."""
    from app.fooddash.modules.restaurants.models import Favorite

    fav = s.query(Favorite).filter(Favorite.user_id == user.id, Favorite.restaurant_id == r.id).one_or_none()
    if fav is not None:
        s.delete(fav)
        s.flush()
        return False
    s.add(Favorite(user_id=user.id, restaurant_id=r.id))
    s.flush()
    return True


def list_favorites(s: "Session", user: "User") -> list["Restaurant"]:
    from app.fooddash.modules.restaurants.models import Favorite, Restaurant

    return (
        s.query(Restaurant)
        .join(Favorite, Favorite.restaurant_id == Restaurant.id)
        .filter(Favorite.user_id == user.id)
        .order_by(Favorite.created_at.desc())
        .all()
    )


# ---------- Serialization ----------
def serialize_restaurant(r: "Restaurant", *, local_now: datetime, utc_now: datetime | None = None, include_menu: bool = False) -> dict[str, Any]:
    utc_now = utc_now or datetime.utcnow()
    nxt = next_open_time(r.business_hours, local_now)
    data: dict[str, Any] = {
        "id": r.id,
        "owner_id": r.owner_id,
        "name": r.name,
        "description": r.description,
        "address": r.address,
        "city": r.city,
        "phone": r.phone,
        "cuisine_type": r.cuisine_type,
        "image_url": r.image_url,
        "latitude": float(r.latitude) if r.latitude is not None else None,
        "longitude": float(r.longitude) if r.longitude is not None else None,
        "delivery_fee": money(r.delivery_fee) if r.delivery_fee is not None else None,
        "delivery_time": r.delivery_time,
        "min_order": money(r.min_order) if r.min_order is not None else None,
        "business_hours": r.business_hours,
        "is_active": r.is_active,
        "is_validated": r.is_validated,
        "validation_notes": r.validation_notes,
        "is_paused": is_paused(r.paused_at, r.pause_until, utc_now),
        "pause_until": iso(r.pause_until),
        "pause_message": r.pause_message,
        "is_open": is_restaurant_open(r.business_hours, local_now),
        "accepts_orders": accepts_orders(r, local_now, utc_now=utc_now),
        "next_open": {"day": nxt[0], "time": nxt[1]} if nxt else None,
        "is_sponsored": is_sponsored_now(r, utc_now),
        "sponsored_position": r.sponsored_position,
        "rating": float(r.rating) if r.rating is not None else None,
        "reviews_count": r.reviews_count,
        "created_at": iso(r.created_at),
    }
    if include_menu:
        data["menu"] = [serialize_menu_item(i, local_now=local_now) for i in r.menu_items]
        data["bundles"] = [serialize_bundle(b) for b in r.bundles]
    return data


def serialize_menu_item(item: "MenuItem", *, local_now: datetime) -> dict[str, Any]:
    return {
        "id": item.id,
        "restaurant_id": item.restaurant_id,
        "name": item.name,
        "description": item.description,
        "category": item.category,
        "price": money(item.price),
        "image_url": item.image_url,
        "is_available": item.is_available,
        "available_now": item.is_available and is_menu_item_available(item.availability, local_now),
        "availability": item.availability,
        "display_order": item.display_order,
        "option_groups": [
            {
                "id": g.id,
                "name": g.name,
                "description": g.description,
                "is_required": g.is_required,
                "min_selections": g.min_selections,
                "max_selections": g.max_selections,
                "options": [
                    {
                        "id": o.id,
                        "name": o.name,
                        "price_modifier": money(o.price_modifier),
                        "is_available": o.is_available,
                    }
                    for o in g.options
                ],
            }
            for g in item.option_groups
        ],
    }


def add_validation_document(s: "Session", r: "Restaurant", doc: dict[str, Any], user: "User") -> list[dict]:
    docs = list(r.validation_documents or [])
    docs.append({**doc, "uploaded_at": datetime.utcnow().isoformat(), "uploaded_by_user_id": user.id})
    r.validation_documents = docs
    record_event(
        s,
        actor=user,
        action="restaurant.document_upload",
        entity_type="Restaurant",
        entity_id=str(r.id),
        metadata={"key": doc.get("key"), "size": doc.get("size")},
    )
    s.flush()
    return docs
