from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, update

from app.fooddash.audit import record_event
from app.fooddash.realtime import ADMIN_CHANNEL, DRIVERS_CHANNEL, record_change, restaurant_channel, user_channel
from app.fooddash.settings import get_bool, get_decimal
from app.fooddash.utils import clean_str, iso, local_now, money, parse_decimal, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from app.fooddash.models import User
    from app.fooddash.modules.orders.models import Order, OrderMessage, Review

logger = logging.getLogger(__name__)

PAYMENT_METHODS = ("cash", "mobile_money")
TERMINAL_STATUSES = ("delivered", "cancelled")
POOL_STATUSES = ("pickup_pending", "ready")
MAX_MESSAGE_LENGTH = 2000

# Restaurant-side flow; "confirmed" and "ready" are accepted synonyms.
RESTAURANT_TRANSITIONS: dict[str, tuple[str, ...]] = {
    "pending": ("accepted", "cancelled"),
    "accepted": ("confirmed", "preparing", "cancelled"),
    "confirmed": ("preparing", "cancelled"),
    "preparing": ("pickup_pending", "ready", "cancelled"),
}
# Claiming (pickup_pending/ready -> pickup_accepted) goes through claim_order.
DRIVER_TRANSITIONS: dict[str, tuple[str, ...]] = {
    "pickup_accepted": ("picked_up",),
    "picked_up": ("delivering",),
    "delivering": ("delivered",),
}
CUSTOMER_TRANSITIONS: dict[str, tuple[str, ...]] = {
    "pending": ("cancelled",),
}


class InvalidTransition(ValueError):
    pass


def allowed_transitions(status: str, actor: str) -> tuple[str, ...]:
    from app.fooddash.modules.orders.models import ORDER_STATUSES

    if actor == "admin":
        if status in TERMINAL_STATUSES:
            return ()
        return tuple(st for st in ORDER_STATUSES if st != status and st != "delivered")
    table = {
        "restaurant": RESTAURANT_TRANSITIONS,
        "driver": DRIVER_TRANSITIONS,
        "customer": CUSTOMER_TRANSITIONS,
    }.get(actor)
    if table is None:
        raise ValueError(f"Unknown actor '{actor}'.")
    return table.get(status, ())


def order_channels(order: "Order") -> list[str]:
    channels = [restaurant_channel(order.restaurant_id), ADMIN_CHANNEL]
    if order.user_id:
        channels.append(user_channel(order.user_id))
    if order.driver_id:
        channels.append(user_channel(order.driver_id))
    return channels


def _notify(s: "Session", order: "Order", op: str = "update", *, pool: bool = False) -> None:
    channels = order_channels(order)
    if pool:
        channels.append(DRIVERS_CHANNEL)
    record_change(
        s,
        channels=channels,
        table="orders",
        row_id=order.id,
        op=op,
        payload={"status": order.status, "driver_id": order.driver_id},
    )


# ---------- Checkout ----------
def checkout(s: "Session", user: "User", payload: dict, *, utc_now: datetime | None = None) -> "Order":
    """
    Turn the caller's cart into a pending order: price snapshot, promo usage,
    cart cleared, restaurant alerted. Everything happens in the caller's
    transaction.
    """
    from app.fooddash.modules.alerts.service import order_new
    from app.fooddash.modules.marketing.service import consume_promo, validate_promo
    from app.fooddash.modules.orders.cart import cart_items, clear_cart, price_cart
    from app.fooddash.modules.orders.models import Order, OrderItem
    from app.fooddash.modules.orders.pricing import ZERO, compute_totals, minimum_order
    from app.fooddash.modules.restaurants.availability import accepts_orders

    utc_now = utc_now or datetime.utcnow()
    if get_bool(s, "maintenance_mode"):
        raise ValueError("Ordering is temporarily unavailable (maintenance).")

    items = cart_items(s, user)
    if not items:
        raise ValueError("Your cart is empty.")
    restaurant = items[0].menu_item.restaurant
    if not accepts_orders(restaurant, local_now(utc_now), utc_now=utc_now):
        raise ValueError(f"{restaurant.name} is not accepting orders right now.")

    phone = clean_str(payload.get("phone")) or user.phone
    address = clean_str(payload.get("delivery_address")) or user.address
    if not phone:
        raise ValueError("A phone number is required.")
    if not address:
        raise ValueError("A delivery address is required.")
    payment_method = (clean_str(payload.get("payment_method")) or "cash").lower()
    if payment_method not in PAYMENT_METHODS:
        raise ValueError(f"Invalid payment_method. Must be one of: {', '.join(PAYMENT_METHODS)}")
    lat = parse_decimal(payload.get("delivery_latitude"), field="delivery_latitude")
    lng = parse_decimal(payload.get("delivery_longitude"), field="delivery_longitude")
    if (lat is None) != (lng is None):
        raise ValueError("Provide both delivery_latitude and delivery_longitude.")
    if lat is not None and (not (-90 <= lat <= 90) or not (-180 <= lng <= 180)):  # type: ignore[operator]
        raise ValueError("Delivery coordinates out of range.")

    for line in items:
        if not line.menu_item.is_available:
            raise ValueError(f"'{line.menu_item.name}' is no longer available.")
    lines = price_cart(items)
    subtotal = compute_totals(lines).subtotal
    required = minimum_order(restaurant.min_order, get_decimal(s, "min_order_amount"))
    if subtotal < required:
        raise ValueError(f"Minimum order is {money(required):.0f}.")

    promo = None
    discount = ZERO
    code = clean_str(payload.get("promo_code"))
    if code:
        promo, discount = validate_promo(s, code, subtotal, restaurant.id, utc_now)

    fee = restaurant.delivery_fee if restaurant.delivery_fee is not None else get_decimal(s, "delivery_fee_base")
    totals = compute_totals(lines, discount=discount, delivery_fee=fee)

    order = Order(
        user_id=user.id,
        restaurant_id=restaurant.id,
        status="pending",
        subtotal=totals.subtotal,
        discount_amount=totals.discount,
        delivery_fee=totals.delivery_fee,
        total=totals.total,
        promo_code_id=promo.id if promo else None,
        phone=phone,
        delivery_address=address,
        delivery_latitude=lat,
        delivery_longitude=lng,
        notes=clean_str(payload.get("notes")),
        payment_method=payment_method,
        created_at=utc_now,
        updated_at=utc_now,
    )
    for pl in lines:
        order.items.append(
            OrderItem(
                menu_item_id=pl.menu_item_id,
                name=pl.name,
                price=pl.unit_price,
                quantity=pl.quantity,
                selected_options=pl.options or None,
            )
        )
    s.add(order)
    s.flush()

    if promo is not None:
        consume_promo(s, promo)
    clear_cart(s, user)

    record_event(
        s,
        actor=user,
        action="order.create",
        entity_type="Order",
        entity_id=str(order.id),
        metadata={
            "restaurant_id": restaurant.id,
            "total": str(order.total),
            "promo_code": promo.code if promo else None,
            "items": len(lines),
        },
    )
    _notify(s, order, op="insert")
    order_new(s, order)
    logger.info("Order created id=%s restaurant_id=%s total=%s", order.id, restaurant.id, order.total)
    s.flush()
    return order


# ---------- Lifecycle ----------
def _stamp(order: "Order", status: str, now: datetime) -> None:
    if status == "accepted" and order.accepted_at is None:
        order.accepted_at = now
    elif status == "picked_up":
        order.picked_up_at = now
    elif status == "delivered":
        order.delivered_at = now
    elif status == "cancelled":
        order.cancelled_at = now


def transition_order(
    s: "Session",
    order: "Order",
    new_status: str,
    user: "User",
    *,
    actor: str,
    reason: str | None = None,
) -> "Order":
    """
    Move an order along its lifecycle as `actor` (restaurant, driver, customer
    or admin). Raises InvalidTransition when the move is not allowed from the
    current status for that actor.
    """
    from app.fooddash.modules.alerts.service import delivery_available, order_status_update
    from app.fooddash.modules.orders.models import ORDER_STATUSES

    new_status = (new_status or "").strip().lower()
    if new_status not in ORDER_STATUSES:
        raise ValueError(f"Invalid status. Must be one of: {', '.join(ORDER_STATUSES)}")
    old_status = order.status
    if new_status not in allowed_transitions(old_status, actor):
        raise InvalidTransition(f"Cannot change order #{order.id} from '{old_status}' to '{new_status}'.")
    reason = clean_str(reason)
    if actor == "admin" and not reason:
        raise ValueError("A reason is required for forced status changes.")

    now = datetime.utcnow()
    order.status = new_status
    order.updated_at = now
    _stamp(order, new_status, now)
    if new_status == "cancelled":
        order.cancel_reason = reason
        order.cancelled_by_user_id = user.id
    # Forcing an order back into the pool releases its driver.
    if actor == "admin" and new_status in ("pending", "accepted", "confirmed", "preparing") + POOL_STATUSES:
        order.driver_id = None
    s.flush()

    record_event(
        s,
        actor=user,
        action="order.cancel" if new_status == "cancelled" else "order.status_change",
        entity_type="Order",
        entity_id=str(order.id),
        reason=reason,
        metadata={"from": old_status, "to": new_status, "actor": actor},
    )
    entering_pool = new_status in POOL_STATUSES and order.driver_id is None
    _notify(s, order, pool=entering_pool or old_status in POOL_STATUSES)
    order_status_update(s, order, new_status)
    if entering_pool:
        delivery_available(s, order)
    if new_status == "delivered":
        from app.fooddash.modules.affiliates.service import record_delivered_order

        record_delivered_order(s, order)
    logger.info("Order status id=%s %s->%s actor=%s", order.id, old_status, new_status, actor)
    s.flush()
    return order


def claim_order(s: "Session", order: "Order", driver: "User") -> "Order":
    """
    Assign a pool order to the calling driver. The conditional UPDATE makes
    concurrent claims single-winner.
    """
    from app.fooddash.modules.alerts.service import order_status_update
    from app.fooddash.modules.drivers.models import DriverProfile
    from app.fooddash.modules.orders.models import Order

    profile = s.query(DriverProfile).filter(DriverProfile.user_id == driver.id).one_or_none()
    if profile is None or not profile.is_validated:
        raise ValueError("Your account must be validated before you can take deliveries.")
    if not profile.is_available:
        raise ValueError("Set yourself as available before claiming a delivery.")

    # The conditional UPDATE sees database state, not the session.
    s.flush()
    old_status = order.status
    now = datetime.utcnow()
    result = s.execute(
        update(Order)
        .where(Order.id == order.id)
        .where(Order.driver_id.is_(None))
        .where(Order.status.in_(POOL_STATUSES))
        .values(driver_id=driver.id, status="pickup_accepted", updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise InvalidTransition("This delivery is no longer available.")
    s.refresh(order)

    record_event(
        s,
        actor=driver,
        action="order.claim",
        entity_type="Order",
        entity_id=str(order.id),
        metadata={"from": old_status, "to": "pickup_accepted", "driver_id": driver.id},
    )
    _notify(s, order, pool=True)
    order_status_update(s, order, "pickup_accepted")
    return order


def available_deliveries(s: "Session") -> list["Order"]:
    from app.fooddash.modules.orders.models import Order

    return (
        s.query(Order)
        .filter(Order.status.in_(POOL_STATUSES))
        .filter(Order.driver_id.is_(None))
        .order_by(Order.created_at.asc())
        .all()
    )


# ---------- Access ----------
def participant_role(order: "Order", user: "User") -> str | None:
    """customer | restaurant_owner | delivery_driver for participants, else None."""
    if order.user_id == user.id:
        return "customer"
    if order.restaurant and order.restaurant.owner_id == user.id:
        return "restaurant_owner"
    if order.driver_id == user.id:
        return "delivery_driver"
    return None


def can_view_order(order: "Order", user: "User") -> bool:
    from app.fooddash.rbac import user_has_permission

    if participant_role(order, user) is not None:
        return True
    if user_has_permission(user, "orders.manage"):
        return True
    # Drivers browse the open pool before claiming.
    return order.driver_id is None and order.status in POOL_STATUSES and user_has_permission(user, "deliveries.work")


# ---------- Tracking ----------
def tracking_info(s: "Session", order: "Order") -> dict[str, Any]:
    from app.fooddash.modules.drivers.models import DriverProfile

    data: dict[str, Any] = {"order_id": order.id, "status": order.status, "driver": None}
    if order.driver_id:
        profile = s.query(DriverProfile).filter(DriverProfile.user_id == order.driver_id).one_or_none()
        data["driver"] = {
            "user_id": order.driver_id,
            "full_name": order.driver.full_name if order.driver else None,
            "phone": order.driver.phone if order.driver else None,
            "vehicle_type": profile.vehicle_type if profile else None,
            "latitude": float(profile.latitude) if profile and profile.latitude is not None else None,
            "longitude": float(profile.longitude) if profile and profile.longitude is not None else None,
            "location_updated_at": iso(profile.location_updated_at) if profile else None,
        }
    r = order.restaurant
    data["restaurant"] = {
        "latitude": float(r.latitude) if r.latitude is not None else None,
        "longitude": float(r.longitude) if r.longitude is not None else None,
    }
    data["destination"] = {
        "latitude": float(order.delivery_latitude) if order.delivery_latitude is not None else None,
        "longitude": float(order.delivery_longitude) if order.delivery_longitude is not None else None,
    }
    return data


def route_endpoints(s: "Session", order: "Order") -> tuple[tuple[float, float], tuple[float, float]]:
    """Driver position -> restaurant until pickup, then -> delivery address."""
    from app.fooddash.modules.drivers.models import DriverProfile

    if not order.driver_id:
        raise ValueError("No driver is assigned to this order yet.")
    profile = s.query(DriverProfile).filter(DriverProfile.user_id == order.driver_id).one_or_none()
    if profile is None or profile.latitude is None or profile.longitude is None:
        raise ValueError("The driver's position is not known yet.")
    start = (float(profile.latitude), float(profile.longitude))
    if order.status in ("picked_up", "delivering", "delivered"):
        if order.delivery_latitude is None or order.delivery_longitude is None:
            raise ValueError("This order has no delivery coordinates.")
        return start, (float(order.delivery_latitude), float(order.delivery_longitude))
    r = order.restaurant
    if r.latitude is None or r.longitude is None:
        raise ValueError("The restaurant has no coordinates.")
    return start, (float(r.latitude), float(r.longitude))


# ---------- Messages ----------
def _default_receiver(order: "Order", sender_role: str) -> int | None:
    if sender_role == "customer":
        return order.driver_id or (order.restaurant.owner_id if order.restaurant else None)
    return order.user_id


def post_message(s: "Session", order: "Order", sender: "User", payload: dict) -> "OrderMessage":
    from app.fooddash.modules.alerts.service import message_received
    from app.fooddash.modules.orders.models import OrderMessage

    sender_role = participant_role(order, sender)
    if sender_role is None:
        raise PermissionError("Only the order's participants can post messages.")
    content = clean_str(payload.get("content"))
    if not content:
        raise ValueError("content is required.")
    if len(content) > MAX_MESSAGE_LENGTH:
        raise ValueError(f"Messages are limited to {MAX_MESSAGE_LENGTH} characters.")

    receiver_id = parse_int(payload.get("receiver_id"), field="receiver_id") or _default_receiver(order, sender_role)
    if receiver_id is None:
        raise ValueError("There is nobody to send this message to yet.")
    participants = {
        order.user_id: "customer",
        order.restaurant.owner_id if order.restaurant else None: "restaurant_owner",
        order.driver_id: "delivery_driver",
    }
    participants.pop(None, None)
    receiver_role = participants.get(receiver_id)
    if receiver_role is None or receiver_id == sender.id:
        raise ValueError("The receiver must be another participant of this order.")

    msg = OrderMessage(
        order_id=order.id,
        sender_user_id=sender.id,
        receiver_user_id=receiver_id,
        content=content,
        is_read=False,
    )
    s.add(msg)
    s.flush()
    record_change(
        s,
        channels=[user_channel(sender.id), user_channel(receiver_id)],
        table="order_messages",
        row_id=msg.id,
        op="insert",
        payload={"order_id": order.id},
    )
    message_received(
        s,
        receiver_id=receiver_id,
        role=receiver_role,
        sender_name=sender.full_name or sender.email,
        preview=content,
        order_id=order.id,
    )
    return msg


def list_messages(s: "Session", order: "Order") -> list["OrderMessage"]:
    from app.fooddash.modules.orders.models import OrderMessage

    return s.query(OrderMessage).filter(OrderMessage.order_id == order.id).order_by(OrderMessage.id.asc()).all()


def mark_messages_read(s: "Session", order: "Order", user: "User") -> int:
    from app.fooddash.modules.orders.models import OrderMessage

    return (
        s.query(OrderMessage)
        .filter(OrderMessage.order_id == order.id)
        .filter(OrderMessage.receiver_user_id == user.id)
        .filter(OrderMessage.is_read.is_(False))
        .update({"is_read": True}, synchronize_session=False)
    )


# ---------- Reviews ----------
def review_order(s: "Session", order: "Order", customer: "User", payload: dict) -> "Review":
    from app.fooddash.modules.orders.models import Review
    from app.fooddash.modules.restaurants.service import recompute_rating

    if order.user_id != customer.id:
        raise PermissionError("Only the customer can review this order.")
    if order.status != "delivered":
        raise ValueError("Only delivered orders can be reviewed.")
    rating = parse_int(payload.get("rating"), field="rating", minimum=1, maximum=5)
    if rating is None:
        raise ValueError("rating is required.")
    if s.query(Review.id).filter(Review.order_id == order.id).first():
        raise ValueError("This order has already been reviewed.")

    review = Review(
        order_id=order.id,
        restaurant_id=order.restaurant_id,
        user_id=customer.id,
        rating=rating,
        comment=clean_str(payload.get("comment")),
    )
    s.add(review)
    s.flush()
    recompute_rating(s, order.restaurant)
    record_event(
        s,
        actor=customer,
        action="review.create",
        entity_type="Review",
        entity_id=str(review.id),
        metadata={"order_id": order.id, "restaurant_id": order.restaurant_id, "rating": rating},
    )
    record_change(s, channels=[restaurant_channel(order.restaurant_id)], table="reviews", row_id=review.id, op="insert")
    return review


# ---------- Voice notes ----------
def attach_voice_note(s: "Session", order: "Order", user: "User", doc: dict[str, Any]) -> "Order":
    if order.user_id != user.id:
        raise PermissionError("Only the customer can attach a voice note.")
    if order.status in TERMINAL_STATUSES:
        raise ValueError("This order is closed.")
    order.voice_note_key = str(doc["key"])
    order.voice_note_content_type = doc.get("content_type")  # type: ignore[assignment]
    order.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="order.voice_note",
        entity_type="Order",
        entity_id=str(order.id),
        metadata={"key": doc.get("key"), "size": doc.get("size"), "sha256": doc.get("sha256")},
    )
    _notify(s, order)
    s.flush()
    return order


# ---------- Admin ----------
def order_stats(s: "Session", *, utc_now: datetime | None = None) -> dict[str, Any]:
    from app.fooddash.modules.orders.models import Order
    from app.fooddash.modules.payouts.earnings import platform_commission

    utc_now = utc_now or datetime.utcnow()
    by_status = {status: count for status, count in s.query(Order.status, func.count(Order.id)).group_by(Order.status).all()}
    revenue = s.query(func.coalesce(func.sum(Order.total), 0)).filter(Order.status == "delivered").scalar()

    rate = get_decimal(s, "commission_rate")
    commission = Decimal("0")
    for subtotal, discount in s.query(Order.subtotal, Order.discount_amount).filter(Order.status == "delivered").all():
        commission += platform_commission(subtotal, discount, rate)

    now = local_now(utc_now)
    day_start_local = now.replace(hour=0, minute=0, second=0, microsecond=0)
    day_start_utc = utc_now - (now - day_start_local)
    today = s.query(func.count(Order.id)).filter(Order.created_at >= day_start_utc).scalar()
    return {
        "by_status": by_status,
        "total": sum(by_status.values()),
        "today": int(today or 0),
        "revenue": money(revenue),
        "commission": money(commission),
    }


def serialize_order(order: "Order", *, include_items: bool = True) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": order.id,
        "status": order.status,
        "user_id": order.user_id,
        "customer_name": order.customer.full_name if order.customer else None,
        "restaurant_id": order.restaurant_id,
        "restaurant_name": order.restaurant.name if order.restaurant else None,
        "driver_id": order.driver_id,
        "driver_name": order.driver.full_name if order.driver else None,
        "subtotal": money(order.subtotal),
        "discount_amount": money(order.discount_amount),
        "delivery_fee": money(order.delivery_fee),
        "total": money(order.total),
        "promo_code_id": order.promo_code_id,
        "phone": order.phone,
        "delivery_address": order.delivery_address,
        "delivery_latitude": float(order.delivery_latitude) if order.delivery_latitude is not None else None,
        "delivery_longitude": float(order.delivery_longitude) if order.delivery_longitude is not None else None,
        "notes": order.notes,
        "payment_method": order.payment_method,
        "has_voice_note": bool(order.voice_note_key),
        "cancel_reason": order.cancel_reason,
        "accepted_at": iso(order.accepted_at),
        "picked_up_at": iso(order.picked_up_at),
        "delivered_at": iso(order.delivered_at),
        "cancelled_at": iso(order.cancelled_at),
        "created_at": iso(order.created_at),
        "updated_at": iso(order.updated_at),
    }
    if include_items:
        data["items"] = [
            {
                "id": it.id,
                "menu_item_id": it.menu_item_id,
                "name": it.name,
                "price": money(it.price),
                "quantity": it.quantity,
                "selected_options": [
                    {**o, "price_modifier": float(o.get("price_modifier") or 0)} for o in (it.selected_options or [])
                ],
                "line_total": money(it.price * it.quantity),
            }
            for it in order.items
        ]
    return data


def serialize_message(m: "OrderMessage") -> dict[str, Any]:
    return {
        "id": m.id,
        "order_id": m.order_id,
        "sender_user_id": m.sender_user_id,
        "receiver_user_id": m.receiver_user_id,
        "content": m.content,
        "is_read": m.is_read,
        "created_at": iso(m.created_at),
    }

