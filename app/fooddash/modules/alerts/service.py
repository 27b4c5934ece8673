from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import select

from app.fooddash.audit import record_event
from app.fooddash.modules.alerts.config import ALERT_TYPES, MUTED_CONFIG, THROTTLE_SECONDS, resolve_config, status_alert
from app.fooddash.rbac import ADMIN, CUSTOMER, DELIVERY_DRIVER, RESTAURANT_OWNER
from app.fooddash.realtime import record_change, user_channel
from app.fooddash.utils import clean_str, iso

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from app.fooddash.models import User
    from app.fooddash.modules.alerts.models import Notification
    from app.fooddash.modules.orders.models import Order

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 50
BROADCAST_ROLES = (CUSTOMER, RESTAURANT_OWNER, DELIVERY_DRIVER, ADMIN)


def trigger(
    s: "Session",
    *,
    user_id: int,
    role: str,
    alert_type: str,
    title: str,
    message: str,
    data: dict[str, Any] | None = None,
    url: str | None = None,
    order_id: int | None = None,
    now: datetime | None = None,
) -> "Notification":
    """
    Persist one alert and push it on the user's channel. A repeat of the same
    (user, role, type) within the throttle window is still stored and pushed,
    but with a muted presentation so the device stays quiet.
    """
    from app.fooddash.modules.alerts.models import Notification

    if alert_type not in ALERT_TYPES:
        raise ValueError(f"Unknown alert type '{alert_type}'.")
    now = now or datetime.utcnow()
    recent = (
        s.query(Notification.id)
        .filter(Notification.user_id == user_id)
        .filter(Notification.role == role)
        .filter(Notification.type == alert_type)
        .filter(Notification.muted.is_(False))
        .filter(Notification.created_at > now - timedelta(seconds=THROTTLE_SECONDS))
        .first()
    )
    if recent is not None:
        logger.debug("Alert muted user_id=%s role=%s type=%s", user_id, role, alert_type)
        config = dict(MUTED_CONFIG)
    else:
        config = resolve_config(role, alert_type)
    n = Notification(
        user_id=user_id,
        role=role,
        type=alert_type,
        title=title,
        message=message,
        order_id=order_id,
        url=url,
        data=data,
        config=config,
        muted=recent is not None,
        is_read=False,
        created_at=now,
    )
    s.add(n)
    s.flush()
    record_change(
        s,
        channels=[user_channel(user_id)],
        table="notifications",
        row_id=n.id,
        op="insert",
        payload={
            "type": alert_type,
            "role": role,
            "title": title,
            "message": message,
            "config": config,
            "url": url,
            "muted": recent is not None,
        },
    )
    return n


def order_new(s: "Session", order: "Order") -> "Notification | None":
    owner_id = order.restaurant.owner_id if order.restaurant else None
    if not owner_id:
        return None
    return trigger(
        s,
        user_id=owner_id,
        role="restaurant_owner",
        alert_type="order_new",
        title="Nouvelle commande !",
        message=f"Nouvelle commande #{order.id} ({order.restaurant.name})",
        data={"order_id": order.id},
        url="/restaurant-dashboard",
        order_id=order.id,
    )


def order_status_update(s: "Session", order: "Order", status: str) -> list["Notification"]:
    """Tell the customer, and the restaurant on cancellation."""
    alert_type, title, message = status_alert(status)
    sent = []
    if order.user_id:
        n = trigger(
            s,
            user_id=order.user_id,
            role="customer",
            alert_type=alert_type,
            title=title,
            message=message,
            data={"order_id": order.id, "status": status},
            url="/orders",
            order_id=order.id,
        )
        if n:
            sent.append(n)
    if status == "cancelled" and order.restaurant and order.restaurant.owner_id:
        n = trigger(
            s,
            user_id=order.restaurant.owner_id,
            role="restaurant_owner",
            alert_type="order_cancelled",
            title="Commande annulée",
            message=f"La commande #{order.id} a été annulée",
            data={"order_id": order.id, "status": status},
            url="/restaurant-dashboard",
            order_id=order.id,
        )
        if n:
            sent.append(n)
    if status == "cancelled" and order.driver_id:
        n = trigger(
            s,
            user_id=order.driver_id,
            role="delivery_driver",
            alert_type="order_cancelled",
            title="Commande annulée",
            message=f"La commande #{order.id} a été annulée",
            data={"order_id": order.id},
            order_id=order.id,
        )
        if n:
            sent.append(n)
    return sent


def delivery_available(s: "Session", order: "Order") -> list["Notification"]:
    """Every available, validated driver hears about a new pickup."""
    from app.fooddash.modules.drivers.models import DriverProfile

    drivers = (
        s.query(DriverProfile.user_id)
        .filter(DriverProfile.is_available.is_(True))
        .filter(DriverProfile.is_validated.is_(True))
        .all()
    )
    sent = []
    for (driver_id,) in drivers:
        n = trigger(
            s,
            user_id=driver_id,
            role="delivery_driver",
            alert_type="delivery_available",
            title="Nouvelle livraison disponible !",
            message=f"Livraison vers {order.delivery_address}",
            data={"order_id": order.id},
            url="/delivery-dashboard",
            order_id=order.id,
        )
        if n:
            sent.append(n)
    return sent


def message_received(s: "Session", *, receiver_id: int, role: str, sender_name: str, preview: str, order_id: int | None = None) -> "Notification | None":
    text = preview[:PREVIEW_LENGTH] + ("..." if len(preview) > PREVIEW_LENGTH else "")
    return trigger(
        s,
        user_id=receiver_id,
        role=role,
        alert_type="message_received",
        title=f"Message de {sender_name}",
        message=text,
        data={"order_id": order_id} if order_id else None,
        order_id=order_id,
    )


def admin_urgent(s: "Session", title: str, message: str, data: dict[str, Any] | None = None) -> list["Notification"]:
    from app.fooddash.models import Role, User

    admins = s.query(User).join(User.roles).filter(Role.key == "admin").filter(User.is_active.is_(True)).all()
    sent = []
    for admin in admins:
        n = trigger(s, user_id=admin.id, role="admin", alert_type="admin_urgent", title=title, message=message, data=data)
        if n:
            sent.append(n)
    return sent


def _broadcast_roles(roles: Any) -> list[str]:
    if isinstance(roles, str):
        roles = [roles]
    if not isinstance(roles, list) or not roles:
        raise ValueError("Pick at least one target role.")
    out = []
    for role in roles:
        role = (clean_str(role) or "").lower()
        if role not in BROADCAST_ROLES:
            raise ValueError(f"Invalid role '{role}'. Must be one of: {', '.join(BROADCAST_ROLES)}")
        if role not in out:
            out.append(role)
    return out


def broadcast_recipients(s: "Session", roles: Any) -> list[tuple["User", str]]:
    """Active users holding any target role, once each, paired with the first target role they hold."""
    from app.fooddash.models import Role, User, UserRole

    roles = _broadcast_roles(roles)
    holders = select(UserRole.user_id).join(Role, Role.id == UserRole.role_id).where(Role.key.in_(roles))
    users = s.query(User).filter(User.id.in_(holders)).filter(User.is_active.is_(True)).order_by(User.id).all()
    out = []
    for u in users:
        held = set(u.role_keys)
        out.append((u, next(r for r in roles if r in held)))
    return out


def broadcast(s: "Session", *, title: Any, message: Any, roles: Any, actor: "User") -> list["Notification"]:
    title, message = clean_str(title), clean_str(message)
    if not title or not message:
        raise ValueError("Title and message are required.")
    recipients = broadcast_recipients(s, roles)
    sent = [
        trigger(s, user_id=u.id, role=role, alert_type="broadcast", title=title, message=message, data={"broadcast": True})
        for u, role in recipients
    ]
    record_event(
        s,
        actor=actor,
        action="notification.broadcast",
        entity_type="Notification",
        metadata={"roles": _broadcast_roles(roles), "title": title, "recipients": len(sent)},
    )
    logger.info("Broadcast '%s' sent to %s user(s)", title, len(sent))
    return sent


def mark_read(s: "Session", user_id: int, notification_ids: list[int] | None = None) -> int:
    """Mark the given (or all) unread notifications of a user as read."""
    from app.fooddash.modules.alerts.models import Notification

    q = s.query(Notification).filter(Notification.user_id == user_id).filter(Notification.is_read.is_(False))
    if notification_ids is not None:
        if not notification_ids:
            return 0
        q = q.filter(Notification.id.in_(notification_ids))
    now = datetime.utcnow()
    return q.update({"is_read": True, "read_at": now}, synchronize_session=False)


def serialize_notification(n: "Notification") -> dict[str, Any]:
    return {
        "id": n.id,
        "role": n.role,
        "type": n.type,
        "title": n.title,
        "message": n.message,
        "order_id": n.order_id,
        "url": n.url,
        "data": n.data or {},
        "config": n.config or {},
        "muted": n.muted,
        "is_read": n.is_read,
        "created_at": iso(n.created_at),
    }
