from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from app.fooddash.audit import record_event
from app.fooddash.modules.alerts.service import admin_urgent
from app.fooddash.rbac import CUSTOMER, DELIVERY_DRIVER, RESTAURANT_OWNER, has_role, user_has_permission
from app.fooddash.realtime import ADMIN_CHANNEL, record_change, user_channel
from app.fooddash.utils import clean_str, iso, parse_bool, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from app.fooddash.models import User
    from app.fooddash.modules.support.models import FaqCategory, FaqItem, SupportTicket, TicketMessage

PRIORITIES = ("low", "normal", "high", "urgent")
TICKET_STATUSES = ("open", "in_progress", "waiting", "resolved", "closed")
CATEGORIES = ("order", "payment", "delivery", "account", "restaurant", "other")
MAX_MESSAGE_LENGTH = 5000


def is_staff(user: "User | None") -> bool:
    return user_has_permission(user, "support.manage")


def can_view_ticket(ticket: "SupportTicket", user: "User") -> bool:
    return ticket.user_id == user.id or is_staff(user)


def _user_type(user: "User") -> str:
    for role in (DELIVERY_DRIVER, RESTAURANT_OWNER, CUSTOMER):
        if has_role(user, role):
            return role
    return "admin" if is_staff(user) else CUSTOMER


def _notify(s: "Session", ticket: "SupportTicket", op: str = "update") -> None:
    channels = [ADMIN_CHANNEL]
    if ticket.user_id:
        channels.append(user_channel(ticket.user_id))
    if ticket.assigned_to_user_id:
        channels.append(user_channel(ticket.assigned_to_user_id))
    record_change(
        s,
        channels=channels,
        table="support_tickets",
        row_id=ticket.id,
        op=op,
        payload={"status": ticket.status, "priority": ticket.priority},
    )


def _escalate(s: "Session", ticket: "SupportTicket") -> None:
    admin_urgent(
        s,
        "Urgent support ticket",
        f"#{ticket.id}: {ticket.subject}",
        data={"ticket_id": ticket.id, "url": f"/admin/support/{ticket.id}"},
    )


def _choice(value: Any, allowed: tuple[str, ...], field: str, default: str | None = None) -> str | None:
    v = (clean_str(value) or "").lower() or default
    if v is None:
        return None
    if v not in allowed:
        raise ValueError(f"Invalid {field}. Must be one of: {', '.join(allowed)}")
    return v


# ---------- Tickets ----------
def open_ticket(s: "Session", user: "User", payload: dict) -> "SupportTicket":
    from app.fooddash.modules.orders.models import Order
    from app.fooddash.modules.orders.service import can_view_order
    from app.fooddash.modules.support.models import SupportTicket

    subject = clean_str(payload.get("subject"))
    description = clean_str(payload.get("description"))
    if not subject:
        raise ValueError("Subject is required.")
    if not description:
        raise ValueError("Description is required.")
    order_id = parse_int(payload.get("order_id"), field="order_id")
    if order_id is not None:
        order = s.get(Order, order_id)
        if not order or not can_view_order(order, user):
            raise ValueError("Unknown order.")

    ticket = SupportTicket(
        user_id=user.id,
        user_type=_user_type(user),
        subject=subject,
        description=description,
        category=_choice(payload.get("category"), CATEGORIES, "category", default="other"),
        priority=_choice(payload.get("priority"), PRIORITIES, "priority", default="normal"),
        status="open",
        order_id=order_id,
    )
    s.add(ticket)
    s.flush()
    record_event(
        s,
        actor=user,
        action="support.ticket.create",
        entity_type="support_ticket",
        entity_id=str(ticket.id),
        metadata={"priority": ticket.priority, "category": ticket.category},
    )
    _notify(s, ticket, op="insert")
    if ticket.priority == "urgent":
        _escalate(s, ticket)
    return ticket


def update_ticket(s: "Session", ticket: "SupportTicket", user: "User", payload: dict) -> "SupportTicket":
    """Staff-side changes: status, priority, assignee."""
    from app.fooddash.models import User

    if not is_staff(user):
        raise PermissionError("Only support staff can update tickets.")
    changes: dict[str, Any] = {}
    if "status" in payload:
        status = _choice(payload.get("status"), TICKET_STATUSES, "status")
        if status != ticket.status:
            changes["status"] = [ticket.status, status]
            ticket.status = status
    escalated = False
    if "priority" in payload:
        priority = _choice(payload.get("priority"), PRIORITIES, "priority")
        if priority != ticket.priority:
            changes["priority"] = [ticket.priority, priority]
            escalated = priority == "urgent"
            ticket.priority = priority
    if "assigned_to_user_id" in payload:
        assignee_id = parse_int(payload.get("assigned_to_user_id"), field="assigned_to_user_id")
        if assignee_id is not None:
            assignee = s.get(User, assignee_id)
            if not assignee or not is_staff(assignee):
                raise ValueError("Tickets can only be assigned to support staff.")
        if assignee_id != ticket.assigned_to_user_id:
            changes["assigned_to_user_id"] = [ticket.assigned_to_user_id, assignee_id]
            ticket.assigned_to_user_id = assignee_id
    if not changes:
        return ticket
    ticket.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="support.ticket.update",
        entity_type="support_ticket",
        entity_id=str(ticket.id),
        metadata=changes,
    )
    _notify(s, ticket)
    if escalated:
        _escalate(s, ticket)
    s.flush()
    return ticket


def post_ticket_message(s: "Session", ticket: "SupportTicket", sender: "User", payload: dict) -> "TicketMessage":
    from app.fooddash.modules.support.models import TicketMessage

    staff = is_staff(sender)
    if ticket.user_id != sender.id and not staff:
        raise PermissionError("You cannot post on this ticket.")
    content = clean_str(payload.get("content"))
    if not content:
        raise ValueError("Message content is required.")
    if len(content) > MAX_MESSAGE_LENGTH:
        raise ValueError(f"Message is too long (max {MAX_MESSAGE_LENGTH} characters).")
    internal = parse_bool(payload.get("is_internal"))
    if internal and not staff:
        raise PermissionError("Only support staff can post internal notes.")
    if ticket.status == "closed" and not staff:
        raise ValueError("This ticket is closed.")

    msg = TicketMessage(ticket_id=ticket.id, sender_id=sender.id, content=content, is_internal=internal)
    s.add(msg)
    ticket.updated_at = datetime.utcnow()
    s.flush()
    channels = [ADMIN_CHANNEL]
    if ticket.user_id and not internal:
        channels.append(user_channel(ticket.user_id))
    record_change(
        s,
        channels=channels,
        table="ticket_messages",
        row_id=msg.id,
        op="insert",
        payload={"ticket_id": ticket.id, "is_internal": internal},
    )
    return msg


def visible_messages(s: "Session", ticket: "SupportTicket", user: "User") -> list["TicketMessage"]:
    from app.fooddash.modules.support.models import TicketMessage

    q = s.query(TicketMessage).filter(TicketMessage.ticket_id == ticket.id)
    if not is_staff(user):
        q = q.filter(TicketMessage.is_internal.is_(False))
    return q.order_by(TicketMessage.created_at.asc(), TicketMessage.id.asc()).all()


# ---------- FAQ ----------
def save_faq_category(s: "Session", payload: dict, user: "User", category: "FaqCategory | None" = None) -> "FaqCategory":
    from app.fooddash.modules.support.models import FaqCategory

    creating = category is None
    if creating or "name" in payload:
        name = clean_str(payload.get("name"))
        if not name:
            raise ValueError("Name is required.")
    if creating:
        category = FaqCategory(name=name)
        s.add(category)
    elif "name" in payload:
        category.name = name
    for field in ("description", "icon"):
        if field in payload:
            setattr(category, field, clean_str(payload.get(field)))
    if "display_order" in payload:
        category.display_order = parse_int(payload.get("display_order"), field="display_order") or 0
    if "is_active" in payload:
        category.is_active = parse_bool(payload.get("is_active"), default=True)
    category.updated_at = datetime.utcnow()
    s.flush()
    record_event(
        s,
        actor=user,
        action="faq.category.create" if creating else "faq.category.update",
        entity_type="faq_category",
        entity_id=str(category.id),
    )
    return category


def save_faq_item(s: "Session", payload: dict, user: "User", item: "FaqItem | None" = None) -> "FaqItem":
    from app.fooddash.modules.support.models import FaqCategory, FaqItem

    creating = item is None
    if creating or "category_id" in payload:
        category_id = parse_int(payload.get("category_id"), field="category_id")
        if category_id is None or not s.get(FaqCategory, category_id):
            raise ValueError("Unknown FAQ category.")
    fields = {}
    for field in ("question", "answer"):
        if creating or field in payload:
            value = clean_str(payload.get(field))
            if not value:
                raise ValueError(f"{field.capitalize()} is required.")
            fields[field] = value
    if creating:
        item = FaqItem(category_id=category_id, **fields)
        s.add(item)
    else:
        if "category_id" in payload:
            item.category_id = category_id
        for k, v in fields.items():
            setattr(item, k, v)
    if "display_order" in payload:
        item.display_order = parse_int(payload.get("display_order"), field="display_order") or 0
    if "is_active" in payload:
        item.is_active = parse_bool(payload.get("is_active"), default=True)
    item.updated_at = datetime.utcnow()
    s.flush()
    record_event(
        s,
        actor=user,
        action="faq.item.create" if creating else "faq.item.update",
        entity_type="faq_item",
        entity_id=str(item.id),
    )
    return item


def public_faq(s: "Session") -> list[dict[str, Any]]:
    """Active categories in display order, each with its active items."""
    from app.fooddash.modules.support.models import FaqCategory, FaqItem

    categories = (
        s.query(FaqCategory)
        .filter(FaqCategory.is_active.is_(True))
        .order_by(FaqCategory.display_order.asc(), FaqCategory.id.asc())
        .all()
    )
    items = (
        s.query(FaqItem)
        .filter(FaqItem.is_active.is_(True))
        .order_by(FaqItem.display_order.asc(), FaqItem.id.asc())
        .all()
    )
    by_category: dict[int, list] = {}
    for it in items:
        by_category.setdefault(it.category_id, []).append(serialize_faq_item(it))
    return [dict(serialize_faq_category(c), items=by_category.get(c.id, [])) for c in categories]


def ticket_counts(s: "Session") -> dict[str, int]:
    from sqlalchemy import func

    from app.fooddash.modules.support.models import SupportTicket

    rows = s.query(SupportTicket.status, func.count(SupportTicket.id)).group_by(SupportTicket.status).all()
    counts = {status: 0 for status in TICKET_STATUSES}
    counts.update({status: int(n) for status, n in rows})
    return counts


def serialize_ticket(t: "SupportTicket") -> dict[str, Any]:
    return {
        "id": t.id,
        "subject": t.subject,
        "description": t.description,
        "category": t.category,
        "priority": t.priority,
        "status": t.status,
        "order_id": t.order_id,
        "user_id": t.user_id,
        "user_type": t.user_type,
        "user_name": t.user.full_name if t.user else None,
        "assigned_to_user_id": t.assigned_to_user_id,
        "assignee_name": t.assignee.full_name if t.assignee else None,
        "created_at": iso(t.created_at),
        "updated_at": iso(t.updated_at),
    }


def serialize_ticket_message(m: "TicketMessage") -> dict[str, Any]:
    return {
        "id": m.id,
        "ticket_id": m.ticket_id,
        "sender_id": m.sender_id,
        "sender_name": m.sender.full_name if m.sender else None,
        "content": m.content,
        "is_internal": bool(m.is_internal),
        "created_at": iso(m.created_at),
    }


def serialize_faq_category(c: "FaqCategory") -> dict[str, Any]:
    return {
        "id": c.id,
        "name": c.name,
        "description": c.description,
        "icon": c.icon,
        "display_order": c.display_order,
        "is_active": bool(c.is_active),
    }


def serialize_faq_item(i: "FaqItem") -> dict[str, Any]:
    return {
        "id": i.id,
        "category_id": i.category_id,
        "question": i.question,
        "answer": i.answer,
        "display_order": i.display_order,
        "is_active": bool(i.is_active),
    }
