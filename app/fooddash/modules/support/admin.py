from __future__ import annotations

from flask import Blueprint, abort, request

from app.fooddash.audit import record_event
from app.fooddash.db import db_session
from app.fooddash.modules.support.models import FaqCategory, FaqItem, SupportTicket
from app.fooddash.modules.support.service import (
    PRIORITIES,
    TICKET_STATUSES,
    can_view_ticket,
    open_ticket,
    post_ticket_message,
    public_faq,
    save_faq_category,
    save_faq_item,
    serialize_faq_category,
    serialize_faq_item,
    serialize_ticket,
    serialize_ticket_message,
    ticket_counts,
    update_ticket,
    visible_messages,
)
from app.fooddash.rbac import current_user, require_login, require_permission
from app.fooddash.utils import page_args, parse_int, request_payload

bp = Blueprint("support", __name__)


def _visible_ticket(ticket_id: int) -> SupportTicket:
    t = db_session().get(SupportTicket, ticket_id)
    if not t or not can_view_ticket(t, current_user()):
        abort(404)
    return t


# ---------- Tickets ----------
@bp.get("/support/tickets")
@require_login
def my_tickets():
    s = db_session()
    rows = (
        s.query(SupportTicket)
        .filter(SupportTicket.user_id == current_user().id)
        .order_by(SupportTicket.updated_at.desc())
        .all()
    )
    return {"tickets": [serialize_ticket(t) for t in rows]}


@bp.post("/support/tickets")
@require_permission("support.create")
def ticket_create():
    s = db_session()
    t = open_ticket(s, current_user(), request_payload())
    s.commit()
    return {"ticket": serialize_ticket(t)}, 201


@bp.get("/support/tickets/<int:ticket_id>")
@require_login
def ticket_detail(ticket_id: int):
    s = db_session()
    t = _visible_ticket(ticket_id)
    return {
        "ticket": serialize_ticket(t),
        "messages": [serialize_ticket_message(m) for m in visible_messages(s, t, current_user())],
    }


@bp.post("/support/tickets/<int:ticket_id>/messages")
@require_login
def ticket_message_post(ticket_id: int):
    s = db_session()
    m = post_ticket_message(s, _visible_ticket(ticket_id), current_user(), request_payload())
    s.commit()
    return {"message": serialize_ticket_message(m)}, 201


# ---------- Staff inbox ----------
@bp.get("/admin/support/tickets")
@require_permission("support.manage")
def admin_tickets_list():
    s = db_session()
    page, per_page = page_args()
    q = s.query(SupportTicket)
    status = (request.args.get("status") or "").strip()
    if status:
        if status not in TICKET_STATUSES:
            raise ValueError(f"Invalid status. Must be one of: {', '.join(TICKET_STATUSES)}")
        q = q.filter(SupportTicket.status == status)
    priority = (request.args.get("priority") or "").strip()
    if priority:
        if priority not in PRIORITIES:
            raise ValueError(f"Invalid priority. Must be one of: {', '.join(PRIORITIES)}")
        q = q.filter(SupportTicket.priority == priority)
    assignee = (request.args.get("assigned_to") or "").strip()
    if assignee == "me":
        q = q.filter(SupportTicket.assigned_to_user_id == current_user().id)
    elif assignee == "none":
        q = q.filter(SupportTicket.assigned_to_user_id.is_(None))
    elif assignee:
        q = q.filter(SupportTicket.assigned_to_user_id == parse_int(assignee, field="assigned_to"))
    total = q.count()
    rows = q.order_by(SupportTicket.updated_at.desc()).offset((page - 1) * per_page).limit(per_page).all()
    return {
        "tickets": [serialize_ticket(t) for t in rows],
        "total": total,
        "page": page,
        "per_page": per_page,
        "counts": ticket_counts(s),
    }


@bp.patch("/admin/support/tickets/<int:ticket_id>")
@require_permission("support.manage")
def admin_ticket_update(ticket_id: int):
    s = db_session()
    t = update_ticket(s, _visible_ticket(ticket_id), current_user(), request_payload())
    s.commit()
    return {"ticket": serialize_ticket(t)}


# ---------- FAQ ----------
@bp.get("/faq")
def faq_public():
    return {"categories": public_faq(db_session())}


@bp.get("/admin/faq")
@require_permission("support.manage")
def admin_faq_list():
    s = db_session()
    categories = s.query(FaqCategory).order_by(FaqCategory.display_order.asc(), FaqCategory.id.asc()).all()
    items = s.query(FaqItem).order_by(FaqItem.display_order.asc(), FaqItem.id.asc()).all()
    return {
        "categories": [serialize_faq_category(c) for c in categories],
        "items": [serialize_faq_item(i) for i in items],
    }


@bp.post("/admin/faq/categories")
@require_permission("support.manage")
def admin_faq_category_create():
    s = db_session()
    c = save_faq_category(s, request_payload(), current_user())
    s.commit()
    return {"category": serialize_faq_category(c)}, 201


@bp.patch("/admin/faq/categories/<int:category_id>")
@require_permission("support.manage")
def admin_faq_category_update(category_id: int):
    s = db_session()
    c = s.get(FaqCategory, category_id)
    if not c:
        abort(404)
    save_faq_category(s, request_payload(), current_user(), c)
    s.commit()
    return {"category": serialize_faq_category(c)}


@bp.delete("/admin/faq/categories/<int:category_id>")
@require_permission("support.manage")
def admin_faq_category_delete(category_id: int):
    s = db_session()
    c = s.get(FaqCategory, category_id)
    if not c:
        abort(404)
    record_event(s, actor=current_user(), action="faq.category.delete", entity_type="faq_category", entity_id=str(c.id))
    s.query(FaqItem).filter(FaqItem.category_id == c.id).delete(synchronize_session=False)
    s.delete(c)
    s.commit()
    return {"ok": True}


@bp.post("/admin/faq/items")
@require_permission("support.manage")
def admin_faq_item_create():
    s = db_session()
    i = save_faq_item(s, request_payload(), current_user())
    s.commit()
    return {"item": serialize_faq_item(i)}, 201


@bp.patch("/admin/faq/items/<int:item_id>")
@require_permission("support.manage")
def admin_faq_item_update(item_id: int):
    s = db_session()
    i = s.get(FaqItem, item_id)
    if not i:
        abort(404)
    save_faq_item(s, request_payload(), current_user(), i)
    s.commit()
    return {"item": serialize_faq_item(i)}


@bp.delete("/admin/faq/items/<int:item_id>")
@require_permission("support.manage")
def admin_faq_item_delete(item_id: int):
    s = db_session()
    i = s.get(FaqItem, item_id)
    if not i:
        abort(404)
    record_event(s, actor=current_user(), action="faq.item.delete", entity_type="faq_item", entity_id=str(i.id))
    s.delete(i)
    s.commit()
    return {"ok": True}
