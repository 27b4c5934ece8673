from __future__ import annotations

from flask import Blueprint, request

from app.fooddash.db import db_session
from app.fooddash.modules.alerts.models import Notification
from app.fooddash.modules.alerts.service import broadcast, broadcast_recipients, mark_read, serialize_notification
from app.fooddash.rbac import current_user, require_login, require_permission
from app.fooddash.utils import page_args, parse_bool, parse_int, request_payload

bp = Blueprint("alerts", __name__)


@bp.get("/notifications")
@require_login
def notifications_list():
    s = db_session()
    u = current_user()
    page, per_page = page_args()
    q = s.query(Notification).filter(Notification.user_id == u.id)
    if parse_bool(request.args.get("unread")):
        q = q.filter(Notification.is_read.is_(False))
    total = q.count()
    unread = s.query(Notification).filter(Notification.user_id == u.id, Notification.is_read.is_(False)).count()
    rows = q.order_by(Notification.id.desc()).offset((page - 1) * per_page).limit(per_page).all()
    return {
        "notifications": [serialize_notification(n) for n in rows],
        "total": total,
        "unread": unread,
        "page": page,
        "per_page": per_page,
    }


@bp.post("/notifications/read")
@require_login
def notifications_mark_read():
    s = db_session()
    payload = request_payload()
    ids = payload.get("ids")
    if payload.get("all") is not None and parse_bool(payload.get("all")):
        ids = None
    elif not isinstance(ids, list):
        raise ValueError("Provide 'ids' (list) or 'all': true.")
    else:
        ids = [parse_int(i, field="ids") for i in ids]
    updated = mark_read(s, current_user().id, ids)
    s.commit()
    return {"updated": updated}


# ---------- Admin broadcast ----------
@bp.get("/admin/notifications/broadcast/recipients")
@require_permission("users.manage")
def admin_broadcast_recipients():
    roles = [r for r in (request.args.get("roles") or "").split(",") if r.strip()]
    return {"count": len(broadcast_recipients(db_session(), roles))}


@bp.post("/admin/notifications/broadcast")
@require_permission("users.manage")
def admin_broadcast():
    s = db_session()
    payload = request_payload()
    sent = broadcast(s, title=payload.get("title"), message=payload.get("message"), roles=payload.get("target_roles"), actor=current_user())
    s.commit()
    return {"sent": len(sent)}, 201
