from datetime import date, datetime, time, timedelta

from flask import Blueprint, abort, current_app, request
from sqlalchemy import func, or_, text
from sqlalchemy.exc import SQLAlchemyError

from app.fooddash.audit import record_event
from app.fooddash.db import db_session
from app.fooddash.models import AuditEvent, Role, User
from app.fooddash.permissions import list_admins, update_admin_flags
from app.fooddash.rbac import ADMIN, APP_ROLES, admin_flags, current_user, require_permission, user_has_permission
from app.fooddash.settings import DEFAULTS, get_settings, update_settings
from app.fooddash.utils import iso, money, page_args, parse_bool, request_payload

bp = Blueprint("admin", __name__)


def _parse_date(s: str) -> date | None:
    s = (s or "").strip()
    if not s:
        return None
    try:
        return date.fromisoformat(s)
    except ValueError:
        raise ValueError(f"Invalid date '{s}' (expected YYYY-MM-DD).") from None


def _serialize_user(u: User) -> dict:
    return {
        "id": u.id,
        "email": u.email,
        "full_name": u.full_name,
        "phone": u.phone,
        "phone_verified": u.phone_verified_at is not None,
        "is_active": bool(u.is_active),
        "roles": u.role_keys,
        "created_at": iso(u.created_at),
    }


def _serialize_event(ev: AuditEvent) -> dict:
    return {
        "id": ev.id,
        "created_at": iso(ev.created_at),
        "request_id": ev.request_id,
        "client_ip": ev.client_ip,
        "actor_user_id": ev.actor_user_id,
        "actor_user_email": ev.actor_user_email,
        "action": ev.action,
        "entity_type": ev.entity_type,
        "entity_id": ev.entity_id,
        "reason": ev.reason,
        "metadata": ev.metadata_json,
    }


def system_status() -> dict:
    s = db_session()
    status = {
        "env": (current_app.config.get("ENV") or "development").strip().lower(),
        "db_connected": False,
        "db_error": None,
        "storage_backend": None,
        "storage_configured": False,
        "storage_error": None,
        "otp_configured": bool(
            current_app.config.get("TWILIO_ACCOUNT_SID")
            and current_app.config.get("TWILIO_AUTH_TOKEN")
            and current_app.config.get("TWILIO_VERIFY_SERVICE_SID")
        ),
        "otp_dev_mode": bool(current_app.config.get("OTP_DEV_MODE")),
        "routing_configured": bool(current_app.config.get("OPENROUTESERVICE_API_KEY")),
        "ai_configured": bool(current_app.config.get("AI_GATEWAY_API_KEY")),
    }

    # DB connectivity (lightweight)
    try:
        s.execute(text("SELECT 1"))
        status["db_connected"] = True
    except SQLAlchemyError as e:
        s.rollback()
        status["db_error"] = str(e)

    # Storage config (no network calls)
    storage_backend = (current_app.config.get("STORAGE_BACKEND") or "local").strip().lower()
    status["storage_backend"] = storage_backend
    if storage_backend == "s3":
        missing = [k for k in ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY") if not current_app.config.get(k)]
        status["storage_configured"] = not missing
        if missing:
            status["storage_error"] = f"Missing: {', '.join(missing)}"
    else:
        status["storage_configured"] = True
    return status


@bp.get("/overview")
@require_permission("admin.view")
def overview():
    from app.fooddash.modules.drivers.models import DriverProfile
    from app.fooddash.modules.orders.service import order_stats
    from app.fooddash.modules.restaurants.models import Restaurant
    from app.fooddash.modules.support.service import ticket_counts

    s = db_session()
    users_by_role = {key: 0 for key in APP_ROLES}
    for key, n in s.query(Role.key, func.count(User.id)).join(Role.users).group_by(Role.key).all():
        users_by_role[key] = int(n)
    tickets = ticket_counts(s)
    orders = order_stats(s)
    return {
        "users": {"total": s.query(func.count(User.id)).scalar() or 0, "by_role": users_by_role},
        "restaurants": {
            "active": s.query(func.count(Restaurant.id)).filter(Restaurant.is_active.is_(True)).scalar() or 0,
            "pending_validation": s.query(func.count(Restaurant.id)).filter(Restaurant.is_validated.is_(False)).scalar() or 0,
        },
        "drivers": {
            "available": s.query(func.count(DriverProfile.id))
            .filter(DriverProfile.is_available.is_(True), DriverProfile.is_validated.is_(True))
            .scalar()
            or 0,
            "pending_validation": s.query(func.count(DriverProfile.id)).filter(DriverProfile.is_validated.is_(False)).scalar() or 0,
        },
        "orders": {"today": orders["today"], "total": orders["total"], "by_status": orders["by_status"]},
        "revenue": {"delivered": orders["revenue"], "commission": orders["commission"]},
        "open_tickets": tickets["open"] + tickets["in_progress"] + tickets["waiting"],
    }


@bp.get("/system")
@require_permission("admin.view")
def system():
    return {"status": system_status()}


# ---------- Users ----------
@bp.get("/users")
@require_permission("users.manage")
def users_list():
    s = db_session()
    page, per_page = page_args()
    q = s.query(User)
    search = (request.args.get("q") or "").strip()
    if search:
        like = f"%{search}%"
        q = q.filter(or_(User.email.ilike(like), User.full_name.ilike(like), User.phone.ilike(like)))
    role = (request.args.get("role") or "").strip()
    if role:
        q = q.join(User.roles).filter(Role.key == role)
    if "active" in request.args:
        q = q.filter(User.is_active.is_(parse_bool(request.args.get("active"))))
    total = q.count()
    rows = q.order_by(User.created_at.desc()).offset((page - 1) * per_page).limit(per_page).all()
    return {"users": [_serialize_user(u) for u in rows], "total": total, "page": page, "per_page": per_page}


def _user(user_id: int) -> User:
    u = db_session().get(User, user_id)
    if not u:
        abort(404)
    return u


@bp.get("/users/<int:user_id>")
@require_permission("users.manage")
def user_detail(user_id: int):
    from app.fooddash.modules.orders.models import Order

    s = db_session()
    u = _user(user_id)
    orders = s.query(func.count(Order.id), func.coalesce(func.sum(Order.total), 0)).filter(
        Order.user_id == u.id, Order.status == "delivered"
    ).one()
    recent = (
        s.query(AuditEvent)
        .filter(or_(AuditEvent.actor_user_id == u.id, (AuditEvent.entity_type == "User") & (AuditEvent.entity_id == str(u.id))))
        .order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc())
        .limit(20)
        .all()
    )
    data = _serialize_user(u)
    data.update({"address": u.address, "city": u.city, "district": u.district})
    return {
        "user": data,
        "delivered_orders": int(orders[0] or 0),
        "delivered_total": money(orders[1]),
        "recent_activity": [_serialize_event(ev) for ev in recent],
    }


@bp.post("/users/<int:user_id>/active")
@require_permission("users.manage")
def user_set_active(user_id: int):
    s = db_session()
    u = _user(user_id)
    actor = current_user()
    active = parse_bool(request_payload().get("is_active"))
    if u.id == actor.id and not active:
        raise ValueError("You cannot deactivate your own account.")
    if any(r.key == ADMIN for r in u.roles) and not user_has_permission(actor, "admins.manage"):
        abort(403)
    u.is_active = active
    u.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=actor,
        action="user.activate" if active else "user.deactivate",
        entity_type="User",
        entity_id=str(u.id),
        reason=request_payload().get("reason"),
    )
    s.commit()
    return {"user": _serialize_user(u)}


@bp.post("/users/<int:user_id>/roles")
@require_permission("users.manage")
def user_roles_update(user_id: int):
    """Grant or revoke one role: {"role": "...", "grant": true|false}."""
    s = db_session()
    u = _user(user_id)
    actor = current_user()
    payload = request_payload()
    role_key = (payload.get("role") or "").strip()
    grant = parse_bool(payload.get("grant"), default=True)
    if role_key not in APP_ROLES:
        raise ValueError(f"Invalid role. Must be one of: {', '.join(APP_ROLES)}")
    if role_key == ADMIN:
        if not user_has_permission(actor, "admins.manage"):
            abort(403)
        if u.id == actor.id and not grant:
            raise ValueError("You cannot revoke your own admin role.")
    role = s.query(Role).filter(Role.key == role_key).one_or_none()
    if role is None:
        raise LookupError(f"Role {role_key} is not seeded.")

    has = role in u.roles
    if grant and not has:
        u.roles.append(role)
        if role_key == "delivery_driver":
            from app.fooddash.modules.drivers.service import get_or_create_profile

            get_or_create_profile(s, u)
    elif not grant and has:
        u.roles.remove(role)
    else:
        return {"user": _serialize_user(u)}
    record_event(
        s,
        actor=actor,
        action="user.role_grant" if grant else "user.role_revoke",
        entity_type="User",
        entity_id=str(u.id),
        metadata={"role": role_key},
    )
    s.commit()
    return {"user": _serialize_user(u)}


# ---------- Admin permissions ----------
@bp.get("/admins")
@require_permission("admins.manage")
def admins_list():
    s = db_session()
    return {"admins": [{**_serialize_user(u), "permissions": admin_flags(u)} for u in list_admins(s)]}


@bp.put("/admins/<int:user_id>/permissions")
@require_permission("admins.manage")
def admin_permissions_update(user_id: int):
    s = db_session()
    u = _user(user_id)
    flags = update_admin_flags(s, u, request_payload(), current_user())
    s.commit()
    return {"admin": {**_serialize_user(u), "permissions": flags}}


# ---------- Audit ----------
@bp.get("/audit")
@require_permission("admin.audit")
def audit_list():
    """
    Audit trail (last 200 events) with simple filters:
    - action (contains)
    - actor_email (contains)
    - date range (YYYY-MM-DD, inclusive)
    """
    s = db_session()
    action = (request.args.get("action") or "").strip()
    actor_email = (request.args.get("actor_email") or "").strip()
    date_from = _parse_date(request.args.get("date_from") or "")
    date_to = _parse_date(request.args.get("date_to") or "")

    q = s.query(AuditEvent)
    if action:
        q = q.filter(AuditEvent.action.like(f"%{action}%"))
    if actor_email:
        q = q.filter(AuditEvent.actor_user_email.like(f"%{actor_email.lower()}%"))
    if date_from:
        q = q.filter(AuditEvent.created_at >= datetime.combine(date_from, time.min))
    if date_to:
        # inclusive end-date (treat as whole day)
        q = q.filter(AuditEvent.created_at < datetime.combine(date_to + timedelta(days=1), time.min))

    events = q.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc()).limit(200).all()
    return {"events": [_serialize_event(ev) for ev in events]}


# ---------- Platform settings ----------
@bp.get("/settings")
@require_permission("settings.manage")
def settings_get():
    category = (request.args.get("category") or "").strip() or None
    return {
        "settings": get_settings(db_session(), category),
        "descriptions": {k: v[2] for k, v in DEFAULTS.items() if category is None or v[0] == category},
    }


@bp.put("/settings")
@require_permission("settings.manage")
def settings_update():
    s = db_session()
    payload = request_payload()
    payload.pop("csrf_token", None)
    changed = update_settings(s, payload, current_user())
    s.commit()
    return {"changed": changed, "settings": get_settings(s)}
