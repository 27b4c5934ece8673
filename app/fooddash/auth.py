from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, abort, current_app, g, request, session
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.security import check_password_hash, generate_password_hash

from app.fooddash.audit import record_event
from app.fooddash.db import db_session
from app.fooddash.models import Role, User
from app.fooddash.otp import check_code, send_code
from app.fooddash.rbac import DELIVERY_DRIVER, SELF_SERVICE_ROLES, require_login, user_has_permission
from app.fooddash.security import ensure_csrf_token, rotate_csrf_token
from app.fooddash.utils import clean_str, request_payload

bp = Blueprint("auth", __name__)
_login_attempts: dict[str, list[datetime]] = defaultdict(list)
_LOGIN_RATE_LIMIT = 5
_LOGIN_RATE_WINDOW = 300  # seconds
MIN_PASSWORD_LENGTH = 8


def _check_rate_limit(ip: str) -> bool:
    now = datetime.utcnow()
    cutoff = now - timedelta(seconds=_LOGIN_RATE_WINDOW)
    _login_attempts[ip] = [t for t in _login_attempts[ip] if t > cutoff]
    return len(_login_attempts[ip]) >= _LOGIN_RATE_LIMIT


def _record_attempt(ip: str) -> None:
    _login_attempts[ip].append(datetime.utcnow())


def load_current_user() -> None:
    """
    Loads g.current_user from the signed session cookie.
    Also assigns a simple per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    if request.path.startswith(("/health", "/healthz")):
        g.current_user = None
        return

    user_id = session.get("user_id")
    if not user_id:
        g.current_user = None
        return

    try:
        s = db_session()
        user = s.get(User, int(user_id))
        if not user or not user.is_active:
            session.pop("user_id", None)
            g.current_user = None
            return
        g.current_user = user
    except SQLAlchemyError as e:
        current_app.logger.error("load_current_user DB error (clearing session): %s", e)
        session.pop("user_id", None)
        g.current_user = None


def serialize_me(user: User) -> dict:
    keys = {p.key for r in (user.roles or []) for p in (r.permissions or [])}
    perms = sorted(k for k in keys if user_has_permission(user, k))
    return {
        "id": user.id,
        "email": user.email,
        "full_name": user.full_name,
        "phone": user.phone,
        "phone_verified": user.phone_verified_at is not None,
        "address": user.address,
        "city": user.city,
        "district": user.district,
        "avatar_url": user.avatar_url,
        "roles": user.role_keys,
        "permissions": perms,
    }


@bp.get("/csrf")
def csrf():
    return {"csrf_token": ensure_csrf_token()}


@bp.post("/register")
def register():
    from app.fooddash.modules.affiliates.service import register_referral
    from app.fooddash.modules.drivers.service import get_or_create_profile

    payload = request_payload()
    email = (clean_str(payload.get("email")) or "").lower()
    password = payload.get("password") or ""
    role_key = (clean_str(payload.get("role")) or "customer").lower()
    if not email or "@" not in email:
        raise ValueError("A valid email is required.")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    if role_key not in SELF_SERVICE_ROLES:
        raise ValueError(f"Invalid role. Must be one of: {', '.join(SELF_SERVICE_ROLES)}")

    s = db_session()
    if s.query(User.id).filter(func.lower(User.email) == email).first():
        raise ValueError("An account with this email already exists.")
    role = s.query(Role).filter(Role.key == role_key).one_or_none()
    if role is None:
        current_app.logger.error("Role %s is not seeded; run scripts/init_db.py", role_key)
        abort(500)

    user = User(
        email=email,
        password_hash=generate_password_hash(password),
        full_name=clean_str(payload.get("full_name")),
        phone=clean_str(payload.get("phone")),
        is_active=True,
    )
    user.roles.append(role)
    s.add(user)
    s.flush()
    if role_key == DELIVERY_DRIVER:
        get_or_create_profile(s, user)
    record_event(s, actor=user, action="auth.register", entity_type="User", entity_id=str(user.id), metadata={"role": role_key})

    ref = clean_str(payload.get("ref"))
    if ref:
        try:
            register_referral(
                s,
                ref,
                user,
                ip=request.remote_addr,
                user_agent=request.headers.get("User-Agent"),
                fingerprint=payload.get("device_fingerprint"),
            )
        except ValueError as e:
            # Registration still succeeds; the fraud log (if any) is kept.
            current_app.logger.warning("Referral %s not applied for user %s: %s", ref, user.id, e)
    s.commit()

    session["user_id"] = user.id
    return {"user": serialize_me(user), "csrf_token": rotate_csrf_token()}, 201


@bp.post("/login")
def login():
    payload = request_payload()
    email = (clean_str(payload.get("email")) or "").lower()
    password = payload.get("password") or ""
    ip = request.remote_addr or "unknown"

    if _check_rate_limit(ip):
        return {"error": "Too many login attempts. Please wait 5 minutes."}, 429

    _record_attempt(ip)

    s = db_session()
    user = s.query(User).filter(func.lower(User.email) == email).one_or_none()
    if not user or not user.is_active or not check_password_hash(user.password_hash, password):
        record_event(
            s,
            actor=None,
            action="auth.login_failed",
            entity_type="User",
            entity_id=email,
            reason="Invalid credentials",
            metadata={"email": email},
        )
        s.commit()
        return {"error": "Invalid credentials."}, 401

    session["user_id"] = user.id
    _login_attempts[ip].clear()
    record_event(s, actor=user, action="auth.login", entity_type="User", entity_id=str(user.id))
    s.commit()
    return {"user": serialize_me(user), "csrf_token": rotate_csrf_token()}


@bp.post("/logout")
def logout():
    s = db_session()
    user = getattr(g, "current_user", None)
    if user:
        record_event(s, actor=user, action="auth.logout", entity_type="User", entity_id=str(user.id))
        s.commit()
    session.pop("user_id", None)
    return {"ok": True, "csrf_token": rotate_csrf_token()}


@bp.get("/me")
@require_login
def me():
    return {"user": serialize_me(g.current_user)}


@bp.post("/otp/send")
def otp_send():
    result = send_code(current_app.config, request_payload().get("phone"))
    return {"ok": True, **result}


@bp.post("/otp/verify")
def otp_verify():
    payload = request_payload()
    phone, verified = check_code(current_app.config, payload.get("phone"), payload.get("code"))
    if not verified:
        return {"verified": False, "error": "Invalid or expired code."}, 400

    user = getattr(g, "current_user", None)
    if user:
        s = db_session()
        user.phone = phone
        user.phone_verified_at = datetime.utcnow()
        user.updated_at = datetime.utcnow()
        record_event(s, actor=user, action="auth.phone_verified", entity_type="User", entity_id=str(user.id), metadata={"phone": phone})
        s.commit()
    return {"verified": True, "phone": phone}
