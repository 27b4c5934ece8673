from __future__ import annotations

from decimal import Decimal

from flask import Blueprint, abort, g, request

from app.fooddash.db import db_session
from app.fooddash.modules.marketing.models import Banner, Campaign, Popup, PromoCode
from app.fooddash.modules.marketing.service import (
    active_banners,
    active_popups,
    bump_counter,
    create_item,
    create_promo_code,
    delete_item,
    delete_promo_code,
    serialize_item,
    serialize_promo,
    update_item,
    update_promo_code,
    validate_promo,
)
from app.fooddash.modules.restaurants.models import Restaurant
from app.fooddash.rbac import current_user, require_login, require_permission, user_has_permission
from app.fooddash.utils import money, parse_decimal, parse_int, request_payload

bp = Blueprint("marketing", __name__)

_MODELS = {"banners": ("banner", Banner), "popups": ("popup", Popup), "campaigns": ("campaign", Campaign)}
_COUNTERS = {"view": "view_count", "click": "click_count", "display": "display_count"}


def _kind(collection: str):
    if collection not in _MODELS:
        abort(404)
    return _MODELS[collection]


# ---------- Public ----------
@bp.get("/marketing/banners")
def banners_public():
    s = db_session()
    audience = (request.args.get("audience") or "").strip() or None
    if audience is None:
        user = getattr(g, "current_user", None)
        audience = user.role_keys[0] if user and user.role_keys else None
    rows = active_banners(s, audience=audience, position=(request.args.get("position") or "").strip() or None)
    return {"banners": [serialize_item(b) for b in rows]}


@bp.get("/marketing/popups")
def popups_public():
    s = db_session()
    rows = active_popups(s, page=(request.args.get("page") or "").strip() or None)
    return {"popups": [serialize_item(p) for p in rows]}


@bp.post("/marketing/<collection>/<int:obj_id>/<event>")
def marketing_track(collection: str, obj_id: int, event: str):
    s = db_session()
    kind, _model = _kind(collection)
    counter = _COUNTERS.get(event)
    if counter is None:
        abort(404)
    if not bump_counter(s, kind, obj_id, counter):
        abort(404)
    s.commit()
    return {"ok": True}


@bp.post("/promo-codes/validate")
@require_login
def promo_validate():
    s = db_session()
    payload = request_payload()
    subtotal = parse_decimal(payload.get("subtotal"), field="subtotal", minimum=Decimal("0")) or Decimal("0")
    restaurant_id = parse_int(payload.get("restaurant_id"), field="restaurant_id")
    promo, discount = validate_promo(s, payload.get("code"), subtotal, restaurant_id)
    return {"promo_code_id": promo.id, "code": promo.code, "discount": money(discount)}


# ---------- Restaurant-owned promo codes ----------
def _owned_restaurant(restaurant_id: int) -> Restaurant:
    r = db_session().get(Restaurant, restaurant_id)
    if not r:
        abort(404)
    u = current_user()
    if r.owner_id != u.id and not user_has_permission(u, "marketing.manage"):
        abort(403)
    return r


def _editable_promo(promo_id: int) -> PromoCode:
    promo = db_session().get(PromoCode, promo_id)
    if not promo:
        abort(404)
    u = current_user()
    if user_has_permission(u, "marketing.manage"):
        return promo
    if promo.restaurant_id is None:
        abort(403)
    _owned_restaurant(promo.restaurant_id)
    return promo


@bp.get("/restaurants/<int:restaurant_id>/promo-codes")
@require_permission("marketing.own")
def restaurant_promo_list(restaurant_id: int):
    s = db_session()
    r = _owned_restaurant(restaurant_id)
    rows = s.query(PromoCode).filter(PromoCode.restaurant_id == r.id).order_by(PromoCode.created_at.desc()).all()
    return {"promo_codes": [serialize_promo(p) for p in rows]}


@bp.post("/restaurants/<int:restaurant_id>/promo-codes")
@require_permission("marketing.own")
def restaurant_promo_create(restaurant_id: int):
    s = db_session()
    r = _owned_restaurant(restaurant_id)
    promo = create_promo_code(s, request_payload(), current_user(), restaurant_id=r.id)
    s.commit()
    return {"promo_code": serialize_promo(promo)}, 201


@bp.patch("/promo-codes/<int:promo_id>")
@require_login
def promo_update(promo_id: int):
    s = db_session()
    promo = _editable_promo(promo_id)
    update_promo_code(s, promo, request_payload(), current_user())
    s.commit()
    return {"promo_code": serialize_promo(promo)}


@bp.delete("/promo-codes/<int:promo_id>")
@require_login
def promo_delete(promo_id: int):
    s = db_session()
    promo = _editable_promo(promo_id)
    delete_promo_code(s, promo, current_user())
    s.commit()
    return {"deleted": promo_id}


# ---------- Admin ----------
@bp.get("/admin/promo-codes")
@require_permission("marketing.manage")
def admin_promo_list():
    s = db_session()
    q = s.query(PromoCode)
    search = (request.args.get("q") or "").strip()
    if search:
        q = q.filter(PromoCode.code.ilike(f"%{search.upper()}%"))
    rows = q.order_by(PromoCode.created_at.desc()).all()
    return {"promo_codes": [serialize_promo(p) for p in rows]}


@bp.post("/admin/promo-codes")
@require_permission("marketing.manage")
def admin_promo_create():
    s = db_session()
    payload = request_payload()
    restaurant_id = parse_int(payload.get("restaurant_id"), field="restaurant_id")
    if restaurant_id is not None and not s.get(Restaurant, restaurant_id):
        raise ValueError("Unknown restaurant.")
    promo = create_promo_code(s, payload, current_user(), restaurant_id=restaurant_id)
    s.commit()
    return {"promo_code": serialize_promo(promo)}, 201


@bp.get("/admin/marketing/<collection>")
@require_permission("marketing.manage")
def admin_marketing_list(collection: str):
    s = db_session()
    _kind_name, model = _kind(collection)
    rows = s.query(model).order_by(model.created_at.desc()).all()
    return {collection: [serialize_item(o) for o in rows]}


@bp.post("/admin/marketing/<collection>")
@require_permission("marketing.manage")
def admin_marketing_create(collection: str):
    s = db_session()
    kind, _model = _kind(collection)
    obj = create_item(s, kind, request_payload(), current_user())
    s.commit()
    return {kind: serialize_item(obj)}, 201


@bp.patch("/admin/marketing/<collection>/<int:obj_id>")
@require_permission("marketing.manage")
def admin_marketing_update(collection: str, obj_id: int):
    s = db_session()
    kind, model = _kind(collection)
    obj = s.get(model, obj_id)
    if not obj:
        abort(404)
    update_item(s, kind, obj, request_payload(), current_user())
    s.commit()
    return {kind: serialize_item(obj)}


@bp.delete("/admin/marketing/<collection>/<int:obj_id>")
@require_permission("marketing.manage")
def admin_marketing_delete(collection: str, obj_id: int):
    s = db_session()
    kind, model = _kind(collection)
    obj = s.get(model, obj_id)
    if not obj:
        abort(404)
    delete_item(s, kind, obj, current_user())
    s.commit()
    return {"deleted": obj_id}
