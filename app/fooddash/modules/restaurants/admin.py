from __future__ import annotations

from datetime import datetime

from flask import Blueprint, abort, current_app, g, request

from app.fooddash.db import db_session
from app.fooddash.models import User
from app.fooddash.modules.restaurants.models import Bundle, MenuItem, MenuOption, MenuOptionGroup, Restaurant
from app.fooddash.modules.restaurants.service import (
    add_validation_document,
    create_bundle,
    create_menu_item,
    create_option,
    create_option_group,
    create_restaurant,
    delete_bundle,
    delete_menu_item,
    delete_option,
    delete_option_group,
    list_favorites,
    list_public_restaurants,
    pause_restaurant,
    resume_restaurant,
    serialize_bundle,
    serialize_menu_item,
    serialize_restaurant,
    set_restaurant_active,
    sponsor_restaurant,
    toggle_bundle_availability,
    toggle_favorite,
    update_bundle,
    update_menu_item,
    update_option,
    update_option_group,
    update_restaurant,
    validate_restaurant,
)
from app.fooddash.rbac import current_user, require_login, require_permission, user_has_permission
from app.fooddash.storage import store_upload, storage_from_config
from app.fooddash.utils import local_now, parse_bool, request_payload

bp = Blueprint("restaurants", __name__)

DOCUMENT_TYPES = ("application/pdf", "image/")
MAX_DOCUMENT_BYTES = 10 * 1024 * 1024


def _owned_restaurant(restaurant_id: int) -> Restaurant:
    """Restaurant the caller owns (or any restaurant for restaurant admins)."""
    s = db_session()
    r = s.get(Restaurant, restaurant_id)
    if not r:
        abort(404)
    u = current_user()
    if r.owner_id != u.id and not user_has_permission(u, "restaurants.manage"):
        abort(403)
    return r


def _owned_menu_item(item_id: int) -> MenuItem:
    item = db_session().get(MenuItem, item_id)
    if not item:
        abort(404)
    _owned_restaurant(item.restaurant_id)
    return item


def _owned_group(group_id: int) -> MenuOptionGroup:
    group = db_session().get(MenuOptionGroup, group_id)
    if not group:
        abort(404)
    _owned_menu_item(group.menu_item_id)
    return group


def _owned_option(option_id: int) -> MenuOption:
    opt = db_session().get(MenuOption, option_id)
    if not opt:
        abort(404)
    _owned_group(opt.option_group_id)
    return opt


def _viewer_can_see(r: Restaurant, user: User | None) -> bool:
    if r.is_active and r.is_validated:
        return True
    if user is None:
        return False
    return r.owner_id == user.id or user_has_permission(user, "restaurants.manage")


def _dump(r: Restaurant, *, include_menu: bool = False) -> dict:
    return serialize_restaurant(r, local_now=local_now(), include_menu=include_menu)


# ---------- Public ----------
@bp.get("/restaurants")
def restaurants_list():
    s = db_session()
    rows = list_public_restaurants(
        s,
        city=(request.args.get("city") or "").strip() or None,
        cuisine=(request.args.get("cuisine") or "").strip() or None,
        search=(request.args.get("q") or "").strip() or None,
        open_now=parse_bool(request.args.get("open_now")),
        local_now=local_now(),
    )
    return {"restaurants": [_dump(r) for r in rows]}


@bp.get("/restaurants/<int:restaurant_id>")
def restaurant_detail(restaurant_id: int):
    s = db_session()
    r = s.get(Restaurant, restaurant_id)
    if not r or not _viewer_can_see(r, getattr(g, "current_user", None)):
        abort(404)
    return {"restaurant": _dump(r, include_menu=True)}


# ---------- Favourites ----------
@bp.get("/favorites")
@require_login
def favorites_list():
    s = db_session()
    return {"restaurants": [_dump(r) for r in list_favorites(s, current_user())]}


@bp.post("/restaurants/<int:restaurant_id>/favorite")
@require_login
def favorite_toggle(restaurant_id: int):
    s = db_session()
    r = s.get(Restaurant, restaurant_id)
    if not r:
        abort(404)
    is_favorite = toggle_favorite(s, current_user(), r)
    s.commit()
    return {"restaurant_id": r.id, "is_favorite": is_favorite}


# ---------- Owner ----------
@bp.get("/my/restaurants")
@require_permission("restaurants.own")
def my_restaurants():
    s = db_session()
    rows = s.query(Restaurant).filter(Restaurant.owner_id == current_user().id).order_by(Restaurant.created_at.asc()).all()
    return {"restaurants": [_dump(r, include_menu=True) for r in rows]}


@bp.post("/restaurants")
@require_permission("restaurants.own")
def restaurant_create():
    s = db_session()
    r = create_restaurant(s, request_payload(), current_user())
    s.commit()
    return {"restaurant": _dump(r)}, 201


@bp.patch("/restaurants/<int:restaurant_id>")
@require_permission("restaurants.own")
def restaurant_update(restaurant_id: int):
    s = db_session()
    r = _owned_restaurant(restaurant_id)
    update_restaurant(s, r, request_payload(), current_user())
    s.commit()
    return {"restaurant": _dump(r)}


@bp.post("/restaurants/<int:restaurant_id>/pause")
@require_permission("restaurants.own")
def restaurant_pause(restaurant_id: int):
    s = db_session()
    r = _owned_restaurant(restaurant_id)
    payload = request_payload()
    pause_restaurant(s, r, current_user(), until=payload.get("pause_until"), message=payload.get("message"))
    s.commit()
    return {"restaurant": _dump(r)}


@bp.post("/restaurants/<int:restaurant_id>/resume")
@require_permission("restaurants.own")
def restaurant_resume(restaurant_id: int):
    s = db_session()
    r = _owned_restaurant(restaurant_id)
    resume_restaurant(s, r, current_user())
    s.commit()
    return {"restaurant": _dump(r)}


@bp.post("/restaurants/<int:restaurant_id>/documents")
@require_permission("restaurants.own")
def restaurant_document_upload(restaurant_id: int):
    s = db_session()
    r = _owned_restaurant(restaurant_id)
    storage = storage_from_config(current_app.config)
    doc = store_upload(
        storage,
        request.files.get("file"),
        f"restaurants/{r.id}/documents",
        max_bytes=MAX_DOCUMENT_BYTES,
        allowed_types=DOCUMENT_TYPES,
        default_name="document.bin",
    )
    docs = add_validation_document(s, r, doc, current_user())
    s.commit()
    return {"documents": docs}, 201


# ---------- Menu ----------
@bp.post("/restaurants/<int:restaurant_id>/menu-items")
@require_permission("restaurants.own")
def menu_item_create(restaurant_id: int):
    s = db_session()
    r = _owned_restaurant(restaurant_id)
    item = create_menu_item(s, r, request_payload(), current_user())
    s.commit()
    return {"menu_item": serialize_menu_item(item, local_now=local_now())}, 201


@bp.patch("/menu-items/<int:item_id>")
@require_permission("restaurants.own")
def menu_item_update(item_id: int):
    s = db_session()
    item = _owned_menu_item(item_id)
    update_menu_item(s, item, request_payload(), current_user())
    s.commit()
    return {"menu_item": serialize_menu_item(item, local_now=local_now())}


@bp.delete("/menu-items/<int:item_id>")
@require_permission("restaurants.own")
def menu_item_delete(item_id: int):
    s = db_session()
    item = _owned_menu_item(item_id)
    delete_menu_item(s, item, current_user())
    s.commit()
    return {"deleted": item_id}


@bp.post("/menu-items/<int:item_id>/option-groups")
@require_permission("restaurants.own")
def option_group_create(item_id: int):
    s = db_session()
    item = _owned_menu_item(item_id)
    create_option_group(s, item, request_payload(), current_user())
    s.commit()
    return {"menu_item": serialize_menu_item(item, local_now=local_now())}, 201


@bp.patch("/option-groups/<int:group_id>")
@require_permission("restaurants.own")
def option_group_update(group_id: int):
    s = db_session()
    group = _owned_group(group_id)
    update_option_group(s, group, request_payload(), current_user())
    s.commit()
    return {"menu_item": serialize_menu_item(group.menu_item, local_now=local_now())}


@bp.delete("/option-groups/<int:group_id>")
@require_permission("restaurants.own")
def option_group_delete(group_id: int):
    s = db_session()
    group = _owned_group(group_id)
    delete_option_group(s, group, current_user())
    s.commit()
    return {"deleted": group_id}


@bp.post("/option-groups/<int:group_id>/options")
@require_permission("restaurants.own")
def option_create(group_id: int):
    s = db_session()
    group = _owned_group(group_id)
    create_option(s, group, request_payload(), current_user())
    s.commit()
    return {"menu_item": serialize_menu_item(group.menu_item, local_now=local_now())}, 201


@bp.patch("/options/<int:option_id>")
@require_permission("restaurants.own")
def option_update(option_id: int):
    s = db_session()
    opt = _owned_option(option_id)
    update_option(s, opt, request_payload(), current_user())
    s.commit()
    return {"menu_item": serialize_menu_item(opt.group.menu_item, local_now=local_now())}


@bp.delete("/options/<int:option_id>")
@require_permission("restaurants.own")
def option_delete(option_id: int):
    s = db_session()
    opt = _owned_option(option_id)
    delete_option(s, opt, current_user())
    s.commit()
    return {"deleted": option_id}


# ---------- Bundles ----------
def _owned_bundle(bundle_id: int) -> Bundle:
    b = db_session().get(Bundle, bundle_id)
    if not b:
        abort(404)
    _owned_restaurant(b.restaurant_id)
    return b


@bp.get("/restaurants/<int:restaurant_id>/bundles")
def bundles_list(restaurant_id: int):
    r = db_session().get(Restaurant, restaurant_id)
    if not r or not _viewer_can_see(r, getattr(g, "current_user", None)):
        abort(404)
    return {"bundles": [serialize_bundle(b) for b in r.bundles]}


@bp.post("/restaurants/<int:restaurant_id>/bundles")
@require_permission("restaurants.own")
def bundle_create(restaurant_id: int):
    s = db_session()
    r = _owned_restaurant(restaurant_id)
    b = create_bundle(s, r, request_payload(), current_user())
    s.commit()
    return {"bundle": serialize_bundle(b)}, 201


@bp.patch("/bundles/<int:bundle_id>")
@require_permission("restaurants.own")
def bundle_update(bundle_id: int):
    s = db_session()
    b = update_bundle(s, _owned_bundle(bundle_id), request_payload(), current_user())
    s.commit()
    return {"bundle": serialize_bundle(b)}


@bp.post("/bundles/<int:bundle_id>/toggle")
@require_permission("restaurants.own")
def bundle_toggle(bundle_id: int):
    s = db_session()
    b = toggle_bundle_availability(s, _owned_bundle(bundle_id), current_user())
    s.commit()
    return {"bundle": serialize_bundle(b)}


@bp.delete("/bundles/<int:bundle_id>")
@require_permission("restaurants.own")
def bundle_delete(bundle_id: int):
    s = db_session()
    delete_bundle(s, _owned_bundle(bundle_id), current_user())
    s.commit()
    return {"deleted": bundle_id}


# ---------- Admin ----------
@bp.get("/admin/restaurants")
@require_permission("restaurants.manage")
def admin_restaurants_list():
    s = db_session()
    status = (request.args.get("status") or "").strip()
    search = (request.args.get("q") or "").strip()
    q = s.query(Restaurant)
    if status == "pending":
        q = q.filter(Restaurant.is_validated.is_(False))
    elif status == "validated":
        q = q.filter(Restaurant.is_validated.is_(True))
    elif status == "inactive":
        q = q.filter(Restaurant.is_active.is_(False))
    elif status == "paused":
        q = q.filter(Restaurant.paused_at.isnot(None))
    if search:
        like = f"%{search}%"
        q = q.filter((Restaurant.name.ilike(like)) | (Restaurant.city.ilike(like)) | (Restaurant.address.ilike(like)))
    rows = q.order_by(Restaurant.created_at.desc()).all()
    now = local_now()
    out = []
    for r in rows:
        data = serialize_restaurant(r, local_now=now)
        data["owner_email"] = r.owner.email if r.owner else None
        data["validation_documents"] = r.validation_documents or []
        out.append(data)
    return {"restaurants": out}


@bp.post("/admin/restaurants/<int:restaurant_id>/validate")
@require_permission("restaurants.manage")
def admin_restaurant_validate(restaurant_id: int):
    s = db_session()
    r = s.get(Restaurant, restaurant_id)
    if not r:
        abort(404)
    payload = request_payload()
    validate_restaurant(s, r, current_user(), approved=True, notes=payload.get("notes"))
    s.commit()
    return {"restaurant": _dump(r)}


@bp.post("/admin/restaurants/<int:restaurant_id>/reject")
@require_permission("restaurants.manage")
def admin_restaurant_reject(restaurant_id: int):
    s = db_session()
    r = s.get(Restaurant, restaurant_id)
    if not r:
        abort(404)
    payload = request_payload()
    validate_restaurant(s, r, current_user(), approved=False, notes=payload.get("notes") or payload.get("reason"))
    s.commit()
    return {"restaurant": _dump(r)}


@bp.post("/admin/restaurants/<int:restaurant_id>/active")
@require_permission("restaurants.manage")
def admin_restaurant_active(restaurant_id: int):
    s = db_session()
    r = s.get(Restaurant, restaurant_id)
    if not r:
        abort(404)
    payload = request_payload()
    if "is_active" not in payload:
        raise ValueError("is_active is required.")
    set_restaurant_active(s, r, current_user(), active=parse_bool(payload.get("is_active")), reason=payload.get("reason"))
    s.commit()
    return {"restaurant": _dump(r)}


@bp.post("/admin/restaurants/<int:restaurant_id>/sponsor")
@require_permission("restaurants.manage")
def admin_restaurant_sponsor(restaurant_id: int):
    s = db_session()
    r = s.get(Restaurant, restaurant_id)
    if not r:
        abort(404)
    sponsor_restaurant(s, r, current_user(), request_payload())
    s.commit()
    return {"restaurant": serialize_restaurant(r, local_now=local_now(), utc_now=datetime.utcnow())}
