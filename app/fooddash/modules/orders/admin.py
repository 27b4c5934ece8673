from __future__ import annotations

from flask import Blueprint, abort, current_app, request, send_file
from sqlalchemy import or_

from app.fooddash.db import db_session
from app.fooddash.models import User
from app.fooddash.modules.orders.cart import (
    add_to_cart,
    cart_summary,
    clear_cart,
    remove_from_cart,
    update_quantity,
)
from app.fooddash.modules.orders.models import ORDER_STATUSES, Order
from app.fooddash.modules.orders.routing import route_client_from_config
from app.fooddash.modules.orders.service import (
    attach_voice_note,
    available_deliveries,
    can_view_order,
    checkout,
    claim_order,
    list_messages,
    mark_messages_read,
    order_stats,
    participant_role,
    post_message,
    review_order,
    route_endpoints,
    serialize_message,
    serialize_order,
    tracking_info,
    transition_order,
)
from app.fooddash.modules.restaurants.models import Restaurant
from app.fooddash.rbac import current_user, require_login, require_permission, user_has_permission
from app.fooddash.storage import storage_from_config, store_upload
from app.fooddash.utils import page_args, parse_datetime, parse_int, request_payload

bp = Blueprint("orders", __name__)

VOICE_NOTE_TYPES = ("audio/",)
MAX_VOICE_NOTE_BYTES = 10 * 1024 * 1024


def _order(order_id: int) -> Order:
    o = db_session().get(Order, order_id)
    if not o:
        abort(404)
    return o


def _visible_order(order_id: int) -> Order:
    o = _order(order_id)
    if not can_view_order(o, current_user()):
        abort(404)
    return o


def _restaurant_order(order_id: int) -> Order:
    o = _order(order_id)
    u = current_user()
    if o.restaurant.owner_id != u.id and not user_has_permission(u, "orders.manage"):
        abort(403)
    return o


# ---------- Cart ----------
@bp.get("/cart")
@require_permission("orders.place")
def cart_get():
    return {"cart": cart_summary(db_session(), current_user())}


@bp.post("/cart/items")
@require_permission("orders.place")
def cart_add():
    s = db_session()
    payload = request_payload()
    add_to_cart(s, current_user(), payload.get("menu_item_id"), payload.get("quantity", 1), payload.get("selected_options"))
    s.commit()
    return {"cart": cart_summary(s, current_user())}, 201


@bp.patch("/cart/items/<int:cart_item_id>")
@require_permission("orders.place")
def cart_update(cart_item_id: int):
    s = db_session()
    update_quantity(s, current_user(), cart_item_id, request_payload().get("quantity"))
    s.commit()
    return {"cart": cart_summary(s, current_user())}


@bp.delete("/cart/items/<int:cart_item_id>")
@require_permission("orders.place")
def cart_remove(cart_item_id: int):
    s = db_session()
    remove_from_cart(s, current_user(), cart_item_id)
    s.commit()
    return {"cart": cart_summary(s, current_user())}


@bp.delete("/cart")
@require_permission("orders.place")
def cart_clear():
    s = db_session()
    removed = clear_cart(s, current_user())
    s.commit()
    return {"removed": removed}


@bp.post("/orders")
@require_permission("orders.place")
def order_checkout():
    s = db_session()
    order = checkout(s, current_user(), request_payload())
    s.commit()
    return {"order": serialize_order(order)}, 201


# ---------- Customer ----------
@bp.get("/my/orders")
@require_permission("orders.place")
def my_orders():
    s = db_session()
    page, per_page = page_args()
    q = s.query(Order).filter(Order.user_id == current_user().id)
    status = (request.args.get("status") or "").strip()
    if status:
        q = q.filter(Order.status == status)
    total = q.count()
    rows = q.order_by(Order.created_at.desc()).offset((page - 1) * per_page).limit(per_page).all()
    return {"orders": [serialize_order(o) for o in rows], "total": total, "page": page, "per_page": per_page}


@bp.get("/orders/<int:order_id>")
@require_login
def order_detail(order_id: int):
    o = _visible_order(order_id)
    data = serialize_order(o)
    data["viewer_role"] = participant_role(o, current_user())
    return {"order": data}


@bp.post("/orders/<int:order_id>/cancel")
@require_permission("orders.place")
def order_cancel(order_id: int):
    s = db_session()
    o = _order(order_id)
    if o.user_id != current_user().id:
        abort(404)
    transition_order(s, o, "cancelled", current_user(), actor="customer", reason=request_payload().get("reason"))
    s.commit()
    return {"order": serialize_order(o)}


@bp.post("/orders/<int:order_id>/review")
@require_permission("reviews.write")
def order_review(order_id: int):
    s = db_session()
    o = _visible_order(order_id)
    review = review_order(s, o, current_user(), request_payload())
    s.commit()
    return {"review": {"id": review.id, "order_id": o.id, "rating": review.rating, "comment": review.comment}}, 201


@bp.post("/orders/<int:order_id>/voice-note")
@require_permission("orders.place")
def order_voice_note_upload(order_id: int):
    s = db_session()
    o = _visible_order(order_id)
    if o.user_id != current_user().id:
        abort(403)
    storage = storage_from_config(current_app.config)
    doc = store_upload(
        storage,
        request.files.get("file"),
        f"orders/{o.id}/voice",
        max_bytes=MAX_VOICE_NOTE_BYTES,
        allowed_types=VOICE_NOTE_TYPES,
        default_name="voice-note.webm",
    )
    attach_voice_note(s, o, current_user(), doc)
    s.commit()
    return {"order": serialize_order(o, include_items=False), "voice_note": doc}, 201


@bp.get("/orders/<int:order_id>/voice-note")
@require_login
def order_voice_note_download(order_id: int):
    o = _visible_order(order_id)
    if not o.voice_note_key:
        abort(404)
    storage = storage_from_config(current_app.config)
    fobj = storage.open(o.voice_note_key)
    return send_file(
        fobj,
        mimetype=o.voice_note_content_type or "application/octet-stream",
        as_attachment=False,
        download_name=o.voice_note_key.rsplit("/", 1)[-1],
        max_age=0,
    )


# ---------- Tracking ----------
@bp.get("/orders/<int:order_id>/tracking")
@require_login
def order_tracking(order_id: int):
    o = _visible_order(order_id)
    return {"tracking": tracking_info(db_session(), o)}


@bp.get("/orders/<int:order_id>/route")
@require_login
def order_route(order_id: int):
    o = _visible_order(order_id)
    start, end = route_endpoints(db_session(), o)
    route = route_client_from_config(current_app.config).route(start, end)
    return {"route": route}


# ---------- Messages ----------
@bp.get("/orders/<int:order_id>/messages")
@require_login
def order_messages(order_id: int):
    o = _visible_order(order_id)
    return {"messages": [serialize_message(m) for m in list_messages(db_session(), o)]}


@bp.post("/orders/<int:order_id>/messages")
@require_login
def order_message_post(order_id: int):
    s = db_session()
    o = _visible_order(order_id)
    msg = post_message(s, o, current_user(), request_payload())
    s.commit()
    return {"message": serialize_message(msg)}, 201


@bp.post("/orders/<int:order_id>/messages/read")
@require_login
def order_messages_read(order_id: int):
    s = db_session()
    o = _visible_order(order_id)
    updated = mark_messages_read(s, o, current_user())
    s.commit()
    return {"updated": updated}


# ---------- Restaurant ----------
@bp.get("/restaurants/<int:restaurant_id>/orders")
@require_permission("restaurants.own")
def restaurant_orders(restaurant_id: int):
    s = db_session()
    r = s.get(Restaurant, restaurant_id)
    if not r:
        abort(404)
    u = current_user()
    if r.owner_id != u.id and not user_has_permission(u, "orders.manage"):
        abort(403)
    q = s.query(Order).filter(Order.restaurant_id == r.id)
    status = (request.args.get("status") or "").strip()
    if status == "active":
        q = q.filter(Order.status.notin_(("delivered", "cancelled")))
    elif status:
        q = q.filter(Order.status == status)
    rows = q.order_by(Order.created_at.desc()).limit(200).all()
    return {"orders": [serialize_order(o) for o in rows]}


@bp.post("/restaurant/orders/<int:order_id>/status")
@require_permission("restaurants.own")
def restaurant_order_status(order_id: int):
    s = db_session()
    o = _restaurant_order(order_id)
    payload = request_payload()
    transition_order(s, o, payload.get("status"), current_user(), actor="restaurant", reason=payload.get("reason"))
    s.commit()
    return {"order": serialize_order(o)}


# ---------- Driver ----------
@bp.get("/driver/deliveries/available")
@require_permission("deliveries.work")
def driver_available_deliveries():
    return {"orders": [serialize_order(o) for o in available_deliveries(db_session())]}


@bp.get("/driver/deliveries")
@require_permission("deliveries.work")
def driver_deliveries():
    s = db_session()
    q = s.query(Order).filter(Order.driver_id == current_user().id)
    status = (request.args.get("status") or "").strip()
    if status == "active":
        q = q.filter(Order.status.in_(("pickup_accepted", "picked_up", "delivering")))
    elif status:
        q = q.filter(Order.status == status)
    rows = q.order_by(Order.updated_at.desc()).limit(200).all()
    return {"orders": [serialize_order(o) for o in rows]}


@bp.post("/driver/deliveries/<int:order_id>/claim")
@require_permission("deliveries.work")
def driver_claim(order_id: int):
    s = db_session()
    o = _order(order_id)
    claim_order(s, o, current_user())
    s.commit()
    return {"order": serialize_order(o)}


@bp.post("/driver/deliveries/<int:order_id>/status")
@require_permission("deliveries.work")
def driver_order_status(order_id: int):
    s = db_session()
    o = _order(order_id)
    if o.driver_id != current_user().id:
        abort(403)
    transition_order(s, o, request_payload().get("status"), current_user(), actor="driver")
    s.commit()
    return {"order": serialize_order(o)}


# ---------- Admin ----------
@bp.get("/admin/orders")
@require_permission("orders.manage")
def admin_orders_list():
    s = db_session()
    page, per_page = page_args()
    q = s.query(Order)
    status = (request.args.get("status") or "").strip()
    if status:
        if status not in ORDER_STATUSES:
            raise ValueError(f"Invalid status. Must be one of: {', '.join(ORDER_STATUSES)}")
        q = q.filter(Order.status == status)
    restaurant_id = parse_int(request.args.get("restaurant_id"), field="restaurant_id")
    if restaurant_id:
        q = q.filter(Order.restaurant_id == restaurant_id)
    date_from = parse_datetime(request.args.get("from"))
    date_to = parse_datetime(request.args.get("to"))
    if date_from:
        q = q.filter(Order.created_at >= date_from)
    if date_to:
        q = q.filter(Order.created_at < date_to)
    search = (request.args.get("q") or "").strip()
    if search:
        like = f"%{search}%"
        conds = [Order.phone.ilike(like), Order.delivery_address.ilike(like)]
        if search.isdigit():
            conds.append(Order.id == int(search))
        q = q.outerjoin(User, User.id == Order.user_id)
        conds.extend([User.email.ilike(like), User.full_name.ilike(like)])
        q = q.filter(or_(*conds))
    total = q.count()
    rows = q.order_by(Order.created_at.desc()).offset((page - 1) * per_page).limit(per_page).all()
    return {"orders": [serialize_order(o, include_items=False) for o in rows], "total": total, "page": page, "per_page": per_page}


@bp.get("/admin/orders/stats")
@require_permission("orders.manage")
def admin_orders_stats():
    return {"stats": order_stats(db_session())}


@bp.get("/admin/orders/<int:order_id>")
@require_permission("orders.manage")
def admin_order_detail(order_id: int):
    s = db_session()
    o = _order(order_id)
    data = serialize_order(o)
    data["messages"] = [serialize_message(m) for m in list_messages(s, o)]
    data["tracking"] = tracking_info(s, o)
    return {"order": data}


@bp.post("/admin/orders/<int:order_id>/status")
@require_permission("orders.manage")
def admin_order_status(order_id: int):
    s = db_session()
    o = _order(order_id)
    payload = request_payload()
    transition_order(s, o, payload.get("status"), current_user(), actor="admin", reason=payload.get("reason"))
    s.commit()
    return {"order": serialize_order(o)}
