from __future__ import annotations

from flask import Blueprint, abort, current_app, request

from app.fooddash.db import db_session
from app.fooddash.modules.drivers.models import DriverProfile
from app.fooddash.modules.drivers.service import (
    add_validation_document,
    earnings_summary,
    get_or_create_profile,
    rate_driver,
    serialize_driver,
    set_availability,
    update_location,
    update_profile,
    validate_driver,
)
from app.fooddash.modules.orders.models import Order
from app.fooddash.rbac import current_user, require_permission
from app.fooddash.storage import store_upload, storage_from_config
from app.fooddash.utils import parse_bool, request_payload

bp = Blueprint("drivers", __name__)

DOCUMENT_TYPES = ("application/pdf", "image/")
MAX_DOCUMENT_BYTES = 10 * 1024 * 1024


# ---------- Driver self-service ----------
@bp.get("/driver/profile")
@require_permission("deliveries.work")
def driver_profile():
    s = db_session()
    profile = get_or_create_profile(s, current_user())
    s.commit()
    return {"driver": serialize_driver(profile, include_private=True)}


@bp.patch("/driver/profile")
@require_permission("deliveries.work")
def driver_profile_update():
    s = db_session()
    u = current_user()
    profile = get_or_create_profile(s, u)
    update_profile(s, profile, request_payload(), u)
    s.commit()
    return {"driver": serialize_driver(profile, include_private=True)}


@bp.post("/driver/availability")
@require_permission("deliveries.work")
def driver_availability():
    s = db_session()
    u = current_user()
    payload = request_payload()
    if "is_available" not in payload:
        raise ValueError("is_available is required.")
    profile = get_or_create_profile(s, u)
    set_availability(s, profile, u, available=parse_bool(payload.get("is_available")))
    s.commit()
    return {"driver": serialize_driver(profile, include_private=True)}


@bp.post("/driver/location")
@require_permission("deliveries.work")
def driver_location():
    s = db_session()
    payload = request_payload()
    profile = get_or_create_profile(s, current_user())
    update_location(s, profile, payload.get("latitude"), payload.get("longitude"))
    s.commit()
    return {"ok": True, "location_updated_at": profile.location_updated_at.isoformat()}


@bp.get("/driver/earnings")
@require_permission("deliveries.work")
def driver_earnings():
    s = db_session()
    return {"earnings": earnings_summary(s, current_user().id)}


@bp.post("/driver/documents")
@require_permission("deliveries.work")
def driver_document_upload():
    s = db_session()
    u = current_user()
    profile = get_or_create_profile(s, u)
    doc = store_upload(
        storage_from_config(current_app.config),
        request.files.get("file"),
        f"drivers/{u.id}/documents",
        max_bytes=MAX_DOCUMENT_BYTES,
        allowed_types=DOCUMENT_TYPES,
        default_name="document.bin",
    )
    docs = add_validation_document(s, profile, doc, u)
    s.commit()
    return {"documents": docs}, 201


# ---------- Customer rating ----------
@bp.post("/orders/<int:order_id>/driver-review")
@require_permission("reviews.write")
def driver_review_create(order_id: int):
    s = db_session()
    order = s.get(Order, order_id)
    if not order:
        abort(404)
    review = rate_driver(s, order, current_user(), request_payload())
    s.commit()
    return {"review": {"id": review.id, "order_id": order.id, "rating": review.rating, "comment": review.comment}}, 201


# ---------- Admin ----------
@bp.get("/admin/drivers")
@require_permission("drivers.manage")
def admin_drivers_list():
    s = db_session()
    status = (request.args.get("status") or "").strip()
    q = s.query(DriverProfile)
    if status == "pending":
        q = q.filter(DriverProfile.is_validated.is_(False))
    elif status == "validated":
        q = q.filter(DriverProfile.is_validated.is_(True))
    elif status == "available":
        q = q.filter(DriverProfile.is_available.is_(True))
    rows = q.order_by(DriverProfile.created_at.desc()).all()
    return {"drivers": [serialize_driver(p, include_private=True) for p in rows]}


@bp.get("/admin/drivers/<int:profile_id>")
@require_permission("drivers.manage")
def admin_driver_detail(profile_id: int):
    s = db_session()
    profile = s.get(DriverProfile, profile_id)
    if not profile:
        abort(404)
    return {
        "driver": serialize_driver(profile, include_private=True),
        "earnings": earnings_summary(s, profile.user_id),
    }


@bp.post("/admin/drivers/<int:profile_id>/validate")
@require_permission("drivers.manage")
def admin_driver_validate(profile_id: int):
    s = db_session()
    profile = s.get(DriverProfile, profile_id)
    if not profile:
        abort(404)
    validate_driver(s, profile, current_user(), approved=True, notes=request_payload().get("notes"))
    s.commit()
    return {"driver": serialize_driver(profile, include_private=True)}


@bp.post("/admin/drivers/<int:profile_id>/reject")
@require_permission("drivers.manage")
def admin_driver_reject(profile_id: int):
    s = db_session()
    profile = s.get(DriverProfile, profile_id)
    if not profile:
        abort(404)
    payload = request_payload()
    validate_driver(s, profile, current_user(), approved=False, notes=payload.get("notes") or payload.get("reason"))
    s.commit()
    return {"driver": serialize_driver(profile, include_private=True)}
