from __future__ import annotations

from flask import Blueprint, abort, request

from app.fooddash.db import db_session
from app.fooddash.modules.payouts.models import CashDeposit, Payout
from app.fooddash.modules.payouts.service import (
    PAYOUT_STATUSES,
    RECIPIENT_TYPES,
    approve_payout,
    cash_summary,
    create_payout,
    due_payments,
    get_payment_settings,
    list_cash_deposits,
    mark_deposit_received,
    mark_payout_paid,
    payout_stats,
    recent_transactions,
    recipient_balance,
    recipient_name,
    reject_cash_deposit,
    reject_payout,
    request_cash_deposit,
    save_payment_settings,
    schedule_auto_payouts,
    serialize_cash_deposit,
    serialize_payout,
    serialize_settings,
    serialize_transaction,
    validate_cash_deposit,
)
from app.fooddash.modules.restaurants.models import Restaurant
from app.fooddash.rbac import current_user, require_permission, user_has_permission
from app.fooddash.utils import page_args, parse_bool, parse_int, request_payload

bp = Blueprint("payouts", __name__)


def _own_restaurant(restaurant_id: int) -> Restaurant:
    r = db_session().get(Restaurant, restaurant_id)
    if not r:
        abort(404)
    u = current_user()
    if r.owner_id != u.id and not user_has_permission(u, "payouts.manage"):
        abort(403)
    return r


def _recipient_view(recipient_type: str, recipient_id: int) -> dict:
    s = db_session()
    payouts = (
        s.query(Payout)
        .filter(Payout.recipient_type == recipient_type)
        .filter(Payout.recipient_id == recipient_id)
        .order_by(Payout.created_at.desc())
        .all()
    )
    return {
        "balance": recipient_balance(s, recipient_type, recipient_id),
        "settings": serialize_settings(get_payment_settings(s, recipient_type, recipient_id)),
        "payouts": [serialize_payout(p) for p in payouts],
        "transactions": [serialize_transaction(t) for t in recent_transactions(s, recipient_type, recipient_id)],
    }


# ---------- Recipients ----------
@bp.get("/driver/payouts")
@require_permission("deliveries.work")
def driver_payouts():
    return _recipient_view("driver", current_user().id)


@bp.put("/driver/payment-settings")
@require_permission("deliveries.work")
def driver_payment_settings_save():
    s = db_session()
    u = current_user()
    ps = save_payment_settings(s, "driver", u.id, request_payload(), u)
    s.commit()
    return {"settings": serialize_settings(ps)}


@bp.get("/restaurants/<int:restaurant_id>/payouts")
@require_permission("payouts.receive")
def restaurant_payouts(restaurant_id: int):
    r = _own_restaurant(restaurant_id)
    return _recipient_view("restaurant", r.id)


@bp.put("/restaurants/<int:restaurant_id>/payment-settings")
@require_permission("payouts.receive")
def restaurant_payment_settings_save(restaurant_id: int):
    s = db_session()
    r = _own_restaurant(restaurant_id)
    ps = save_payment_settings(s, "restaurant", r.id, request_payload(), current_user())
    s.commit()
    return {"settings": serialize_settings(ps)}


# ---------- Admin ----------
@bp.get("/admin/payouts")
@require_permission("payouts.manage")
def admin_payouts_list():
    s = db_session()
    page, per_page = page_args()
    q = s.query(Payout)
    status = (request.args.get("status") or "").strip()
    if status:
        if status not in PAYOUT_STATUSES:
            raise ValueError(f"Invalid status. Must be one of: {', '.join(PAYOUT_STATUSES)}")
        q = q.filter(Payout.status == status)
    recipient_type = (request.args.get("recipient_type") or "").strip()
    if recipient_type:
        if recipient_type not in RECIPIENT_TYPES:
            raise ValueError(f"Invalid recipient_type. Must be one of: {', '.join(RECIPIENT_TYPES)}")
        q = q.filter(Payout.recipient_type == recipient_type)
    rows = q.order_by(Payout.created_at.desc()).all()

    search = (request.args.get("q") or "").strip().lower()
    out = []
    for p in rows:
        data = serialize_payout(p)
        data["recipient_name"] = recipient_name(s, p.recipient_type, p.recipient_id)
        if search and search not in (data["recipient_name"] or "").lower() and search != str(p.id):
            continue
        out.append(data)
    total = len(out)
    start = (page - 1) * per_page
    return {"payouts": out[start : start + per_page], "total": total, "page": page, "per_page": per_page}


@bp.get("/admin/payouts/stats")
@require_permission("payouts.manage")
def admin_payouts_stats():
    return {"stats": payout_stats(db_session())}


@bp.get("/admin/payouts/due")
@require_permission("payouts.manage")
def admin_payouts_due():
    s = db_session()
    rows = due_payments(
        s,
        recipient_type=(request.args.get("recipient_type") or "").strip() or None,
        only_due=parse_bool(request.args.get("only_due")),
    )
    return {"due": rows}


@bp.post("/admin/payouts")
@require_permission("payouts.manage")
def admin_payout_create():
    s = db_session()
    payload = request_payload()
    recipient_id = parse_int(payload.get("recipient_id"), field="recipient_id")
    if recipient_id is None:
        raise ValueError("recipient_id is required.")
    p = create_payout(
        s,
        payload.get("recipient_type") or "",
        recipient_id,
        payload.get("amount"),
        current_user(),
        notes=payload.get("notes"),
    )
    s.commit()
    return {"payout": serialize_payout(p)}, 201


@bp.post("/admin/payouts/schedule")
@require_permission("payouts.manage")
def admin_payouts_schedule():
    s = db_session()
    created = schedule_auto_payouts(s)
    s.commit()
    return {"created": [serialize_payout(p) for p in created]}


def _payout(payout_id: int) -> Payout:
    p = db_session().get(Payout, payout_id)
    if not p:
        abort(404)
    return p


@bp.post("/admin/payouts/<int:payout_id>/approve")
@require_permission("payouts.manage")
def admin_payout_approve(payout_id: int):
    s = db_session()
    p = approve_payout(s, _payout(payout_id), current_user())
    s.commit()
    return {"payout": serialize_payout(p)}


@bp.post("/admin/payouts/<int:payout_id>/reject")
@require_permission("payouts.manage")
def admin_payout_reject(payout_id: int):
    s = db_session()
    p = reject_payout(s, _payout(payout_id), current_user(), reason=request_payload().get("reason"))
    s.commit()
    return {"payout": serialize_payout(p)}


@bp.post("/admin/payouts/<int:payout_id>/pay")
@require_permission("payouts.manage")
def admin_payout_pay(payout_id: int):
    s = db_session()
    p = mark_payout_paid(s, _payout(payout_id), current_user())
    s.commit()
    return {"payout": serialize_payout(p)}


@bp.get("/admin/payment-settings/<recipient_type>/<int:recipient_id>")
@require_permission("payouts.manage")
def admin_payment_settings_get(recipient_type: str, recipient_id: int):
    if recipient_type not in RECIPIENT_TYPES:
        abort(404)
    return _recipient_view(recipient_type, recipient_id)


@bp.put("/admin/payment-settings/<recipient_type>/<int:recipient_id>")
@require_permission("payouts.manage")
def admin_payment_settings_save(recipient_type: str, recipient_id: int):
    if recipient_type not in RECIPIENT_TYPES:
        abort(404)
    s = db_session()
    ps = save_payment_settings(s, recipient_type, recipient_id, request_payload(), current_user())
    s.commit()
    return {"settings": serialize_settings(ps)}


# ---------- Cash on delivery ----------
@bp.get("/driver/cash-deposits")
@require_permission("deliveries.work")
def driver_cash_deposits():
    s = db_session()
    u = current_user()
    return {
        "summary": cash_summary(s, u.id),
        "deposits": [serialize_cash_deposit(d) for d in list_cash_deposits(s, driver_user_id=u.id)],
    }


@bp.post("/driver/cash-deposits")
@require_permission("deliveries.work")
def driver_cash_deposit_create():
    s = db_session()
    u = current_user()
    d = request_cash_deposit(s, u, request_payload())
    s.commit()
    return {"deposit": serialize_cash_deposit(d), "summary": cash_summary(s, u.id)}, 201


@bp.get("/admin/cash-deposits")
@require_permission("payouts.manage")
def admin_cash_deposits_list():
    s = db_session()
    rows = list_cash_deposits(
        s,
        driver_user_id=parse_int(request.args.get("driver_id"), field="driver_id"),
        status=(request.args.get("status") or "").strip() or None,
    )
    return {"deposits": [serialize_cash_deposit(d) for d in rows]}


def _deposit(deposit_id: int) -> CashDeposit:
    d = db_session().get(CashDeposit, deposit_id)
    if not d:
        abort(404)
    return d


@bp.post("/admin/cash-deposits/<int:deposit_id>/receive")
@require_permission("payouts.manage")
def admin_cash_deposit_receive(deposit_id: int):
    s = db_session()
    d = mark_deposit_received(s, _deposit(deposit_id), current_user())
    s.commit()
    return {"deposit": serialize_cash_deposit(d)}


@bp.post("/admin/cash-deposits/<int:deposit_id>/validate")
@require_permission("payouts.manage")
def admin_cash_deposit_validate(deposit_id: int):
    s = db_session()
    d = validate_cash_deposit(s, _deposit(deposit_id), current_user())
    s.commit()
    return {"deposit": serialize_cash_deposit(d)}


@bp.post("/admin/cash-deposits/<int:deposit_id>/reject")
@require_permission("payouts.manage")
def admin_cash_deposit_reject(deposit_id: int):
    s = db_session()
    d = reject_cash_deposit(s, _deposit(deposit_id), current_user(), reason=request_payload().get("reason"))
    s.commit()
    return {"deposit": serialize_cash_deposit(d)}
