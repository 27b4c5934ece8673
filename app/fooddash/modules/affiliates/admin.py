from __future__ import annotations

from flask import Blueprint, abort, request

from app.fooddash.db import db_session
from app.fooddash.models import User
from app.fooddash.modules.affiliates.models import Affiliate, AffiliateWithdrawal, FraudLog, Referral
from app.fooddash.modules.affiliates.service import (
    WITHDRAWAL_STATUSES,
    affiliate_settings_keys,
    affiliate_stats,
    approve_withdrawal,
    ban_affiliate,
    get_or_create_affiliate,
    pay_withdrawal,
    reject_withdrawal,
    request_withdrawal,
    resolve_fraud_log,
    serialize_affiliate,
    serialize_fraud_log,
    serialize_referral,
    serialize_withdrawal,
    unban_affiliate,
    update_affiliate_settings,
)
from app.fooddash.rbac import current_user, require_permission
from app.fooddash.settings import get_settings
from app.fooddash.utils import page_args, parse_bool, request_payload

bp = Blueprint("affiliates", __name__)


# ---------- Affiliate ----------
@bp.get("/affiliate")
@require_permission("affiliates.participate")
def affiliate_dashboard():
    s = db_session()
    affiliate = get_or_create_affiliate(s, current_user())
    s.commit()
    referrals = (
        s.query(Referral).filter(Referral.referrer_id == affiliate.id).order_by(Referral.created_at.desc()).all()
    )
    withdrawals = (
        s.query(AffiliateWithdrawal)
        .filter(AffiliateWithdrawal.affiliate_id == affiliate.id)
        .order_by(AffiliateWithdrawal.created_at.desc())
        .all()
    )
    return {
        "affiliate": serialize_affiliate(affiliate),
        "referrals": [serialize_referral(r) for r in referrals],
        "withdrawals": [serialize_withdrawal(w) for w in withdrawals],
        "settings": get_settings(s, "affiliate"),
    }


@bp.post("/affiliate/withdrawals")
@require_permission("affiliates.participate")
def affiliate_withdrawal_request():
    s = db_session()
    u = current_user()
    affiliate = get_or_create_affiliate(s, u)
    w = request_withdrawal(s, affiliate, request_payload(), u)
    s.commit()
    return {"withdrawal": serialize_withdrawal(w), "affiliate": serialize_affiliate(w.affiliate)}, 201


# ---------- Admin ----------
@bp.get("/admin/affiliates")
@require_permission("affiliates.manage")
def admin_affiliates_list():
    s = db_session()
    page, per_page = page_args()
    q = s.query(Affiliate).join(User, User.id == Affiliate.user_id)
    status = (request.args.get("status") or "").strip()
    if status:
        q = q.filter(Affiliate.status == status)
    search = (request.args.get("q") or "").strip()
    if search:
        like = f"%{search}%"
        q = q.filter((Affiliate.referral_code.ilike(like)) | (User.email.ilike(like)) | (User.full_name.ilike(like)))
    total = q.count()
    rows = q.order_by(Affiliate.created_at.desc()).offset((page - 1) * per_page).limit(per_page).all()
    return {"affiliates": [serialize_affiliate(a) for a in rows], "total": total, "page": page, "per_page": per_page}


@bp.get("/admin/affiliates/stats")
@require_permission("affiliates.manage")
def admin_affiliates_stats():
    return {"stats": affiliate_stats(db_session())}


@bp.get("/admin/affiliates/<int:affiliate_id>")
@require_permission("affiliates.manage")
def admin_affiliate_detail(affiliate_id: int):
    s = db_session()
    a = s.get(Affiliate, affiliate_id)
    if not a:
        abort(404)
    referrals = s.query(Referral).filter(Referral.referrer_id == a.id).order_by(Referral.created_at.desc()).all()
    logs = s.query(FraudLog).filter(FraudLog.affiliate_id == a.id).order_by(FraudLog.created_at.desc()).all()
    return {
        "affiliate": serialize_affiliate(a),
        "referrals": [serialize_referral(r, include_private=True) for r in referrals],
        "fraud_logs": [serialize_fraud_log(f) for f in logs],
    }


@bp.post("/admin/affiliates/<int:affiliate_id>/ban")
@require_permission("affiliates.manage")
def admin_affiliate_ban(affiliate_id: int):
    s = db_session()
    a = s.get(Affiliate, affiliate_id)
    if not a:
        abort(404)
    ban_affiliate(s, a, current_user(), reason=request_payload().get("reason"))
    s.commit()
    return {"affiliate": serialize_affiliate(a)}


@bp.post("/admin/affiliates/<int:affiliate_id>/unban")
@require_permission("affiliates.manage")
def admin_affiliate_unban(affiliate_id: int):
    s = db_session()
    a = s.get(Affiliate, affiliate_id)
    if not a:
        abort(404)
    unban_affiliate(s, a, current_user())
    s.commit()
    return {"affiliate": serialize_affiliate(a)}


@bp.get("/admin/referrals")
@require_permission("affiliates.manage")
def admin_referrals_list():
    s = db_session()
    q = s.query(Referral)
    status = (request.args.get("status") or "").strip()
    if status:
        q = q.filter(Referral.status == status)
    if parse_bool(request.args.get("suspicious")):
        q = q.filter(Referral.is_suspicious.is_(True))
    rows = q.order_by(Referral.created_at.desc()).limit(500).all()
    return {"referrals": [serialize_referral(r, include_private=True) for r in rows]}


@bp.get("/admin/affiliate-withdrawals")
@require_permission("affiliates.manage")
def admin_withdrawals_list():
    s = db_session()
    q = s.query(AffiliateWithdrawal)
    status = (request.args.get("status") or "").strip()
    if status:
        if status not in WITHDRAWAL_STATUSES:
            raise ValueError(f"Invalid status. Must be one of: {', '.join(WITHDRAWAL_STATUSES)}")
        q = q.filter(AffiliateWithdrawal.status == status)
    rows = q.order_by(AffiliateWithdrawal.created_at.desc()).limit(500).all()
    return {"withdrawals": [serialize_withdrawal(w) for w in rows]}


def _withdrawal(withdrawal_id: int) -> AffiliateWithdrawal:
    w = db_session().get(AffiliateWithdrawal, withdrawal_id)
    if not w:
        abort(404)
    return w


@bp.post("/admin/affiliate-withdrawals/<int:withdrawal_id>/approve")
@require_permission("affiliates.manage")
def admin_withdrawal_approve(withdrawal_id: int):
    s = db_session()
    w = approve_withdrawal(s, _withdrawal(withdrawal_id), current_user(), notes=request_payload().get("notes"))
    s.commit()
    return {"withdrawal": serialize_withdrawal(w)}


@bp.post("/admin/affiliate-withdrawals/<int:withdrawal_id>/reject")
@require_permission("affiliates.manage")
def admin_withdrawal_reject(withdrawal_id: int):
    s = db_session()
    w = reject_withdrawal(s, _withdrawal(withdrawal_id), current_user(), reason=request_payload().get("reason"))
    s.commit()
    return {"withdrawal": serialize_withdrawal(w)}


@bp.post("/admin/affiliate-withdrawals/<int:withdrawal_id>/pay")
@require_permission("affiliates.manage")
def admin_withdrawal_pay(withdrawal_id: int):
    s = db_session()
    w = pay_withdrawal(s, _withdrawal(withdrawal_id), current_user())
    s.commit()
    return {"withdrawal": serialize_withdrawal(w)}


@bp.get("/admin/affiliate-fraud-logs")
@require_permission("affiliates.manage")
def admin_fraud_logs():
    s = db_session()
    q = s.query(FraudLog)
    if not parse_bool(request.args.get("include_resolved")):
        q = q.filter(FraudLog.resolved.is_(False))
    rows = q.order_by(FraudLog.created_at.desc()).limit(500).all()
    return {"fraud_logs": [serialize_fraud_log(f) for f in rows]}


@bp.post("/admin/affiliate-fraud-logs/<int:log_id>/resolve")
@require_permission("affiliates.manage")
def admin_fraud_log_resolve(log_id: int):
    s = db_session()
    entry = s.get(FraudLog, log_id)
    if not entry:
        abort(404)
    payload = request_payload()
    resolve_fraud_log(s, entry, current_user(), legitimate=parse_bool(payload.get("legitimate")), notes=payload.get("notes"))
    s.commit()
    return {"fraud_log": serialize_fraud_log(entry)}


@bp.get("/admin/affiliate-settings")
@require_permission("affiliates.manage")
def admin_affiliate_settings():
    return {"settings": get_settings(db_session(), "affiliate"), "keys": affiliate_settings_keys()}


@bp.put("/admin/affiliate-settings")
@require_permission("affiliates.manage")
def admin_affiliate_settings_update():
    s = db_session()
    payload = request_payload()
    payload.pop("csrf_token", None)
    changed = update_affiliate_settings(s, payload, current_user())
    s.commit()
    return {"changed": changed, "settings": get_settings(s, "affiliate")}
