"""
Referral program: affiliate profiles, referral registration with basic fraud
signals, rewards on delivered orders, and withdrawals of earned balances.
"""
from __future__ import annotations

import logging
import re
import secrets
import string
from datetime import datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from flask import current_app, has_app_context
from sqlalchemy import func, or_

from app.fooddash.audit import record_event
from app.fooddash.realtime import ADMIN_CHANNEL, record_change, user_channel
from app.fooddash.settings import DEFAULTS, get_bool, get_decimal, get_int, update_settings
from app.fooddash.utils import clean_str, iso, money, parse_decimal

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from app.fooddash.models import User
    from app.fooddash.modules.affiliates.models import Affiliate, AffiliateWithdrawal, FraudLog, Referral
    from app.fooddash.modules.orders.models import Order

logger = logging.getLogger(__name__)

CODE_PREFIX = "KAL"
CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_LENGTH = 6
WITHDRAWAL_STATUSES = ("pending", "pending_review", "approved", "rejected", "paid")
OPEN_WITHDRAWAL_STATUSES = ("pending", "pending_review", "approved")
REFERRAL_STATUSES = ("pending", "eligible", "rewarded", "rejected")
MIN_MOBILE_DIGITS = 9
_DIGITS = re.compile(r"\D+")


def generate_referral_code() -> str:
    return CODE_PREFIX + "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))


def referral_link(code: str) -> str:
    base = "http://localhost:5173"
    if has_app_context():
        base = current_app.config.get("PUBLIC_BASE_URL") or base
    return f"{base.rstrip('/')}/auth?ref={code}"


def _notify(s: "Session", affiliate: "Affiliate", table: str = "affiliates", row_id: int | None = None, op: str = "update") -> None:
    record_change(
        s,
        channels=[user_channel(affiliate.user_id), ADMIN_CHANNEL],
        table=table,
        row_id=row_id if row_id is not None else affiliate.id,
        op=op,
    )


def _locked(s: "Session", affiliate: "Affiliate") -> "Affiliate":
    from app.fooddash.modules.affiliates.models import Affiliate

    s.flush()
    return s.query(Affiliate).filter(Affiliate.id == affiliate.id).populate_existing().with_for_update().one()


def log_fraud(
    s: "Session",
    *,
    event_type: str,
    severity: str,
    affiliate_id: int | None = None,
    referral_id: int | None = None,
    withdrawal_id: int | None = None,
    details: dict[str, Any] | None = None,
    ip: str | None = None,
    user_agent: str | None = None,
    fingerprint: str | None = None,
) -> "FraudLog":
    from app.fooddash.modules.affiliates.models import FraudLog

    entry = FraudLog(
        affiliate_id=affiliate_id,
        referral_id=referral_id,
        withdrawal_id=withdrawal_id,
        event_type=event_type,
        severity=severity,
        details=details,
        ip_address=ip,
        user_agent=user_agent,
        device_fingerprint=fingerprint,
        resolved=False,
    )
    s.add(entry)
    s.flush()
    logger.warning("Affiliate fraud signal type=%s affiliate_id=%s referral_id=%s", event_type, affiliate_id, referral_id)
    record_change(s, channels=[ADMIN_CHANNEL], table="affiliate_fraud_logs", row_id=entry.id, op="insert")
    return entry


# ---------- Affiliates ----------
def get_affiliate(s: "Session", user: "User") -> "Affiliate | None":
    from app.fooddash.modules.affiliates.models import Affiliate

    return s.query(Affiliate).filter(Affiliate.user_id == user.id).one_or_none()


def get_or_create_affiliate(s: "Session", user: "User") -> "Affiliate":
    from app.fooddash.modules.affiliates.models import Affiliate

    affiliate = get_affiliate(s, user)
    if affiliate is not None:
        return affiliate
    if not get_bool(s, "program_enabled"):
        raise ValueError("The affiliate program is currently closed.")
    code = generate_referral_code()
    while s.query(Affiliate.id).filter(Affiliate.referral_code == code).first():
        code = generate_referral_code()
    affiliate = Affiliate(
        user_id=user.id,
        referral_code=code,
        referral_link=referral_link(code),
        status="active",
        is_eligible=True,
    )
    s.add(affiliate)
    s.flush()
    record_event(s, actor=user, action="affiliate.join", entity_type="Affiliate", entity_id=str(affiliate.id), metadata={"code": code})
    return affiliate


def register_referral(
    s: "Session",
    code: str | None,
    referred_user: "User",
    *,
    ip: str | None = None,
    user_agent: str | None = None,
    fingerprint: str | None = None,
) -> "Referral":
    """
    Attach `referred_user` to the affiliate owning `code`. Self-referrals are
    refused; a device or IP already seen on another referral of the same
    affiliate is accepted but marked suspicious.
    """
    from app.fooddash.modules.affiliates.models import Affiliate, Referral

    if not get_bool(s, "program_enabled"):
        raise ValueError("The affiliate program is currently closed.")
    normalized = (code or "").strip().upper()
    affiliate = s.query(Affiliate).filter(Affiliate.referral_code == normalized).one_or_none() if normalized else None
    if affiliate is None or affiliate.status != "active":
        raise ValueError("Unknown referral code.")
    if affiliate.user_id == referred_user.id:
        log_fraud(
            s,
            event_type="self_referral",
            severity="high",
            affiliate_id=affiliate.id,
            details={"user_id": referred_user.id},
            ip=ip,
            user_agent=user_agent,
            fingerprint=fingerprint,
        )
        raise ValueError("You cannot use your own referral code.")
    if s.query(Referral.id).filter(Referral.referred_user_id == referred_user.id).first():
        raise ValueError("This account has already been referred.")

    fingerprint = clean_str(fingerprint)
    ip = clean_str(ip)
    duplicate = None
    if fingerprint or ip:
        q = s.query(Referral).filter(Referral.referrer_id == affiliate.id)
        conds = []
        if fingerprint:
            conds.append(Referral.device_fingerprint == fingerprint)
        if ip:
            conds.append(Referral.ip_address == ip)
        duplicate = q.filter(or_(*conds)).first()

    referral = Referral(
        referrer_id=affiliate.id,
        referred_user_id=referred_user.id,
        status="pending",
        orders_count=0,
        ip_address=ip,
        user_agent=clean_str(user_agent),
        device_fingerprint=fingerprint,
        is_suspicious=duplicate is not None,
        fraud_reason="Device or IP already used by another referral" if duplicate is not None else None,
    )
    s.add(referral)
    affiliate.total_referrals = (affiliate.total_referrals or 0) + 1
    affiliate.updated_at = datetime.utcnow()
    s.flush()

    if duplicate is not None:
        log_fraud(
            s,
            event_type="duplicate_device",
            severity="medium",
            affiliate_id=affiliate.id,
            referral_id=referral.id,
            details={"matches_referral_id": duplicate.id},
            ip=ip,
            user_agent=user_agent,
            fingerprint=fingerprint,
        )
    record_event(
        s,
        actor=referred_user,
        action="referral.register",
        entity_type="Referral",
        entity_id=str(referral.id),
        metadata={"affiliate_id": affiliate.id, "suspicious": referral.is_suspicious},
    )
    _notify(s, affiliate, table="referrals", row_id=referral.id, op="insert")
    return referral


def _reward(s: "Session", referral: "Referral", *, actor: "User | None" = None) -> None:
    affiliate = _locked(s, referral.referrer)
    amount = get_decimal(s, "reward_amount")
    now = datetime.utcnow()
    referral.status = "rewarded"
    referral.reward_amount = amount
    referral.rewarded_at = now
    referral.updated_at = now
    affiliate.available_balance = (affiliate.available_balance or Decimal("0")) + amount
    affiliate.total_earnings = (affiliate.total_earnings or Decimal("0")) + amount
    affiliate.eligible_referrals = (affiliate.eligible_referrals or 0) + 1
    affiliate.updated_at = now
    record_event(
        s,
        actor=actor,
        action="referral.reward",
        entity_type="Referral",
        entity_id=str(referral.id),
        metadata={"affiliate_id": affiliate.id, "amount": str(amount)},
    )
    _notify(s, affiliate, table="referrals", row_id=referral.id)


def record_delivered_order(s: "Session", order: "Order") -> "Referral | None":
    """Count a delivered order towards the customer's referral; reward once the threshold is met."""
    from app.fooddash.modules.affiliates.models import Referral

    if not order.user_id:
        return None
    referral = s.query(Referral).filter(Referral.referred_user_id == order.user_id).one_or_none()
    if referral is None or referral.status not in ("pending", "eligible"):
        return None
    referral.orders_count = (referral.orders_count or 0) + 1
    referral.updated_at = datetime.utcnow()
    if referral.status == "pending" and referral.orders_count >= get_int(s, "min_orders_required"):
        if referral.is_suspicious or referral.referrer.status != "active" or not get_bool(s, "program_enabled"):
            referral.status = "eligible"
            _notify(s, referral.referrer, table="referrals", row_id=referral.id)
        else:
            _reward(s, referral)
    s.flush()
    return referral


def ban_affiliate(s: "Session", affiliate: "Affiliate", user: "User", *, reason: str | None) -> "Affiliate":
    reason = clean_str(reason)
    if not reason:
        raise ValueError("A reason is required to ban an affiliate.")
    affiliate.status = "banned"
    affiliate.ban_reason = reason
    affiliate.is_eligible = False
    affiliate.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="affiliate.ban", entity_type="Affiliate", entity_id=str(affiliate.id), reason=reason)
    _notify(s, affiliate)
    s.flush()
    return affiliate


def unban_affiliate(s: "Session", affiliate: "Affiliate", user: "User") -> "Affiliate":
    affiliate.status = "active"
    affiliate.ban_reason = None
    affiliate.is_eligible = True
    affiliate.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="affiliate.unban", entity_type="Affiliate", entity_id=str(affiliate.id))
    _notify(s, affiliate)
    s.flush()
    return affiliate


def resolve_fraud_log(s: "Session", entry: "FraudLog", user: "User", *, legitimate: bool, notes: str | None = None) -> "FraudLog":
    """
    Close a fraud signal. A legitimate verdict clears the referral's suspicion
    and releases its reward if it already qualified; otherwise the referral is
    rejected.
    """
    from app.fooddash.modules.affiliates.models import Referral

    if entry.resolved:
        raise ValueError("This fraud log is already resolved.")
    now = datetime.utcnow()
    entry.resolved = True
    entry.resolved_at = now
    entry.resolved_by_user_id = user.id
    entry.admin_notes = clean_str(notes)

    referral = s.get(Referral, entry.referral_id) if entry.referral_id else None
    if referral is not None and referral.status != "rewarded":
        if legitimate:
            referral.is_suspicious = False
            referral.fraud_reason = None
            if referral.status == "eligible" and referral.referrer.status == "active":
                _reward(s, referral, actor=user)
        else:
            referral.status = "rejected"
        referral.updated_at = now

    record_event(
        s,
        actor=user,
        action="affiliate.fraud_resolve",
        entity_type="FraudLog",
        entity_id=str(entry.id),
        reason=entry.admin_notes,
        metadata={"legitimate": legitimate, "referral_id": entry.referral_id},
    )
    record_change(s, channels=[ADMIN_CHANNEL], table="affiliate_fraud_logs", row_id=entry.id)
    s.flush()
    return entry


# ---------- Withdrawals ----------
def request_withdrawal(s: "Session", affiliate: "Affiliate", payload: dict, user: "User") -> "AffiliateWithdrawal":
    from app.fooddash.modules.affiliates.models import AffiliateWithdrawal, FraudLog

    if affiliate.status == "banned":
        raise ValueError("Your affiliate account is suspended.")
    if not get_bool(s, "program_enabled"):
        raise ValueError("The affiliate program is currently closed.")
    amount = parse_decimal(payload.get("amount"), field="amount")
    minimum = get_decimal(s, "min_withdrawal_amount")
    if amount is None or amount < minimum:
        raise ValueError(f"Minimum withdrawal is {money(minimum):.0f} FCFA.")
    number = clean_str(payload.get("mobile_money_number"))
    if not number or len(_DIGITS.sub("", number)) < MIN_MOBILE_DIGITS:
        raise ValueError("A valid mobile money number is required.")

    affiliate = _locked(s, affiliate)
    if amount > (affiliate.available_balance or Decimal("0")):
        raise ValueError("Insufficient balance.")
    open_flags = (
        s.query(func.count(FraudLog.id))
        .filter(FraudLog.affiliate_id == affiliate.id)
        .filter(FraudLog.resolved.is_(False))
        .scalar()
    )
    now = datetime.utcnow()
    w = AffiliateWithdrawal(
        affiliate_id=affiliate.id,
        amount=amount,
        payment_method="mobile_money",
        mobile_money_number=number,
        status="pending_review" if open_flags else "pending",
        created_at=now,
        updated_at=now,
    )
    s.add(w)
    affiliate.available_balance -= amount
    affiliate.pending_balance = (affiliate.pending_balance or Decimal("0")) + amount
    affiliate.updated_at = now
    s.flush()
    record_event(
        s,
        actor=user,
        action="affiliate.withdrawal_request",
        entity_type="AffiliateWithdrawal",
        entity_id=str(w.id),
        metadata={"amount": str(amount), "status": w.status},
    )
    _notify(s, affiliate, table="affiliate_withdrawals", row_id=w.id, op="insert")
    return w


def approve_withdrawal(s: "Session", w: "AffiliateWithdrawal", user: "User", *, notes: str | None = None) -> "AffiliateWithdrawal":
    if w.status not in ("pending", "pending_review"):
        raise ValueError(f"Only pending withdrawals can be approved (status: {w.status}).")
    w.status = "approved"
    w.fraud_check_passed = True
    w.fraud_check_notes = clean_str(notes)
    w.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="affiliate.withdrawal_approve", entity_type="AffiliateWithdrawal", entity_id=str(w.id))
    _notify(s, w.affiliate, table="affiliate_withdrawals", row_id=w.id)
    s.flush()
    return w


def reject_withdrawal(s: "Session", w: "AffiliateWithdrawal", user: "User", *, reason: str | None) -> "AffiliateWithdrawal":
    reason = clean_str(reason)
    if not reason:
        raise ValueError("A reason is required to reject a withdrawal.")
    if w.status not in OPEN_WITHDRAWAL_STATUSES:
        raise ValueError(f"This withdrawal can no longer be rejected (status: {w.status}).")
    affiliate = _locked(s, w.affiliate)
    now = datetime.utcnow()
    w.status = "rejected"
    w.fraud_check_passed = False
    w.rejection_reason = reason
    w.processed_at = now
    w.processed_by_user_id = user.id
    w.updated_at = now
    affiliate.available_balance = (affiliate.available_balance or Decimal("0")) + w.amount
    affiliate.pending_balance = max(Decimal("0"), (affiliate.pending_balance or Decimal("0")) - w.amount)
    affiliate.updated_at = now
    record_event(
        s,
        actor=user,
        action="affiliate.withdrawal_reject",
        entity_type="AffiliateWithdrawal",
        entity_id=str(w.id),
        reason=reason,
        metadata={"amount": str(w.amount)},
    )
    _notify(s, affiliate, table="affiliate_withdrawals", row_id=w.id)
    s.flush()
    return w


def pay_withdrawal(s: "Session", w: "AffiliateWithdrawal", user: "User", *, now: datetime | None = None) -> "AffiliateWithdrawal":
    if w.status != "approved":
        raise ValueError(f"Only approved withdrawals can be paid (status: {w.status}).")
    now = now or datetime.utcnow()
    ready_at = w.created_at + timedelta(hours=get_int(s, "withdrawal_delay_hours"))
    if now < ready_at:
        raise ValueError(f"This withdrawal can be paid from {ready_at.isoformat(timespec='minutes')} UTC.")
    affiliate = _locked(s, w.affiliate)
    w.status = "paid"
    w.processed_at = now
    w.processed_by_user_id = user.id
    w.updated_at = now
    affiliate.pending_balance = max(Decimal("0"), (affiliate.pending_balance or Decimal("0")) - w.amount)
    affiliate.updated_at = now
    record_event(
        s,
        actor=user,
        action="affiliate.withdrawal_paid",
        entity_type="AffiliateWithdrawal",
        entity_id=str(w.id),
        metadata={"amount": str(w.amount)},
    )
    _notify(s, affiliate, table="affiliate_withdrawals", row_id=w.id)
    s.flush()
    return w


# ---------- Admin ----------
def affiliate_settings_keys() -> list[str]:
    return [k for k, (cat, _d, _desc) in DEFAULTS.items() if cat == "affiliate"]


def update_affiliate_settings(s: "Session", updates: dict[str, Any], user: "User") -> dict[str, Any]:
    allowed = set(affiliate_settings_keys())
    unknown = sorted(k for k in updates if k not in allowed)
    if unknown:
        raise ValueError(f"Unknown affiliate setting(s): {', '.join(unknown)}")
    return update_settings(s, updates, user)


def affiliate_stats(s: "Session") -> dict[str, Any]:
    from app.fooddash.modules.affiliates.models import Affiliate, AffiliateWithdrawal, FraudLog, Referral

    by_status = dict(s.query(Affiliate.status, func.count(Affiliate.id)).group_by(Affiliate.status).all())
    referrals = dict(s.query(Referral.status, func.count(Referral.id)).group_by(Referral.status).all())
    suspicious = s.query(func.count(Referral.id)).filter(Referral.is_suspicious.is_(True)).scalar()
    pending_count, pending_amount = (
        s.query(func.count(AffiliateWithdrawal.id), func.coalesce(func.sum(AffiliateWithdrawal.amount), 0))
        .filter(AffiliateWithdrawal.status.in_(OPEN_WITHDRAWAL_STATUSES))
        .one()
    )
    paid = (
        s.query(func.coalesce(func.sum(AffiliateWithdrawal.amount), 0))
        .filter(AffiliateWithdrawal.status == "paid")
        .scalar()
    )
    rewards = s.query(func.coalesce(func.sum(Affiliate.total_earnings), 0)).scalar()
    open_fraud = s.query(func.count(FraudLog.id)).filter(FraudLog.resolved.is_(False)).scalar()
    return {
        "affiliates": sum(by_status.values()),
        "active": by_status.get("active", 0),
        "banned": by_status.get("banned", 0),
        "referrals": sum(referrals.values()),
        "referrals_by_status": referrals,
        "suspicious_referrals": int(suspicious or 0),
        "pending_withdrawals": int(pending_count or 0),
        "pending_withdrawals_amount": money(pending_amount),
        "paid_withdrawals_amount": money(paid),
        "total_rewards": money(rewards),
        "open_fraud_logs": int(open_fraud or 0),
    }


def serialize_affiliate(a: "Affiliate") -> dict[str, Any]:
    return {
        "id": a.id,
        "user_id": a.user_id,
        "user_email": a.user.email if a.user else None,
        "user_name": a.user.full_name if a.user else None,
        "referral_code": a.referral_code,
        "referral_link": a.referral_link,
        "total_referrals": a.total_referrals,
        "eligible_referrals": a.eligible_referrals,
        "available_balance": money(a.available_balance),
        "pending_balance": money(a.pending_balance),
        "total_earnings": money(a.total_earnings),
        "status": a.status,
        "ban_reason": a.ban_reason,
        "is_eligible": a.is_eligible,
        "created_at": iso(a.created_at),
    }


def serialize_referral(r: "Referral", *, include_private: bool = False) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": r.id,
        "referrer_id": r.referrer_id,
        "referred_user_id": r.referred_user_id,
        "referred_name": r.referred_user.full_name if r.referred_user else None,
        "status": r.status,
        "orders_count": r.orders_count,
        "reward_amount": money(r.reward_amount) if r.reward_amount is not None else None,
        "rewarded_at": iso(r.rewarded_at),
        "is_suspicious": r.is_suspicious,
        "created_at": iso(r.created_at),
    }
    if include_private:
        data.update(
            {
                "fraud_reason": r.fraud_reason,
                "ip_address": r.ip_address,
                "user_agent": r.user_agent,
                "device_fingerprint": r.device_fingerprint,
            }
        )
    return data


def serialize_withdrawal(w: "AffiliateWithdrawal") -> dict[str, Any]:
    return {
        "id": w.id,
        "affiliate_id": w.affiliate_id,
        "amount": money(w.amount),
        "payment_method": w.payment_method,
        "mobile_money_number": w.mobile_money_number,
        "status": w.status,
        "fraud_check_passed": w.fraud_check_passed,
        "fraud_check_notes": w.fraud_check_notes,
        "rejection_reason": w.rejection_reason,
        "processed_at": iso(w.processed_at),
        "created_at": iso(w.created_at),
    }


def serialize_fraud_log(f: "FraudLog") -> dict[str, Any]:
    return {
        "id": f.id,
        "affiliate_id": f.affiliate_id,
        "referral_id": f.referral_id,
        "withdrawal_id": f.withdrawal_id,
        "event_type": f.event_type,
        "severity": f.severity,
        "details": f.details or {},
        "ip_address": f.ip_address,
        "device_fingerprint": f.device_fingerprint,
        "resolved": f.resolved,
        "resolved_at": iso(f.resolved_at),
        "admin_notes": f.admin_notes,
        "created_at": iso(f.created_at),
    }
