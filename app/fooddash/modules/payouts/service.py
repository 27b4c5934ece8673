from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import func

from app.fooddash.audit import record_event
from app.fooddash.modules.payouts.earnings import (
    FREQUENCIES,
    PAYMENT_METHODS,
    driver_earning,
    next_payout_date,
    restaurant_earning,
)
from app.fooddash.realtime import ADMIN_CHANNEL, record_change, user_channel
from app.fooddash.settings import get_decimal
from app.fooddash.utils import clean_str, iso, local_now, money, parse_bool, parse_decimal, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from app.fooddash.models import User
    from app.fooddash.modules.payouts.models import CashDeposit, PaymentSettings, Payout, Transaction

logger = logging.getLogger(__name__)

RECIPIENT_TYPES = ("driver", "restaurant")
PAYOUT_STATUSES = ("pending", "approved", "paid", "rejected")
COMMITTED_STATUSES = ("pending", "approved")
CASH_DEPOSIT_STATUSES = ("pending", "received", "validated", "rejected")
RESERVED_DEPOSIT_STATUSES = ("pending", "received")
ZERO = Decimal("0")
_DIGITS = re.compile(r"\D+")


def _check_recipient_type(recipient_type: str) -> str:
    rt = (recipient_type or "").strip().lower()
    if rt not in RECIPIENT_TYPES:
        raise ValueError(f"Invalid recipient_type. Must be one of: {', '.join(RECIPIENT_TYPES)}")
    return rt


def recipient_user_id(s: "Session", recipient_type: str, recipient_id: int) -> int | None:
    """User who receives the money (the driver, or the restaurant's owner)."""
    if recipient_type == "driver":
        return recipient_id
    from app.fooddash.modules.restaurants.models import Restaurant

    r = s.get(Restaurant, recipient_id)
    return r.owner_id if r else None


def recipient_name(s: "Session", recipient_type: str, recipient_id: int) -> str | None:
    from app.fooddash.models import User
    from app.fooddash.modules.restaurants.models import Restaurant

    if recipient_type == "driver":
        u = s.get(User, recipient_id)
        return (u.full_name or u.email) if u else None
    r = s.get(Restaurant, recipient_id)
    return r.name if r else None


def _channels(s: "Session", recipient_type: str, recipient_id: int) -> list[str]:
    channels = [ADMIN_CHANNEL]
    uid = recipient_user_id(s, recipient_type, recipient_id)
    if uid:
        channels.append(user_channel(uid))
    return channels


# ---------- Payment settings ----------
def get_payment_settings(s: "Session", recipient_type: str, recipient_id: int) -> "PaymentSettings | None":
    from app.fooddash.modules.payouts.models import PaymentSettings

    return (
        s.query(PaymentSettings)
        .filter(PaymentSettings.recipient_type == recipient_type)
        .filter(PaymentSettings.recipient_id == recipient_id)
        .one_or_none()
    )


def save_payment_settings(
    s: "Session",
    recipient_type: str,
    recipient_id: int,
    payload: dict,
    user: "User",
    *,
    today: date | None = None,
) -> "PaymentSettings":
    """
    Create or replace a recipient's settings. The next payout date restarts
    from today; details that do not belong to the chosen method are cleared.
    """
    from app.fooddash.modules.payouts.models import PaymentSettings

    recipient_type = _check_recipient_type(recipient_type)
    method = (clean_str(payload.get("payment_method")) or "mobile_money").lower()
    if method not in PAYMENT_METHODS:
        raise ValueError(f"Invalid payment_method. Must be one of: {', '.join(PAYMENT_METHODS)}")
    frequency = (clean_str(payload.get("payout_frequency")) or "weekly").lower()
    if frequency not in FREQUENCIES:
        raise ValueError(f"Invalid payout_frequency. Must be one of: {', '.join(FREQUENCIES)}")
    custom_days = parse_int(payload.get("custom_frequency_days"), field="custom_frequency_days", minimum=1)
    if frequency == "custom" and custom_days is None:
        raise ValueError("custom_frequency_days is required for a custom frequency.")
    if frequency != "custom":
        custom_days = None
    min_amount = parse_decimal(payload.get("min_payout_amount"), field="min_payout_amount", minimum=ZERO)
    if min_amount is None:
        min_amount = get_decimal(s, "default_min_payout_amount")

    mm_number = mm_provider = bank_name = bank_account = bank_holder = None
    if method == "mobile_money":
        mm_number = clean_str(payload.get("mobile_money_number"))
        if not mm_number or len(_DIGITS.sub("", mm_number)) < 9:
            raise ValueError("A valid mobile money number is required.")
        mm_provider = clean_str(payload.get("mobile_money_provider"))
    elif method == "bank":
        bank_name = clean_str(payload.get("bank_name"))
        bank_account = clean_str(payload.get("bank_account_number"))
        bank_holder = clean_str(payload.get("bank_account_name"))
        if not bank_name or not bank_account:
            raise ValueError("bank_name and bank_account_number are required for bank transfers.")

    ps = get_payment_settings(s, recipient_type, recipient_id)
    created = ps is None
    if ps is None:
        ps = PaymentSettings(recipient_type=recipient_type, recipient_id=recipient_id)
        s.add(ps)

    start = today or local_now().date()
    ps.payment_method = method
    ps.mobile_money_number = mm_number
    ps.mobile_money_provider = mm_provider
    ps.bank_name = bank_name
    ps.bank_account_number = bank_account
    ps.bank_account_name = bank_holder
    ps.payout_frequency = frequency
    ps.custom_frequency_days = custom_days
    ps.min_payout_amount = min_amount
    ps.auto_payout = parse_bool(payload.get("auto_payout"))
    ps.next_payout_date = next_payout_date(frequency, custom_days, start)
    ps.updated_at = datetime.utcnow()
    ps.updated_by_user_id = user.id
    s.flush()

    record_event(
        s,
        actor=user,
        action="payment_settings.create" if created else "payment_settings.update",
        entity_type="PaymentSettings",
        entity_id=str(ps.id),
        metadata={
            "recipient_type": recipient_type,
            "recipient_id": recipient_id,
            "payment_method": method,
            "payout_frequency": frequency,
            "auto_payout": ps.auto_payout,
            "next_payout_date": iso(ps.next_payout_date),
        },
    )
    record_change(s, channels=_channels(s, recipient_type, recipient_id), table="payment_settings", row_id=ps.id)
    return ps


def payment_details(ps: "PaymentSettings | None") -> dict[str, Any] | None:
    if ps is None:
        return None
    if ps.payment_method == "mobile_money":
        return {"mobile_money_number": ps.mobile_money_number, "mobile_money_provider": ps.mobile_money_provider}
    if ps.payment_method == "bank":
        return {
            "bank_name": ps.bank_name,
            "bank_account_number": ps.bank_account_number,
            "bank_account_name": ps.bank_account_name,
        }
    return {}


# ---------- Due payments ----------
@dataclass
class _Account:
    recipient_type: str
    recipient_id: int
    earnings: Decimal = ZERO
    paid: Decimal = ZERO
    committed: Decimal = ZERO
    orders: int = 0
    first_earning_at: datetime | None = None
    last_paid_at: datetime | None = None
    pending_payout_ids: list[int] = field(default_factory=list)


def _accounts(
    s: "Session",
    *,
    recipient_type: str | None = None,
    recipient_id: int | None = None,
) -> dict[tuple[str, int], _Account]:
    """Single pass over delivered orders and over payouts, grouped per recipient."""
    from app.fooddash.modules.orders.models import Order
    from app.fooddash.modules.payouts.models import Payout

    commission = get_decimal(s, "commission_rate")
    pct = get_decimal(s, "driver_payout_percentage")
    accounts: dict[tuple[str, int], _Account] = {}

    def account(rt: str, rid: int) -> _Account:
        key = (rt, rid)
        if key not in accounts:
            accounts[key] = _Account(rt, rid)
        return accounts[key]

    q = s.query(
        Order.restaurant_id, Order.driver_id, Order.subtotal, Order.discount_amount, Order.delivery_fee, Order.delivered_at
    ).filter(Order.status == "delivered")
    if recipient_type == "restaurant" and recipient_id is not None:
        q = q.filter(Order.restaurant_id == recipient_id)
    elif recipient_type == "driver" and recipient_id is not None:
        q = q.filter(Order.driver_id == recipient_id)
    for restaurant_id, driver_id, subtotal, discount, fee, delivered_at in q.all():
        targets = []
        if recipient_type in (None, "restaurant"):
            targets.append(("restaurant", restaurant_id, restaurant_earning(subtotal, discount, commission)))
        if recipient_type in (None, "driver") and driver_id:
            targets.append(("driver", driver_id, driver_earning(fee, pct)))
        for rt, rid, amount in targets:
            acc = account(rt, rid)
            acc.earnings += amount
            acc.orders += 1
            if delivered_at and (acc.first_earning_at is None or delivered_at < acc.first_earning_at):
                acc.first_earning_at = delivered_at

    pq = s.query(Payout).filter(Payout.status != "rejected")
    if recipient_type is not None:
        pq = pq.filter(Payout.recipient_type == recipient_type)
    if recipient_id is not None:
        pq = pq.filter(Payout.recipient_id == recipient_id)
    for p in pq.all():
        acc = account(p.recipient_type, p.recipient_id)
        if p.status == "paid":
            acc.paid += p.amount
            if p.processed_at and (acc.last_paid_at is None or p.processed_at > acc.last_paid_at):
                acc.last_paid_at = p.processed_at
        else:
            acc.committed += p.amount
            acc.pending_payout_ids.append(p.id)
    return accounts


def _due_entry(s: "Session", acc: _Account, ps: "PaymentSettings | None", today: date, default_min: Decimal) -> dict[str, Any]:
    due_amount = acc.earnings - acc.paid - acc.committed
    if due_amount < 0:
        due_amount = ZERO
    if ps is not None and ps.next_payout_date is not None:
        next_due = ps.next_payout_date
    else:
        anchor = acc.last_paid_at or acc.first_earning_at
        next_due = next_payout_date("weekly", None, local_now(anchor).date()) if anchor else None
    min_amount = ps.min_payout_amount if ps is not None else default_min
    return {
        "recipient_type": acc.recipient_type,
        "recipient_id": acc.recipient_id,
        "recipient_name": recipient_name(s, acc.recipient_type, acc.recipient_id),
        "delivered_orders": acc.orders,
        "total_earnings": money(acc.earnings),
        "paid": money(acc.paid),
        "committed": money(acc.committed),
        "balance": money(acc.earnings - acc.paid),
        "due_amount": money(due_amount),
        "min_payout_amount": money(min_amount),
        "next_due_date": iso(next_due),
        "is_due": bool(next_due is not None and next_due <= today and due_amount > 0 and due_amount >= min_amount),
        "auto_payout": bool(ps.auto_payout) if ps is not None else False,
        "payment_method": ps.payment_method if ps is not None else None,
        "pending_payout_ids": acc.pending_payout_ids,
        "_due": due_amount,
    }


def due_payments(
    s: "Session",
    *,
    now: datetime | None = None,
    recipient_type: str | None = None,
    only_due: bool = False,
) -> list[dict[str, Any]]:
    """
    Per recipient: earnings from delivered orders minus paid payouts minus
    committed (pending/approved) payouts.
    """
    from app.fooddash.modules.payouts.models import PaymentSettings

    if recipient_type is not None:
        recipient_type = _check_recipient_type(recipient_type)
    today = local_now(now).date()
    default_min = get_decimal(s, "default_min_payout_amount")
    settings_by_key = {(ps.recipient_type, ps.recipient_id): ps for ps in s.query(PaymentSettings).all()}
    out = []
    for key, acc in _accounts(s, recipient_type=recipient_type).items():
        entry = _due_entry(s, acc, settings_by_key.get(key), today, default_min)
        if only_due and not entry["is_due"]:
            continue
        out.append(entry)
    out.sort(key=lambda e: (not e["is_due"], -e["_due"], e["recipient_type"], e["recipient_id"]))
    for e in out:
        e.pop("_due")
    return out


def recipient_balance(s: "Session", recipient_type: str, recipient_id: int, *, now: datetime | None = None) -> dict[str, Any]:
    recipient_type = _check_recipient_type(recipient_type)
    accounts = _accounts(s, recipient_type=recipient_type, recipient_id=recipient_id)
    acc = accounts.get((recipient_type, recipient_id)) or _Account(recipient_type, recipient_id)
    entry = _due_entry(
        s,
        acc,
        get_payment_settings(s, recipient_type, recipient_id),
        local_now(now).date(),
        get_decimal(s, "default_min_payout_amount"),
    )
    entry.pop("_due")
    return entry


def _recipient_query(s: "Session", recipient_type: str, recipient_id: int):
    """The recipient's own row (driver user or restaurant), read under FOR UPDATE."""
    from app.fooddash.models import User
    from app.fooddash.modules.restaurants.models import Restaurant

    model = User if recipient_type == "driver" else Restaurant
    return s.query(model).filter(model.id == recipient_id).with_for_update()


def _lock_recipient(s: "Session", recipient_type: str, recipient_id: int) -> None:
    """
    Serialise money movements per recipient: concurrent payouts for the same
    recipient wait here until the first transaction commits.
    """
    if _recipient_query(s, recipient_type, recipient_id).one_or_none() is None:
        raise LookupError(f"Unknown {recipient_type} {recipient_id}.")


def _unpaid(s: "Session", recipient_type: str, recipient_id: int) -> tuple[Decimal, Decimal]:
    """(earnings - paid, earnings - paid - committed) for one recipient."""
    acc = _accounts(s, recipient_type=recipient_type, recipient_id=recipient_id).get((recipient_type, recipient_id))
    if acc is None:
        return ZERO, ZERO
    return acc.earnings - acc.paid, acc.earnings - acc.paid - acc.committed


# ---------- Payout lifecycle ----------
def create_payout(
    s: "Session",
    recipient_type: str,
    recipient_id: int,
    amount: Any,
    user: "User | None",
    *,
    notes: str | None = None,
    automatic: bool = False,
) -> "Payout":
    from app.fooddash.modules.payouts.models import Payout

    recipient_type = _check_recipient_type(recipient_type)
    value = parse_decimal(amount, field="amount")
    if value is None or value <= 0:
        raise ValueError("amount must be positive.")
    _lock_recipient(s, recipient_type, recipient_id)
    _balance, due = _unpaid(s, recipient_type, recipient_id)
    if value > due:
        raise ValueError(f"amount exceeds the amount due ({money(due):.0f}).")

    ps = get_payment_settings(s, recipient_type, recipient_id)
    now = datetime.utcnow()
    p = Payout(
        recipient_type=recipient_type,
        recipient_id=recipient_id,
        amount=value,
        status="pending",
        payment_method=ps.payment_method if ps else None,
        payment_details=payment_details(ps),
        notes=clean_str(notes),
        is_automatic=automatic,
        created_by_user_id=user.id if user else None,
        created_at=now,
        updated_at=now,
    )
    s.add(p)
    s.flush()
    record_event(
        s,
        actor=user,
        action="payout.create",
        entity_type="Payout",
        entity_id=str(p.id),
        metadata={"recipient_type": recipient_type, "recipient_id": recipient_id, "amount": str(value), "automatic": automatic},
    )
    record_change(s, channels=_channels(s, recipient_type, recipient_id), table="payouts", row_id=p.id, op="insert")
    return p


def _locked(s: "Session", payout: "Payout") -> "Payout":
    """Re-read the payout row under FOR UPDATE (a no-op on SQLite)."""
    from app.fooddash.modules.payouts.models import Payout

    s.flush()
    return s.query(Payout).filter(Payout.id == payout.id).populate_existing().with_for_update().one()


def approve_payout(s: "Session", payout: "Payout", user: "User") -> "Payout":
    p = _locked(s, payout)
    if p.status != "pending":
        raise ValueError(f"Only pending payouts can be approved (status: {p.status}).")
    now = datetime.utcnow()
    p.status = "approved"
    p.approved_at = now
    p.updated_at = now
    record_event(s, actor=user, action="payout.approve", entity_type="Payout", entity_id=str(p.id), metadata={"amount": str(p.amount)})
    record_change(s, channels=_channels(s, p.recipient_type, p.recipient_id), table="payouts", row_id=p.id)
    s.flush()
    return p


def reject_payout(s: "Session", payout: "Payout", user: "User", *, reason: str | None) -> "Payout":
    reason = clean_str(reason)
    if not reason:
        raise ValueError("A reason is required to reject a payout.")
    p = _locked(s, payout)
    if p.status not in COMMITTED_STATUSES:
        raise ValueError(f"Only pending or approved payouts can be rejected (status: {p.status}).")
    old = p.status
    p.status = "rejected"
    p.reason = reason
    p.processed_at = datetime.utcnow()
    p.processed_by_user_id = user.id
    p.updated_at = p.processed_at
    record_event(
        s,
        actor=user,
        action="payout.reject",
        entity_type="Payout",
        entity_id=str(p.id),
        reason=reason,
        metadata={"from": old, "amount": str(p.amount)},
    )
    record_change(s, channels=_channels(s, p.recipient_type, p.recipient_id), table="payouts", row_id=p.id)
    s.flush()
    return p


def mark_payout_paid(s: "Session", payout: "Payout", user: "User", *, today: date | None = None) -> "Payout":
    """
    approved -> paid: ledger line with the recipient's unpaid balance before and
    after, and the recipient's next payout date moves forward.
    """
    from app.fooddash.modules.payouts.models import Transaction

    p = _locked(s, payout)
    if p.status != "approved":
        raise ValueError(f"Only approved payouts can be marked as paid (status: {p.status}).")
    balance_before, _due = _unpaid(s, p.recipient_type, p.recipient_id)
    now = datetime.utcnow()
    p.status = "paid"
    p.processed_at = now
    p.processed_by_user_id = user.id
    p.updated_at = now
    tx = Transaction(
        recipient_type=p.recipient_type,
        recipient_id=p.recipient_id,
        payout_id=p.id,
        type="payout",
        amount=p.amount,
        balance_before=balance_before,
        balance_after=balance_before - p.amount,
        description=f"Payout #{p.id}",
        created_at=now,
    )
    s.add(tx)

    ps = get_payment_settings(s, p.recipient_type, p.recipient_id)
    if ps is not None:
        ps.next_payout_date = next_payout_date(ps.payout_frequency, ps.custom_frequency_days, today or local_now(now).date())
        ps.updated_at = now
    s.flush()
    record_event(
        s,
        actor=user,
        action="payout.paid",
        entity_type="Payout",
        entity_id=str(p.id),
        metadata={
            "amount": str(p.amount),
            "balance_before": str(balance_before),
            "balance_after": str(tx.balance_after),
            "transaction_id": tx.id,
        },
    )
    record_change(s, channels=_channels(s, p.recipient_type, p.recipient_id), table="payouts", row_id=p.id)
    logger.info("Payout paid id=%s %s:%s amount=%s", p.id, p.recipient_type, p.recipient_id, p.amount)
    return p


def schedule_auto_payouts(s: "Session", *, now: datetime | None = None) -> list["Payout"]:
    """Pending payouts for every auto-payout recipient whose payment is due."""
    created = []
    for entry in due_payments(s, now=now, only_due=True):
        if not entry["auto_payout"] or entry["due_amount"] <= 0:
            continue
        p = create_payout(
            s,
            entry["recipient_type"],
            entry["recipient_id"],
            Decimal(str(entry["due_amount"])),
            None,
            notes="Automatic payout",
            automatic=True,
        )
        created.append(p)
    if created:
        logger.info("Scheduled %s automatic payout(s)", len(created))
    return created


def payout_stats(s: "Session", *, now: datetime | None = None) -> dict[str, Any]:
    from app.fooddash.modules.payouts.models import Payout

    utc_now = now or datetime.utcnow()
    local = local_now(utc_now)
    day_start_utc = utc_now - (local - local.replace(hour=0, minute=0, second=0, microsecond=0))

    pending: dict[str, float] = {rt: 0.0 for rt in RECIPIENT_TYPES}
    for rt, total in (
        s.query(Payout.recipient_type, func.coalesce(func.sum(Payout.amount), 0))
        .filter(Payout.status.in_(COMMITTED_STATUSES))
        .group_by(Payout.recipient_type)
        .all()
    ):
        pending[rt] = money(total)
    paid_total = s.query(func.coalesce(func.sum(Payout.amount), 0)).filter(Payout.status == "paid").scalar()
    today_count, today_total = (
        s.query(func.count(Payout.id), func.coalesce(func.sum(Payout.amount), 0))
        .filter(Payout.status == "paid")
        .filter(Payout.processed_at >= day_start_utc)
        .one()
    )
    return {
        "pending_by_type": pending,
        "pending_total": money(sum(Decimal(str(v)) for v in pending.values())),
        "paid_total": money(paid_total),
        "paid_today_count": int(today_count or 0),
        "paid_today_total": money(today_total),
    }


def serialize_payout(p: "Payout") -> dict[str, Any]:
    return {
        "id": p.id,
        "recipient_type": p.recipient_type,
        "recipient_id": p.recipient_id,
        "amount": money(p.amount),
        "status": p.status,
        "payment_method": p.payment_method,
        "payment_details": p.payment_details or {},
        "notes": p.notes,
        "reason": p.reason,
        "is_automatic": p.is_automatic,
        "approved_at": iso(p.approved_at),
        "processed_at": iso(p.processed_at),
        "created_at": iso(p.created_at),
    }


def serialize_settings(ps: "PaymentSettings | None") -> dict[str, Any] | None:
    if ps is None:
        return None
    return {
        "id": ps.id,
        "recipient_type": ps.recipient_type,
        "recipient_id": ps.recipient_id,
        "payment_method": ps.payment_method,
        "mobile_money_number": ps.mobile_money_number,
        "mobile_money_provider": ps.mobile_money_provider,
        "bank_name": ps.bank_name,
        "bank_account_number": ps.bank_account_number,
        "bank_account_name": ps.bank_account_name,
        "payout_frequency": ps.payout_frequency,
        "custom_frequency_days": ps.custom_frequency_days,
        "min_payout_amount": money(ps.min_payout_amount),
        "auto_payout": ps.auto_payout,
        "next_payout_date": iso(ps.next_payout_date),
        "updated_at": iso(ps.updated_at),
    }


def serialize_transaction(t: "Transaction") -> dict[str, Any]:
    return {
        "id": t.id,
        "payout_id": t.payout_id,
        "type": t.type,
        "amount": money(t.amount),
        "balance_before": money(t.balance_before),
        "balance_after": money(t.balance_after),
        "description": t.description,
        "created_at": iso(t.created_at),
    }


def recent_transactions(s: "Session", recipient_type: str, recipient_id: int, *, days: int = 365) -> list["Transaction"]:
    from app.fooddash.modules.payouts.models import Transaction

    since = datetime.utcnow() - timedelta(days=days)
    return (
        s.query(Transaction)
        .filter(Transaction.recipient_type == recipient_type)
        .filter(Transaction.recipient_id == recipient_id)
        .filter(Transaction.created_at >= since)
        .order_by(Transaction.id.desc())
        .all()
    )


# ---------- Cash on delivery ----------
def cash_summary(s: "Session", driver_user_id: int) -> dict[str, float]:
    """
    Cash collected on the driver's delivered cash orders, minus validated
    deposits and minus deposits still awaiting validation.
    """
    from app.fooddash.modules.orders.models import Order
    from app.fooddash.modules.payouts.models import CashDeposit

    collected = (
        s.query(func.coalesce(func.sum(Order.total), 0))
        .filter(Order.driver_id == driver_user_id)
        .filter(Order.status == "delivered")
        .filter(Order.payment_method == "cash")
        .scalar()
    )
    by_status = dict(
        s.query(CashDeposit.status, func.coalesce(func.sum(CashDeposit.amount), 0))
        .filter(CashDeposit.driver_user_id == driver_user_id)
        .group_by(CashDeposit.status)
        .all()
    )
    collected = Decimal(str(collected or 0))
    deposited = Decimal(str(by_status.get("validated") or 0))
    pending = sum((Decimal(str(by_status.get(st) or 0)) for st in RESERVED_DEPOSIT_STATUSES), ZERO)
    return {
        "collected": money(collected),
        "deposited": money(deposited),
        "pending": money(pending),
        "on_hand": money(collected - deposited - pending),
    }


def request_cash_deposit(s: "Session", driver: "User", payload: dict) -> "CashDeposit":
    from app.fooddash.modules.payouts.models import CashDeposit

    amount = parse_decimal(payload.get("amount"), field="amount")
    if amount is None or amount <= 0:
        raise ValueError("amount must be positive.")
    _lock_recipient(s, "driver", driver.id)
    on_hand = Decimal(str(cash_summary(s, driver.id)["on_hand"]))
    if amount > on_hand:
        raise ValueError(f"amount exceeds your cash on hand ({money(on_hand):.0f}).")

    now = datetime.utcnow()
    d = CashDeposit(
        driver_user_id=driver.id,
        amount=amount,
        status="pending",
        notes=clean_str(payload.get("notes")) or f"Cash deposit by {driver.email}",
        created_at=now,
        updated_at=now,
    )
    s.add(d)
    s.flush()
    record_event(s, actor=driver, action="cash_deposit.create", entity_type="CashDeposit", entity_id=str(d.id), metadata={"amount": str(amount)})
    record_change(s, channels=[ADMIN_CHANNEL, user_channel(driver.id)], table="cash_deposits", row_id=d.id, op="insert")
    return d


def _locked_deposit(s: "Session", deposit: "CashDeposit") -> "CashDeposit":
    from app.fooddash.modules.payouts.models import CashDeposit

    s.flush()
    return s.query(CashDeposit).filter(CashDeposit.id == deposit.id).populate_existing().with_for_update().one()


def _move_deposit(s: "Session", deposit: "CashDeposit", user: "User", status: str, *, reason: str | None = None) -> "CashDeposit":
    allowed_from = {"received": ("pending",), "validated": RESERVED_DEPOSIT_STATUSES, "rejected": RESERVED_DEPOSIT_STATUSES}[status]
    d = _locked_deposit(s, deposit)
    if d.status not in allowed_from:
        raise ValueError(f"Cannot move a {d.status} deposit to {status}.")
    old = d.status
    now = datetime.utcnow()
    d.status = status
    d.updated_at = now
    if status == "received":
        d.received_at = now
    else:
        d.processed_at = now
        d.processed_by_user_id = user.id
        d.reason = reason
    record_event(
        s,
        actor=user,
        action=f"cash_deposit.{status}",
        entity_type="CashDeposit",
        entity_id=str(d.id),
        reason=reason,
        metadata={"from": old, "amount": str(d.amount)},
    )
    record_change(s, channels=[ADMIN_CHANNEL, user_channel(d.driver_user_id)], table="cash_deposits", row_id=d.id)
    s.flush()
    return d


def mark_deposit_received(s: "Session", deposit: "CashDeposit", user: "User") -> "CashDeposit":
    return _move_deposit(s, deposit, user, "received")


def validate_cash_deposit(s: "Session", deposit: "CashDeposit", user: "User") -> "CashDeposit":
    return _move_deposit(s, deposit, user, "validated")


def reject_cash_deposit(s: "Session", deposit: "CashDeposit", user: "User", *, reason: str | None) -> "CashDeposit":
    reason = clean_str(reason)
    if not reason:
        raise ValueError("A reason is required to reject a deposit.")
    return _move_deposit(s, deposit, user, "rejected", reason=reason)


def list_cash_deposits(s: "Session", *, driver_user_id: int | None = None, status: str | None = None) -> list["CashDeposit"]:
    from app.fooddash.modules.payouts.models import CashDeposit

    q = s.query(CashDeposit)
    if driver_user_id is not None:
        q = q.filter(CashDeposit.driver_user_id == driver_user_id)
    if status:
        if status not in CASH_DEPOSIT_STATUSES:
            raise ValueError(f"Invalid status. Must be one of: {', '.join(CASH_DEPOSIT_STATUSES)}")
        q = q.filter(CashDeposit.status == status)
    return q.order_by(CashDeposit.created_at.desc(), CashDeposit.id.desc()).all()


def serialize_cash_deposit(d: "CashDeposit") -> dict[str, Any]:
    return {
        "id": d.id,
        "driver_user_id": d.driver_user_id,
        "amount": money(d.amount),
        "status": d.status,
        "notes": d.notes,
        "reason": d.reason,
        "received_at": iso(d.received_at),
        "processed_at": iso(d.processed_at),
        "created_at": iso(d.created_at),
    }
