from datetime import timedelta
from decimal import Decimal

import pytest

from app.fooddash.modules.affiliates.service import (
    approve_withdrawal,
    generate_referral_code,
    get_or_create_affiliate,
    pay_withdrawal,
    register_referral,
    reject_withdrawal,
    request_withdrawal,
    resolve_fraud_log,
)
from tests.conftest import add_user, deliver, login, place_order


@pytest.fixture()
def ambassador(world, db):
    user = add_user(db, "ambassador@example.com", "customer")
    affiliate = get_or_create_affiliate(db, user)
    return affiliate


def _fraud_logs(db, **filters):
    from app.fooddash.modules.affiliates.models import FraudLog

    q = db.query(FraudLog)
    for k, v in filters.items():
        q = q.filter(getattr(FraudLog, k) == v)
    return q.all()


def test_referral_code_shape():
    code = generate_referral_code()
    assert code.startswith("KAL")
    assert len(code) == 9
    assert code[3:].isalnum() and code[3:].upper() == code[3:]


def test_get_or_create_affiliate_is_idempotent(ambassador, db):
    again = get_or_create_affiliate(db, ambassador.user)
    assert again.id == ambassador.id
    assert ambassador.referral_link.endswith(f"/auth?ref={ambassador.referral_code}")


def test_self_referral_is_refused_and_logged(ambassador, db):
    with pytest.raises(ValueError, match="own referral code"):
        register_referral(db, ambassador.referral_code, ambassador.user, ip="10.0.0.1")
    logs = _fraud_logs(db, event_type="self_referral")
    assert len(logs) == 1
    assert logs[0].severity == "high"


def test_unknown_code_and_double_referral(ambassador, world, db):
    with pytest.raises(ValueError, match="Unknown"):
        register_referral(db, "KALXXXXXX", world["customer"])
    register_referral(db, ambassador.referral_code.lower(), world["customer"])
    with pytest.raises(ValueError, match="already been referred"):
        register_referral(db, ambassador.referral_code, world["customer"])


def test_shared_device_marks_referral_suspicious(ambassador, db):
    first = add_user(db, "first@example.com", "customer")
    second = add_user(db, "second@example.com", "customer")

    r1 = register_referral(db, ambassador.referral_code, first, fingerprint="fp-123", ip="10.0.0.1")
    r2 = register_referral(db, ambassador.referral_code, second, fingerprint="fp-123", ip="10.0.0.2")

    assert r1.is_suspicious is False
    assert r2.is_suspicious is True
    logs = _fraud_logs(db, event_type="duplicate_device")
    assert [(entry.referral_id, entry.severity) for entry in logs] == [(r2.id, "medium")]
    assert ambassador.total_referrals == 2


def test_reward_after_min_delivered_orders(ambassador, world, db):
    referral = register_referral(db, ambassador.referral_code, world["customer"])

    for _ in range(2):
        deliver(db, world, place_order(db, world))
    assert referral.orders_count == 2
    assert referral.status == "pending"

    deliver(db, world, place_order(db, world))
    assert referral.status == "rewarded"
    assert referral.reward_amount == Decimal("1000")
    db.refresh(ambassador)
    assert ambassador.available_balance == Decimal("1000")
    assert ambassador.total_earnings == Decimal("1000")
    assert ambassador.eligible_referrals == 1

    # A fourth order does not pay twice.
    deliver(db, world, place_order(db, world))
    db.refresh(ambassador)
    assert ambassador.available_balance == Decimal("1000")


def test_suspicious_referral_waits_for_review(ambassador, world, db):
    decoy = add_user(db, "decoy@example.com", "customer")
    register_referral(db, ambassador.referral_code, decoy, fingerprint="fp-9")
    referral = register_referral(db, ambassador.referral_code, world["customer"], fingerprint="fp-9")

    for _ in range(3):
        deliver(db, world, place_order(db, world))
    assert referral.status == "eligible"
    db.refresh(ambassador)
    assert ambassador.available_balance == Decimal("0")

    (log,) = _fraud_logs(db, referral_id=referral.id)
    resolve_fraud_log(db, log, world["admin"], legitimate=True, notes="Same household")
    assert referral.status == "rewarded"
    db.refresh(ambassador)
    assert ambassador.available_balance == Decimal("1000")
    with pytest.raises(ValueError, match="already resolved"):
        resolve_fraud_log(db, log, world["admin"], legitimate=True)


def test_withdrawal_rules(ambassador, db):
    ambassador.available_balance = Decimal("8000")
    user = ambassador.user

    with pytest.raises(ValueError, match="Minimum withdrawal"):
        request_withdrawal(db, ambassador, {"amount": "4999", "mobile_money_number": "061234567"}, user)
    with pytest.raises(ValueError, match="mobile money"):
        request_withdrawal(db, ambassador, {"amount": "5000", "mobile_money_number": "0612"}, user)
    with pytest.raises(ValueError, match="Insufficient"):
        request_withdrawal(db, ambassador, {"amount": "9000", "mobile_money_number": "061234567"}, user)

    w = request_withdrawal(db, ambassador, {"amount": "6000", "mobile_money_number": "06 123 45 67"}, user)
    assert w.status == "pending"
    assert ambassador.available_balance == Decimal("2000")
    assert ambassador.pending_balance == Decimal("6000")


def test_open_fraud_flag_sends_withdrawal_to_review(ambassador, db):
    with pytest.raises(ValueError):
        register_referral(db, ambassador.referral_code, ambassador.user)
    ambassador.available_balance = Decimal("5000")

    w = request_withdrawal(db, ambassador, {"amount": "5000", "mobile_money_number": "061234567"}, ambassador.user)
    assert w.status == "pending_review"


def test_reject_withdrawal_refunds_balance(ambassador, world, db):
    ambassador.available_balance = Decimal("5000")
    w = request_withdrawal(db, ambassador, {"amount": "5000", "mobile_money_number": "061234567"}, ambassador.user)

    with pytest.raises(ValueError, match="reason"):
        reject_withdrawal(db, w, world["admin"], reason="")
    reject_withdrawal(db, w, world["admin"], reason="Number does not match the account holder")
    assert w.status == "rejected"
    assert ambassador.available_balance == Decimal("5000")
    assert ambassador.pending_balance == Decimal("0")
    with pytest.raises(ValueError):
        approve_withdrawal(db, w, world["admin"])


def test_pay_withdrawal_respects_delay(ambassador, world, db):
    ambassador.available_balance = Decimal("5000")
    w = request_withdrawal(db, ambassador, {"amount": "5000", "mobile_money_number": "061234567"}, ambassador.user)

    with pytest.raises(ValueError, match="Only approved"):
        pay_withdrawal(db, w, world["admin"])
    approve_withdrawal(db, w, world["admin"])
    with pytest.raises(ValueError, match="can be paid from"):
        pay_withdrawal(db, w, world["admin"], now=w.created_at + timedelta(hours=23))

    pay_withdrawal(db, w, world["admin"], now=w.created_at + timedelta(hours=24))
    assert w.status == "paid"
    assert ambassador.pending_balance == Decimal("0")
    assert ambassador.available_balance == Decimal("0")


def test_register_with_ref_code_over_http(ambassador, client, db):
    from app.fooddash.modules.affiliates.models import Referral

    db.commit()
    r = client.post(
        "/api/auth/register",
        json={
            "email": "filleul@example.com",
            "password": "longenough",
            "ref": ambassador.referral_code,
            "device_fingerprint": "fp-http",
        },
    )
    assert r.status_code == 201
    referral = db.query(Referral).filter(Referral.referred_user_id == r.json["user"]["id"]).one()
    assert referral.referrer_id == ambassador.id


def test_affiliate_dashboard_enrols_on_first_visit(world, client):
    assert client.get("/api/affiliate").status_code == 401

    login(client, "customer@example.com")
    r = client.get("/api/affiliate")
    assert r.status_code == 200
    assert r.json["affiliate"]["referral_code"].startswith("KAL")
    assert r.json["settings"]["min_orders_required"] == 3
    assert client.get("/api/affiliate").json["affiliate"]["id"] == r.json["affiliate"]["id"]
