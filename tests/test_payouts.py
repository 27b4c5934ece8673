from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest

from app.fooddash.modules.payouts.earnings import (
    add_months,
    driver_earning,
    next_payout_date,
    platform_commission,
    restaurant_earning,
)
from app.fooddash.modules.payouts.service import (
    approve_payout,
    cash_summary,
    create_payout,
    due_payments,
    mark_deposit_received,
    mark_payout_paid,
    recipient_balance,
    reject_cash_deposit,
    reject_payout,
    request_cash_deposit,
    save_payment_settings,
    schedule_auto_payouts,
    validate_cash_deposit,
)
from app.fooddash.utils import local_now
from tests.conftest import deliver, login, place_order


def test_earning_rules():
    assert restaurant_earning(Decimal("6000"), Decimal("0"), Decimal("15")) == Decimal("5100.00")
    assert restaurant_earning(Decimal("6000"), Decimal("600"), Decimal("15")) == Decimal("4590.00")
    assert restaurant_earning(Decimal("100"), Decimal("300"), Decimal("15")) == Decimal("0.00")
    assert platform_commission(Decimal("6000"), None, Decimal("15")) == Decimal("900.00")
    assert driver_earning(Decimal("1000"), Decimal("80")) == Decimal("800.00")
    assert driver_earning(None, Decimal("80")) == Decimal("0.00")


def test_next_payout_date():
    start = date(2026, 1, 31)
    assert next_payout_date("weekly", None, start) == date(2026, 2, 7)
    assert next_payout_date("bi_weekly", None, start) == date(2026, 2, 14)
    assert next_payout_date("monthly", None, start) == date(2026, 2, 28)
    assert next_payout_date("custom", 10, start) == date(2026, 2, 10)
    assert add_months(date(2026, 12, 15), 1) == date(2027, 1, 15)
    with pytest.raises(ValueError):
        next_payout_date("yearly", None, start)


def _delivered(db, world):
    order = deliver(db, world, place_order(db, world))
    db.flush()
    return order


def test_due_payments_after_delivery(world, db):
    _delivered(db, world)
    rows = {(r["recipient_type"], r["recipient_id"]): r for r in due_payments(db)}

    restaurant = rows[("restaurant", world["restaurant"].id)]
    driver = rows[("driver", world["driver"].id)]
    assert restaurant["due_amount"] == 5100.0
    assert restaurant["delivered_orders"] == 1
    assert driver["due_amount"] == 800.0
    # Not a week old yet.
    assert restaurant["is_due"] is False

    later = datetime.utcnow() + timedelta(days=8)
    due = due_payments(db, now=later, only_due=True)
    # The driver's 800 stays under the 5000 minimum.
    assert [(r["recipient_type"], r["recipient_id"]) for r in due] == [("restaurant", world["restaurant"].id)]


def test_payout_cannot_exceed_amount_due(world, db):
    _delivered(db, world)
    rid = world["restaurant"].id
    with pytest.raises(ValueError, match="exceeds"):
        create_payout(db, "restaurant", rid, "5100.01", world["admin"])
    with pytest.raises(ValueError, match="positive"):
        create_payout(db, "restaurant", rid, "0", world["admin"])
    with pytest.raises(ValueError, match="recipient_type"):
        create_payout(db, "courier", rid, "10", world["admin"])

    create_payout(db, "restaurant", rid, "5000", world["admin"])
    # The pending payout is committed against what is due.
    with pytest.raises(ValueError, match="exceeds"):
        create_payout(db, "restaurant", rid, "200", world["admin"])


def test_payout_creation_locks_the_recipient_row(world, db, monkeypatch):
    from sqlalchemy.dialects import postgresql

    from app.fooddash.modules.payouts import service

    _delivered(db, world)
    sql = str(service._recipient_query(db, "driver", world["driver"].id).statement.compile(dialect=postgresql.dialect()))
    assert "FOR UPDATE" in sql

    calls = []
    real_lock, real_unpaid = service._lock_recipient, service._unpaid
    monkeypatch.setattr(service, "_lock_recipient", lambda *a: (calls.append("lock"), real_lock(*a))[1])
    monkeypatch.setattr(service, "_unpaid", lambda *a: (calls.append("unpaid"), real_unpaid(*a))[1])
    create_payout(db, "driver", world["driver"].id, "800", world["admin"])
    # The due amount is only read once the recipient row is held.
    assert calls == ["lock", "unpaid"]

    with pytest.raises(LookupError):
        create_payout(db, "restaurant", 9999, "10", world["admin"])


def test_approve_then_pay_writes_ledger_line(world, db):
    from app.fooddash.modules.payouts.models import Transaction

    _delivered(db, world)
    rid = world["restaurant"].id
    p = create_payout(db, "restaurant", rid, "5100", world["admin"])

    with pytest.raises(ValueError, match="approved"):
        mark_payout_paid(db, p, world["admin"])
    p = approve_payout(db, p, world["admin"])
    with pytest.raises(ValueError, match="pending"):
        approve_payout(db, p, world["admin"])
    p = mark_payout_paid(db, p, world["admin"])

    assert p.status == "paid"
    tx = db.query(Transaction).filter(Transaction.payout_id == p.id).one()
    assert tx.balance_before == Decimal("5100.00")
    assert tx.balance_after == Decimal("0.00")
    assert recipient_balance(db, "restaurant", rid)["due_amount"] == 0.0


def test_rejected_payout_releases_the_amount(world, db):
    _delivered(db, world)
    did = world["driver"].id
    p = create_payout(db, "driver", did, "800", world["admin"])
    assert recipient_balance(db, "driver", did)["due_amount"] == 0.0

    with pytest.raises(ValueError, match="reason"):
        reject_payout(db, p, world["admin"], reason=" ")
    reject_payout(db, p, world["admin"], reason="Wrong mobile money number")
    assert recipient_balance(db, "driver", did)["due_amount"] == 800.0


def test_payment_settings_validation(world, db):
    rid = world["restaurant"].id
    with pytest.raises(ValueError, match="mobile money"):
        save_payment_settings(db, "restaurant", rid, {"payment_method": "mobile_money", "mobile_money_number": "0612"}, world["owner"])
    with pytest.raises(ValueError, match="bank_name"):
        save_payment_settings(db, "restaurant", rid, {"payment_method": "bank"}, world["owner"])
    with pytest.raises(ValueError, match="custom_frequency_days"):
        save_payment_settings(
            db,
            "restaurant",
            rid,
            {"payment_method": "cash", "payout_frequency": "custom"},
            world["owner"],
        )

    ps = save_payment_settings(
        db,
        "restaurant",
        rid,
        {"payment_method": "bank", "bank_name": "BGFI", "bank_account_number": "123456789", "payout_frequency": "monthly"},
        world["owner"],
        today=date(2026, 1, 31),
    )
    assert ps.next_payout_date == date(2026, 2, 28)
    assert ps.min_payout_amount == Decimal("5000")
    assert ps.mobile_money_number is None


def test_schedule_auto_payouts_only_for_due_auto_recipients(world, db):
    rid = world["restaurant"].id
    save_payment_settings(
        db,
        "restaurant",
        rid,
        {"payment_method": "mobile_money", "mobile_money_number": "+242 06 123 45 67", "auto_payout": True},
        world["owner"],
        today=local_now().date(),
    )
    _delivered(db, world)

    assert schedule_auto_payouts(db) == []
    created = schedule_auto_payouts(db, now=datetime.utcnow() + timedelta(days=8))
    assert [(p.recipient_type, p.recipient_id, p.amount) for p in created] == [("restaurant", rid, Decimal("5100.00"))]
    assert created[0].is_automatic is True
    assert created[0].payment_details == {"mobile_money_number": "+242 06 123 45 67", "mobile_money_provider": None}
    # Already committed, nothing left to schedule.
    assert schedule_auto_payouts(db, now=datetime.utcnow() + timedelta(days=8)) == []


def test_admin_payout_endpoints(world, client, db):
    _delivered(db, world)
    db.commit()

    h = {"X-CSRF-Token": login(client, "admin@example.com")}
    r = client.get("/api/admin/payouts/due?recipient_type=restaurant")
    assert r.status_code == 200
    assert r.json["due"][0]["due_amount"] == 5100.0

    r = client.post(
        "/api/admin/payouts",
        json={"recipient_type": "restaurant", "recipient_id": world["restaurant"].id, "amount": 9999},
        headers=h,
    )
    assert r.status_code == 400

    r = client.post(
        "/api/admin/payouts",
        json={"recipient_type": "restaurant", "recipient_id": world["restaurant"].id, "amount": 5100},
        headers=h,
    )
    assert r.status_code == 201
    payout_id = r.json["payout"]["id"]
    assert client.post(f"/api/admin/payouts/{payout_id}/approve", headers=h).status_code == 200
    r = client.post(f"/api/admin/payouts/{payout_id}/pay", headers=h)
    assert r.status_code == 200
    assert r.json["payout"]["status"] == "paid"

    h = {"X-CSRF-Token": login(client, "customer@example.com")}
    assert client.get("/api/admin/payouts/due").status_code == 403


def test_cash_on_hand_follows_deposits(world, db):
    driver, admin = world["driver"], world["admin"]
    deliver(db, world, place_order(db, world))
    deliver(db, world, place_order(db, world, payment_method="mobile_money"))
    db.flush()
    # Only the cash order counts: 2 x 3000 + 1000.
    assert cash_summary(db, driver.id) == {"collected": 7000.0, "deposited": 0.0, "pending": 0.0, "on_hand": 7000.0}

    with pytest.raises(ValueError, match="positive"):
        request_cash_deposit(db, driver, {"amount": 0})
    with pytest.raises(ValueError, match="cash on hand"):
        request_cash_deposit(db, driver, {"amount": 7001})

    first = request_cash_deposit(db, driver, {"amount": 5000})
    assert first.status == "pending"
    assert cash_summary(db, driver.id)["on_hand"] == 2000.0
    # Pending deposits are reserved.
    with pytest.raises(ValueError, match="cash on hand"):
        request_cash_deposit(db, driver, {"amount": 2500})

    mark_deposit_received(db, first, admin)
    assert first.received_at is not None
    validate_cash_deposit(db, first, admin)
    assert first.status == "validated" and first.processed_by_user_id == admin.id
    assert cash_summary(db, driver.id) == {"collected": 7000.0, "deposited": 5000.0, "pending": 0.0, "on_hand": 2000.0}
    with pytest.raises(ValueError, match="validated"):
        mark_deposit_received(db, first, admin)


def test_rejected_deposit_frees_the_cash(world, db):
    driver, admin = world["driver"], world["admin"]
    deliver(db, world, place_order(db, world))
    d = request_cash_deposit(db, driver, {"amount": 7000})
    assert cash_summary(db, driver.id)["on_hand"] == 0.0

    with pytest.raises(ValueError, match="reason"):
        reject_cash_deposit(db, d, admin, reason="  ")
    reject_cash_deposit(db, d, admin, reason="Envelope was short")
    assert d.status == "rejected" and d.reason == "Envelope was short"
    assert cash_summary(db, driver.id)["on_hand"] == 7000.0
    with pytest.raises(ValueError, match="rejected"):
        validate_cash_deposit(db, d, admin)


def test_cash_deposit_endpoints(world, client, db):
    deliver(db, world, place_order(db, world))
    db.commit()

    h = {"X-CSRF-Token": login(client, "driver@example.com")}
    r = client.post("/api/driver/cash-deposits", json={"amount": 3000}, headers=h)
    assert r.status_code == 201
    deposit_id = r.json["deposit"]["id"]
    assert r.json["summary"]["on_hand"] == 4000.0
    r = client.get("/api/driver/cash-deposits")
    assert [d["id"] for d in r.json["deposits"]] == [deposit_id]
    assert client.get("/api/admin/cash-deposits").status_code == 403

    h = {"X-CSRF-Token": login(client, "admin@example.com")}
    r = client.get("/api/admin/cash-deposits?status=pending")
    assert [d["id"] for d in r.json["deposits"]] == [deposit_id]
    assert client.get("/api/admin/cash-deposits?status=lost").status_code == 400
    assert client.post(f"/api/admin/cash-deposits/{deposit_id}/receive", headers=h).status_code == 200
    r = client.post(f"/api/admin/cash-deposits/{deposit_id}/validate", headers=h)
    assert r.status_code == 200
    assert r.json["deposit"]["status"] == "validated"
    assert client.post("/api/admin/cash-deposits/9999/validate", headers=h).status_code == 404
