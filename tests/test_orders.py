from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from app.fooddash.modules.marketing.service import PromoError, validate_promo
from app.fooddash.modules.orders.cart import add_to_cart, cart_items
from app.fooddash.modules.orders.service import (
    InvalidTransition,
    allowed_transitions,
    available_deliveries,
    checkout,
    claim_order,
    transition_order,
)
from tests.conftest import add_user, login, place_order


def _promo(db, code, **overrides):
    from app.fooddash.modules.marketing.models import PromoCode

    now = datetime.utcnow()
    fields = dict(
        code=code,
        discount_type="percentage",
        discount_value=Decimal("10"),
        uses_count=0,
        valid_from=now - timedelta(days=1),
        valid_until=now + timedelta(days=1),
        is_active=True,
        created_at=now,
        updated_at=now,
    )
    fields.update(overrides)
    promo = PromoCode(**fields)
    db.add(promo)
    db.flush()
    return promo


def test_checkout_snapshots_prices_and_clears_cart(world, db):
    order = place_order(db, world)

    assert order.status == "pending"
    # 2 x (2500 + 500 cheese)
    assert order.subtotal == Decimal("6000")
    assert order.delivery_fee == Decimal("1000")
    assert order.total == Decimal("7000")
    assert order.phone == "+242061234567"
    assert order.items[0].price == Decimal("3000")
    assert order.items[0].selected_options[0]["name"] == "Fromage"
    assert cart_items(db, world["customer"]) == []


def test_checkout_refusals(world, db):
    with pytest.raises(ValueError, match="empty"):
        checkout(db, world["customer"], {"delivery_address": "x"})

    add_to_cart(db, world["customer"], world["item"].id, 1)
    with pytest.raises(ValueError, match="address"):
        checkout(db, world["customer"], {})
    with pytest.raises(ValueError, match="payment_method"):
        checkout(db, world["customer"], {"delivery_address": "x", "payment_method": "cheque"})
    with pytest.raises(ValueError, match="both"):
        checkout(db, world["customer"], {"delivery_address": "x", "delivery_latitude": "-4.26"})

    world["restaurant"].min_order = Decimal("5000")
    with pytest.raises(ValueError, match="Minimum order"):
        checkout(db, world["customer"], {"delivery_address": "x"})

    world["restaurant"].min_order = None
    world["restaurant"].paused_at = datetime.utcnow()
    with pytest.raises(ValueError, match="not accepting"):
        checkout(db, world["customer"], {"delivery_address": "x"})


def test_checkout_applies_and_consumes_promo(world, db):
    promo = _promo(db, "BIENVENUE", max_uses=1)
    order = place_order(db, world, promo_code="bienvenue")

    assert order.discount_amount == Decimal("600.00")
    assert order.total == Decimal("6400.00")
    assert order.promo_code_id == promo.id
    assert promo.uses_count == 1

    with pytest.raises(PromoError) as exc:
        place_order(db, world, promo_code="BIENVENUE")
    assert exc.value.reason == "exhausted"


def test_promo_refusal_reasons(world, db):
    from app.fooddash.modules.restaurants.models import Restaurant

    now = datetime.utcnow()
    rid = world["restaurant"].id
    _promo(db, "LATER", valid_from=now + timedelta(days=1), valid_until=now + timedelta(days=2))
    _promo(db, "OLD", valid_from=now - timedelta(days=3), valid_until=now - timedelta(days=1))
    other = Restaurant(name="Autre", address="1 rue", created_at=now, updated_at=now)
    db.add(other)
    db.flush()
    _promo(db, "ELSEWHERE", restaurant_id=other.id)
    _promo(db, "BIGBASKET", min_order_amount=Decimal("10000"))
    _promo(db, "OFF", is_active=False)

    cases = {
        "NOPE": "unknown",
        "OFF": "unknown",
        "LATER": "not_started",
        "OLD": "expired",
        "ELSEWHERE": "wrong_restaurant",
        "BIGBASKET": "below_minimum",
    }
    for code, reason in cases.items():
        with pytest.raises(PromoError) as exc:
            validate_promo(db, code, Decimal("6000"), rid, now)
        assert exc.value.reason == reason, code


def test_fixed_promo_never_exceeds_subtotal(world, db):
    _promo(db, "GROS", discount_type="fixed", discount_value=Decimal("9000"))
    _, discount = validate_promo(db, "GROS", Decimal("6000"), world["restaurant"].id)
    assert discount == Decimal("6000.00")


def test_allowed_transitions_per_actor():
    assert allowed_transitions("pending", "restaurant") == ("accepted", "cancelled")
    assert allowed_transitions("delivering", "driver") == ("delivered",)
    assert allowed_transitions("accepted", "customer") == ()
    assert allowed_transitions("delivered", "admin") == ()
    assert "delivered" not in allowed_transitions("delivering", "admin")
    with pytest.raises(ValueError):
        allowed_transitions("pending", "stranger")


def test_restaurant_cannot_skip_steps(world, db):
    order = place_order(db, world)
    with pytest.raises(InvalidTransition):
        transition_order(db, order, "preparing", world["owner"], actor="restaurant")
    with pytest.raises(ValueError, match="Invalid status"):
        transition_order(db, order, "teleported", world["owner"], actor="restaurant")

    transition_order(db, order, "accepted", world["owner"], actor="restaurant")
    assert order.accepted_at is not None
    with pytest.raises(InvalidTransition):
        transition_order(db, order, "cancelled", world["customer"], actor="customer")


def test_customer_cancels_pending_order(world, db):
    order = place_order(db, world)
    transition_order(db, order, "cancelled", world["customer"], actor="customer", reason="Changed my mind")
    assert order.cancelled_at is not None
    assert order.cancel_reason == "Changed my mind"
    assert order.cancelled_by_user_id == world["customer"].id


def test_admin_forced_change_needs_reason_and_releases_driver(world, db):
    order = place_order(db, world)
    for status in ("accepted", "preparing", "pickup_pending"):
        transition_order(db, order, status, world["owner"], actor="restaurant")
    claim_order(db, order, world["driver"])
    assert order.driver_id == world["driver"].id

    with pytest.raises(ValueError, match="reason"):
        transition_order(db, order, "ready", world["admin"], actor="admin")
    with pytest.raises(InvalidTransition):
        transition_order(db, order, "delivered", world["admin"], actor="admin", reason="Driver says so")

    transition_order(db, order, "ready", world["admin"], actor="admin", reason="Driver had a flat tyre")
    assert order.driver_id is None
    assert order in available_deliveries(db)


def test_claim_is_single_winner(world, db):
    from app.fooddash.modules.drivers.models import DriverProfile

    rival = add_user(db, "rival@example.com", "delivery_driver")
    now = datetime.utcnow()
    db.add(DriverProfile(user_id=rival.id, is_validated=True, is_available=True, created_at=now, updated_at=now))
    order = place_order(db, world)
    for status in ("accepted", "preparing", "ready"):
        transition_order(db, order, status, world["owner"], actor="restaurant")

    claim_order(db, order, world["driver"])
    assert order.status == "pickup_accepted"
    with pytest.raises(InvalidTransition):
        claim_order(db, order, rival)
    assert order.driver_id == world["driver"].id


def test_claim_requires_validated_available_driver(world, db):
    from app.fooddash.modules.drivers.models import DriverProfile

    order = place_order(db, world)
    for status in ("accepted", "preparing", "ready"):
        transition_order(db, order, status, world["owner"], actor="restaurant")

    profile = db.query(DriverProfile).filter(DriverProfile.user_id == world["driver"].id).one()
    profile.is_available = False
    with pytest.raises(ValueError, match="available"):
        claim_order(db, order, world["driver"])
    profile.is_validated = False
    with pytest.raises(ValueError, match="validated"):
        claim_order(db, order, world["driver"])


def test_full_delivery_over_http(world, client, db):
    token = login(client, "customer@example.com")
    h = {"X-CSRF-Token": token}
    r = client.post(
        "/api/cart/items",
        json={"menu_item_id": world["item"].id, "quantity": 2, "selected_options": [world["option"].id]},
        headers=h,
    )
    assert r.status_code == 201
    r = client.post("/api/orders", json={"delivery_address": "5 rue Mbochi"}, headers=h)
    assert r.status_code == 201
    order_id = r.json["order"]["id"]
    assert r.json["order"]["total"] == 7000

    h = {"X-CSRF-Token": login(client, "owner@example.com")}
    for status in ("accepted", "preparing", "pickup_pending"):
        r = client.post(f"/api/restaurant/orders/{order_id}/status", json={"status": status}, headers=h)
        assert r.status_code == 200, r.json
    r = client.post(f"/api/restaurant/orders/{order_id}/status", json={"status": "accepted"}, headers=h)
    assert r.status_code == 409

    h = {"X-CSRF-Token": login(client, "driver@example.com")}
    available = client.get("/api/driver/deliveries/available").json["orders"]
    assert [o["id"] for o in available] == [order_id]
    r = client.post(f"/api/driver/deliveries/{order_id}/claim", headers=h)
    assert r.status_code == 200
    for status in ("picked_up", "delivering", "delivered"):
        r = client.post(f"/api/driver/deliveries/{order_id}/status", json={"status": status}, headers=h)
        assert r.status_code == 200, r.json
    assert r.json["order"]["delivered_at"] is not None

    r = client.post(f"/api/driver/deliveries/{order_id}/claim", headers=h)
    assert r.status_code == 409


def test_other_customers_cannot_see_order(world, client, db):
    order = place_order(db, world)
    db.commit()
    add_user(db, "nosy@example.com", "customer")
    db.commit()

    login(client, "nosy@example.com")
    assert client.get(f"/api/orders/{order.id}").status_code == 404
