from decimal import Decimal

import pytest

from app.fooddash.modules.drivers.service import (
    earnings_summary,
    get_or_create_profile,
    rate_driver,
    set_availability,
    update_location,
    update_profile,
    validate_driver,
)
from tests.conftest import add_user, deliver, login, place_order


@pytest.fixture()
def newcomer(db):
    user = add_user(db, "newcomer@example.com", "delivery_driver")
    return get_or_create_profile(db, user)


def test_profile_created_once_and_unvalidated(newcomer, db):
    assert newcomer.is_validated is False
    assert newcomer.is_available is False
    assert get_or_create_profile(db, newcomer.user).id == newcomer.id


def test_vehicle_type_is_checked(newcomer, db):
    with pytest.raises(ValueError, match="vehicle_type"):
        update_profile(db, newcomer, {"vehicle_type": "rocket"}, newcomer.user)
    update_profile(db, newcomer, {"vehicle_type": "Moto", "license_number": " BZV-123 "}, newcomer.user)
    assert newcomer.vehicle_type == "moto"
    assert newcomer.license_number == "BZV-123"


def test_unvalidated_driver_cannot_go_online(newcomer, world, db):
    with pytest.raises(ValueError, match="validated"):
        set_availability(db, newcomer, newcomer.user, available=True)

    with pytest.raises(ValueError, match="reason"):
        validate_driver(db, newcomer, world["admin"], approved=False)
    validate_driver(db, newcomer, world["admin"], approved=True)
    set_availability(db, newcomer, newcomer.user, available=True)
    assert newcomer.is_available is True

    # Rejecting a validated driver takes them offline.
    validate_driver(db, newcomer, world["admin"], approved=False, notes="Expired licence")
    assert newcomer.is_validated is False
    assert newcomer.is_available is False


def test_location_is_pushed_to_followers_of_active_orders(world, db):
    from app.fooddash.models import ChangeEvent
    from app.fooddash.modules.orders.service import claim_order, transition_order

    profile = get_or_create_profile(db, world["driver"])
    with pytest.raises(ValueError, match="required"):
        update_location(db, profile, "-4.26", None)
    with pytest.raises(ValueError, match="range"):
        update_location(db, profile, "-4.26", "200")

    order = place_order(db, world)
    for status in ("accepted", "preparing", "ready"):
        transition_order(db, order, status, world["owner"], actor="restaurant")
    claim_order(db, order, world["driver"])
    db.flush()

    update_location(db, profile, "-4.2634", "15.2429")
    db.flush()
    assert profile.latitude == Decimal("-4.263400")
    events = db.query(ChangeEvent).filter(ChangeEvent.table_name == "driver_locations").all()
    assert {e.channel for e in events} == {"admin", f"user:{world['customer'].id}", f"restaurant:{world['restaurant'].id}"}
    assert events[0].payload["driver_id"] == world["driver"].id


def test_earnings_summary(world, db):
    deliver(db, world, place_order(db, world))
    deliver(db, world, place_order(db, world))
    db.flush()

    summary = earnings_summary(db, world["driver"].id)
    assert summary["payout_percentage"] == 80.0
    assert summary["today"] == {"deliveries": 2, "earnings": 1600.0}
    assert summary["month"]["deliveries"] == 2
    assert summary["all_time"] == {"deliveries": 2, "earnings": 1600.0}


def test_rate_driver_once_per_order(world, db):
    order = deliver(db, world, place_order(db, world))
    db.flush()

    with pytest.raises(PermissionError):
        rate_driver(db, order, world["owner"], {"rating": 5})
    with pytest.raises(ValueError):
        rate_driver(db, order, world["customer"], {"rating": 6})

    rate_driver(db, order, world["customer"], {"rating": 4, "comment": "Rapide"})
    profile = get_or_create_profile(db, world["driver"])
    assert profile.rating == Decimal("4.00")
    assert profile.reviews_count == 1
    with pytest.raises(ValueError, match="already been rated"):
        rate_driver(db, order, world["customer"], {"rating": 5})


def test_driver_endpoints(world, client, db):
    h = {"X-CSRF-Token": login(client, "driver@example.com")}
    r = client.get("/api/driver/profile")
    assert r.status_code == 200
    assert r.json["driver"]["is_validated"] is True

    assert client.post("/api/driver/availability", json={}, headers=h).status_code == 400
    r = client.post("/api/driver/availability", json={"is_available": False}, headers=h)
    assert r.json["driver"]["is_available"] is False

    r = client.post("/api/driver/location", json={"latitude": -4.26, "longitude": 15.24}, headers=h)
    assert r.status_code == 200
    assert r.json["ok"] is True

    assert client.get("/api/driver/earnings").json["earnings"]["all_time"]["deliveries"] == 0

    h = {"X-CSRF-Token": login(client, "customer@example.com")}
    assert client.get("/api/driver/profile").status_code == 403
