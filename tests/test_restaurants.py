from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from app.fooddash.modules.restaurants.service import (
    auto_resume_restaurants,
    create_bundle,
    create_menu_item,
    create_option,
    create_option_group,
    create_restaurant,
    delete_bundle,
    list_favorites,
    list_public_restaurants,
    pause_restaurant,
    resume_restaurant,
    toggle_bundle_availability,
    toggle_favorite,
    update_bundle,
    update_option_group,
    validate_restaurant,
)
from app.fooddash.utils import local_now
from tests.conftest import add_user, login


def test_create_restaurant_collects_every_error(world, db):
    with pytest.raises(ValueError) as exc:
        create_restaurant(db, {"latitude": "95"}, world["owner"])
    msg = str(exc.value)
    assert "Name is required." in msg
    assert "Address is required." in msg
    assert "latitude" in msg

    with pytest.raises(ValueError, match="Unknown weekday"):
        create_restaurant(
            db,
            {"name": "X", "address": "Y", "business_hours": {"funday": {"open": "09:00", "close": "17:00"}}},
            world["owner"],
        )

    r = create_restaurant(db, {"name": " Le Maquis ", "address": "3 rue", "delivery_fee": "500"}, world["owner"])
    assert r.name == "Le Maquis"
    assert r.is_validated is False
    assert r.delivery_fee == Decimal("500")


def test_reject_requires_reason(world, db):
    r = create_restaurant(db, {"name": "Le Maquis", "address": "3 rue"}, world["owner"])
    with pytest.raises(ValueError, match="reason"):
        validate_restaurant(db, r, world["admin"], approved=False, notes="  ")

    validate_restaurant(db, r, world["admin"], approved=False, notes="Missing licence")
    assert r.is_validated is False
    assert r.validation_notes == "Missing licence"

    validate_restaurant(db, r, world["admin"], approved=True)
    assert r.is_validated is True
    assert r.validated_at is not None
    assert r.validated_by_user_id == world["admin"].id


def test_pause_and_resume(world, db):
    r = world["restaurant"]
    with pytest.raises(ValueError, match="future"):
        pause_restaurant(db, r, world["owner"], until=datetime.utcnow() - timedelta(minutes=1))

    pause_restaurant(db, r, world["owner"], message="Back soon")
    assert r.paused_at is not None
    assert r.pause_until is None
    assert r.pause_message == "Back soon"
    assert r not in list_public_restaurants(db, open_now=True, local_now=local_now())

    resume_restaurant(db, r, world["owner"])
    assert r.paused_at is None and r.pause_message is None
    assert r in list_public_restaurants(db, open_now=True, local_now=local_now())


def test_auto_resume_only_touches_expired_pauses(world, db):
    r = world["restaurant"]
    now = datetime.utcnow()
    pause_restaurant(db, r, world["owner"], until=now + timedelta(minutes=30))
    db.flush()

    assert auto_resume_restaurants(db, now) == []
    assert auto_resume_restaurants(db, now + timedelta(minutes=31)) == [r.id]
    assert r.paused_at is None


def test_public_listing_puts_sponsors_first(world, db):
    from app.fooddash.modules.restaurants.models import Restaurant

    now = datetime.utcnow()

    def _add(name, **kw):
        fields = dict(address="x", is_active=True, is_validated=True, created_at=now, updated_at=now)
        fields.update(kw)
        r = Restaurant(name=name, **fields)
        db.add(r)
        return r

    _add("Alpha", rating=Decimal("4.90"))
    _add("Bravo", is_sponsored=True, sponsored_position=2)
    _add("Charlie", is_sponsored=True, sponsored_position=1)
    _add("Delta", is_sponsored=True, sponsored_position=1, sponsored_until=now - timedelta(days=1), rating=Decimal("3.00"))
    _add("Hidden", is_validated=False)
    db.flush()

    names = [r.name for r in list_public_restaurants(db, local_now=local_now(), utc_now=now)]
    # Expired sponsorships fall back to rating order; unrated sorts by name.
    assert names == ["Charlie", "Bravo", "Alpha", "Delta", "Chez Mama"]

    assert [r.name for r in list_public_restaurants(db, search="mama", local_now=local_now())] == ["Chez Mama"]


def test_menu_item_validation(world, db):
    r = world["restaurant"]
    with pytest.raises(ValueError, match="price is required"):
        create_menu_item(db, r, {"name": "Saka-saka"}, world["owner"])
    with pytest.raises(ValueError, match="Unknown weekday"):
        create_menu_item(db, r, {"name": "Brunch", "price": "3000", "availability": {"available_days": ["sunday", "someday"]}}, world["owner"])
    with pytest.raises(ValueError, match="go together"):
        create_menu_item(db, r, {"name": "Brunch", "price": "3000", "availability": {"available_from": "09:00"}}, world["owner"])

    item = create_menu_item(
        db,
        r,
        {"name": "Brunch", "price": "3000", "availability": {"available_days": ["Sunday"], "available_from": "09:00", "available_until": "12:00"}},
        world["owner"],
    )
    assert item.availability == {"available_days": ["sunday"], "available_from": "09:00", "available_until": "12:00"}


def test_option_group_rules(world, db):
    item = world["item"]
    with pytest.raises(ValueError, match="cannot exceed"):
        create_option_group(db, item, {"name": "Sauces", "min_selections": 3, "max_selections": 2}, world["owner"])

    group = create_option_group(db, item, {"name": "Cuisson", "is_required": True, "max_selections": 1}, world["owner"])
    assert group.min_selections == 1

    with pytest.raises(ValueError, match="cannot exceed"):
        update_option_group(db, group, {"min_selections": 2}, world["owner"])

    opt = create_option(db, group, {"name": "Bien cuit", "price_modifier": "150"}, world["owner"])
    assert opt.price_modifier == Decimal("150")
    assert opt.is_available is True
    with pytest.raises(ValueError, match="Name"):
        create_option(db, group, {"name": ""}, world["owner"])


def test_toggle_favorite(world, db):
    customer, r = world["customer"], world["restaurant"]
    assert toggle_favorite(db, customer, r) is True
    db.flush()
    assert list_favorites(db, customer) == [r]
    assert toggle_favorite(db, customer, r) is False
    db.flush()
    assert list_favorites(db, customer) == []


def test_owner_flow_over_http(world, client, db):
    h = {"X-CSRF-Token": login(client, "owner@example.com")}
    r = client.post("/api/restaurants", json={"name": "Le Maquis", "address": "3 rue", "city": "Brazzaville"}, headers=h)
    assert r.status_code == 201
    rid = r.json["restaurant"]["id"]
    assert r.json["restaurant"]["is_validated"] is False

    r = client.post(f"/api/restaurants/{rid}/menu-items", json={"name": "Poisson salé", "price": 3500}, headers=h)
    assert r.status_code == 201
    assert r.json["menu_item"]["price"] == 3500

    # Not listed until validated.
    assert client.get(f"/api/restaurants/{rid}").status_code == 200
    client.post("/api/auth/logout", headers=h)
    assert client.get(f"/api/restaurants/{rid}").status_code == 404

    add_user(db, "other-owner@example.com", "restaurant_owner")
    db.commit()
    h = {"X-CSRF-Token": login(client, "other-owner@example.com")}
    assert client.patch(f"/api/restaurants/{rid}", json={"name": "Mine"}, headers=h).status_code == 403

    h = {"X-CSRF-Token": login(client, "admin@example.com")}
    assert client.post(f"/api/admin/restaurants/{rid}/reject", json={}, headers=h).status_code == 400
    r = client.post(f"/api/admin/restaurants/{rid}/validate", json={}, headers=h)
    assert r.status_code == 200
    assert r.json["restaurant"]["is_validated"] is True

    names = [x["name"] for x in client.get("/api/restaurants").json["restaurants"]]
    assert "Le Maquis" in names


def test_favorites_over_http(world, client):
    h = {"X-CSRF-Token": login(client, "customer@example.com")}
    rid = world["restaurant"].id
    r = client.post(f"/api/restaurants/{rid}/favorite", headers=h)
    assert r.json == {"restaurant_id": rid, "is_favorite": True}
    assert [x["id"] for x in client.get("/api/favorites").json["restaurants"]] == [rid]


def test_bundle_rules_and_ordering(world, db):
    owner, r = world["owner"], world["restaurant"]
    with pytest.raises(ValueError, match="category"):
        create_bundle(db, r, {"name": "Bissap", "category": "cocktail"}, owner)
    with pytest.raises(ValueError, match="price"):
        create_bundle(db, r, {"name": "Bissap", "category": "drink", "price": -1}, owner)
    with pytest.raises(ValueError, match="Name"):
        create_bundle(db, r, {"category": "drink"}, owner)

    sauce = create_bundle(db, r, {"name": "Pili-pili", "category": "sauce"}, owner)
    assert sauce.price == Decimal("0")
    create_bundle(db, r, {"name": "Jus de gingembre", "category": "drink", "price": 500, "display_order": 2}, owner)
    create_bundle(db, r, {"name": "Bissap", "category": "drink", "price": "500", "display_order": 1}, owner)
    db.expire(r, ["bundles"])
    assert [b.name for b in r.bundles] == ["Bissap", "Jus de gingembre", "Pili-pili"]

    toggle_bundle_availability(db, sauce, owner)
    assert sauce.is_available is False
    update_bundle(db, sauce, {"category": "Extra", "price": 150}, owner)
    assert (sauce.category, sauce.price) == ("extra", Decimal("150"))
    with pytest.raises(ValueError, match="category"):
        update_bundle(db, sauce, {"category": ""}, owner)

    delete_bundle(db, sauce, owner)
    assert [b.name for b in r.bundles] == ["Bissap", "Jus de gingembre"]


def test_bundles_over_http(world, client, db):
    rid = world["restaurant"].id
    h = {"X-CSRF-Token": login(client, "owner@example.com")}
    r = client.post(f"/api/restaurants/{rid}/bundles", json={"name": "Banane plantain", "category": "side", "price": 700}, headers=h)
    assert r.status_code == 201
    bundle_id = r.json["bundle"]["id"]
    r = client.post(f"/api/bundles/{bundle_id}/toggle", headers=h)
    assert r.json["bundle"]["is_available"] is False

    r = client.get(f"/api/restaurants/{rid}")
    assert [b["name"] for b in r.json["restaurant"]["bundles"]] == ["Banane plantain"]
    assert client.get(f"/api/restaurants/{rid}/bundles").json["bundles"][0]["price"] == 700

    h = {"X-CSRF-Token": login(client, "customer@example.com")}
    assert client.patch(f"/api/bundles/{bundle_id}", json={"price": 1}, headers=h).status_code == 403

    add_user(db, "other-owner@example.com", "restaurant_owner")
    db.commit()
    h = {"X-CSRF-Token": login(client, "other-owner@example.com")}
    assert client.delete(f"/api/bundles/{bundle_id}", headers=h).status_code == 403
    h = {"X-CSRF-Token": login(client, "owner@example.com")}
    assert client.delete(f"/api/bundles/{bundle_id}", headers=h).status_code == 200
    assert client.get(f"/api/restaurants/{rid}/bundles").json["bundles"] == []
