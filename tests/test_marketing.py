from datetime import datetime, timedelta

import pytest

from app.fooddash.modules.marketing.service import (
    active_banners,
    active_popups,
    bump_counter,
    create_item,
    create_promo_code,
    update_item,
    update_promo_code,
)
from tests.conftest import login


def test_promo_code_creation_rules(world, db):
    admin = world["admin"]
    until = (datetime.utcnow() + timedelta(days=30)).isoformat()

    with pytest.raises(ValueError, match="letters, digits"):
        create_promo_code(db, {"code": "NO WAY", "discount_type": "fixed", "discount_value": 1, "valid_until": until}, admin, restaurant_id=None)
    with pytest.raises(ValueError, match="cannot exceed 100"):
        create_promo_code(db, {"code": "TOOMUCH", "discount_type": "percentage", "discount_value": 120, "valid_until": until}, admin, restaurant_id=None)
    with pytest.raises(ValueError, match="valid_until is required"):
        create_promo_code(db, {"code": "OPEN", "discount_type": "fixed", "discount_value": 500}, admin, restaurant_id=None)

    promo = create_promo_code(db, {"code": "rentree-25", "discount_type": "Percentage", "discount_value": 25, "valid_until": until}, admin, restaurant_id=None)
    assert promo.code == "RENTREE-25"
    assert promo.discount_type == "percentage"

    with pytest.raises(ValueError, match="already exists"):
        create_promo_code(db, {"code": "RENTREE-25", "discount_type": "fixed", "discount_value": 1, "valid_until": until}, admin, restaurant_id=None)
    with pytest.raises(ValueError, match="after valid_from"):
        update_promo_code(db, promo, {"valid_until": (datetime.utcnow() - timedelta(days=400)).isoformat()}, admin)


def test_banner_window_and_audience(world, db):
    admin = world["admin"]
    now = datetime.utcnow()
    with pytest.raises(ValueError, match="title"):
        create_item(db, "banner", {}, admin)
    with pytest.raises(ValueError, match="target_audience"):
        create_item(db, "banner", {"title": "X", "target_audience": "aliens"}, admin)
    with pytest.raises(ValueError, match="ends_at"):
        create_item(db, "banner", {"title": "X", "starts_at": now.isoformat(), "ends_at": (now - timedelta(hours=1)).isoformat()}, admin)

    everyone = create_item(db, "banner", {"title": "Livraison offerte", "display_order": 2}, admin)
    drivers = create_item(db, "banner", {"title": "Recrutement", "target_audience": "delivery_driver", "display_order": 1}, admin)
    later = create_item(db, "banner", {"title": "Bientôt", "starts_at": (now + timedelta(days=1)).isoformat()}, admin)
    off = create_item(db, "banner", {"title": "Off", "is_active": False}, admin)

    assert active_banners(db, now=now) == [everyone]
    assert active_banners(db, audience="delivery_driver", now=now) == [drivers, everyone]
    assert later in active_banners(db, now=now + timedelta(days=2))
    assert off not in active_banners(db, now=now)

    update_item(db, "banner", everyone, {"is_active": False}, admin)
    assert active_banners(db, now=now) == []


def test_popups_respect_target_pages(world, db):
    admin = world["admin"]
    anywhere = create_item(db, "popup", {"title": "Bienvenue", "popup_type": "toast"}, admin)
    checkout_only = create_item(db, "popup", {"title": "Code promo", "target_pages": "/checkout, /cart"}, admin)
    assert checkout_only.target_pages == ["/checkout", "/cart"]

    with pytest.raises(ValueError, match="trigger_type"):
        create_item(db, "popup", {"title": "X", "trigger_type": "telepathy"}, admin)

    assert active_popups(db) == [anywhere]
    assert active_popups(db, page="/cart") == [anywhere, checkout_only]
    assert active_popups(db, page="/") == [anywhere]


def test_campaign_fields(world, db):
    campaign = create_item(db, "campaign", {"name": "Rentrée", "status": "active", "banner_ids": [1, "2"], "budget": "50000"}, world["admin"])
    assert campaign.banner_ids == [1, 2]
    assert campaign.status == "active"
    with pytest.raises(ValueError, match="list of ids"):
        create_item(db, "campaign", {"name": "X", "popup_ids": "1,2"}, world["admin"])
    with pytest.raises(ValueError, match="object"):
        create_item(db, "campaign", {"name": "X", "target_metrics": [1]}, world["admin"])


def test_bump_counter(world, db):
    banner = create_item(db, "banner", {"title": "Promo"}, world["admin"])
    assert bump_counter(db, "banner", banner.id, "click_count") is True
    assert bump_counter(db, "banner", banner.id, "click_count") is True
    db.refresh(banner)
    assert banner.click_count == 2
    assert bump_counter(db, "banner", 99999, "view_count") is False
    with pytest.raises(ValueError, match="Unknown counter"):
        bump_counter(db, "banner", banner.id, "display_count")


def test_marketing_endpoints(world, client, db):
    h = {"X-CSRF-Token": login(client, "admin@example.com")}
    r = client.post("/api/admin/marketing/banners", json={"title": "Livraison offerte"}, headers=h)
    assert r.status_code == 201
    banner_id = r.json["banner"]["id"]
    assert client.post("/api/admin/marketing/gadgets", json={"title": "X"}, headers=h).status_code == 404

    r = client.post(
        "/api/admin/promo-codes",
        json={"code": "FETE", "discount_type": "fixed", "discount_value": 500, "valid_until": (datetime.utcnow() + timedelta(days=1)).isoformat()},
        headers=h,
    )
    assert r.status_code == 201

    h = {"X-CSRF-Token": login(client, "customer@example.com")}
    assert [b["id"] for b in client.get("/api/marketing/banners").json["banners"]] == [banner_id]
    assert client.post(f"/api/marketing/banners/{banner_id}/click", headers=h).status_code == 200
    assert client.post(f"/api/marketing/banners/{banner_id}/display", headers=h).status_code == 400

    r = client.post("/api/promo-codes/validate", json={"code": "fete", "subtotal": 6000, "restaurant_id": world["restaurant"].id}, headers=h)
    assert r.status_code == 200
    assert r.json["discount"] == 500.0
    r = client.post("/api/promo-codes/validate", json={"code": "NOPE", "subtotal": 6000}, headers=h)
    assert r.status_code == 400
    assert r.json["reason"] == "unknown"

    assert client.post("/api/admin/marketing/banners", json={"title": "X"}, headers=h).status_code == 403
