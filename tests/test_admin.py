from decimal import Decimal

import pytest

from app.fooddash.settings import get_decimal, get_settings, update_settings
from tests.conftest import add_user, login


def test_admin_cannot_deactivate_self(world, client):
    h = {"X-CSRF-Token": login(client, "admin@example.com")}
    r = client.post(f"/api/admin/users/{world['admin'].id}/active", json={"is_active": False}, headers=h)
    assert r.status_code == 400
    assert "own account" in r.json["error"]


def test_deactivated_user_cannot_log_in(world, client):
    h = {"X-CSRF-Token": login(client, "admin@example.com")}
    r = client.post(
        f"/api/admin/users/{world['customer'].id}/active",
        json={"is_active": False, "reason": "Fraud"},
        headers=h,
    )
    assert r.status_code == 200
    assert r.json["user"]["is_active"] is False

    client.post("/api/auth/logout", headers=h)
    r = client.post("/api/auth/login", json={"email": "customer@example.com", "password": "correct-horse-9"})
    assert r.status_code == 401


def test_grant_and_revoke_roles(world, client, db):
    h = {"X-CSRF-Token": login(client, "admin@example.com")}
    uid = world["customer"].id

    r = client.post(f"/api/admin/users/{uid}/roles", json={"role": "delivery_driver"}, headers=h)
    assert r.status_code == 200
    assert sorted(r.json["user"]["roles"]) == ["customer", "delivery_driver"]

    from app.fooddash.modules.drivers.models import DriverProfile

    assert db.query(DriverProfile).filter(DriverProfile.user_id == uid).count() == 1

    r = client.post(f"/api/admin/users/{uid}/roles", json={"role": "delivery_driver", "grant": False}, headers=h)
    assert r.json["user"]["roles"] == ["customer"]

    r = client.post(f"/api/admin/users/{uid}/roles", json={"role": "superuser"}, headers=h)
    assert r.status_code == 400
    r = client.post(f"/api/admin/users/{world['admin'].id}/roles", json={"role": "admin", "grant": False}, headers=h)
    assert r.status_code == 400


def test_users_list_filters(world, client):
    login(client, "admin@example.com")
    r = client.get("/api/admin/users?role=delivery_driver")
    assert [u["email"] for u in r.json["users"]] == ["driver@example.com"]
    r = client.get("/api/admin/users?q=owner")
    assert r.json["total"] == 1


def test_update_settings_coerces_and_audits(world, db):
    from app.fooddash.models import AuditEvent

    changed = update_settings(db, {"commission_rate": "20", "maintenance_mode": "yes"}, world["admin"])
    assert changed == {"commission_rate": 20, "maintenance_mode": True}
    assert get_decimal(db, "commission_rate") == Decimal("20")
    assert get_settings(db, "payments")["commission_rate"] == 20
    assert db.query(AuditEvent).filter(AuditEvent.action == "settings.update").count() == 1

    assert update_settings(db, {"commission_rate": 20}, world["admin"]) == {}


@pytest.mark.parametrize(
    "updates",
    [
        {"commission_rate": "150"},
        {"driver_payout_percentage": "-1"},
        {"reward_amount": "lots"},
        {"unknown_key": 1},
        {"reward_amount": "NaN"},
        {"min_order_amount": "Infinity"},
    ],
)
def test_update_settings_rejects_bad_values(world, db, updates):
    with pytest.raises(ValueError):
        update_settings(db, updates, world["admin"])


def test_maintenance_mode_blocks_checkout(world, db):
    from app.fooddash.modules.orders.cart import add_to_cart
    from app.fooddash.modules.orders.service import checkout

    update_settings(db, {"maintenance_mode": True}, world["admin"])
    add_to_cart(db, world["customer"], world["item"].id, 1)
    with pytest.raises(ValueError, match="maintenance"):
        checkout(db, world["customer"], {"delivery_address": "x"})


def test_settings_endpoint_requires_permission(world, client, db):
    add_user(db, "plain@example.com", "customer")
    db.commit()
    login(client, "plain@example.com")
    assert client.get("/api/admin/settings").status_code == 403

    h = {"X-CSRF-Token": login(client, "admin@example.com")}
    r = client.put("/api/admin/settings", json={"min_order_amount": 2000}, headers=h)
    assert r.status_code == 200
    assert r.json["settings"]["min_order_amount"] == 2000


def test_admin_flags_default_and_gate_permissions(world, db):
    from app.fooddash.permissions import update_admin_flags
    from app.fooddash.rbac import admin_flags, user_has_permission

    junior = add_user(db, "junior@example.com", "admin")
    assert admin_flags(junior)["can_manage_orders"] is True
    assert admin_flags(junior)["can_manage_admins"] is False
    assert user_has_permission(junior, "orders.manage") is True
    assert user_has_permission(junior, "admins.manage") is False
    assert user_has_permission(world["admin"], "admins.manage") is True

    flags = update_admin_flags(db, junior, {"can_manage_payments": False}, world["admin"])
    assert flags["can_manage_payments"] is False
    assert user_has_permission(junior, "payouts.manage") is False
    assert user_has_permission(junior, "affiliates.manage") is False
    # Ungated admin permissions stay.
    assert user_has_permission(junior, "admin.view") is True

    with pytest.raises(ValueError, match="Unknown permission"):
        update_admin_flags(db, junior, {"can_fly": True}, world["admin"])
    with pytest.raises(ValueError, match="only be set on administrators"):
        update_admin_flags(db, world["customer"], {"can_manage_orders": False}, world["admin"])
    with pytest.raises(ValueError, match="your own"):
        update_admin_flags(db, world["admin"], {"can_manage_admins": False}, world["admin"])


def test_admin_permissions_endpoints(world, client, db):
    add_user(db, "junior@example.com", "admin")
    db.commit()

    login(client, "junior@example.com")
    assert client.get("/api/admin/admins").status_code == 403
    assert client.get("/api/admin/overview").status_code == 200

    h = {"X-CSRF-Token": login(client, "admin@example.com")}
    r = client.get("/api/admin/admins")
    assert [a["email"] for a in r.json["admins"]] == ["admin@example.com", "junior@example.com"]
    junior_id = r.json["admins"][1]["id"]

    r = client.put(f"/api/admin/admins/{junior_id}/permissions", json={"can_manage_settings": False}, headers=h)
    assert r.status_code == 200
    assert r.json["admin"]["permissions"]["can_manage_settings"] is False

    login(client, "junior@example.com")
    assert client.get("/api/admin/settings").status_code == 403
    assert "settings.manage" not in client.get("/api/auth/me").json["user"]["permissions"]
