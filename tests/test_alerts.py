from datetime import datetime, timedelta

import pytest

from app.fooddash.modules.alerts.config import DEFAULT_CONFIG, MUTED_CONFIG, resolve_config, status_alert
from app.fooddash.modules.alerts.service import admin_urgent, broadcast, broadcast_recipients, mark_read, message_received, trigger
from tests.conftest import add_user, deliver, login, place_order

T0 = datetime(2026, 3, 2, 11, 0, 0)


def test_resolve_config_per_role():
    new_order = resolve_config("restaurant_owner", "order_new")
    assert new_order["urgent_modal"] is True
    assert new_order["toast_duration"] == 10000
    assert resolve_config("customer", "order_delivered")["toast"] == "success"
    assert set(new_order) == {"sound", "vibration", "push", "toast", "toast_duration", "urgent_modal"}


def test_resolve_config_falls_back_to_default():
    assert resolve_config("customer", "admin_urgent") == DEFAULT_CONFIG
    assert resolve_config("stranger", "order_new") == DEFAULT_CONFIG
    # Callers get a copy.
    resolve_config("stranger", "order_new")["push"] = True
    assert DEFAULT_CONFIG["push"] is False


def test_status_alert_mapping():
    assert status_alert("pickup_accepted")[0] == "driver_assigned"
    assert status_alert("ready") == status_alert("pickup_pending")
    assert status_alert("weird")[0] == "order_accepted"


def test_trigger_mutes_repeats_but_keeps_them(world, db):
    uid = world["customer"].id
    first = trigger(db, user_id=uid, role="customer", alert_type="success", title="A", message="a", now=T0)
    assert first.config == resolve_config("customer", "success")
    assert first.muted is False

    again = trigger(db, user_id=uid, role="customer", alert_type="success", title="A", message="a", now=T0 + timedelta(seconds=1))
    assert again.id != first.id
    assert again.muted is True
    assert again.config == MUTED_CONFIG
    # Another type or role is presented normally.
    assert trigger(db, user_id=uid, role="customer", alert_type="error", title="B", message="b", now=T0).muted is False
    assert trigger(db, user_id=uid, role="admin", alert_type="success", title="C", message="c", now=T0).muted is False

    # The window counts from the last presented alert, not the muted one.
    later = trigger(db, user_id=uid, role="customer", alert_type="success", title="A", message="a", now=T0 + timedelta(milliseconds=2500))
    assert later.muted is False


def test_back_to_back_orders_each_reach_the_restaurant(world, db):
    from app.fooddash.modules.alerts.models import Notification

    other = add_user(db, "other@example.com", "customer", phone="+242051234567")
    first = place_order(db, world)
    second = place_order(db, world, customer=other)

    rows = db.query(Notification).filter_by(user_id=world["owner"].id, type="order_new").order_by(Notification.id).all()
    assert [n.order_id for n in rows] == [first.id, second.id]
    assert rows[1].muted is True


def test_trigger_rejects_unknown_type(world, db):
    with pytest.raises(ValueError):
        trigger(db, user_id=world["customer"].id, role="customer", alert_type="fireworks", title="x", message="x")


def test_message_preview_is_truncated(world, db):
    n = message_received(db, receiver_id=world["driver"].id, role="delivery_driver", sender_name="Client", preview="x" * 80, order_id=None)
    assert n.message == "x" * 50 + "..."
    assert n.title == "Message de Client"


def test_admin_urgent_reaches_every_admin(world, db):
    second = add_user(db, "admin2@example.com", "admin")
    sent = admin_urgent(db, "Ticket urgent", "Help")
    assert sorted(n.user_id for n in sent) == sorted([world["admin"].id, second.id])
    assert all(n.config["urgent_modal"] for n in sent)


def test_order_flow_notifies_participants(world, db):
    from app.fooddash.modules.alerts.models import Notification

    order = place_order(db, world)
    new_order = db.query(Notification).filter_by(user_id=world["owner"].id, type="order_new").one()
    assert new_order.order_id == order.id

    deliver(db, world, order)
    customer_types = {n.type for n in db.query(Notification).filter_by(user_id=world["customer"].id)}
    assert "order_accepted" in customer_types
    assert "driver_assigned" in customer_types
    assert "order_delivered" in customer_types
    assert db.query(Notification).filter_by(user_id=world["driver"].id, type="delivery_available").count() == 1


def test_mark_read(world, db):
    uid = world["customer"].id
    a = trigger(db, user_id=uid, role="customer", alert_type="success", title="A", message="a", now=T0)
    trigger(db, user_id=uid, role="customer", alert_type="error", title="B", message="b", now=T0)
    assert mark_read(db, uid, []) == 0
    assert mark_read(db, uid, [a.id]) == 1
    assert mark_read(db, uid) == 1


def test_notifications_endpoint(world, client, db):
    trigger(db, user_id=world["customer"].id, role="customer", alert_type="success", title="Bienvenue", message="!")
    db.commit()

    token = login(client, "customer@example.com")
    r = client.get("/api/notifications")
    assert r.status_code == 200
    assert r.json["unread"] == 1
    assert r.json["notifications"][0]["title"] == "Bienvenue"

    r = client.post("/api/notifications/read", json={"all": True}, headers={"X-CSRF-Token": token})
    assert r.json["updated"] == 1
    r = client.post("/api/notifications/read", json={}, headers={"X-CSRF-Token": token})
    assert r.status_code == 400


def test_broadcast_reaches_each_target_user_once(world, db):
    both = add_user(db, "both@example.com", "customer", "delivery_driver")
    gone = add_user(db, "gone@example.com", "customer")
    gone.is_active = False
    db.flush()

    with pytest.raises(ValueError, match="role"):
        broadcast(db, title="Promo", message="Livraison offerte", roles=[], actor=world["admin"])
    with pytest.raises(ValueError, match="Invalid role"):
        broadcast_recipients(db, ["chef"])
    with pytest.raises(ValueError, match="required"):
        broadcast(db, title=" ", message="Livraison offerte", roles=["customer"], actor=world["admin"])

    sent = broadcast(db, title="Promo", message="Livraison offerte", roles=["delivery_driver", "customer"], actor=world["admin"])
    by_user = {n.user_id: n for n in sent}
    assert set(by_user) == {world["customer"].id, world["driver"].id, both.id}
    assert by_user[both.id].role == "delivery_driver"
    assert by_user[world["customer"].id].config == resolve_config("customer", "broadcast")
    assert all(n.type == "broadcast" for n in sent)


def test_broadcast_endpoints(world, client, db):
    h = {"X-CSRF-Token": login(client, "admin@example.com")}
    assert client.get("/api/admin/notifications/broadcast/recipients?roles=restaurant_owner,admin").json == {"count": 2}
    r = client.post(
        "/api/admin/notifications/broadcast",
        json={"title": "Maintenance", "message": "Ce soir à 23h", "target_roles": ["restaurant_owner"]},
        headers=h,
    )
    assert r.status_code == 201
    assert r.json == {"sent": 1}

    h = {"X-CSRF-Token": login(client, "owner@example.com")}
    rows = client.get("/api/notifications").json["notifications"]
    assert [(n["type"], n["title"]) for n in rows] == [("broadcast", "Maintenance")]
    r = client.post("/api/admin/notifications/broadcast", json={"title": "x", "message": "y", "target_roles": ["customer"]}, headers=h)
    assert r.status_code == 403
