from datetime import datetime, timedelta

from app.fooddash.models import ChangeEvent
from app.fooddash.realtime import (
    ADMIN_CHANNEL,
    DRIVERS_CHANNEL,
    latest_cursor,
    list_changes,
    purge_changes,
    record_change,
    restaurant_channel,
    user_channel,
    visible_channels,
)
from tests.conftest import add_user, login, place_order


def test_visible_channels_follow_roles_and_ownership(world, db):
    assert visible_channels(db, world["customer"]) == [user_channel(world["customer"].id)]
    assert visible_channels(db, world["owner"]) == [
        user_channel(world["owner"].id),
        restaurant_channel(world["restaurant"].id),
    ]
    assert DRIVERS_CHANNEL in visible_channels(db, world["driver"])
    assert ADMIN_CHANNEL in visible_channels(db, world["admin"])


def test_record_change_deduplicates_channels(world, db):
    events = record_change(db, channels=["admin", "admin", None, "drivers"], table="orders", row_id=7)
    assert [ev.channel for ev in events] == ["admin", "drivers"]
    assert events[0].row_id == "7"


def test_list_changes_filters_by_channel_and_advances_cursor(world, db):
    start = latest_cursor(db)
    record_change(db, channels=[user_channel(world["customer"].id)], table="orders", row_id=1)
    record_change(db, channels=[user_channel(world["owner"].id)], table="orders", row_id=2)
    record_change(db, channels=[user_channel(world["customer"].id)], table="notifications", row_id=3)
    db.flush()

    events, cursor = list_changes(db, world["customer"], since=start)
    assert [ev.row_id for ev in events] == ["1", "3"]
    assert cursor == events[-1].id

    events, cursor2 = list_changes(db, world["customer"], since=cursor)
    assert events == []
    assert cursor2 == cursor

    events, _ = list_changes(db, world["customer"], since=start, tables=["notifications"])
    assert [ev.row_id for ev in events] == ["3"]
    events, _ = list_changes(db, world["customer"], since=start, limit=1)
    assert [ev.row_id for ev in events] == ["1"]


def test_new_order_reaches_restaurant_but_not_other_customers(world, db):
    stranger = add_user(db, "stranger@example.com", "customer")
    start = latest_cursor(db)
    order = place_order(db, world)
    db.flush()

    owner_events, _ = list_changes(db, world["owner"], since=start, tables=["orders"])
    assert [ev.row_id for ev in owner_events] == [str(order.id)]
    assert owner_events[0].op == "insert"
    stranger_events, _ = list_changes(db, stranger, since=start)
    assert stranger_events == []


def test_purge_changes(world, db):
    old = ChangeEvent(channel="admin", table_name="orders", row_id="1", op="update", created_at=datetime.utcnow() - timedelta(days=8))
    fresh = ChangeEvent(channel="admin", table_name="orders", row_id="2", op="update", created_at=datetime.utcnow())
    db.add_all([old, fresh])
    db.flush()
    assert purge_changes(db) >= 1
    remaining = {ev.row_id for ev in db.query(ChangeEvent).filter(ChangeEvent.table_name == "orders")}
    assert remaining == {"2"}


def test_changes_endpoint(world, client, db):
    record_change(db, channels=[user_channel(world["customer"].id)], table="orders", row_id=42, payload={"status": "pending"})
    db.commit()

    assert client.get("/api/changes").status_code == 401
    login(client, "customer@example.com")
    r = client.get("/api/changes?since=0")
    assert r.status_code == 200
    assert r.json["changes"][-1]["row_id"] == "42"
    assert r.json["changes"][-1]["payload"] == {"status": "pending"}
    cursor = r.json["cursor"]
    assert client.get(f"/api/changes?since={cursor}").json["changes"] == []
    assert client.get("/api/changes?limit=0").status_code == 400
