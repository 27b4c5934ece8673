import io
from decimal import Decimal

import pytest

from app.fooddash.modules.orders.service import (
    claim_order,
    list_messages,
    mark_messages_read,
    post_message,
    review_order,
    route_endpoints,
    tracking_info,
    transition_order,
)
from tests.conftest import add_user, deliver, login, place_order


def _notifications(db, user_id, alert_type):
    from app.fooddash.modules.alerts.models import Notification

    return db.query(Notification).filter(Notification.user_id == user_id, Notification.type == alert_type).all()


def test_messages_go_to_the_restaurant_until_a_driver_claims(world, db):
    order = place_order(db, world)

    msg = post_message(db, order, world["customer"], {"content": "Sans piment svp"})
    assert msg.receiver_user_id == world["owner"].id
    assert len(_notifications(db, world["owner"].id, "message_received")) == 1

    for status in ("accepted", "preparing", "ready"):
        transition_order(db, order, status, world["owner"], actor="restaurant")
    claim_order(db, order, world["driver"])
    msg = post_message(db, order, world["customer"], {"content": "Portail bleu"})
    assert msg.receiver_user_id == world["driver"].id

    reply = post_message(db, order, world["driver"], {"content": "J'arrive"})
    assert reply.receiver_user_id == world["customer"].id
    db.flush()
    assert [m.content for m in list_messages(db, order)] == ["Sans piment svp", "Portail bleu", "J'arrive"]
    assert mark_messages_read(db, order, world["customer"]) == 1


def test_message_rules(world, db):
    order = place_order(db, world)
    stranger = add_user(db, "stranger@example.com", "customer")

    with pytest.raises(PermissionError):
        post_message(db, order, stranger, {"content": "Hello"})
    with pytest.raises(ValueError, match="content"):
        post_message(db, order, world["customer"], {"content": "  "})
    with pytest.raises(ValueError, match="2000"):
        post_message(db, order, world["customer"], {"content": "x" * 2001})
    with pytest.raises(ValueError, match="another participant"):
        post_message(db, order, world["customer"], {"content": "Hi", "receiver_id": stranger.id})


def test_review_once_after_delivery(world, db):
    order = place_order(db, world)
    with pytest.raises(ValueError, match="delivered"):
        review_order(db, order, world["customer"], {"rating": 5})

    deliver(db, world, order)
    with pytest.raises(PermissionError):
        review_order(db, order, world["owner"], {"rating": 5})
    with pytest.raises(ValueError, match="at most 5"):
        review_order(db, order, world["customer"], {"rating": 9})

    review_order(db, order, world["customer"], {"rating": 4, "comment": "Bon"})
    assert world["restaurant"].rating == Decimal("4.00")
    assert world["restaurant"].reviews_count == 1
    with pytest.raises(ValueError, match="already been reviewed"):
        review_order(db, order, world["customer"], {"rating": 3})


def test_route_endpoints_follow_the_delivery_leg(world, db):
    from app.fooddash.modules.drivers.service import get_or_create_profile, update_location

    world["restaurant"].latitude = Decimal("-4.2700")
    world["restaurant"].longitude = Decimal("15.2800")
    order = place_order(db, world, delivery_latitude="-4.2500", delivery_longitude="15.2500")
    with pytest.raises(ValueError, match="No driver"):
        route_endpoints(db, order)

    for status in ("accepted", "preparing", "ready"):
        transition_order(db, order, status, world["owner"], actor="restaurant")
    claim_order(db, order, world["driver"])
    with pytest.raises(ValueError, match="position"):
        route_endpoints(db, order)

    update_location(db, get_or_create_profile(db, world["driver"]), "-4.2600", "15.2600")
    assert route_endpoints(db, order) == ((-4.26, 15.26), (-4.27, 15.28))
    transition_order(db, order, "picked_up", world["driver"], actor="driver")
    assert route_endpoints(db, order) == ((-4.26, 15.26), (-4.25, 15.25))

    info = tracking_info(db, order)
    assert info["driver"]["user_id"] == world["driver"].id
    assert info["destination"] == {"latitude": -4.25, "longitude": 15.25}


def test_voice_note_upload_and_download(world, client, db):
    order = place_order(db, world)
    db.commit()

    h = {"X-CSRF-Token": login(client, "customer@example.com")}
    r = client.post(
        f"/api/orders/{order.id}/voice-note",
        data={"file": (io.BytesIO(b"OggS-voice"), "note.ogg", "audio/ogg")},
        headers=h,
        content_type="multipart/form-data",
    )
    assert r.status_code == 201
    assert r.json["voice_note"]["key"].startswith(f"orders/{order.id}/voice/")

    r = client.post(
        f"/api/orders/{order.id}/voice-note",
        data={"file": (io.BytesIO(b"MZ"), "note.exe", "application/octet-stream")},
        headers=h,
        content_type="multipart/form-data",
    )
    assert r.status_code == 400

    login(client, "owner@example.com")
    r = client.get(f"/api/orders/{order.id}/voice-note")
    assert r.status_code == 200
    assert r.data == b"OggS-voice"
    assert r.mimetype == "audio/ogg"


def test_messages_over_http(world, client, db):
    order = place_order(db, world)
    db.commit()

    h = {"X-CSRF-Token": login(client, "customer@example.com")}
    r = client.post(f"/api/orders/{order.id}/messages", json={"content": "Bonjour"}, headers=h)
    assert r.status_code == 201

    h = {"X-CSRF-Token": login(client, "owner@example.com")}
    assert [m["content"] for m in client.get(f"/api/orders/{order.id}/messages").json["messages"]] == ["Bonjour"]
    assert client.post(f"/api/orders/{order.id}/messages/read", headers=h).json == {"updated": 1}
