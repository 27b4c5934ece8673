import pytest

from app.fooddash.modules.support.service import (
    open_ticket,
    post_ticket_message,
    update_ticket,
    visible_messages,
)
from tests.conftest import add_user, login, place_order


def test_open_ticket_validates(world, db):
    customer = world["customer"]
    with pytest.raises(ValueError, match="Subject"):
        open_ticket(db, customer, {"description": "x"})
    with pytest.raises(ValueError, match="priority"):
        open_ticket(db, customer, {"subject": "x", "description": "y", "priority": "asap"})
    with pytest.raises(ValueError, match="Unknown order"):
        open_ticket(db, customer, {"subject": "x", "description": "y", "order_id": 9999})

    t = open_ticket(db, customer, {"subject": "Retard", "description": "Toujours rien"})
    assert (t.status, t.priority, t.category, t.user_type) == ("open", "normal", "other", "customer")


def test_ticket_on_someone_elses_order_is_refused(world, db):
    order = place_order(db, world)
    stranger = add_user(db, "stranger@example.com", "customer")
    with pytest.raises(ValueError, match="Unknown order"):
        open_ticket(db, stranger, {"subject": "x", "description": "y", "order_id": order.id})
    t = open_ticket(db, world["customer"], {"subject": "x", "description": "y", "order_id": order.id, "category": "order"})
    assert t.order_id == order.id
    # The restaurant that received the order may open a ticket about it.
    assert open_ticket(db, world["owner"], {"subject": "x", "description": "y", "order_id": order.id}).order_id == order.id


def test_urgent_ticket_alerts_admins(world, db):
    from app.fooddash.modules.alerts.models import Notification

    open_ticket(db, world["customer"], {"subject": "Paiement débité deux fois", "description": "!!", "priority": "urgent"})
    alerts = db.query(Notification).filter_by(user_id=world["admin"].id, type="admin_urgent").all()
    assert len(alerts) == 1
    assert "Paiement" in alerts[0].message


def test_only_staff_update_tickets(world, db):
    t = open_ticket(db, world["customer"], {"subject": "x", "description": "y"})
    with pytest.raises(PermissionError):
        update_ticket(db, t, world["customer"], {"status": "closed"})
    with pytest.raises(ValueError, match="support staff"):
        update_ticket(db, t, world["admin"], {"assigned_to_user_id": world["driver"].id})

    update_ticket(db, t, world["admin"], {"status": "in_progress", "assigned_to_user_id": world["admin"].id})
    assert t.status == "in_progress"
    assert t.assigned_to_user_id == world["admin"].id


def test_internal_notes_are_staff_only(world, db):
    t = open_ticket(db, world["customer"], {"subject": "x", "description": "y"})
    post_ticket_message(db, t, world["customer"], {"content": "Bonjour"})
    post_ticket_message(db, t, world["admin"], {"content": "Client déjà remboursé une fois", "is_internal": True})
    post_ticket_message(db, t, world["admin"], {"content": "Nous regardons"})

    with pytest.raises(PermissionError):
        post_ticket_message(db, t, world["customer"], {"content": "note", "is_internal": True})
    with pytest.raises(PermissionError):
        post_ticket_message(db, t, world["driver"], {"content": "hello"})

    assert [m.content for m in visible_messages(db, t, world["customer"])] == ["Bonjour", "Nous regardons"]
    assert len(visible_messages(db, t, world["admin"])) == 3


def test_closed_ticket_only_takes_staff_messages(world, db):
    t = open_ticket(db, world["customer"], {"subject": "x", "description": "y"})
    update_ticket(db, t, world["admin"], {"status": "closed"})
    with pytest.raises(ValueError, match="closed"):
        post_ticket_message(db, t, world["customer"], {"content": "Encore moi"})
    post_ticket_message(db, t, world["admin"], {"content": "Réouverture si besoin"})


def test_ticket_endpoints(world, client, db):
    h = {"X-CSRF-Token": login(client, "customer@example.com")}
    r = client.post("/api/support/tickets", json={"subject": "Commande froide", "description": "..."}, headers=h)
    assert r.status_code == 201
    ticket_id = r.json["ticket"]["id"]
    r = client.post(f"/api/support/tickets/{ticket_id}/messages", json={"content": "note", "is_internal": True}, headers=h)
    assert r.status_code == 403

    login(client, "driver@example.com")
    assert client.get(f"/api/support/tickets/{ticket_id}").status_code == 404

    h = {"X-CSRF-Token": login(client, "admin@example.com")}
    r = client.patch(f"/api/admin/support/tickets/{ticket_id}", json={"status": "resolved"}, headers=h)
    assert r.status_code == 200
    assert r.json["ticket"]["status"] == "resolved"
