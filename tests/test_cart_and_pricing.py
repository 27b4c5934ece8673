from datetime import datetime
from decimal import Decimal

import pytest

from app.fooddash.modules.orders.cart import CartConflict, add_to_cart, cart_items, cart_summary, update_quantity
from app.fooddash.modules.orders.pricing import (
    PricedLine,
    compute_totals,
    minimum_order,
    normalize_option_ids,
    resolve_options,
)
from tests.conftest import login


def test_normalize_option_ids():
    assert normalize_option_ids(None) == []
    assert normalize_option_ids([7, 4, 7]) == [4, 7]
    assert normalize_option_ids([{"option_id": 3}, "1"]) == [1, 3]
    with pytest.raises(ValueError):
        normalize_option_ids("4,7")
    with pytest.raises(ValueError):
        normalize_option_ids(["x"])


def test_compute_totals_clamps_discount_to_subtotal():
    lines = [PricedLine(menu_item_id=1, name="A", quantity=2, unit_price=Decimal("1500"))]
    totals = compute_totals(lines, discount=Decimal("5000"), delivery_fee=Decimal("1000"))
    assert totals.subtotal == Decimal("3000")
    assert totals.discount == Decimal("3000")
    assert totals.total == Decimal("1000")


def test_minimum_order_takes_the_stricter_rule():
    assert minimum_order(None, None) == Decimal("0")
    assert minimum_order(Decimal("3000"), Decimal("2000")) == Decimal("3000")
    assert minimum_order(None, Decimal("2000")) == Decimal("2000")


def test_resolve_options_enforces_group_rules(world, db):
    from app.fooddash.modules.restaurants.models import MenuOption, MenuOptionGroup

    item = world["item"]
    sauce = MenuOptionGroup(name="Sauce", is_required=True, min_selections=1, max_selections=1, created_at=datetime.utcnow())
    sauce.options.extend(
        [
            MenuOption(name="Pili-pili", price_modifier=Decimal("0"), created_at=datetime.utcnow()),
            MenuOption(name="Arachide", price_modifier=Decimal("200"), created_at=datetime.utcnow()),
        ]
    )
    item.option_groups.append(sauce)
    db.flush()
    pili, arachide = sauce.options

    with pytest.raises(ValueError, match="at least 1"):
        resolve_options(item, [])
    with pytest.raises(ValueError, match="at most 1"):
        resolve_options(item, [pili.id, arachide.id])
    with pytest.raises(ValueError, match="do not belong"):
        resolve_options(item, [99999])

    snapshot = resolve_options(item, [arachide.id, world["option"].id])
    assert {o["name"] for o in snapshot} == {"Arachide", "Fromage"}

    arachide.is_available = False
    with pytest.raises(ValueError, match="unavailable"):
        resolve_options(item, [arachide.id])


def test_add_to_cart_merges_plain_lines_and_keeps_option_lines_apart(world, db):
    customer, item, cheese = world["customer"], world["item"], world["option"]

    first = add_to_cart(db, customer, item.id, 1)
    again = add_to_cart(db, customer, item.id, 2)
    assert again.id == first.id
    assert again.quantity == 3

    with_cheese = add_to_cart(db, customer, item.id, 1, [cheese.id])
    assert with_cheese.id != first.id
    assert len(cart_items(db, customer)) == 2

    summary = cart_summary(db, customer)
    # 3 x 2500 + 1 x (2500 + 500)
    assert Decimal(str(summary["subtotal"])) == Decimal("10500")


def test_cart_is_single_restaurant(world, db):
    from app.fooddash.modules.restaurants.models import MenuItem, Restaurant

    other = Restaurant(name="Autre", address="1 rue", is_active=True, is_validated=True, created_at=datetime.utcnow(), updated_at=datetime.utcnow())
    other.menu_items.append(MenuItem(name="Pizza", price=Decimal("4000"), created_at=datetime.utcnow(), updated_at=datetime.utcnow()))
    db.add(other)
    db.flush()

    add_to_cart(db, world["customer"], world["item"].id, 1)
    with pytest.raises(CartConflict):
        add_to_cart(db, world["customer"], other.menu_items[0].id, 1)


def test_update_quantity_zero_removes_line(world, db):
    line_id = add_to_cart(db, world["customer"], world["item"].id, 2).id
    assert update_quantity(db, world["customer"], line_id, 0) is None
    db.flush()
    assert cart_items(db, world["customer"]) == []
    with pytest.raises(LookupError):
        update_quantity(db, world["owner"], line_id, 1)


def test_cart_conflict_is_a_409_over_http(world, client, db):
    from app.fooddash.modules.restaurants.models import MenuItem, Restaurant

    other = Restaurant(name="Autre", address="1 rue", is_active=True, is_validated=True, created_at=datetime.utcnow(), updated_at=datetime.utcnow())
    other.menu_items.append(MenuItem(name="Pizza", price=Decimal("4000"), created_at=datetime.utcnow(), updated_at=datetime.utcnow()))
    db.add(other)
    db.commit()

    token = login(client, "customer@example.com")
    headers = {"X-CSRF-Token": token}
    r = client.post("/api/cart/items", json={"menu_item_id": world["item"].id, "quantity": 1}, headers=headers)
    assert r.status_code == 201
    r = client.post("/api/cart/items", json={"menu_item_id": other.menu_items[0].id}, headers=headers)
    assert r.status_code == 409
