from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from app.fooddash.modules.orders.pricing import PricedLine, compute_totals, normalize_option_ids, price_line
from app.fooddash.utils import money, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from app.fooddash.models import User
    from app.fooddash.modules.orders.models import CartItem


class CartConflict(ValueError):
    """The cart already holds items from another restaurant."""


def cart_items(s: "Session", user: "User") -> list["CartItem"]:
    from app.fooddash.modules.orders.models import CartItem

    return s.query(CartItem).filter(CartItem.user_id == user.id).order_by(CartItem.id.asc()).all()


def cart_restaurant_id(items: list["CartItem"]) -> int | None:
    return items[0].menu_item.restaurant_id if items else None


def add_to_cart(s: "Session", user: "User", menu_item_id: Any, quantity: Any = 1, selected_options: Any = None) -> "CartItem":
    """
    Lines without options merge by menu item; a line with options is always new.
    """
    from app.fooddash.modules.orders.models import CartItem
    from app.fooddash.modules.restaurants.models import MenuItem

    item_id = parse_int(menu_item_id, field="menu_item_id")
    qty = parse_int(quantity, field="quantity", minimum=1, maximum=99) or 1
    item = s.get(MenuItem, item_id) if item_id else None
    if item is None:
        raise ValueError("Unknown menu item.")
    if not item.is_available:
        raise ValueError(f"'{item.name}' is currently unavailable.")

    items = cart_items(s, user)
    current = cart_restaurant_id(items)
    if current is not None and current != item.restaurant_id:
        raise CartConflict("Your cart contains items from another restaurant. Clear it first.")

    option_ids = normalize_option_ids(selected_options)
    # Validates required groups and min/max before anything is written.
    price_line(item, qty, option_ids)

    now = datetime.utcnow()
    if not option_ids:
        for line in items:
            if line.menu_item_id == item.id and not line.selected_options:
                line.quantity = min(line.quantity + qty, 99)
                line.updated_at = now
                return line

    line = CartItem(
        user_id=user.id,
        menu_item_id=item.id,
        quantity=qty,
        selected_options=option_ids or None,
        created_at=now,
        updated_at=now,
    )
    s.add(line)
    s.flush()
    return line


def update_quantity(s: "Session", user: "User", cart_item_id: int, quantity: Any) -> "CartItem | None":
    """Quantity <= 0 removes the line (returns None)."""
    from app.fooddash.modules.orders.models import CartItem

    qty = parse_int(quantity, field="quantity", maximum=99)
    if qty is None:
        raise ValueError("quantity is required.")
    line = s.get(CartItem, cart_item_id)
    if line is None or line.user_id != user.id:
        raise LookupError("Cart item not found.")
    if qty <= 0:
        s.delete(line)
        s.flush()
        return None
    line.quantity = qty
    line.updated_at = datetime.utcnow()
    s.flush()
    return line


def remove_from_cart(s: "Session", user: "User", cart_item_id: int) -> None:
    update_quantity(s, user, cart_item_id, 0)


def clear_cart(s: "Session", user: "User") -> int:
    from app.fooddash.modules.orders.models import CartItem

    return s.query(CartItem).filter(CartItem.user_id == user.id).delete(synchronize_session=False)


def price_cart(items: list["CartItem"]) -> list[PricedLine]:
    return [price_line(line.menu_item, line.quantity, list(line.selected_options or [])) for line in items]


def cart_summary(s: "Session", user: "User") -> dict[str, Any]:
    items = cart_items(s, user)
    lines = []
    problems = []
    priced: list[PricedLine] = []
    for line in items:
        entry: dict[str, Any] = {
            "id": line.id,
            "menu_item_id": line.menu_item_id,
            "name": line.menu_item.name,
            "image_url": line.menu_item.image_url,
            "quantity": line.quantity,
        }
        try:
            pl = price_line(line.menu_item, line.quantity, list(line.selected_options or []))
        except ValueError as e:
            # Menu changed since the line was added; checkout will refuse it.
            problems.append({"cart_item_id": line.id, "error": str(e)})
            entry.update({"unit_price": money(line.menu_item.price), "options": [], "line_total": None})
        else:
            priced.append(pl)
            entry.update(
                {
                    "unit_price": money(pl.unit_price),
                    "options": [{**o, "price_modifier": float(o["price_modifier"])} for o in pl.options],
                    "line_total": money(pl.line_total),
                }
            )
        lines.append(entry)
    totals = compute_totals(priced)
    return {
        "restaurant_id": cart_restaurant_id(items),
        "items": lines,
        "count": sum(line.quantity for line in items),
        "subtotal": money(totals.subtotal),
        "problems": problems,
    }
