"""
Cart pricing. Operates on loaded model objects only; no session access.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from app.fooddash.modules.restaurants.models import MenuItem

ZERO = Decimal("0")


@dataclass
class PricedLine:
    menu_item_id: int
    name: str
    quantity: int
    unit_price: Decimal
    options: list[dict[str, Any]] = field(default_factory=list)

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass
class Totals:
    subtotal: Decimal
    discount: Decimal
    delivery_fee: Decimal

    @property
    def total(self) -> Decimal:
        return self.subtotal - self.discount + self.delivery_fee


def normalize_option_ids(raw: Any) -> list[int]:
    """Accepts [4, 7] or [{"option_id": 4}, ...]; returns sorted unique ids."""
    if raw in (None, ""):
        return []
    if not isinstance(raw, list):
        raise ValueError("selected_options must be a list.")
    ids: set[int] = set()
    for entry in raw:
        value = entry.get("option_id") if isinstance(entry, dict) else entry
        try:
            ids.add(int(value))
        except (TypeError, ValueError):
            raise ValueError("selected_options contains an invalid option id.") from None
    return sorted(ids)


def resolve_options(item: "MenuItem", option_ids: list[int]) -> list[dict[str, Any]]:
    """
    Check a selection against the item's option groups and return a snapshot of
    the chosen options. Raises ValueError naming the offending group.
    """
    by_id = {}
    for group in item.option_groups:
        for opt in group.options:
            by_id[opt.id] = (group, opt)

    unknown = [oid for oid in option_ids if oid not in by_id]
    if unknown:
        raise ValueError(f"Option(s) {unknown} do not belong to '{item.name}'.")

    chosen_per_group: dict[int, int] = {}
    snapshot = []
    for oid in option_ids:
        group, opt = by_id[oid]
        if not opt.is_available:
            raise ValueError(f"'{opt.name}' is currently unavailable.")
        chosen_per_group[group.id] = chosen_per_group.get(group.id, 0) + 1
        snapshot.append(
            {
                "group_id": group.id,
                "group_name": group.name,
                "option_id": opt.id,
                "name": opt.name,
                "price_modifier": str(opt.price_modifier or ZERO),
            }
        )

    for group in item.option_groups:
        count = chosen_per_group.get(group.id, 0)
        minimum = max(group.min_selections or 0, 1 if group.is_required else 0)
        if count < minimum:
            raise ValueError(f"Choose at least {minimum} option(s) for '{group.name}'.")
        if group.max_selections is not None and count > group.max_selections:
            raise ValueError(f"Choose at most {group.max_selections} option(s) for '{group.name}'.")
    return snapshot


def unit_price(item_price: Decimal, options: list[dict[str, Any]]) -> Decimal:
    return item_price + sum((Decimal(str(o.get("price_modifier") or 0)) for o in options), ZERO)


def price_line(item: "MenuItem", quantity: int, option_ids: list[int]) -> PricedLine:
    options = resolve_options(item, option_ids)
    return PricedLine(
        menu_item_id=item.id,
        name=item.name,
        quantity=quantity,
        unit_price=unit_price(item.price, options),
        options=options,
    )


def compute_totals(lines: list[PricedLine], *, discount: Decimal = ZERO, delivery_fee: Decimal = ZERO) -> Totals:
    subtotal = sum((line.line_total for line in lines), ZERO)
    discount = min(max(discount, ZERO), subtotal)
    return Totals(subtotal=subtotal, discount=discount, delivery_fee=max(delivery_fee, ZERO))


def minimum_order(restaurant_min: Decimal | None, platform_min: Decimal | None) -> Decimal:
    return max(restaurant_min or ZERO, platform_min or ZERO)
