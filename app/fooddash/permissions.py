"""
Permission catalogue and role grants.

Used by scripts/init_db.py (idempotent seed) and by the test fixtures, so the
two never drift apart.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from app.fooddash.audit import record_event
from app.fooddash.models import AdminPermission, Permission, Role, User
from app.fooddash.rbac import ADMIN, ADMIN_FLAG_DEFAULTS, CUSTOMER, DELIVERY_DRIVER, RESTAURANT_OWNER, admin_flags, has_role
from app.fooddash.realtime import ADMIN_CHANNEL, record_change, user_channel
from app.fooddash.utils import parse_bool

PERMISSIONS: dict[str, str] = {
    # Customer
    "orders.place": "Orders: place and follow own orders",
    "reviews.write": "Reviews: rate restaurants and drivers",
    "affiliates.participate": "Affiliate program: refer friends and withdraw rewards",
    "support.create": "Support: open tickets",
    # Restaurant owner
    "restaurants.own": "Restaurants: manage own restaurant, menu and orders",
    "marketing.own": "Marketing: manage own promo codes",
    "payouts.receive": "Payouts: view own earnings and payment settings",
    # Driver
    "deliveries.work": "Deliveries: claim and deliver orders",
    # Admin (mirrors the per-area admin flags)
    "admin.view": "Admin: dashboard",
    "admin.audit": "Admin: audit trail",
    "users.manage": "Admin: manage users",
    "admins.manage": "Admin: grant and revoke admin access",
    "orders.manage": "Admin: manage all orders",
    "restaurants.manage": "Admin: validate and manage restaurants",
    "drivers.manage": "Admin: validate and manage drivers",
    "payouts.manage": "Admin: payouts and payment settings",
    "marketing.manage": "Admin: banners, popups, campaigns, promo codes",
    "affiliates.manage": "Admin: affiliate program",
    "blog.manage": "Admin: blog",
    "support.manage": "Admin: support inbox and FAQ",
    "settings.manage": "Admin: platform settings",
}

ROLE_NAMES: dict[str, str] = {
    CUSTOMER: "Customer",
    RESTAURANT_OWNER: "Restaurant owner",
    DELIVERY_DRIVER: "Delivery driver",
    ADMIN: "Administrator",
}

ROLE_PERMISSIONS: dict[str, tuple[str, ...]] = {
    CUSTOMER: ("orders.place", "reviews.write", "affiliates.participate", "support.create"),
    RESTAURANT_OWNER: ("restaurants.own", "marketing.own", "payouts.receive", "support.create"),
    DELIVERY_DRIVER: ("deliveries.work", "payouts.receive", "affiliates.participate", "support.create"),
    ADMIN: tuple(PERMISSIONS),
}


def seed_roles(s: Session) -> dict[str, Role]:
    """Create missing permissions/roles and attach missing grants. Never removes grants."""
    perms: dict[str, Permission] = {p.key: p for p in s.query(Permission).all()}
    for key, name in PERMISSIONS.items():
        if key not in perms:
            p = Permission(key=key, name=name)
            s.add(p)
            perms[key] = p

    roles: dict[str, Role] = {r.key: r for r in s.query(Role).all()}
    for role_key, perm_keys in ROLE_PERMISSIONS.items():
        role = roles.get(role_key)
        if role is None:
            role = Role(key=role_key, name=ROLE_NAMES[role_key])
            s.add(role)
            roles[role_key] = role
        for key in perm_keys:
            if perms[key] not in role.permissions:
                role.permissions.append(perms[key])
    s.flush()
    return roles


def list_admins(s: Session) -> list[User]:
    return (
        s.query(User)
        .join(User.roles)
        .filter(Role.key == ADMIN)
        .order_by(User.email.asc())
        .all()
    )


def update_admin_flags(s: Session, target: User, payload: dict[str, Any], actor: User) -> dict[str, bool]:
    """
    Set some or all of an admin's area flags. Unknown keys are refused, and an
    admin cannot take away their own right to manage admins.
    """
    if not has_role(target, ADMIN):
        raise ValueError("Permissions can only be set on administrators.")
    unknown = sorted(k for k in payload if k not in ADMIN_FLAG_DEFAULTS)
    if unknown:
        raise ValueError(f"Unknown permission flag(s): {', '.join(unknown)}")
    updates = {k: parse_bool(v) for k, v in payload.items()}
    if target.id == actor.id and updates.get("can_manage_admins") is False:
        raise ValueError("You cannot remove your own admin management right.")

    before = admin_flags(target)
    row = target.admin_permissions
    if row is None:
        row = AdminPermission(user_id=target.id, **before)
        target.admin_permissions = row
        s.add(row)
    for flag, value in updates.items():
        setattr(row, flag, value)
    row.updated_at = datetime.utcnow()
    s.flush()

    after = admin_flags(target)
    changes = {k: {"from": before[k], "to": after[k]} for k in after if before[k] != after[k]}
    if changes:
        record_event(
            s,
            actor=actor,
            action="admin.permissions_update",
            entity_type="User",
            entity_id=str(target.id),
            metadata={"changes": changes},
        )
        record_change(s, channels=[ADMIN_CHANNEL, user_channel(target.id)], table="admin_permissions", row_id=row.id)
    return after
