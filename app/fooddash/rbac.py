from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import abort, g

from app.fooddash.models import User

CUSTOMER = "customer"
RESTAURANT_OWNER = "restaurant_owner"
DELIVERY_DRIVER = "delivery_driver"
ADMIN = "admin"

APP_ROLES = (CUSTOMER, RESTAURANT_OWNER, DELIVERY_DRIVER, ADMIN)
SELF_SERVICE_ROLES = (CUSTOMER, RESTAURANT_OWNER, DELIVERY_DRIVER)

# admin area flag -> default when the admin has no admin_permissions row
ADMIN_FLAG_DEFAULTS: dict[str, bool] = {
    "can_manage_restaurants": True,
    "can_manage_drivers": True,
    "can_manage_orders": True,
    "can_manage_users": True,
    "can_manage_payments": True,
    "can_manage_settings": True,
    "can_manage_marketing": True,
    "can_manage_support": True,
    "can_manage_admins": False,
}

# admin permission key -> flag gating it
PERMISSION_FLAGS: dict[str, str] = {
    "restaurants.manage": "can_manage_restaurants",
    "drivers.manage": "can_manage_drivers",
    "orders.manage": "can_manage_orders",
    "users.manage": "can_manage_users",
    "payouts.manage": "can_manage_payments",
    "affiliates.manage": "can_manage_payments",
    "settings.manage": "can_manage_settings",
    "marketing.manage": "can_manage_marketing",
    "blog.manage": "can_manage_marketing",
    "support.manage": "can_manage_support",
    "admins.manage": "can_manage_admins",
}


def admin_flags(user: User) -> dict[str, bool]:
    row = user.admin_permissions
    if row is None:
        return dict(ADMIN_FLAG_DEFAULTS)
    return {flag: bool(getattr(row, flag)) for flag in ADMIN_FLAG_DEFAULTS}


def user_has_permission(user: User | None, permission_key: str) -> bool:
    if not user or not user.is_active:
        return False
    for role in user.roles:
        for perm in role.permissions:
            if perm.key != permission_key:
                continue
            flag = PERMISSION_FLAGS.get(permission_key)
            if flag is None or role.key != ADMIN:
                return True
            return admin_flags(user)[flag]
    return False


def has_role(user: User | None, role_key: str) -> bool:
    if not user or not user.is_active:
        return False
    return any(r.key == role_key for r in user.roles)


def current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        abort(401)
    return u


def require_login(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        user: User | None = getattr(g, "current_user", None)
        if not user or not user.is_active:
            abort(401)
        return fn(*args, **kwargs)

    return wrapped


def require_permission(permission_key: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User | None = getattr(g, "current_user", None)
            # Unauthenticated -> 401 so the client sends the user to its login screen.
            if not user or not user.is_active:
                abort(401)
            # Authenticated but unauthorized -> 403
            if not user_has_permission(user, permission_key):
                g.missing_permission = permission_key
                abort(403)
            return fn(*args, **kwargs)

        return wrapped

    return decorator
