from datetime import datetime
from decimal import Decimal

import pytest
from werkzeug.security import generate_password_hash

from app.fooddash import create_app
from app.fooddash.db import session_scope
from app.fooddash.models import AdminPermission, Base, Role, User
from app.fooddash.permissions import seed_roles
from app.fooddash.settings import seed_default_settings

PASSWORD = "correct-horse-9"


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("OTP_DEV_MODE", "1")
    for k in (
        "S3_ENDPOINT",
        "S3_REGION",
        "S3_BUCKET",
        "S3_ACCESS_KEY_ID",
        "S3_SECRET_ACCESS_KEY",
        "TWILIO_ACCOUNT_SID",
        "TWILIO_AUTH_TOKEN",
        "TWILIO_VERIFY_SERVICE_SID",
        "OPENROUTESERVICE_API_KEY",
        "AI_GATEWAY_API_KEY",
    ):
        monkeypatch.delenv(k, raising=False)

    app = create_app()
    app.config["TESTING"] = True
    app.config["LOCAL_STORAGE_ROOT"] = str(tmp_path / "storage")

    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        seed_roles(s)
        seed_default_settings(s)

    return app


@pytest.fixture(autouse=True)
def _reset_login_rate_limit():
    from app.fooddash import auth

    auth._login_attempts.clear()
    yield
    auth._login_attempts.clear()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def db(app):
    """Plain session for service-level tests; callers commit when they need to."""
    s = app.extensions["sqlalchemy_sessionmaker"]()
    try:
        yield s
    finally:
        s.rollback()
        s.close()


def add_user(s, email: str, *roles: str, phone: str | None = None) -> User:
    u = User(
        email=email,
        password_hash=generate_password_hash(PASSWORD),
        full_name=email.split("@")[0].title(),
        phone=phone,
        is_active=True,
    )
    for key in roles:
        u.roles.append(s.query(Role).filter(Role.key == key).one())
    s.add(u)
    s.flush()
    return u


def login(client, email: str, password: str = PASSWORD) -> str:
    r = client.post("/api/auth/login", json={"email": email, "password": password})
    assert r.status_code == 200, r.json
    return r.json["csrf_token"]


@pytest.fixture()
def world(db):
    """
    A validated restaurant with one menu item (2500) carrying an optional
    "Extras" group (+500 cheese), its owner, a customer, an admin who may
    manage other admins, and a validated, available driver.
    """
    from app.fooddash.modules.drivers.models import DriverProfile
    from app.fooddash.modules.restaurants.models import MenuItem, MenuOption, MenuOptionGroup, Restaurant

    owner = add_user(db, "owner@example.com", "restaurant_owner")
    customer = add_user(db, "customer@example.com", "customer", phone="+242061234567")
    driver = add_user(db, "driver@example.com", "delivery_driver")
    admin = add_user(db, "admin@example.com", "admin")
    admin.admin_permissions = AdminPermission(can_manage_admins=True)

    now = datetime.utcnow()
    r = Restaurant(
        owner_id=owner.id,
        name="Chez Mama",
        address="12 Avenue de la Paix",
        city="Brazzaville",
        delivery_fee=Decimal("1000"),
        is_active=True,
        is_validated=True,
        created_at=now,
        updated_at=now,
    )
    item = MenuItem(name="Poulet braisé", price=Decimal("2500"), created_at=now, updated_at=now)
    group = MenuOptionGroup(name="Extras", is_required=False, min_selections=0, max_selections=2, created_at=now)
    group.options.append(MenuOption(name="Fromage", price_modifier=Decimal("500"), created_at=now))
    item.option_groups.append(group)
    r.menu_items.append(item)
    db.add(r)
    db.add(DriverProfile(user_id=driver.id, is_validated=True, is_available=True, created_at=now, updated_at=now))
    db.commit()

    return {
        "owner": owner,
        "customer": customer,
        "driver": driver,
        "admin": admin,
        "restaurant": r,
        "item": item,
        "option": group.options[0],
    }


def place_order(s, world, *, customer=None, quantity=2, options=True, **payload):
    """Cart + checkout for `customer` (the world's customer by default): 2 x (2500 + 500) + 1000 fee."""
    from app.fooddash.modules.orders.cart import add_to_cart
    from app.fooddash.modules.orders.service import checkout

    customer = customer or world["customer"]
    option_ids = [world["option"].id] if options else None
    add_to_cart(s, customer, world["item"].id, quantity, option_ids)
    payload.setdefault("delivery_address", "5 rue Mbochi, Poto-Poto")
    payload.setdefault("phone", customer.phone or "+242061234567")
    return checkout(s, customer, payload)


def deliver(s, world, order):
    """Walk a pending order through the restaurant and driver flows to delivered."""
    from app.fooddash.modules.orders.service import claim_order, transition_order

    for status in ("accepted", "preparing", "pickup_pending"):
        transition_order(s, order, status, world["owner"], actor="restaurant")
    claim_order(s, order, world["driver"])
    for status in ("picked_up", "delivering", "delivered"):
        transition_order(s, order, status, world["driver"], actor="driver")
    return order
