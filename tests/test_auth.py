import pytest

from app.fooddash.otp import DEV_OTP_CODE, check_code, normalize_congo_mobile
from tests.conftest import add_user, login


def test_register_customer_logs_in(client):
    r = client.post(
        "/api/auth/register",
        json={"email": "New@Example.com", "password": "longenough", "full_name": "Nouvel Client"},
    )
    assert r.status_code == 201
    assert r.json["user"]["email"] == "new@example.com"
    assert r.json["user"]["roles"] == ["customer"]
    assert "orders.place" in r.json["user"]["permissions"]

    me = client.get("/api/auth/me")
    assert me.status_code == 200
    assert me.json["user"]["email"] == "new@example.com"


def test_register_rejects_duplicates_and_bad_input(client):
    ok = client.post("/api/auth/register", json={"email": "dup@example.com", "password": "longenough"})
    assert ok.status_code == 201

    r = client.post("/api/auth/register", json={"email": "DUP@example.com", "password": "longenough"})
    assert r.status_code == 400
    assert "already exists" in r.json["error"]

    r = client.post("/api/auth/register", json={"email": "short@example.com", "password": "short"})
    assert r.status_code == 400

    r = client.post("/api/auth/register", json={"email": "boss@example.com", "password": "longenough", "role": "admin"})
    assert r.status_code == 400


def test_register_driver_gets_profile(client, db):
    from app.fooddash.modules.drivers.models import DriverProfile

    r = client.post(
        "/api/auth/register",
        json={"email": "rider@example.com", "password": "longenough", "role": "delivery_driver"},
    )
    assert r.status_code == 201
    profile = db.query(DriverProfile).filter(DriverProfile.user_id == r.json["user"]["id"]).one()
    assert profile.is_validated is False
    assert profile.is_available is False


def test_register_with_unknown_referral_code_still_succeeds(client, db):
    from app.fooddash.modules.affiliates.models import Referral

    r = client.post(
        "/api/auth/register",
        json={"email": "friend@example.com", "password": "longenough", "ref": "KALNOPE1"},
    )
    assert r.status_code == 201
    assert db.query(Referral).count() == 0


def test_login_rate_limit(client, db):
    add_user(db, "eater@example.com", "customer")
    db.commit()
    for _ in range(5):
        r = client.post("/api/auth/login", json={"email": "eater@example.com", "password": "wrong-password"})
        assert r.status_code == 401
    r = client.post("/api/auth/login", json={"email": "eater@example.com", "password": "wrong-password"})
    assert r.status_code == 429


def test_otp_dev_code_verifies_and_stores_phone(client, db):
    add_user(db, "eater@example.com", "customer")
    db.commit()
    login(client, "eater@example.com")

    r = client.post("/api/auth/otp/send", json={"phone": "06 123 45 67"})
    assert r.status_code == 200
    assert r.json["dev_mode"] is True
    assert r.json["phone"] == "+242061234567"

    r = client.post("/api/auth/otp/verify", json={"phone": "+242 61234567", "code": DEV_OTP_CODE})
    assert r.status_code == 200
    assert r.json["phone"] == "+242061234567"
    assert client.get("/api/auth/me").json["user"]["phone_verified"] is True


@pytest.mark.parametrize(
    "raw",
    ["061234567", "06 123 45 67", "+242061234567", "242 61234567", "(242) 0612-34567", "61234567"],
)
def test_normalize_congo_mobile_accepts_common_forms(raw):
    assert normalize_congo_mobile(raw) == "+242061234567"


@pytest.mark.parametrize("raw", ["", None, "0712345678", "+33612345678", "0612345"])
def test_normalize_congo_mobile_rejects_other_numbers(raw):
    with pytest.raises(ValueError):
        normalize_congo_mobile(raw)


def test_dev_code_never_accepted_without_dev_mode():
    config = {"OTP_DEV_MODE": False, "TWILIO_ACCOUNT_SID": "", "TWILIO_AUTH_TOKEN": "", "TWILIO_VERIFY_SERVICE_SID": ""}
    from app.fooddash.otp import OtpError

    with pytest.raises(OtpError):
        check_code(config, "061234567", DEV_OTP_CODE)


def test_production_forces_dev_mode_off(monkeypatch):
    from app.fooddash.config import load_config

    monkeypatch.setenv("ENV", "production")
    monkeypatch.setenv("OTP_DEV_MODE", "1")
    assert load_config()["OTP_DEV_MODE"] is False
