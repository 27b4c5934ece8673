import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str
    public_base_url: str
    business_timezone: str

    storage_backend: str
    s3_endpoint: str
    s3_region: str
    s3_bucket: str
    s3_access_key_id: str
    s3_secret_access_key: str

    twilio_account_sid: str
    twilio_auth_token: str
    twilio_verify_service_sid: str
    otp_dev_mode: bool

    openrouteservice_api_key: str

    ai_gateway_url: str
    ai_gateway_api_key: str
    ai_gateway_model: str


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getflag(name: str) -> bool:
    return _getenv(name).lower() in ("1", "true", "yes", "on")


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///fooddash.db"),
        public_base_url=_getenv("PUBLIC_BASE_URL", "http://localhost:5173"),
        business_timezone=_getenv("BUSINESS_TIMEZONE", "Africa/Brazzaville"),
        storage_backend=_getenv("STORAGE_BACKEND", "local"),
        s3_endpoint=_getenv("S3_ENDPOINT", ""),
        s3_region=_getenv("S3_REGION", "fra1"),
        s3_bucket=_getenv("S3_BUCKET", ""),
        s3_access_key_id=_getenv("S3_ACCESS_KEY_ID", ""),
        s3_secret_access_key=_getenv("S3_SECRET_ACCESS_KEY", ""),
        twilio_account_sid=_getenv("TWILIO_ACCOUNT_SID", ""),
        twilio_auth_token=_getenv("TWILIO_AUTH_TOKEN", ""),
        twilio_verify_service_sid=_getenv("TWILIO_VERIFY_SERVICE_SID", ""),
        otp_dev_mode=_getflag("OTP_DEV_MODE"),
        openrouteservice_api_key=_getenv("OPENROUTESERVICE_API_KEY", ""),
        ai_gateway_url=_getenv("AI_GATEWAY_URL", "https://ai.gateway.lovable.dev/v1/chat/completions"),
        ai_gateway_api_key=_getenv("AI_GATEWAY_API_KEY", ""),
        ai_gateway_model=_getenv("AI_GATEWAY_MODEL", "google/gemini-2.5-flash"),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "PUBLIC_BASE_URL": s.public_base_url.rstrip("/"),
        # opening hours and "today" boundaries are evaluated in this zone
        "BUSINESS_TIMEZONE": s.business_timezone,
        "STORAGE_BACKEND": s.storage_backend,
        "S3_ENDPOINT": s.s3_endpoint,
        "S3_REGION": s.s3_region,
        "S3_BUCKET": s.s3_bucket,
        "S3_ACCESS_KEY_ID": s.s3_access_key_id,
        "S3_SECRET_ACCESS_KEY": s.s3_secret_access_key,
        "TWILIO_ACCOUNT_SID": s.twilio_account_sid,
        "TWILIO_AUTH_TOKEN": s.twilio_auth_token,
        "TWILIO_VERIFY_SERVICE_SID": s.twilio_verify_service_sid,
        # The fixed test code is never honoured in production.
        "OTP_DEV_MODE": s.otp_dev_mode and not is_production,
        "OPENROUTESERVICE_API_KEY": s.openrouteservice_api_key,
        "AI_GATEWAY_URL": s.ai_gateway_url,
        "AI_GATEWAY_API_KEY": s.ai_gateway_api_key,
        "AI_GATEWAY_MODEL": s.ai_gateway_model,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,
        # uploads: voice notes, blog covers, validation documents
        "MAX_CONTENT_LENGTH": 25 * 1024 * 1024,
    }
