import logging
import os
from datetime import timedelta

from dotenv import load_dotenv
from flask import Flask, g, request, session
from werkzeug.exceptions import HTTPException

from app.fooddash.admin import bp as admin_bp
from app.fooddash.auth import bp as auth_bp, load_current_user
from app.fooddash.config import load_config
from app.fooddash.db import init_db, teardown_db_session
from app.fooddash.modules.affiliates.admin import bp as affiliates_bp
from app.fooddash.modules.alerts.admin import bp as alerts_bp
from app.fooddash.modules.blog.admin import bp as blog_bp
from app.fooddash.modules.blog.ai_assistant import AIAssistantError
from app.fooddash.modules.drivers.admin import bp as drivers_bp
from app.fooddash.modules.marketing.admin import bp as marketing_bp
from app.fooddash.modules.orders.admin import bp as orders_bp
from app.fooddash.modules.orders.cart import CartConflict
from app.fooddash.modules.orders.routing import RoutingError
from app.fooddash.modules.orders.service import InvalidTransition
from app.fooddash.modules.payouts.admin import bp as payouts_bp
from app.fooddash.modules.restaurants.admin import bp as restaurants_bp
from app.fooddash.modules.support.admin import bp as support_bp
from app.fooddash.otp import OtpError
from app.fooddash.routes import bp as routes_bp
from app.fooddash.storage import StorageError

logger = logging.getLogger(__name__)

_ERROR_MESSAGES = {
    400: "Bad request.",
    401: "Authentication required.",
    403: "You do not have permission to do this.",
    404: "Not found.",
    405: "Method not allowed.",
    409: "Conflict.",
    413: "File too large.",
    429: "Too many requests.",
    500: "Internal server error.",
}


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(days=30)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True

    # CSRF protection (header token for the SPA)
    from app.fooddash.security import ensure_csrf_token, validate_csrf

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(("/health", "/healthz")):
            return None
        ensure_csrf_token()
        session.permanent = True
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            # Auth endpoints run before the client holds a token
            if (request.endpoint or "").startswith("auth."):
                return None
            if not validate_csrf(request):
                return {"error": "CSRF token missing or invalid."}, 400

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")

    init_db(app)

    def _dispose_engine_on_fork() -> None:
        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    if app.config.get("STORAGE_BACKEND") == "s3":
        missing_s3 = [k for k in ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY") if not app.config.get(k)]
        if missing_s3:
            app.logger.error("STORAGE CONFIG ERROR: Missing required S3 env vars: %s", ", ".join(missing_s3))

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/api/auth")
    app.register_blueprint(admin_bp, url_prefix="/api/admin")
    for module_bp in (
        restaurants_bp,
        drivers_bp,
        orders_bp,
        marketing_bp,
        payouts_bp,
        affiliates_bp,
        blog_bp,
        support_bp,
        alerts_bp,
    ):
        app.register_blueprint(module_bp, url_prefix="/api")

    app.before_request(load_current_user)
    app.teardown_appcontext(teardown_db_session)
    _register_error_handlers(app)

    logger.info("create_app() complete; app ready to serve")
    return app


def _register_error_handlers(app: Flask) -> None:
    """
    Services raise plain exceptions; this is the only place they become HTTP
    statuses. Flask picks the handler of the most specific class in the MRO.
    """

    def _error(status: int, message: str | None = None, **extra):
        body = {"error": message or _ERROR_MESSAGES.get(status, "Error.")}
        body.update(extra)
        return body, status

    @app.errorhandler(InvalidTransition)
    def _invalid_transition(e):  # type: ignore[no-redef]
        return _error(409, str(e))

    @app.errorhandler(CartConflict)
    def _cart_conflict(e):  # type: ignore[no-redef]
        return _error(409, str(e))

    @app.errorhandler(ValueError)
    def _value_error(e):  # type: ignore[no-redef]
        reason = getattr(e, "reason", None)
        return _error(400, str(e), **({"reason": reason} if reason else {}))

    @app.errorhandler(PermissionError)
    def _permission_error(e):  # type: ignore[no-redef]
        return _error(403, str(e))

    @app.errorhandler(LookupError)
    def _lookup_error(e):  # type: ignore[no-redef]
        # KeyError/IndexError are bugs, not missing rows
        if isinstance(e, (KeyError, IndexError)):
            app.logger.error("Unhandled %s (request_id=%s)", type(e).__name__, getattr(g, "request_id", None), exc_info=e)
            return _error(500)
        return _error(404, str(e))

    @app.errorhandler(OtpError)
    @app.errorhandler(RoutingError)
    @app.errorhandler(AIAssistantError)
    @app.errorhandler(StorageError)
    def _upstream_error(e):  # type: ignore[no-redef]
        app.logger.warning("Upstream failure (%s) request_id=%s: %s", type(e).__name__, getattr(g, "request_id", None), e)
        return _error(502, str(e))

    @app.errorhandler(403)
    def _err_403(e):  # type: ignore[no-redef]
        missing = getattr(g, "missing_permission", None)
        if missing:
            app.logger.warning("Forbidden: missing_permission=%s request_id=%s", missing, getattr(g, "request_id", None))
        return _error(403, missing_permission=missing) if missing else _error(403)

    @app.errorhandler(413)
    def _err_413(e):  # type: ignore[no-redef]
        limit = app.config.get("MAX_CONTENT_LENGTH") or 0
        return _error(413, f"File too large. Maximum size is {limit // (1024 * 1024)}MB.")

    @app.errorhandler(HTTPException)
    def _http_error(e):  # type: ignore[no-redef]
        return _error(e.code or 500, _ERROR_MESSAGES.get(e.code or 500) or e.description)

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return _error(500)
