from flask import Blueprint, request

from app.fooddash.db import db_session
from app.fooddash.rbac import current_user, require_login
from app.fooddash.realtime import MAX_BATCH, list_changes, serialize_change
from app.fooddash.utils import parse_int

bp = Blueprint("routes", __name__)


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


@bp.get("/healthz")
def healthz():
    """
    Fast health check for k8s/DO liveness checks. No DB access, minimal overhead.
    """
    return "ok", 200


@bp.get("/api/changes")
@require_login
def changes():
    """
    Row-change feed. Clients pass the cursor from the previous call as
    `since` and refetch whatever rows the returned events point at.
    """
    since = parse_int(request.args.get("since"), field="since", minimum=0) or 0
    limit = parse_int(request.args.get("limit"), field="limit", minimum=1, maximum=MAX_BATCH) or 100
    tables = [t.strip() for t in (request.args.get("tables") or "").split(",") if t.strip()] or None
    events, cursor = list_changes(db_session(), current_user(), since=since, limit=limit, tables=tables)
    return {"changes": [serialize_change(ev) for ev in events], "cursor": cursor}
