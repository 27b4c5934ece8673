"""
Row-change feed.

Writers append one ChangeEvent per (channel, row) inside the same transaction
as the row change, so a committed change is always visible in the feed and a
rolled-back one never is. Readers poll with the last id they saw.
"""
from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.orm import Session

from app.fooddash.models import ChangeEvent, User
from app.fooddash.rbac import ADMIN, DELIVERY_DRIVER, has_role

ADMIN_CHANNEL = "admin"
DRIVERS_CHANNEL = "drivers"
MAX_BATCH = 500


def user_channel(user_id: int) -> str:
    return f"user:{user_id}"


def restaurant_channel(restaurant_id: int) -> str:
    return f"restaurant:{restaurant_id}"


def record_change(
    s: Session,
    *,
    channels: Iterable[str],
    table: str,
    row_id: int | str,
    op: str = "update",
    payload: dict[str, Any] | None = None,
) -> list[ChangeEvent]:
    events = []
    for channel in dict.fromkeys(c for c in channels if c):
        ev = ChangeEvent(channel=channel, table_name=table, row_id=str(row_id), op=op, payload=payload)
        s.add(ev)
        events.append(ev)
    return events


def visible_channels(s: Session, user: User) -> list[str]:
    from app.fooddash.modules.restaurants.models import Restaurant

    channels = [user_channel(user.id)]
    owned = s.query(Restaurant.id).filter(Restaurant.owner_id == user.id).all()
    channels.extend(restaurant_channel(rid) for (rid,) in owned)
    if has_role(user, DELIVERY_DRIVER):
        channels.append(DRIVERS_CHANNEL)
    if has_role(user, ADMIN):
        channels.append(ADMIN_CHANNEL)
    return channels


def latest_cursor(s: Session) -> int:
    last = s.query(ChangeEvent.id).order_by(ChangeEvent.id.desc()).first()
    return last[0] if last else 0


def list_changes(s: Session, user: User, *, since: int = 0, limit: int = 100, tables: list[str] | None = None) -> tuple[list[ChangeEvent], int]:
    """Events after `since` on the caller's channels, oldest first, and the next cursor."""
    limit = max(1, min(limit, MAX_BATCH))
    q = (
        s.query(ChangeEvent)
        .filter(ChangeEvent.id > since)
        .filter(ChangeEvent.channel.in_(visible_channels(s, user)))
    )
    if tables:
        q = q.filter(ChangeEvent.table_name.in_(tables))
    events = q.order_by(ChangeEvent.id.asc()).limit(limit).all()
    cursor = events[-1].id if events else since
    return events, cursor


def purge_changes(s: Session, *, older_than: timedelta = timedelta(days=7), now: datetime | None = None) -> int:
    cutoff = (now or datetime.utcnow()) - older_than
    return s.query(ChangeEvent).filter(ChangeEvent.created_at < cutoff).delete(synchronize_session=False)


def serialize_change(ev: ChangeEvent) -> dict[str, Any]:
    return {
        "id": ev.id,
        "channel": ev.channel,
        "table": ev.table_name,
        "row_id": ev.row_id,
        "op": ev.op,
        "payload": ev.payload or {},
        "created_at": ev.created_at.isoformat() if ev.created_at else None,
    }
