from __future__ import annotations

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import or_, update

from app.fooddash.audit import record_event
from app.fooddash.utils import clean_str, iso, money, parse_bool, parse_datetime, parse_decimal, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from app.fooddash.models import User
    from app.fooddash.modules.marketing.models import Banner, Campaign, Popup, PromoCode

DISCOUNT_TYPES = ("percentage", "fixed")
AUDIENCES = ("all", "customer", "restaurant_owner", "delivery_driver", "new_users")
POPUP_TYPES = ("modal", "banner", "toast")
TRIGGER_TYPES = ("page_load", "delay", "scroll", "exit_intent")
DISPLAY_FREQUENCIES = ("once", "daily", "always")
CAMPAIGN_STATUSES = ("draft", "active", "paused", "completed")


class PromoError(ValueError):
    """Promo code refused; `reason` is a stable key for clients."""

    def __init__(self, reason: str, message: str):
        super().__init__(message)
        self.reason = reason


# ---------- Promo codes ----------
def compute_discount(promo: "PromoCode", subtotal: Decimal) -> Decimal:
    if promo.discount_type == "percentage":
        discount = subtotal * promo.discount_value / Decimal("100")
    else:
        discount = promo.discount_value
    discount = min(discount, subtotal)
    return discount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def validate_promo(
    s: "Session",
    code: str | None,
    subtotal: Decimal,
    restaurant_id: int | None,
    now: datetime | None = None,
) -> tuple["PromoCode", Decimal]:
    """Returns (promo, discount) or raises PromoError."""
    from app.fooddash.modules.marketing.models import PromoCode

    now = now or datetime.utcnow()
    normalized = (code or "").strip().upper()
    if not normalized:
        raise PromoError("unknown", "Enter a promo code.")
    promo = s.query(PromoCode).filter(PromoCode.code == normalized).one_or_none()
    if promo is None or not promo.is_active:
        raise PromoError("unknown", "This promo code does not exist or is no longer active.")
    if promo.valid_from and now < promo.valid_from:
        raise PromoError("not_started", "This promo code is not valid yet.")
    if promo.valid_until and now >= promo.valid_until:
        raise PromoError("expired", "This promo code has expired.")
    if promo.max_uses is not None and promo.uses_count >= promo.max_uses:
        raise PromoError("exhausted", "This promo code has reached its maximum number of uses.")
    if promo.restaurant_id is not None and promo.restaurant_id != restaurant_id:
        raise PromoError("wrong_restaurant", "This promo code is not valid for this restaurant.")
    if promo.min_order_amount is not None and subtotal < promo.min_order_amount:
        raise PromoError("below_minimum", f"A minimum order of {money(promo.min_order_amount):.0f} is required.")
    return promo, compute_discount(promo, subtotal)


def consume_promo(s: "Session", promo: "PromoCode") -> None:
    """Atomic uses_count + 1, refused when the cap was reached concurrently."""
    from app.fooddash.modules.marketing.models import PromoCode

    result = s.execute(
        update(PromoCode)
        .where(PromoCode.id == promo.id)
        .where(or_(PromoCode.max_uses.is_(None), PromoCode.uses_count < PromoCode.max_uses))
        .values(uses_count=PromoCode.uses_count + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise PromoError("exhausted", "This promo code has reached its maximum number of uses.")
    s.refresh(promo)


def _promo_fields(payload: dict, *, partial: bool) -> dict[str, Any]:
    out: dict[str, Any] = {}
    if not partial or "code" in payload:
        code = (clean_str(payload.get("code")) or "").upper()
        if not code:
            raise ValueError("code is required.")
        if not code.replace("-", "").replace("_", "").isalnum():
            raise ValueError("code may only contain letters, digits, '-' and '_'.")
        out["code"] = code
    if not partial or "discount_type" in payload:
        dtype = (clean_str(payload.get("discount_type")) or "").lower()
        if dtype not in DISCOUNT_TYPES:
            raise ValueError(f"discount_type must be one of: {', '.join(DISCOUNT_TYPES)}")
        out["discount_type"] = dtype
    if not partial or "discount_value" in payload:
        value = parse_decimal(payload.get("discount_value"), field="discount_value", minimum=Decimal("0"))
        if value is None:
            raise ValueError("discount_value is required.")
        out["discount_value"] = value
    if "description" in payload:
        out["description"] = clean_str(payload.get("description"))
    if "min_order_amount" in payload:
        out["min_order_amount"] = parse_decimal(payload.get("min_order_amount"), field="min_order_amount", minimum=Decimal("0"))
    if "max_uses" in payload:
        out["max_uses"] = parse_int(payload.get("max_uses"), field="max_uses", minimum=1)
    if not partial or "valid_from" in payload:
        out["valid_from"] = parse_datetime(payload.get("valid_from")) or datetime.utcnow()
    if not partial or "valid_until" in payload:
        until = parse_datetime(payload.get("valid_until"))
        if until is None:
            raise ValueError("valid_until is required.")
        out["valid_until"] = until
    if "is_active" in payload:
        out["is_active"] = parse_bool(payload.get("is_active"), default=True)
    return out


def _check_promo(promo: "PromoCode") -> None:
    if promo.discount_type == "percentage" and promo.discount_value > 100:
        raise ValueError("A percentage discount cannot exceed 100.")
    if promo.valid_until <= promo.valid_from:
        raise ValueError("valid_until must be after valid_from.")


def create_promo_code(s: "Session", payload: dict, user: "User", *, restaurant_id: int | None) -> "PromoCode":
    from app.fooddash.modules.marketing.models import PromoCode

    fields = _promo_fields(payload, partial=False)
    if s.query(PromoCode.id).filter(PromoCode.code == fields["code"]).first():
        raise ValueError(f"Promo code {fields['code']} already exists.")
    now = datetime.utcnow()
    promo = PromoCode(
        restaurant_id=restaurant_id,
        uses_count=0,
        is_active=True,
        created_by_user_id=user.id,
        created_at=now,
        updated_at=now,
        **fields,
    )
    _check_promo(promo)
    s.add(promo)
    s.flush()
    record_event(
        s,
        actor=user,
        action="promo_code.create",
        entity_type="PromoCode",
        entity_id=str(promo.id),
        metadata={"code": promo.code, "restaurant_id": restaurant_id, "type": promo.discount_type, "value": str(promo.discount_value)},
    )
    return promo


def update_promo_code(s: "Session", promo: "PromoCode", payload: dict, user: "User") -> "PromoCode":
    from app.fooddash.modules.marketing.models import PromoCode

    fields = _promo_fields(payload, partial=True)
    if "code" in fields and fields["code"] != promo.code:
        if s.query(PromoCode.id).filter(PromoCode.code == fields["code"]).first():
            raise ValueError(f"Promo code {fields['code']} already exists.")
    for key, value in fields.items():
        setattr(promo, key, value)
    _check_promo(promo)
    promo.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="promo_code.edit",
        entity_type="PromoCode",
        entity_id=str(promo.id),
        metadata={k: str(v) for k, v in fields.items()},
    )
    s.flush()
    return promo


def delete_promo_code(s: "Session", promo: "PromoCode", user: "User") -> None:
    record_event(s, actor=user, action="promo_code.delete", entity_type="PromoCode", entity_id=str(promo.id), metadata={"code": promo.code})
    s.delete(promo)
    s.flush()


def serialize_promo(p: "PromoCode") -> dict[str, Any]:
    return {
        "id": p.id,
        "code": p.code,
        "description": p.description,
        "discount_type": p.discount_type,
        "discount_value": money(p.discount_value),
        "min_order_amount": money(p.min_order_amount) if p.min_order_amount is not None else None,
        "max_uses": p.max_uses,
        "uses_count": p.uses_count,
        "valid_from": iso(p.valid_from),
        "valid_until": iso(p.valid_until),
        "restaurant_id": p.restaurant_id,
        "is_active": p.is_active,
    }


# ---------- Banners / popups / campaigns ----------
def _window_fields(payload: dict, out: dict[str, Any]) -> None:
    if "starts_at" in payload:
        out["starts_at"] = parse_datetime(payload.get("starts_at"))
    if "ends_at" in payload:
        out["ends_at"] = parse_datetime(payload.get("ends_at"))


def _check_window(obj: Any) -> None:
    if obj.starts_at and obj.ends_at and obj.ends_at <= obj.starts_at:
        raise ValueError("ends_at must be after starts_at.")


def _choice(payload: dict, key: str, choices: tuple[str, ...]) -> str:
    value = (clean_str(payload.get(key)) or "").lower()
    if value not in choices:
        raise ValueError(f"{key} must be one of: {', '.join(choices)}")
    return value


def _banner_fields(payload: dict, *, partial: bool) -> dict[str, Any]:
    out: dict[str, Any] = {}
    if not partial or "title" in payload:
        title = clean_str(payload.get("title"))
        if not title:
            raise ValueError("title is required.")
        out["title"] = title
    for key in ("subtitle", "image_url", "link_url", "link_text", "background_color", "text_color"):
        if key in payload:
            out[key] = clean_str(payload.get(key))
    if "position" in payload:
        out["position"] = clean_str(payload.get("position")) or "top"
    if "target_audience" in payload:
        out["target_audience"] = _choice(payload, "target_audience", AUDIENCES)
    if "display_order" in payload:
        out["display_order"] = parse_int(payload.get("display_order"), field="display_order") or 0
    if "is_active" in payload:
        out["is_active"] = parse_bool(payload.get("is_active"), default=True)
    _window_fields(payload, out)
    return out


def _popup_fields(payload: dict, *, partial: bool) -> dict[str, Any]:
    out: dict[str, Any] = {}
    if not partial or "title" in payload:
        title = clean_str(payload.get("title"))
        if not title:
            raise ValueError("title is required.")
        out["title"] = title
    for key in ("content", "image_url", "button_text", "button_url"):
        if key in payload:
            out[key] = clean_str(payload.get(key))
    if "popup_type" in payload:
        out["popup_type"] = _choice(payload, "popup_type", POPUP_TYPES)
    if "trigger_type" in payload:
        out["trigger_type"] = _choice(payload, "trigger_type", TRIGGER_TYPES)
    if "trigger_value" in payload:
        out["trigger_value"] = parse_int(payload.get("trigger_value"), field="trigger_value", minimum=0)
    if "display_frequency" in payload:
        out["display_frequency"] = _choice(payload, "display_frequency", DISPLAY_FREQUENCIES)
    if "target_pages" in payload:
        pages = payload.get("target_pages") or []
        if isinstance(pages, str):
            pages = [p.strip() for p in pages.split(",")]
        out["target_pages"] = [str(p).strip() for p in pages if str(p).strip()] or None
    if "is_active" in payload:
        out["is_active"] = parse_bool(payload.get("is_active"), default=True)
    _window_fields(payload, out)
    return out


def _id_list(raw: Any, key: str) -> list[int] | None:
    if raw in (None, ""):
        return None
    if not isinstance(raw, list):
        raise ValueError(f"{key} must be a list of ids.")
    return [parse_int(v, field=key, minimum=1) for v in raw]


def _campaign_fields(payload: dict, *, partial: bool) -> dict[str, Any]:
    out: dict[str, Any] = {}
    if not partial or "name" in payload:
        name = clean_str(payload.get("name"))
        if not name:
            raise ValueError("name is required.")
        out["name"] = name
    if "description" in payload:
        out["description"] = clean_str(payload.get("description"))
    if "campaign_type" in payload:
        out["campaign_type"] = clean_str(payload.get("campaign_type")) or "promotion"
    if "status" in payload:
        out["status"] = _choice(payload, "status", CAMPAIGN_STATUSES)
    if "budget" in payload:
        out["budget"] = parse_decimal(payload.get("budget"), field="budget", minimum=Decimal("0"))
    if "spent" in payload:
        out["spent"] = parse_decimal(payload.get("spent"), field="spent", minimum=Decimal("0")) or Decimal("0")
    for key in ("banner_ids", "popup_ids", "promo_code_ids"):
        if key in payload:
            out[key] = _id_list(payload.get(key), key)
    for key in ("target_metrics", "actual_metrics"):
        if key in payload:
            value = payload.get(key)
            if value is not None and not isinstance(value, dict):
                raise ValueError(f"{key} must be an object.")
            out[key] = value
    _window_fields(payload, out)
    return out


_KINDS = {
    # kind -> (model class name, payload parser)
    "banner": ("Banner", _banner_fields),
    "popup": ("Popup", _popup_fields),
    "campaign": ("Campaign", _campaign_fields),
}


def _model(kind: str):
    from app.fooddash.modules.marketing import models

    return getattr(models, _KINDS[kind][0])


def create_item(s: "Session", kind: str, payload: dict, user: "User") -> Any:
    model = _model(kind)
    fields = _KINDS[kind][1](payload, partial=False)
    now = datetime.utcnow()
    obj = model(created_by_user_id=user.id, created_at=now, updated_at=now, **fields)
    _check_window(obj)
    s.add(obj)
    s.flush()
    record_event(s, actor=user, action=f"{kind}.create", entity_type=model.__name__, entity_id=str(obj.id), metadata={k: str(v) for k, v in fields.items()})
    return obj


def update_item(s: "Session", kind: str, obj: Any, payload: dict, user: "User") -> Any:
    fields = _KINDS[kind][1](payload, partial=True)
    for key, value in fields.items():
        setattr(obj, key, value)
    _check_window(obj)
    obj.updated_at = datetime.utcnow()
    record_event(s, actor=user, action=f"{kind}.edit", entity_type=type(obj).__name__, entity_id=str(obj.id), metadata={k: str(v) for k, v in fields.items()})
    s.flush()
    return obj


def delete_item(s: "Session", kind: str, obj: Any, user: "User") -> None:
    record_event(s, actor=user, action=f"{kind}.delete", entity_type=type(obj).__name__, entity_id=str(obj.id))
    s.delete(obj)
    s.flush()


def _in_window(obj: Any, now: datetime) -> bool:
    if obj.starts_at and now < obj.starts_at:
        return False
    if obj.ends_at and now >= obj.ends_at:
        return False
    return True


def active_banners(s: "Session", *, audience: str | None = None, position: str | None = None, now: datetime | None = None) -> list["Banner"]:
    from app.fooddash.modules.marketing.models import Banner

    now = now or datetime.utcnow()
    q = s.query(Banner).filter(Banner.is_active.is_(True))
    if position:
        q = q.filter(Banner.position == position)
    audiences = ["all"] + ([audience] if audience else [])
    q = q.filter(Banner.target_audience.in_(audiences))
    rows = q.order_by(Banner.display_order.asc(), Banner.id.asc()).all()
    return [b for b in rows if _in_window(b, now)]


def active_popups(s: "Session", *, page: str | None = None, now: datetime | None = None) -> list["Popup"]:
    from app.fooddash.modules.marketing.models import Popup

    now = now or datetime.utcnow()
    rows = s.query(Popup).filter(Popup.is_active.is_(True)).order_by(Popup.id.asc()).all()
    out = []
    for p in rows:
        if not _in_window(p, now):
            continue
        if p.target_pages and page and page not in p.target_pages:
            continue
        if p.target_pages and not page:
            continue
        out.append(p)
    return out


def bump_counter(s: "Session", kind: str, obj_id: int, counter: str) -> bool:
    """Atomic +1 on a view/click/display counter. False when the row is gone."""
    allowed = {"banner": ("view_count", "click_count"), "popup": ("display_count", "click_count")}
    if counter not in allowed.get(kind, ()):
        raise ValueError(f"Unknown counter '{counter}'.")
    model = _model(kind)
    column = getattr(model, counter)
    result = s.execute(
        update(model).where(model.id == obj_id).values({counter: column + 1}).execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def serialize_item(obj: Any) -> dict[str, Any]:
    data: dict[str, Any] = {}
    for col in obj.__table__.columns:
        value = getattr(obj, col.key)
        if isinstance(value, datetime):
            value = value.isoformat()
        elif isinstance(value, Decimal):
            value = money(value)
        data[col.key] = value
    return data
