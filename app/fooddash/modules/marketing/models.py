from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.fooddash.models import Base, JSONType


class PromoCode(Base):
    __tablename__ = "promo_codes"
    __table_args__ = (
        Index("idx_promo_codes_restaurant", "restaurant_id"),
        CheckConstraint("discount_value >= 0", name="ck_promo_codes_value_nonneg"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    code: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)  # stored upper-case
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    discount_type: Mapped[str] = mapped_column(String(16), nullable=False)  # percentage | fixed
    discount_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    min_order_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    max_uses: Mapped[int | None] = mapped_column(Integer, nullable=True)
    uses_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    valid_from: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    valid_until: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    # NULL = platform-wide code
    restaurant_id: Mapped[int | None] = mapped_column(ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


class Banner(Base):
    __tablename__ = "marketing_banners"
    __table_args__ = (Index("idx_banners_active_position", "is_active", "position"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    subtitle: Mapped[str | None] = mapped_column(String(512), nullable=True)
    image_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    link_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    link_text: Mapped[str | None] = mapped_column(String(128), nullable=True)
    background_color: Mapped[str | None] = mapped_column(String(32), nullable=True)
    text_color: Mapped[str | None] = mapped_column(String(32), nullable=True)
    position: Mapped[str] = mapped_column(String(32), nullable=False, default="top")
    target_audience: Mapped[str] = mapped_column(String(32), nullable=False, default="all")
    display_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    starts_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    ends_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    view_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    click_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


class Popup(Base):
    __tablename__ = "marketing_popups"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    content: Mapped[str | None] = mapped_column(Text, nullable=True)
    image_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    button_text: Mapped[str | None] = mapped_column(String(128), nullable=True)
    button_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    popup_type: Mapped[str] = mapped_column(String(32), nullable=False, default="modal")  # modal | banner | toast
    trigger_type: Mapped[str] = mapped_column(String(32), nullable=False, default="page_load")  # page_load | delay | scroll | exit_intent
    trigger_value: Mapped[int | None] = mapped_column(Integer, nullable=True)
    display_frequency: Mapped[str] = mapped_column(String(32), nullable=False, default="once")  # once | daily | always
    target_pages: Mapped[list | None] = mapped_column(JSONType, nullable=True)  # NULL/[] = every page
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    starts_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    ends_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    display_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    click_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


class Campaign(Base):
    __tablename__ = "marketing_campaigns"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    campaign_type: Mapped[str] = mapped_column(String(32), nullable=False, default="promotion")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="draft")  # draft | active | paused | completed
    budget: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    spent: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    starts_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    ends_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    banner_ids: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    popup_ids: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    promo_code_ids: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    target_metrics: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    actual_metrics: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
