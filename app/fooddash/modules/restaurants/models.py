from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.fooddash.models import Base, JSONType, User


class Restaurant(Base):
    __tablename__ = "restaurants"
    __table_args__ = (
        Index("idx_restaurants_owner", "owner_id"),
        Index("idx_restaurants_city", "city"),
        Index("idx_restaurants_active_validated", "is_active", "is_validated"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    owner_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    address: Mapped[str] = mapped_column(Text, nullable=False)
    city: Mapped[str | None] = mapped_column(String(128), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    cuisine_type: Mapped[str | None] = mapped_column(String(128), nullable=True)
    image_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    latitude: Mapped[Decimal | None] = mapped_column(Numeric(9, 6), nullable=True)
    longitude: Mapped[Decimal | None] = mapped_column(Numeric(9, 6), nullable=True)

    delivery_fee: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    delivery_time: Mapped[str | None] = mapped_column(String(64), nullable=True)  # "25-35 min"
    min_order: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)

    # {"monday": {"open": "09:00", "close": "22:00", "closed": false}, ...}
    business_hours: Mapped[dict | None] = mapped_column(JSONType, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_validated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    validated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    validated_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    validation_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    validation_documents: Mapped[list | None] = mapped_column(JSONType, nullable=True)

    paused_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    pause_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    pause_message: Mapped[str | None] = mapped_column(String(512), nullable=True)

    is_sponsored: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    sponsored_position: Mapped[int | None] = mapped_column(Integer, nullable=True)
    sponsored_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    rating: Mapped[Decimal | None] = mapped_column(Numeric(3, 2), nullable=True)
    reviews_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    owner: Mapped[User | None] = relationship("User", foreign_keys=[owner_id], lazy="selectin")
    menu_items: Mapped[list["MenuItem"]] = relationship(
        "MenuItem",
        back_populates="restaurant",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="MenuItem.display_order",
    )
    bundles: Mapped[list["Bundle"]] = relationship(
        "Bundle",
        back_populates="restaurant",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="[Bundle.category, Bundle.display_order]",
    )


class MenuItem(Base):
    __tablename__ = "menu_items"
    __table_args__ = (
        Index("idx_menu_items_restaurant", "restaurant_id"),
        CheckConstraint("price >= 0", name="ck_menu_items_price_nonneg"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    restaurant_id: Mapped[int] = mapped_column(ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str | None] = mapped_column(String(128), nullable=True)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    image_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # {"available_days": ["monday"], "available_from": "11:00", "available_until": "15:00"}
    availability: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    display_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    restaurant: Mapped[Restaurant] = relationship("Restaurant", back_populates="menu_items")
    option_groups: Mapped[list["MenuOptionGroup"]] = relationship(
        "MenuOptionGroup",
        back_populates="menu_item",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="MenuOptionGroup.display_order",
    )


class MenuOptionGroup(Base):
    __tablename__ = "menu_item_option_groups"
    __table_args__ = (
        Index("idx_option_groups_item", "menu_item_id"),
        CheckConstraint("min_selections >= 0", name="ck_option_groups_min_nonneg"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    menu_item_id: Mapped[int] = mapped_column(ForeignKey("menu_items.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    min_selections: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_selections: Mapped[int | None] = mapped_column(Integer, nullable=True)  # None = unlimited
    display_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    menu_item: Mapped[MenuItem] = relationship("MenuItem", back_populates="option_groups")
    options: Mapped[list["MenuOption"]] = relationship(
        "MenuOption",
        back_populates="group",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="MenuOption.display_order",
    )


class MenuOption(Base):
    __tablename__ = "menu_item_options"
    __table_args__ = (Index("idx_options_group", "option_group_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    option_group_id: Mapped[int] = mapped_column(ForeignKey("menu_item_option_groups.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    price_modifier: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    display_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    group: Mapped[MenuOptionGroup] = relationship("MenuOptionGroup", back_populates="options")


class Bundle(Base):
    """Side, drink, sauce, extra or dessert offered alongside the menu."""

    __tablename__ = "bundles"
    __table_args__ = (
        Index("idx_bundles_restaurant", "restaurant_id", "category"),
        CheckConstraint("price >= 0", name="ck_bundles_price_nonneg"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    restaurant_id: Mapped[int] = mapped_column(ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(16), nullable=False)  # side|drink|sauce|extra|dessert
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    display_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    restaurant: Mapped[Restaurant] = relationship("Restaurant", back_populates="bundles")


class Favorite(Base):
    __tablename__ = "favorites"
    __table_args__ = (UniqueConstraint("user_id", "restaurant_id", name="uq_favorites_user_restaurant"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    restaurant_id: Mapped[int] = mapped_column(ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
