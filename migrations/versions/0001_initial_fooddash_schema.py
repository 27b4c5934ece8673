"""initial fooddash schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-18

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _money(name: str, nullable: bool = False, **kw) -> sa.Column:
    return sa.Column(name, sa.Numeric(12, 2), nullable=nullable, **kw)


def _created() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(), nullable=False)


def _updated() -> sa.Column:
    return sa.Column("updated_at", sa.DateTime(), nullable=False)


def _user_fk(name: str, *, nullable: bool = True, ondelete: str = "SET NULL") -> sa.Column:
    return sa.Column(name, sa.Integer(), sa.ForeignKey("users.id", ondelete=ondelete), nullable=nullable)


def upgrade() -> None:
    # ---------- Core ----------
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False, unique=True),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("full_name", sa.String(length=255), nullable=True),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column("phone_verified_at", sa.DateTime(), nullable=True),
        sa.Column("avatar_url", sa.String(length=1024), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("city", sa.String(length=128), nullable=True),
        sa.Column("district", sa.String(length=128), nullable=True),
        _created(),
        _updated(),
    )
    op.create_index("idx_users_phone", "users", ["phone"])

    op.create_table(
        "roles",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("key", sa.String(length=64), nullable=False, unique=True),
        sa.Column("name", sa.String(length=128), nullable=False),
        _created(),
    )
    op.create_table(
        "permissions",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("key", sa.String(length=128), nullable=False, unique=True),
        sa.Column("name", sa.String(length=128), nullable=False),
        _created(),
    )
    op.create_table(
        "user_roles",
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    )
    op.create_table(
        "role_permissions",
        sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("permission_id", sa.Integer(), sa.ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True),
    )

    op.create_table(
        "audit_events",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        _created(),
        sa.Column("request_id", sa.String(length=64), nullable=True),
        sa.Column("client_ip", sa.String(length=64), nullable=True),
        _user_fk("actor_user_id"),
        sa.Column("actor_user_email", sa.String(length=320), nullable=True),
        sa.Column("action", sa.String(length=128), nullable=False),
        sa.Column("entity_type", sa.String(length=128), nullable=True),
        sa.Column("entity_id", sa.String(length=128), nullable=True),
        sa.Column("reason", sa.String(length=512), nullable=True),
        sa.Column("metadata_json", sa.Text(), nullable=True),
        sa.UniqueConstraint("request_id", "id", name="uq_audit_request_id_id"),
    )
    op.create_index("idx_audit_events_action", "audit_events", ["action"])
    op.create_index("idx_audit_events_created_at", "audit_events", ["created_at"])

    op.create_table(
        "platform_settings",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("key", sa.String(length=128), nullable=False, unique=True),
        sa.Column("category", sa.String(length=64), nullable=False, server_default="general"),
        sa.Column("value", JSON_TYPE, nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        _updated(),
        _user_fk("updated_by_user_id"),
    )

    op.create_table(
        "change_events",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("channel", sa.String(length=128), nullable=False),
        sa.Column("table_name", sa.String(length=64), nullable=False),
        sa.Column("row_id", sa.String(length=64), nullable=False),
        sa.Column("op", sa.String(length=16), nullable=False),
        sa.Column("payload", JSON_TYPE, nullable=True),
        _created(),
    )
    op.create_index("idx_change_events_channel_id", "change_events", ["channel", "id"])
    op.create_index("idx_change_events_created_at", "change_events", ["created_at"])

    # ---------- Restaurants & menus ----------
    op.create_table(
        "restaurants",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        _user_fk("owner_id"),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("address", sa.Text(), nullable=False),
        sa.Column("city", sa.String(length=128), nullable=True),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column("cuisine_type", sa.String(length=128), nullable=True),
        sa.Column("image_url", sa.String(length=1024), nullable=True),
        sa.Column("latitude", sa.Numeric(9, 6), nullable=True),
        sa.Column("longitude", sa.Numeric(9, 6), nullable=True),
        _money("delivery_fee", nullable=True),
        sa.Column("delivery_time", sa.String(length=64), nullable=True),
        _money("min_order", nullable=True),
        sa.Column("business_hours", JSON_TYPE, nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("is_validated", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("validated_at", sa.DateTime(), nullable=True),
        _user_fk("validated_by_user_id"),
        sa.Column("validation_notes", sa.Text(), nullable=True),
        sa.Column("validation_documents", JSON_TYPE, nullable=True),
        sa.Column("paused_at", sa.DateTime(), nullable=True),
        sa.Column("pause_until", sa.DateTime(), nullable=True),
        sa.Column("pause_message", sa.String(length=512), nullable=True),
        sa.Column("is_sponsored", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("sponsored_position", sa.Integer(), nullable=True),
        sa.Column("sponsored_until", sa.DateTime(), nullable=True),
        sa.Column("rating", sa.Numeric(3, 2), nullable=True),
        sa.Column("reviews_count", sa.Integer(), nullable=False, server_default="0"),
        _created(),
        _updated(),
    )
    op.create_index("idx_restaurants_owner", "restaurants", ["owner_id"])
    op.create_index("idx_restaurants_city", "restaurants", ["city"])
    op.create_index("idx_restaurants_active_validated", "restaurants", ["is_active", "is_validated"])

    op.create_table(
        "menu_items",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("restaurant_id", sa.Integer(), sa.ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category", sa.String(length=128), nullable=True),
        _money("price"),
        sa.Column("image_url", sa.String(length=1024), nullable=True),
        sa.Column("is_available", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("availability", JSON_TYPE, nullable=True),
        sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
        _created(),
        _updated(),
        sa.CheckConstraint("price >= 0", name="ck_menu_items_price_nonneg"),
    )
    op.create_index("idx_menu_items_restaurant", "menu_items", ["restaurant_id"])

    op.create_table(
        "menu_item_option_groups",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("menu_item_id", sa.Integer(), sa.ForeignKey("menu_items.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_required", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("min_selections", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_selections", sa.Integer(), nullable=True),
        sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
        _created(),
        sa.CheckConstraint("min_selections >= 0", name="ck_option_groups_min_nonneg"),
    )
    op.create_index("idx_option_groups_item", "menu_item_option_groups", ["menu_item_id"])

    op.create_table(
        "menu_item_options",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column(
            "option_group_id",
            sa.Integer(),
            sa.ForeignKey("menu_item_option_groups.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(length=255), nullable=False),
        _money("price_modifier", server_default="0"),
        sa.Column("is_available", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
        _created(),
    )
    op.create_index("idx_options_group", "menu_item_options", ["option_group_id"])

    op.create_table(
        "favorites",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        _user_fk("user_id", nullable=False, ondelete="CASCADE"),
        sa.Column("restaurant_id", sa.Integer(), sa.ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False),
        _created(),
        sa.UniqueConstraint("user_id", "restaurant_id", name="uq_favorites_user_restaurant"),
    )

    # ---------- Marketing (promo codes precede orders) ----------
    op.create_table(
        "promo_codes",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("code", sa.String(length=64), nullable=False, unique=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("discount_type", sa.String(length=16), nullable=False),
        _money("discount_value"),
        _money("min_order_amount", nullable=True),
        sa.Column("max_uses", sa.Integer(), nullable=True),
        sa.Column("uses_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("valid_from", sa.DateTime(), nullable=False),
        sa.Column("valid_until", sa.DateTime(), nullable=False),
        sa.Column("restaurant_id", sa.Integer(), sa.ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _user_fk("created_by_user_id"),
        _created(),
        _updated(),
        sa.CheckConstraint("discount_value >= 0", name="ck_promo_codes_value_nonneg"),
    )
    op.create_index("idx_promo_codes_restaurant", "promo_codes", ["restaurant_id"])

    op.create_table(
        "marketing_banners",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("subtitle", sa.String(length=512), nullable=True),
        sa.Column("image_url", sa.String(length=1024), nullable=True),
        sa.Column("link_url", sa.String(length=1024), nullable=True),
        sa.Column("link_text", sa.String(length=128), nullable=True),
        sa.Column("background_color", sa.String(length=32), nullable=True),
        sa.Column("text_color", sa.String(length=32), nullable=True),
        sa.Column("position", sa.String(length=32), nullable=False, server_default="top"),
        sa.Column("target_audience", sa.String(length=32), nullable=False, server_default="all"),
        sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("starts_at", sa.DateTime(), nullable=True),
        sa.Column("ends_at", sa.DateTime(), nullable=True),
        sa.Column("view_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("click_count", sa.Integer(), nullable=False, server_default="0"),
        _user_fk("created_by_user_id"),
        _created(),
        _updated(),
    )
    op.create_index("idx_banners_active_position", "marketing_banners", ["is_active", "position"])

    op.create_table(
        "marketing_popups",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("content", sa.Text(), nullable=True),
        sa.Column("image_url", sa.String(length=1024), nullable=True),
        sa.Column("button_text", sa.String(length=128), nullable=True),
        sa.Column("button_url", sa.String(length=1024), nullable=True),
        sa.Column("popup_type", sa.String(length=32), nullable=False, server_default="modal"),
        sa.Column("trigger_type", sa.String(length=32), nullable=False, server_default="page_load"),
        sa.Column("trigger_value", sa.Integer(), nullable=True),
        sa.Column("display_frequency", sa.String(length=32), nullable=False, server_default="once"),
        sa.Column("target_pages", JSON_TYPE, nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("starts_at", sa.DateTime(), nullable=True),
        sa.Column("ends_at", sa.DateTime(), nullable=True),
        sa.Column("display_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("click_count", sa.Integer(), nullable=False, server_default="0"),
        _user_fk("created_by_user_id"),
        _created(),
        _updated(),
    )

    op.create_table(
        "marketing_campaigns",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("campaign_type", sa.String(length=32), nullable=False, server_default="promotion"),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="draft"),
        _money("budget", nullable=True),
        _money("spent", server_default="0"),
        sa.Column("starts_at", sa.DateTime(), nullable=True),
        sa.Column("ends_at", sa.DateTime(), nullable=True),
        sa.Column("banner_ids", JSON_TYPE, nullable=True),
        sa.Column("popup_ids", JSON_TYPE, nullable=True),
        sa.Column("promo_code_ids", JSON_TYPE, nullable=True),
        sa.Column("target_metrics", JSON_TYPE, nullable=True),
        sa.Column("actual_metrics", JSON_TYPE, nullable=True),
        _user_fk("created_by_user_id"),
        _created(),
        _updated(),
    )

    # ---------- Orders ----------
    op.create_table(
        "cart_items",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        _user_fk("user_id", nullable=False, ondelete="CASCADE"),
        sa.Column("menu_item_id", sa.Integer(), sa.ForeignKey("menu_items.id", ondelete="CASCADE"), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("selected_options", JSON_TYPE, nullable=True),
        _created(),
        _updated(),
        sa.CheckConstraint("quantity > 0", name="ck_cart_items_quantity_pos"),
    )
    op.create_index("idx_cart_items_user", "cart_items", ["user_id"])

    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        _user_fk("user_id"),
        sa.Column("restaurant_id", sa.Integer(), sa.ForeignKey("restaurants.id", ondelete="RESTRICT"), nullable=False),
        _user_fk("driver_id"),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="pending"),
        _money("subtotal"),
        _money("discount_amount", server_default="0"),
        _money("delivery_fee", server_default="0"),
        _money("total"),
        sa.Column("promo_code_id", sa.Integer(), sa.ForeignKey("promo_codes.id", ondelete="SET NULL"), nullable=True),
        sa.Column("phone", sa.String(length=32), nullable=False),
        sa.Column("delivery_address", sa.Text(), nullable=False),
        sa.Column("delivery_latitude", sa.Numeric(9, 6), nullable=True),
        sa.Column("delivery_longitude", sa.Numeric(9, 6), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("payment_method", sa.String(length=32), nullable=False, server_default="cash"),
        sa.Column("voice_note_key", sa.String(length=512), nullable=True),
        sa.Column("voice_note_content_type", sa.String(length=128), nullable=True),
        sa.Column("cancel_reason", sa.String(length=512), nullable=True),
        _user_fk("cancelled_by_user_id"),
        sa.Column("accepted_at", sa.DateTime(), nullable=True),
        sa.Column("picked_up_at", sa.DateTime(), nullable=True),
        sa.Column("delivered_at", sa.DateTime(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(), nullable=True),
        _created(),
        _updated(),
        sa.CheckConstraint("subtotal >= 0", name="ck_orders_subtotal_nonneg"),
        sa.CheckConstraint("total >= 0", name="ck_orders_total_nonneg"),
    )
    op.create_index("idx_orders_user", "orders", ["user_id"])
    op.create_index("idx_orders_restaurant_status", "orders", ["restaurant_id", "status"])
    op.create_index("idx_orders_driver", "orders", ["driver_id"])
    op.create_index("idx_orders_status_created", "orders", ["status", "created_at"])

    op.create_table(
        "order_items",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("menu_item_id", sa.Integer(), sa.ForeignKey("menu_items.id", ondelete="SET NULL"), nullable=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        _money("price"),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("selected_options", JSON_TYPE, nullable=True),
        _created(),
    )
    op.create_index("idx_order_items_order", "order_items", ["order_id"])

    op.create_table(
        "order_messages",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
        _user_fk("sender_user_id"),
        _user_fk("receiver_user_id"),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        _created(),
    )
    op.create_index("idx_order_messages_order", "order_messages", ["order_id", "created_at"])
    op.create_index("idx_order_messages_receiver_unread", "order_messages", ["receiver_user_id", "is_read"])

    op.create_table(
        "reviews",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("restaurant_id", sa.Integer(), sa.ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False),
        _user_fk("user_id"),
        sa.Column("rating", sa.Integer(), nullable=False),
        sa.Column("comment", sa.Text(), nullable=True),
        _created(),
        sa.UniqueConstraint("order_id", name="uq_reviews_order"),
        sa.CheckConstraint("rating >= 1 AND rating <= 5", name="ck_reviews_rating"),
    )
    op.create_index("idx_reviews_restaurant", "reviews", ["restaurant_id"])

    # ---------- Drivers ----------
    op.create_table(
        "driver_profiles",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        _user_fk("user_id", nullable=False, ondelete="CASCADE"),
        sa.Column("vehicle_type", sa.String(length=64), nullable=True),
        sa.Column("license_number", sa.String(length=128), nullable=True),
        sa.Column("is_available", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_validated", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("validated_at", sa.DateTime(), nullable=True),
        _user_fk("validated_by_user_id"),
        sa.Column("validation_notes", sa.Text(), nullable=True),
        sa.Column("validation_documents", JSON_TYPE, nullable=True),
        sa.Column("latitude", sa.Numeric(9, 6), nullable=True),
        sa.Column("longitude", sa.Numeric(9, 6), nullable=True),
        sa.Column("location_updated_at", sa.DateTime(), nullable=True),
        sa.Column("rating", sa.Numeric(3, 2), nullable=True),
        sa.Column("reviews_count", sa.Integer(), nullable=False, server_default="0"),
        _created(),
        _updated(),
        sa.UniqueConstraint("user_id", name="uq_driver_profiles_user"),
    )
    op.create_index("idx_driver_profiles_available", "driver_profiles", ["is_available", "is_validated"])

    op.create_table(
        "driver_reviews",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
        _user_fk("driver_user_id", nullable=False, ondelete="CASCADE"),
        _user_fk("customer_user_id"),
        sa.Column("rating", sa.Integer(), nullable=False),
        sa.Column("comment", sa.Text(), nullable=True),
        _created(),
        sa.UniqueConstraint("order_id", name="uq_driver_reviews_order"),
        sa.CheckConstraint("rating >= 1 AND rating <= 5", name="ck_driver_reviews_rating"),
    )
    op.create_index("idx_driver_reviews_driver", "driver_reviews", ["driver_user_id"])

    # ---------- Payouts ----------
    op.create_table(
        "payment_settings",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("recipient_type", sa.String(length=16), nullable=False),
        sa.Column("recipient_id", sa.Integer(), nullable=False),
        sa.Column("payment_method", sa.String(length=32), nullable=False, server_default="mobile_money"),
        sa.Column("mobile_money_number", sa.String(length=32), nullable=True),
        sa.Column("mobile_money_provider", sa.String(length=64), nullable=True),
        sa.Column("bank_name", sa.String(length=255), nullable=True),
        sa.Column("bank_account_number", sa.String(length=64), nullable=True),
        sa.Column("bank_account_name", sa.String(length=255), nullable=True),
        sa.Column("payout_frequency", sa.String(length=16), nullable=False, server_default="weekly"),
        sa.Column("custom_frequency_days", sa.Integer(), nullable=True),
        _money("min_payout_amount", server_default="5000"),
        sa.Column("auto_payout", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("next_payout_date", sa.Date(), nullable=True),
        _created(),
        _updated(),
        _user_fk("updated_by_user_id"),
        sa.UniqueConstraint("recipient_type", "recipient_id", name="uq_payment_settings_recipient"),
        sa.CheckConstraint("recipient_type IN ('driver', 'restaurant')", name="ck_payment_settings_recipient_type"),
    )

    op.create_table(
        "payouts",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("recipient_type", sa.String(length=16), nullable=False),
        sa.Column("recipient_id", sa.Integer(), nullable=False),
        _money("amount"),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("payment_method", sa.String(length=32), nullable=True),
        sa.Column("payment_details", JSON_TYPE, nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("reason", sa.String(length=512), nullable=True),
        sa.Column("is_automatic", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        _user_fk("created_by_user_id"),
        sa.Column("approved_at", sa.DateTime(), nullable=True),
        sa.Column("processed_at", sa.DateTime(), nullable=True),
        _user_fk("processed_by_user_id"),
        _created(),
        _updated(),
        sa.CheckConstraint("amount > 0", name="ck_payouts_amount_pos"),
    )
    op.create_index("idx_payouts_recipient", "payouts", ["recipient_type", "recipient_id"])
    op.create_index("idx_payouts_status", "payouts", ["status"])

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("recipient_type", sa.String(length=16), nullable=False),
        sa.Column("recipient_id", sa.Integer(), nullable=False),
        sa.Column("payout_id", sa.Integer(), sa.ForeignKey("payouts.id", ondelete="SET NULL"), nullable=True),
        sa.Column("type", sa.String(length=32), nullable=False, server_default="payout"),
        _money("amount"),
        _money("balance_before"),
        _money("balance_after"),
        sa.Column("description", sa.String(length=512), nullable=True),
        _created(),
    )
    op.create_index("idx_transactions_recipient", "transactions", ["recipient_type", "recipient_id", "created_at"])

    # ---------- Affiliates ----------
    op.create_table(
        "affiliates",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        _user_fk("user_id", nullable=False, ondelete="CASCADE"),
        sa.Column("referral_code", sa.String(length=16), nullable=False),
        sa.Column("referral_link", sa.String(length=512), nullable=True),
        sa.Column("total_referrals", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("eligible_referrals", sa.Integer(), nullable=False, server_default="0"),
        _money("available_balance", server_default="0"),
        _money("pending_balance", server_default="0"),
        _money("total_earnings", server_default="0"),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="active"),
        sa.Column("ban_reason", sa.String(length=512), nullable=True),
        sa.Column("is_eligible", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _created(),
        _updated(),
        sa.UniqueConstraint("user_id", name="uq_affiliates_user"),
        sa.UniqueConstraint("referral_code", name="uq_affiliates_referral_code"),
        sa.CheckConstraint("available_balance >= 0", name="ck_affiliates_available_nonneg"),
        sa.CheckConstraint("pending_balance >= 0", name="ck_affiliates_pending_nonneg"),
    )

    op.create_table(
        "referrals",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("referrer_id", sa.Integer(), sa.ForeignKey("affiliates.id", ondelete="CASCADE"), nullable=False),
        _user_fk("referred_user_id", nullable=False, ondelete="CASCADE"),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("orders_count", sa.Integer(), nullable=False, server_default="0"),
        _money("reward_amount", nullable=True),
        sa.Column("rewarded_at", sa.DateTime(), nullable=True),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("user_agent", sa.String(length=512), nullable=True),
        sa.Column("device_fingerprint", sa.String(length=255), nullable=True),
        sa.Column("city", sa.String(length=128), nullable=True),
        sa.Column("country", sa.String(length=128), nullable=True),
        sa.Column("is_suspicious", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("fraud_reason", sa.String(length=512), nullable=True),
        _created(),
        _updated(),
        sa.UniqueConstraint("referred_user_id", name="uq_referrals_referred_user"),
    )
    op.create_index("idx_referrals_referrer", "referrals", ["referrer_id"])

    op.create_table(
        "affiliate_withdrawals",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("affiliate_id", sa.Integer(), sa.ForeignKey("affiliates.id", ondelete="CASCADE"), nullable=False),
        _money("amount"),
        sa.Column("payment_method", sa.String(length=32), nullable=False, server_default="mobile_money"),
        sa.Column("mobile_money_number", sa.String(length=32), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("fraud_check_passed", sa.Boolean(), nullable=True),
        sa.Column("fraud_check_notes", sa.Text(), nullable=True),
        sa.Column("rejection_reason", sa.String(length=512), nullable=True),
        sa.Column("processed_at", sa.DateTime(), nullable=True),
        _user_fk("processed_by_user_id"),
        _created(),
        _updated(),
        sa.CheckConstraint("amount > 0", name="ck_affiliate_withdrawals_amount_pos"),
    )
    op.create_index("idx_affiliate_withdrawals_affiliate", "affiliate_withdrawals", ["affiliate_id"])
    op.create_index("idx_affiliate_withdrawals_status", "affiliate_withdrawals", ["status"])

    op.create_table(
        "affiliate_fraud_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("affiliate_id", sa.Integer(), sa.ForeignKey("affiliates.id", ondelete="SET NULL"), nullable=True),
        sa.Column("referral_id", sa.Integer(), sa.ForeignKey("referrals.id", ondelete="SET NULL"), nullable=True),
        sa.Column(
            "withdrawal_id",
            sa.Integer(),
            sa.ForeignKey("affiliate_withdrawals.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("severity", sa.String(length=16), nullable=False, server_default="low"),
        sa.Column("details", JSON_TYPE, nullable=True),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("user_agent", sa.String(length=512), nullable=True),
        sa.Column("device_fingerprint", sa.String(length=255), nullable=True),
        sa.Column("resolved", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("resolved_at", sa.DateTime(), nullable=True),
        _user_fk("resolved_by_user_id"),
        sa.Column("admin_notes", sa.Text(), nullable=True),
        _created(),
    )
    op.create_index("idx_affiliate_fraud_logs_resolved", "affiliate_fraud_logs", ["resolved", "created_at"])

    # ---------- Blog ----------
    op.create_table(
        "blog_categories",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("slug", sa.String(length=160), nullable=False, unique=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _created(),
        _updated(),
    )
    op.create_table(
        "blog_articles",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("slug", sa.String(length=300), nullable=False, unique=True),
        sa.Column("excerpt", sa.Text(), nullable=True),
        sa.Column("content", sa.Text(), nullable=False, server_default=""),
        sa.Column("cover_image_key", sa.String(length=1024), nullable=True),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("blog_categories.id", ondelete="SET NULL"), nullable=True),
        sa.Column("tags", JSON_TYPE, nullable=True),
        sa.Column("language", sa.String(length=8), nullable=False, server_default="fr"),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="draft"),
        sa.Column("meta_title", sa.String(length=255), nullable=True),
        sa.Column("meta_description", sa.String(length=512), nullable=True),
        _user_fk("author_id"),
        sa.Column("reading_time_minutes", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("view_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("published_at", sa.DateTime(), nullable=True),
        _created(),
        _updated(),
    )
    op.create_index("idx_blog_articles_status_published", "blog_articles", ["status", "published_at"])
    op.create_index("idx_blog_articles_category", "blog_articles", ["category_id"])

    # ---------- Support ----------
    op.create_table(
        "support_tickets",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        _user_fk("user_id"),
        sa.Column("user_type", sa.String(length=32), nullable=True),
        sa.Column("subject", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("category", sa.String(length=64), nullable=True),
        sa.Column("priority", sa.String(length=16), nullable=False, server_default="normal"),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="open"),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id", ondelete="SET NULL"), nullable=True),
        _user_fk("assigned_to_user_id"),
        _created(),
        _updated(),
    )
    op.create_index("idx_support_tickets_status_priority", "support_tickets", ["status", "priority"])
    op.create_index("idx_support_tickets_user", "support_tickets", ["user_id"])

    op.create_table(
        "ticket_messages",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("ticket_id", sa.Integer(), sa.ForeignKey("support_tickets.id", ondelete="CASCADE"), nullable=False),
        _user_fk("sender_id"),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("is_internal", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        _created(),
    )
    op.create_index("idx_ticket_messages_ticket", "ticket_messages", ["ticket_id", "created_at"])

    op.create_table(
        "faq_categories",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("icon", sa.String(length=64), nullable=True),
        sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _created(),
        _updated(),
    )
    op.create_table(
        "faq_items",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("faq_categories.id", ondelete="CASCADE"), nullable=False),
        sa.Column("question", sa.Text(), nullable=False),
        sa.Column("answer", sa.Text(), nullable=False),
        sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _created(),
        _updated(),
    )
    op.create_index("idx_faq_items_category", "faq_items", ["category_id", "display_order"])

    # ---------- Alerts ----------
    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        _user_fk("user_id", nullable=False, ondelete="CASCADE"),
        sa.Column("role", sa.String(length=32), nullable=False),
        sa.Column("type", sa.String(length=32), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id", ondelete="SET NULL"), nullable=True),
        sa.Column("url", sa.String(length=512), nullable=True),
        sa.Column("data", JSON_TYPE, nullable=True),
        sa.Column("config", JSON_TYPE, nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("read_at", sa.DateTime(), nullable=True),
        _created(),
    )
    op.create_index("idx_notifications_user_read", "notifications", ["user_id", "is_read"])
    op.create_index("idx_notifications_throttle", "notifications", ["user_id", "role", "type", "created_at"])


def downgrade() -> None:
    for table in (
        "notifications",
        "faq_items",
        "faq_categories",
        "ticket_messages",
        "support_tickets",
        "blog_articles",
        "blog_categories",
        "affiliate_fraud_logs",
        "affiliate_withdrawals",
        "referrals",
        "affiliates",
        "transactions",
        "payouts",
        "payment_settings",
        "driver_reviews",
        "driver_profiles",
        "reviews",
        "order_messages",
        "order_items",
        "orders",
        "cart_items",
        "marketing_campaigns",
        "marketing_popups",
        "marketing_banners",
        "promo_codes",
        "favorites",
        "menu_item_options",
        "menu_item_option_groups",
        "menu_items",
        "restaurants",
        "change_events",
        "platform_settings",
        "audit_events",
        "role_permissions",
        "user_roles",
        "permissions",
        "roles",
        "users",
    ):
        op.drop_table(table)
