"""admin flags, bundles, cash deposits, muted alerts

Revision ID: 0002_admin_flags_bundles_cash
Revises: 0001_initial
Create Date: 2026-10-18

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0002_admin_flags_bundles_cash"
down_revision: Union[str, Sequence[str], None] = "0001_initial"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ADMIN_FLAGS = (
    ("can_manage_restaurants", True),
    ("can_manage_drivers", True),
    ("can_manage_orders", True),
    ("can_manage_users", True),
    ("can_manage_payments", True),
    ("can_manage_settings", True),
    ("can_manage_marketing", True),
    ("can_manage_support", True),
    ("can_manage_admins", False),
)


def _flag(name: str, default: bool) -> sa.Column:
    return sa.Column(name, sa.Boolean(), nullable=False, server_default=sa.text("true" if default else "false"))


def upgrade() -> None:
    op.add_column("notifications", sa.Column("muted", sa.Boolean(), nullable=False, server_default=sa.text("false")))

    op.create_table(
        "admin_permissions",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True),
        *[_flag(name, default) for name, default in ADMIN_FLAGS],
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "bundles",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("restaurant_id", sa.Integer(), sa.ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category", sa.String(length=16), nullable=False),
        sa.Column("price", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("is_available", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("price >= 0", name="ck_bundles_price_nonneg"),
    )
    op.create_index("idx_bundles_restaurant", "bundles", ["restaurant_id", "category"])

    op.create_table(
        "cash_deposits",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("driver_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("reason", sa.String(length=512), nullable=True),
        sa.Column("received_at", sa.DateTime(), nullable=True),
        sa.Column("processed_at", sa.DateTime(), nullable=True),
        sa.Column("processed_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount > 0", name="ck_cash_deposits_amount_pos"),
    )
    op.create_index("idx_cash_deposits_driver", "cash_deposits", ["driver_user_id", "status"])


def downgrade() -> None:
    op.drop_index("idx_cash_deposits_driver", table_name="cash_deposits")
    op.drop_table("cash_deposits")
    op.drop_index("idx_bundles_restaurant", table_name="bundles")
    op.drop_table("bundles")
    op.drop_table("admin_permissions")
    op.drop_column("notifications", "muted")
