from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, Date, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.fooddash.models import Base, JSONType


class PaymentSettings(Base):
    """
    How and when a recipient is paid. `recipient_id` is a user id for drivers
    and a restaurant id for restaurants.
    """

    __tablename__ = "payment_settings"
    __table_args__ = (
        UniqueConstraint("recipient_type", "recipient_id", name="uq_payment_settings_recipient"),
        CheckConstraint("recipient_type IN ('driver', 'restaurant')", name="ck_payment_settings_recipient_type"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    recipient_type: Mapped[str] = mapped_column(String(16), nullable=False)
    recipient_id: Mapped[int] = mapped_column(Integer, nullable=False)

    payment_method: Mapped[str] = mapped_column(String(32), nullable=False, default="mobile_money")
    mobile_money_number: Mapped[str | None] = mapped_column(String(32), nullable=True)
    mobile_money_provider: Mapped[str | None] = mapped_column(String(64), nullable=True)  # MTN | Airtel
    bank_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    bank_account_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    bank_account_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    payout_frequency: Mapped[str] = mapped_column(String(16), nullable=False, default="weekly")
    custom_frequency_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    min_payout_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=5000)
    auto_payout: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    next_payout_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)


class Payout(Base):
    __tablename__ = "payouts"
    __table_args__ = (
        Index("idx_payouts_recipient", "recipient_type", "recipient_id"),
        Index("idx_payouts_status", "status"),
        CheckConstraint("amount > 0", name="ck_payouts_amount_pos"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    recipient_type: Mapped[str] = mapped_column(String(16), nullable=False)
    recipient_id: Mapped[int] = mapped_column(Integer, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")  # pending|approved|paid|rejected

    payment_method: Mapped[str | None] = mapped_column(String(32), nullable=True)
    payment_details: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    reason: Mapped[str | None] = mapped_column(String(512), nullable=True)
    is_automatic: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    processed_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


class Transaction(Base):
    """Ledger line. Balances are the recipient's unpaid earnings around the movement."""

    __tablename__ = "transactions"
    __table_args__ = (Index("idx_transactions_recipient", "recipient_type", "recipient_id", "created_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    recipient_type: Mapped[str] = mapped_column(String(16), nullable=False)
    recipient_id: Mapped[int] = mapped_column(Integer, nullable=False)
    payout_id: Mapped[int | None] = mapped_column(ForeignKey("payouts.id", ondelete="SET NULL"), nullable=True)
    type: Mapped[str] = mapped_column(String(32), nullable=False, default="payout")
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    balance_before: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    balance_after: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    description: Mapped[str | None] = mapped_column(String(512), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


class CashDeposit(Base):
    """
    Cash collected on delivery and handed back by a driver. Pending and
    received deposits are reserved against the driver's cash on hand until an
    admin validates or rejects them.
    """

    __tablename__ = "cash_deposits"
    __table_args__ = (
        Index("idx_cash_deposits_driver", "driver_user_id", "status"),
        CheckConstraint("amount > 0", name="ck_cash_deposits_amount_pos"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    driver_user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")  # pending|received|validated|rejected
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    reason: Mapped[str | None] = mapped_column(String(512), nullable=True)

    received_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    processed_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
