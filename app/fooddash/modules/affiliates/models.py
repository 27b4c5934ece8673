from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.fooddash.models import Base, JSONType, User


class Affiliate(Base):
    __tablename__ = "affiliates"
    __table_args__ = (
        UniqueConstraint("user_id", name="uq_affiliates_user"),
        UniqueConstraint("referral_code", name="uq_affiliates_referral_code"),
        CheckConstraint("available_balance >= 0", name="ck_affiliates_available_nonneg"),
        CheckConstraint("pending_balance >= 0", name="ck_affiliates_pending_nonneg"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    referral_code: Mapped[str] = mapped_column(String(16), nullable=False)  # KAL + 6 chars
    referral_link: Mapped[str | None] = mapped_column(String(512), nullable=True)

    total_referrals: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    eligible_referrals: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    available_balance: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    pending_balance: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    total_earnings: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active")  # active | banned
    ban_reason: Mapped[str | None] = mapped_column(String(512), nullable=True)
    is_eligible: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    user: Mapped[User] = relationship("User", lazy="selectin")


class Referral(Base):
    __tablename__ = "referrals"
    __table_args__ = (
        # A user can be referred once.
        UniqueConstraint("referred_user_id", name="uq_referrals_referred_user"),
        Index("idx_referrals_referrer", "referrer_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    referrer_id: Mapped[int] = mapped_column(ForeignKey("affiliates.id", ondelete="CASCADE"), nullable=False)
    referred_user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")  # pending | eligible | rewarded | rejected
    orders_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reward_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    rewarded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)
    device_fingerprint: Mapped[str | None] = mapped_column(String(255), nullable=True)
    city: Mapped[str | None] = mapped_column(String(128), nullable=True)
    country: Mapped[str | None] = mapped_column(String(128), nullable=True)
    is_suspicious: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    fraud_reason: Mapped[str | None] = mapped_column(String(512), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    referrer: Mapped[Affiliate] = relationship("Affiliate", lazy="selectin")
    referred_user: Mapped[User] = relationship("User", lazy="selectin")


class AffiliateWithdrawal(Base):
    __tablename__ = "affiliate_withdrawals"
    __table_args__ = (
        Index("idx_affiliate_withdrawals_affiliate", "affiliate_id"),
        Index("idx_affiliate_withdrawals_status", "status"),
        CheckConstraint("amount > 0", name="ck_affiliate_withdrawals_amount_pos"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    affiliate_id: Mapped[int] = mapped_column(ForeignKey("affiliates.id", ondelete="CASCADE"), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    payment_method: Mapped[str] = mapped_column(String(32), nullable=False, default="mobile_money")
    mobile_money_number: Mapped[str | None] = mapped_column(String(32), nullable=True)
    # pending | pending_review | approved | rejected | paid
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    fraud_check_passed: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    fraud_check_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(String(512), nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    processed_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    affiliate: Mapped[Affiliate] = relationship("Affiliate", lazy="selectin")


class FraudLog(Base):
    __tablename__ = "affiliate_fraud_logs"
    __table_args__ = (Index("idx_affiliate_fraud_logs_resolved", "resolved", "created_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    affiliate_id: Mapped[int | None] = mapped_column(ForeignKey("affiliates.id", ondelete="SET NULL"), nullable=True)
    referral_id: Mapped[int | None] = mapped_column(ForeignKey("referrals.id", ondelete="SET NULL"), nullable=True)
    withdrawal_id: Mapped[int | None] = mapped_column(ForeignKey("affiliate_withdrawals.id", ondelete="SET NULL"), nullable=True)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)  # self_referral | duplicate_device | ...
    severity: Mapped[str] = mapped_column(String(16), nullable=False, default="low")  # low | medium | high
    details: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)
    device_fingerprint: Mapped[str | None] = mapped_column(String(255), nullable=True)
    resolved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    resolved_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    admin_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
