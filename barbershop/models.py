import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKeyConstraint,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, declarative_base, mapped_column, relationship

Base = declarative_base()
metadata = Base.metadata


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


class User(Base):
    __tablename__ = "users"
    __table_args__ = (Index("ix_users_email", "email", unique=True),)

    id = mapped_column(String(36), primary_key=True, default=new_id)
    email = mapped_column(String(255), nullable=False)
    password_hash = mapped_column(String(128), nullable=False)
    full_name = mapped_column(String(120))
    role = mapped_column(Enum("USER", "ADMIN", name="user_role"), nullable=False, default="USER")
    fcm_token = mapped_column(String(255))
    loyalty_points = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    created_at = mapped_column(DateTime, server_default=text("CURRENT_TIMESTAMP"))

    loyalty_state: Mapped[Optional["LoyaltyState"]] = relationship(
        "LoyaltyState", uselist=False, back_populates="user"
    )
    loyalty_account: Mapped[Optional["LoyaltyAccount"]] = relationship(
        "LoyaltyAccount", uselist=False, back_populates="user"
    )


class Offer(Base):
    """In-store service catalog used by the earn flow."""

    __tablename__ = "offers"

    id = mapped_column(String(36), primary_key=True, default=new_id)
    title = mapped_column(String(120), nullable=False)
    price = mapped_column(Integer, nullable=False)
    is_active = mapped_column(Boolean, nullable=False, default=True)
    created_at = mapped_column(DateTime, server_default=text("CURRENT_TIMESTAMP"))


# ---------------------------------------------------------------------------
# Legacy loyalty
# ---------------------------------------------------------------------------


class LoyaltyState(Base):
    __tablename__ = "loyalty_state"
    __table_args__ = (
        ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE", name="fk_loyalty_state_user"),
        Index("ix_loyalty_state_user", "user_id", unique=True),
        CheckConstraint("stamps >= 0", name="ck_loyalty_state_stamps"),
    )

    id = mapped_column(String(36), primary_key=True, default=new_id)
    user_id = mapped_column(String(36), nullable=False)
    stamps = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    updated_at = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    user: Mapped["User"] = relationship("User", back_populates="loyalty_state")


class LoyaltyRedemptionToken(Base):
    """Single-use QR that resets a full stamp card."""

    __tablename__ = "loyalty_redemption_tokens"
    __table_args__ = (
        ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE", name="fk_lrt_user"),
        Index("ix_lrt_token_hash", "token_hash", unique=True),
        Index("ix_lrt_user", "user_id"),
    )

    id = mapped_column(String(36), primary_key=True, default=new_id)
    user_id = mapped_column(String(36), nullable=False)
    token_hash = mapped_column(String(64), nullable=False)
    expires_at = mapped_column(DateTime, nullable=False)
    used_at = mapped_column(DateTime)
    created_at = mapped_column(DateTime, default=utcnow)


class LoyaltyRedemption(Base):
    __tablename__ = "loyalty_redemptions"
    __table_args__ = (
        ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE", name="fk_lr_user"),
        Index("ix_lr_user", "user_id"),
    )

    id = mapped_column(String(36), primary_key=True, default=new_id)
    user_id = mapped_column(String(36), nullable=False)
    previous_stamps = mapped_column(Integer, nullable=False)
    redeemed_at = mapped_column(DateTime, nullable=False, default=utcnow)


class LoyaltyQrToken(Base):
    """Single-use QR an admin scans to add one point to the legacy card."""

    __tablename__ = "loyalty_qr_tokens"
    __table_args__ = (
        ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE", name="fk_lqt_user"),
        Index("ix_lqt_token_hash", "token_hash", unique=True),
        Index("ix_lqt_user", "user_id"),
    )

    id = mapped_column(String(36), primary_key=True, default=new_id)
    user_id = mapped_column(String(36), nullable=False)
    token_hash = mapped_column(String(64), nullable=False)
    expires_at = mapped_column(DateTime, nullable=False)
    used_at = mapped_column(DateTime)
    created_at = mapped_column(DateTime, default=utcnow)


class LoyaltyCoupon(Base):
    __tablename__ = "loyalty_coupons"
    __table_args__ = (
        ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE", name="fk_lc_user"),
        Index("ix_lc_user", "user_id"),
        Index("ix_lc_qr_token_hash", "qr_token_hash", unique=True),
    )

    id = mapped_column(String(36), primary_key=True, default=new_id)
    user_id = mapped_column(String(36), nullable=False)
    qr_token_hash = mapped_column(String(64))
    qr_expires_at = mapped_column(DateTime)
    qr_used_at = mapped_column(DateTime)
    redeemed_at = mapped_column(DateTime)
    created_at = mapped_column(DateTime, nullable=False, default=utcnow)


# ---------------------------------------------------------------------------
# Loyalty v2
# ---------------------------------------------------------------------------


class LoyaltyAccount(Base):
    __tablename__ = "loyalty_accounts"
    __table_args__ = (
        ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE", name="fk_la_user"),
        Index("ix_la_user", "user_id", unique=True),
        CheckConstraint("current_balance >= 0", name="ck_la_balance"),
        CheckConstraint("lifetime_earned >= 0", name="ck_la_lifetime"),
    )

    id = mapped_column(String(36), primary_key=True, default=new_id)
    user_id = mapped_column(String(36), nullable=False)
    current_balance = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    lifetime_earned = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    enrolled_at = mapped_column(DateTime, nullable=False, default=utcnow)

    user: Mapped["User"] = relationship("User", back_populates="loyalty_account")
    transactions: Mapped[List["LoyaltyTransaction"]] = relationship(
        "LoyaltyTransaction", uselist=True, back_populates="account"
    )
    vouchers: Mapped[List["LoyaltyRedemptionVoucher"]] = relationship(
        "LoyaltyRedemptionVoucher", uselist=True, back_populates="account"
    )


class LoyaltyAccountQrToken(Base):
    __tablename__ = "loyalty_account_qr_tokens"
    __table_args__ = (
        ForeignKeyConstraint(["account_id"], ["loyalty_accounts.id"], ondelete="CASCADE", name="fk_laqt_account"),
        Index("ix_laqt_token_hash", "token_hash", unique=True),
        Index("ix_laqt_account", "account_id"),
    )

    id = mapped_column(String(36), primary_key=True, default=new_id)
    account_id = mapped_column(String(36), nullable=False)
    token_hash = mapped_column(String(64), nullable=False)
    expires_at = mapped_column(DateTime, nullable=False)
    used_at = mapped_column(DateTime)
    created_at = mapped_column(DateTime, default=utcnow)


class LoyaltyReward(Base):
    __tablename__ = "loyalty_rewards"
    __table_args__ = (CheckConstraint("cost_points > 0", name="ck_reward_cost"),)

    id = mapped_column(String(36), primary_key=True, default=new_id)
    name = mapped_column(String(120), nullable=False)
    cost_points = mapped_column(Integer, nullable=False)
    description = mapped_column(Text)
    image_url = mapped_column(String(500))
    is_active = mapped_column(Boolean, nullable=False, default=True)


class LoyaltyRedemptionVoucher(Base):
    __tablename__ = "loyalty_redemption_vouchers"
    __table_args__ = (
        ForeignKeyConstraint(["account_id"], ["loyalty_accounts.id"], ondelete="CASCADE", name="fk_lrv_account"),
        ForeignKeyConstraint(["reward_id"], ["loyalty_rewards.id"], name="fk_lrv_reward"),
        Index("ix_lrv_account", "account_id"),
        Index("ix_lrv_qr_token_hash", "qr_token_hash", unique=True),
    )

    id = mapped_column(String(36), primary_key=True, default=new_id)
    account_id = mapped_column(String(36), nullable=False)
    reward_id = mapped_column(String(36), nullable=False)
    points_spent = mapped_column(Integer, nullable=False)
    status = mapped_column(
        Enum("PENDING", "USED", name="voucher_status"), nullable=False, default="PENDING"
    )
    qr_token_hash = mapped_column(String(64))
    qr_expires_at = mapped_column(DateTime)
    qr_used_at = mapped_column(DateTime)
    redeemed_at = mapped_column(DateTime, nullable=False, default=utcnow)
    used_at = mapped_column(DateTime)

    account: Mapped["LoyaltyAccount"] = relationship("LoyaltyAccount", back_populates="vouchers")
    reward: Mapped["LoyaltyReward"] = relationship("LoyaltyReward")


class LoyaltyTransaction(Base):
    __tablename__ = "loyalty_transactions"
    __table_args__ = (
        ForeignKeyConstraint(["account_id"], ["loyalty_accounts.id"], ondelete="CASCADE", name="fk_lt_account"),
        Index("ix_lt_account_created", "account_id", "created_at"),
    )

    id = mapped_column(String(36), primary_key=True, default=new_id)
    account_id = mapped_column(String(36), nullable=False)
    type = mapped_column(Enum("EARN", "REDEEM", name="loyalty_transaction_type"), nullable=False)
    points = mapped_column(Integer, nullable=False)
    description = mapped_column(String(255))
    reference_id = mapped_column(String(36))
    created_at = mapped_column(DateTime, nullable=False, default=utcnow)

    account: Mapped["LoyaltyAccount"] = relationship("LoyaltyAccount", back_populates="transactions")


# ---------------------------------------------------------------------------
# Booking
# ---------------------------------------------------------------------------


class TimifyReservation(Base):
    __tablename__ = "timify_reservations"
    __table_args__ = (
        ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE", name="fk_tr_user"),
        Index("ix_tr_user", "user_id"),
    )

    id = mapped_column(String(36), primary_key=True, default=new_id)
    user_id = mapped_column(String(36), nullable=False)
    branch_id = mapped_column(String(64), nullable=False)
    service_id = mapped_column(String(64), nullable=False)
    resource_id = mapped_column(String(64))
    reserved_date = mapped_column(Date, nullable=False)
    reserved_time = mapped_column(String(5), nullable=False)
    timify_reservation_id = mapped_column(String(128), nullable=False)
    timify_secret = mapped_column(String(255), nullable=False)
    expires_at = mapped_column(DateTime, nullable=False)
    used_at = mapped_column(DateTime)
    created_at = mapped_column(DateTime, nullable=False, default=utcnow)


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE", name="fk_booking_user"),
        Index("ix_booking_user_start", "user_id", "start_date_time", "id"),
    )

    id = mapped_column(String(36), primary_key=True, default=new_id)
    user_id = mapped_column(String(36), nullable=False)
    branch_id = mapped_column(String(64), nullable=False)
    service_id = mapped_column(String(64), nullable=False)
    resource_id = mapped_column(String(64))
    start_date_time = mapped_column(DateTime, nullable=False)
    timify_appointment_id = mapped_column(String(128))
    status = mapped_column(
        Enum("CONFIRMED", "CANCELED", name="booking_status"), nullable=False, default="CONFIRMED"
    )
    created_at = mapped_column(DateTime, nullable=False, default=utcnow)


class BranchCache(Base):
    __tablename__ = "branch_cache"

    id = mapped_column(String(64), primary_key=True)
    name = mapped_column(String(255), nullable=False)
    address = mapped_column(String(255))
    city = mapped_column(String(120))
    country = mapped_column(String(120))
    timezone = mapped_column(String(64))
    updated_at = mapped_column(DateTime, default=utcnow, onupdate=utcnow)


class ServiceCache(Base):
    __tablename__ = "service_cache"

    branch_id = mapped_column(String(64), primary_key=True)
    service_id = mapped_column(String(64), primary_key=True)
    name = mapped_column(String(255), nullable=False)
    duration_minutes = mapped_column(Integer)
    price = mapped_column(Integer)
    updated_at = mapped_column(DateTime, default=utcnow, onupdate=utcnow)
