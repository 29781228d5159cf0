"""Dining session models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Numeric,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from qrdine.db.base import Base, utcnow
from qrdine.models.validators import non_negative


class SessionStatus(str, Enum):
    """Lifecycle of one dining visit."""

    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class PaymentStatus(str, Enum):
    """Aggregate settlement state of a session."""

    PENDING = "PENDING"
    PARTIAL = "PARTIAL"
    PAID = "PAID"
    REFUNDED = "REFUNDED"


class TableSession(Base):
    """One dining visit at one table, from QR scan to settlement."""

    __tablename__ = "sessions"
    __table_args__ = (
        # At most one ACTIVE session per table
        Index(
            "uq_sessions_one_active_per_table",
            "table_id",
            unique=True,
            sqlite_where=text("status = 'ACTIVE'"),
            postgresql_where=text("status = 'ACTIVE'"),
        ),
        Index("ix_sessions_table_status", "table_id", "status"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    table_id: Mapped[int] = mapped_column(
        ForeignKey("tables.id", ondelete="CASCADE"), nullable=False, index=True
    )
    restaurant_id: Mapped[int] = mapped_column(
        ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False, index=True
    )
    status: Mapped[SessionStatus] = mapped_column(
        SQLEnum(SessionStatus), default=SessionStatus.ACTIVE, nullable=False
    )
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    ended_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"), nullable=False)
    paid_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"), nullable=False)
    payment_status: Mapped[PaymentStatus] = mapped_column(
        SQLEnum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False
    )
    is_ready_for_billing: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    coupon_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("coupons.id", ondelete="SET NULL"), nullable=True
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Relationships
    table: Mapped["Table"] = relationship("Table")
    restaurant: Mapped["Restaurant"] = relationship("Restaurant")
    coupon: Mapped[Optional["Coupon"]] = relationship("Coupon")
    cart_items: Mapped[list["CartItem"]] = relationship(
        "CartItem", back_populates="session", cascade="all, delete-orphan", order_by="CartItem.id"
    )
    orders: Mapped[list["Order"]] = relationship(
        "Order", back_populates="session", order_by="Order.id"
    )
    payments: Mapped[list["Payment"]] = relationship(
        "Payment", back_populates="session", order_by="Payment.id"
    )

    @validates("total_amount", "paid_amount")
    def _validate_amounts(self, key, value):
        return non_negative(key, value)
