"""
Payment model.

One payment belongs to exactly one appointment. ``refund_amount`` only ever
grows and never exceeds ``amount``; ``status`` follows from it once money has
been returned.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

import ulid
from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"


class Currency(str, Enum):
    INR = "INR"
    USD = "USD"


REFUNDABLE_STATUSES = frozenset({PaymentStatus.COMPLETED.value, PaymentStatus.PARTIALLY_REFUNDED.value})


class Payment(Base):
    """Payment captured for an appointment."""

    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    appointment_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("appointments.id"), unique=True, nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default=Currency.INR.value)
    gateway: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PaymentStatus.PENDING.value, index=True
    )

    refund_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    refund_id: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    refund_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    refunded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Timestamps
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payments_amount_positive"),
        CheckConstraint(
            "refund_amount >= 0 AND refund_amount <= amount", name="ck_payments_refund_bounds"
        ),
        CheckConstraint("currency IN ('INR', 'USD')", name="ck_payments_currency"),
        CheckConstraint(
            "status IN ('pending', 'completed', 'failed', 'refunded', 'partially_refunded')",
            name="ck_payments_status",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<Payment(id={self.id}, appointment={self.appointment_id}, amount={self.amount} "
            f"{self.currency}, refunded={self.refund_amount}, status={self.status})>"
        )

    @property
    def remaining_refundable(self) -> Decimal:
        return Decimal(self.amount) - Decimal(self.refund_amount or 0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "appointment_id": self.appointment_id,
            "amount": str(self.amount),
            "currency": self.currency,
            "gateway": self.gateway,
            "status": self.status,
            "refund_amount": str(self.refund_amount or 0),
            "refund_id": self.refund_id,
            "refund_reason": self.refund_reason,
            "refunded_at": self.refunded_at.isoformat() if self.refunded_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
