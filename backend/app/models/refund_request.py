"""
Refund request model.

A buyer or seller disputes a completed payment; an administrator approves or
rejects it. Rejected requests can be appealed by the requester and reopened
by an administrator. Every decision is also written to the audit log, so
clearing the decision columns on reopen never loses history.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

import ulid
from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Index, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class RefundRequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    PROCESSED = "processed"


class RefundRequestType(str, Enum):
    FULL = "full"
    PARTIAL = "partial"


class RefundDecision(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"


OPEN_REFUND_REQUEST_STATUSES = (
    RefundRequestStatus.PENDING.value,
    RefundRequestStatus.APPROVED.value,
)


class RefundRequest(Base):
    """User-initiated refund dispute against a payment."""

    __tablename__ = "refund_requests"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    payment_id: Mapped[str] = mapped_column(String(26), ForeignKey("payments.id"), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    type: Mapped[str] = mapped_column(String(10), nullable=False)
    requested_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    admin_refund_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=RefundRequestStatus.PENDING.value, index=True
    )

    # Adjudication
    admin_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    processed_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Appeal
    is_appealed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    appeal_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    appeal_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    appeal_submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Reopen
    case_reopened: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    case_reopened_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    case_reopened_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    reopen_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("type IN ('full', 'partial')", name="ck_refund_requests_type"),
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'processed')",
            name="ck_refund_requests_status",
        ),
        CheckConstraint("requested_amount > 0", name="ck_refund_requests_requested_positive"),
        CheckConstraint(
            "admin_refund_amount IS NULL OR admin_refund_amount >= 0",
            name="ck_refund_requests_admin_amount_non_negative",
        ),
        Index("ix_refund_requests_payment_status", "payment_id", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<RefundRequest(id={self.id}, payment={self.payment_id}, status={self.status}, "
            f"requested={self.requested_amount}, approved={self.admin_refund_amount})>"
        )

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_REFUND_REQUEST_STATUSES

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "payment_id": self.payment_id,
            "user_id": self.user_id,
            "type": self.type,
            "requested_amount": str(self.requested_amount),
            "admin_refund_amount": (
                str(self.admin_refund_amount) if self.admin_refund_amount is not None else None
            ),
            "reason": self.reason,
            "status": self.status,
            "admin_notes": self.admin_notes,
            "processed_by": self.processed_by,
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
            "is_appealed": self.is_appealed,
            "appeal_reason": self.appeal_reason,
            "appeal_text": self.appeal_text,
            "appeal_submitted_at": (
                self.appeal_submitted_at.isoformat() if self.appeal_submitted_at else None
            ),
            "case_reopened": self.case_reopened,
            "case_reopened_at": self.case_reopened_at.isoformat() if self.case_reopened_at else None,
            "case_reopened_by": self.case_reopened_by,
            "reopen_reason": self.reopen_reason,
        }
