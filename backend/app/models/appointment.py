# backend/app/models/appointment.py
"""
Appointment model.

An appointment is a buyer's request to view, buy or rent a listing on a
given date and time. Rows are never deleted: cancelled, rejected and
completed appointments stay in place for conflict checks and history.
"""

from datetime import date as date_type, datetime, time as time_type
from enum import Enum
import logging
from typing import Any, Optional, cast

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    Time,
)
from sqlalchemy.sql import func
import ulid

from ..database import Base

logger = logging.getLogger(__name__)


class AppointmentStatus(str, Enum):
    """Appointment lifecycle statuses (wire values)."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CANCELLED_BY_BUYER = "cancelledByBuyer"
    CANCELLED_BY_SELLER = "cancelledBySeller"
    COMPLETED = "completed"


class AppointmentPurpose(str, Enum):
    BUY = "buy"
    RENT = "rent"


class Appointment(Base):
    """
    A scheduled viewing between a buyer and a listing's seller.

    ``buyer_reinitiation_count`` is mutated only by the cancel-by-buyer
    transition in AppointmentService.
    """

    __tablename__ = "appointments"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))

    buyer_id = Column(String(64), nullable=False)
    listing_id = Column(String(64), nullable=False)
    seller_id = Column(String(64), nullable=False, index=True)
    booked_by = Column(String(64), nullable=True)

    date = Column(Date, nullable=False, index=True)
    time = Column(Time, nullable=False)
    purpose = Column(String(10), nullable=False)
    message = Column(Text, nullable=True)

    status = Column(String(20), nullable=False, default=AppointmentStatus.PENDING.value, index=True)
    buyer_reinitiation_count = Column(Integer, nullable=False, default=0)

    cancel_reason = Column(Text, nullable=True)
    cancelled_by = Column(String(64), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'accepted', 'rejected', "
            "'cancelledByBuyer', 'cancelledBySeller', 'completed')",
            name="ck_appointments_status",
        ),
        CheckConstraint("purpose IN ('buy', 'rent')", name="ck_appointments_purpose"),
        CheckConstraint("buyer_reinitiation_count >= 0", name="ck_appointments_reinit_non_negative"),
        Index("ix_appointments_buyer_listing", "buyer_id", "listing_id"),
    )

    def __init__(self, **kwargs: Any) -> None:
        """Initialize as pending with a zero counter unless given."""
        super().__init__(**kwargs)
        if not self.status:
            self.status = AppointmentStatus.PENDING.value
        if self.buyer_reinitiation_count is None:
            self.buyer_reinitiation_count = 0
        logger.info(
            f"Creating appointment for buyer {self.buyer_id} on listing {self.listing_id}"
        )

    def __repr__(self) -> str:
        return (
            f"<Appointment {self.id}: buyer={self.buyer_id}, listing={self.listing_id}, "
            f"date={self.date}, time={self.time}, status={self.status}, "
            f"reinitiations={self.buyer_reinitiation_count}>"
        )

    @property
    def status_enum(self) -> AppointmentStatus:
        return AppointmentStatus(cast(str, self.status))

    @property
    def scheduled_date(self) -> date_type:
        return cast(date_type, self.date)

    @property
    def scheduled_time(self) -> time_type:
        return cast(time_type, self.time)

    def involves(self, user_id: str) -> bool:
        return user_id in (self.buyer_id, self.seller_id)

    def to_dict(self) -> dict[str, Any]:
        """Snapshot used for audit entries."""
        updated_at = cast(Optional[datetime], self.updated_at)
        return {
            "id": self.id,
            "buyer_id": self.buyer_id,
            "listing_id": self.listing_id,
            "seller_id": self.seller_id,
            "booked_by": self.booked_by,
            "date": self.date.isoformat() if self.date else None,
            "time": self.time.strftime("%H:%M") if self.time else None,
            "purpose": self.purpose,
            "status": self.status,
            "buyer_reinitiation_count": self.buyer_reinitiation_count,
            "cancel_reason": self.cancel_reason,
            "cancelled_by": self.cancelled_by,
            "updated_at": updated_at.isoformat() if updated_at else None,
        }
