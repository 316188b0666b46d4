# backend/app/schemas/payment.py
"""Payment schemas."""

from datetime import datetime
from typing import Optional

from pydantic import Field

from .base import Money, StandardizedModel, StrictRequestModel


class PaymentCreate(StrictRequestModel):
    appointment_id: str = Field(..., min_length=1)
    amount: Money
    currency: str = Field(..., min_length=3, max_length=3)
    gateway: str = Field(..., min_length=1, max_length=50)


class PaymentFail(StrictRequestModel):
    reason: Optional[str] = Field(None, max_length=2000)


class PaymentRefund(StrictRequestModel):
    """Direct administrative refund."""

    refund_amount: Money
    reason: Optional[str] = Field(None, max_length=2000)


class PaymentResponse(StandardizedModel):
    id: str
    appointment_id: str
    amount: Money
    currency: str
    gateway: str
    status: str
    refund_amount: Money
    refund_id: Optional[str] = None
    refund_reason: Optional[str] = None
    refunded_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
