# backend/app/schemas/refund_request.py
"""Refund request schemas."""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import Field

from .base import Money, StandardizedModel, StrictRequestModel


class RefundRequestCreate(StrictRequestModel):
    payment_id: str = Field(..., min_length=1)
    type: Literal["full", "partial"]
    requested_amount: Optional[Money] = None
    reason: str = Field(..., min_length=1, max_length=5000)


class RefundRequestDecision(StrictRequestModel):
    status: Literal["approved", "rejected"]
    admin_notes: Optional[str] = Field(None, max_length=5000)
    admin_refund_amount: Optional[Money] = None


class RefundRequestAppeal(StrictRequestModel):
    appeal_reason: str = Field(..., min_length=1, max_length=5000)
    appeal_text: Optional[str] = Field(None, max_length=5000)


class RefundRequestReopen(StrictRequestModel):
    reopen_reason: str = Field(..., min_length=1, max_length=5000)


class RefundRequestResponse(StandardizedModel):
    id: str
    payment_id: str
    user_id: str
    type: str
    requested_amount: Money
    admin_refund_amount: Optional[Money] = None
    reason: str
    status: str
    admin_notes: Optional[str] = None
    processed_by: Optional[str] = None
    processed_at: Optional[datetime] = None
    is_appealed: bool = False
    appeal_reason: Optional[str] = None
    appeal_text: Optional[str] = None
    appeal_submitted_at: Optional[datetime] = None
    case_reopened: bool = False
    case_reopened_at: Optional[datetime] = None
    case_reopened_by: Optional[str] = None
    reopen_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class RefundRequestListResponse(StandardizedModel):
    items: List[RefundRequestResponse]
    total: int
    page: int
    per_page: int
    has_next: bool


class RefundRequestStatusResponse(StandardizedModel):
    """Latest request on a payment, or none."""

    payment_id: str
    refund_request: Optional[RefundRequestResponse] = None


class AuditEntryResponse(StandardizedModel):
    id: str
    action: str
    actor_id: Optional[str] = None
    actor_role: Optional[str] = None
    note: Optional[str] = None
    occurred_at: datetime
    before: Optional[Dict[str, Any]] = None
    after: Optional[Dict[str, Any]] = None
