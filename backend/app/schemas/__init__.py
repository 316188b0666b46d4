# backend/app/schemas/__init__.py
"""
Pydantic schemas for the appointment and refund engine API.

Everything on the wire is camelCase; see ``base.StandardizedModel``.
"""

from .appointment import (
    AdminAppointmentCreate,
    AppointmentCreate,
    AppointmentListResponse,
    AppointmentReinitiate,
    AppointmentResponse,
    AppointmentStatusUpdate,
    CanBookResponse,
)
from .base import Money, StandardizedModel, StrictRequestModel
from .payment import PaymentCreate, PaymentFail, PaymentRefund, PaymentResponse
from .refund_request import (
    AuditEntryResponse,
    RefundRequestAppeal,
    RefundRequestCreate,
    RefundRequestDecision,
    RefundRequestListResponse,
    RefundRequestReopen,
    RefundRequestResponse,
    RefundRequestStatusResponse,
)

__all__ = [
    "AdminAppointmentCreate",
    "AppointmentCreate",
    "AppointmentListResponse",
    "AppointmentReinitiate",
    "AppointmentResponse",
    "AppointmentStatusUpdate",
    "AuditEntryResponse",
    "CanBookResponse",
    "Money",
    "PaymentCreate",
    "PaymentFail",
    "PaymentRefund",
    "PaymentResponse",
    "RefundRequestAppeal",
    "RefundRequestCreate",
    "RefundRequestDecision",
    "RefundRequestListResponse",
    "RefundRequestReopen",
    "RefundRequestResponse",
    "RefundRequestStatusResponse",
    "StandardizedModel",
    "StrictRequestModel",
]
