"""
Database models for the appointment and refund engine.

- Appointment: buyer viewing requests per listing
- Payment: one payment per appointment with cumulative refunds
- RefundRequest: user disputes adjudicated by administrators
- AuditLog: append-only change history
"""

from .appointment import Appointment, AppointmentPurpose, AppointmentStatus
from .audit_log import AuditEntityType, AuditLog
from .payment import Currency, Payment, PaymentStatus
from .refund_request import (
    RefundDecision,
    RefundRequest,
    RefundRequestStatus,
    RefundRequestType,
)

__all__ = [
    "Appointment",
    "AppointmentPurpose",
    "AppointmentStatus",
    "AuditEntityType",
    "AuditLog",
    "Currency",
    "Payment",
    "PaymentStatus",
    "RefundDecision",
    "RefundRequest",
    "RefundRequestStatus",
    "RefundRequestType",
]
