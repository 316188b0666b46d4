"""
Repository layer for the engine.

Repositories own data access; services own transactions.
"""

from .appointment_repository import AppointmentRepository
from .audit_repository import AuditRepository
from .base_repository import BaseRepository, IRepository
from .factory import RepositoryFactory
from .payment_repository import PaymentRepository
from .refund_request_repository import RefundRequestRepository

__all__ = [
    "AppointmentRepository",
    "AuditRepository",
    "BaseRepository",
    "IRepository",
    "PaymentRepository",
    "RefundRequestRepository",
    "RepositoryFactory",
]
