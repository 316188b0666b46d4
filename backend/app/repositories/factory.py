# backend/app/repositories/factory.py
"""
Repository Factory.

Provides centralized creation of repository instances,
ensuring consistent initialization and dependency injection.
"""

from typing import TYPE_CHECKING, Any

from sqlalchemy.orm import Session

from .base_repository import BaseRepository

# Avoid circular imports
if TYPE_CHECKING:
    from .appointment_repository import AppointmentRepository
    from .audit_repository import AuditRepository
    from .payment_repository import PaymentRepository
    from .refund_request_repository import RefundRequestRepository


class RepositoryFactory:
    """
    Factory class for creating repository instances.

    Centralizes repository creation to ensure consistent initialization
    and makes it easy to swap implementations if needed.
    """

    @staticmethod
    def create_base_repository(db: Session, model: Any) -> BaseRepository:
        return BaseRepository(db, model)

    @staticmethod
    def create_appointment_repository(db: Session) -> "AppointmentRepository":
        """Create repository for appointment operations."""
        from .appointment_repository import AppointmentRepository

        return AppointmentRepository(db)

    @staticmethod
    def create_payment_repository(db: Session) -> "PaymentRepository":
        """Create repository for payment operations."""
        from .payment_repository import PaymentRepository

        return PaymentRepository(db)

    @staticmethod
    def create_refund_request_repository(db: Session) -> "RefundRequestRepository":
        """Create repository for refund request operations."""
        from .refund_request_repository import RefundRequestRepository

        return RefundRequestRepository(db)

    @staticmethod
    def create_audit_repository(db: Session) -> "AuditRepository":
        """Create repository for audit log writes and history."""
        from .audit_repository import AuditRepository

        return AuditRepository(db)
