# backend/app/core/exceptions.py
"""
Domain-specific exceptions for the appointment and refund engine.

These exceptions carry a stable error code and enough context (entity id,
current status) for the API layer to render a user-facing message.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ValidationException(DomainException):
    """Raised when business validation fails."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    status_code = status.HTTP_404_NOT_FOUND


class ConflictException(DomainException):
    """Raised when there's a conflict with existing data."""

    status_code = status.HTTP_409_CONFLICT


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    status_code = HTTP_422_UNPROCESSABLE


class ForbiddenException(DomainException):
    """Raised when user lacks permission for an action."""

    status_code = status.HTTP_403_FORBIDDEN


class ServiceException(DomainException):
    """Raised when a service operation fails."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "message": self.message or "An error occurred processing your request",
                "code": self.code,
                "details": self.details if self.details else {},
            },
        )


# Engine error kinds


def _context(entity_id: Optional[str], current_status: Optional[str], **extra: Any) -> Dict[str, Any]:
    details: Dict[str, Any] = {}
    if entity_id is not None:
        details["entity_id"] = entity_id
    if current_status is not None:
        details["current_status"] = current_status
    details.update({k: v for k, v in extra.items() if v is not None})
    return details


class Unauthorized(ForbiddenException):
    """Actor lacks the role or ownership required for the operation."""

    def __init__(
        self,
        message: str = "You are not allowed to perform this action",
        *,
        entity_id: Optional[str] = None,
        actor_id: Optional[str] = None,
        actor_role: Optional[str] = None,
    ):
        super().__init__(
            message=message,
            code="UNAUTHORIZED",
            details=_context(entity_id, None, actor_id=actor_id, actor_role=actor_role),
        )


class InvalidTransition(ConflictException):
    """Requested state change is not legal from the current state."""

    def __init__(
        self,
        entity_id: str,
        current_status: str,
        target_status: str,
        message: Optional[str] = None,
    ):
        super().__init__(
            message=message
            or f"Cannot move from '{current_status}' to '{target_status}'",
            code="INVALID_TRANSITION",
            details=_context(entity_id, current_status, target_status=target_status),
        )


class BlockedByActiveAppointment(ConflictException):
    """A booking was denied because an active appointment already exists."""

    def __init__(self, blocking_appointment_id: str, current_status: str):
        super().__init__(
            message="You already have an active appointment for this property",
            code="BLOCKED_BY_ACTIVE_APPOINTMENT",
            details=_context(blocking_appointment_id, current_status),
        )


class SelfBookingDenied(BusinessRuleException):
    """The listing owner tried to book their own listing."""

    def __init__(self, listing_id: str):
        super().__init__(
            message="You cannot book an appointment for your own property",
            code="SELF_BOOKING_DENIED",
            details={"entity_id": listing_id},
        )


class InvalidRefundAmount(ValidationException):
    """Refund amount is outside the permitted range."""

    def __init__(
        self,
        entity_id: str,
        amount: Any,
        max_allowed: Any,
        message: Optional[str] = None,
        current_status: Optional[str] = None,
    ):
        super().__init__(
            message=message or f"Refund amount must be greater than 0 and at most {max_allowed}",
            code="INVALID_REFUND_AMOUNT",
            details=_context(
                entity_id,
                current_status,
                amount=str(amount) if amount is not None else None,
                max_allowed=str(max_allowed),
            ),
        )


class NotRefundable(BusinessRuleException):
    """Payment is in a status that does not admit refunds."""

    def __init__(self, payment_id: str, current_status: str):
        super().__init__(
            message=f"Payment cannot be refunded while '{current_status}'",
            code="NOT_REFUNDABLE",
            details=_context(payment_id, current_status),
        )


class NotEligible(BusinessRuleException):
    """Refund request is not allowed for this payment."""

    def __init__(
        self,
        payment_id: str,
        message: str,
        current_status: Optional[str] = None,
        open_request_id: Optional[str] = None,
    ):
        super().__init__(
            message=message,
            code="NOT_ELIGIBLE",
            details=_context(payment_id, current_status, open_request_id=open_request_id),
        )


class DuplicatePayment(ConflictException):
    """The appointment already has a payment attached."""

    def __init__(self, appointment_id: str, payment_id: str):
        super().__init__(
            message="A payment already exists for this appointment",
            code="DUPLICATE_PAYMENT",
            details={"entity_id": appointment_id, "payment_id": payment_id},
        )


class NotFound(NotFoundException):
    """Entity does not exist."""

    def __init__(self, entity_type: str, entity_id: str):
        super().__init__(
            message=f"{entity_type} not found",
            code="NOT_FOUND",
            details={"entity_type": entity_type, "entity_id": entity_id},
        )


class OperationInProgress(ConflictException):
    """Another operation holds the serialization point for this key."""

    def __init__(self, key: str):
        super().__init__(
            message="Another operation is in progress for this resource. Please retry.",
            code="OPERATION_IN_PROGRESS",
            details={"lock_key": key},
        )


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    This exception is used when data access operations fail,
    such as database connection issues, query failures, or
    constraint violations.
    """
