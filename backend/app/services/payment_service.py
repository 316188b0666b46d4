"""
Payment Service.

Attaches one payment per appointment, records gateway completion and runs
direct admin refunds. Refunds serialize on the payment id; the same
``apply_refund`` path executes approved refund requests.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
import logging
from typing import Any, Optional

import ulid
from sqlalchemy.orm import Session

from app.core.clock import Clock
from app.core.engine_locks import appointment_payment_key, keyed_lock, payment_key
from app.core.exceptions import (
    DuplicatePayment,
    InvalidRefundAmount,
    InvalidTransition,
    NotFound,
    NotRefundable,
    Unauthorized,
    ValidationException,
)
from app.models.appointment import Appointment
from app.models.audit_log import AuditEntityType
from app.models.payment import REFUNDABLE_STATUSES, Currency, Payment, PaymentStatus
from app.monitoring.prometheus_metrics import prometheus_metrics
from app.principal import Actor, ActorRole, UserPrincipal
from app.repositories.factory import RepositoryFactory
from app.services.base import BaseService
from app.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def to_money(value: Any) -> Decimal:
    """Normalize an amount to a two-decimal Decimal."""
    try:
        return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError) as exc:
        raise ValidationException(
            f"Invalid amount: {value}", code="INVALID_AMOUNT", details={"amount": str(value)}
        ) from exc


def new_refund_id() -> str:
    return f"refund_{ulid.ULID()}"


def status_for_refund(amount: Decimal, refunded: Decimal) -> str:
    """Payment status implied by the cumulative refunded amount."""
    if refunded >= amount:
        return PaymentStatus.REFUNDED.value
    if refunded > 0:
        return PaymentStatus.PARTIALLY_REFUNDED.value
    return PaymentStatus.COMPLETED.value


class PaymentService(BaseService):
    """Payment record management and direct admin refunds."""

    def __init__(
        self,
        db: Session,
        clock: Optional[Clock] = None,
        notification_service: Optional[NotificationService] = None,
    ) -> None:
        super().__init__(db, clock)
        self.repository = RepositoryFactory.create_payment_repository(db)
        self.appointment_repository = RepositoryFactory.create_appointment_repository(db)
        self.notifications = notification_service or NotificationService()

    def get_payment(self, payment_id: str) -> Payment:
        payment = self.repository.get_by_id(payment_id)
        if payment is None:
            raise NotFound("Payment", payment_id)
        return payment

    def get_appointment_for(self, payment: Payment) -> Appointment:
        appointment = self.appointment_repository.get_by_id(payment.appointment_id)
        if appointment is None:
            raise NotFound("Appointment", payment.appointment_id)
        return appointment

    @BaseService.measure_operation("payment.get_for_principal")
    def get_for_principal(self, payment_id: str, principal: UserPrincipal) -> Payment:
        payment = self.get_payment(payment_id)
        if not principal.is_admin and not self.get_appointment_for(payment).involves(principal.id):
            raise Unauthorized(entity_id=payment_id, actor_id=principal.id)
        return payment

    @BaseService.measure_operation("payment.attach")
    def attach_payment(
        self,
        appointment_id: str,
        amount: Any,
        currency: str,
        gateway: str,
        actor: Optional[Actor] = None,
    ) -> Payment:
        """
        Create the pending payment for an appointment.

        Raises:
            NotFound: unknown appointment
            DuplicatePayment: the appointment already has a payment
            ValidationException: non-positive amount, unknown currency or empty gateway
        """
        money = to_money(amount)
        if money <= 0:
            raise ValidationException(
                "Payment amount must be greater than 0",
                code="INVALID_AMOUNT",
                details={"amount": str(money)},
            )
        try:
            currency_value = Currency(currency).value
        except ValueError as exc:
            raise ValidationException(
                "Currency must be INR or USD", code="INVALID_CURRENCY", details={"currency": currency}
            ) from exc
        if not gateway or not gateway.strip():
            raise ValidationException("Payment gateway is required", code="INVALID_GATEWAY")

        with keyed_lock(appointment_payment_key(appointment_id)):
            with self.transaction():
                appointment = self.appointment_repository.get_by_id(appointment_id)
                if appointment is None:
                    raise NotFound("Appointment", appointment_id)
                if (
                    actor is not None
                    and actor.role not in (ActorRole.ADMIN, ActorRole.SYSTEM)
                    and actor.id != appointment.buyer_id
                ):
                    raise Unauthorized(entity_id=appointment_id, actor_id=actor.id)

                existing = self.repository.get_by_appointment_id(appointment_id)
                if existing is not None:
                    raise DuplicatePayment(appointment_id, existing.id)

                payment = self.repository.create(
                    appointment_id=appointment_id,
                    amount=money,
                    currency=currency_value,
                    gateway=gateway.strip(),
                    status=PaymentStatus.PENDING.value,
                    refund_amount=Decimal("0.00"),
                )
                self.write_audit(
                    AuditEntityType.PAYMENT.value,
                    payment.id,
                    "attached",
                    actor,
                    before=None,
                    after=payment.to_dict(),
                )

        self.log_operation("payment_attached", payment_id=payment.id, appointment_id=appointment_id)
        return payment

    @BaseService.measure_operation("payment.complete")
    def complete_payment(self, payment_id: str, actor: Optional[Actor] = None) -> Payment:
        """Mark a pending payment completed at the current clock time."""
        return self._settle(payment_id, PaymentStatus.COMPLETED, actor)

    @BaseService.measure_operation("payment.fail")
    def fail_payment(self, payment_id: str, reason: Optional[str] = None, actor: Optional[Actor] = None) -> Payment:
        """Mark a pending payment failed (gateway verification did not succeed)."""
        return self._settle(payment_id, PaymentStatus.FAILED, actor, reason)

    def _settle(
        self,
        payment_id: str,
        target: PaymentStatus,
        actor: Optional[Actor],
        reason: Optional[str] = None,
    ) -> Payment:
        with keyed_lock(payment_key(payment_id)):
            with self.transaction():
                payment = self.repository.get_for_update(payment_id)
                if payment is None:
                    raise NotFound("Payment", payment_id)
                if payment.status != PaymentStatus.PENDING.value:
                    raise InvalidTransition(payment.id, payment.status, target.value)

                before = payment.to_dict()
                payment.status = target.value
                if target == PaymentStatus.COMPLETED:
                    payment.completed_at = self.now()
                else:
                    payment.failure_reason = reason
                self.repository.flush()
                self.write_audit(
                    AuditEntityType.PAYMENT.value,
                    payment.id,
                    target.value,
                    actor,
                    before=before,
                    after=payment.to_dict(),
                    note=reason,
                )

        self.log_operation(f"payment_{target.value}", payment_id=payment.id)
        return payment

    @BaseService.measure_operation("payment.refund")
    def refund(self, payment_id: str, admin: Actor, refund_amount: Any, reason: Optional[str]) -> Payment:
        """
        Direct admin refund.

        Raises:
            Unauthorized: caller is not an administrator
            NotFound: unknown payment
            NotRefundable: payment status does not admit refunds
            InvalidRefundAmount: amount <= 0 or above what is still refundable
        """
        if admin.role != ActorRole.ADMIN:
            raise Unauthorized("Only administrators can issue refunds", entity_id=payment_id, actor_id=admin.id)

        with keyed_lock(payment_key(payment_id)):
            with self.transaction():
                payment = self.repository.get_for_update(payment_id)
                if payment is None:
                    raise NotFound("Payment", payment_id)
                self.apply_refund(payment, refund_amount, reason, admin)

        self.notify_refund(payment)
        return payment

    def apply_refund(self, payment: Payment, refund_amount: Any, reason: Optional[str], actor: Actor) -> Payment:
        """
        Move money back inside the caller's transaction and payment lock.

        The caller must hold ``payment_key(payment.id)`` and have loaded
        ``payment`` with ``get_for_update``.
        """
        if payment.status not in REFUNDABLE_STATUSES:
            raise NotRefundable(payment.id, payment.status)

        amount = to_money(refund_amount)
        remaining = to_money(payment.remaining_refundable)
        if amount <= 0 or amount > remaining:
            raise InvalidRefundAmount(
                payment.id,
                amount,
                remaining,
                current_status=payment.status,
            )

        before = payment.to_dict()
        payment.refund_amount = to_money(Decimal(payment.refund_amount or 0) + amount)
        payment.refunded_at = self.now()
        payment.refund_reason = reason
        payment.refund_id = new_refund_id()
        payment.status = status_for_refund(to_money(payment.amount), payment.refund_amount)
        self.repository.flush()

        self.write_audit(
            AuditEntityType.PAYMENT.value,
            payment.id,
            "refunded",
            actor,
            before=before,
            after={**payment.to_dict(), "refunded_now": str(amount)},
            note=reason,
        )
        prometheus_metrics.record_refund(payment.currency, payment.status)
        self.log_operation(
            "payment_refunded",
            payment_id=payment.id,
            amount=str(amount),
            total_refunded=str(payment.refund_amount),
            status=payment.status,
        )
        return payment

    def notify_refund(self, payment: Payment) -> None:
        try:
            appointment = self.appointment_repository.get_by_id(payment.appointment_id)
            self.notifications.payment_refunded(payment, appointment.buyer_id if appointment else None)
        except Exception as exc:
            self.logger.error(f"Failed to send refund notification for payment {payment.id}: {str(exc)}")
