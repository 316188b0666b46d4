"""
Refund Request Service.

Lifecycle of user-initiated refund disputes:

    pending --approve--> approved --refund executed--> processed
    pending --reject---> rejected --reopen--> pending

Appeals attach context to a rejected request without changing its status.
Adjudication, processing and reopening serialize on the request id;
adjudication and processing also serialize on the payment id, and the refund goes through
PaymentService.apply_refund. Every step is written to the audit log, which
keeps decisions that a reopen clears from the live row.
"""

from __future__ import annotations

from decimal import Decimal
import logging
from typing import Any, List, Optional, Tuple

from sqlalchemy.orm import Session

from app.core.clock import Clock
from app.core.engine_locks import keyed_lock, payment_key, refund_request_key
from app.core.exceptions import (
    InvalidRefundAmount,
    InvalidTransition,
    NotEligible,
    NotFound,
    NotRefundable,
    Unauthorized,
    ValidationException,
)
from app.models.audit_log import AuditEntityType, AuditLog
from app.models.payment import REFUNDABLE_STATUSES, Payment, PaymentStatus
from app.models.refund_request import (
    RefundDecision,
    RefundRequest,
    RefundRequestStatus,
    RefundRequestType,
)
from app.monitoring.prometheus_metrics import prometheus_metrics
from app.principal import Actor, ActorRole, UserPrincipal
from app.repositories.factory import RepositoryFactory
from app.services.base import BaseService
from app.services.notification_service import NotificationService
from app.services.payment_service import PaymentService, to_money

logger = logging.getLogger(__name__)

MAX_TEXT_LENGTH = 5000


class RefundRequestService(BaseService):
    """Refund request submission, adjudication, appeal and reopen."""

    def __init__(
        self,
        db: Session,
        clock: Optional[Clock] = None,
        notification_service: Optional[NotificationService] = None,
        payment_service: Optional[PaymentService] = None,
    ) -> None:
        super().__init__(db, clock)
        self.repository = RepositoryFactory.create_refund_request_repository(db)
        self.payment_repository = RepositoryFactory.create_payment_repository(db)
        self.appointment_repository = RepositoryFactory.create_appointment_repository(db)
        self.notifications = notification_service or NotificationService()
        self.payment_service = payment_service or PaymentService(
            db, clock=self.clock, notification_service=self.notifications
        )

    # Queries

    def get_refund_request(self, request_id: str) -> RefundRequest:
        request = self.repository.get_by_id(request_id)
        if request is None:
            raise NotFound("RefundRequest", request_id)
        return request

    @BaseService.measure_operation("refund_request.get_for_principal")
    def get_for_principal(self, request_id: str, principal: UserPrincipal) -> RefundRequest:
        request = self.get_refund_request(request_id)
        self._ensure_can_view(request.payment_id, principal, request.user_id)
        return request

    @BaseService.measure_operation("refund_request.status_for_payment")
    def get_status_for_payment(self, payment_id: str, principal: UserPrincipal) -> Optional[RefundRequest]:
        """Latest refund request on a payment, if any."""
        self._ensure_can_view(payment_id, principal)
        return self.repository.get_latest_for_payment(payment_id)

    @BaseService.measure_operation("refund_request.list")
    def list_refund_requests(
        self,
        principal: UserPrincipal,
        status: Optional[str] = None,
        page: int = 1,
        per_page: int = 20,
    ) -> Tuple[List[RefundRequest], int]:
        if not principal.is_admin:
            raise Unauthorized("Only administrators can list refund requests", actor_id=principal.id)
        if status is not None:
            self._parse(RefundRequestStatus, status, "status")
        return self.repository.list_requests(status=status, page=max(1, page), per_page=per_page)

    @BaseService.measure_operation("refund_request.history")
    def get_history(self, request_id: str, principal: UserPrincipal) -> List[AuditLog]:
        request = self.get_for_principal(request_id, principal)
        return self.audit_repository.history(AuditEntityType.REFUND_REQUEST.value, request.id)

    # Commands

    @BaseService.measure_operation("refund_request.create")
    def create_refund_request(
        self,
        payment_id: str,
        user_id: str,
        type: str,
        requested_amount: Any,
        reason: str,
    ) -> RefundRequest:
        """
        Open a refund request on a completed payment.

        Raises:
            NotFound: unknown payment
            Unauthorized: user is neither buyer nor seller of the appointment
            NotEligible: payment not completed, or an open request already exists
            InvalidRefundAmount: amount outside (0, payment amount] or inconsistent with ``type``
        """
        request_type = self._parse(RefundRequestType, type, "type")
        reason = self._require_text(reason, "reason")
        actor = Actor(id=user_id, role=ActorRole.BUYER)

        with keyed_lock(payment_key(payment_id)):
            with self.transaction():
                payment = self.payment_repository.get_for_update(payment_id)
                if payment is None:
                    raise NotFound("Payment", payment_id)
                appointment = self.appointment_repository.get_by_id(payment.appointment_id)
                if appointment is None or not appointment.involves(user_id):
                    raise Unauthorized(
                        "Only the buyer or seller of this appointment can request a refund",
                        entity_id=payment_id,
                        actor_id=user_id,
                    )
                if appointment.seller_id == user_id:
                    actor = Actor(id=user_id, role=ActorRole.SELLER)

                if payment.status != PaymentStatus.COMPLETED.value:
                    raise NotEligible(
                        payment.id,
                        "Refund requests can only be made for completed payments",
                        current_status=payment.status,
                    )
                open_request = self.repository.get_open_for_payment(payment.id)
                if open_request is not None:
                    raise NotEligible(
                        payment.id,
                        "A refund request is already open for this payment",
                        current_status=open_request.status,
                        open_request_id=open_request.id,
                    )

                amount = self._validate_requested_amount(payment, request_type, requested_amount)
                request = self.repository.create(
                    payment_id=payment.id,
                    user_id=user_id,
                    type=request_type.value,
                    requested_amount=amount,
                    reason=reason,
                    status=RefundRequestStatus.PENDING.value,
                    is_appealed=False,
                    case_reopened=False,
                    created_at=self.now(),
                )
                self._audit(request, "created", actor, before=None)

        prometheus_metrics.record_refund_request_event("created")
        self.log_operation("refund_request_created", request_id=request.id, payment_id=payment_id)
        self.notifications.refund_request_submitted(request)
        return request

    @BaseService.measure_operation("refund_request.decide")
    def decide_refund_request(
        self,
        request_id: str,
        admin: Actor,
        decision: str,
        admin_notes: Optional[str] = None,
        admin_refund_amount: Any = None,
    ) -> RefundRequest:
        """
        Approve or reject a pending request.

        Approval records the approved amount (the override, or the requested
        amount when none is given), then executes the refund and marks the
        request processed. The request lock and then the payment lock are held
        throughout, and the approved amount is checked against the payment's
        status and remaining refundable balance before anything is committed,
        so a request is never approved for a refund that cannot run. If the
        refund step still fails the request stays approved and
        ``process_refund_request`` can retry it.

        Raises:
            InvalidTransition: request is not pending
            InvalidRefundAmount: approved amount outside [0, remaining refundable]
            NotRefundable: payment no longer admits refunds
        """
        self._require_admin(admin, request_id)
        verdict = self._parse(RefundDecision, decision, "decision")
        payment_id = self.get_refund_request(request_id).payment_id

        with keyed_lock(refund_request_key(request_id)), keyed_lock(payment_key(payment_id)):
            with self.transaction():
                request = self._load_for_update(request_id)
                if request.status != RefundRequestStatus.PENDING.value:
                    raise InvalidTransition(request.id, request.status, verdict.value)

                payment = self.payment_repository.get_for_update(request.payment_id)
                if payment is None:
                    raise NotFound("Payment", request.payment_id)

                before = request.to_dict()
                if verdict == RefundDecision.APPROVED:
                    approved = to_money(
                        admin_refund_amount if admin_refund_amount is not None else request.requested_amount
                    )
                    self._ensure_refund_can_run(request, payment, approved)
                    request.admin_refund_amount = approved
                    request.status = RefundRequestStatus.APPROVED.value
                else:
                    request.status = RefundRequestStatus.REJECTED.value

                request.admin_notes = admin_notes
                request.processed_by = admin.id
                request.processed_at = self.now()
                self.repository.flush()
                self._audit(request, verdict.value, admin, before=before, note=admin_notes)

            prometheus_metrics.record_refund_request_event(verdict.value)
            self.log_operation(
                "refund_request_decided",
                request_id=request.id,
                decision=verdict.value,
                admin_id=admin.id,
            )

            if verdict == RefundDecision.APPROVED:
                request = self._execute_approved(request.id, admin)

        self.notifications.refund_request_decided(request)
        return request

    @BaseService.measure_operation("refund_request.process")
    def process_refund_request(self, request_id: str, admin: Actor) -> RefundRequest:
        """Execute the refund of an approved request that has not been processed yet."""
        self._require_admin(admin, request_id)
        payment_id = self.get_refund_request(request_id).payment_id
        with keyed_lock(refund_request_key(request_id)), keyed_lock(payment_key(payment_id)):
            request = self._execute_approved(request_id, admin)
        self.notifications.refund_request_decided(request)
        return request

    @BaseService.measure_operation("refund_request.appeal")
    def appeal_refund_request(
        self,
        request_id: str,
        user_id: str,
        appeal_reason: str,
        appeal_text: Optional[str] = None,
    ) -> RefundRequest:
        """Attach an appeal to a rejected request; the status stays rejected."""
        appeal_reason = self._require_text(appeal_reason, "appealReason")
        if appeal_text is not None and len(appeal_text) > MAX_TEXT_LENGTH:
            raise ValidationException(
                f"appealText must be at most {MAX_TEXT_LENGTH} characters", code="INVALID_APPEAL"
            )

        with keyed_lock(refund_request_key(request_id)):
            with self.transaction():
                request = self._load_for_update(request_id)
                if request.user_id != user_id:
                    raise Unauthorized(
                        "Only the requester can appeal this refund request",
                        entity_id=request.id,
                        actor_id=user_id,
                    )
                if request.status != RefundRequestStatus.REJECTED.value:
                    raise InvalidTransition(
                        request.id,
                        request.status,
                        "appealed",
                        message="Only rejected refund requests can be appealed",
                    )
                if request.is_appealed:
                    raise InvalidTransition(
                        request.id,
                        request.status,
                        "appealed",
                        message="This decision has already been appealed",
                    )

                before = request.to_dict()
                request.is_appealed = True
                request.appeal_reason = appeal_reason
                request.appeal_text = appeal_text
                request.appeal_submitted_at = self.now()
                self.repository.flush()
                self._audit(
                    request,
                    "appealed",
                    Actor(id=user_id, role=ActorRole.BUYER),
                    before=before,
                    note=appeal_reason,
                )

        prometheus_metrics.record_refund_request_event("appealed")
        self.log_operation("refund_request_appealed", request_id=request.id, user_id=user_id)
        self.notifications.refund_request_appealed(request)
        return request

    @BaseService.measure_operation("refund_request.reopen")
    def reopen_refund_request(self, request_id: str, admin: Actor, reopen_reason: str) -> RefundRequest:
        """
        Put a rejected request back to pending for a new adjudication round.

        The previous decision fields are cleared on the row; the audit entry
        written here carries them in ``before``.
        """
        self._require_admin(admin, request_id)
        reopen_reason = self._require_text(reopen_reason, "reopenReason")

        with keyed_lock(refund_request_key(request_id)):
            with self.transaction():
                request = self._load_for_update(request_id)
                if request.status != RefundRequestStatus.REJECTED.value:
                    raise InvalidTransition(
                        request.id,
                        request.status,
                        RefundRequestStatus.PENDING.value,
                        message="Only rejected refund requests can be reopened",
                    )

                before = request.to_dict()
                now = self.now()
                request.status = RefundRequestStatus.PENDING.value
                request.case_reopened = True
                request.case_reopened_at = now
                request.case_reopened_by = admin.id
                request.reopen_reason = reopen_reason
                request.processed_at = None
                request.processed_by = None
                request.admin_notes = None
                request.admin_refund_amount = None
                request.is_appealed = False
                self.repository.flush()
                self._audit(request, "reopened", admin, before=before, note=reopen_reason)

        prometheus_metrics.record_refund_request_event("reopened")
        self.log_operation("refund_request_reopened", request_id=request.id, admin_id=admin.id)
        self.notifications.refund_request_reopened(request)
        return request

    # Helpers

    def _execute_approved(self, request_id: str, admin: Actor) -> RefundRequest:
        """Caller holds the request lock, then the payment lock."""
        with self.transaction():
            request = self._load_for_update(request_id)
            if request.status != RefundRequestStatus.APPROVED.value:
                raise InvalidTransition(request.id, request.status, RefundRequestStatus.PROCESSED.value)

            payment = self.payment_repository.get_for_update(request.payment_id)
            if payment is None:
                raise NotFound("Payment", request.payment_id)

            approved = to_money(request.admin_refund_amount or Decimal("0"))
            if approved > 0:
                self.payment_service.apply_refund(
                    payment,
                    approved,
                    reason=f"Refund request {request.id}: {request.reason}",
                    actor=admin,
                )

            before = request.to_dict()
            request.status = RefundRequestStatus.PROCESSED.value
            request.processed_by = admin.id
            request.processed_at = self.now()
            self.repository.flush()
            self._audit(
                request,
                "processed",
                admin,
                before=before,
                note=f"refund_id={payment.refund_id}" if approved > 0 else "no refund due",
            )

        prometheus_metrics.record_refund_request_event("processed")
        self.log_operation("refund_request_processed", request_id=request.id, amount=str(approved))
        if approved > 0:
            self.payment_service.notify_refund(payment)
        return request

    def _ensure_refund_can_run(self, request: RefundRequest, payment: Payment, approved: Decimal) -> None:
        """The checks ``PaymentService.apply_refund`` makes, run before the approval is recorded."""
        total = to_money(payment.amount)
        if approved < 0 or approved > total:
            raise InvalidRefundAmount(
                request.id,
                approved,
                total,
                message=f"Approved amount must be between 0 and {total}",
                current_status=request.status,
            )
        if approved == 0:
            return
        if payment.status not in REFUNDABLE_STATUSES:
            raise NotRefundable(payment.id, payment.status)
        remaining = to_money(payment.remaining_refundable)
        if approved > remaining:
            raise InvalidRefundAmount(
                request.id,
                approved,
                remaining,
                message=f"Approved amount exceeds the {remaining} still refundable on this payment",
                current_status=request.status,
            )

    def _load_for_update(self, request_id: str) -> RefundRequest:
        request = self.repository.get_for_update(request_id)
        if request is None:
            raise NotFound("RefundRequest", request_id)
        return request

    def _audit(
        self,
        request: RefundRequest,
        action: str,
        actor: Actor,
        before: Optional[dict[str, Any]],
        note: Optional[str] = None,
    ) -> None:
        self.write_audit(
            AuditEntityType.REFUND_REQUEST.value,
            request.id,
            action,
            actor,
            before=before,
            after=request.to_dict(),
            note=note,
        )

    def _validate_requested_amount(
        self,
        payment: Payment,
        request_type: RefundRequestType,
        requested_amount: Any,
    ) -> Decimal:
        total = to_money(payment.amount)
        if requested_amount is None:
            if request_type == RefundRequestType.FULL:
                return total
            raise InvalidRefundAmount(
                payment.id, None, total, message="requestedAmount is required for partial refunds"
            )

        amount = to_money(requested_amount)
        if amount <= 0 or amount > total:
            raise InvalidRefundAmount(payment.id, amount, total, current_status=payment.status)
        if request_type == RefundRequestType.FULL and amount != total:
            raise InvalidRefundAmount(
                payment.id,
                amount,
                total,
                message=f"A full refund request must ask for the full amount of {total}",
            )
        if request_type == RefundRequestType.PARTIAL and amount == total:
            raise InvalidRefundAmount(
                payment.id,
                amount,
                total,
                message="A partial refund request must ask for less than the full amount",
            )
        return amount

    def _ensure_can_view(
        self,
        payment_id: str,
        principal: UserPrincipal,
        requester_id: Optional[str] = None,
    ) -> None:
        if principal.is_admin or principal.id == requester_id:
            return
        payment = self.payment_repository.get_by_id(payment_id)
        if payment is None:
            raise NotFound("Payment", payment_id)
        appointment = self.appointment_repository.get_by_id(payment.appointment_id)
        if appointment is None or not appointment.involves(principal.id):
            raise Unauthorized(entity_id=payment_id, actor_id=principal.id)

    def _require_admin(self, actor: Actor, entity_id: str) -> None:
        if actor.role != ActorRole.ADMIN:
            raise Unauthorized(
                "Only administrators can adjudicate refund requests",
                entity_id=entity_id,
                actor_id=actor.id,
                actor_role=actor.role.value,
            )

    def _require_text(self, value: Optional[str], field: str) -> str:
        cleaned = (value or "").strip()
        if not cleaned:
            raise ValidationException(f"{field} is required", code="MISSING_FIELD", details={"field": field})
        if len(cleaned) > MAX_TEXT_LENGTH:
            raise ValidationException(
                f"{field} must be at most {MAX_TEXT_LENGTH} characters",
                code="INVALID_FIELD",
                details={"field": field},
            )
        return cleaned

    @staticmethod
    def _parse(enum_cls: Any, value: Any, field: str) -> Any:
        try:
            return enum_cls(value)
        except ValueError as exc:
            allowed = ", ".join(member.value for member in enum_cls)
            raise ValidationException(
                f"{field} must be one of: {allowed}",
                code="INVALID_FIELD",
                details={"field": field, "value": str(value)},
            ) from exc
