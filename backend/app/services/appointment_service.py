"""
Appointment Service.

Creates appointments behind the conflict resolver and applies every status
transition. Each operation holds the (buyer, listing) serialization point and
runs in one transaction together with its audit row; notifications go out
after commit.
"""

from __future__ import annotations

from datetime import date, time
import logging
from typing import List, Optional, Sequence

from sqlalchemy.orm import Session

from app.core.clock import Clock
from app.core.config import settings
from app.core.engine_locks import appointment_pair_key, keyed_lock
from app.core.exceptions import (
    BlockedByActiveAppointment,
    InvalidTransition,
    NotFound,
    Unauthorized,
    ValidationException,
)
from app.integrations.listing_directory import ListingDirectory
from app.models.appointment import Appointment, AppointmentPurpose, AppointmentStatus
from app.models.audit_log import AuditEntityType
from app.monitoring.prometheus_metrics import prometheus_metrics
from app.principal import SYSTEM_ACTOR, Actor, ActorRole, UserPrincipal
from app.repositories.factory import RepositoryFactory
from app.services.appointment_rules import is_outdated, rule_for
from app.services.base import BaseService
from app.services.conflict_resolver import BookingDecision, ConflictResolver
from app.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

MAX_NOTES_LENGTH = 2000


class AppointmentService(BaseService):
    """Appointment booking and lifecycle workflow."""

    def __init__(
        self,
        db: Session,
        clock: Optional[Clock] = None,
        listing_directory: Optional[ListingDirectory] = None,
        notification_service: Optional[NotificationService] = None,
        conflict_resolver: Optional[ConflictResolver] = None,
    ) -> None:
        super().__init__(db, clock)
        self.repository = RepositoryFactory.create_appointment_repository(db)
        self.conflict_resolver = conflict_resolver or ConflictResolver(
            db,
            clock=self.clock,
            repository=self.repository,
            listing_directory=listing_directory,
        )
        self.notifications = notification_service or NotificationService()
        self.reinitiation_limit = self.conflict_resolver.reinitiation_limit

    # Queries

    def can_book(self, buyer_id: str, listing_id: str) -> BookingDecision:
        return self.conflict_resolver.can_book(buyer_id, listing_id)

    def get_appointment(self, appointment_id: str) -> Appointment:
        appointment = self.repository.get_by_id(appointment_id)
        if appointment is None:
            raise NotFound("Appointment", appointment_id)
        return appointment

    @BaseService.measure_operation("appointment.get_for_principal")
    def get_for_principal(self, appointment_id: str, principal: UserPrincipal) -> Appointment:
        appointment = self.get_appointment(appointment_id)
        if not principal.is_admin and not appointment.involves(principal.id):
            raise Unauthorized(entity_id=appointment_id, actor_id=principal.id)
        return appointment

    @BaseService.measure_operation("appointment.list")
    def list_appointments(
        self,
        principal: UserPrincipal,
        *,
        role: Optional[ActorRole] = None,
        statuses: Optional[Sequence[str]] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[Appointment]:
        """Buyer view, seller view, or (admins without a role filter) everything."""
        if role == ActorRole.SELLER:
            return self.repository.list_for_seller(principal.id, statuses, skip, limit)
        if role is None and principal.is_admin:
            return self.repository.list_all(statuses, skip, limit)
        return self.repository.list_for_buyer(principal.id, statuses, skip, limit)

    def is_outdated(self, appointment: Appointment) -> bool:
        return is_outdated(appointment.scheduled_date, appointment.scheduled_time, self.now())

    def actor_for(
        self,
        appointment: Appointment,
        principal: UserPrincipal,
        requested_role: Optional[ActorRole] = None,
    ) -> Actor:
        """
        Resolve the role a caller plays on an appointment.

        An explicit ``requested_role`` is honoured only when the caller holds it.
        """
        held: List[ActorRole] = []
        if principal.is_admin:
            held.append(ActorRole.ADMIN)
        if principal.id == appointment.seller_id:
            held.append(ActorRole.SELLER)
        if principal.id == appointment.buyer_id:
            held.append(ActorRole.BUYER)

        if requested_role is not None:
            if requested_role not in held:
                raise Unauthorized(
                    entity_id=appointment.id,
                    actor_id=principal.id,
                    actor_role=requested_role.value,
                )
            return Actor(id=principal.id, role=requested_role)
        if not held:
            raise Unauthorized(entity_id=appointment.id, actor_id=principal.id)
        # Parties act as themselves before falling back to admin powers.
        for role in (ActorRole.BUYER, ActorRole.SELLER, ActorRole.ADMIN):
            if role in held:
                return Actor(id=principal.id, role=role)
        raise Unauthorized(entity_id=appointment.id, actor_id=principal.id)

    # Booking

    @BaseService.measure_operation("appointment.create")
    def create_appointment(
        self,
        buyer_id: str,
        listing_id: str,
        appointment_date: date,
        appointment_time: time,
        purpose: str,
        notes: Optional[str] = None,
        booked_by: Optional[Actor] = None,
    ) -> Appointment:
        """
        Book an appointment for a buyer.

        Args:
            buyer_id: Buyer the appointment belongs to
            listing_id: Listing to view
            appointment_date: Scheduled date (engine timezone)
            appointment_time: Scheduled time (engine timezone)
            purpose: 'buy' or 'rent'
            notes: Optional message to the seller
            booked_by: Booking caller; defaults to the buyer themself

        Raises:
            SelfBookingDenied: buyer owns the listing
            BlockedByActiveAppointment: an active appointment already exists
            ValidationException: bad purpose, notes or a schedule in the past
        """
        actor = booked_by or Actor(id=buyer_id, role=ActorRole.BUYER)
        if actor.role == ActorRole.BUYER and actor.id != buyer_id:
            raise Unauthorized("You can only book appointments for yourself", actor_id=actor.id)

        purpose_value = self._validate_purpose(purpose)
        if notes is not None and len(notes) > MAX_NOTES_LENGTH:
            raise ValidationException(
                f"Notes must be at most {MAX_NOTES_LENGTH} characters",
                code="INVALID_NOTES",
            )
        self._ensure_future_schedule(appointment_date, appointment_time)

        seller_id = self.conflict_resolver.ensure_not_self_booking(buyer_id, listing_id)

        with keyed_lock(appointment_pair_key(buyer_id, listing_id)):
            with self.transaction():
                decision = self.conflict_resolver.can_book(buyer_id, listing_id)
                if not decision.allowed and decision.blocking_appointment is not None:
                    blocking = decision.blocking_appointment
                    raise BlockedByActiveAppointment(blocking.id, blocking.status)

                appointment = self.repository.create(
                    buyer_id=buyer_id,
                    listing_id=listing_id,
                    seller_id=seller_id,
                    booked_by=actor.id,
                    date=appointment_date,
                    time=appointment_time,
                    purpose=purpose_value,
                    message=notes,
                    status=AppointmentStatus.PENDING.value,
                    buyer_reinitiation_count=self.repository.get_max_reinitiation_count(
                        buyer_id, listing_id
                    ),
                    created_at=self.now(),
                )
                self.write_audit(
                    AuditEntityType.APPOINTMENT.value,
                    appointment.id,
                    "created",
                    actor,
                    before=None,
                    after=appointment.to_dict(),
                )

        self.log_operation(
            "appointment_created",
            appointment_id=appointment.id,
            buyer_id=buyer_id,
            listing_id=listing_id,
            booked_by=actor.id,
        )
        self.notifications.appointment_created(appointment)
        return appointment

    def create_appointment_for_buyer(
        self,
        admin: Actor,
        buyer_id: str,
        listing_id: str,
        appointment_date: date,
        appointment_time: time,
        purpose: str,
        notes: Optional[str] = None,
    ) -> Appointment:
        """Admin-initiated booking on behalf of a buyer; same rules as a buyer booking."""
        if admin.role != ActorRole.ADMIN:
            raise Unauthorized("Only administrators can book on behalf of a buyer", actor_id=admin.id)
        return self.create_appointment(
            buyer_id,
            listing_id,
            appointment_date,
            appointment_time,
            purpose,
            notes,
            booked_by=admin,
        )

    # Transitions

    @BaseService.measure_operation("appointment.transition")
    def transition_appointment(
        self,
        appointment_id: str,
        actor: Actor,
        target_status: AppointmentStatus | str,
        reason: Optional[str] = None,
    ) -> Appointment:
        """
        Move an appointment to ``target_status``.

        Raises:
            NotFound: unknown appointment
            Unauthorized: actor is not a party with a role allowed for this edge
            InvalidTransition: edge not legal from the current status
        """
        target = self._parse_status(appointment_id, target_status)
        snapshot = self.get_appointment(appointment_id)

        with keyed_lock(appointment_pair_key(snapshot.buyer_id, snapshot.listing_id)):
            with self.transaction():
                appointment = self.repository.get_for_update(appointment_id)
                if appointment is None:
                    raise NotFound("Appointment", appointment_id)

                self._authorize_party(appointment, actor)
                current = appointment.status_enum
                rule = rule_for(target)
                if rule is None:
                    raise InvalidTransition(appointment.id, current.value, target.value)
                if actor.role not in rule.roles:
                    raise Unauthorized(
                        f"A {actor.role.value} cannot move an appointment to '{target.value}'",
                        entity_id=appointment.id,
                        actor_id=actor.id,
                        actor_role=actor.role.value,
                    )
                if current not in rule.sources:
                    raise InvalidTransition(appointment.id, current.value, target.value)
                if target == AppointmentStatus.COMPLETED and not self.is_outdated(appointment):
                    raise InvalidTransition(
                        appointment.id,
                        current.value,
                        target.value,
                        message="An appointment can only be completed after its scheduled time",
                    )

                before = appointment.to_dict()
                appointment.status = target.value
                if target == AppointmentStatus.CANCELLED_BY_BUYER:
                    appointment.buyer_reinitiation_count = (appointment.buyer_reinitiation_count or 0) + 1
                if target in (AppointmentStatus.CANCELLED_BY_BUYER, AppointmentStatus.CANCELLED_BY_SELLER):
                    appointment.cancelled_by = actor.id
                    appointment.cancel_reason = reason
                self.repository.flush()

                self.write_audit(
                    AuditEntityType.APPOINTMENT.value,
                    appointment.id,
                    target.value,
                    actor,
                    before=before,
                    after=appointment.to_dict(),
                    note=reason,
                )

        prometheus_metrics.record_transition(current.value, target.value)
        self.log_operation(
            "appointment_transitioned",
            appointment_id=appointment.id,
            from_status=current.value,
            to_status=target.value,
            actor_id=actor.id,
            actor_role=actor.role.value,
        )
        self.notifications.appointment_transitioned(appointment, actor.id)
        return appointment

    @BaseService.measure_operation("appointment.reinitiate")
    def reinitiate_appointment(
        self,
        appointment_id: str,
        actor: Actor,
        appointment_date: date,
        appointment_time: time,
    ) -> Appointment:
        """
        Bring a buyer-cancelled appointment back to pending with a new schedule.

        Allowed while the reinitiation counter is below the limit. The counter is
        not touched here; only the next buyer cancellation increments it.
        """
        if actor.role not in (ActorRole.BUYER, ActorRole.ADMIN):
            raise Unauthorized(entity_id=appointment_id, actor_id=actor.id, actor_role=actor.role.value)
        self._ensure_future_schedule(appointment_date, appointment_time)
        snapshot = self.get_appointment(appointment_id)

        with keyed_lock(appointment_pair_key(snapshot.buyer_id, snapshot.listing_id)):
            with self.transaction():
                appointment = self.repository.get_for_update(appointment_id)
                if appointment is None:
                    raise NotFound("Appointment", appointment_id)
                self._authorize_party(appointment, actor)

                current = appointment.status_enum
                if current != AppointmentStatus.CANCELLED_BY_BUYER:
                    raise InvalidTransition(
                        appointment.id,
                        current.value,
                        AppointmentStatus.PENDING.value,
                        message="Only appointments cancelled by the buyer can be reinitiated",
                    )
                if (appointment.buyer_reinitiation_count or 0) >= self.reinitiation_limit:
                    raise InvalidTransition(
                        appointment.id,
                        current.value,
                        AppointmentStatus.PENDING.value,
                        message=f"Reinitiation limit of {self.reinitiation_limit} reached",
                    )

                decision = self.conflict_resolver.can_book(
                    appointment.buyer_id,
                    appointment.listing_id,
                    exclude_appointment_id=appointment.id,
                )
                if not decision.allowed and decision.blocking_appointment is not None:
                    blocking = decision.blocking_appointment
                    raise BlockedByActiveAppointment(blocking.id, blocking.status)

                before = appointment.to_dict()
                appointment.status = AppointmentStatus.PENDING.value
                appointment.date = appointment_date
                appointment.time = appointment_time
                appointment.cancel_reason = None
                appointment.cancelled_by = None
                self.repository.flush()

                self.write_audit(
                    AuditEntityType.APPOINTMENT.value,
                    appointment.id,
                    "reinitiated",
                    actor,
                    before=before,
                    after=appointment.to_dict(),
                )

        prometheus_metrics.record_transition(current.value, AppointmentStatus.PENDING.value)
        self.log_operation("appointment_reinitiated", appointment_id=appointment.id, actor_id=actor.id)
        self.notifications.appointment_reinitiated(appointment)
        return appointment

    @BaseService.measure_operation("appointment.complete_elapsed")
    def complete_elapsed_appointments(self, limit: Optional[int] = None) -> int:
        """
        Housekeeping sweep: accepted appointments whose time has passed become completed.

        Idempotent; appointments changed concurrently are skipped.

        Returns:
            Number of appointments completed
        """
        batch = limit or settings.completion_sweep_batch_size
        now = self.now()
        candidates = [
            appointment
            for appointment in self.repository.get_accepted_on_or_before(now.date(), batch)
            if is_outdated(appointment.scheduled_date, appointment.scheduled_time, now)
        ]

        completed = 0
        for appointment in candidates:
            try:
                self.transition_appointment(appointment.id, SYSTEM_ACTOR, AppointmentStatus.COMPLETED)
                completed += 1
            except InvalidTransition as exc:
                self.logger.info(
                    f"Skipping appointment {appointment.id} in completion sweep: {exc.message}"
                )
        if completed:
            self.logger.info(f"Completion sweep marked {completed} appointments completed")
        return completed

    # Helpers

    def _authorize_party(self, appointment: Appointment, actor: Actor) -> None:
        if actor.role in (ActorRole.ADMIN, ActorRole.SYSTEM):
            return
        if actor.role == ActorRole.BUYER and actor.id == appointment.buyer_id:
            return
        if actor.role == ActorRole.SELLER and actor.id == appointment.seller_id:
            return
        raise Unauthorized(
            entity_id=appointment.id,
            actor_id=actor.id,
            actor_role=actor.role.value,
        )

    def _parse_status(self, appointment_id: str, value: AppointmentStatus | str) -> AppointmentStatus:
        try:
            return AppointmentStatus(value)
        except ValueError as exc:
            raise ValidationException(
                f"Unknown appointment status '{value}'",
                code="INVALID_STATUS",
                details={"entity_id": appointment_id},
            ) from exc

    def _validate_purpose(self, purpose: str) -> str:
        try:
            return AppointmentPurpose(purpose).value
        except ValueError as exc:
            raise ValidationException(
                "Purpose must be 'buy' or 'rent'",
                code="INVALID_PURPOSE",
                details={"purpose": purpose},
            ) from exc

    def _ensure_future_schedule(self, appointment_date: date, appointment_time: time) -> None:
        if is_outdated(appointment_date, appointment_time, self.now()):
            raise ValidationException(
                "Appointment date and time must be in the future",
                code="INVALID_SCHEDULE",
                details={
                    "date": appointment_date.isoformat(),
                    "time": appointment_time.strftime("%H:%M"),
                },
            )
