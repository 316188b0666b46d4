# backend/app/services/conflict_resolver.py
"""
Conflict Resolver Service.

Single source of truth for whether a buyer may book a listing. Every booking
entry point (buyer booking, admin booking on behalf of a buyer,
reinitiation) goes through ``can_book``.
"""

from dataclasses import dataclass
import logging
from typing import Optional

from sqlalchemy.orm import Session

from ..core.clock import Clock
from ..core.config import settings
from ..core.exceptions import NotFound, SelfBookingDenied, ServiceException
from ..integrations.listing_directory import (
    ListingDirectory,
    ListingLookupError,
    get_listing_directory,
)
from ..models.appointment import Appointment
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.appointment_repository import AppointmentRepository
from ..repositories.factory import RepositoryFactory
from .appointment_rules import first_blocking
from .base import BaseService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BookingDecision:
    allowed: bool
    blocking_appointment: Optional[Appointment] = None


class ConflictResolver(BaseService):
    """
    Decides whether a new appointment may be created for a (buyer, listing) pair.

    Outdated appointments never block. Pending or accepted ones do, and so does
    a buyer-cancelled one until the buyer has used up the reinitiation limit.
    """

    def __init__(
        self,
        db: Session,
        clock: Optional[Clock] = None,
        repository: Optional[AppointmentRepository] = None,
        listing_directory: Optional[ListingDirectory] = None,
        reinitiation_limit: Optional[int] = None,
    ):
        super().__init__(db, clock)
        self.repository = repository or RepositoryFactory.create_appointment_repository(db)
        self.listing_directory = listing_directory or get_listing_directory()
        self.reinitiation_limit = settings.reinitiation_limit if reinitiation_limit is None else reinitiation_limit

    @BaseService.measure_operation("conflict.can_book")
    def can_book(
        self,
        buyer_id: str,
        listing_id: str,
        exclude_appointment_id: Optional[str] = None,
    ) -> BookingDecision:
        """
        Check the buyer's history on the listing.

        Args:
            buyer_id: Buyer the appointment would belong to
            listing_id: Listing to book
            exclude_appointment_id: Appointment to ignore (the one being reinitiated)

        Returns:
            BookingDecision with the earliest blocking appointment, if any
        """
        candidates = self.repository.get_for_pair(buyer_id, listing_id, exclude_appointment_id)
        blocking = first_blocking(candidates, self.now(), self.reinitiation_limit)

        if blocking is not None:
            prometheus_metrics.record_booking_decision("blocked")
            self.logger.warning(
                f"Booking blocked for buyer {buyer_id} on listing {listing_id} "
                f"by appointment {blocking.id} ({blocking.status})"
            )
            return BookingDecision(allowed=False, blocking_appointment=blocking)

        prometheus_metrics.record_booking_decision("allowed")
        return BookingDecision(allowed=True)

    def resolve_listing_owner(self, listing_id: str) -> str:
        """
        Look up the seller of a listing.

        Raises:
            NotFound: listing unknown to the listing directory
            ServiceException: listing directory unavailable
        """
        try:
            owner_id = self.listing_directory.get_listing_owner(listing_id)
        except ListingLookupError as exc:
            self.logger.error(f"Listing owner lookup failed for {listing_id}: {str(exc)}")
            raise ServiceException(
                "Listing service unavailable",
                code="LISTING_LOOKUP_FAILED",
                details={"listing_id": listing_id},
            ) from exc
        if not owner_id:
            raise NotFound("Listing", listing_id)
        return owner_id

    def ensure_not_self_booking(self, buyer_id: str, listing_id: str) -> str:
        """
        Reject bookings by the listing owner before any conflict check.

        Returns:
            The listing owner's id (the appointment's seller)
        """
        owner_id = self.resolve_listing_owner(listing_id)
        if owner_id == buyer_id:
            prometheus_metrics.record_booking_decision("self_booking")
            self.logger.warning(f"Self-booking denied for owner {buyer_id} on listing {listing_id}")
            raise SelfBookingDenied(listing_id)
        return owner_id
