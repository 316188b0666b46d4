# backend/app/repositories/appointment_repository.py
"""
Appointment Repository.

Data access for appointments: pair history used by the conflict resolver,
buyer/seller listings, and the candidates for the completion sweep.
"""

from datetime import date
import logging
from typing import List, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.appointment import Appointment, AppointmentStatus
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class AppointmentRepository(BaseRepository[Appointment]):
    """Repository for appointment data access."""

    def __init__(self, db: Session):
        super().__init__(db, Appointment)
        self.logger = logging.getLogger(__name__)

    def get_for_pair(
        self,
        buyer_id: str,
        listing_id: str,
        exclude_appointment_id: Optional[str] = None,
    ) -> List[Appointment]:
        """
        Get every appointment a buyer holds on a listing, oldest first.

        Args:
            buyer_id: The buyer (or the buyer an admin books for)
            listing_id: The listing being booked
            exclude_appointment_id: Optional appointment to leave out (reinitiation)
        """
        try:
            query = (
                self.db.query(Appointment)
                .filter(
                    Appointment.buyer_id == buyer_id,
                    Appointment.listing_id == listing_id,
                )
                .populate_existing()
            )
            if exclude_appointment_id:
                query = query.filter(Appointment.id != exclude_appointment_id)
            return query.order_by(Appointment.created_at.asc(), Appointment.id.asc()).all()
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting appointments for pair {buyer_id}/{listing_id}: {str(e)}")
            raise RepositoryException(f"Failed to get appointments for pair: {str(e)}")

    def get_max_reinitiation_count(self, buyer_id: str, listing_id: str) -> int:
        """Highest reinitiation counter held by any appointment of the pair."""
        query = self.db.query(func.max(Appointment.buyer_reinitiation_count)).filter(
            Appointment.buyer_id == buyer_id,
            Appointment.listing_id == listing_id,
        )
        value = self._execute_scalar(query)
        return int(value or 0)

    def list_for_buyer(
        self,
        buyer_id: str,
        statuses: Optional[Sequence[str]] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[Appointment]:
        query = self._build_query().filter(Appointment.buyer_id == buyer_id)
        if statuses:
            query = query.filter(Appointment.status.in_(list(statuses)))
        query = query.order_by(Appointment.date.desc(), Appointment.time.desc())
        return self._execute_query(query.offset(skip).limit(limit))

    def list_for_seller(
        self,
        seller_id: str,
        statuses: Optional[Sequence[str]] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[Appointment]:
        query = self._build_query().filter(Appointment.seller_id == seller_id)
        if statuses:
            query = query.filter(Appointment.status.in_(list(statuses)))
        query = query.order_by(Appointment.date.desc(), Appointment.time.desc())
        return self._execute_query(query.offset(skip).limit(limit))

    def list_all(
        self,
        statuses: Optional[Sequence[str]] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[Appointment]:
        query = self._build_query()
        if statuses:
            query = query.filter(Appointment.status.in_(list(statuses)))
        query = query.order_by(Appointment.date.desc(), Appointment.time.desc())
        return self._execute_query(query.offset(skip).limit(limit))

    def get_accepted_on_or_before(self, cutoff: date, limit: int = 500) -> List[Appointment]:
        """
        Accepted appointments dated on or before ``cutoff``.

        Same-day rows still need a time check by the caller.
        """
        query = (
            self._build_query()
            .filter(
                Appointment.status == AppointmentStatus.ACCEPTED.value,
                Appointment.date <= cutoff,
            )
            .order_by(Appointment.date.asc(), Appointment.time.asc())
            .limit(limit)
        )
        return self._execute_query(query)
