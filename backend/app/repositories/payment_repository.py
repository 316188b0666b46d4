# backend/app/repositories/payment_repository.py
"""Payment Repository."""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from ..models.payment import Payment
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class PaymentRepository(BaseRepository[Payment]):
    """Repository for payment data access."""

    def __init__(self, db: Session):
        super().__init__(db, Payment)
        self.logger = logging.getLogger(__name__)

    def get_by_appointment_id(self, appointment_id: str) -> Optional[Payment]:
        return self.find_one_by(appointment_id=appointment_id)
