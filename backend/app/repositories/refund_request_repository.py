# backend/app/repositories/refund_request_repository.py
"""
RefundRequest Repository.

Open-request lookups back the one-open-request-per-payment rule; list
queries serve the admin review queue.
"""

import logging
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from ..models.refund_request import OPEN_REFUND_REQUEST_STATUSES, RefundRequest
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class RefundRequestRepository(BaseRepository[RefundRequest]):
    """Repository for refund request data access."""

    def __init__(self, db: Session):
        super().__init__(db, RefundRequest)
        self.logger = logging.getLogger(__name__)

    def get_open_for_payment(self, payment_id: str) -> Optional[RefundRequest]:
        query = (
            self._build_query()
            .filter(
                RefundRequest.payment_id == payment_id,
                RefundRequest.status.in_(OPEN_REFUND_REQUEST_STATUSES),
            )
            .populate_existing()
            .order_by(RefundRequest.created_at.desc())
        )
        results = self._execute_query(query.limit(1))
        return results[0] if results else None

    def get_latest_for_payment(self, payment_id: str) -> Optional[RefundRequest]:
        query = (
            self._build_query()
            .filter(RefundRequest.payment_id == payment_id)
            .order_by(RefundRequest.created_at.desc(), RefundRequest.id.desc())
        )
        results = self._execute_query(query.limit(1))
        return results[0] if results else None

    def list_requests(
        self,
        status: Optional[str] = None,
        page: int = 1,
        per_page: int = 20,
    ) -> Tuple[List[RefundRequest], int]:
        """
        Page through refund requests, newest first.

        Returns:
            Tuple of (page items, total matching count)
        """
        query = self._build_query()
        if status:
            query = query.filter(RefundRequest.status == status)
        total = query.count()
        items = self._execute_query(
            query.order_by(RefundRequest.created_at.desc(), RefundRequest.id.desc())
            .offset((page - 1) * per_page)
            .limit(per_page)
        )
        return items, total
