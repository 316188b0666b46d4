# backend/app/repositories/audit_repository.py
"""
Repository helpers for audit_log persistence and querying.

The audit log is append-only: this repository writes and reads rows but
exposes no update or delete.
"""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.audit_log import AuditLog


class AuditRepository:
    """Persist and query audit trail entries."""

    def __init__(self, db: Session):
        self.db = db

    def write(self, audit: AuditLog) -> None:
        """Persist a new audit row inside the active transaction."""
        self.db.add(audit)
        self.db.flush()

    def history(self, entity_type: str, entity_id: str) -> list[AuditLog]:
        """Every entry for one entity in the order it happened."""
        stmt = (
            select(AuditLog)
            .where(AuditLog.entity_type == entity_type, AuditLog.entity_id == entity_id)
            .order_by(AuditLog.occurred_at.asc(), AuditLog.recorded_at.asc(), AuditLog.id.asc())
        )
        return list(self.db.execute(stmt).scalars().all())
