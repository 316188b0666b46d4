# backend/app/models/audit_log.py
"""
Append-only audit trail for appointment, payment and refund request changes.

Each state change writes one row in the same transaction as the change
itself. Rows are never updated; refund request decisions that a reopen
clears from the live record remain here.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Optional

from sqlalchemy import Column, DateTime, Index, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from sqlalchemy.types import JSON
import ulid

from app.database import Base


def _now_utc() -> datetime:
    """Return timezone-aware UTC timestamp for defaults."""
    return datetime.now(timezone.utc)


class AuditEntityType(str, Enum):
    APPOINTMENT = "appointment"
    PAYMENT = "payment"
    REFUND_REQUEST = "refund_request"


class AuditLog(Base):
    """Persistence model for audit trail entries."""

    __tablename__ = "audit_log"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(String(64), nullable=False)
    action = Column(String(30), nullable=False)
    actor_id = Column(String(64), nullable=True)
    actor_role = Column(String(30), nullable=True)
    note = Column(Text, nullable=True)
    occurred_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=_now_utc,
        server_default=func.now(),
    )
    # wall-clock write order; breaks ties between entries sharing an occurred_at
    recorded_at = Column(DateTime(timezone=True), nullable=False, default=_now_utc)
    before = Column(
        JSONB(astext_type=Text()).with_variant(JSON(), "sqlite"),
        nullable=True,
    )
    after = Column(
        JSONB(astext_type=Text()).with_variant(JSON(), "sqlite"),
        nullable=True,
    )

    __table_args__ = (Index("ix_audit_log_entity", "entity_type", "entity_id", "occurred_at"),)

    @classmethod
    def from_change(
        cls,
        entity_type: str,
        entity_id: str,
        action: str,
        actor: Any | None,
        before: Mapping[str, Any] | None,
        after: Mapping[str, Any] | None,
        *,
        note: Optional[str] = None,
        occurred_at: Optional[datetime] = None,
    ) -> "AuditLog":
        """Factory helper to build an AuditLog instance from change metadata."""
        actor_id: str | None = None
        actor_role: str | None = None

        if actor is not None:
            if isinstance(actor, Mapping):
                actor_id = _extract_value(actor, ("id", "actor_id", "user_id"))
                role_value = _extract_value(actor, ("role", "actor_role"))
            else:
                actor_id = _first_attr(actor, ("id", "actor_id", "user_id"))
                role_value = _first_attr(actor, ("role", "actor_role"))
            if isinstance(role_value, Enum):
                role_value = role_value.value
            actor_role = str(role_value) if role_value is not None else None

        entry = cls(
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            actor_id=actor_id,
            actor_role=actor_role,
            note=note,
            before=dict(before) if before is not None else None,
            after=dict(after) if after is not None else None,
            recorded_at=_now_utc(),
        )
        if occurred_at is not None:
            entry.occurred_at = occurred_at
        return entry

    def to_dict(self) -> dict[str, Any]:
        occurred_at = self.occurred_at
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "actor_id": self.actor_id,
            "actor_role": self.actor_role,
            "note": self.note,
            "occurred_at": occurred_at.isoformat() if occurred_at else None,
            "before": self.before,
            "after": self.after,
        }


def _first_attr(obj: Any, names: tuple[str, ...]) -> Any | None:
    for name in names:
        if hasattr(obj, name):
            value = getattr(obj, name)
            if value is not None:
                return value
    return None


def _extract_value(data: Mapping[str, Any], keys: tuple[str, ...]) -> Any | None:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None
