# backend/app/services/base.py
"""
Base Service Pattern for the engine.

Every engine service gets:
- a transaction scope (commit, or rollback and re-raise)
- the injected clock
- audit trail writes in the caller's transaction
- operation timing exported to Prometheus
"""

from contextlib import contextmanager
from datetime import datetime
from functools import wraps
import logging
import time
from typing import Any, Callable, Iterator, Mapping, Optional, TypeVar, cast

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.clock import Clock, get_clock
from ..core.config import settings
from ..core.exceptions import DomainException, RepositoryException, ServiceException
from ..models.audit_log import AuditLog
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

SLOW_OPERATION_SECONDS = 1.0


class BaseService:
    """Base class for the appointment, payment and refund request services."""

    def __init__(self, db: Session, clock: Optional[Clock] = None):
        """
        Args:
            db: Database session
            clock: Time source; defaults to the process-wide clock
        """
        self.db = db
        self.clock = clock or get_clock()
        self.logger = logging.getLogger(self.__class__.__name__)
        self.audit_repository = RepositoryFactory.create_audit_repository(db)

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """
        One unit of work: commit on success, roll back on any error.

        Usage:
            with self.transaction():
                payment = self.repository.get_for_update(payment_id)
                payment.status = "completed"

        Raises:
            ServiceException: the database rejected the work
        """
        try:
            yield self.db
            self.db.commit()
            self.logger.debug("Transaction committed successfully")
        except DomainException:
            self.db.rollback()
            raise
        except (SQLAlchemyError, RepositoryException) as e:
            self.logger.error(f"Transaction failed: {str(e)}")
            self.db.rollback()
            raise ServiceException(f"Database operation failed: {str(e)}") from e
        except Exception as e:
            self.logger.error(f"Unexpected error in transaction: {str(e)}")
            self.db.rollback()
            raise

    def now(self) -> datetime:
        return self.clock.now()

    def write_audit(
        self,
        entity_type: str,
        entity_id: str,
        action: str,
        actor: Any,
        before: Optional[Mapping[str, Any]],
        after: Optional[Mapping[str, Any]],
        note: Optional[str] = None,
    ) -> None:
        """Append an audit row inside the caller's transaction."""
        if not settings.audit_enabled:
            return
        self.audit_repository.write(
            AuditLog.from_change(
                entity_type=entity_type,
                entity_id=entity_id,
                action=action,
                actor=actor,
                before=before,
                after=after,
                note=note,
                occurred_at=self.now(),
            )
        )

    @staticmethod
    def measure_operation(operation_name: str) -> Callable[[F], F]:
        """
        Decorator timing a service operation.

        Usage:
            @BaseService.measure_operation("appointment.create")
            def create_appointment(self, ...):
                ...
        """

        def decorator(func: F) -> F:
            @wraps(func)
            def wrapper(self: "BaseService", *args: Any, **kwargs: Any) -> Any:
                start_time = time.perf_counter()
                success = False
                error_type = None

                try:
                    result = func(self, *args, **kwargs)
                    success = True
                    return result
                except Exception as e:
                    error_type = type(e).__name__
                    raise
                finally:
                    elapsed = time.perf_counter() - start_time

                    if elapsed > SLOW_OPERATION_SECONDS:
                        self.logger.warning(
                            f"Slow operation detected: {operation_name} took {elapsed:.2f}s"
                        )

                    prometheus_metrics.record_service_operation(
                        service=self.__class__.__name__,
                        operation=operation_name,
                        duration=elapsed,
                        status="success" if success else "error",
                        error_type=error_type,
                    )

            return cast(F, wrapper)

        return decorator

    def log_operation(self, operation: str, **context: Any) -> None:
        """Info log with the operation name and context in ``extra``."""
        self.logger.info(f"Operation: {operation}", extra={"operation": operation, **context})
