# backend/app/tasks/appointment_tasks.py
"""
Periodic appointment housekeeping.

Accepted appointments whose scheduled date and time have passed are moved to
completed by the system actor. The sweep is idempotent and safe to overlap.
"""

import logging
from typing import Any, Callable, Optional, TypeVar, cast

from app.database import get_db_session
from app.services.appointment_service import AppointmentService
from app.tasks.celery_app import BaseTask, celery_app

logger = logging.getLogger(__name__)

_TaskFunc = TypeVar("_TaskFunc", bound=Callable[..., Any])


def _typed_task(*args: Any, **kwargs: Any) -> Callable[[_TaskFunc], _TaskFunc]:
    """Typed wrapper for Celery's task decorator."""
    return cast(Callable[[_TaskFunc], _TaskFunc], celery_app.task(*args, **kwargs))


def run_completion_sweep(limit: Optional[int] = None) -> int:
    """Run one sweep in its own session; returns the number of completed appointments."""
    with get_db_session() as db:
        completed = AppointmentService(db).complete_elapsed_appointments(limit)
    logger.info("[APPOINTMENTS] Completion sweep finished: %s completed", completed)
    return completed


@_typed_task(name="appointments.complete_elapsed", base=BaseTask, ignore_result=True)
def complete_elapsed_appointments(limit: Optional[int] = None) -> int:
    return run_completion_sweep(limit)
