# backend/app/tasks/__init__.py
"""
Celery tasks package.

Import of this package registers every task with the Celery app.
"""

from app.tasks.appointment_tasks import complete_elapsed_appointments
from app.tasks.celery_app import BaseTask, celery_app

__all__ = ["BaseTask", "celery_app", "complete_elapsed_appointments"]
