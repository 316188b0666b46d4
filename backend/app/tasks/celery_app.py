# backend/app/tasks/celery_app.py
"""
Celery application configuration for the engine.

Redis is the broker; the only periodic job is the completion sweep that
moves accepted appointments whose scheduled time has passed to completed.
"""

from typing import Any

from celery import Celery, Task
from celery.signals import setup_logging

from app.core.config import settings


def get_beat_schedule() -> dict[str, dict[str, Any]]:
    return {
        "complete-elapsed-appointments": {
            "task": "appointments.complete_elapsed",
            "schedule": float(settings.completion_sweep_interval_seconds),
            "options": {"expires": settings.completion_sweep_interval_seconds},
        },
    }


def create_celery_app() -> Celery:
    """
    Create and configure the Celery application.

    Returns:
        Celery: Configured Celery application instance
    """
    broker_url = settings.celery_broker_url or settings.redis_url or "redis://localhost:6379/0"
    result_backend = settings.celery_result_backend or broker_url

    celery_app = Celery(
        "appointment_engine",
        broker=broker_url,
        backend=result_backend,
    )

    celery_app.conf.update(
        {
            # Task settings
            "task_serializer": "json",
            "accept_content": ["json"],
            "result_serializer": "json",
            "timezone": settings.engine_timezone,
            "enable_utc": True,
            # Worker settings
            "worker_prefetch_multiplier": 1,
            "worker_max_tasks_per_child": 1000,
            # Task execution settings
            "task_soft_time_limit": 240,
            "task_time_limit": 300,
            "task_acks_late": True,
            "task_reject_on_worker_lost": True,
            "task_default_retry_delay": 60,
            "worker_hijack_root_logger": False,
        }
    )

    celery_app.conf.imports = ("app.tasks.appointment_tasks",)
    celery_app.conf.task_routes = {"appointments.*": {"queue": "maintenance"}}
    celery_app.conf.beat_schedule = get_beat_schedule()

    return celery_app


# Disable Celery's default logging configuration
@setup_logging.connect  # type: ignore[misc]
def config_loggers(*args: Any, **kwargs: Any) -> None:
    """Configure logging to integrate with the application's logging setup."""
    from app.core.logging import configure_logging

    configure_logging()


# Create the Celery app instance
celery_app = create_celery_app()


class BaseTask(Task):  # type: ignore[misc]
    """Base task with automatic error handling and logging."""

    autoretry_for = (Exception,)
    retry_kwargs = {"max_retries": 3, "countdown": 60}
    retry_backoff = True
    retry_backoff_max = 600
    retry_jitter = True

    def on_failure(self, exc: Exception, task_id: str, args: Any, kwargs: Any, einfo: Any) -> None:
        """Log task failures."""
        import logging

        logger = logging.getLogger(__name__)
        logger.error(
            f"Task {self.name}[{task_id}] failed with exception: {exc}",
            exc_info=True,
            extra={"task_id": task_id, "task_name": self.name},
        )
