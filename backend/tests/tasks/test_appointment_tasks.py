from __future__ import annotations

from contextlib import contextmanager
from unittest.mock import MagicMock, patch

from app.models.appointment import AppointmentStatus
from app.tasks import appointment_tasks
from app.tasks.celery_app import get_beat_schedule
from tests.conftest import YESTERDAY


def test_beat_schedule_runs_completion_sweep():
    schedule = get_beat_schedule()

    entry = schedule["complete-elapsed-appointments"]
    assert entry["task"] == "appointments.complete_elapsed"


def test_task_delegates_to_sweep():
    session = MagicMock()

    @contextmanager
    def _session():
        yield session

    with patch.object(appointment_tasks, "get_db_session", _session), patch.object(
        appointment_tasks, "AppointmentService"
    ) as service_cls:
        service_cls.return_value.complete_elapsed_appointments.return_value = 3

        assert appointment_tasks.complete_elapsed_appointments(10) == 3

    service_cls.assert_called_once_with(session)
    service_cls.return_value.complete_elapsed_appointments.assert_called_once_with(10)


def test_sweep_completes_elapsed_accepted_appointments(session_factory, make_appointment):
    elapsed = make_appointment(on=YESTERDAY, status=AppointmentStatus.ACCEPTED)
    untouched = make_appointment(listing_id="listing-3", on=YESTERDAY, status=AppointmentStatus.PENDING)

    @contextmanager
    def _session():
        db = session_factory()
        try:
            yield db
            db.commit()
        finally:
            db.close()

    with patch.object(appointment_tasks, "get_db_session", _session):
        assert appointment_tasks.run_completion_sweep() == 1
        # a second pass finds nothing left to do
        assert appointment_tasks.run_completion_sweep() == 0

    db = session_factory()
    try:
        assert db.get(type(elapsed), elapsed.id).status == AppointmentStatus.COMPLETED.value
        assert db.get(type(untouched), untouched.id).status == AppointmentStatus.PENDING.value
    finally:
        db.close()
