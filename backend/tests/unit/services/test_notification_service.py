from __future__ import annotations

from datetime import date, time
from types import SimpleNamespace
from unittest.mock import MagicMock

from app.notifications import ADMIN_AUDIENCE
from app.services.notification_service import NotificationService


def _appointment(**overrides):
    values = dict(
        id="a1",
        buyer_id="buyer",
        seller_id="seller",
        listing_id="l1",
        booked_by="buyer",
        date=date(2025, 3, 11),
        time=time(10, 0),
        status="accepted",
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def test_send_contains_dispatch_failures_and_counts_deliveries() -> None:
    dispatcher = MagicMock()
    dispatcher.dispatch.side_effect = [RuntimeError("down"), None]
    service = NotificationService(dispatcher)

    delivered = service.appointment_transitioned(_appointment(status="completed"), actor_id="system")

    assert delivered == 1
    assert dispatcher.dispatch.call_count == 2


def test_transition_notifies_the_other_party_only() -> None:
    dispatcher = MagicMock()
    service = NotificationService(dispatcher)

    service.appointment_transitioned(_appointment(status="accepted"), actor_id="seller")

    notification = dispatcher.dispatch.call_args.args[0]
    assert dispatcher.dispatch.call_count == 1
    assert notification.recipient_id == "buyer"
    assert notification.event_type == "appointment.accepted"


def test_admin_booking_also_notifies_buyer() -> None:
    dispatcher = MagicMock()
    service = NotificationService(dispatcher)

    service.appointment_created(_appointment(status="pending", booked_by="admin-1"))

    recipients = [call.args[0].recipient_id for call in dispatcher.dispatch.call_args_list]
    assert recipients == ["seller", "buyer"]


def test_refund_request_submission_goes_to_admins() -> None:
    dispatcher = MagicMock()
    service = NotificationService(dispatcher)
    request = SimpleNamespace(id="r1", payment_id="p1", requested_amount="500.00")

    service.refund_request_submitted(request)

    notification = dispatcher.dispatch.call_args.args[0]
    assert notification.audience == ADMIN_AUDIENCE
    assert notification.data == {"refund_request_id": "r1", "payment_id": "p1"}


def test_payment_refund_without_buyer_sends_nothing() -> None:
    dispatcher = MagicMock()
    service = NotificationService(dispatcher)

    assert service.payment_refunded(SimpleNamespace(id="p1"), buyer_id=None) == 0
    dispatcher.dispatch.assert_not_called()
