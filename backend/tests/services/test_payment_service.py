from __future__ import annotations

from decimal import Decimal

import pytest

from app.core.exceptions import (
    DuplicatePayment,
    InvalidRefundAmount,
    InvalidTransition,
    NotFound,
    NotRefundable,
    Unauthorized,
    ValidationException,
)
from app.models.payment import PaymentStatus
from app.principal import Actor, ActorRole
from app.repositories.factory import RepositoryFactory
from app.services.payment_service import status_for_refund, to_money
from tests.conftest import ADMIN, BUYER, SELLER


def test_to_money_quantizes_to_cents() -> None:
    assert to_money("10.005") == Decimal("10.01")
    assert to_money(3) == Decimal("3.00")
    with pytest.raises(ValidationException):
        to_money("ten")


@pytest.mark.parametrize(
    "refunded, expected",
    [("0", "completed"), ("0.01", "partially_refunded"), ("100", "refunded")],
)
def test_status_for_refund(refunded: str, expected: str) -> None:
    assert status_for_refund(Decimal("100"), Decimal(refunded)) == expected


class TestAttachAndSettle:
    def test_attach_creates_pending_payment(self, payment_service, make_appointment):
        appointment = make_appointment()

        payment = payment_service.attach_payment(appointment.id, "2500", "INR", "razorpay", BUYER)

        assert payment.status == PaymentStatus.PENDING.value
        assert payment.amount == Decimal("2500.00")
        assert payment.appointment_id == appointment.id

    def test_second_payment_for_appointment_is_rejected(self, payment_service, make_appointment):
        appointment = make_appointment()
        first = payment_service.attach_payment(appointment.id, "100", "INR", "razorpay", BUYER)

        with pytest.raises(DuplicatePayment) as exc_info:
            payment_service.attach_payment(appointment.id, "100", "INR", "razorpay", BUYER)
        assert exc_info.value.details["payment_id"] == first.id

    def test_attach_validates_amount_and_appointment(self, payment_service, make_appointment):
        with pytest.raises(ValidationException):
            payment_service.attach_payment(make_appointment().id, "0", "INR", "razorpay", BUYER)
        with pytest.raises(NotFound):
            payment_service.attach_payment("missing", "10", "INR", "razorpay", BUYER)

    def test_only_the_buyer_pays(self, payment_service, make_appointment):
        with pytest.raises(Unauthorized):
            payment_service.attach_payment(make_appointment().id, "10", "INR", "razorpay", SELLER)

    def test_complete_then_cannot_fail(self, payment_service, make_payment, clock):
        payment = make_payment(status=PaymentStatus.PENDING)

        completed = payment_service.complete_payment(payment.id, ADMIN)
        assert completed.status == PaymentStatus.COMPLETED.value
        assert completed.completed_at is not None

        with pytest.raises(InvalidTransition):
            payment_service.fail_payment(payment.id, "late failure", ADMIN)

    def test_fail_records_reason(self, payment_service, make_payment):
        payment = make_payment(status=PaymentStatus.PENDING)

        failed = payment_service.fail_payment(payment.id, "signature mismatch", ADMIN)

        assert failed.status == PaymentStatus.FAILED.value
        assert failed.failure_reason == "signature mismatch"


class TestDirectRefund:
    def test_partial_then_full_refund(self, payment_service, make_payment, dispatcher):
        payment = make_payment(amount="1000.00")

        partial = payment_service.refund(payment.id, ADMIN, "400", "Goodwill")
        assert partial.status == PaymentStatus.PARTIALLY_REFUNDED.value
        assert partial.refund_amount == Decimal("400.00")
        first_refund_id = partial.refund_id
        assert first_refund_id.startswith("refund_")

        rest = payment_service.refund(payment.id, ADMIN, "600", "Remainder")
        assert rest.status == PaymentStatus.REFUNDED.value
        assert rest.refund_amount == Decimal("1000.00")
        assert rest.refund_id != first_refund_id
        assert dispatcher.event_types().count("payment.refunded") == 2

    def test_refund_cannot_exceed_remaining(self, payment_service, make_payment):
        payment = make_payment(amount="1000.00", status=PaymentStatus.PARTIALLY_REFUNDED, refunded="900")

        with pytest.raises(InvalidRefundAmount) as exc_info:
            payment_service.refund(payment.id, ADMIN, "100.01", None)
        assert exc_info.value.details["max_allowed"] == "100.00"

    @pytest.mark.parametrize("amount", ["0", "-5"])
    def test_refund_amount_must_be_positive(self, payment_service, make_payment, amount):
        with pytest.raises(InvalidRefundAmount):
            payment_service.refund(make_payment().id, ADMIN, amount, None)

    @pytest.mark.parametrize("status", [PaymentStatus.PENDING, PaymentStatus.FAILED, PaymentStatus.REFUNDED])
    def test_non_refundable_statuses(self, payment_service, make_payment, status):
        payment = make_payment(status=status, refunded="1000" if status == PaymentStatus.REFUNDED else "0")

        with pytest.raises(NotRefundable) as exc_info:
            payment_service.refund(payment.id, ADMIN, "1", None)
        assert exc_info.value.details["current_status"] == status.value

    def test_only_admins_refund(self, payment_service, make_payment):
        with pytest.raises(Unauthorized):
            payment_service.refund(make_payment().id, Actor(id="seller-1", role=ActorRole.SELLER), "1", None)

    def test_refund_is_audited(self, payment_service, make_payment, db):
        payment = make_payment()
        payment_service.refund(payment.id, ADMIN, "10", "Fee")

        history = RepositoryFactory.create_audit_repository(db).history("payment", payment.id)

        assert [entry.action for entry in history] == ["refunded"]
        assert history[0].after["refunded_now"] == "10.00"
        assert history[0].note == "Fee"
