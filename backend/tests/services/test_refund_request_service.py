from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest

from app.core.exceptions import (
    InvalidRefundAmount,
    InvalidTransition,
    NotEligible,
    NotFound,
    NotRefundable,
    Unauthorized,
    ValidationException,
)
from app.models.payment import PaymentStatus
from app.models.refund_request import RefundRequestStatus
from app.principal import Actor, ActorRole, UserPrincipal
from tests.conftest import ADMIN, ADMIN_ID, BUYER_ID, SELLER, SELLER_ID


def _submit(service, payment, *, user_id=BUYER_ID, type="full", amount=None, reason="Viewing never happened"):
    return service.create_refund_request(payment.id, user_id, type, amount, reason)


class TestSubmission:
    def test_full_request_defaults_to_payment_amount(self, refund_request_service, make_payment, dispatcher):
        payment = make_payment(amount="1000.00")

        request = _submit(refund_request_service, payment)

        assert request.status == RefundRequestStatus.PENDING.value
        assert request.requested_amount == Decimal("1000.00")
        assert request.user_id == BUYER_ID
        assert dispatcher.sent[-1].audience == "admins"

    def test_seller_may_request_on_behalf_of_the_deal(self, refund_request_service, make_payment):
        request = _submit(refund_request_service, make_payment(), user_id=SELLER_ID, type="partial", amount="250")

        assert request.requested_amount == Decimal("250.00")

    def test_only_one_open_request_per_payment(self, refund_request_service, make_payment):
        payment = make_payment()
        first = _submit(refund_request_service, payment)

        with pytest.raises(NotEligible) as exc_info:
            _submit(refund_request_service, payment, type="partial", amount="10")
        assert exc_info.value.details["open_request_id"] == first.id

    @pytest.mark.parametrize("status", [PaymentStatus.PENDING, PaymentStatus.FAILED])
    def test_payment_must_be_completed(self, refund_request_service, make_payment, status):
        with pytest.raises(NotEligible):
            _submit(refund_request_service, make_payment(status=status))

    def test_strangers_cannot_request(self, refund_request_service, make_payment):
        with pytest.raises(Unauthorized):
            _submit(refund_request_service, make_payment(), user_id="stranger")

    def test_unknown_payment(self, refund_request_service):
        with pytest.raises(NotFound):
            refund_request_service.create_refund_request("missing", BUYER_ID, "full", None, "reason")

    @pytest.mark.parametrize(
        "type, amount",
        [
            ("full", "999.99"),
            ("partial", "1000.00"),
            ("partial", "1000.01"),
            ("partial", "0"),
            ("partial", None),
        ],
    )
    def test_amount_must_match_request_type(self, refund_request_service, make_payment, type, amount):
        with pytest.raises(InvalidRefundAmount):
            _submit(refund_request_service, make_payment(amount="1000.00"), type=type, amount=amount)

    def test_reason_is_required(self, refund_request_service, make_payment):
        with pytest.raises(ValidationException):
            _submit(refund_request_service, make_payment(), reason="   ")


class TestAdjudication:
    def test_approval_with_override_refunds_and_processes(self, refund_request_service, make_payment, payment_service, dispatcher):
        payment = make_payment(amount="1000.00")
        request = _submit(refund_request_service, payment)

        decided = refund_request_service.decide_refund_request(
            request.id, ADMIN, "approved", admin_notes="Half back", admin_refund_amount="500"
        )

        assert decided.status == RefundRequestStatus.PROCESSED.value
        assert decided.admin_refund_amount == Decimal("500.00")
        assert decided.processed_by == ADMIN_ID
        refreshed = payment_service.get_payment(payment.id)
        assert refreshed.status == PaymentStatus.PARTIALLY_REFUNDED.value
        assert refreshed.refund_amount == Decimal("500.00")
        assert "payment.refunded" in dispatcher.event_types()
        assert dispatcher.event_types()[-1] == "refund_request.processed"

    def test_approval_without_override_uses_requested_amount(self, refund_request_service, make_payment, payment_service):
        payment = make_payment(amount="1000.00")
        request = _submit(refund_request_service, payment, type="partial", amount="300")

        refund_request_service.decide_refund_request(request.id, ADMIN, "approved")

        assert payment_service.get_payment(payment.id).refund_amount == Decimal("300.00")

    def test_zero_approval_is_processed_without_moving_money(self, refund_request_service, make_payment, payment_service):
        payment = make_payment()
        request = _submit(refund_request_service, payment)

        decided = refund_request_service.decide_refund_request(request.id, ADMIN, "approved", admin_refund_amount="0")

        assert decided.status == RefundRequestStatus.PROCESSED.value
        refreshed = payment_service.get_payment(payment.id)
        assert refreshed.status == PaymentStatus.COMPLETED.value
        assert refreshed.refund_id is None

    def test_override_above_payment_amount_leaves_request_pending(self, refund_request_service, make_payment):
        request = _submit(refund_request_service, make_payment(amount="1000.00"))

        with pytest.raises(InvalidRefundAmount):
            refund_request_service.decide_refund_request(request.id, ADMIN, "approved", admin_refund_amount="1000.01")

        assert refund_request_service.get_refund_request(request.id).status == RefundRequestStatus.PENDING.value

    def test_only_admins_decide(self, refund_request_service, make_payment):
        request = _submit(refund_request_service, make_payment())

        with pytest.raises(Unauthorized):
            refund_request_service.decide_refund_request(request.id, SELLER, "approved")

    def test_unknown_decision(self, refund_request_service, make_payment):
        request = _submit(refund_request_service, make_payment())

        with pytest.raises(ValidationException):
            refund_request_service.decide_refund_request(request.id, ADMIN, "maybe")

    def test_decided_request_cannot_be_decided_again(self, refund_request_service, make_payment):
        request = _submit(refund_request_service, make_payment())
        refund_request_service.decide_refund_request(request.id, ADMIN, "approved")

        with pytest.raises(InvalidTransition) as exc_info:
            refund_request_service.decide_refund_request(request.id, ADMIN, "rejected")
        assert exc_info.value.details["current_status"] == RefundRequestStatus.PROCESSED.value

    def test_failed_refund_leaves_request_approved_for_retry(
        self, refund_request_service, make_payment, payment_service, monkeypatch
    ):
        payment = make_payment()
        request = _submit(refund_request_service, payment)

        def _gateway_down(*args, **kwargs):
            raise RuntimeError("gateway timeout")

        monkeypatch.setattr(payment_service, "apply_refund", _gateway_down)
        with pytest.raises(RuntimeError):
            refund_request_service.decide_refund_request(request.id, ADMIN, "approved")
        assert refund_request_service.get_refund_request(request.id).status == RefundRequestStatus.APPROVED.value
        assert payment_service.get_payment(payment.id).refund_amount == Decimal("0.00")

        monkeypatch.undo()
        processed = refund_request_service.process_refund_request(request.id, ADMIN)

        assert processed.status == RefundRequestStatus.PROCESSED.value
        assert payment_service.get_payment(payment.id).status == PaymentStatus.REFUNDED.value

    def test_process_requires_approved_status(self, refund_request_service, make_payment):
        request = _submit(refund_request_service, make_payment())

        with pytest.raises(InvalidTransition):
            refund_request_service.process_refund_request(request.id, ADMIN)

    def test_payment_refunded_elsewhere_leaves_request_pending(
        self, refund_request_service, make_payment, payment_service
    ):
        payment = make_payment(amount="100.00")
        request = _submit(refund_request_service, payment)
        payment_service.refund(payment.id, ADMIN, "100", "Direct refund")

        with pytest.raises(NotRefundable):
            refund_request_service.decide_refund_request(request.id, ADMIN, "approved")

        stored = refund_request_service.get_refund_request(request.id)
        assert stored.status == RefundRequestStatus.PENDING.value
        assert stored.admin_refund_amount is None

        rejected = refund_request_service.decide_refund_request(request.id, ADMIN, "rejected", admin_notes="Already refunded")
        assert rejected.status == RefundRequestStatus.REJECTED.value

    def test_approval_beyond_remaining_balance_leaves_request_pending(
        self, refund_request_service, make_payment, payment_service
    ):
        payment = make_payment(amount="100.00")
        request = _submit(refund_request_service, payment)
        payment_service.refund(payment.id, ADMIN, "30", "Goodwill credit")

        with pytest.raises(InvalidRefundAmount) as exc_info:
            refund_request_service.decide_refund_request(request.id, ADMIN, "approved")
        assert exc_info.value.details["max_allowed"] == "70.00"

        stored = refund_request_service.get_refund_request(request.id)
        assert stored.status == RefundRequestStatus.PENDING.value
        assert stored.admin_refund_amount is None
        assert stored.processed_by is None
        assert payment_service.get_payment(payment.id).refund_amount == Decimal("30.00")

        decided = refund_request_service.decide_refund_request(request.id, ADMIN, "approved", admin_refund_amount="70")
        assert decided.status == RefundRequestStatus.PROCESSED.value
        assert payment_service.get_payment(payment.id).status == PaymentStatus.REFUNDED.value

    def test_total_refunds_never_exceed_payment_amount(self, refund_request_service, make_payment, payment_service):
        payment = make_payment(amount="1000.00")
        request = _submit(refund_request_service, payment, type="partial", amount="600")
        refund_request_service.decide_refund_request(request.id, ADMIN, "approved")

        with pytest.raises(InvalidRefundAmount):
            payment_service.refund(payment.id, ADMIN, "400.01", None)
        payment_service.refund(payment.id, ADMIN, "400", None)

        assert payment_service.get_payment(payment.id).refund_amount == Decimal("1000.00")


class TestAppealAndReopen:
    def test_reject_appeal_reopen_approve_keeps_full_history(
        self, refund_request_service, make_payment, clock, dispatcher
    ):
        payment = make_payment(amount="1000.00")
        request = _submit(refund_request_service, payment)
        clock.advance(timedelta(minutes=1))
        refund_request_service.decide_refund_request(request.id, ADMIN, "rejected", admin_notes="No evidence")
        clock.advance(timedelta(minutes=1))

        appealed = refund_request_service.appeal_refund_request(
            request.id, BUYER_ID, "Seller never showed up", "Photos attached"
        )
        assert appealed.status == RefundRequestStatus.REJECTED.value
        assert appealed.is_appealed is True
        assert appealed.appeal_submitted_at is not None
        clock.advance(timedelta(minutes=1))

        reopened = refund_request_service.reopen_refund_request(request.id, ADMIN, "New evidence")
        assert reopened.status == RefundRequestStatus.PENDING.value
        assert reopened.case_reopened is True
        assert reopened.case_reopened_by == ADMIN_ID
        assert reopened.reopen_reason == "New evidence"
        assert reopened.admin_notes is None
        assert reopened.processed_by is None
        assert reopened.is_appealed is False
        clock.advance(timedelta(minutes=1))

        refund_request_service.decide_refund_request(request.id, ADMIN, "approved", admin_refund_amount="700")

        history = refund_request_service.get_history(request.id, UserPrincipal(ADMIN_ID, "admin"))
        assert [entry.action for entry in history] == [
            "created",
            "rejected",
            "appealed",
            "reopened",
            "approved",
            "processed",
        ]
        assert history[1].after["admin_notes"] == "No evidence"
        assert history[3].before["admin_notes"] == "No evidence"
        assert history[3].note == "New evidence"
        assert "refund_request.reopened" in dispatcher.event_types()

    def test_appeal_only_once_per_rejection(self, refund_request_service, make_payment):
        request = _submit(refund_request_service, make_payment())
        refund_request_service.decide_refund_request(request.id, ADMIN, "rejected")
        refund_request_service.appeal_refund_request(request.id, BUYER_ID, "Please reconsider")

        with pytest.raises(InvalidTransition):
            refund_request_service.appeal_refund_request(request.id, BUYER_ID, "Again")

    def test_only_requester_appeals(self, refund_request_service, make_payment):
        request = _submit(refund_request_service, make_payment())
        refund_request_service.decide_refund_request(request.id, ADMIN, "rejected")

        with pytest.raises(Unauthorized):
            refund_request_service.appeal_refund_request(request.id, SELLER_ID, "Me too")

    def test_pending_request_cannot_be_appealed(self, refund_request_service, make_payment):
        request = _submit(refund_request_service, make_payment())

        with pytest.raises(InvalidTransition):
            refund_request_service.appeal_refund_request(request.id, BUYER_ID, "Too early")

    def test_reopen_requires_rejected_request(self, refund_request_service, make_payment):
        request = _submit(refund_request_service, make_payment())

        with pytest.raises(InvalidTransition):
            refund_request_service.reopen_refund_request(request.id, ADMIN, "Why not")

    def test_only_admins_reopen(self, refund_request_service, make_payment):
        request = _submit(refund_request_service, make_payment())
        refund_request_service.decide_refund_request(request.id, ADMIN, "rejected")

        with pytest.raises(Unauthorized):
            refund_request_service.reopen_refund_request(
                request.id, Actor(id=BUYER_ID, role=ActorRole.BUYER), "Please"
            )

    def test_rejected_request_does_not_block_a_new_one(self, refund_request_service, make_payment):
        payment = make_payment()
        first = _submit(refund_request_service, payment)
        refund_request_service.decide_refund_request(first.id, ADMIN, "rejected")

        second = _submit(refund_request_service, payment, type="partial", amount="100")

        assert second.id != first.id


class TestQueries:
    def test_status_for_payment_returns_latest(self, refund_request_service, make_payment, clock):
        payment = make_payment()
        buyer = UserPrincipal(BUYER_ID)
        assert refund_request_service.get_status_for_payment(payment.id, buyer) is None

        first = _submit(refund_request_service, payment)
        refund_request_service.decide_refund_request(first.id, ADMIN, "rejected")
        clock.advance(timedelta(minutes=5))
        second = _submit(refund_request_service, payment, type="partial", amount="10")

        latest = refund_request_service.get_status_for_payment(payment.id, buyer)
        assert latest is not None
        assert latest.id == second.id

    def test_strangers_cannot_view(self, refund_request_service, make_payment):
        request = _submit(refund_request_service, make_payment())

        with pytest.raises(Unauthorized):
            refund_request_service.get_for_principal(request.id, UserPrincipal("stranger"))

    def test_list_filters_by_status_for_admins(self, refund_request_service, make_payment, make_appointment):
        pending = _submit(refund_request_service, make_payment())
        other_payment = make_payment(appointment=make_appointment(buyer_id=BUYER_ID, listing_id="listing-9"))
        rejected = _submit(refund_request_service, other_payment)
        refund_request_service.decide_refund_request(rejected.id, ADMIN, "rejected")
        admin = UserPrincipal(ADMIN_ID, "admin")

        items, total = refund_request_service.list_refund_requests(admin, status="pending")
        assert total == 1
        assert [item.id for item in items] == [pending.id]

        _, everything = refund_request_service.list_refund_requests(admin)
        assert everything == 2

        with pytest.raises(Unauthorized):
            refund_request_service.list_refund_requests(UserPrincipal(BUYER_ID))
