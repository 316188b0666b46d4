from __future__ import annotations

from fastapi.testclient import TestClient
import pytest

from tests.conftest import ADMIN_ID, BUYER_ID, LISTING_ID, OTHER_BUYER_ID, SELLER_ID, auth_headers

ADMIN_HEADERS = auth_headers(ADMIN_ID, "admin")


@pytest.fixture
def completed_payment(client: TestClient) -> dict:
    """Book, accept, pay and settle through the API."""
    appointment = client.post(
        "/api/v1/appointments",
        json={"listingId": LISTING_ID, "date": "2025-03-11", "time": "10:00", "purpose": "rent"},
        headers=auth_headers(BUYER_ID),
    ).json()
    client.patch(
        f"/api/v1/appointments/{appointment['id']}/status",
        json={"status": "accepted"},
        headers=auth_headers(SELLER_ID),
    )

    created = client.post(
        "/api/v1/payments",
        json={"appointmentId": appointment["id"], "amount": "1000.00", "currency": "INR", "gateway": "razorpay"},
        headers=auth_headers(BUYER_ID),
    )
    assert created.status_code == 201
    assert created.json()["status"] == "pending"

    completed = client.post(f"/api/v1/payments/{created.json()['id']}/complete", headers=ADMIN_HEADERS)
    assert completed.status_code == 200
    return completed.json()


def _submit(client: TestClient, payment_id: str, **overrides) -> dict:
    body = {"paymentId": payment_id, "type": "full", "reason": "Owner cancelled the lease"}
    body.update(overrides)
    response = client.post("/api/v1/refund-requests", json=body, headers=auth_headers(BUYER_ID))
    assert response.status_code == 201, response.text
    return response.json()


def test_payment_lifecycle(client: TestClient, completed_payment: dict):
    assert completed_payment["status"] == "completed"
    assert completed_payment["amount"] == 1000.0
    assert completed_payment["refundAmount"] == 0.0

    duplicate = client.post(
        "/api/v1/payments",
        json={
            "appointmentId": completed_payment["appointmentId"],
            "amount": 10,
            "currency": "INR",
            "gateway": "razorpay",
        },
        headers=auth_headers(BUYER_ID),
    )
    assert duplicate.status_code == 409
    assert duplicate.json()["code"] == "DUPLICATE_PAYMENT"

    refunded = client.post(
        f"/api/v1/payments/{completed_payment['id']}/refund",
        json={"refundAmount": 250, "reason": "Goodwill"},
        headers=ADMIN_HEADERS,
    )
    assert refunded.status_code == 200
    assert refunded.json()["status"] == "partially_refunded"
    assert refunded.json()["refundAmount"] == 250.0

    too_much = client.post(
        f"/api/v1/payments/{completed_payment['id']}/refund",
        json={"refundAmount": 750.01},
        headers=ADMIN_HEADERS,
    )
    assert too_much.status_code == 400
    assert too_much.json()["code"] == "INVALID_REFUND_AMOUNT"


def test_settlement_is_admin_only(client: TestClient, completed_payment: dict):
    response = client.post(f"/api/v1/payments/{completed_payment['id']}/fail", json={}, headers=auth_headers(BUYER_ID))

    assert response.status_code == 403


def test_request_approve_flow(client: TestClient, completed_payment: dict):
    payment_id = completed_payment["id"]
    request = _submit(client, payment_id)
    assert request["status"] == "pending"
    assert request["requestedAmount"] == 1000.0

    status = client.get(f"/api/v1/payments/{payment_id}/refund-request", headers=auth_headers(BUYER_ID)).json()
    assert status["refundRequest"]["id"] == request["id"]

    decided = client.put(
        f"/api/v1/refund-requests/{request['id']}",
        json={"status": "approved", "adminNotes": "Partial", "adminRefundAmount": 400},
        headers=ADMIN_HEADERS,
    )
    assert decided.status_code == 200
    assert decided.json()["status"] == "processed"
    assert decided.json()["adminRefundAmount"] == 400.0

    payment = client.get(f"/api/v1/payments/{payment_id}", headers=auth_headers(BUYER_ID)).json()
    assert payment["status"] == "partially_refunded"
    assert payment["refundAmount"] == 400.0

    history = client.get(f"/api/v1/refund-requests/{request['id']}/history", headers=auth_headers(BUYER_ID))
    assert [entry["action"] for entry in history.json()] == ["created", "approved", "processed"]
    assert history.json()[1]["actorId"] == ADMIN_ID


def test_reject_appeal_reopen_flow(client: TestClient, completed_payment: dict):
    request_id = _submit(client, completed_payment["id"], type="partial", requestedAmount=300)["id"]
    base = f"/api/v1/refund-requests/{request_id}"

    rejected = client.put(base, json={"status": "rejected", "adminNotes": "No proof"}, headers=ADMIN_HEADERS)
    assert rejected.json()["status"] == "rejected"

    appealed = client.post(
        f"{base}/appeal",
        json={"appealReason": "Proof attached", "appealText": "Receipt #42"},
        headers=auth_headers(BUYER_ID),
    )
    assert appealed.status_code == 200
    assert appealed.json()["isAppealed"] is True
    assert appealed.json()["status"] == "rejected"

    second_appeal = client.post(f"{base}/appeal", json={"appealReason": "Again"}, headers=auth_headers(BUYER_ID))
    assert second_appeal.status_code == 409

    reopened = client.put(f"{base}/reopen", json={"reopenReason": "Receipt verified"}, headers=ADMIN_HEADERS)
    assert reopened.status_code == 200
    body = reopened.json()
    assert body["status"] == "pending"
    assert body["caseReopened"] is True
    assert body["caseReopenedBy"] == ADMIN_ID
    assert body["adminNotes"] is None

    listed = client.get("/api/v1/refund-requests?status=pending", headers=ADMIN_HEADERS).json()
    assert listed["total"] == 1
    assert listed["items"][0]["id"] == request_id
    assert listed["hasNext"] is False


def test_non_admin_cannot_decide_or_list(client: TestClient, completed_payment: dict):
    request_id = _submit(client, completed_payment["id"])["id"]

    decide = client.put(
        f"/api/v1/refund-requests/{request_id}", json={"status": "approved"}, headers=auth_headers(SELLER_ID)
    )
    assert decide.status_code == 403
    assert decide.json()["code"] == "UNAUTHORIZED"
    assert client.get("/api/v1/refund-requests", headers=auth_headers(BUYER_ID)).status_code == 403


def test_request_validation(client: TestClient, completed_payment: dict):
    missing_amount = client.post(
        "/api/v1/refund-requests",
        json={"paymentId": completed_payment["id"], "type": "partial", "reason": "Short stay"},
        headers=auth_headers(BUYER_ID),
    )
    assert missing_amount.status_code == 400
    assert missing_amount.json()["code"] == "INVALID_REFUND_AMOUNT"

    stranger = client.post(
        "/api/v1/refund-requests",
        json={"paymentId": completed_payment["id"], "type": "full", "reason": "Not mine"},
        headers=auth_headers(OTHER_BUYER_ID),
    )
    assert stranger.status_code == 403

    unknown_field = client.post(
        "/api/v1/refund-requests",
        json={"paymentId": completed_payment["id"], "type": "full", "reason": "x", "bonus": 1},
        headers=auth_headers(BUYER_ID),
    )
    assert unknown_field.status_code == 422


def test_metrics_endpoint_exposes_engine_counters(client: TestClient, completed_payment: dict):
    _submit(client, completed_payment["id"])

    response = client.get("/metrics")

    assert response.status_code == 200
    assert "engine_refund_request_events_total" in response.text
