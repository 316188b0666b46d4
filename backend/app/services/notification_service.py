# backend/app/services/notification_service.py
"""
Notification Service.

Builds buyer/seller/admin messages for appointment, payment and refund
request events and hands them to the dispatcher. Dispatch runs after the
engine has committed; a failing dispatcher is logged and never raises
back into the operation that triggered it.
"""

import logging
from typing import Iterable, List, Optional

from ..models.appointment import Appointment, AppointmentStatus
from ..models.payment import Payment
from ..models.refund_request import RefundRequest
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..notifications.dispatcher import (
    ADMIN_AUDIENCE,
    Notification,
    NotificationDispatcher,
    get_notification_dispatcher,
)

logger = logging.getLogger(__name__)

_TRANSITION_MESSAGES = {
    AppointmentStatus.ACCEPTED.value: ("Appointment accepted", "Your appointment has been accepted."),
    AppointmentStatus.REJECTED.value: ("Appointment rejected", "Your appointment request was rejected."),
    AppointmentStatus.CANCELLED_BY_BUYER.value: (
        "Appointment cancelled",
        "The buyer cancelled the appointment.",
    ),
    AppointmentStatus.CANCELLED_BY_SELLER.value: (
        "Appointment cancelled",
        "The seller cancelled the appointment.",
    ),
    AppointmentStatus.COMPLETED.value: ("Appointment completed", "The appointment has been completed."),
}


class NotificationService:
    """Fire-and-forget notifications for engine events."""

    def __init__(self, dispatcher: Optional[NotificationDispatcher] = None):
        self.dispatcher = dispatcher or get_notification_dispatcher()
        self.logger = logging.getLogger(self.__class__.__name__)

    def send(self, notifications: Iterable[Notification]) -> int:
        """
        Dispatch each notification, containing failures.

        Returns:
            Number of notifications the dispatcher accepted
        """
        delivered = 0
        for notification in notifications:
            try:
                self.dispatcher.dispatch(notification)
                delivered += 1
                prometheus_metrics.record_notification(notification.event_type, "sent")
            except Exception as exc:
                prometheus_metrics.record_notification(notification.event_type, "failed")
                self.logger.error(
                    f"Failed to dispatch {notification.event_type} notification: {str(exc)}",
                    extra={
                        "event_type": notification.event_type,
                        "recipient_id": notification.recipient_id,
                        "error_type": type(exc).__name__,
                    },
                )
        return delivered

    # Appointments

    def appointment_created(self, appointment: Appointment) -> int:
        data = {"appointment_id": appointment.id, "listing_id": appointment.listing_id}
        notes: List[Notification] = [
            Notification(
                event_type="appointment.created",
                title="New appointment request",
                message=f"A buyer requested an appointment on {appointment.date} at "
                f"{appointment.time.strftime('%H:%M') if appointment.time else ''}.",
                recipient_id=appointment.seller_id,
                data=data,
            )
        ]
        if appointment.booked_by and appointment.booked_by != appointment.buyer_id:
            notes.append(
                Notification(
                    event_type="appointment.created_for_you",
                    title="Appointment booked for you",
                    message="An administrator booked an appointment on your behalf.",
                    recipient_id=appointment.buyer_id,
                    data=data,
                )
            )
        return self.send(notes)

    def appointment_transitioned(self, appointment: Appointment, actor_id: str) -> int:
        title, message = _TRANSITION_MESSAGES.get(
            appointment.status, ("Appointment updated", "Your appointment was updated.")
        )
        data = {
            "appointment_id": appointment.id,
            "listing_id": appointment.listing_id,
            "status": appointment.status,
        }
        recipients = [
            user_id
            for user_id in (appointment.buyer_id, appointment.seller_id)
            if user_id and user_id != actor_id
        ]
        return self.send(
            Notification(
                event_type=f"appointment.{appointment.status}",
                title=title,
                message=message,
                recipient_id=user_id,
                data=data,
            )
            for user_id in recipients
        )

    def appointment_reinitiated(self, appointment: Appointment) -> int:
        return self.send(
            [
                Notification(
                    event_type="appointment.reinitiated",
                    title="Appointment reinitiated",
                    message=f"The buyer reinitiated the appointment for {appointment.date}.",
                    recipient_id=appointment.seller_id,
                    data={"appointment_id": appointment.id, "listing_id": appointment.listing_id},
                )
            ]
        )

    # Payments

    def payment_refunded(self, payment: Payment, buyer_id: Optional[str]) -> int:
        if not buyer_id:
            return 0
        return self.send(
            [
                Notification(
                    event_type="payment.refunded",
                    title="Refund processed",
                    message=f"A refund of {payment.refund_amount} {payment.currency} has been processed.",
                    recipient_id=buyer_id,
                    data={"payment_id": payment.id, "status": payment.status},
                )
            ]
        )

    # Refund requests

    def refund_request_submitted(self, request: RefundRequest) -> int:
        return self.send(
            [
                Notification(
                    event_type="refund_request.submitted",
                    title="New refund request",
                    message=f"A refund request for {request.requested_amount} needs review.",
                    audience=ADMIN_AUDIENCE,
                    data={"refund_request_id": request.id, "payment_id": request.payment_id},
                )
            ]
        )

    def refund_request_decided(self, request: RefundRequest) -> int:
        approved = request.status != "rejected"
        message = (
            f"Your refund request was approved for {request.admin_refund_amount}."
            if approved
            else "Your refund request was rejected."
        )
        if request.admin_notes:
            message = f"{message} Notes: {request.admin_notes}"
        return self.send(
            [
                Notification(
                    event_type=f"refund_request.{request.status}",
                    title="Refund request update",
                    message=message,
                    recipient_id=request.user_id,
                    data={"refund_request_id": request.id, "status": request.status},
                )
            ]
        )

    def refund_request_appealed(self, request: RefundRequest) -> int:
        return self.send(
            [
                Notification(
                    event_type="refund_request.appealed",
                    title="Refund appeal submitted",
                    message=f"The requester appealed: {request.appeal_reason}",
                    audience=ADMIN_AUDIENCE,
                    data={"refund_request_id": request.id},
                )
            ]
        )

    def refund_request_reopened(self, request: RefundRequest) -> int:
        return self.send(
            [
                Notification(
                    event_type="refund_request.reopened",
                    title="Refund case reopened",
                    message="Your refund request has been reopened for review.",
                    recipient_id=request.user_id,
                    data={"refund_request_id": request.id},
                )
            ]
        )
