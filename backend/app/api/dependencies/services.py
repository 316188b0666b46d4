# backend/app/api/dependencies/services.py
"""
Service layer dependencies for dependency injection.

This module provides factory functions that create service instances
with their required dependencies properly injected. Each request gets
services bound to its own database session; collaborators without
per-request state (clock, listing directory, notification dispatcher)
are process-wide.
"""

import logging

from fastapi import Depends
from sqlalchemy.orm import Session

from ...core.clock import Clock, get_clock
from ...integrations import ListingDirectory, get_listing_directory
from ...notifications import NotificationDispatcher, get_notification_dispatcher
from ...services.appointment_service import AppointmentService
from ...services.notification_service import NotificationService
from ...services.payment_service import PaymentService
from ...services.refund_request_service import RefundRequestService
from .database import get_db

logger = logging.getLogger(__name__)


def get_listing_directory_dep() -> ListingDirectory:
    return get_listing_directory()


def get_notification_service(
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
) -> NotificationService:
    return NotificationService(dispatcher)


def get_appointment_service(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    listing_directory: ListingDirectory = Depends(get_listing_directory_dep),
    notification_service: NotificationService = Depends(get_notification_service),
) -> AppointmentService:
    """
    Get appointment service instance for dependency injection.

    Args:
        db: Database session
        clock: Engine clock
        listing_directory: Listing owner lookup
        notification_service: Event notifications

    Returns:
        AppointmentService instance
    """
    return AppointmentService(
        db,
        clock=clock,
        listing_directory=listing_directory,
        notification_service=notification_service,
    )


def get_payment_service(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    notification_service: NotificationService = Depends(get_notification_service),
) -> PaymentService:
    return PaymentService(db, clock=clock, notification_service=notification_service)


def get_refund_request_service(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    payment_service: PaymentService = Depends(get_payment_service),
    notification_service: NotificationService = Depends(get_notification_service),
) -> RefundRequestService:
    return RefundRequestService(
        db,
        clock=clock,
        notification_service=notification_service,
        payment_service=payment_service,
    )
