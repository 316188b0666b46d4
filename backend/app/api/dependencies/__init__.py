# backend/app/api/dependencies/__init__.py
"""
Central export point for all dependencies.

This module re-exports all dependencies from submodules
for convenient access throughout the application.
"""

from .auth import get_current_principal, require_admin
from .database import get_db
from .services import (
    get_appointment_service,
    get_listing_directory_dep,
    get_notification_service,
    get_payment_service,
    get_refund_request_service,
)

__all__ = [
    # Auth
    "get_current_principal",
    "require_admin",
    # Database
    "get_db",
    # Services
    "get_appointment_service",
    "get_listing_directory_dep",
    "get_notification_service",
    "get_payment_service",
    "get_refund_request_service",
]
