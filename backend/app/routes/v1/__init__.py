# backend/app/routes/v1/__init__.py
"""
API v1 Routes

Versioned API endpoints under /api/v1.
"""

from . import appointments, payments, refund_requests

__all__ = [
    "appointments",
    "payments",
    "refund_requests",
]
