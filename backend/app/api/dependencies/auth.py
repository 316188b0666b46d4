# backend/app/api/dependencies/auth.py
"""
Authentication and authorization dependencies.
"""

from ...auth import get_current_principal, require_admin

__all__ = ["get_current_principal", "require_admin"]
