"""
Bearer token authentication.

Tokens are HS256 JWTs issued by the identity provider; ``sub`` carries the
user id and ``role`` the account role (``admin``/``rootadmin`` are
administrators).
"""

from datetime import datetime, timedelta, timezone
import logging
from typing import Any, Dict, Optional, cast

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
import jwt
from jwt import PyJWTError

from .core.config import settings
from .principal import UserPrincipal

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def _secret_value(secret_obj: Any) -> str:
    getter = getattr(secret_obj, "get_secret_value", None)
    if callable(getter):
        return cast(str, getter())
    return cast(str, secret_obj)


def decode_access_token(token: str) -> Dict[str, Any]:
    """Decode and verify a JWT access token."""
    payload_raw = jwt.decode(
        token,
        _secret_value(settings.secret_key),
        algorithms=[settings.algorithm],
        options={"verify_aud": False},
    )
    return cast(Dict[str, Any], payload_raw)


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a JWT access token.

    Args:
        data: The data to encode in the token (``sub`` and ``role``)
        expires_delta: Optional expiration time delta

    Returns:
        str: The encoded JWT token
    """
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(
            minutes=settings.access_token_expire_minutes
        )
    to_encode.update({"exp": expire})

    encoded_jwt = cast(
        str,
        jwt.encode(
            to_encode,
            _secret_value(settings.secret_key),
            algorithm=settings.algorithm,
        ),
    )
    logger.debug(f"Created access token for user: {data.get('sub')}")
    return encoded_jwt


def get_current_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> UserPrincipal:
    """
    Dependency resolving the authenticated caller.

    Raises:
        HTTPException: 401 if the token is missing, invalid or expired
    """
    invalid_credentials = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"message": "Could not validate credentials", "code": "NOT_AUTHENTICATED"},
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None or not credentials.credentials:
        raise invalid_credentials

    try:
        payload = decode_access_token(credentials.credentials)
    except PyJWTError as e:
        logger.info(f"Rejected bearer token: {str(e)}")
        raise invalid_credentials

    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject:
        raise invalid_credentials
    role = payload.get("role")
    return UserPrincipal(user_id=subject, account_role=role if isinstance(role, str) else "user")


def require_admin(principal: UserPrincipal = Depends(get_current_principal)) -> UserPrincipal:
    """Dependency allowing administrators only."""
    if not principal.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "message": "Administrator access required",
                "code": "UNAUTHORIZED",
                "details": {"actor_id": principal.id},
            },
        )
    return principal
