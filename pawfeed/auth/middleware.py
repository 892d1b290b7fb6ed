"""Authentication middleware for JWT token verification.

Identity is issued by the marketplace's auth service. The feed only needs the
caller id (``sub``) and marketplace role (``role``), both read straight from
the token without a database lookup.
"""

import jwt
from typing import Optional
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from pawfeed.config import settings
from pawfeed.logging_config import logger, redact_sensitive_data
from pawfeed.models.video import UserRole

# Security scheme for extracting Bearer token
security = HTTPBearer()


class AuthUser:
    """Authenticated caller: user id plus marketplace role."""

    def __init__(self, user_id: str, role: UserRole):
        self.user_id = user_id
        self.role = role

    def __repr__(self):
        return f"<AuthUser(user_id={self.user_id}, role={self.role.value})>"


def verify_token(token: str) -> dict:
    """Verify a marketplace JWT.

    Args:
        token: JWT token string

    Returns:
        Decoded token payload

    Raises:
        HTTPException: If token is invalid or expired
    """
    options = {} if settings.jwt_audience else {"verify_aud": False}
    try:
        return jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
            options=options,
        )
    except jwt.ExpiredSignatureError:
        logger.warning("Token expired")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except jwt.InvalidTokenError as e:
        logger.warning("Invalid token", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication token",
            headers={"WWW-Authenticate": "Bearer"},
        )


def user_from_payload(payload: dict) -> AuthUser:
    """Build the caller from a verified token payload.

    Raises:
        HTTPException: If the subject or role claim is missing or unknown
    """
    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token: missing user ID",
        )

    try:
        role = UserRole(str(payload.get("role", "")).lower())
    except ValueError:
        logger.warning("Token has unknown role", payload=redact_sensitive_data(payload))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token: unknown role",
        )

    return AuthUser(user_id=str(user_id), role=role)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> AuthUser:
    """Get current authenticated user from JWT token.

    Args:
        credentials: HTTP Bearer credentials

    Returns:
        Authenticated user context

    Raises:
        HTTPException: If authentication fails
    """
    payload = verify_token(credentials.credentials)
    return user_from_payload(payload)


async def get_current_user_optional(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(
        HTTPBearer(auto_error=False)
    ),
) -> Optional[AuthUser]:
    """Get current user if authenticated, None otherwise.

    Used by read endpoints that also serve anonymous viewers.

    Args:
        credentials: Optional HTTP Bearer credentials

    Returns:
        Authenticated user or None
    """
    if not credentials:
        return None

    try:
        return await get_current_user(credentials)
    except HTTPException:
        return None
