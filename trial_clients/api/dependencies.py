"""
FastAPI Dependencies - Authentication, authorization and maintenance gating.

NO DICTIONARIES - All dependencies return typed objects.

Admin and maintenance checks fail closed: an error while checking is
treated the same as "not allowed".
"""

import hmac
from dataclasses import dataclass
from uuid import UUID

import jwt
from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from trial_clients.config import settings
from trial_clients.db.session import get_write_db
from trial_clients.exceptions import AuthenticationError
from trial_clients.observability.logging import get_logger
from trial_clients.services.system_settings import SystemSettingsService

logger = get_logger(__name__)

# Bearer token scheme for user session tokens
bearer_scheme = HTTPBearer(auto_error=False)

UNAVAILABLE_DETAIL = "Service temporarily unavailable"


@dataclass(frozen=True)
class CurrentUser:
    """Authenticated user from a session token."""

    user_id: UUID
    email: str | None = None


def decode_user_token(token: str) -> CurrentUser:
    """
    Verify a session token and extract the user.

    Raises:
        AuthenticationError: Bad signature, expired, wrong audience or no usable sub
    """
    if not settings.jwt_secret:
        raise AuthenticationError("Token verification is not configured")
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
        )
    except jwt.ExpiredSignatureError as exc:
        raise AuthenticationError("Token has expired") from exc
    except jwt.InvalidTokenError as exc:
        raise AuthenticationError(f"Invalid token: {exc}") from exc

    try:
        user_id = UUID(str(payload["sub"]))
    except (KeyError, ValueError) as exc:
        raise AuthenticationError("Invalid token: missing user ID") from exc

    email = payload.get("email")
    return CurrentUser(user_id=user_id, email=str(email) if email else None)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> CurrentUser:
    """
    FastAPI dependency to validate the user session token.

    Accepts: Authorization: Bearer {session_token}

    Raises:
        HTTPException 401 if no token or invalid token
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return decode_user_token(credentials.credentials)
    except AuthenticationError as exc:
        logger.warning("user_auth_failed", error=exc.message)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=exc.message,
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc


async def require_admin(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_write_db),
) -> CurrentUser:
    """
    Require the admin role.

    Raises:
        HTTPException(403): Not an admin, or the role lookup failed
    """
    try:
        is_admin = await SystemSettingsService(db).is_admin(user.user_id)
    except Exception as exc:
        logger.error("admin_role_check_failed", user_id=str(user.user_id), error=str(exc))
        is_admin = False

    if not is_admin:
        logger.warning("admin_auth_insufficient_role", user_id=str(user.user_id))
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin role required",
        )
    return user


async def require_not_maintenance(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_write_db),
) -> CurrentUser:
    """
    Block non-admin users while maintenance mode is on.

    Admins pass through. Any error reading the flag blocks the request.

    Raises:
        HTTPException(503): Maintenance active or flag unreadable
    """
    try:
        blocked = await SystemSettingsService(db).maintenance_block(user.user_id)
    except Exception as exc:
        logger.error("maintenance_check_failed", user_id=str(user.user_id), error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=UNAVAILABLE_DETAIL,
        ) from exc

    if blocked is not None:
        logger.info("request_blocked_maintenance", user_id=str(user.user_id))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=blocked,
        )
    return user


async def verify_callback_secret(
    x_callback_secret: str | None = Header(None, description="Brief generator shared secret"),
) -> None:
    """
    Check the brief generator's shared secret in constant time.

    Raises:
        HTTPException 401 if the secret is missing, wrong, or not configured
    """
    expected = settings.brief_callback_secret
    if not expected or not x_callback_secret:
        logger.warning("callback_secret_missing")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid callback secret",
        )
    if not hmac.compare_digest(x_callback_secret.encode(), expected.encode()):
        logger.warning("callback_secret_mismatch")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid callback secret",
        )
