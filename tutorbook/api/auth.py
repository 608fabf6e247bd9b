"""
Authentication Dependencies

Simple bearer token authentication plus caller resolution from the
X-User-Id header. Stands in for the platform's real session layer, which
resolves the caller to a user id and role before any scheduling handler runs.
"""
import logging
import uuid
from dataclasses import dataclass
from typing import Iterable, Optional

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from tutorbook.config import settings
from tutorbook.database import AsyncSessionLocal
from tutorbook.models.user import User, UserRole

logger = logging.getLogger(__name__)

# Security scheme
security = HTTPBearer(auto_error=False)


@dataclass
class CurrentUser:
    id: uuid.UUID
    role: str

    @property
    def is_staff(self) -> bool:
        return self.role in UserRole.STAFF


def _unauthorized(code: str, message: str, details: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={
            "error": {
                "code": code,
                "message": message,
                "details": details,
            }
        },
        headers={"WWW-Authenticate": "Bearer"},
    )


async def verify_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> bool:
    """
    Verify bearer token.

    Returns:
        True if valid, raises HTTPException otherwise
    """
    if credentials is None:
        raise _unauthorized(
            "AUTH_001",
            "Authorization header missing",
            "Please provide a valid bearer token",
        )

    if credentials.credentials != settings.API_TOKEN:
        logger.warning(f"Invalid token attempt: {credentials.credentials[:10]}...")
        raise _unauthorized(
            "AUTH_002",
            "Invalid or expired token",
            "The provided token is not valid",
        )

    return True


async def get_current_user(
    _: bool = Depends(verify_token),
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
) -> CurrentUser:
    """Resolve the calling user from the X-User-Id header"""
    if not x_user_id:
        raise _unauthorized("AUTH_003", "Caller not identified", "X-User-Id header required")

    try:
        user_id = uuid.UUID(x_user_id)
    except ValueError:
        raise _unauthorized("AUTH_003", "Caller not identified", "X-User-Id must be a UUID")

    async with AsyncSessionLocal() as db:
        user = await db.get(User, user_id)

    if user is None or not user.is_active:
        logger.warning(f"Rejected unknown or inactive user {user_id}")
        raise _unauthorized("AUTH_004", "Unknown or inactive user", str(user_id))

    return CurrentUser(id=user.id, role=user.role)


def require_roles(allowed_roles: Iterable[str]):
    """
    FastAPI dependency: requires the caller to hold one of `allowed_roles`.

    Special case: `admin` is always allowed.
    """
    allowed = {role for role in allowed_roles if role}
    if not allowed:
        raise ValueError("require_roles() called with empty allowed_roles")

    async def _dep(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if user.role == UserRole.ADMIN or user.role in allowed:
            return user
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "error": {
                    "code": "FORBIDDEN",
                    "message": "Insufficient role for this operation",
                    "details": {"required": sorted(allowed), "role": user.role},
                }
            },
        )

    return _dep
