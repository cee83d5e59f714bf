"""
Authentication Dependencies

Bearer JWT verification for tokens issued by the platform's identity provider.
The token's `sub` claim is the user id and its `role` claim drives the single
admin capability check; nothing downstream looks at credentials again.
"""
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt

logger = logging.getLogger(__name__)

AUTH_JWT_SECRET = os.getenv("AUTH_JWT_SECRET", "dev-secret-change-me")
AUTH_JWT_ALGORITHM = os.getenv("AUTH_JWT_ALGORITHM", "HS256")

ADMIN_ROLE = "admin"
DEFAULT_ROLE = "student"

# Security scheme
security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class CurrentUser:
    """Identity established by the identity provider"""

    user_id: str
    role: str = DEFAULT_ROLE

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE


def _unauthorized(code: str, message: str, details: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={
            "error": {
                "code": code,
                "message": message,
                "details": details
            }
        },
        headers={"WWW-Authenticate": "Bearer"}
    )


def create_access_token(
    user_id: str,
    role: str = DEFAULT_ROLE,
    expires_in: timedelta = timedelta(hours=1),
) -> str:
    """
    Issue a signed token.

    Production tokens come from the identity provider; this exists for local
    tooling and tests that need to act as a given user.
    """
    now = datetime.now(timezone.utc)
    claims = {
        "sub": user_id,
        "role": role,
        "iat": int(now.timestamp()),
        "exp": int((now + expires_in).timestamp()),
    }
    return jwt.encode(claims, AUTH_JWT_SECRET, algorithm=AUTH_JWT_ALGORITHM)


def decode_token(token: str) -> CurrentUser:
    """
    Verify a bearer token and extract the user.

    Raises:
        HTTPException: 401 if the token is invalid, expired or has no subject
    """
    try:
        claims = jwt.decode(token, AUTH_JWT_SECRET, algorithms=[AUTH_JWT_ALGORITHM])
    except JWTError as e:
        logger.warning(f"Invalid token attempt: {e}")
        raise _unauthorized("AUTH_002", "Invalid or expired token", "The provided token is not valid")

    user_id = claims.get("sub")
    if not user_id:
        raise _unauthorized("AUTH_003", "Invalid token subject", "Token does not identify a user")

    return CurrentUser(user_id=str(user_id), role=claims.get("role") or DEFAULT_ROLE)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> CurrentUser:
    """
    Get current user from the Authorization header.

    Raises:
        HTTPException: 401 if the header is missing or the token is invalid
    """
    if credentials is None:
        raise _unauthorized(
            "AUTH_001",
            "Authorization header missing",
            "Please provide a valid bearer token"
        )

    return decode_token(credentials.credentials)


async def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    """Admin capability check, performed once at the boundary."""
    if not user.is_admin:
        logger.warning(f"Admin endpoint denied for user {user.user_id} (role={user.role})")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "error": {
                    "code": "AUTH_004",
                    "message": "Forbidden",
                    "details": "Administrator role required"
                }
            }
        )
    return user
