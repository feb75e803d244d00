"""
Authentication dependencies for FastAPI.
"""

from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.database import get_session
from core.security import SecurityError, decode_token, get_user_id_from_token
from db.models import User

# auto_error is off so a missing header is a 401 like any other bad credential
security = HTTPBearer(auto_error=False)


class AuthenticationError(HTTPException):
    """Custom authentication error."""

    def __init__(self, detail: str = "Authentication required"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_session),
) -> User:
    """Resolve the caller from the bearer token.

    Raises:
        AuthenticationError: If the token is missing or invalid, or the user
            is unknown or inactive
    """
    if credentials is None:
        raise AuthenticationError()

    try:
        payload = decode_token(credentials.credentials)
        user_id = get_user_id_from_token(payload)
    except SecurityError as e:
        raise AuthenticationError(str(e))

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if not user:
        raise AuthenticationError("User not found")

    if not user.is_active:
        raise AuthenticationError("User account is inactive")

    return user
