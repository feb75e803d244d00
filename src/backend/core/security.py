"""
JWT bearer token utilities.

Tokens are issued by the authentication collaborator; the subject claim is
the User id. Role and department are always read from the User row, never
trusted from the token.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from uuid import UUID, uuid4

import jwt
from jwt.exceptions import ExpiredSignatureError, InvalidTokenError

from core.config import settings
from db.models import User


class SecurityError(Exception):
    """Base exception for security-related errors."""

    pass


class TokenExpiredError(SecurityError):
    """Raised when a token has expired."""

    pass


class TokenInvalidError(SecurityError):
    """Raised when a token is invalid."""

    pass


def create_access_token(user: User, expires_delta: Optional[timedelta] = None) -> str:
    """Create a signed access token for the given user.

    Args:
        user: User the token is issued for
        expires_delta: Custom lifetime (defaults to the configured minutes)

    Returns:
        Encoded JWT string
    """
    now = datetime.now(timezone.utc)
    expire = now + (
        expires_delta
        or timedelta(minutes=settings.security.access_token_expire_minutes)
    )

    payload = {
        "sub": str(user.id),
        "username": user.username,
        "type": "access",
        "iat": int(now.timestamp()),
        "exp": int(expire.timestamp()),
        "jti": str(uuid4()),
        "iss": settings.security.jwt_issuer,
        "aud": settings.security.jwt_audience,
    }

    try:
        return jwt.encode(
            payload,
            settings.security.jwt_secret_key_property,
            algorithm=settings.security.algorithm,
        )
    except Exception as e:
        raise SecurityError(f"Failed to create access token: {str(e)}")


def decode_token(token: str) -> Dict[str, Any]:
    """Decode and validate a JWT token.

    Raises:
        TokenExpiredError: If token has expired
        TokenInvalidError: If signature, issuer, audience or claims are invalid
    """
    try:
        return jwt.decode(
            token,
            settings.security.jwt_secret_key_property,
            algorithms=[settings.security.algorithm],
            audience=settings.security.jwt_audience,
            issuer=settings.security.jwt_issuer,
        )
    except ExpiredSignatureError:
        raise TokenExpiredError("Token has expired")
    except InvalidTokenError as e:
        raise TokenInvalidError(f"Invalid token: {str(e)}")


def get_user_id_from_token(payload: Dict[str, Any]) -> UUID:
    """Extract the user id from a decoded access token."""
    if payload.get("type") != "access":
        raise TokenInvalidError("Not an access token")

    subject = payload.get("sub")
    if not subject:
        raise TokenInvalidError("Token has no subject")

    try:
        return UUID(subject)
    except ValueError:
        raise TokenInvalidError("Token subject is not a user id")
