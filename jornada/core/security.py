import hmac
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from jornada.core.config import get_settings
from jornada.core.exceptions import AuthenticationError

settings = get_settings()

logger = logging.getLogger(__name__)
bearer_scheme = HTTPBearer(auto_error=False)


def create_jwt_token(subject: str, expires_in: int, claims: Optional[Dict[str, Any]] = None) -> str:
    """Create a signed JWT token.

    Tokens are normally issued by the external identity provider; this is used by
    operators and tests to mint compatible tokens.

    Args:
        subject: Token subject (user id).
        expires_in: Expiration time in seconds.
        claims: Optional claims to include.

    Returns:
        Signed JWT token string.
    """

    now = datetime.now(timezone.utc)
    payload: Dict[str, Any] = {"sub": subject, "iat": now, "exp": now + timedelta(seconds=expires_in)}
    if claims:
        payload.update(claims)
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def verify_jwt_token(token: str) -> Optional[Dict[str, Any]]:
    """Verify a JWT token and return its payload if valid.

    Args:
        token: JWT token string.

    Returns:
        Decoded payload dict if valid; None otherwise.
    """

    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as exc:
        logger.warning("JWT verification failed: %s", exc)
        return None


def secrets_match(expected: Optional[str], provided: Optional[str]) -> bool:
    if not expected or not provided:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), provided.encode("utf-8"))


async def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> str:
    """FastAPI dependency resolving the caller's user id from the bearer token."""
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Missing bearer token", code="missing_token")
    payload = verify_jwt_token(credentials.credentials)
    subject = (payload or {}).get("sub")
    if not subject:
        raise AuthenticationError("Invalid or expired token", code="invalid_token")
    return str(subject)
