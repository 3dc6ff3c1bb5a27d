"""
Bearer token verification.

Tokens are issued by the platform's auth service with the user id in `sub`.
create_access_token mints the same shape for local development and tests.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

from jose import JWTError, jwt

from config import settings

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"
DEV_TOKEN_HOURS = 12


def create_access_token(user_id: UUID, email: str, secret: Optional[str] = None, hours: int = DEV_TOKEN_HOURS) -> str:
    key = secret or settings.jwt_secret
    if not key:
        raise RuntimeError("JWT_SECRET not set")
    claims = {
        "sub": str(user_id),
        "email": email,
        "exp": datetime.now(timezone.utc) + timedelta(hours=hours),
    }
    return jwt.encode(claims, key, algorithm=JWT_ALGORITHM)


def user_id_from_token(token: str, secret: Optional[str] = None) -> Optional[UUID]:
    """User id carried by a valid token; None for a bad signature, expiry or a missing/invalid `sub`."""
    key = secret or settings.jwt_secret
    if not key:
        logger.warning("JWT_SECRET not set; rejecting bearer token")
        return None
    try:
        claims = jwt.decode(token, key, algorithms=[JWT_ALGORITHM])
    except JWTError as e:
        logger.debug("Rejected bearer token: %s", e)
        return None
    try:
        return UUID(str(claims.get("sub")))
    except ValueError:
        return None
