"""JWT utilities: token signing and verification"""
import uuid
from datetime import datetime, timezone
from typing import Any, Dict

from jose import ExpiredSignatureError, JWTError, jwt

from artplatform.config import settings
from artplatform.utils.logger import logger


class TokenVerificationError(Exception):
    """Raised when a JWT fails signature, expiry or claim checks."""

    def __init__(self, message: str, expired: bool = False) -> None:
        super().__init__(message)
        self.expired = expired


def generate_jti() -> str:
    """Generate a unique JTI (JWT ID)."""
    return str(uuid.uuid4())


def create_token(claims: Dict[str, Any], secret: str, ttl_ms: int) -> str:
    """Sign and return a JWT.

    Args:
        claims: Payload claims (``userId``, ``role``, ``jti``).
        secret: HMAC key. Access and refresh tokens use different keys.
        ttl_ms: Lifetime in milliseconds, converted into the ``exp`` claim.

    Returns:
        Signed JWT string.
    """
    now = int(datetime.now(timezone.utc).timestamp())

    payload: Dict[str, Any] = {
        **claims,
        "iat": now,
        "exp": now + ttl_ms // 1000,
    }
    return jwt.encode(payload, secret, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str, secret: str) -> Dict[str, Any]:
    """Verify a JWT and return its payload.

    Checks:
    1. Signature validity against ``secret``
    2. Token not expired (jose handles 'exp')
    3. ``userId`` and ``jti`` claims present

    Raises:
        TokenVerificationError: on any verification failure.
    """
    if not token:
        raise TokenVerificationError("Token missing")

    try:
        payload = jwt.decode(token, secret, algorithms=[settings.JWT_ALGORITHM])
    except ExpiredSignatureError as exc:
        raise TokenVerificationError("Token expired", expired=True) from exc
    except JWTError as exc:
        logger.debug(f"JWT decode failed: {exc}")
        raise TokenVerificationError("Invalid token") from exc

    if not payload.get("userId") or not payload.get("jti"):
        raise TokenVerificationError("Token missing required claims")

    return payload


def seconds_until_expiry(payload: Dict[str, Any]) -> int:
    """Remaining lifetime of a decoded token, never below one second."""
    now = int(datetime.now(timezone.utc).timestamp())
    return max(1, int(payload.get("exp", now)) - now)
