"""Rate limiting for auth and API routes"""
from slowapi import Limiter
from slowapi.util import get_remote_address
from fastapi import Request
from artplatform.config import settings


def get_identifier(request: Request) -> str:
    """
    Get identifier for rate limiting

    Priority:
    1. Authenticated account id (set by the auth dependency)
    2. IP address (for unauthenticated requests)
    """
    user_id = getattr(request.state, "user_id", None)
    if user_id:
        return f"user:{user_id}"

    return get_remote_address(request)


# Create limiter instance
limiter = Limiter(
    key_func=get_identifier,
    default_limits=settings.RATE_LIMIT_DEFAULT,
    storage_uri=settings.RATE_LIMIT_STORAGE_URI,
    strategy="fixed-window",
    enabled=settings.RATE_LIMIT_ENABLED,
)


# Rate limit configurations per route class
RATE_LIMITS = {
    # Credential endpoints - brute-force surface
    "authentication": "10/15minute",

    # Authenticated API calls
    "api": "100/minute",

    # Everything else
    "public": "1000/hour",
}


def get_rate_limit(route_type: str) -> str:
    """Get rate limit for a route class"""
    return RATE_LIMITS.get(route_type, settings.RATE_LIMIT_DEFAULT[0])
