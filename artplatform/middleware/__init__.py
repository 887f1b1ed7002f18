"""Middleware modules for production-ready features"""
from artplatform.middleware.monitoring import (
    MonitoringMiddleware,
    record_lockout,
    record_login,
    record_token_revoked,
    record_tokens_issued,
)
from artplatform.middleware.rate_limit import limiter, get_rate_limit

__all__ = [
    "MonitoringMiddleware",
    "record_lockout",
    "record_login",
    "record_token_revoked",
    "record_tokens_issued",
    "limiter",
    "get_rate_limit"
]
