"""Monitoring and observability middleware"""
import time
from typing import Callable
from fastapi import Request, Response
from prometheus_client import Counter, Histogram
from starlette.middleware.base import BaseHTTPMiddleware
from artplatform.utils.logger import logger


# ===== Prometheus Metrics =====

# Request metrics
http_requests_total = Counter(
    "artplatform_http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"]
)

http_request_duration_seconds = Histogram(
    "artplatform_http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "endpoint"]
)

http_errors_total = Counter(
    "artplatform_http_errors_total",
    "Total HTTP errors",
    ["method", "endpoint", "status"]
)

# Auth metrics
logins_total = Counter(
    "artplatform_logins_total",
    "Login attempts by outcome",
    ["outcome"]  # success, invalid_password, unknown_identifier, locked, unverified
)

lockouts_total = Counter(
    "artplatform_account_lockouts_total",
    "Failed logins that left the account locked"
)

tokens_issued_total = Counter(
    "artplatform_tokens_issued_total",
    "Access/refresh token pairs issued"
)

tokens_revoked_total = Counter(
    "artplatform_tokens_revoked_total",
    "Token identifiers written to the revocation store",
    ["reason"]  # logout, rotation
)


class MonitoringMiddleware(BaseHTTPMiddleware):
    """Middleware for monitoring and metrics collection"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Process request and collect metrics"""
        start_time = time.time()

        method = request.method
        endpoint = request.url.path

        # Add request ID for tracing
        request_id = request.headers.get("x-request-id", f"req_{int(time.time() * 1000)}")
        request.state.request_id = request_id

        try:
            response = await call_next(request)
            status = response.status_code

            duration = time.time() - start_time
            http_requests_total.labels(
                method=method,
                endpoint=endpoint,
                status=status
            ).inc()

            http_request_duration_seconds.labels(
                method=method,
                endpoint=endpoint
            ).observe(duration)

            # bcrypt at cost 12 alone takes a few hundred ms; flag anything far above
            if duration > 2.0:
                logger.warning(
                    f"Slow request detected: {method} {endpoint}",
                    extra={
                        "request_id": request_id,
                        "method": method,
                        "path": endpoint,
                        "status": status
                    }
                )

            if status >= 400:
                http_errors_total.labels(
                    method=method,
                    endpoint=endpoint,
                    status=status
                ).inc()

            response.headers["X-Request-ID"] = request_id
            response.headers["X-Response-Time"] = f"{duration:.3f}s"

            return response

        except Exception:
            http_errors_total.labels(
                method=method,
                endpoint=endpoint,
                status=500
            ).inc()

            logger.error(
                f"Request failed: {method} {endpoint}",
                extra={
                    "request_id": request_id,
                    "method": method,
                    "path": endpoint,
                },
                exc_info=True
            )
            raise


def record_login(outcome: str):
    """Record a login attempt outcome"""
    logins_total.labels(outcome=outcome).inc()


def record_lockout():
    """Record an account entering lockout"""
    lockouts_total.inc()


def record_tokens_issued():
    """Record a token pair issuance"""
    tokens_issued_total.inc()


def record_token_revoked(reason: str):
    """Record a jti revocation"""
    tokens_revoked_total.labels(reason=reason).inc()
