"""FastAPI application entry point"""
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from prometheus_fastapi_instrumentator import Instrumentator

from artplatform import __version__
from artplatform.api import auth, health
from artplatform.config import settings
from artplatform.database import SessionLocal, engine
from artplatform.middleware.rate_limit import limiter
from artplatform.services.errors import AuthError, ErrorKind
from artplatform.services.mailer import NotificationService, SmtpMessageSender
from artplatform.services.oauth import GoogleOAuthClient
from artplatform.services.revocation import DatabaseRevocationStore, RedisRevocationStore
from artplatform.utils.logger import logger, setup_logging

# Setup logging
setup_logging(settings.LOG_LEVEL)


def build_revocation_store():
    """Create the configured revocation backend. Misconfiguration is fatal."""
    if settings.REVOCATION_BACKEND == "database":
        store = DatabaseRevocationStore(SessionLocal)
        store.prune_expired()
        return store

    if not settings.REDIS_URL:
        raise RuntimeError("REVOCATION_BACKEND=redis requires REDIS_URL")

    store = RedisRevocationStore.from_url(settings.REDIS_URL)
    store.ping()
    logger.info("Connected to Redis")
    return store


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler: owns connections to external stores"""
    # Startup
    logger.info("Art Platform backend starting up", extra={"action": "startup"})
    app.state.revocations = build_revocation_store()
    app.state.notifications = NotificationService(SmtpMessageSender.from_settings(), settings.APP_NAME)
    app.state.google_oauth = GoogleOAuthClient.from_settings()
    yield
    # Shutdown
    if isinstance(app.state.revocations, RedisRevocationStore):
        app.state.revocations.close()
        logger.info("Redis connection closed")
    engine.dispose()
    logger.info("Art Platform backend shutting down", extra={"action": "shutdown"})


# Create FastAPI app
app = FastAPI(
    title="Art Platform",
    description="Account registration, login and session management for the Art Platform",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# ===== Middleware Setup =====

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Monitoring middleware
if settings.METRICS_ENABLED:
    from artplatform.middleware.monitoring import MonitoringMiddleware
    app.add_middleware(MonitoringMiddleware)

    # Prometheus metrics
    instrumentator = Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=True,
        excluded_handlers=["/metrics", "/health", "/health/ready", "/health/live"],
    )
    instrumentator.instrument(app)
    instrumentator.expose(app, endpoint=settings.METRICS_PATH, include_in_schema=False)

# Rate limiting
app.state.limiter = limiter


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    """Handle rate limit exceeded errors"""
    logger.warning(
        "Rate limit exceeded",
        extra={
            "path": request.url.path,
            "method": request.method,
            "ip": request.client.host if request.client else "unknown"
        }
    )
    return JSONResponse(
        status_code=429,
        content={
            "success": False,
            "error": {
                "kind": "rate_limited",
                "message": "Too many requests. Please try again later.",
            },
        }
    )

# ===== Route Setup =====

app.include_router(health.router)
app.include_router(auth.router)


@app.get("/")
def root():
    """Root endpoint"""
    return {
        "service": settings.APP_NAME,
        "version": __version__,
        "status": "operational",
        "docs": "/docs",
        "health": "/health",
        "metrics": settings.METRICS_PATH if settings.METRICS_ENABLED else None
    }


# ===== Error Handlers =====

@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError):
    """Render expected auth failures; the message is safe to return"""
    log = logger.error if exc.kind is ErrorKind.SERVER else logger.warning
    log(
        f"{exc.kind.value}: {exc.message}",
        extra={
            "path": request.url.path,
            "method": request.method,
            "status": exc.status_code,
        },
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": {"kind": exc.kind.value, "message": exc.message}},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler for uncaught errors (store outages, misconfiguration)"""
    logger.error(
        f"Unhandled exception: {str(exc)}",
        extra={
            "path": request.url.path,
            "method": request.method
        },
        exc_info=True
    )
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": {
                "kind": ErrorKind.SERVER.value,
                "message": "An unexpected error occurred. Please contact support.",
            },
        }
    )
