import logging
import os
import time
import uuid
from datetime import datetime

import sentry_sdk
import structlog
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text

from app.api.v1 import admin, cart, notifications, offers, orders, payments
from app.core.config import settings
from app.core.exceptions import APIError
from app.core.logging import configure_logging
from app.core.rate_limiter import limiter
from app.db.session import SessionLocal

API_VERSION = "1.0.0"

# Probes hit these every few seconds; keep them out of the request log.
QUIET_PATHS = {"/health", "/health/database", "/health/integrations"}

logger = structlog.get_logger()


def standardized_error_response(request: Request, status_code: int, message: str, errors=None) -> JSONResponse:
    correlation_id = getattr(request.state, "correlation_id", None)
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(
            {
                "success": False,
                "message": message,
                "data": None,
                "errors": errors or [],
                "correlation_id": correlation_id,
                "timestamp": f"{datetime.utcnow().isoformat()}Z",
            }
        ),
    )

# --------------------------------------------------
# CONFIGURE LOGGING (FIRST)
# --------------------------------------------------
configure_logging()

# --------------------------------------------------
# INITIALIZE SENTRY (ONLY IN PRODUCTION)
# --------------------------------------------------
if settings.ENVIRONMENT == "production" and settings.SENTRY_DSN:
    try:
        sentry_sdk.init(
            dsn=settings.SENTRY_DSN,
            environment=settings.ENVIRONMENT,
            release=os.getenv("GIT_COMMIT"),
            traces_sample_rate=0.1,
            # Webhook payloads carry customer emails and names.
            send_default_pii=False,
            integrations=[
                FastApiIntegration(),
                SqlalchemyIntegration(),
            ],
        )
    except Exception as e:
        logging.warning(f"Failed to initialize Sentry: {e}")

app = FastAPI(
    title=settings.PROJECT_NAME,
    version=API_VERSION,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    docs_url=f"{settings.API_V1_STR}/docs",
    redoc_url=None,
)

# --------------------------------------------------
# RATE LIMITING
# --------------------------------------------------
app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    logger.warning("rate_limited", path=request.url.path, limit=str(exc.detail))
    return standardized_error_response(
        request,
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        message="Too many requests. Please try again later.",
    )

# --------------------------------------------------
# CORS
# --------------------------------------------------
# The payment webhook is server-to-server, so only the storefront origin matters here.
cors_origins = list(dict.fromkeys([*settings.BACKEND_CORS_ORIGINS, settings.FRONTEND_URL]))

app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin for origin in cors_origins if origin],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Correlation-ID"],
    expose_headers=["X-Process-Time", "X-Correlation-ID"],
    max_age=3600,
)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "no-referrer"
    if settings.ENVIRONMENT == "production":
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    return response


@app.middleware("http")
async def log_requests(request: Request, call_next):
    path = request.url.path
    start_time = time.perf_counter()

    response = await call_next(request)

    elapsed = time.perf_counter() - start_time
    response.headers["X-Process-Time"] = f"{elapsed:.4f}"

    if path not in QUIET_PATHS:
        logger.info(
            "request_completed",
            method=request.method,
            path=path,
            status_code=response.status_code,
            duration_ms=round(elapsed * 1000, 2),
            client_ip=request.client.host if request.client else None,
        )
    return response


# Outermost middleware: the request log above must see the bound correlation id.
@app.middleware("http")
async def add_correlation_id(request: Request, call_next):
    correlation_id = request.headers.get("X-Correlation-ID") or uuid.uuid4().hex
    request.state.correlation_id = correlation_id
    structlog.contextvars.bind_contextvars(correlation_id=correlation_id)

    try:
        response = await call_next(request)
    finally:
        structlog.contextvars.unbind_contextvars("correlation_id")

    response.headers["X-Correlation-ID"] = correlation_id
    return response

# --------------------------------------------------
# ROUTERS
# --------------------------------------------------
app.include_router(offers.router, prefix=f"{settings.API_V1_STR}/offers", tags=["Offers"])
app.include_router(cart.router, prefix=f"{settings.API_V1_STR}/cart", tags=["Cart"])
app.include_router(orders.router, prefix=f"{settings.API_V1_STR}/orders", tags=["Orders"])
app.include_router(payments.router, prefix=f"{settings.API_V1_STR}/payments", tags=["Payments"])
app.include_router(notifications.router, prefix=f"{settings.API_V1_STR}/notifications", tags=["Notifications"])
app.include_router(admin.router, prefix=f"{settings.API_V1_STR}/admin", tags=["Admin"])

# --------------------------------------------------
# HEALTH CHECKS
# --------------------------------------------------
@app.get("/health")
def health_check():
    return {
        "status": "healthy",
        "environment": settings.ENVIRONMENT,
        "version": API_VERSION,
    }


@app.get("/health/database")
def database_health_check():
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
    except Exception as exc:
        logger.error("database_health_failed", error=str(exc))
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "unhealthy", "reason": "Database connectivity check failed"},
        )
    finally:
        db.close()

    return {"status": "healthy", "statement_timeout_ms": settings.DB_STATEMENT_TIMEOUT_MS}


@app.get("/health/integrations")
def integrations_health_check():
    """Reports which outbound integrations are configured. Makes no network calls."""
    return {
        "razorpay": {
            "configured": bool(settings.RAZORPAY_KEY_ID and settings.RAZORPAY_WEBHOOK_SECRET),
            "mode": "test" if settings.RAZORPAY_KEY_ID.startswith("rzp_test_") else "live",
        },
        "push_notifications": {"configured": settings.firebase_configured},
        "task_queue": {"broker": settings.CELERY_BROKER_URL.split("://", 1)[0]},
    }


@app.get(f"{settings.API_V1_STR}/version")
def get_version():
    return {
        "version": API_VERSION,
        "commit": os.getenv("GIT_COMMIT", "unknown"),
    }

# --------------------------------------------------
# EXCEPTION HANDLERS
# --------------------------------------------------
@app.exception_handler(APIError)
async def api_error_handler(request: Request, exc: APIError):
    return standardized_error_response(
        request,
        status_code=exc.status_code,
        message=exc.message,
        errors=exc.errors,
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    if isinstance(exc.detail, str):
        message, errors = exc.detail, []
    elif isinstance(exc.detail, dict):
        message, errors = exc.detail.get("message", "Request failed"), exc.detail.get("errors", [])
    else:
        message, errors = "Request failed", exc.detail or []

    response = standardized_error_response(request, status_code=exc.status_code, message=message, errors=errors)
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return standardized_error_response(
        request,
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        message="Validation failed",
        errors=exc.errors(),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception("unhandled_exception", path=request.url.path, error_type=type(exc).__name__)

    message = "Internal server error"
    if settings.DEBUG and settings.ENVIRONMENT != "production":
        message = f"Internal server error: {exc}"

    return standardized_error_response(
        request,
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        message=message,
    )
