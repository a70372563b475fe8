"""
Storefront Fulfillment - FastAPI Application Entry Point.

Turns confirmed checkouts (signed card callbacks, success landing page,
cash-on-delivery confirmations) into orders, then books the shipment,
issues the invoice and notifies the customer.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.middleware.base import BaseHTTPMiddleware

from storefront.config import get_settings
from storefront.database import Base, engine, get_db
from storefront.exceptions import (
    IntegrationError,
    InvalidTransitionError,
    OrderNotFoundError,
    OrderValidationError,
    PaymentNotConfirmedError,
    StaleOrderError,
    WebhookSignatureError,
)
from storefront.integrations.circuit_breaker import CircuitBreakerOpenError
from storefront.routers import admin_orders, checkout, safety, webhooks
from storefront.services.idempotency import IdempotencyConflictError

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown events."""
    # Startup: Create database tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created")

    yield

    # Shutdown: Cleanup
    await engine.dispose()
    logger.info("Database connection closed")


app = FastAPI(
    title=settings.APP_NAME,
    description="Order fulfillment saga: shipment, invoice and customer notification",
    version="1.0.0",
    lifespan=lifespan,
)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request, call_next):
        response = await call_next(request)

        # Prevent MIME type sniffing
        response.headers["X-Content-Type-Options"] = "nosniff"

        # Prevent clickjacking
        response.headers["X-Frame-Options"] = "DENY"

        # Referrer policy
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

        # Force HTTPS in production
        if not settings.DEBUG:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

        return response


app.add_middleware(SecurityHeadersMiddleware)


# =============================================================================
# Error mapping
# =============================================================================

def _error(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


@app.exception_handler(OrderValidationError)
async def validation_error_handler(request: Request, exc: OrderValidationError):
    return _error(400, exc)


@app.exception_handler(WebhookSignatureError)
async def signature_error_handler(request: Request, exc: WebhookSignatureError):
    logger.warning(f"Payment webhook rejected: {exc}")
    return _error(400, exc)


@app.exception_handler(PaymentNotConfirmedError)
async def payment_not_confirmed_handler(request: Request, exc: PaymentNotConfirmedError):
    return _error(402, exc)


@app.exception_handler(OrderNotFoundError)
async def not_found_handler(request: Request, exc: OrderNotFoundError):
    return _error(404, exc)


@app.exception_handler(StaleOrderError)
async def stale_order_handler(request: Request, exc: StaleOrderError):
    return _error(409, exc)


@app.exception_handler(InvalidTransitionError)
async def invalid_transition_handler(request: Request, exc: InvalidTransitionError):
    return _error(409, exc)


@app.exception_handler(IdempotencyConflictError)
async def idempotency_conflict_handler(request: Request, exc: IdempotencyConflictError):
    return _error(409, exc)


@app.exception_handler(IntegrationError)
async def integration_error_handler(request: Request, exc: IntegrationError):
    logger.error(f"Upstream failure on {request.url.path}: {exc}")
    if isinstance(exc, CircuitBreakerOpenError):
        response = _error(503, exc)
        response.headers["Retry-After"] = str(exc.retry_after)
        return response
    return _error(502, exc)


# Include Routers
app.include_router(webhooks.router, prefix="/api/webhooks", tags=["Webhooks"])
app.include_router(checkout.router, prefix="/api/checkout", tags=["Checkout"])
app.include_router(admin_orders.router, prefix="/api/admin/orders", tags=["Admin Orders"])
app.include_router(safety.router, prefix="/api/admin")


@app.get("/health")
async def health_check(db=Depends(get_db)):
    """Deep Health Check: Verifies Database Connectivity."""
    try:
        await db.execute(text("SELECT 1"))
        return {"status": "healthy", "database": "connected"}
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        # Return 503 so load balancers know to stop sending traffic
        raise HTTPException(status_code=503, detail="Database disconnected")
