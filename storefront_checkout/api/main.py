"""
Main FastAPI application.

Storefront checkout API with:
- CORS configuration
- Domain error to HTTP status mapping
- Request ID tracking
- Structured logging
- Prometheus metrics
"""
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from storefront_checkout import __version__
from storefront_checkout.config import get_settings
from storefront_checkout.context import AppContext, build_context
from storefront_checkout.domain.exceptions import (
    CheckoutError,
    CheckoutNotFoundError,
    EmptyCheckoutError,
    InvalidTransitionError,
    OrderIntegrityError,
    OrderNotFoundError,
    PaymentConfirmationError,
    PaymentMethodUnavailable,
    ShippingValidationError,
)
from storefront_checkout.monitoring.logging import setup_logging

from .routes import (
    cart_router,
    checkout_router,
    monitoring_router,
    order_router,
    product_router,
    webhook_router,
)

logger = structlog.get_logger(__name__)

# Checkout errors and the status codes they map to; most specific first
ERROR_STATUS = (
    (ShippingValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY, "shipping_validation_failed"),
    (EmptyCheckoutError, status.HTTP_422_UNPROCESSABLE_ENTITY, "empty_checkout"),
    (PaymentMethodUnavailable, status.HTTP_422_UNPROCESSABLE_ENTITY, "payment_method_unavailable"),
    (PaymentConfirmationError, status.HTTP_422_UNPROCESSABLE_ENTITY, "payment_confirmation_rejected"),
    (InvalidTransitionError, status.HTTP_409_CONFLICT, "invalid_transition"),
    (CheckoutNotFoundError, status.HTTP_404_NOT_FOUND, "checkout_not_found"),
)


async def checkout_error_handler(request: Request, exc: CheckoutError) -> JSONResponse:
    """Map checkout errors to 4xx responses."""
    for error_class, status_code, error in ERROR_STATUS:
        if isinstance(exc, error_class):
            break
    else:
        status_code, error = status.HTTP_400_BAD_REQUEST, "checkout_error"

    content: dict[str, Any] = {"error": error, "message": str(exc)}
    if isinstance(exc, ShippingValidationError):
        content["field_errors"] = exc.field_errors

    logger.warning("api_checkout_error", error=error, message=str(exc), path=request.url.path)
    return JSONResponse(status_code=status_code, content=content)


async def order_not_found_handler(request: Request, exc: OrderNotFoundError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={"error": "order_not_found", "message": str(exc)},
    )


async def order_integrity_handler(request: Request, exc: OrderIntegrityError) -> JSONResponse:
    logger.critical("api_order_integrity_error", error=str(exc), path=request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "order_integrity_error",
            "message": "The order could not be recorded. Please contact support.",
        },
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler for unhandled exceptions."""
    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal server error",
            "message": "An unexpected error occurred. Please try again later.",
        },
    )


async def add_request_id_middleware(request: Request, call_next: Any) -> Response:
    """Tag each request with an id, bind it to the log context and time it."""
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    start_time = time.time()

    structlog.contextvars.bind_contextvars(
        request_id=request_id,
        method=request.method,
        path=request.url.path,
    )

    logger.info(
        "request_started",
        client_host=request.client.host if request.client else None,
    )

    try:
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

        logger.info(
            "request_completed",
            status_code=response.status_code,
            duration_seconds=time.time() - start_time,
        )
        return response

    except Exception as e:
        logger.error(
            "request_failed",
            error=str(e),
            duration_seconds=time.time() - start_time,
        )
        raise

    finally:
        structlog.contextvars.clear_contextvars()


def create_app(context: Optional[AppContext] = None) -> FastAPI:
    """
    Build the FastAPI application around an application context.

    Without a context one is built from environment settings.
    """
    if context is None:
        settings = get_settings()
        setup_logging(settings)
        context = build_context(settings)
    settings = context.settings

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, Any]:
        logger.info(
            "application_startup",
            app_name=settings.app_name,
            env=settings.app_env,
            test_mode=settings.is_test_mode,
        )
        try:
            await context.startup()
        except Exception as e:
            logger.error("database_initialization_failed", error=str(e))
            raise

        yield

        logger.info("application_shutdown")
        await context.shutdown()

    app = FastAPI(
        title="Storefront Checkout",
        description="Cart, payment method selection, checkout orchestration and order ledger.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.context = context

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_allowed_origins_list(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.middleware("http")(add_request_id_middleware)

    app.add_exception_handler(OrderIntegrityError, order_integrity_handler)
    app.add_exception_handler(CheckoutError, checkout_error_handler)
    app.add_exception_handler(OrderNotFoundError, order_not_found_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    app.include_router(product_router)
    app.include_router(cart_router)
    app.include_router(checkout_router)
    app.include_router(order_router)
    app.include_router(webhook_router)
    app.include_router(monitoring_router)

    @app.get("/", tags=["root"])
    async def root() -> dict[str, Any]:
        """Root endpoint with API information."""
        return {
            "service": settings.app_name,
            "version": __version__,
            "status": "operational",
            "environment": settings.app_env,
            "payment_methods": [m.value for m in context.adapters],
            "docs": "/docs",
            "health": "/health",
            "metrics": "/metrics",
        }

    return app


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "storefront_checkout.api.main:create_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
