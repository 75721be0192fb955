"""FastAPI application for Worklin webhooks."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from worklin_webhooks import __version__
from worklin_webhooks.config import Settings
from worklin_webhooks.exceptions import NotFoundError, ValidationError, WebhookError
from worklin_webhooks.logging import configure_logging, get_logger
from worklin_webhooks.webhooks import WebhookService

from .middleware import RequestContextMiddleware
from .router import router, set_service

logger = get_logger(__name__)

# Most specific class wins; anything else from the package is a 500
ERROR_STATUS: dict[type[WebhookError], int] = {
    ValidationError: 400,
    NotFoundError: 404,
    WebhookError: 500,
}


def _status_for(exc: WebhookError) -> int:
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS:
            return ERROR_STATUS[cls]
    return 500


async def webhook_error_handler(request: Request, exc: WebhookError) -> JSONResponse:
    """Render a package exception as ``{"error": {...}}`` with its mapped status."""
    status_code = _status_for(exc)
    if status_code >= 500:
        logger.error("Webhook error", error=exc.message, code=exc.code, path=request.url.path)
    else:
        logger.info(
            "Request rejected",
            status=status_code,
            code=exc.code,
            error=exc.message,
            path=request.url.path,
        )
    return JSONResponse(status_code=status_code, content=exc.to_dict())


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create a FastAPI application.

    Args:
        settings: Optional settings. Uses environment if None.

    Returns:
        Configured FastAPI application.

    Example:
        ```python
        from worklin_webhooks.api import create_app

        app = create_app()
        # Run with: uvicorn worklin_webhooks.api:app --reload
        ```
    """
    if settings is None:
        settings = Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Initialize the WebhookService on startup and close it on shutdown."""
        configure_logging(level=settings.log_level, format=settings.log_format)
        logger.info(
            "Starting Worklin webhooks API",
            log_level=settings.log_level,
            log_format=settings.log_format,
        )

        service = WebhookService.create(settings)
        await service.initialize()
        set_service(service)

        yield

        await service.close()
        set_service(None)
        logger.info("Worklin webhooks API stopped")

    app = FastAPI(
        title="Worklin Webhooks",
        description="Signed outbound webhooks with retry and delivery history.",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    if settings.cors_enabled:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_allow_origins,
            allow_methods=settings.cors_allow_methods,
            allow_headers=settings.cors_allow_headers,
        )

    app.add_middleware(RequestContextMiddleware)

    for exc_class in ERROR_STATUS:
        app.add_exception_handler(exc_class, webhook_error_handler)  # type: ignore[arg-type]

    app.include_router(router, prefix="/api/v1")

    return app


# Default app instance for uvicorn
app = create_app()
