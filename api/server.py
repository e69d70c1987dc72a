"""FastAPI server for remittance reconciliation.

Main entry point for the API server.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from core import __version__
from core.config import get_settings
from core.observability.logging import configure_logging, get_logger
from api.routes import health, reconcile
from remittance.errors import ReconcileError


logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler.

    Opens the one OpenAI text client shared by every request and closes it
    on shutdown.
    """
    settings = get_settings()
    app.state.text_client = settings.text_client()
    logger.info(
        "Reconciliation API starting up",
        extra_fields={
            "db_path": str(settings.db_path),
            "collaborators": settings.collaborators_enabled,
        },
    )

    try:
        yield
    finally:
        if app.state.text_client is not None:
            await app.state.text_client.close()
        app.state.text_client = None
        logger.info("Reconciliation API shutting down")


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Report failures outside the route body (dependencies, settings) in the error envelope."""
    logger.error(f"Unhandled exception: {exc}", exc_info=(type(exc), exc, exc.__traceback__))
    return reconcile.error_response(ReconcileError(reconcile.GENERIC_FAILURE_MESSAGE), 500)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Settings are read here, so a misconfigured environment fails at startup.
    """
    settings = get_settings()
    configure_logging(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        json_format=settings.log_json,
    )

    app = FastAPI(
        title="Remittance Reconciliation API",
        description="Matches bank deposit CSV exports against unpaid invoices and proposes payment confirmations",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(Exception, unhandled_exception_handler)

    # Include routers
    app.include_router(health.router, tags=["Health"])
    app.include_router(reconcile.router, prefix="/reconcile", tags=["Reconciliation"])

    return app


# Default app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("api.server:app", host="0.0.0.0", port=8000, reload=True)
