# src/chatline/main.py
"""Main entry point for the Chatline application."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from chatline.api.v1 import messages_router, realtime_router, users_router
from chatline.core.settings import settings
from chatline.repositories.chat_repo import ChatStore
from chatline.services.gateway import ChatGateway

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    """Apply the configured log level to the root logger."""
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def create_app(store: ChatStore | None = None, *, create_tables: bool | None = None) -> FastAPI:
    """Build the FastAPI application and its chat gateway.

    Args:
        store: Durable store to use. Defaults to one backed by the configured database.
        create_tables: Create missing tables on startup. Defaults to ``AUTO_CREATE_TABLES``.
    """
    should_create_tables = settings.auto_create_tables if create_tables is None else create_tables

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if should_create_tables:
            from chatline.db.session import create_tables as create_all

            create_all()
        logger.info("%s %s started", settings.app_name, settings.app_version)
        yield
        logger.info("%s stopping", settings.app_name)

    app = FastAPI(
        title="Chatline API",
        description="Real-time direct messaging with presence and receipts",
        version=settings.app_version,
        lifespan=lifespan,
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
    )

    # Add GZip middleware for compression
    app.add_middleware(GZipMiddleware)

    app.include_router(messages_router, prefix="/api/v1")
    app.include_router(users_router, prefix="/api/v1")
    app.include_router(realtime_router, prefix="/api/v1")

    app.state.chat_gateway = ChatGateway(store or ChatStore())

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        """Health check endpoint to verify the service is running."""
        return {"status": "ok"}

    @app.get("/")
    async def root() -> dict[str, str]:
        """Root endpoint with basic information about the API."""
        return {
            "name": "Chatline API",
            "version": settings.app_version,
            "description": "Real-time direct messaging with presence and receipts",
            "websocket": "/api/v1/ws",
            "docs": "/docs",
        }

    return app


configure_logging()
app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("chatline.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
