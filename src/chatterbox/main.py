# src/chatterbox/main.py
"""Main entry point for the Chatterbox application."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from chatterbox.api.v1 import (
    ai_router,
    crypto_router,
    realtime_router,
    rooms_router,
    users_router,
)
from chatterbox.core.settings import settings
from chatterbox.db.session import SessionLocal, create_tables, engine
from chatterbox.realtime.hub import build_hub
from chatterbox.services.assistant import Assistant, get_assistant

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    """Apply the configured log level to the root logger."""
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def create_app(
    *,
    bind: AsyncEngine | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    assistant: Assistant | None = None,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        bind: Engine used to create tables at startup
        session_factory: Session factory shared by REST and realtime handlers
        assistant: Assistant collaborator; defaults to the configured HTTP client
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await create_tables(bind or engine)
        collaborator = assistant or get_assistant()
        app.state.hub = build_hub(session_factory or SessionLocal, collaborator)
        logger.info(
            "%s %s started (e2ee=%s)", settings.app_name, settings.app_version, settings.e2ee_enabled
        )
        try:
            yield
        finally:
            await app.state.hub.dispatcher.drain()
            if assistant is None:
                await get_assistant().close()

    app = FastAPI(
        title="Chatterbox API",
        description="Realtime chat rooms with end-to-end encrypted content",
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

    # Include API routers
    app.include_router(users_router, prefix="/api/v1")
    app.include_router(rooms_router, prefix="/api/v1")
    app.include_router(crypto_router, prefix="/api/v1")
    app.include_router(ai_router, prefix="/api/v1")
    app.include_router(realtime_router)

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        """Health check endpoint to verify the service is running."""
        return {"status": "ok"}

    @app.get("/")
    async def root() -> dict[str, str]:
        """Root endpoint with basic information about the API."""
        return {
            "name": "Chatterbox API",
            "version": settings.app_version,
            "websocket": "/ws",
            "docs": "/docs",
        }

    return app


configure_logging()
app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("chatterbox.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
