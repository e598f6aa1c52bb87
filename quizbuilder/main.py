"""FastAPI entrypoint wiring the builder server and REST endpoints."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Configure logging to show INFO level and above
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    force=True  # Force reconfiguration even if logging was already configured
)

from .config import CORS_ORIGINS, STORAGE_BACKEND
from .database import close_database, init_database
from .routers.builder import router as builder_router
from .server import BuilderServer, create_builder_server


def create_app(server: BuilderServer | None = None) -> FastAPI:
    """Build the app; tests pass their own server."""
    builder_server = server or create_builder_server()
    uses_mongo = server is None and STORAGE_BACKEND == "mongo"

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if uses_mongo:
            await init_database()
        try:
            yield
        finally:
            await builder_server.close_all()
            if uses_mongo:
                await close_database()

    app = FastAPI(title="Quiz Builder API", lifespan=lifespan)
    app.state.builder_server = builder_server

    # Add CORS middleware to allow the editor frontend to connect
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(builder_router)

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok"}

    return app


app = create_app()
