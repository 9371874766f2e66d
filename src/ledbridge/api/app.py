"""FastAPI application factory for the bridge's control API."""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ledbridge.api import routes


def create_app(lifespan: Any = None, cors_origins: list[str] | None = None) -> FastAPI:
    """Create and configure the control API application.

    Args:
        lifespan: Optional async context manager for application lifespan events.
                  Used by main.py to inject startup/shutdown logic.
        cors_origins: Origins allowed to call the API from a browser.

    Returns:
        FastAPI application with all routes mounted under /api.
        Route handlers expect app.state.service to hold a BridgeService.
    """
    app = FastAPI(
        title="LED Feed Bridge",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins if cors_origins is not None else ["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    app.include_router(routes.router, prefix="/api")

    return app
