"""
FastAPI application entrypoint for the site authorization broker.
"""

from __future__ import annotations

from fastapi import FastAPI

from site_auth.api.routes import router as api_router
from site_auth.core.config import get_settings
from site_auth.core.logging import configure_logging


def create_app() -> FastAPI:
    """Factory for the FastAPI application."""
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Site Authorization Broker",
        version="0.1.0",
        description="OAuth consent, token exchange and resource listing for GA4 and Search Console.",
    )
    app.include_router(api_router, prefix="/api")
    return app


app = create_app()

__all__ = ["app", "create_app"]
