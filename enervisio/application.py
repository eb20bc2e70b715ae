"""Application factory that serves both the JSON API and the web interface."""
from __future__ import annotations

import os
from typing import Optional

from fastapi import FastAPI

from .api import create_app as create_api_app
from .config import Settings, load_settings, resolve_settings_path
from .database import Database, resolve_database_path
from .web import create_app as create_web_app


def create_application(
    *,
    database_path: Optional[str] = None,
    settings_path: Optional[str] = None,
    session_secret: Optional[str] = None,
) -> FastAPI:
    """Create the combined ASGI application."""

    settings: Settings = load_settings(
        resolve_settings_path(settings_path or os.getenv("ENERVISIO_SETTINGS"))
    )
    db_path = resolve_database_path(database_path or os.getenv("ENERVISIO_DB_PATH"))
    database = Database(db_path, timezone_name=settings.default_timezone)
    database.initialize()

    web_app = create_web_app(
        database=database,
        settings=settings,
        session_secret=session_secret or os.getenv("ENERVISIO_SESSION_SECRET"),
    )
    # Share one lockout tracker between the browser login and HTTP Basic auth.
    api_app = create_api_app(database=database, settings=settings, auth=web_app.state.auth)

    app = FastAPI(
        title=f"{settings.product_name} Administration",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.database = database
    app.state.settings = settings
    app.state.api = api_app
    app.state.web = web_app

    app.mount("/api", api_app)
    app.mount("/", web_app)

    return app


__all__ = ["create_application"]
