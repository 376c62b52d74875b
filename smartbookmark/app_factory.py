"""Application assembly: database, sessions, templates, feed backend and routes."""

from __future__ import annotations

import hashlib
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any

from advanced_alchemy.config import EngineConfig
from advanced_alchemy.extensions.litestar import (
    AsyncSessionConfig,
    SQLAlchemyAsyncConfig,
    SQLAlchemyPlugin,
)
from litestar import Litestar
from litestar.config.compression import CompressionConfig
from litestar.contrib.jinja import JinjaTemplateEngine
from litestar.middleware.session.client_side import CookieBackendConfig
from litestar.static_files import create_static_files_router
from litestar.template import TemplateConfig

from smartbookmark.auth.provider_info import validate_no_dummy_auth_in_production
from smartbookmark.config import Settings, get_settings
from smartbookmark.controllers.auth import AuthController
from smartbookmark.controllers.bookmarks import BookmarksController
from smartbookmark.controllers.web import DashboardController, WebController
from smartbookmark.db.base import Base
from smartbookmark.lib import observability
from smartbookmark.lib.change_feed import ChangeFeed, change_feed
from smartbookmark.lib.exceptions import EXCEPTION_HANDLERS
from smartbookmark.lib.feed_backends import FeedBackend, InMemoryBackend, load_backend
from smartbookmark.lib.urls import display_hostname, favicon_url

logger = logging.getLogger(__name__)

PACKAGE_DIR = Path(__file__).parent
CHANGES_PATH = "/api/bookmarks/changes"


def build_db_config(settings: Settings) -> SQLAlchemyAsyncConfig:
    """Build the SQLAlchemy async database configuration."""
    if "sqlite" in settings.db.url:
        engine_config = EngineConfig(echo=settings.db.echo)
    else:
        engine_config = EngineConfig(
            pool_size=settings.db.pool_size,
            max_overflow=settings.db.pool_overflow,
            pool_timeout=settings.db.pool_timeout,
            pool_pre_ping=settings.db.pool_pre_ping,
            echo=settings.db.echo,
        )

    return SQLAlchemyAsyncConfig(
        connection_string=settings.db.url,
        metadata=Base.metadata,
        create_all=True,
        session_config=AsyncSessionConfig(expire_on_commit=False),
        engine_config=engine_config,
    )


def build_session_config(settings: Settings) -> CookieBackendConfig:
    """Build the client-side encrypted session configuration."""
    session_secret = hashlib.sha256(settings.secret_key.encode()).digest()
    return CookieBackendConfig(
        secret=session_secret,
        key=settings.session.cookie_name,
        max_age=settings.session.max_age,
        httponly=True,
        secure=not settings.debug,
        samesite="lax",
        domain=settings.session.cookie_domain,
    )


def build_template_config() -> TemplateConfig:
    """Jinja templates: ./templates overrides the packaged ones."""

    def configure_template_engine(engine: JinjaTemplateEngine) -> None:
        engine.engine.globals.update({"now": datetime.now})
        engine.engine.filters.update({"hostname": display_hostname, "favicon": favicon_url})

    return TemplateConfig(
        directory=[Path(os.getcwd()) / "templates", PACKAGE_DIR / "templates"],
        engine=JinjaTemplateEngine,
        engine_callback=configure_template_engine,
    )


def build_static_files_router():
    return create_static_files_router(path="/static", directories=[PACKAGE_DIR / "static"])


def build_feed_backend(settings: Settings, db_config: SQLAlchemyAsyncConfig) -> FeedBackend:
    if not settings.feed.backend:
        return InMemoryBackend()
    backend_cls = load_backend(settings.feed.backend)
    return backend_cls(settings=settings, session_maker=db_config.get_session)


def create_app(settings: Settings | None = None, *, feed: ChangeFeed = change_feed) -> Litestar:
    """Create and configure the Litestar application."""
    settings = settings or get_settings()

    observability.configure_logging(settings)
    # Refuse the development provider before anything is served
    validate_no_dummy_auth_in_production(settings)

    observability.configure(settings)
    observability.instrument_httpx()

    db_config = build_db_config(settings)
    session_config = build_session_config(settings)
    backend = build_feed_backend(settings, db_config)

    async def on_startup(_app: Litestar) -> None:
        observability.instrument_sqlalchemy(db_config.get_engine())
        feed.set_backend(backend)
        await backend.start()
        logger.info("Change feed started with %s", type(backend).__name__)

    async def on_shutdown(_app: Litestar) -> None:
        await backend.stop()

    handlers: list[Any] = [
        WebController,
        DashboardController,
        AuthController,
        BookmarksController,
        build_static_files_router(),
    ]

    app = Litestar(
        route_handlers=handlers,
        on_startup=[on_startup],
        on_shutdown=[on_shutdown],
        plugins=[SQLAlchemyPlugin(config=db_config)],
        middleware=[session_config.middleware],
        template_config=build_template_config(),
        compression_config=CompressionConfig(backend="gzip", exclude=CHANGES_PATH),
        exception_handlers=EXCEPTION_HANDLERS,
        debug=settings.debug,
    )
    app.state.settings = settings
    app.state.feed = feed
    return app
