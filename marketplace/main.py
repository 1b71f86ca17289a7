"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from marketplace.api import auth, products
from marketplace.config import Settings, get_settings
from marketplace.database import Database
from marketplace.exceptions import register_exception_handlers
from marketplace.services.assets import LocalAssetStore, build_asset_store

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level.upper())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Open the connection pool on startup and close it on shutdown."""
        database = Database.from_settings(settings)
        app.state.database = database
        if database.ping():
            logger.info("Successfully connected to the database")
        else:
            logger.error("Database is not reachable; requests will fail until it is")
        yield
        database.dispose()

    app = FastAPI(
        title="Campus Marketplace API",
        description="Classified listings with image uploads",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.asset_store = build_asset_store(settings)

    if settings.is_development:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["http://localhost:3000", "http://localhost:5173"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    register_exception_handlers(app)

    # Register routers
    app.include_router(auth.router)
    app.include_router(products.router)

    if isinstance(app.state.asset_store, LocalAssetStore):
        app.mount(
            "/uploads",
            StaticFiles(directory=app.state.asset_store.root),
            name="uploads",
        )

    @app.get("/health")
    def health_check():
        """Health check endpoint."""
        database = getattr(app.state, "database", None)
        reachable = database is not None and database.ping()
        return {
            "status": "healthy" if reachable else "degraded",
            "environment": settings.environment,
            "database": "up" if reachable else "down",
        }

    return app


app = create_app()
