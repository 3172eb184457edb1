import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()

from flashdeck.core.cache import CacheStore, CacheSweeper, MemoryCache, build_cache
from flashdeck.core.config import settings, validate_config
from flashdeck.core.database import create_all_tables
from flashdeck.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    request_validation_handler,
    unhandled_exception_handler,
)
from flashdeck.core.logging import configure_logging
from flashdeck.core.middleware.request_id import RequestIdMiddleware
from flashdeck.api import admin, auth, billing, categories, health, library, sets


def create_app(cache: Optional[CacheStore] = None, *, create_tables: bool = True) -> FastAPI:
    """
    Build the API.

    The cache is created here rather than at import time so tests and
    workers can inject their own; the lifespan owns the sweeper and clears
    the cache on shutdown.
    """
    app_cache = cache if cache is not None else build_cache(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger = logging.getLogger("flashdeck")
        logger.info("Starting flashdeck backend...")
        if create_tables:
            create_all_tables()
        sweeper = None
        if isinstance(app_cache, MemoryCache):
            sweeper = CacheSweeper(
                app_cache,
                interval_seconds=settings.CACHE_SWEEP_INTERVAL_SECONDS,
                batch=settings.CACHE_SWEEP_BATCH,
            )
            sweeper.start()
        try:
            yield
        finally:
            if sweeper is not None:
                sweeper.stop()
            app_cache.clear()
            logger.info("Stopping flashdeck backend...")

    app = FastAPI(title="flashdeck", lifespan=lifespan)
    app.state.cache = app_cache

    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    for module in (auth, sets, categories, library, billing, admin):
        app.include_router(module.router, prefix="/api")
    app.include_router(health.router)

    return app


configure_logging(settings.ENV)
validate_config(strict=settings.CONFIG_STRICT)

app = create_app()
