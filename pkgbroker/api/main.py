import logging
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI
from sqlalchemy.orm import Session

import pkgbroker
from pkgbroker.api.errors import register_exception_handlers
from pkgbroker.api.middleware.composer_version import ComposerVersionMiddleware
from pkgbroker.api.middleware.request_id import RequestIDMiddleware
from pkgbroker.api.routers import composer, dist, health, repositories
from pkgbroker.common.logger import setup_logger
from pkgbroker.core.cache import MetadataCache
from pkgbroker.core.config import Settings, get_settings
from pkgbroker.core.kv import KeyValueStore, RedisKeyValueStore
from pkgbroker.core.ratelimit import RateLimiter
from pkgbroker.services.artifact_mirror import ArtifactMirror
from pkgbroker.services.upstream import UpstreamClient
from pkgbroker.services.upstream_lookup import UpstreamPackageLookup
from pkgbroker.storage.base import StorageDriver
from pkgbroker.storage.factory import create_storage
from pkgbroker.sync.engine import SyncEngine
from pkgbroker.sync.service import RepositorySyncService

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    kv: Optional[KeyValueStore] = None,
    storage: Optional[StorageDriver] = None,
    upstream: Optional[UpstreamClient] = None,
    session_factory: Optional[Callable[[], Session]] = None,
) -> FastAPI:
    """
    Build the application.

    Collaborators default to the ones described by ``settings``; tests pass
    in-memory replacements.
    """
    settings = settings or get_settings()
    setup_logger(level=settings.log_level, log_file=settings.log_file)

    if session_factory is None:
        from pkgbroker.db.session import SessionLocal
        session_factory = SessionLocal

    kv = kv or RedisKeyValueStore(settings.redis_url)
    storage = storage or create_storage(settings)
    upstream = upstream or UpstreamClient(
        timeout=settings.upstream_timeout_seconds,
        user_agent=settings.upstream_user_agent,
    )
    cache = MetadataCache(kv, default_ttl=settings.cache_ttl_seconds)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"{settings.app_name} {pkgbroker.__version__} starting ({storage.name} storage)")
        yield
        await upstream.aclose()
        close = getattr(kv, "close", None)
        if close is not None:
            await close()

    app = FastAPI(
        title=settings.app_name,
        description="Composer package proxy and artifact mirror",
        version=pkgbroker.__version__,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.kv = kv
    app.state.cache = cache
    app.state.storage = storage
    app.state.upstream = upstream
    app.state.rate_limiter = RateLimiter(
        kv,
        window=settings.rate_limit_window_seconds,
        hard_ceiling=settings.rate_limit_hard_ceiling,
        enabled=settings.rate_limit_enabled,
    )
    app.state.mirror = ArtifactMirror(storage, upstream, session_factory=session_factory)
    app.state.sync_service = RepositorySyncService(SyncEngine.create(upstream, settings), cache=cache)
    app.state.upstream_lookup = None
    if settings.upstream_lookup_enabled:
        app.state.upstream_lookup = UpstreamPackageLookup(
            upstream,
            session_factory=session_factory,
            packagist_url=settings.packagist_url,
            packagist_enabled=settings.packagist_mirroring_enabled,
        )

    register_exception_handlers(app)

    # Last added runs first: request IDs are assigned before the client check
    app.add_middleware(ComposerVersionMiddleware)
    app.add_middleware(RequestIDMiddleware)

    app.include_router(health.router)
    app.include_router(composer.router)
    app.include_router(dist.router)
    app.include_router(repositories.router, prefix="/api")

    return app


app = create_app()
