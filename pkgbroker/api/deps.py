import logging
from dataclasses import dataclass
from typing import Generator, Optional

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from pkgbroker.core.cache import MetadataCache
from pkgbroker.core.config import Settings
from pkgbroker.core.errors import AuthError
from pkgbroker.core.kv import KeyValueStore
from pkgbroker.core.ratelimit import RateLimiter, RateLimitStatus
from pkgbroker.core.security import (
    AdminSession,
    PresentedCredential,
    parse_authorization,
    verify_admin_session,
    verify_token,
)
from pkgbroker.db.models import Token
from pkgbroker.db.session import SessionLocal
from pkgbroker.services.artifact_mirror import ArtifactMirror
from pkgbroker.services.upstream_lookup import UpstreamPackageLookup
from pkgbroker.storage.base import StorageDriver
from pkgbroker.sync.service import RepositorySyncService

logger = logging.getLogger(__name__)


@dataclass
class Principal:
    """The caller of a read endpoint."""

    kind: str  # token, admin
    token: Optional[Token] = None
    session: Optional[AdminSession] = None
    rate_limit: Optional[RateLimitStatus] = None


def get_db() -> Generator:
    """Database session dependency."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_kv(request: Request) -> KeyValueStore:
    return request.app.state.kv


def get_cache(request: Request) -> MetadataCache:
    return request.app.state.cache


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


def get_storage(request: Request) -> StorageDriver:
    return request.app.state.storage


def get_mirror(request: Request) -> ArtifactMirror:
    return request.app.state.mirror


def get_sync_service(request: Request) -> RepositorySyncService:
    return request.app.state.sync_service


def get_upstream_lookup(request: Request) -> Optional[UpstreamPackageLookup]:
    return request.app.state.upstream_lookup


def get_base_url(request: Request, settings: Settings = Depends(get_app_settings)) -> str:
    """Base URL clients use to reach this server."""
    if settings.public_base_url:
        return settings.public_base_url.rstrip("/")
    return str(request.base_url).rstrip("/")


async def _token_principal(
    credential: Optional[PresentedCredential],
    db: Session,
    limiter: RateLimiter,
) -> Principal:
    if credential is None:
        raise AuthError()

    token = verify_token(credential.secret, db)
    if token is None:
        raise AuthError("Invalid or expired token", code="invalid_token")

    status = await limiter.hit(token.id, token.rate_limit_max)
    return Principal(kind="token", token=token, rate_limit=status)


async def _admin_session(
    credential: Optional[PresentedCredential],
    kv: KeyValueStore,
    settings: Settings,
) -> Optional[AdminSession]:
    if credential is None or credential.scheme != "bearer":
        return None
    try:
        return await verify_admin_session(credential.secret, kv, settings)
    except Exception as e:
        logger.warning(f"Admin session lookup failed: {e}")
        return None


async def require_package_token(
    request: Request,
    db: Session = Depends(get_db),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> Principal:
    """Authenticate a package-tool token and count the request."""
    credential = parse_authorization(request.headers.get("Authorization"))
    return await _token_principal(credential, db, limiter)


async def require_dist_access(
    request: Request,
    db: Session = Depends(get_db),
    limiter: RateLimiter = Depends(get_rate_limiter),
    kv: KeyValueStore = Depends(get_kv),
    settings: Settings = Depends(get_app_settings),
) -> Principal:
    """Authenticate an artifact download.

    An admin session (Bearer JWT) is tried first and is not rate limited;
    otherwise a package-tool token is required.
    """
    credential = parse_authorization(request.headers.get("Authorization"))
    session = await _admin_session(credential, kv, settings)
    if session is not None:
        return Principal(kind="admin", session=session)
    return await _token_principal(credential, db, limiter)


async def require_admin_session(
    request: Request,
    kv: KeyValueStore = Depends(get_kv),
    settings: Settings = Depends(get_app_settings),
) -> AdminSession:
    credential = parse_authorization(request.headers.get("Authorization"))
    session = await _admin_session(credential, kv, settings)
    if session is None:
        raise AuthError("Admin session required", code="invalid_session")
    return session


def rate_limit_headers(principal: Principal) -> dict:
    status = principal.rate_limit
    if status is None:
        return {}
    return {
        "X-RateLimit-Limit": str(status.limit),
        "X-RateLimit-Remaining": str(status.remaining),
        "X-RateLimit-Reset": str(status.reset_at),
    }
