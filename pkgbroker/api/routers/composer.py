"""Composer metadata endpoints.

- ``GET /packages.json``: root document
- ``GET /p2/{vendor}/{package}.json``: stable provider document
- ``GET /p2/{vendor}/{package}~dev.json``: dev provider document

Documents are served from the metadata cache when the cached copy is at
least as new as the package data, and rebuilt from the database otherwise.
Rebuilt documents are written back after the response has been sent.
"""

import logging
from email.utils import formatdate, parsedate_to_datetime
from typing import Any, Callable, Dict, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from pkgbroker.api.deps import (
    Principal,
    get_app_settings,
    get_base_url,
    get_cache,
    get_db,
    get_sync_service,
    get_upstream_lookup,
    rate_limit_headers,
    require_package_token,
)
from pkgbroker.core.cache import ROOT_DOCUMENT_KEY, MetadataCache, provider_key
from pkgbroker.core.config import Settings
from pkgbroker.core.errors import NotFoundError
from pkgbroker.services.provider_documents import (
    build_provider_document,
    build_root_document,
    find_package,
    package_last_modified,
    root_last_modified,
)
from pkgbroker.services.upstream_lookup import UpstreamPackageLookup, build_lookup_document
from pkgbroker.sync.manifest import is_valid_package_name
from pkgbroker.sync.service import RepositorySyncService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["composer"])

DEV_SUFFIX = "~dev"


def parse_http_date(value: Optional[str]) -> Optional[int]:
    if not value:
        return None
    try:
        return int(parsedate_to_datetime(value).timestamp())
    except (TypeError, ValueError, IndexError):
        return None


def format_http_date(timestamp: int) -> str:
    return formatdate(timestamp, usegmt=True)


async def _read_cache(cache: MetadataCache, key: str, last_modified: int) -> Optional[Any]:
    try:
        return await cache.get_fresh_document(key, last_modified)
    except Exception as e:
        logger.warning(f"Cache read for {key} failed, rebuilding: {e}")
        return None


async def _write_cache(cache: MetadataCache, key: str, document: Dict[str, Any], last_modified: int) -> None:
    try:
        await cache.put_document(key, document, last_modified)
    except Exception as e:
        logger.warning(f"Cache write for {key} failed: {e}")


def document_headers(settings: Settings, principal: Principal) -> Dict[str, str]:
    headers = {
        "Cache-Control": (
            f"public, max-age={settings.provider_max_age}, "
            f"stale-while-revalidate={settings.provider_stale_while_revalidate}"
        ),
    }
    headers.update(rate_limit_headers(principal))
    return headers


async def serve_document(
    request: Request,
    background_tasks: BackgroundTasks,
    cache: MetadataCache,
    settings: Settings,
    principal: Principal,
    key: str,
    last_modified: int,
    build: Callable[[], Dict[str, Any]],
) -> Response:
    headers = document_headers(settings, principal)
    headers["Last-Modified"] = format_http_date(last_modified)

    since = parse_http_date(request.headers.get("If-Modified-Since"))
    if last_modified and since is not None and since >= last_modified:
        return Response(status_code=304, headers=headers)

    document = await _read_cache(cache, key, last_modified)
    if document is not None:
        headers["X-Cache"] = "HIT"
        return JSONResponse(content=document, headers=headers)

    document = build()
    headers["X-Cache"] = "MISS"
    background_tasks.add_task(_write_cache, cache, key, document, last_modified)
    return JSONResponse(content=document, headers=headers)


@router.get("/packages.json")
async def root_document(
    request: Request,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(require_package_token),
    db: Session = Depends(get_db),
    cache: MetadataCache = Depends(get_cache),
    sync_service: RepositorySyncService = Depends(get_sync_service),
    settings: Settings = Depends(get_app_settings),
    base_url: str = Depends(get_base_url),
):
    """Root document listing every available package."""
    if settings.sync_pending_on_index:
        await sync_service.sync_pending(db)

    return await serve_document(
        request,
        background_tasks,
        cache,
        settings,
        principal,
        key=ROOT_DOCUMENT_KEY,
        last_modified=root_last_modified(db),
        build=lambda: build_root_document(db, base_url),
    )


@router.get("/p2/{vendor}/{package}.json")
async def provider_document(
    vendor: str,
    package: str,
    request: Request,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(require_package_token),
    db: Session = Depends(get_db),
    cache: MetadataCache = Depends(get_cache),
    settings: Settings = Depends(get_app_settings),
    base_url: str = Depends(get_base_url),
    lookup: Optional[UpstreamPackageLookup] = Depends(get_upstream_lookup),
):
    """Provider document with every stable (or ``~dev``) version of a package.

    Unknown packages are looked up upstream when the lookup is enabled.
    """
    dev = package.endswith(DEV_SUFFIX)
    if dev:
        package = package[: -len(DEV_SUFFIX)]
    package_name = f"{vendor}/{package}".lower()

    if not is_valid_package_name(package_name):
        raise NotFoundError(f"Package {package_name} not found")

    record = find_package(db, package_name)
    if record is None or not record.versions:
        found = await lookup.find(db, package_name) if lookup is not None else None
        if found is None:
            raise NotFoundError(f"Package {package_name} not found")

        background_tasks.add_task(lookup.store, found)
        headers = document_headers(settings, principal)
        headers["X-Cache"] = "MISS-UPSTREAM"
        return JSONResponse(content=build_lookup_document(found, base_url, dev=dev), headers=headers)

    return await serve_document(
        request,
        background_tasks,
        cache,
        settings,
        principal,
        key=provider_key(package_name, dev=dev),
        last_modified=package_last_modified(db, record),
        build=lambda: build_provider_document(record, base_url, dev=dev),
    )
