"""Artifact download endpoints.

Three URL forms converge on the artifact mirror:

- ``/dist/m/{vendor}/{package}/{version}`` (mirror form, used in the
  provider documents and by Composer's ``mirrors`` support)
- ``/dist/{repository_id}/{vendor}/{package}/{version}`` (direct form)
- ``/dist/{vendor}/{package}/{version}/{reference}`` (lockfile form)

The last two share one route; the first segment decides which form applies.
A trailing ``.zip`` is ignored.
"""

import hashlib
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from pkgbroker.api.deps import Principal, get_db, get_mirror, rate_limit_headers, require_dist_access
from pkgbroker.core.errors import NotFoundError
from pkgbroker.db.models import Package, PackageVersion, Repository
from pkgbroker.services.artifact_mirror import ArtifactMirror, ArtifactTarget, ResolvedArtifact
from pkgbroker.services.provider_documents import find_package

router = APIRouter(prefix="/dist", tags=["dist"])

ARCHIVE_CACHE_CONTROL = "public, max-age=31536000, immutable"


def strip_archive_suffix(value: str) -> str:
    return value[:-4] if value.lower().endswith(".zip") else value


def _md5(value: Optional[str]) -> Optional[str]:
    return hashlib.md5(value.encode()).hexdigest() if value else None


def match_version(package: Package, requested: str) -> Optional[PackageVersion]:
    """Find a version by its pretty or normalized string.

    Composer substitutes the normalized version into mirror URLs and
    replaces versions containing a slash with their md5 hash.
    """
    for row in package.versions:
        if requested in (row.version, row.version_normalized):
            return row
    for row in package.versions:
        if requested in (_md5(row.version), _md5(row.version_normalized)):
            return row
    return None


def match_lockfile_entry(package: Package, version: str, reference: str) -> Optional[PackageVersion]:
    """Find the version a composer.lock entry points at.

    Several versions can share a reference (a tag and the branch it was cut
    from). A row matching both wins, then the reference alone, then the
    version alone.
    """
    referenced = [r for r in package.versions if reference in (r.dist_reference, r.source_reference)]
    for row in referenced:
        candidates = (row.version, row.version_normalized, _md5(row.version), _md5(row.version_normalized))
        if version in candidates:
            return row
    if referenced:
        return referenced[0]
    return match_version(package, version)


def _require_package(db: Session, vendor: str, package: str) -> Package:
    record = find_package(db, f"{vendor}/{package}")
    if record is None:
        raise NotFoundError(f"Package {vendor}/{package} not found")
    return record


def build_target(db: Session, package: Package, row: PackageVersion) -> ArtifactTarget:
    repository = None
    if row.repository_id:
        repository = db.query(Repository).filter(Repository.id == row.repository_id).first()

    return ArtifactTarget(
        repository_id=row.repository_id or "local",
        package_name=package.full_name,
        version=row.version,
        origin_url=row.dist_url,
        credential_type=repository.credential_type if repository else None,
        credentials=repository.credentials if repository else None,
    )


def archive_response(resolved: ResolvedArtifact, principal: Principal) -> StreamingResponse:
    headers = {
        "Content-Disposition": f'attachment; filename="{resolved.target.filename}"',
        "Cache-Control": ARCHIVE_CACHE_CONTROL,
        "X-Cache": "HIT" if resolved.from_storage else "MISS",
    }
    if resolved.size is not None:
        headers["Content-Length"] = str(resolved.size)
    headers.update(rate_limit_headers(principal))
    return StreamingResponse(resolved.chunks, media_type="application/zip", headers=headers)


async def _serve(
    db: Session,
    mirror: ArtifactMirror,
    principal: Principal,
    package: Package,
    row: PackageVersion,
    background_tasks: BackgroundTasks,
) -> StreamingResponse:
    resolved = await mirror.resolve(build_target(db, package, row))
    if resolved.persist is not None:
        background_tasks.add_task(resolved.persist)
    return archive_response(resolved, principal)


@router.get("/m/{vendor}/{package}/{version:path}")
async def download_mirror(
    vendor: str,
    package: str,
    version: str,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(require_dist_access),
    db: Session = Depends(get_db),
    mirror: ArtifactMirror = Depends(get_mirror),
):
    """Download an archive by package name and version."""
    record = _require_package(db, vendor, package)
    version = strip_archive_suffix(version)
    row = match_version(record, version)
    if row is None:
        raise NotFoundError(f"Version {version} of {record.full_name} not found")
    return await _serve(db, mirror, principal, record, row, background_tasks)


@router.get("/{first}/{second}/{third}/{fourth:path}")
async def download(
    first: str,
    second: str,
    third: str,
    fourth: str,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(require_dist_access),
    db: Session = Depends(get_db),
    mirror: ArtifactMirror = Depends(get_mirror),
):
    """Download an archive in direct or lockfile form."""
    fourth = strip_archive_suffix(fourth)

    repository = db.query(Repository).filter(Repository.id == first).first()
    if repository is not None:
        # {repository_id}/{vendor}/{package}/{version}
        record = _require_package(db, second, third)
        row = match_version(record, fourth)
        if row is None or row.repository_id != repository.id:
            raise NotFoundError(f"Version {fourth} of {record.full_name} not found in repository {first}")
        return await _serve(db, mirror, principal, record, row, background_tasks)

    # {vendor}/{package}/{version}/{reference}
    record = _require_package(db, first, second)
    row = match_lockfile_entry(record, third, fourth)
    if row is None:
        raise NotFoundError(f"Version {third} of {record.full_name} not found")
    return await _serve(db, mirror, principal, record, row, background_tasks)
