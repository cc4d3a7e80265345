"""Repository sync orchestration.

Runs a repository through the sync engine and merges the result into the
package store:

- the repository is marked ``syncing`` while the strategy runs
- on failure it is marked ``error`` with the failure code; package data is
  not touched
- on success every discovered (package, version) pair is upserted in a
  single transaction, versions missing from the run are kept, the
  repository becomes ``active`` and the affected cached documents are
  invalidated
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional, Set, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pkgbroker.core.cache import ROOT_DOCUMENT_KEY, MetadataCache, provider_key
from pkgbroker.core.errors import UpstreamError, ValidationError
from pkgbroker.core.versions import normalize_version
from pkgbroker.db.models import Package, PackageVersion, Repository, RepositoryStatus
from pkgbroker.sync.base import DiscoveredVersion, SyncConfig, SyncResult
from pkgbroker.sync.engine import SyncEngine
from pkgbroker.sync.manifest import default_dist_reference

# Manifest keys stored in dedicated columns
COLUMN_FIELDS = ("description", "license", "type", "homepage", "require")


def _license_list(value) -> Optional[List[str]]:
    if value is None or value == []:
        return None
    if isinstance(value, str):
        return [value]
    if isinstance(value, list):
        return [str(item) for item in value]
    return None


def apply_discovered(row: PackageVersion, discovered: DiscoveredVersion, repository_id: str) -> None:
    """Copy a discovered version onto its database row."""
    manifest = discovered.manifest
    source = discovered.source or {}

    row.repository_id = repository_id
    row.version_normalized = normalize_version(discovered.version)
    row.dist_url = discovered.dist_url
    row.dist_type = discovered.dist_type or "zip"
    row.dist_reference = discovered.dist_reference or default_dist_reference(discovered.name, discovered.version)
    row.dist_shasum = discovered.dist_shasum
    row.source_type = source.get("type")
    row.source_url = source.get("url")
    row.source_reference = source.get("reference")
    row.description = manifest.get("description")
    row.license = _license_list(manifest.get("license"))
    row.package_type = manifest.get("type")
    row.homepage = manifest.get("homepage")
    row.requires = manifest.get("require") if isinstance(manifest.get("require"), dict) else None
    row.manifest = {key: value for key, value in manifest.items() if key not in COLUMN_FIELDS}
    if discovered.released_at is not None:
        row.released_at = discovered.released_at


def upsert_versions(db: Session, repository_id: str, discovered: List[DiscoveredVersion]) -> Set[str]:
    """Insert or update discovered versions. Never deletes.

    Returns:
        Names of the packages touched
    """
    # Later entries win when a run reports the same version twice
    unique: Dict[Tuple[str, str], DiscoveredVersion] = {}
    for item in discovered:
        unique[(item.name, item.version)] = item

    now = datetime.utcnow()
    packages: Dict[str, Package] = {}
    for (name, version), item in unique.items():
        package = packages.get(name)
        if package is None:
            package = db.query(Package).filter(Package.full_name == name).first()
            if package is None:
                package = Package(vendor=item.vendor, name=item.package, full_name=name)
                db.add(package)
                db.flush()
            packages[name] = package
        package.repository_id = repository_id
        package.updated_at = now

        row = db.query(PackageVersion).filter(
            PackageVersion.package_id == package.id,
            PackageVersion.version == version,
        ).first()
        if row is None:
            row = PackageVersion(package_id=package.id, version=version)
            db.add(row)
        apply_discovered(row, item, repository_id)
        row.updated_at = now

    db.flush()
    return set(packages)


class RepositorySyncService:
    """Runs repository syncs and persists their results."""

    def __init__(
        self,
        engine: SyncEngine,
        cache: Optional[MetadataCache] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.engine = engine
        self.cache = cache
        self.logger = logger or logging.getLogger(__name__)

    async def sync(self, db: Session, repository: Repository) -> SyncResult:
        """
        Synchronize one repository.

        Args:
            db: Database session
            repository: Repository to sync

        Returns:
            SyncResult of the strategy (or of persisting its output)

        Raises:
            ValidationError: If the repository configuration is unusable;
                the repository is marked ``error`` first
        """
        repository_id = repository.id
        config = SyncConfig.from_repository(repository)

        repository.status = RepositoryStatus.SYNCING.value
        db.commit()

        try:
            result = await self.engine.synchronize(config)
        except ValidationError as e:
            self._mark_failed(db, repository, e.message)
            raise
        except UpstreamError as e:
            result = SyncResult.failure(e.code)
        except Exception:
            self.logger.exception(f"Unexpected error syncing repository {repository_id}")
            self._mark_failed(db, repository, "internal_error")
            raise

        if not result.success:
            self.logger.warning(f"Sync of repository {repository_id} failed: {result.error}")
            self._mark_failed(db, repository, result.error or "unknown_error")
            return result

        try:
            touched = upsert_versions(db, repository_id, result.packages)
            repository.status = RepositoryStatus.ACTIVE.value
            repository.error_message = None
            repository.last_synced_at = datetime.utcnow()
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            self.logger.exception(f"Failed to store sync result of repository {repository_id}")
            self._mark_failed(db, repository, f"persist_failed: {e.__class__.__name__}")
            return SyncResult.failure("persist_failed", result.strategy_used)

        strategy = result.strategy_used.value if result.strategy_used else "unknown"
        self.logger.info(
            f"Repository {repository_id} synced via {strategy}: "
            f"{len(result.packages)} versions of {len(touched)} packages"
        )
        await self.invalidate(touched)
        return result

    async def sync_pending(self, db: Session) -> List[SyncResult]:
        """Sync every repository still in ``pending`` status.

        Failures are recorded on each repository and never raised, so one
        broken repository does not affect the others.
        """
        results = []
        pending = db.query(Repository).filter(Repository.status == RepositoryStatus.PENDING.value).all()
        for repository in pending:
            try:
                results.append(await self.sync(db, repository))
            except ValidationError as e:
                results.append(SyncResult.failure(e.code))
            except Exception:
                # Already logged and recorded on the repository by sync()
                db.rollback()
                results.append(SyncResult.failure("internal_error"))
        return results

    async def invalidate(self, package_names: Set[str]) -> None:
        """Drop cached documents that may now be out of date."""
        if self.cache is None:
            return
        keys = [ROOT_DOCUMENT_KEY]
        for name in sorted(package_names):
            keys.extend([provider_key(name), provider_key(name, dev=True)])
        try:
            await self.cache.invalidate(*keys)
        except Exception as e:
            # Markers still expire and freshness checks catch stale entries
            self.logger.warning(f"Cache invalidation failed after sync: {e}")

    def _mark_failed(self, db: Session, repository: Repository, message: str) -> None:
        repository.status = RepositoryStatus.ERROR.value
        repository.error_message = message
        repository.last_synced_at = datetime.utcnow()
        db.commit()
