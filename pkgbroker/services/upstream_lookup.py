"""On-demand lookup of packages missing from the database.

When a provider document is requested for a package no sync has brought
in, the active Composer repositories are asked for it in creation order,
then Packagist when mirroring is enabled. The first source that knows the
package answers the request; its versions are stored after the response
has been sent, under the repository that provided them.

Packages found on Packagist are stored under a ``packagist`` repository
that is created on first use. Every looked-up name is added to its package
filter, so scheduled syncs keep those packages current.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pkgbroker.core.errors import UpstreamError
from pkgbroker.db.models import Package, PackageVersion, Repository, RepositoryStatus, SourceType
from pkgbroker.services.provider_documents import build_provider_document
from pkgbroker.services.upstream import UpstreamClient
from pkgbroker.sync.base import DiscoveredVersion, SyncConfig
from pkgbroker.sync.composer_repo import ComposerMetadataReader, ComposerRepositoryStrategy
from pkgbroker.sync.service import apply_discovered, upsert_versions

PACKAGIST_REPOSITORY_ID = "packagist"


@dataclass
class LookupResult:
    """Versions of one package found upstream."""

    package_name: str
    repository_id: str
    versions: List[DiscoveredVersion]


def build_lookup_document(result: LookupResult, base_url: str, dev: bool = False) -> Dict[str, Any]:
    """Build the provider document for versions that are not stored yet."""
    vendor, _, name = result.package_name.partition("/")
    package = Package(vendor=vendor, name=name, full_name=result.package_name)

    # Later entries win when a source reports the same version twice
    unique: Dict[str, DiscoveredVersion] = {item.version: item for item in result.versions}
    rows = []
    for version, item in unique.items():
        row = PackageVersion(version=version)
        apply_discovered(row, item, result.repository_id)
        rows.append(row)
    package.versions = rows

    return build_provider_document(package, base_url, dev=dev)


class UpstreamPackageLookup:
    """Finds unknown packages in the configured upstream sources."""

    def __init__(
        self,
        upstream: UpstreamClient,
        session_factory: Optional[Callable[[], Session]] = None,
        packagist_url: str = "https://repo.packagist.org",
        packagist_enabled: bool = True,
        logger: Optional[logging.Logger] = None,
    ):
        self.upstream = upstream
        self.session_factory = session_factory
        self.packagist_url = packagist_url.rstrip("/")
        self.packagist_enabled = packagist_enabled
        self.logger = logger or logging.getLogger(__name__)
        self.strategy = ComposerRepositoryStrategy(upstream, logger=self.logger)
        self.reader = ComposerMetadataReader(upstream, logger=self.logger)

    async def find(self, db: Session, package_name: str) -> Optional[LookupResult]:
        """
        Look a package up upstream.

        Args:
            db: Database session
            package_name: Lowercase vendor/package name

        Returns:
            The versions found, or None if no source knows the package

        Raises:
            UpstreamError: If Packagist fails or answers with an invalid document
        """
        repositories = (
            db.query(Repository)
            .filter(
                Repository.source_type == SourceType.COMPOSER.value,
                Repository.status == RepositoryStatus.ACTIVE.value,
                Repository.id != PACKAGIST_REPOSITORY_ID,
            )
            .order_by(Repository.created_at)
            .all()
        )
        for repository in repositories:
            if repository.package_filter_list and package_name not in repository.package_filter_list:
                continue
            config = SyncConfig.from_repository(repository)
            config.package_filter = [package_name]
            result = await self.strategy.synchronize(config)
            versions = [item for item in result.packages if item.name == package_name]
            if versions:
                self.logger.info(f"Found {package_name} in repository {repository.id}")
                return LookupResult(package_name, repository.id, versions)

        if self.packagist_enabled:
            return await self._find_on_packagist(package_name)
        return None

    async def _find_on_packagist(self, package_name: str) -> Optional[LookupResult]:
        url = f"{self.packagist_url}/p2/{package_name}.json"
        response = await self.upstream.get(url)
        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise UpstreamError(
                f"Packagist answered HTTP {response.status_code} for {package_name}",
                code=f"http_{response.status_code}",
            )

        try:
            versions = self.reader.versions_from_document(response.json(), package_name, self.packagist_url)
        except (ValueError, KeyError, TypeError, AttributeError):
            raise UpstreamError(
                f"Packagist returned an invalid document for {package_name}",
                code="invalid_response",
            )

        versions.extend(
            await self.reader.fetch_package(self.packagist_url, f"/p2/{package_name}~dev.json", package_name, {})
        )
        self.logger.info(f"Found {package_name} on Packagist ({len(versions)} versions)")
        return LookupResult(package_name, PACKAGIST_REPOSITORY_ID, versions)

    async def store(self, result: LookupResult) -> None:
        """Persist looked-up versions. Runs after the response has been sent."""
        if self.session_factory is None:
            return

        db = self.session_factory()
        try:
            if result.repository_id == PACKAGIST_REPOSITORY_ID:
                self._track_on_packagist(db, result.package_name)
            upsert_versions(db, result.repository_id, result.versions)
            db.commit()
            self.logger.info(f"Stored {len(result.versions)} looked-up versions of {result.package_name}")
        except SQLAlchemyError as e:
            db.rollback()
            self.logger.warning(f"Failed to store looked-up package {result.package_name}: {e}")
        finally:
            db.close()

    def _track_on_packagist(self, db: Session, package_name: str) -> None:
        repository = db.query(Repository).filter(Repository.id == PACKAGIST_REPOSITORY_ID).first()
        if repository is None:
            repository = Repository(
                id=PACKAGIST_REPOSITORY_ID,
                url=self.packagist_url,
                source_type=SourceType.COMPOSER.value,
                status=RepositoryStatus.ACTIVE.value,
            )
            db.add(repository)

        names = repository.package_filter_list
        if package_name not in names:
            repository.package_filter = ",".join(names + [package_name])
        db.flush()
