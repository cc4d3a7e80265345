"""Sync strategy for protocol-native Composer repositories.

Mirrors Satis, Packagist, Private Packagist and similar repositories by
reading their own documents:

1. ``{url}/packages.json``
2. Composer 1 ``provider-includes`` + ``providers-url`` (lazy providers), or
3. Composer 2 ``metadata-url`` for the packages named by the package filter
   or ``available-packages``, or
4. inline ``packages``.

``ComposerMetadataReader`` is shared with the hosted package registries
used by the git strategy, which serve the same document format.
"""

import logging
from typing import Any, Dict, List, Optional

from pkgbroker.core.errors import UpstreamError
from pkgbroker.services.upstream import UpstreamClient, build_auth_headers
from pkgbroker.sync.base import DiscoveredVersion, SourceStrategy, SyncConfig, SyncResult, SyncStrategy
from pkgbroker.sync.manifest import discovered_from_metadata, expand_minified, iter_versions, resolve_url


def root_failure(status_code: int, not_found: str) -> SyncResult:
    """Map a failed ``packages.json`` response to a sync failure."""
    if status_code in (401, 403):
        return SyncResult.failure("auth_failed")
    if status_code == 404:
        return SyncResult.failure(not_found)
    return SyncResult.failure(f"http_{status_code}")


class ComposerMetadataReader:
    """Reads package versions out of a Composer repository root document."""

    def __init__(self, upstream: UpstreamClient, logger: Optional[logging.Logger] = None):
        self.upstream = upstream
        self.logger = logger or logging.getLogger(__name__)

    async def read(
        self,
        base_url: str,
        root: Dict[str, Any],
        headers: Dict[str, str],
        package_filter: List[str],
    ) -> SyncResult:
        """
        Collect versions from an already fetched ``packages.json``.

        Raises:
            UpstreamError: If a follow-up document cannot be fetched at all
        """
        if root.get("providers-url") and root.get("provider-includes"):
            return await self._read_providers(base_url, root, headers, package_filter)

        names = package_filter or list(root.get("available-packages") or [])
        if root.get("metadata-url") and names:
            return await self._read_metadata_url(base_url, root["metadata-url"], names, headers)

        packages = self._read_inline(root, base_url, package_filter)
        self.logger.info(f"Parsed {len(packages)} versions from {base_url}/packages.json")
        return SyncResult(success=True, packages=packages, strategy_used=SyncStrategy.COMPOSER_REPOSITORY)

    def _read_inline(
        self,
        root: Dict[str, Any],
        base_url: str,
        package_filter: List[str],
    ) -> List[DiscoveredVersion]:
        packages = []
        inline = root.get("packages")
        if not isinstance(inline, dict):
            return packages

        for name, versions in inline.items():
            if package_filter and name not in package_filter:
                continue
            for version, metadata in iter_versions(versions):
                packages.append(discovered_from_metadata(name, version, metadata, base_url))
        return packages

    async def _read_providers(
        self,
        base_url: str,
        root: Dict[str, Any],
        headers: Dict[str, str],
        package_filter: List[str],
    ) -> SyncResult:
        """Sync through provider-includes (large Composer 1 repositories)."""
        providers_url = root["providers-url"]
        package_hashes: Dict[str, str] = {}

        for include_path, include in root["provider-includes"].items():
            include_hash = include.get("sha256", "") if isinstance(include, dict) else ""
            include_url = resolve_url(base_url, include_path.replace("%hash%", include_hash))
            response = await self.upstream.get(include_url, headers=headers)
            if response.status_code != 200:
                self.logger.warning(f"Failed to fetch provider file {include_url}: HTTP {response.status_code}")
                continue
            try:
                providers = response.json().get("providers") or {}
            except (ValueError, AttributeError):
                self.logger.warning(f"Provider file {include_url} is not a JSON object")
                continue

            for name, entry in providers.items():
                if package_filter and name not in package_filter:
                    continue
                package_hashes[name] = entry.get("sha256", "") if isinstance(entry, dict) else ""

        if package_filter:
            missing = [name for name in package_filter if name not in package_hashes]
            if missing:
                self.logger.warning(f"Packages not found in provider files: {', '.join(missing)}")

        if not package_hashes:
            return SyncResult.failure("no_packages_found")

        packages: List[DiscoveredVersion] = []
        for name, package_hash in package_hashes.items():
            path = providers_url.replace("%package%", name).replace("%hash%", package_hash)
            packages.extend(await self.fetch_package(base_url, path, name, headers))

        if not packages:
            return SyncResult.failure("no_package_versions_found")

        return SyncResult(success=True, packages=packages, strategy_used=SyncStrategy.COMPOSER_PROVIDERS)

    async def _read_metadata_url(
        self,
        base_url: str,
        metadata_url: str,
        names: List[str],
        headers: Dict[str, str],
    ) -> SyncResult:
        """Sync through Composer 2 per-package metadata (stable and dev files)."""
        packages: List[DiscoveredVersion] = []
        for name in names:
            for variant in (name, f"{name}~dev"):
                path = metadata_url.replace("%package%", variant)
                packages.extend(await self.fetch_package(base_url, path, name, headers))

        if not packages:
            return SyncResult.failure("no_package_versions_found")

        return SyncResult(success=True, packages=packages, strategy_used=SyncStrategy.COMPOSER_PROVIDERS)

    async def fetch_package(
        self,
        base_url: str,
        path: str,
        name: str,
        headers: Dict[str, str],
    ) -> List[DiscoveredVersion]:
        """Fetch one per-package metadata file; missing or unusable files yield nothing."""
        url = resolve_url(base_url, path)
        response = await self.upstream.get(url, headers=headers)
        if response.status_code != 200:
            # Missing ~dev files are normal
            if response.status_code != 404:
                self.logger.warning(f"Failed to fetch package metadata {url}: HTTP {response.status_code}")
            return []

        try:
            discovered = self.versions_from_document(response.json(), name, base_url)
        except (ValueError, KeyError, TypeError, AttributeError):
            self.logger.warning(f"Package metadata {url} has no entry for {name}")
            return []

        self.logger.info(f"Fetched {len(discovered)} versions of {name}")
        return discovered

    def versions_from_document(
        self,
        document: Dict[str, Any],
        name: str,
        base_url: str,
    ) -> List[DiscoveredVersion]:
        """
        Read the versions of ``name`` out of a per-package metadata document.

        Raises:
            KeyError, TypeError, AttributeError: If the document has no usable entry for ``name``
        """
        versions = document["packages"][name]
        if isinstance(versions, list) and document.get("minified") == "composer/2.0":
            versions = expand_minified(versions)

        return [
            discovered_from_metadata(name, version, metadata, base_url)
            for version, metadata in iter_versions(versions)
        ]


class ComposerRepositoryStrategy(SourceStrategy):
    """Pass-through mirroring of an upstream Composer repository."""

    def __init__(self, upstream: UpstreamClient, logger: Optional[logging.Logger] = None):
        self.upstream = upstream
        self.logger = logger or logging.getLogger(__name__)
        self.reader = ComposerMetadataReader(upstream, logger=self.logger)

    @property
    def source_type(self) -> str:
        return "composer"

    async def synchronize(self, config: SyncConfig) -> SyncResult:
        headers = build_auth_headers(config.credential_type, config.credentials)
        base_url = config.url.rstrip("/")
        if base_url.endswith("/packages.json"):
            base_url = base_url[: -len("/packages.json")]

        try:
            response = await self.upstream.get(f"{base_url}/packages.json", headers=headers)
            if response.status_code != 200:
                return root_failure(response.status_code, "packages_json_not_found")

            try:
                root = response.json()
            except ValueError:
                return SyncResult.failure("invalid_packages_json")
            if not isinstance(root, dict):
                return SyncResult.failure("invalid_packages_json")

            return await self.reader.read(base_url, root, headers, config.package_filter)
        except UpstreamError as e:
            self.logger.error(f"Composer repository sync error for {base_url}: {e.message}")
            return SyncResult.failure("network_error")
        except (ValueError, TypeError, AttributeError, KeyError) as e:
            self.logger.error(f"Malformed response from composer repository {base_url}: {e!r}")
            return SyncResult.failure("invalid_response")
