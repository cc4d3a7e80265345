"""Two-tier sync strategy for git-hosted sources.

Tier A: the repository URL names a whole account. The account's hosted
Composer registry is read in one call; if that fails there is nothing to
fall back to and the failure is returned.

Tier B: the URL names one repository. Tier A is skipped. The branch tree is
listed, manifests matching the path pattern are fetched and parsed, and one
version per manifest is built from the branch (plus released versions from
tags). Manifests that cannot be read or parsed are skipped and reported in
``SyncResult.skipped``; the sync still succeeds with the rest.
"""

import json
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pkgbroker.core.errors import UpstreamError, UpstreamSyncFailure, ValidationError
from pkgbroker.core.versions import clean_tag
from pkgbroker.services.upstream import UpstreamClient, build_auth_headers
from pkgbroker.sync.base import DiscoveredVersion, SourceStrategy, SyncConfig, SyncResult, SyncStrategy
from pkgbroker.sync.composer_repo import ComposerMetadataReader, root_failure
from pkgbroker.sync.git_hosts import GitHostingProvider, GitTarget, TreeListing
from pkgbroker.sync.manifest import discovered_from_metadata, is_valid_package_name, path_matches

DEFAULT_MANIFEST_PATTERN = "**/composer.json"
ROOT_MANIFEST = "composer.json"


class GitHostedStrategy(SourceStrategy):
    """Sync strategy for git hosting accounts and repositories."""

    def __init__(
        self,
        upstream: UpstreamClient,
        providers: Sequence[GitHostingProvider],
        logger: Optional[logging.Logger] = None,
    ):
        self.upstream = upstream
        self.providers = list(providers)
        self.logger = logger or logging.getLogger(__name__)
        self.reader = ComposerMetadataReader(upstream, logger=self.logger)

    @property
    def source_type(self) -> str:
        return "git"

    def provider_for(self, url: str) -> GitHostingProvider:
        for provider in self.providers:
            if provider.matches(url):
                return provider
        raise ValidationError(f"Unsupported git host: {url}")

    async def synchronize(self, config: SyncConfig) -> SyncResult:
        provider = self.provider_for(config.url)
        target = provider.parse_target(config.url)
        if not target.branch and config.credentials.get("branch"):
            target.branch = str(config.credentials["branch"])

        headers = build_auth_headers(config.credential_type, config.credentials)
        headers.update(provider.api_headers())

        tier = SyncStrategy.TIER_B if target.repository else SyncStrategy.TIER_A
        try:
            if tier == SyncStrategy.TIER_A:
                return await self._sync_registry(provider, target, headers, config.package_filter)
            return await self._sync_repository(provider, target, headers, config)
        except UpstreamSyncFailure as e:
            self.logger.warning(f"{provider.name} sync of {target.full_path} failed: {e.message}")
            return SyncResult.failure(e.code, tier)
        except UpstreamError as e:
            self.logger.error(f"{provider.name} sync of {target.full_path} failed: {e.message}")
            return SyncResult.failure("network_error", tier)
        except (ValueError, TypeError, AttributeError, KeyError) as e:
            self.logger.error(f"Malformed {provider.name} response for {target.full_path}: {e!r}")
            return SyncResult.failure("invalid_response", tier)

    async def _sync_registry(
        self,
        provider: GitHostingProvider,
        target: GitTarget,
        headers: Dict[str, str],
        package_filter: List[str],
    ) -> SyncResult:
        """Tier A: read the account's hosted Composer registry."""
        base_url = provider.registry_base(target)
        response = await self.upstream.get(f"{base_url}/packages.json", headers=headers)
        if response.status_code != 200:
            result = root_failure(response.status_code, "no_packages_registry")
            result.strategy_used = SyncStrategy.TIER_A
            return result

        try:
            root = response.json()
        except ValueError:
            return SyncResult.failure("invalid_packages_json", SyncStrategy.TIER_A)
        if not isinstance(root, dict):
            return SyncResult.failure("invalid_packages_json", SyncStrategy.TIER_A)

        result = await self.reader.read(base_url, root, headers, package_filter)
        result.strategy_used = SyncStrategy.TIER_A
        if result.success:
            self.logger.info(
                f"Synced {len(result.packages)} versions from the {provider.name} registry of {target.owner}"
            )
        return result

    async def _sync_repository(
        self,
        provider: GitHostingProvider,
        target: GitTarget,
        headers: Dict[str, str],
        config: SyncConfig,
    ) -> SyncResult:
        """Tier B: enumerate manifests through the repository API."""
        if not target.branch:
            target.branch = await provider.default_branch(target, headers)

        listing = await provider.list_tree(target, headers)
        pattern = config.path_pattern or DEFAULT_MANIFEST_PATTERN
        manifest_paths = [path for path in listing.paths if path_matches(path, pattern)]
        if not manifest_paths:
            return SyncResult.failure("no_composer_json_found", SyncStrategy.TIER_B)

        manifests: List[Tuple[str, Dict[str, Any]]] = []
        skipped: List[str] = []
        for path in manifest_paths:
            manifest = await self._read_manifest(provider, target, path, headers)
            if manifest is None:
                skipped.append(path)
            else:
                manifests.append((path, manifest))

        if not manifests:
            return SyncResult(
                success=False,
                strategy_used=SyncStrategy.TIER_B,
                error="no_valid_composer_json",
                skipped=skipped,
            )

        if config.package_filter:
            manifests = [(p, m) for p, m in manifests if m["name"] in config.package_filter]

        tags = await provider.list_tags(target, headers)
        packages = self._build_versions(provider, target, listing, manifests, tags)

        self.logger.info(
            f"Discovered {len(packages)} versions in {target.full_path}@{target.branch}"
            + (f" ({len(skipped)} manifests skipped)" if skipped else "")
        )
        return SyncResult(
            success=True,
            packages=packages,
            strategy_used=SyncStrategy.TIER_B,
            skipped=skipped,
        )

    async def _read_manifest(
        self,
        provider: GitHostingProvider,
        target: GitTarget,
        path: str,
        headers: Dict[str, str],
    ) -> Optional[Dict[str, Any]]:
        content = await provider.fetch_file(target, path, headers)
        if content is None:
            return None
        try:
            manifest = json.loads(content)
        except ValueError:
            self.logger.warning(f"Skipping {target.full_path}:{path}, not valid JSON")
            return None
        if not isinstance(manifest, dict) or not is_valid_package_name(str(manifest.get("name", "")).lower()):
            self.logger.warning(f"Skipping {target.full_path}:{path}, no valid package name")
            return None
        manifest["name"] = manifest["name"].lower()
        return manifest

    def _build_versions(
        self,
        provider: GitHostingProvider,
        target: GitTarget,
        listing: TreeListing,
        manifests: List[Tuple[str, Dict[str, Any]]],
        tags: List[Tuple[str, str]],
    ) -> List[DiscoveredVersion]:
        packages: List[DiscoveredVersion] = []
        clone_url = provider.clone_url(target)

        for path, manifest in manifests:
            name = manifest["name"]
            explicit_version = manifest.get("version")
            branch_version = str(explicit_version) if explicit_version else f"dev-{target.branch}"
            packages.append(self._version(
                name, branch_version, manifest,
                provider.archive_url(target, target.branch),
                listing.reference, clone_url,
            ))

            # Tags version the root package only, unless it pins its own version
            if explicit_version or path != ROOT_MANIFEST:
                continue
            for tag, sha in tags:
                version = clean_tag(tag)
                if version is None:
                    continue
                packages.append(self._version(
                    name, version, manifest,
                    provider.archive_url(target, tag),
                    sha, clone_url,
                ))
        return packages

    def _version(
        self,
        name: str,
        version: str,
        manifest: Dict[str, Any],
        archive_url: str,
        reference: str,
        clone_url: str,
    ) -> DiscoveredVersion:
        metadata = dict(manifest)
        metadata["dist"] = {"type": "zip", "url": archive_url, "reference": reference or None}
        metadata["source"] = {"type": "git", "url": clone_url, "reference": reference or None}
        return discovered_from_metadata(name, version, metadata, archive_url)
