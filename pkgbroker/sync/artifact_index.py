"""Sync strategy for flat archive indexes.

An artifact repository is a directory of zip archives published over HTTP.
The index is read from ``{url}`` when it ends in ``.json``, otherwise from
``{url}/index.json`` with a fallback to the HTML directory listing at
``{url}/``.

JSON indexes are a list (or an object with an ``archives`` list) whose
entries are either file names or objects::

    {"file": "acme--widgets--1.2.0.zip", "shasum": "...", "composer": {...}}

Package and version come from the embedded ``composer`` manifest when
present, otherwise from the file name: ``vendor--package--version.zip`` or
``vendor-package-version.zip`` (in the latter form the vendor cannot
contain a dash).
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from pkgbroker.core.errors import UpstreamError
from pkgbroker.services.upstream import UpstreamClient, build_auth_headers
from pkgbroker.sync.base import DiscoveredVersion, SourceStrategy, SyncConfig, SyncResult, SyncStrategy
from pkgbroker.sync.manifest import discovered_from_metadata, is_valid_package_name, resolve_url

DOUBLE_DASH_RE = re.compile(r"^(?P<vendor>[^/]+?)--(?P<package>[^/]+?)--(?P<version>[^/]+)\.zip$", re.IGNORECASE)
SINGLE_DASH_RE = re.compile(
    r"^(?P<vendor>[a-z0-9_.]+)-(?P<package>[a-z0-9_.-]+?)-(?P<version>v?\d[\w.+-]*|dev-[\w.+-]+)\.zip$",
    re.IGNORECASE,
)
HREF_RE = re.compile(r"""href=["']([^"'?#]+\.zip)["']""", re.IGNORECASE)


@dataclass
class IndexEntry:
    file: str
    shasum: Optional[str] = None
    manifest: Optional[Dict[str, Any]] = None
    time: Optional[str] = None


def parse_archive_name(file_name: str) -> Optional[Tuple[str, str]]:
    """Split an archive file name into (package name, version)."""
    base = file_name.rsplit("/", 1)[-1]
    for pattern in (DOUBLE_DASH_RE, SINGLE_DASH_RE):
        match = pattern.match(base)
        if match:
            name = f"{match.group('vendor')}/{match.group('package')}".lower()
            if is_valid_package_name(name):
                return name, match.group("version")
    return None


class ArtifactIndexStrategy(SourceStrategy):
    """Discovers versions from a flat list of zip archives."""

    def __init__(self, upstream: UpstreamClient, logger: Optional[logging.Logger] = None):
        self.upstream = upstream
        self.logger = logger or logging.getLogger(__name__)

    @property
    def source_type(self) -> str:
        return "artifact"

    async def synchronize(self, config: SyncConfig) -> SyncResult:
        headers = build_auth_headers(config.credential_type, config.credentials)
        url = config.url.rstrip("/")

        try:
            if url.endswith(".json"):
                base_url = url.rsplit("/", 1)[0]
                entries, error = await self._read_json_index(url, headers)
            else:
                base_url = url
                entries, error = await self._read_json_index(f"{url}/index.json", headers)
                if error == "index_not_found":
                    entries, error = await self._read_listing(f"{url}/", headers)
        except UpstreamError as e:
            self.logger.error(f"Artifact index sync error for {url}: {e.message}")
            return SyncResult.failure("network_error", SyncStrategy.ARTIFACT_INDEX)
        except (ValueError, TypeError, AttributeError, KeyError) as e:
            self.logger.error(f"Malformed artifact index at {url}: {e!r}")
            return SyncResult.failure("invalid_response", SyncStrategy.ARTIFACT_INDEX)

        if error:
            return SyncResult.failure(error, SyncStrategy.ARTIFACT_INDEX)

        packages: List[DiscoveredVersion] = []
        skipped: List[str] = []
        for entry in entries:
            discovered = self._discover(entry, base_url)
            if discovered is None:
                skipped.append(entry.file)
                continue
            if config.package_filter and discovered.name not in config.package_filter:
                continue
            packages.append(discovered)

        if not packages:
            return SyncResult(
                success=False,
                strategy_used=SyncStrategy.ARTIFACT_INDEX,
                error="no_archives_found",
                skipped=skipped,
            )

        if skipped:
            self.logger.warning(f"Skipped {len(skipped)} archives with unrecognised names in {url}")
        return SyncResult(
            success=True,
            packages=packages,
            strategy_used=SyncStrategy.ARTIFACT_INDEX,
            skipped=skipped,
        )

    async def _read_json_index(self, url: str, headers: Dict[str, str]) -> Tuple[List[IndexEntry], Optional[str]]:
        response = await self.upstream.get(url, headers=headers)
        if response.status_code in (401, 403):
            return [], "auth_failed"
        if response.status_code == 404:
            return [], "index_not_found"
        if response.status_code != 200:
            return [], f"http_{response.status_code}"

        try:
            data = response.json()
        except ValueError:
            return [], "invalid_index"
        if isinstance(data, dict):
            data = data.get("archives")
        if not isinstance(data, list):
            return [], "invalid_index"

        entries = []
        for item in data:
            if isinstance(item, str):
                entries.append(IndexEntry(file=item))
            elif isinstance(item, dict) and (item.get("file") or item.get("url")):
                manifest = item.get("composer")
                entries.append(IndexEntry(
                    file=item.get("file") or item["url"],
                    shasum=item.get("shasum") or item.get("sha1"),
                    manifest=manifest if isinstance(manifest, dict) else None,
                    time=item.get("time"),
                ))
        return entries, None

    async def _read_listing(self, url: str, headers: Dict[str, str]) -> Tuple[List[IndexEntry], Optional[str]]:
        response = await self.upstream.get(url, headers=headers, accept="text/html")
        if response.status_code in (401, 403):
            return [], "auth_failed"
        if response.status_code == 404:
            return [], "index_not_found"
        if response.status_code != 200:
            return [], f"http_{response.status_code}"

        seen = set()
        entries = []
        for href in HREF_RE.findall(response.text):
            if href not in seen:
                seen.add(href)
                entries.append(IndexEntry(file=href))
        return entries, None

    def _discover(self, entry: IndexEntry, base_url: str) -> Optional[DiscoveredVersion]:
        manifest = dict(entry.manifest or {})
        parsed = parse_archive_name(entry.file)

        name = str(manifest.get("name") or "").lower() or (parsed[0] if parsed else "")
        version = str(manifest.get("version") or "") or (parsed[1] if parsed else "")
        if not is_valid_package_name(name) or not version:
            return None

        metadata = dict(manifest)
        metadata["dist"] = {"type": "zip", "url": entry.file, "shasum": entry.shasum}
        if entry.time and "time" not in metadata:
            metadata["time"] = entry.time
        return discovered_from_metadata(name, version, metadata, base_url)
