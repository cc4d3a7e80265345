"""Metadata cache for computed Composer documents.

Documents are stored as JSON strings in the key-value store. Each entry has a
freshness marker under ``<key>:metadata`` holding the last-modified time of
the package data the document was built from, so a reader can tell a stale
document apart from a fresh one without waiting for the TTL.

Every read is shape-validated. A value that does not decode to a JSON object
or array (double-encoded strings, truncated writes, hand edits) is deleted on
the spot together with its marker and reported as a miss, so the caller
rebuilds it from the database.
"""

import json
import logging
from typing import Any, Optional, Union

from pkgbroker.core.errors import CacheCorruption
from pkgbroker.core.kv import KeyValueStore

Document = Union[dict, list]

METADATA_SUFFIX = ":metadata"
ROOT_DOCUMENT_KEY = "packages:root"


def provider_key(package_name: str, dev: bool = False) -> str:
    """Cache key of a provider document (``p2:vendor/name`` or ``p2:vendor/name~dev``)."""
    return f"p2:{package_name}~dev" if dev else f"p2:{package_name}"


def marker_key(key: str) -> str:
    return key + METADATA_SUFFIX


class MetadataCache:
    """Self-healing document cache over a ``KeyValueStore``."""

    def __init__(
        self,
        store: KeyValueStore,
        default_ttl: int = 3600,
        logger: Optional[logging.Logger] = None,
    ):
        self.store = store
        self.default_ttl = default_ttl
        self.logger = logger or logging.getLogger(__name__)

    async def get(self, key: str) -> Optional[str]:
        return await self.store.get(key)

    async def put(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        if not isinstance(value, str):
            value = json.dumps(value, separators=(",", ":"))
        await self.store.put(key, value, ttl or self.default_ttl)

    async def delete(self, key: str) -> None:
        """Remove a cached value and its freshness marker."""
        await self.store.delete(key, marker_key(key))

    async def get_last_modified(self, key: str) -> Optional[int]:
        raw = await self.store.get(marker_key(key))
        if raw is None:
            return None
        try:
            marker = json.loads(raw)
            return int(marker["last_modified"])
        except (ValueError, TypeError, KeyError):
            self.logger.warning(f"Discarding malformed cache marker for {key}")
            await self.store.delete(marker_key(key))
            return None

    async def get_document(self, key: str, member: Optional[str] = "packages") -> Optional[Document]:
        """Read and validate a cached document.

        Args:
            key: Cache key
            member: For object documents, a member that must be present and
                hold an object or array. ``None`` skips the check.

        Returns:
            The decoded document, or None on a miss or a healed corrupt entry
        """
        raw = await self.store.get(key)
        if raw is None:
            return None

        try:
            return decode_document(raw, member)
        except CacheCorruption as exc:
            self.logger.warning(f"Corrupt cache entry {key} ({exc.message}), deleting")
            await self.delete(key)
            return None

    async def get_fresh_document(
        self,
        key: str,
        last_modified: int,
        member: Optional[str] = "packages",
    ) -> Optional[Document]:
        """Return the cached document only if its marker covers ``last_modified``."""
        cached_at = await self.get_last_modified(key)
        if cached_at is None or cached_at < last_modified:
            return None
        return await self.get_document(key, member=member)

    async def put_document(
        self,
        key: str,
        document: Document,
        last_modified: int,
        ttl: Optional[int] = None,
    ) -> None:
        """Store a document and its freshness marker.

        Concurrent writers race last-write-wins; every writer stores a
        complete, freshly built document.
        """
        if not isinstance(document, (dict, list)):
            raise TypeError(f"Refusing to cache {type(document).__name__} as a document")
        ttl = ttl or self.default_ttl
        await self.put(key, document, ttl)
        await self.store.put(marker_key(key), json.dumps({"last_modified": int(last_modified)}), ttl)

    async def invalidate(self, *keys: str) -> None:
        for key in keys:
            await self.delete(key)


def decode_document(raw: str, member: Optional[str] = "packages") -> Document:
    """Decode a cached value, raising CacheCorruption if it is not a document."""
    try:
        document = json.loads(raw)
    except ValueError:
        raise CacheCorruption("value is not valid JSON")

    if not isinstance(document, (dict, list)):
        raise CacheCorruption(f"value decoded to {type(document).__name__}")

    if member and isinstance(document, dict) and not isinstance(document.get(member), (dict, list)):
        raise CacheCorruption(f"document has no '{member}' member")

    return document
