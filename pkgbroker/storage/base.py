"""Storage driver interface.

Artifacts are opaque byte streams addressed by key. Keys follow
``dist/{repository_id}/{vendor}/{package}/{version}.zip``.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator, Optional
from urllib.parse import quote

CHUNK_SIZE = 64 * 1024


@dataclass
class StoredObject:
    """A readable object returned by ``StorageDriver.get``."""

    key: str
    size: Optional[int]
    chunks: AsyncIterator[bytes]


def build_storage_key(repository_id: str, package_name: str, version: str) -> str:
    """Derive the storage key of an artifact.

    Args:
        repository_id: Repository the version was synced from
        package_name: Full package name (``vendor/package``)
        version: Version string (branch names may contain slashes)

    Returns:
        Storage key
    """
    vendor, _, name = package_name.partition("/")
    return "dist/{}/{}/{}/{}.zip".format(
        quote(repository_id, safe=""),
        quote(vendor, safe=""),
        quote(name, safe=""),
        quote(version, safe=""),
    )


class StorageDriver(ABC):
    """Abstract object store."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Driver name used in logs and health output."""
        pass

    @abstractmethod
    async def get(self, key: str) -> Optional[StoredObject]:
        """Open an object for streaming.

        Returns:
            The object, or None if no object exists at ``key``

        Raises:
            StorageError: If the store cannot be reached
        """
        pass

    @abstractmethod
    async def put(self, key: str, data: bytes) -> None:
        """Write an object, replacing any existing one.

        Raises:
            StorageError: If the write fails
        """
        pass

    async def health_check(self) -> dict:
        return {"status": "healthy", "driver": self.name}
