"""Repository synchronization."""

from pkgbroker.sync.base import (
    DiscoveredVersion,
    SourceStrategy,
    SyncConfig,
    SyncResult,
    SyncStrategy,
)
from pkgbroker.sync.engine import SyncEngine
from pkgbroker.sync.service import RepositorySyncService

__all__ = [
    "DiscoveredVersion",
    "SourceStrategy",
    "SyncConfig",
    "SyncResult",
    "SyncStrategy",
    "SyncEngine",
    "RepositorySyncService",
]
