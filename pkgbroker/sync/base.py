"""Base classes and data structures for repository synchronization.

Every source type has a strategy implementing ``synchronize(config)``.
Strategies only discover package versions; persisting them is the job of
``RepositorySyncService``.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pkgbroker.db.models.repository import Repository


class SyncStrategy(str, Enum):
    """Strategy that produced a sync result."""

    TIER_A = "tier_a"  # hosted package registry of a git-hosting account
    TIER_B = "tier_b"  # manifest enumeration through the repository API
    COMPOSER_REPOSITORY = "composer_repository"
    COMPOSER_PROVIDERS = "composer_providers"
    ARTIFACT_INDEX = "artifact_index"


@dataclass
class DiscoveredVersion:
    """One (package, version) pair found upstream."""

    name: str  # vendor/package, lowercase
    version: str
    dist_url: Optional[str] = None
    dist_type: str = "zip"
    dist_reference: Optional[str] = None
    dist_shasum: Optional[str] = None
    source: Optional[Dict[str, Any]] = None  # {"type", "url", "reference"}
    released_at: Optional[datetime] = None
    manifest: Dict[str, Any] = field(default_factory=dict)  # sanitized composer metadata

    @property
    def vendor(self) -> str:
        return self.name.split("/", 1)[0]

    @property
    def package(self) -> str:
        return self.name.split("/", 1)[1]


@dataclass
class SyncResult:
    """Result of a repository sync."""

    success: bool
    packages: List[DiscoveredVersion] = field(default_factory=list)
    strategy_used: Optional[SyncStrategy] = None
    error: Optional[str] = None
    skipped: List[str] = field(default_factory=list)  # manifests or files that failed to parse

    @classmethod
    def failure(cls, error: str, strategy: Optional[SyncStrategy] = None) -> "SyncResult":
        return cls(success=False, strategy_used=strategy, error=error)

    @property
    def package_names(self) -> List[str]:
        return sorted({p.name for p in self.packages})

    @property
    def is_partial(self) -> bool:
        return self.success and bool(self.skipped)


@dataclass
class SyncConfig:
    """Repository settings a strategy needs, detached from the ORM session."""

    repository_id: str
    url: str
    source_type: str
    credential_type: str = "none"
    credentials: Dict[str, Any] = field(default_factory=dict)
    path_pattern: Optional[str] = None
    package_filter: List[str] = field(default_factory=list)

    @classmethod
    def from_repository(cls, repository: Repository) -> "SyncConfig":
        return cls(
            repository_id=repository.id,
            url=repository.url,
            source_type=repository.source_type,
            credential_type=repository.credential_type or "none",
            credentials=dict(repository.credentials or {}),
            path_pattern=repository.path_pattern,
            package_filter=repository.package_filter_list,
        )


class SourceStrategy(ABC):
    """Abstract base class for source-type strategies."""

    @property
    @abstractmethod
    def source_type(self) -> str:
        """Return the repository source type handled (e.g., 'git', 'composer')."""
        pass

    @abstractmethod
    async def synchronize(self, config: SyncConfig) -> SyncResult:
        """Discover package versions from an upstream source.

        Args:
            config: Repository configuration

        Returns:
            SyncResult. Expected upstream failures are reported through
            ``success=False`` and ``error`` rather than raised.

        Raises:
            ValidationError: If the configuration cannot be used at all
        """
        pass
