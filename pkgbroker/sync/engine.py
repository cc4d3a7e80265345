"""Strategy dispatch for repository synchronization."""

import logging
from typing import Dict, Mapping, Optional

from pkgbroker.core.config import Settings
from pkgbroker.core.errors import ValidationError
from pkgbroker.db.models.repository import SourceType
from pkgbroker.services.upstream import UpstreamClient
from pkgbroker.sync.artifact_index import ArtifactIndexStrategy
from pkgbroker.sync.base import SourceStrategy, SyncConfig, SyncResult
from pkgbroker.sync.composer_repo import ComposerRepositoryStrategy
from pkgbroker.sync.git import GitHostedStrategy
from pkgbroker.sync.git_hosts import GitHubProvider, GitLabProvider


class SyncEngine:
    """Selects the strategy for a repository by its source type."""

    def __init__(self, strategies: Mapping[str, SourceStrategy], logger: Optional[logging.Logger] = None):
        self.strategies: Dict[str, SourceStrategy] = dict(strategies)
        self.logger = logger or logging.getLogger(__name__)

    @classmethod
    def create(
        cls,
        upstream: UpstreamClient,
        settings: Settings,
        logger: Optional[logging.Logger] = None,
    ) -> "SyncEngine":
        """Build the engine with every supported source type."""
        providers = [
            GitHubProvider(
                upstream,
                api_url=settings.github_api_url,
                packages_url=settings.github_packages_url,
            ),
            GitLabProvider(upstream),
        ]
        return cls(
            {
                SourceType.GIT.value: GitHostedStrategy(upstream, providers, logger=logger),
                SourceType.COMPOSER.value: ComposerRepositoryStrategy(upstream, logger=logger),
                SourceType.ARTIFACT.value: ArtifactIndexStrategy(upstream, logger=logger),
            },
            logger=logger,
        )

    def strategy_for(self, source_type: str) -> SourceStrategy:
        strategy = self.strategies.get(source_type)
        if strategy is None:
            raise ValidationError(f"Unsupported source type: {source_type}")
        return strategy

    async def synchronize(self, config: SyncConfig) -> SyncResult:
        """
        Discover package versions for one repository.

        Raises:
            ValidationError: If the source type or URL cannot be handled
        """
        if not config.url:
            raise ValidationError(f"Repository {config.repository_id} has no URL")
        strategy = self.strategy_for(config.source_type)
        self.logger.info(f"Synchronizing repository {config.repository_id} ({config.source_type}) from {config.url}")
        return await strategy.synchronize(config)
