"""Celery workers for pkgbroker."""

from pkgbroker.workers.sync_tasks import (
    celery_app,
    sync_repository,
    sync_all_repositories,
)

__all__ = [
    "celery_app",
    "sync_repository",
    "sync_all_repositories",
]
