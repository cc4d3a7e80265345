"""Celery tasks for repository synchronization.

Provides:
- On-demand sync of a single repository
- Periodic sync of every repository (beat schedule)
"""

import asyncio
import logging
from typing import Any, Dict, List

from celery import Celery, shared_task
from celery.signals import setup_logging

from pkgbroker.common.logger import setup_logger
from pkgbroker.core.cache import MetadataCache
from pkgbroker.core.config import get_settings
from pkgbroker.core.errors import PkgBrokerError
from pkgbroker.core.kv import RedisKeyValueStore
from pkgbroker.db.models import Repository, RepositoryStatus
from pkgbroker.db.session import SessionLocal
from pkgbroker.services.upstream import UpstreamClient
from pkgbroker.sync.base import SyncResult
from pkgbroker.sync.engine import SyncEngine
from pkgbroker.sync.service import RepositorySyncService

logger = logging.getLogger(__name__)
settings = get_settings()

# Initialize Celery
celery_app = Celery(
    "pkgbroker",
    broker=settings.celery_broker,
    backend=settings.celery_backend,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_routes={
        "pkgbroker.workers.sync_tasks.sync_repository": {"queue": "sync"},
        "pkgbroker.workers.sync_tasks.sync_all_repositories": {"queue": "sync"},
    },
    task_default_queue="default",
    beat_schedule={
        "sync-all-repositories": {
            "task": "pkgbroker.workers.sync_tasks.sync_all_repositories",
            "schedule": settings.sync_interval_minutes * 60.0,
        },
    },
)


@setup_logging.connect
def configure_logging(**kwargs):
    setup_logger(level=settings.log_level, log_file=settings.log_file)


def _result_dict(repository_id: str, result: SyncResult) -> Dict[str, Any]:
    return {
        "repository_id": repository_id,
        "success": result.success,
        "strategy": result.strategy_used.value if result.strategy_used else None,
        "error": result.error,
        "packages": result.package_names,
        "versions": len(result.packages),
        "skipped": result.skipped,
    }


async def _run_sync(repository_ids: List[str]) -> List[Dict[str, Any]]:
    """Sync repositories one after another on a fresh client and session."""
    kv = RedisKeyValueStore(settings.redis_url)
    upstream = UpstreamClient(
        timeout=settings.upstream_timeout_seconds,
        user_agent=settings.upstream_user_agent,
    )
    service = RepositorySyncService(
        SyncEngine.create(upstream, settings),
        cache=MetadataCache(kv, default_ttl=settings.cache_ttl_seconds),
    )

    results = []
    db = SessionLocal()
    try:
        for repository_id in repository_ids:
            try:
                repository = db.query(Repository).filter(Repository.id == repository_id).first()
                if repository is None:
                    logger.warning(f"Repository {repository_id} no longer exists, skipping")
                    continue
                result = await service.sync(db, repository)
            except PkgBrokerError as e:
                result = SyncResult.failure(e.code)
            except Exception:
                logger.exception(f"Sync of repository {repository_id} failed")
                db.rollback()
                result = SyncResult.failure("internal_error")
            results.append(_result_dict(repository_id, result))
    finally:
        db.close()
        await upstream.aclose()
        await kv.close()
    return results


@shared_task(bind=True, max_retries=3, default_retry_delay=60)
def sync_repository(self, repository_id: str) -> Dict[str, Any]:
    """
    Sync a single repository.

    Args:
        repository_id: Repository ID

    Returns:
        Sync result dictionary
    """
    try:
        results = asyncio.run(_run_sync([repository_id]))
    except Exception as e:
        logger.exception(f"Sync task failed for repository {repository_id}")
        # Retry on transient errors
        if "connection" in str(e).lower() or "timeout" in str(e).lower():
            raise self.retry(exc=e)
        raise

    if not results:
        return {"repository_id": repository_id, "success": False, "error": "repository_not_found"}
    logger.info(f"Sync task for repository {repository_id} finished: success={results[0]['success']}")
    return results[0]


@shared_task
def sync_all_repositories() -> Dict[str, Any]:
    """
    Periodic task syncing every repository not already syncing.

    Returns:
        Summary of the run
    """
    db = SessionLocal()
    try:
        repository_ids = [
            repository_id for (repository_id,) in db.query(Repository.id)
            .filter(Repository.status != RepositoryStatus.SYNCING.value)
            .order_by(Repository.created_at)
        ]
    finally:
        db.close()

    results = asyncio.run(_run_sync(repository_ids))
    failed = [r["repository_id"] for r in results if not r["success"]]

    logger.info(f"Periodic sync finished: {len(results) - len(failed)} succeeded, {len(failed)} failed")
    return {
        "total": len(results),
        "succeeded": len(results) - len(failed),
        "failed": failed,
    }
