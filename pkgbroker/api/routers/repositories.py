from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from pkgbroker.api.deps import get_db, get_sync_service, require_admin_session
from pkgbroker.core.errors import NotFoundError, UpstreamSyncFailure
from pkgbroker.core.security import AdminSession
from pkgbroker.db.models import Repository
from pkgbroker.sync.service import RepositorySyncService

router = APIRouter(prefix="/repositories", tags=["repositories"])


# Schemas
class SyncResponse(BaseModel):
    repository_id: str
    status: str
    strategy: Optional[str] = None
    packages: List[str]
    versions: int
    skipped: List[str]
    last_synced_at: Optional[datetime] = None


@router.post("/{repository_id}/sync", response_model=SyncResponse)
async def sync_repository(
    repository_id: str,
    db: Session = Depends(get_db),
    session: AdminSession = Depends(require_admin_session),
    sync_service: RepositorySyncService = Depends(get_sync_service),
):
    """
    Synchronize a repository now.

    Returns the discovered packages on success. Upstream failures answer
    502 with the sync error code; the failure is also recorded on the
    repository.
    """
    repository = db.query(Repository).filter(Repository.id == repository_id).first()
    if not repository:
        raise NotFoundError(f"Repository {repository_id} not found")

    result = await sync_service.sync(db, repository)
    if not result.success:
        raise UpstreamSyncFailure(
            f"Sync of repository {repository_id} failed: {result.error}",
            code=result.error or "sync_failed",
        )

    return SyncResponse(
        repository_id=repository.id,
        status=repository.status,
        strategy=result.strategy_used.value if result.strategy_used else None,
        packages=result.package_names,
        versions=len(result.packages),
        skipped=result.skipped,
        last_synced_at=repository.last_synced_at,
    )
