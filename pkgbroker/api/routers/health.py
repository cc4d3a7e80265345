"""Health check endpoints.

Provides Kubernetes-compatible health probes:
- /health: Basic health check
- /health/live: Liveness probe (is the app running?)
- /health/ready: Readiness probe (is the app ready to serve traffic?)

Checks:
- Database connectivity
- Key-value store connectivity
- Artifact storage
"""

from datetime import datetime
from typing import Any, Dict

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

import pkgbroker
from pkgbroker.api.deps import get_db, get_kv, get_storage
from pkgbroker.core.kv import KeyValueStore
from pkgbroker.storage.base import StorageDriver

router = APIRouter(tags=["health"])


def check_database(db: Session) -> Dict[str, Any]:
    """Check database connectivity."""
    try:
        db.execute(text("SELECT 1")).fetchone()
        return {"status": "healthy"}
    except Exception as e:
        return {
            "status": "unhealthy",
            "error": str(e),
        }


async def check_kv(kv: KeyValueStore) -> Dict[str, Any]:
    """Check key-value store connectivity."""
    try:
        if await kv.ping():
            return {"status": "healthy"}
        return {"status": "unhealthy", "error": "ping failed"}
    except Exception as e:
        return {
            "status": "unhealthy",
            "error": str(e),
        }


async def check_storage(storage: StorageDriver) -> Dict[str, Any]:
    try:
        return await storage.health_check()
    except Exception as e:
        return {
            "status": "unhealthy",
            "driver": storage.name,
            "error": str(e),
        }


@router.get("/health")
async def health_check():
    """
    Basic health check endpoint.

    Returns 200 if the application is running.
    """
    return {
        "status": "healthy",
        "version": pkgbroker.__version__,
        "timestamp": datetime.utcnow().isoformat(),
    }


@router.get("/health/live")
async def liveness_probe():
    """
    Kubernetes liveness probe.

    This check should be fast and not depend on external services.
    """
    return JSONResponse(
        status_code=status.HTTP_200_OK,
        content={
            "status": "alive",
            "timestamp": datetime.utcnow().isoformat(),
        },
    )


@router.get("/health/ready")
async def readiness_probe(
    db: Session = Depends(get_db),
    kv: KeyValueStore = Depends(get_kv),
    storage: StorageDriver = Depends(get_storage),
):
    """
    Kubernetes readiness probe.

    Checks database, key-value store and storage. Failure means traffic
    should not be routed to this instance.
    """
    checks = {
        "database": check_database(db),
        "kv": await check_kv(kv),
        "storage": await check_storage(storage),
    }

    unhealthy = [name for name, check in checks.items() if check["status"] in ("unhealthy", "critical")]

    if unhealthy:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "not_ready",
                "checks": checks,
                "failed": unhealthy,
                "timestamp": datetime.utcnow().isoformat(),
            },
        )

    return JSONResponse(
        status_code=status.HTTP_200_OK,
        content={
            "status": "ready",
            "checks": checks,
            "timestamp": datetime.utcnow().isoformat(),
        },
    )
