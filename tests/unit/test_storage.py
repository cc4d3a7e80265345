"""Tests for the filesystem storage driver."""

import pytest

from pkgbroker.core.errors import StorageError
from pkgbroker.storage.base import build_storage_key
from pkgbroker.storage.local import LocalStorageDriver


async def read_all(stored) -> bytes:
    return b"".join([chunk async for chunk in stored.chunks])


def test_storage_key_quotes_segments():
    key = build_storage_key("repo1", "acme/widgets", "dev-feature/login")
    assert key == "dist/repo1/acme/widgets/dev-feature%2Flogin.zip"


@pytest.mark.asyncio
async def test_put_then_get(storage: LocalStorageDriver):
    await storage.put("dist/r/acme/widgets/1.0.0.zip", b"PK\x03\x04data")

    stored = await storage.get("dist/r/acme/widgets/1.0.0.zip")

    assert stored.size == 8
    assert await read_all(stored) == b"PK\x03\x04data"


@pytest.mark.asyncio
async def test_missing_object(storage: LocalStorageDriver):
    assert await storage.get("dist/r/acme/widgets/9.9.9.zip") is None


@pytest.mark.asyncio
async def test_rejects_keys_outside_root(storage: LocalStorageDriver):
    with pytest.raises(StorageError):
        await storage.put("../escape.zip", b"x")


@pytest.mark.asyncio
async def test_health_check(storage: LocalStorageDriver):
    health = await storage.health_check()
    assert health["driver"] == "local"
    assert health["status"] in ("healthy", "warning", "critical")
