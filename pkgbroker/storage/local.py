"""Filesystem storage driver."""

import asyncio
import os
import tempfile
from typing import AsyncIterator, Optional

import psutil

from pkgbroker.core.errors import StorageError
from pkgbroker.storage.base import CHUNK_SIZE, StorageDriver, StoredObject

DISK_WARNING_PERCENT = 85
DISK_CRITICAL_PERCENT = 95


class LocalStorageDriver(StorageDriver):
    """Stores objects as files below a root directory."""

    def __init__(self, root: str):
        self.root = os.path.abspath(root)

    @property
    def name(self) -> str:
        return "local"

    def _path(self, key: str) -> str:
        path = os.path.abspath(os.path.join(self.root, key))
        if os.path.commonpath([self.root, path]) != self.root:
            raise StorageError(f"Storage key escapes storage root: {key}")
        return path

    async def get(self, key: str) -> Optional[StoredObject]:
        path = self._path(key)
        try:
            size = await asyncio.to_thread(os.path.getsize, path)
            handle = await asyncio.to_thread(open, path, "rb")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError(f"Failed to open {key}: {e}")

        return StoredObject(key=key, size=size, chunks=self._read(handle))

    async def _read(self, handle) -> AsyncIterator[bytes]:
        try:
            while True:
                chunk = await asyncio.to_thread(handle.read, CHUNK_SIZE)
                if not chunk:
                    break
                yield chunk
        finally:
            handle.close()

    async def put(self, key: str, data: bytes) -> None:
        path = self._path(key)
        try:
            await asyncio.to_thread(self._write, path, data)
        except OSError as e:
            raise StorageError(f"Failed to write {key}: {e}")

    def _write(self, path: str, data: bytes) -> None:
        directory = os.path.dirname(path)
        os.makedirs(directory, exist_ok=True)
        # Write to a temp file first so readers never see a partial archive
        fd, tmp_path = tempfile.mkstemp(dir=directory, suffix=".part")
        try:
            with os.fdopen(fd, "wb") as tmp:
                tmp.write(data)
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    async def health_check(self) -> dict:
        """Check free space on the storage volume."""
        try:
            os.makedirs(self.root, exist_ok=True)
            disk = psutil.disk_usage(self.root)
        except OSError as e:
            return {"status": "unhealthy", "driver": self.name, "error": str(e)}

        status = "healthy"
        if disk.percent >= DISK_CRITICAL_PERCENT:
            status = "critical"
        elif disk.percent >= DISK_WARNING_PERCENT:
            status = "warning"

        return {
            "status": status,
            "driver": self.name,
            "free_gb": round(disk.free / (1024**3), 2),
            "percent_used": disk.percent,
        }
