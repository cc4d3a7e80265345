"""Object storage for mirrored artifacts."""

from pkgbroker.storage.base import StorageDriver, StoredObject, build_storage_key
from pkgbroker.storage.local import LocalStorageDriver
from pkgbroker.storage.s3 import S3StorageDriver
from pkgbroker.storage.factory import create_storage

__all__ = [
    "StorageDriver",
    "StoredObject",
    "build_storage_key",
    "LocalStorageDriver",
    "S3StorageDriver",
    "create_storage",
]
