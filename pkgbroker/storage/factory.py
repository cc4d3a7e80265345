from pkgbroker.core.config import Settings
from pkgbroker.core.errors import ValidationError
from pkgbroker.storage.base import StorageDriver
from pkgbroker.storage.local import LocalStorageDriver
from pkgbroker.storage.s3 import S3StorageDriver


def create_storage(settings: Settings) -> StorageDriver:
    """Build the storage driver selected by ``storage_driver``."""
    if settings.storage_driver == "local":
        return LocalStorageDriver(settings.storage_path)

    if settings.storage_driver == "s3":
        if not settings.s3_bucket:
            raise ValidationError("s3_bucket must be set when storage_driver is 's3'")
        return S3StorageDriver(
            bucket=settings.s3_bucket,
            region=settings.s3_region,
            endpoint_url=settings.s3_endpoint_url,
            access_key_id=settings.s3_access_key_id,
            secret_access_key=settings.s3_secret_access_key,
        )

    raise ValidationError(f"Unknown storage driver: {settings.storage_driver}")
