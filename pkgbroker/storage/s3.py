"""S3-compatible storage driver (AWS S3, MinIO, R2)."""

import asyncio
from typing import AsyncIterator, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from pkgbroker.core.errors import StorageError
from pkgbroker.storage.base import CHUNK_SIZE, StorageDriver, StoredObject

_MISSING_CODES = {"NoSuchKey", "404", "NotFound"}


class S3StorageDriver(StorageDriver):
    """Stores objects in a single bucket. boto3 calls run in worker threads."""

    def __init__(
        self,
        bucket: str,
        region: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        client=None,
    ):
        self.bucket = bucket
        if client is None:
            s3_config = Config(
                region_name=region,
                retries={"max_attempts": 3, "mode": "standard"},
            )
            client = boto3.client(
                "s3",
                endpoint_url=endpoint_url,
                aws_access_key_id=access_key_id,
                aws_secret_access_key=secret_access_key,
                config=s3_config,
            )
        self.client = client

    @property
    def name(self) -> str:
        return "s3"

    async def get(self, key: str) -> Optional[StoredObject]:
        try:
            response = await asyncio.to_thread(self.client.get_object, Bucket=self.bucket, Key=key)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in _MISSING_CODES:
                return None
            raise StorageError(f"Failed to read {key} from s3://{self.bucket}: {e}")
        except BotoCoreError as e:
            raise StorageError(f"Failed to read {key} from s3://{self.bucket}: {e}")

        return StoredObject(
            key=key,
            size=response.get("ContentLength"),
            chunks=self._read(response["Body"]),
        )

    async def _read(self, body) -> AsyncIterator[bytes]:
        try:
            while True:
                chunk = await asyncio.to_thread(body.read, CHUNK_SIZE)
                if not chunk:
                    break
                yield chunk
        finally:
            body.close()

    async def put(self, key: str, data: bytes) -> None:
        try:
            await asyncio.to_thread(
                self.client.put_object,
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType="application/zip",
            )
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Failed to write {key} to s3://{self.bucket}: {e}")

    async def health_check(self) -> dict:
        try:
            await asyncio.to_thread(self.client.head_bucket, Bucket=self.bucket)
        except (ClientError, BotoCoreError) as e:
            return {"status": "unhealthy", "driver": self.name, "error": str(e)}
        return {"status": "healthy", "driver": self.name, "bucket": self.bucket}
