"""Read-through artifact mirror.

Archives are served from object storage when present. On a miss the
archive is streamed from its origin to the client while the chunks are
captured; once the response has been sent, ``persist()`` writes the
captured archive to storage so later requests never reach the origin.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional
from urllib.parse import urlparse

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pkgbroker.core.errors import NotFoundError, StorageError
from pkgbroker.db.models import Artifact
from pkgbroker.services.upstream import UpstreamClient, build_auth_headers
from pkgbroker.storage.base import CHUNK_SIZE, StorageDriver, build_storage_key


@dataclass
class ArtifactTarget:
    """The archive of one package version."""

    repository_id: str
    package_name: str
    version: str
    origin_url: Optional[str] = None
    credential_type: Optional[str] = None
    credentials: Optional[Dict[str, Any]] = None

    @property
    def storage_key(self) -> str:
        return build_storage_key(self.repository_id, self.package_name, self.version)

    @property
    def filename(self) -> str:
        vendor, _, name = self.package_name.partition("/")
        return f"{vendor}-{name}-{self.version}.zip".replace("/", "-")


@dataclass
class ResolvedArtifact:
    target: ArtifactTarget
    chunks: AsyncIterator[bytes]
    size: Optional[int] = None
    from_storage: bool = False
    # Deferred work to run after the response has been sent
    persist: Optional[Callable[[], Awaitable[None]]] = None


@dataclass
class _Capture:
    chunks: List[bytes] = field(default_factory=list)
    complete: bool = False


class ArtifactMirror:
    """Serves archives from storage, falling back to their origin."""

    def __init__(
        self,
        storage: StorageDriver,
        upstream: UpstreamClient,
        session_factory: Optional[Callable[[], Session]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.storage = storage
        self.upstream = upstream
        self.session_factory = session_factory
        self.logger = logger or logging.getLogger(__name__)

    async def resolve(self, target: ArtifactTarget) -> ResolvedArtifact:
        """
        Open the archive for ``target``.

        Args:
            target: Package version to serve

        Returns:
            ResolvedArtifact whose chunks stream the archive

        Raises:
            NotFoundError: If the archive is not stored and has no usable origin
            UpstreamError: If the origin fetch fails
            StorageError: If storage cannot be read
        """
        key = target.storage_key
        stored = await self.storage.get(key)
        if stored is not None:
            self.logger.debug(f"Serving {key} from {self.storage.name} storage")
            return ResolvedArtifact(
                target=target,
                chunks=stored.chunks,
                size=stored.size,
                from_storage=True,
                persist=lambda: self._record_download(target),
            )

        origin = target.origin_url
        if not origin or urlparse(origin).scheme not in ("http", "https"):
            raise NotFoundError(f"No archive available for {target.package_name} {target.version}")

        headers = build_auth_headers(target.credential_type, target.credentials)
        response = await self.upstream.open_stream(origin, headers=headers)
        self.logger.info(f"Mirroring {target.package_name} {target.version} from {origin}")

        capture = _Capture()
        return ResolvedArtifact(
            target=target,
            chunks=self._tee(response, capture),
            size=_content_length(response),
            from_storage=False,
            persist=lambda: self._persist(target, capture),
        )

    async def _tee(self, response: httpx.Response, capture: _Capture) -> AsyncIterator[bytes]:
        try:
            async for chunk in response.aiter_bytes(CHUNK_SIZE):
                capture.chunks.append(chunk)
                yield chunk
            capture.complete = True
        finally:
            await response.aclose()

    async def _persist(self, target: ArtifactTarget, capture: _Capture) -> None:
        key = target.storage_key
        if not capture.complete:
            self.logger.warning(f"Download of {key} was interrupted, not storing it")
            return

        data = b"".join(capture.chunks)
        try:
            await self.storage.put(key, data)
        except StorageError as e:
            self.logger.error(f"Failed to store {key}: {e.message}")
            return

        self.logger.info(f"Stored {key} ({len(data)} bytes)")
        self._record(target, size=len(data))

    async def _record_download(self, target: ArtifactTarget) -> None:
        self._record(target)

    def _record(self, target: ArtifactTarget, size: Optional[int] = None) -> None:
        if self.session_factory is None:
            return

        db = self.session_factory()
        try:
            artifact = db.query(Artifact).filter(Artifact.storage_key == target.storage_key).first()
            if artifact is None:
                artifact = Artifact(
                    repository_id=target.repository_id,
                    package_name=target.package_name,
                    version=target.version,
                    storage_key=target.storage_key,
                    download_count=0,
                )
                db.add(artifact)
            if size is not None:
                artifact.size = size
            artifact.download_count = (artifact.download_count or 0) + 1
            artifact.last_downloaded_at = datetime.utcnow()
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            self.logger.warning(f"Failed to record download of {target.storage_key}: {e}")
        finally:
            db.close()


def _content_length(response: httpx.Response) -> Optional[int]:
    if response.headers.get("content-encoding"):
        return None
    value = response.headers.get("content-length")
    if value and value.isdigit():
        return int(value)
    return None
