"""Pytest configuration and shared fixtures."""

import os

# Settings are read at import time by pkgbroker.db.session
os.environ.setdefault("PKGBROKER_DATABASE_URL", "sqlite://")
os.environ.setdefault("PKGBROKER_SECRET_KEY", "test-secret-key")

from typing import Callable, Dict, List, Optional, Union

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from pkgbroker.api.deps import get_db
from pkgbroker.api.main import create_app
from pkgbroker.core.cache import MetadataCache
from pkgbroker.core.config import Settings
from pkgbroker.core.kv import MemoryKeyValueStore
from pkgbroker.db.base import Base
import pkgbroker.db.models  # noqa: F401
from pkgbroker.services.upstream import RetryConfig, UpstreamClient
from pkgbroker.storage.local import LocalStorageDriver

Handler = Callable[[httpx.Request], httpx.Response]


class MockOrigin:
    """Routes upstream requests to canned responses by URL.

    Unknown URLs answer 404. Every request is recorded in ``calls``.
    """

    def __init__(self):
        self.routes: Dict[str, Union[Handler, dict]] = {}
        self.calls: List[str] = []

    def add(
        self,
        url: str,
        status: int = 200,
        json=None,
        content: Optional[bytes] = None,
        text: Optional[str] = None,
        headers: Optional[dict] = None,
    ) -> None:
        response = {"status_code": status, "headers": headers or {}}
        if json is not None:
            response["json"] = json
        elif content is not None:
            response["content"] = content
        elif text is not None:
            response["text"] = text
        self.routes[url] = response

    def add_handler(self, url: str, handler: Handler) -> None:
        self.routes[url] = handler

    def count(self, url: str) -> int:
        return self.calls.count(url)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.calls.append(url)
        route = self.routes.get(url)
        if route is None:
            return httpx.Response(404, request=request)
        if callable(route):
            return route(request)
        return httpx.Response(request=request, **route)


@pytest.fixture
def origin() -> MockOrigin:
    return MockOrigin()


@pytest.fixture
def upstream(origin) -> UpstreamClient:
    """Upstream client whose requests are answered by ``origin``."""
    client = httpx.AsyncClient(transport=httpx.MockTransport(origin))
    return UpstreamClient(
        client=client,
        retry_config=RetryConfig(base_delay=0, max_delay=0, jitter=False),
    )


@pytest.fixture
def engine():
    """In-memory SQLite shared by every session of a test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def kv() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture
def cache(kv) -> MetadataCache:
    return MetadataCache(kv, default_ttl=3600)


@pytest.fixture
def storage(tmp_path) -> LocalStorageDriver:
    return LocalStorageDriver(str(tmp_path / "storage"))


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database_url="sqlite://",
        secret_key="test-secret-key",
        public_base_url="http://testserver",
        storage_path=str(tmp_path / "storage"),
        log_level="WARNING",
    )


@pytest.fixture
def app(settings, kv, storage, upstream, session_factory):
    app = create_app(
        settings=settings,
        kv=kv,
        storage=storage,
        upstream=upstream,
        session_factory=session_factory,
    )

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    return app


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client
