"""Tests for the Celery sync tasks (executed eagerly, without a broker)."""

import pytest

from pkgbroker.core.kv import MemoryKeyValueStore
from pkgbroker.db.models import Package, Repository, RepositoryStatus
from pkgbroker.workers import sync_tasks
from tests.factories import create_repository

ROOT_DOCUMENT = {
    "packages": {
        "acme/widgets": {
            "1.0.0": {
                "name": "acme/widgets",
                "version": "1.0.0",
                "dist": {"type": "zip", "url": "https://repo.example.com/widgets-1.0.0.zip"},
            },
        },
    },
}


@pytest.fixture
def worker_env(monkeypatch, session_factory, upstream):
    """Point the tasks at the test database and the mock origin."""
    monkeypatch.setattr(sync_tasks, "SessionLocal", session_factory)
    monkeypatch.setattr(sync_tasks, "RedisKeyValueStore", lambda url: MemoryKeyValueStore())
    monkeypatch.setattr(sync_tasks, "UpstreamClient", lambda **kwargs: upstream)


def test_beat_schedule_uses_sync_interval():
    schedule = sync_tasks.celery_app.conf.beat_schedule["sync-all-repositories"]

    assert schedule["task"] == "pkgbroker.workers.sync_tasks.sync_all_repositories"
    assert schedule["schedule"] == sync_tasks.settings.sync_interval_minutes * 60.0


def test_sync_repository(worker_env, db_session, origin):
    repository = create_repository(db_session, url="https://repo.example.com")
    origin.add("https://repo.example.com/packages.json", json=ROOT_DOCUMENT)

    result = sync_tasks.sync_repository.apply(args=[repository.id]).get()

    assert result["success"] is True
    assert result["strategy"] == "composer_repository"
    assert result["packages"] == ["acme/widgets"]
    assert db_session.query(Package).filter(Package.full_name == "acme/widgets").count() == 1


def test_sync_repository_unknown_id(worker_env):
    result = sync_tasks.sync_repository.apply(args=["missing"]).get()

    assert result == {"repository_id": "missing", "success": False, "error": "repository_not_found"}


def test_sync_all_skips_running_syncs(worker_env, db_session, origin):
    healthy = create_repository(db_session, url="https://repo.example.com")
    broken = create_repository(db_session, url="https://broken.example.com")
    running = create_repository(db_session, status=RepositoryStatus.SYNCING.value)
    origin.add("https://repo.example.com/packages.json", json=ROOT_DOCUMENT)

    summary = sync_tasks.sync_all_repositories.apply().get()

    assert summary == {"total": 2, "succeeded": 1, "failed": [broken.id]}
    db_session.expire_all()
    statuses = {r.id: r.status for r in db_session.query(Repository)}
    assert statuses[healthy.id] == RepositoryStatus.ACTIVE.value
    assert statuses[broken.id] == RepositoryStatus.ERROR.value
    assert statuses[running.id] == RepositoryStatus.SYNCING.value


def test_sync_all_continues_after_malformed_repository(worker_env, db_session, origin):
    broken = create_repository(db_session, url="https://broken.example.com")
    healthy = create_repository(db_session, url="https://repo.example.com")
    origin.add(
        "https://broken.example.com/packages.json",
        json={"providers-url": "/p/%package%$%hash%.json", "provider-includes": ["p/all.json"]},
    )
    origin.add("https://repo.example.com/packages.json", json=ROOT_DOCUMENT)

    summary = sync_tasks.sync_all_repositories.apply().get()

    assert summary == {"total": 2, "succeeded": 1, "failed": [broken.id]}
    db_session.expire_all()
    stored = {r.id: r for r in db_session.query(Repository)}
    assert stored[healthy.id].status == RepositoryStatus.ACTIVE.value
    assert stored[broken.id].status == RepositoryStatus.ERROR.value
    assert stored[broken.id].error_message == "invalid_response"


def test_sync_all_continues_after_unexpected_error(worker_env, monkeypatch, db_session, origin):
    crashing = create_repository(db_session, url="https://crash.example.com")
    healthy = create_repository(db_session, url="https://repo.example.com")
    origin.add("https://repo.example.com/packages.json", json=ROOT_DOCUMENT)

    create_engine = sync_tasks.SyncEngine.create

    def create(upstream, settings):
        engine = create_engine(upstream, settings)
        synchronize = engine.synchronize

        async def crash_on_first(config):
            if config.url == "https://crash.example.com":
                raise RuntimeError("unexpected")
            return await synchronize(config)

        engine.synchronize = crash_on_first
        return engine

    monkeypatch.setattr(sync_tasks.SyncEngine, "create", staticmethod(create))

    results = sync_tasks.asyncio.run(sync_tasks._run_sync([crashing.id, healthy.id]))

    assert [(r["repository_id"], r["success"], r["error"]) for r in results] == [
        (crashing.id, False, "internal_error"),
        (healthy.id, True, None),
    ]
    db_session.expire_all()
    stored = db_session.query(Repository).filter(Repository.id == crashing.id).one()
    assert stored.status == RepositoryStatus.ERROR.value
