"""Integration tests for the on-demand repository sync endpoint."""

import asyncio

import pytest

from pkgbroker.core.security import create_admin_session
from pkgbroker.db.models import Package, Repository, RepositoryStatus
from tests.factories import basic_auth, create_repository, create_token

pytestmark = [pytest.mark.integration]

ROOT_URL = "https://repo.example.com/packages.json"

ROOT_DOCUMENT = {
    "packages": {
        "acme/widgets": {
            "1.0.0": {
                "name": "acme/widgets",
                "version": "1.0.0",
                "dist": {"type": "zip", "url": "https://repo.example.com/dist/widgets-1.0.0.zip"},
            },
            "1.1.0": {
                "name": "acme/widgets",
                "version": "1.1.0",
                "dist": {"type": "zip", "url": "https://repo.example.com/dist/widgets-1.1.0.zip"},
            },
        },
    },
}


@pytest.fixture
def admin_headers(app, kv):
    session_token = asyncio.run(create_admin_session("admin", kv, app.state.settings))
    return {"Authorization": f"Bearer {session_token}"}


@pytest.fixture
def repository(db_session):
    return create_repository(
        db_session,
        url="https://repo.example.com",
        status=RepositoryStatus.PENDING.value,
    )


def test_sync_now(client, db_session, origin, admin_headers, repository):
    origin.add(ROOT_URL, json=ROOT_DOCUMENT)

    response = client.post(f"/api/repositories/{repository.id}/sync", headers=admin_headers)

    assert response.status_code == 200
    body = response.json()
    assert body["repository_id"] == repository.id
    assert body["status"] == RepositoryStatus.ACTIVE.value
    assert body["strategy"] == "composer_repository"
    assert body["packages"] == ["acme/widgets"]
    assert body["versions"] == 2

    package = db_session.query(Package).filter(Package.full_name == "acme/widgets").one()
    assert sorted(v.version for v in package.versions) == ["1.0.0", "1.1.0"]


def test_sync_failure_is_reported(client, db_session, admin_headers, repository):
    response = client.post(f"/api/repositories/{repository.id}/sync", headers=admin_headers)

    assert response.status_code == 502
    assert response.json()["error"] == "packages_json_not_found"

    db_session.expire_all()
    stored = db_session.query(Repository).filter(Repository.id == repository.id).one()
    assert stored.status == RepositoryStatus.ERROR.value
    assert stored.error_message == "packages_json_not_found"


def test_malformed_upstream_is_reported(client, db_session, origin, admin_headers, repository):
    origin.add(ROOT_URL, json={"providers-url": "/p/%package%$%hash%.json", "provider-includes": ["p/all.json"]})

    response = client.post(f"/api/repositories/{repository.id}/sync", headers=admin_headers)

    assert response.status_code == 502
    assert response.json()["error"] == "invalid_response"

    db_session.expire_all()
    stored = db_session.query(Repository).filter(Repository.id == repository.id).one()
    assert stored.status == RepositoryStatus.ERROR.value


def test_unsupported_source_type(client, db_session, admin_headers):
    repository = create_repository(db_session, source_type="svn")

    response = client.post(f"/api/repositories/{repository.id}/sync", headers=admin_headers)

    assert response.status_code == 400
    assert response.json()["error"] == "validation_error"


def test_unknown_repository(client, admin_headers):
    response = client.post("/api/repositories/does-not-exist/sync", headers=admin_headers)

    assert response.status_code == 404


def test_requires_admin_session(client, repository):
    assert client.post(f"/api/repositories/{repository.id}/sync").status_code == 401


def test_package_token_is_not_enough(client, db_session, repository):
    _, raw = create_token(db_session)

    response = client.post(f"/api/repositories/{repository.id}/sync", headers=basic_auth(raw))

    assert response.status_code == 401
    assert response.json()["error"] == "invalid_session"
