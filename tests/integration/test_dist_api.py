"""Integration tests for artifact downloads."""

import asyncio
import base64
import hashlib
import json

import httpx
import pytest
from sqlalchemy import text

from pkgbroker.core.encryption import CredentialCipher
from pkgbroker.core.errors import StorageError
from pkgbroker.core.security import create_admin_session
from pkgbroker.db.models import Artifact
from tests.factories import basic_auth, create_package_version, create_repository, create_token

pytestmark = [pytest.mark.integration]

ARCHIVE = b"PK\x03\x04" + b"widget-archive" * 1000
ORIGIN_URL = "https://origin.example.com/acme/widgets/1.0.0.zip"


@pytest.fixture
def token_headers(db_session):
    _, raw = create_token(db_session)
    return basic_auth(raw)


@pytest.fixture
def repository(db_session):
    return create_repository(db_session)


@pytest.fixture
def widget(db_session, repository, origin):
    origin.add(ORIGIN_URL, content=ARCHIVE, headers={"Content-Type": "application/zip"})
    return create_package_version(
        db_session,
        repository=repository,
        version="1.0.0",
        dist_url=ORIGIN_URL,
        dist_reference="abc123",
    )


class TestMirrorForm:
    def test_streams_from_origin_then_storage(self, client, db_session, origin, token_headers, widget):
        first = client.get("/dist/m/acme/widgets/1.0.0.zip", headers=token_headers)

        assert first.status_code == 200
        assert first.content == ARCHIVE
        assert first.headers["Content-Type"] == "application/zip"
        assert first.headers["Content-Disposition"] == 'attachment; filename="acme-widgets-1.0.0.zip"'
        assert "immutable" in first.headers["Cache-Control"]
        assert first.headers["X-Cache"] == "MISS"

        second = client.get("/dist/m/acme/widgets/1.0.0.zip", headers=token_headers)

        assert second.status_code == 200
        assert second.content == ARCHIVE
        assert second.headers["X-Cache"] == "HIT"
        assert second.headers["Content-Length"] == str(len(ARCHIVE))
        assert origin.count(ORIGIN_URL) == 1

    def test_download_is_recorded(self, client, db_session, token_headers, widget):
        client.get("/dist/m/acme/widgets/1.0.0.zip", headers=token_headers)
        client.get("/dist/m/acme/widgets/1.0.0.zip", headers=token_headers)

        artifact = db_session.query(Artifact).filter(Artifact.package_name == "acme/widgets").one()
        assert artifact.size == len(ARCHIVE)
        assert artifact.download_count == 2
        assert artifact.last_downloaded_at is not None

    def test_normalized_version(self, client, token_headers, widget):
        response = client.get("/dist/m/acme/widgets/1.0.0.0.zip", headers=token_headers)

        assert response.status_code == 200
        assert response.content == ARCHIVE

    def test_hashed_branch_version(self, client, db_session, origin, token_headers, repository):
        url = "https://origin.example.com/acme/widgets/feature.zip"
        origin.add(url, content=ARCHIVE)
        create_package_version(db_session, repository=repository, version="dev-feature/login", dist_url=url)
        hashed = hashlib.md5(b"dev-feature/login").hexdigest()

        response = client.get(f"/dist/m/acme/widgets/{hashed}.zip", headers=token_headers)

        assert response.status_code == 200

    def test_unknown_version(self, client, token_headers, widget):
        response = client.get("/dist/m/acme/widgets/9.9.9.zip", headers=token_headers)

        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    def test_unknown_package(self, client, token_headers, widget):
        assert client.get("/dist/m/acme/nothing/1.0.0.zip", headers=token_headers).status_code == 404

    def test_requires_credentials(self, client, widget):
        assert client.get("/dist/m/acme/widgets/1.0.0.zip").status_code == 401

    def test_origin_failure(self, client, db_session, origin, token_headers, repository):
        url = "https://origin.example.com/acme/widgets/broken.zip"
        origin.add(url, status=500)
        create_package_version(db_session, repository=repository, version="1.1.0", dist_url=url)

        response = client.get("/dist/m/acme/widgets/1.1.0.zip", headers=token_headers)

        assert response.status_code == 502
        assert response.json()["error"] == "http_500"

    def test_storage_read_failure(self, client, monkeypatch, storage, origin, token_headers, widget):
        async def unreadable(key):
            raise StorageError(f"Failed to read {key}")

        monkeypatch.setattr(storage, "get", unreadable)

        response = client.get(
            "/dist/m/acme/widgets/1.0.0.zip",
            headers={**token_headers, "X-Request-ID": "req-storage-1"},
        )

        assert response.status_code == 500
        body = response.json()
        assert body["error"] == "storage_error"
        assert body["request_id"] == "req-storage-1"
        assert origin.count(ORIGIN_URL) == 0

    def test_failed_download_is_not_stored(self, client, db_session, origin, token_headers, repository):
        url = "https://origin.example.com/acme/widgets/gone.zip"
        origin.add(url, status=404)
        create_package_version(db_session, repository=repository, version="1.2.0", dist_url=url)

        client.get("/dist/m/acme/widgets/1.2.0.zip", headers=token_headers)

        assert db_session.query(Artifact).count() == 0

    def test_origin_credentials_forwarded(self, client, db_session, origin, token_headers):
        repository = create_repository(
            db_session,
            credential_type="http_basic",
            credentials={"username": "deploy", "password": "s3cret"},
        )
        url = "https://private.example.com/widgets-1.0.0.zip"
        seen = {}

        def handler(request):
            seen["authorization"] = request.headers.get("Authorization")
            return httpx.Response(200, content=ARCHIVE, request=request)

        origin.add_handler(url, handler)
        create_package_version(db_session, repository=repository, version="1.0.0", dist_url=url)

        response = client.get("/dist/m/acme/widgets/1.0.0.zip", headers=token_headers)

        assert response.status_code == 200
        assert seen["authorization"] == "Basic " + base64.b64encode(b"deploy:s3cret").decode()

    def test_unreadable_origin_credentials(self, client, db_session, token_headers):
        repository = create_repository(db_session, credential_type="bearer_token", credentials={"token": "t"})
        create_package_version(db_session, repository=repository, version="1.0.0")
        db_session.execute(
            text("UPDATE repositories SET credentials = :value WHERE id = :id"),
            {"value": json.dumps(CredentialCipher("another-key").encrypt({"token": "t"})), "id": repository.id},
        )
        db_session.commit()

        response = client.get("/dist/m/acme/widgets/1.0.0.zip", headers=token_headers)

        assert response.status_code == 500
        assert response.json()["error"] == "credentials_unreadable"


class TestDirectAndLockfileForms:
    def test_direct_form(self, client, token_headers, repository, widget):
        response = client.get(f"/dist/{repository.id}/acme/widgets/1.0.0.zip", headers=token_headers)

        assert response.status_code == 200
        assert response.content == ARCHIVE

    def test_direct_form_wrong_repository(self, client, db_session, token_headers, widget):
        other = create_repository(db_session)

        response = client.get(f"/dist/{other.id}/acme/widgets/1.0.0.zip", headers=token_headers)

        assert response.status_code == 404

    def test_lockfile_form_by_reference(self, client, db_session, origin, token_headers, repository, widget):
        url = "https://origin.example.com/acme/widgets/2.0.0.zip"
        origin.add(url, content=b"PK-two")
        create_package_version(db_session, repository=repository, version="2.0.0", dist_url=url, dist_reference="def456")

        response = client.get("/dist/acme/widgets/1.0.0/def456.zip", headers=token_headers)

        assert response.status_code == 200
        assert response.content == b"PK-two"
        assert 'filename="acme-widgets-2.0.0.zip"' in response.headers["Content-Disposition"]

    def test_lockfile_form_prefers_version_and_reference(self, client, db_session, origin, token_headers, repository):
        branch_url = "https://origin.example.com/acme/widgets/dev-main.zip"
        tag_url = "https://origin.example.com/acme/widgets/2.1.0.zip"
        origin.add(branch_url, content=b"PK-branch")
        origin.add(tag_url, content=b"PK-tag")
        create_package_version(
            db_session, repository=repository, version="dev-main", dist_url=branch_url, dist_reference="cafe01",
        )
        create_package_version(
            db_session, repository=repository, version="2.1.0", dist_url=tag_url, dist_reference="cafe01",
        )

        tagged = client.get("/dist/acme/widgets/2.1.0/cafe01.zip", headers=token_headers)
        branch = client.get("/dist/acme/widgets/dev-main/cafe01.zip", headers=token_headers)

        assert tagged.content == b"PK-tag"
        assert branch.content == b"PK-branch"

    def test_lockfile_form_falls_back_to_version(self, client, token_headers, widget):
        response = client.get("/dist/acme/widgets/1.0.0/unknown-reference.zip", headers=token_headers)

        assert response.status_code == 200
        assert response.content == ARCHIVE

    def test_lockfile_form_unknown(self, client, token_headers, widget):
        response = client.get("/dist/acme/widgets/3.0.0/unknown-reference.zip", headers=token_headers)

        assert response.status_code == 404


class TestAccess:
    def test_admin_session_accepted(self, client, app, kv, widget):
        session_token = asyncio.run(create_admin_session("admin", kv, app.state.settings))

        response = client.get(
            "/dist/m/acme/widgets/1.0.0.zip",
            headers={"Authorization": f"Bearer {session_token}"},
        )

        assert response.status_code == 200
        assert "X-RateLimit-Limit" not in response.headers

    def test_downloads_count_against_token_limit(self, client, db_session, widget):
        _, raw = create_token(db_session, rate_limit_max=1)

        assert client.get("/dist/m/acme/widgets/1.0.0.zip", headers=basic_auth(raw)).status_code == 200
        assert client.get("/dist/m/acme/widgets/1.0.0.zip", headers=basic_auth(raw)).status_code == 429
