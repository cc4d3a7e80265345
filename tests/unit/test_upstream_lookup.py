"""Tests for the on-demand lookup of unknown packages."""

import pytest

from pkgbroker.core.errors import UpstreamError
from pkgbroker.db.models import Package, Repository, RepositoryStatus
from pkgbroker.services.upstream_lookup import (
    PACKAGIST_REPOSITORY_ID,
    LookupResult,
    UpstreamPackageLookup,
    build_lookup_document,
)
from pkgbroker.sync.base import DiscoveredVersion
from tests.factories import create_repository

PACKAGIST = "https://packagist.example.com"
REPO = "https://repo.example.com"


def widget_document(*versions):
    return {
        "packages": {
            "acme/widgets": [
                {
                    "name": "acme/widgets",
                    "version": version,
                    "dist": {"type": "zip", "url": f"https://codeload.example.com/{version}.zip"},
                }
                for version in versions
            ],
        },
    }


@pytest.fixture
def lookup(upstream, session_factory):
    return UpstreamPackageLookup(upstream, session_factory=session_factory, packagist_url=PACKAGIST)


class TestFind:

    @pytest.mark.asyncio
    async def test_found_in_composer_repository(self, lookup, db_session, origin):
        repository = create_repository(db_session, url=REPO)
        origin.add(f"{REPO}/packages.json", json={"metadata-url": "/p2/%package%.json"})
        origin.add(f"{REPO}/p2/acme/widgets.json", json=widget_document("1.0.0"))

        result = await lookup.find(db_session, "acme/widgets")

        assert result.repository_id == repository.id
        assert [v.version for v in result.versions] == ["1.0.0"]
        assert origin.count(f"{PACKAGIST}/p2/acme/widgets.json") == 0

    @pytest.mark.asyncio
    async def test_inactive_and_filtered_repositories_are_skipped(self, lookup, db_session, origin):
        create_repository(db_session, url="https://pending.example.com", status=RepositoryStatus.PENDING.value)
        create_repository(db_session, url=REPO, package_filter="acme/gadgets")
        origin.add(f"{PACKAGIST}/p2/acme/widgets.json", json=widget_document("2.0.0"))

        result = await lookup.find(db_session, "acme/widgets")

        assert result.repository_id == PACKAGIST_REPOSITORY_ID
        assert origin.count("https://pending.example.com/packages.json") == 0
        assert origin.count(f"{REPO}/packages.json") == 0

    @pytest.mark.asyncio
    async def test_packagist_minified_with_dev_versions(self, lookup, db_session, origin):
        origin.add(f"{PACKAGIST}/p2/acme/widgets.json", json={
            "minified": "composer/2.0",
            "packages": {"acme/widgets": [
                {"name": "acme/widgets", "version": "2.0.0", "dist": {"type": "zip", "url": "https://c.example.com/2.zip"}},
                {"version": "1.0.0", "dist": {"type": "zip", "url": "https://c.example.com/1.zip"}},
            ]},
        })
        origin.add(f"{PACKAGIST}/p2/acme/widgets~dev.json", json=widget_document("dev-main"))

        result = await lookup.find(db_session, "acme/widgets")

        assert sorted(v.version for v in result.versions) == ["1.0.0", "2.0.0", "dev-main"]
        assert {v.name for v in result.versions} == {"acme/widgets"}

    @pytest.mark.asyncio
    async def test_unknown_everywhere(self, lookup, db_session):
        assert await lookup.find(db_session, "acme/nothing") is None

    @pytest.mark.asyncio
    async def test_packagist_disabled(self, upstream, db_session, origin):
        lookup = UpstreamPackageLookup(upstream, packagist_url=PACKAGIST, packagist_enabled=False)
        origin.add(f"{PACKAGIST}/p2/acme/widgets.json", json=widget_document("1.0.0"))

        assert await lookup.find(db_session, "acme/widgets") is None
        assert origin.calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("route,code", [
        ({"status": 503}, "http_503"),
        ({"text": "<html>"}, "invalid_response"),
        ({"json": {"packages": []}}, "invalid_response"),
    ])
    async def test_packagist_failures(self, lookup, db_session, origin, route, code):
        origin.add(f"{PACKAGIST}/p2/acme/widgets.json", **route)

        with pytest.raises(UpstreamError) as exc_info:
            await lookup.find(db_session, "acme/widgets")

        assert exc_info.value.code == code
        assert exc_info.value.status_code == 502


class TestStore:

    @pytest.mark.asyncio
    async def test_packagist_packages_are_tracked(self, lookup, db_session):
        for name in ("acme/widgets", "acme/gadgets"):
            await lookup.store(LookupResult(name, PACKAGIST_REPOSITORY_ID, [DiscoveredVersion(name=name, version="1.0.0")]))

        repository = db_session.query(Repository).filter(Repository.id == PACKAGIST_REPOSITORY_ID).one()
        assert repository.url == PACKAGIST
        assert repository.status == RepositoryStatus.ACTIVE.value
        assert repository.package_filter_list == ["acme/widgets", "acme/gadgets"]
        assert db_session.query(Package).count() == 2

    @pytest.mark.asyncio
    async def test_repository_packages_are_stored(self, lookup, db_session):
        repository = create_repository(db_session, url=REPO)

        await lookup.store(LookupResult(
            "acme/widgets", repository.id, [DiscoveredVersion(name="acme/widgets", version="1.0.0")],
        ))

        package = db_session.query(Package).filter(Package.full_name == "acme/widgets").one()
        assert package.repository_id == repository.id
        assert [v.version for v in package.versions] == ["1.0.0"]
        assert db_session.query(Repository).count() == 1


def test_build_lookup_document():
    result = LookupResult("acme/widgets", "r1", [
        DiscoveredVersion(name="acme/widgets", version="1.0.0", dist_url="https://c.example.com/1.zip"),
        DiscoveredVersion(name="acme/widgets", version="2.0.0", dist_url="https://c.example.com/2.zip"),
        DiscoveredVersion(name="acme/widgets", version="dev-main", dist_url="https://c.example.com/main.zip"),
    ])

    stable = build_lookup_document(result, "http://testserver")
    dev = build_lookup_document(result, "http://testserver", dev=True)

    assert [v["version"] for v in stable["packages"]["acme/widgets"]] == ["2.0.0", "1.0.0"]
    assert stable["packages"]["acme/widgets"][0]["dist"]["url"] == "http://testserver/dist/m/acme/widgets/2.0.0.zip"
    assert [v["version"] for v in dev["packages"]["acme/widgets"]] == ["dev-main"]
