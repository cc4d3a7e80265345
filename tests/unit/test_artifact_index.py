"""Tests for the flat archive index sync strategy."""

import pytest

from pkgbroker.sync.artifact_index import ArtifactIndexStrategy, parse_archive_name
from pkgbroker.sync.base import SyncConfig, SyncStrategy

BASE = "https://files.example.com/archives"


def config(url: str = BASE, **kwargs) -> SyncConfig:
    return SyncConfig(repository_id="r1", url=url, source_type="artifact", **kwargs)


@pytest.fixture
def strategy(upstream):
    return ArtifactIndexStrategy(upstream)


@pytest.mark.parametrize("file_name,expected", [
    ("acme--widgets--1.2.0.zip", ("acme/widgets", "1.2.0")),
    ("acme--fancy-widgets--2.0.0-beta1.zip", ("acme/fancy-widgets", "2.0.0-beta1")),
    ("acme-widgets-1.2.0.zip", ("acme/widgets", "1.2.0")),
    ("acme-fancy-widgets-v3.0.zip", ("acme/fancy-widgets", "v3.0")),
    ("dir/acme-widgets-dev-main.zip", ("acme/widgets", "dev-main")),
    ("README.zip", None),
])
def test_parse_archive_name(file_name, expected):
    assert parse_archive_name(file_name) == expected


@pytest.mark.asyncio
async def test_json_index(strategy, origin):
    origin.add(f"{BASE}/index.json", json=[
        "acme--widgets--1.0.0.zip",
        {"file": "custom.zip", "shasum": "abc", "composer": {"name": "acme/custom", "version": "0.1.0"}},
        "broken.zip",
    ])

    result = await strategy.synchronize(config())

    assert result.success
    assert result.strategy_used == SyncStrategy.ARTIFACT_INDEX
    assert {(p.name, p.version) for p in result.packages} == {
        ("acme/widgets", "1.0.0"),
        ("acme/custom", "0.1.0"),
    }
    custom = next(p for p in result.packages if p.name == "acme/custom")
    assert custom.dist_url == f"{BASE}/custom.zip"
    assert custom.dist_shasum == "abc"
    assert result.skipped == ["broken.zip"]


@pytest.mark.asyncio
async def test_explicit_json_url(strategy, origin):
    origin.add(f"{BASE}/packages-index.json", json={"archives": ["acme--widgets--1.0.0.zip"]})

    result = await strategy.synchronize(config(f"{BASE}/packages-index.json"))

    assert result.packages[0].dist_url == f"{BASE}/acme--widgets--1.0.0.zip"


@pytest.mark.asyncio
async def test_html_listing_fallback(strategy, origin):
    origin.add(f"{BASE}/", text="""
        <html><body>
        <a href="acme-widgets-1.0.0.zip">acme-widgets-1.0.0.zip</a>
        <a href="acme-widgets-1.1.0.zip">acme-widgets-1.1.0.zip</a>
        <a href="notes.txt">notes</a>
        </body></html>
    """)

    result = await strategy.synchronize(config())

    assert result.success
    assert sorted(p.version for p in result.packages) == ["1.0.0", "1.1.0"]


@pytest.mark.asyncio
async def test_empty_index(strategy, origin):
    origin.add(f"{BASE}/index.json", json=[])

    result = await strategy.synchronize(config())

    assert result.error == "no_archives_found"


@pytest.mark.asyncio
async def test_invalid_index(strategy, origin):
    origin.add(f"{BASE}/index.json", json={"files": "nope"})

    result = await strategy.synchronize(config())

    assert result.error == "invalid_index"


@pytest.mark.asyncio
async def test_auth_failure(strategy, origin):
    origin.add(f"{BASE}/index.json", status=401)

    result = await strategy.synchronize(config())

    assert result.error == "auth_failed"
