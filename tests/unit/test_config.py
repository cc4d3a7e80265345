"""Tests for settings loading."""

from pkgbroker.core.config import Settings


def test_celery_falls_back_to_redis_url():
    settings = Settings(redis_url="redis://cache:6379/2")

    assert settings.celery_broker == "redis://cache:6379/2"
    assert settings.celery_backend == "redis://cache:6379/2"


def test_celery_urls_override():
    settings = Settings(
        redis_url="redis://cache:6379/2",
        celery_broker_url="redis://broker:6379/0",
        celery_result_backend="redis://results:6379/1",
    )

    assert settings.celery_broker == "redis://broker:6379/0"
    assert settings.celery_backend == "redis://results:6379/1"


def test_environment_prefix(monkeypatch):
    monkeypatch.setenv("PKGBROKER_RATE_LIMIT_HARD_CEILING", "500")
    monkeypatch.setenv("PKGBROKER_STORAGE_DRIVER", "s3")

    settings = Settings()

    assert settings.rate_limit_hard_ceiling == 500
    assert settings.storage_driver == "s3"


def test_upstream_lookup_settings(monkeypatch):
    monkeypatch.setenv("PKGBROKER_PACKAGIST_MIRRORING_ENABLED", "false")

    settings = Settings()

    assert settings.upstream_lookup_enabled is True
    assert settings.packagist_mirroring_enabled is False
    assert settings.packagist_url == "https://repo.packagist.org"
