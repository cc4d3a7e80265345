"""Factory functions for creating test database records.

Each factory creates a model instance, adds it to the session and commits,
so API requests made later in the same test (through their own sessions)
see the record. All fields have sensible defaults but can be overridden
via keyword arguments.

Usage::

    from tests.factories import create_repository, create_package_version

    def test_something(db_session):
        repo = create_repository(db_session, source_type="composer")
        version = create_package_version(db_session, repository=repo, version="1.2.0")
        assert version.package.full_name == "acme/widgets"
"""

import base64
from datetime import datetime
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from pkgbroker.core.security import generate_token
from pkgbroker.core.versions import normalize_version
from pkgbroker.db.models import (
    Package,
    PackageVersion,
    Repository,
    RepositoryStatus,
    Token,
    TokenPermission,
)


_counter = 0


def _next_id() -> int:
    """Return a monotonically increasing integer for unique default values."""
    global _counter
    _counter += 1
    return _counter


def basic_auth(token: str, username: str = "token") -> dict:
    """Authorization header as Composer sends it from auth.json."""
    encoded = base64.b64encode(f"{username}:{token}".encode()).decode()
    return {"Authorization": f"Basic {encoded}"}


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


def create_repository(
    session: Session,
    *,
    url: Optional[str] = None,
    source_type: str = "composer",
    status: str = RepositoryStatus.ACTIVE.value,
    credential_type: str = "none",
    credentials: Optional[dict] = None,
    path_pattern: Optional[str] = None,
    package_filter: Optional[str] = None,
) -> Repository:
    n = _next_id()
    repository = Repository(
        url=url or f"https://repo{n}.example.com",
        source_type=source_type,
        status=status,
        credential_type=credential_type,
        credentials=credentials or {},
        path_pattern=path_pattern,
        package_filter=package_filter,
    )
    session.add(repository)
    session.commit()
    return repository


# ---------------------------------------------------------------------------
# Token
# ---------------------------------------------------------------------------


def create_token(
    session: Session,
    *,
    permission: str = TokenPermission.READONLY.value,
    rate_limit_max: Optional[int] = 1000,
    expires_at: Optional[datetime] = None,
    description: str = "test token",
) -> Tuple[Token, str]:
    """Create a token and return it together with its raw secret."""
    raw, token_hash = generate_token()
    token = Token(
        description=description,
        token_hash=token_hash,
        permission=permission,
        rate_limit_max=rate_limit_max,
        expires_at=expires_at,
    )
    session.add(token)
    session.commit()
    return token, raw


# ---------------------------------------------------------------------------
# Package / PackageVersion
# ---------------------------------------------------------------------------


def get_or_create_package(session: Session, name: str, repository: Optional[Repository] = None) -> Package:
    package = session.query(Package).filter(Package.full_name == name).first()
    if package is None:
        vendor, _, package_name = name.partition("/")
        package = Package(
            vendor=vendor,
            name=package_name,
            full_name=name,
            repository_id=repository.id if repository else None,
        )
        session.add(package)
        session.flush()
    return package


def create_package_version(
    session: Session,
    *,
    name: str = "acme/widgets",
    version: str = "1.0.0",
    repository: Optional[Repository] = None,
    dist_url: Optional[str] = None,
    dist_reference: Optional[str] = None,
    source: Optional[dict] = None,
    requires: Optional[dict] = None,
    manifest: Optional[dict] = None,
    description: Optional[str] = None,
    updated_at: Optional[datetime] = None,
) -> PackageVersion:
    package = get_or_create_package(session, name, repository)
    source = source or {}
    row = PackageVersion(
        package_id=package.id,
        repository_id=repository.id if repository else None,
        version=version,
        version_normalized=normalize_version(version),
        dist_url=dist_url if dist_url is not None else f"https://origin.example.com/{name}/{version}.zip",
        dist_type="zip",
        dist_reference=dist_reference,
        source_type=source.get("type"),
        source_url=source.get("url"),
        source_reference=source.get("reference"),
        description=description,
        requires=requires,
        manifest=manifest or {},
    )
    if updated_at is not None:
        row.updated_at = updated_at
        package.updated_at = updated_at
    session.add(row)
    session.commit()
    session.refresh(package)
    return row
