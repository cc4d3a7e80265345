"""Composer document assembly from the package store.

Builds the root ``packages.json`` and the per-package ``p2`` provider
documents. Every dist URL handed to clients points back at this server in
mirror form (``/dist/m/{vendor}/{package}/{version}.{type}``); origin URLs
never leave the server.
"""

import calendar
from datetime import datetime
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from sqlalchemy import func
from sqlalchemy.orm import Session

from pkgbroker.core.versions import is_dev_version, normalize_version, sort_versions
from pkgbroker.db.models import Package, PackageVersion

# Manifest fields copied only when they hold an object
OBJECT_FIELDS = (
    "require-dev",
    "autoload",
    "autoload-dev",
    "conflict",
    "replace",
    "provide",
    "suggest",
    "extra",
    "support",
)

# Manifest fields copied only when they hold a list
LIST_FIELDS = ("bin", "keywords", "authors", "funding")


def to_epoch(value: Optional[datetime]) -> int:
    """Convert a naive UTC datetime to epoch seconds (0 for None)."""
    if value is None:
        return 0
    return calendar.timegm(value.utctimetuple())


def mirror_dist_url(base_url: str, package_name: str, version: str, dist_type: str = "zip") -> str:
    return f"{base_url.rstrip('/')}/dist/m/{package_name}/{quote(version, safe='')}.{dist_type}"


def build_version_object(package: Package, row: PackageVersion, base_url: str) -> Dict[str, Any]:
    """Build one entry of a provider document."""
    entry: Dict[str, Any] = {
        "name": package.full_name,
        "version": row.version,
        "version_normalized": row.version_normalized or normalize_version(row.version),
    }

    if row.dist_url:
        dist_type = row.dist_type or "zip"
        dist: Dict[str, Any] = {
            "type": dist_type,
            "url": mirror_dist_url(base_url, package.full_name, row.version, dist_type),
        }
        if row.dist_reference:
            dist["reference"] = row.dist_reference
        if row.dist_shasum:
            dist["shasum"] = row.dist_shasum
        entry["dist"] = dist

    if isinstance(row.source_type, str) and isinstance(row.source_url, str):
        entry["source"] = {
            "type": row.source_type,
            "url": row.source_url,
            "reference": row.source_reference,
        }

    if row.description:
        entry["description"] = row.description
    if row.license:
        entry["license"] = list(row.license)
    if row.package_type:
        entry["type"] = row.package_type
    if row.homepage:
        entry["homepage"] = row.homepage
    if row.released_at:
        entry["time"] = row.released_at.strftime("%Y-%m-%dT%H:%M:%S+00:00")
    if isinstance(row.requires, dict):
        entry["require"] = row.requires

    manifest = row.manifest or {}
    for key in OBJECT_FIELDS:
        if isinstance(manifest.get(key), dict):
            entry[key] = manifest[key]
    for key in LIST_FIELDS:
        if isinstance(manifest.get(key), list):
            entry[key] = manifest[key]
    if isinstance(manifest.get("notification-url"), str):
        entry["notification-url"] = manifest["notification-url"]

    return entry


def find_package(db: Session, package_name: str) -> Optional[Package]:
    return db.query(Package).filter(Package.full_name == package_name.lower()).first()


def package_last_modified(db: Session, package: Package) -> int:
    """Last-modified time of everything a provider document is built from."""
    latest = db.query(func.max(PackageVersion.updated_at)).filter(
        PackageVersion.package_id == package.id
    ).scalar()
    return max(to_epoch(latest), to_epoch(package.updated_at))


def root_last_modified(db: Session) -> int:
    return to_epoch(db.query(func.max(Package.updated_at)).scalar())


def build_provider_document(package: Package, base_url: str, dev: bool = False) -> Dict[str, Any]:
    """Build a ``p2`` document listing the stable (or dev) versions.

    Versions are ordered highest precedence first.
    """
    rows = [row for row in package.versions if is_dev_version(row.version) == dev]
    ordered = sort_versions(rows, key=lambda row: row.version)
    return {
        "packages": {
            package.full_name: [build_version_object(package, row, base_url) for row in ordered],
        },
    }


def build_root_document(db: Session, base_url: str) -> Dict[str, Any]:
    names: List[str] = [
        name for (name,) in db.query(Package.full_name)
        .join(PackageVersion, PackageVersion.package_id == Package.id)
        .distinct()
        .order_by(Package.full_name)
    ]
    base_url = base_url.rstrip("/")
    return {
        "packages": [],
        "metadata-url": "/p2/%package%.json",
        "available-packages": names,
        "mirrors": [
            {
                "dist-url": f"{base_url}/dist/m/%package%/%version%.%type%",
                "preferred": True,
            },
        ],
    }
