"""Database models for pkgbroker."""

from pkgbroker.db.models.repository import Repository, RepositoryStatus, SourceType
from pkgbroker.db.models.package import Package, PackageVersion
from pkgbroker.db.models.token import Token, TokenPermission
from pkgbroker.db.models.artifact import Artifact

__all__ = [
    "Repository",
    "RepositoryStatus",
    "SourceType",
    "Package",
    "PackageVersion",
    "Token",
    "TokenPermission",
    "Artifact",
]
