"""Package and version database models.

A Package is unique by (vendor, name) and owns the versions discovered for
it by repository syncs.
"""

from datetime import datetime
from sqlalchemy import Column, String, DateTime, JSON, ForeignKey, Integer, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from pkgbroker.db.base import Base


class Package(Base):
    __tablename__ = "packages"
    __table_args__ = (
        UniqueConstraint("vendor", "name", name="uq_packages_vendor_name"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    vendor = Column(String(255), nullable=False)
    name = Column(String(255), nullable=False)
    full_name = Column(String(511), nullable=False, unique=True, index=True)  # vendor/name

    # Repository that last provided versions of this package
    repository_id = Column(String(64), ForeignKey("repositories.id", ondelete="SET NULL"), nullable=True, index=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    versions = relationship(
        "PackageVersion",
        back_populates="package",
        cascade="all, delete-orphan",
        order_by="PackageVersion.id",
    )

    def __repr__(self) -> str:
        return f"<Package {self.full_name}>"


class PackageVersion(Base):
    """
    One version of a package.

    ``dist_url`` is the origin URL of the archive; clients are always sent
    the proxy's own dist URL. The integer primary key doubles as insertion
    order, which breaks ties between versions that cannot be parsed.
    """
    __tablename__ = "package_versions"
    __table_args__ = (
        UniqueConstraint("package_id", "version", name="uq_package_versions_package_version"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    package_id = Column(Integer, ForeignKey("packages.id", ondelete="CASCADE"), nullable=False, index=True)
    repository_id = Column(String(64), ForeignKey("repositories.id", ondelete="SET NULL"), nullable=True, index=True)

    version = Column(String(255), nullable=False)
    version_normalized = Column(String(255), nullable=True)

    # Distribution
    dist_url = Column(Text, nullable=True)
    dist_type = Column(String(20), nullable=False, default="zip")
    dist_reference = Column(String(255), nullable=True)
    dist_shasum = Column(String(128), nullable=True)

    # Source (vcs) reference
    source_type = Column(String(20), nullable=True)
    source_url = Column(Text, nullable=True)
    source_reference = Column(String(255), nullable=True)

    # Composer metadata
    description = Column(Text, nullable=True)
    license = Column(JSON, nullable=True)  # list of SPDX ids
    package_type = Column(String(100), nullable=True)
    homepage = Column(Text, nullable=True)
    requires = Column(JSON, nullable=True)
    manifest = Column(JSON, nullable=False, default=dict)  # remaining composer.json fields
    released_at = Column(DateTime, nullable=True)

    # Optional documentation pointers (object storage keys)
    readme_key = Column(Text, nullable=True)
    changelog_key = Column(Text, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    package = relationship("Package", back_populates="versions")

    @property
    def is_dev(self) -> bool:
        return self.version.startswith("dev-") or self.version.endswith("-dev")

    def __repr__(self) -> str:
        return f"<PackageVersion {self.package_id}@{self.version}>"
