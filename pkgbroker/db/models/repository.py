"""Repository database model.

An upstream source that pkgbroker synchronizes package definitions from.
"""

import enum
import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Text

from pkgbroker.core.encryption import EncryptedCredentials
from pkgbroker.db.base import Base


class SourceType(str, enum.Enum):
    GIT = "git"  # git-hosted account or repository
    COMPOSER = "composer"  # protocol-native Composer repository
    ARTIFACT = "artifact"  # flat index of zip archives


class RepositoryStatus(str, enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    ERROR = "error"
    SYNCING = "syncing"


class Repository(Base):
    """
    Upstream source configuration.

    Created by administrators; the sync engine only touches the status,
    error message and sync timestamp.
    """
    __tablename__ = "repositories"

    id = Column(String(64), primary_key=True, default=lambda: uuid.uuid4().hex)
    url = Column(Text, nullable=False)
    source_type = Column(String(20), nullable=False)

    # Credentials
    credential_type = Column(String(50), nullable=False, default="none")
    credentials = Column(EncryptedCredentials, nullable=False, default=dict)  # encrypted at rest

    # Filters
    path_pattern = Column(String(255), nullable=True)  # glob for manifest paths
    package_filter = Column(Text, nullable=True)  # comma-separated package names

    # Sync state
    status = Column(String(20), nullable=False, default=RepositoryStatus.PENDING.value, index=True)
    error_message = Column(Text, nullable=True)
    last_synced_at = Column(DateTime, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def package_filter_list(self) -> list[str]:
        if not self.package_filter:
            return []
        return [name.strip() for name in self.package_filter.split(",") if name.strip()]

    def __repr__(self) -> str:
        return f"<Repository {self.id} ({self.source_type}) {self.status}>"
