"""Artifact bookkeeping model.

One row per archive written to object storage by the artifact mirror.
"""

import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Integer, BigInteger, Text, UniqueConstraint

from pkgbroker.db.base import Base


class Artifact(Base):
    __tablename__ = "artifacts"
    __table_args__ = (
        UniqueConstraint("storage_key", name="uq_artifacts_storage_key"),
    )

    id = Column(String(64), primary_key=True, default=lambda: uuid.uuid4().hex)
    repository_id = Column(String(64), nullable=False, index=True)
    package_name = Column(String(255), nullable=False, index=True)
    version = Column(String(255), nullable=False)
    storage_key = Column(Text, nullable=False)
    size = Column(BigInteger, nullable=True)

    download_count = Column(Integer, nullable=False, default=0)
    last_downloaded_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self) -> str:
        return f"<Artifact {self.package_name}@{self.version}>"
