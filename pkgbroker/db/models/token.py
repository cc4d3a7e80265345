import enum
import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Integer

from pkgbroker.db.base import Base


class TokenPermission(str, enum.Enum):
    READONLY = "readonly"
    WRITE = "write"


class Token(Base):
    """Package-tool access tokens (Composer auth.json credentials)."""
    __tablename__ = "tokens"

    id = Column(String(64), primary_key=True, default=lambda: uuid.uuid4().hex)
    description = Column(String(255), nullable=False, default="")
    token_hash = Column(String(64), nullable=False, unique=True, index=True)  # sha256 hex
    permission = Column(String(20), nullable=False, default=TokenPermission.READONLY.value)
    rate_limit_max = Column(Integer, nullable=True, default=1000)  # per hour, NULL or 0 = unlimited
    expires_at = Column(DateTime, nullable=True)
    last_used_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self) -> str:
        return f"<Token {self.id} ({self.permission})>"
