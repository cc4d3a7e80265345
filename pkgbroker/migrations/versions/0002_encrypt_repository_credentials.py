"""Encrypt repository credentials

Revision ID: 0002
Revises: 0001
Create Date: 2026-10-16

Rewrites plain credential fields as ``{"fernet": token}`` using the key from
the current settings. The column type is unchanged.
"""
import json
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

from pkgbroker.core.encryption import get_credential_cipher, is_encrypted

# revision identifiers, used by Alembic.
revision: str = "0002"
down_revision: Union[str, Sequence[str], None] = "0001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

repositories = sa.table(
    "repositories",
    sa.column("id", sa.String),
    sa.column("credentials", sa.JSON),
)


def _load(value):
    return json.loads(value) if isinstance(value, str) else value


def upgrade() -> None:
    """Encrypt every repository's plain credentials."""
    connection = op.get_bind()
    cipher = get_credential_cipher()
    rows = connection.execute(sa.select(repositories.c.id, repositories.c.credentials)).all()
    for repository_id, credentials in rows:
        credentials = _load(credentials)
        if not credentials or is_encrypted(credentials):
            continue
        connection.execute(
            repositories.update()
            .where(repositories.c.id == repository_id)
            .values(credentials=cipher.encrypt(credentials))
        )


def downgrade() -> None:
    """Store credentials in plain form again."""
    connection = op.get_bind()
    cipher = get_credential_cipher()
    rows = connection.execute(sa.select(repositories.c.id, repositories.c.credentials)).all()
    for repository_id, credentials in rows:
        credentials = _load(credentials)
        if not is_encrypted(credentials):
            continue
        connection.execute(
            repositories.update()
            .where(repositories.c.id == repository_id)
            .values(credentials=cipher.decrypt(credentials))
        )
