"""Initial schema

Revision ID: 0001
Revises:
Create Date: 2026-09-28

Tables added:
- repositories: Upstream sources and their sync state
- packages: Known packages (unique by vendor and name)
- package_versions: Discovered versions with their Composer metadata
- tokens: Package-tool access tokens
- artifacts: Archives written to object storage
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the pkgbroker tables."""

    # --- repositories ---
    op.create_table(
        "repositories",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("url", sa.Text(), nullable=False),
        sa.Column("source_type", sa.String(20), nullable=False),
        sa.Column("credential_type", sa.String(50), nullable=False, server_default="none"),
        sa.Column("credentials", sa.JSON(), nullable=False, server_default="{}"),
        sa.Column("path_pattern", sa.String(255), nullable=True),
        sa.Column("package_filter", sa.Text(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("last_synced_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id", name="pk_repositories"),
    )
    op.create_index("ix_repositories_status", "repositories", ["status"])

    # --- packages ---
    op.create_table(
        "packages",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("vendor", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("full_name", sa.String(511), nullable=False),
        sa.Column("repository_id", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id", name="pk_packages"),
        sa.ForeignKeyConstraint(
            ["repository_id"], ["repositories.id"], name="fk_packages_repository_id", ondelete="SET NULL"
        ),
        sa.UniqueConstraint("vendor", "name", name="uq_packages_vendor_name"),
    )
    op.create_index("ix_packages_full_name", "packages", ["full_name"], unique=True)
    op.create_index("ix_packages_repository_id", "packages", ["repository_id"])

    # --- package_versions ---
    op.create_table(
        "package_versions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("package_id", sa.Integer(), nullable=False),
        sa.Column("repository_id", sa.String(64), nullable=True),
        sa.Column("version", sa.String(255), nullable=False),
        sa.Column("version_normalized", sa.String(255), nullable=True),
        sa.Column("dist_url", sa.Text(), nullable=True),
        sa.Column("dist_type", sa.String(20), nullable=False, server_default="zip"),
        sa.Column("dist_reference", sa.String(255), nullable=True),
        sa.Column("dist_shasum", sa.String(128), nullable=True),
        sa.Column("source_type", sa.String(20), nullable=True),
        sa.Column("source_url", sa.Text(), nullable=True),
        sa.Column("source_reference", sa.String(255), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("license", sa.JSON(), nullable=True),
        sa.Column("package_type", sa.String(100), nullable=True),
        sa.Column("homepage", sa.Text(), nullable=True),
        sa.Column("requires", sa.JSON(), nullable=True),
        sa.Column("manifest", sa.JSON(), nullable=False, server_default="{}"),
        sa.Column("released_at", sa.DateTime(), nullable=True),
        sa.Column("readme_key", sa.Text(), nullable=True),
        sa.Column("changelog_key", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id", name="pk_package_versions"),
        sa.ForeignKeyConstraint(
            ["package_id"], ["packages.id"], name="fk_package_versions_package_id", ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(
            ["repository_id"], ["repositories.id"], name="fk_package_versions_repository_id", ondelete="SET NULL"
        ),
        sa.UniqueConstraint("package_id", "version", name="uq_package_versions_package_version"),
    )
    op.create_index("ix_package_versions_package_id", "package_versions", ["package_id"])
    op.create_index("ix_package_versions_repository_id", "package_versions", ["repository_id"])

    # --- tokens ---
    op.create_table(
        "tokens",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("description", sa.String(255), nullable=False, server_default=""),
        sa.Column("token_hash", sa.String(64), nullable=False),
        sa.Column("permission", sa.String(20), nullable=False, server_default="readonly"),
        sa.Column("rate_limit_max", sa.Integer(), nullable=True, server_default="1000"),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
        sa.Column("last_used_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id", name="pk_tokens"),
    )
    op.create_index("ix_tokens_token_hash", "tokens", ["token_hash"], unique=True)

    # --- artifacts ---
    op.create_table(
        "artifacts",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("repository_id", sa.String(64), nullable=False),
        sa.Column("package_name", sa.String(255), nullable=False),
        sa.Column("version", sa.String(255), nullable=False),
        sa.Column("storage_key", sa.Text(), nullable=False),
        sa.Column("size", sa.BigInteger(), nullable=True),
        sa.Column("download_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_downloaded_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id", name="pk_artifacts"),
        sa.UniqueConstraint("storage_key", name="uq_artifacts_storage_key"),
    )
    op.create_index("ix_artifacts_repository_id", "artifacts", ["repository_id"])
    op.create_index("ix_artifacts_package_name", "artifacts", ["package_name"])


def downgrade() -> None:
    """Drop the pkgbroker tables."""
    op.drop_table("artifacts")
    op.drop_table("tokens")
    op.drop_table("package_versions")
    op.drop_table("packages")
    op.drop_table("repositories")
