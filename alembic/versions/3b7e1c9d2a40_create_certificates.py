"""create certificates

Revision ID: 3b7e1c9d2a40
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3b7e1c9d2a40"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "certificates",
        sa.Column("certificate_id", sa.String(length=64), primary_key=True),
        sa.Column("content_hash", sa.String(length=66), nullable=False),
        sa.Column("title", sa.String(length=500), nullable=False),
        sa.Column("type", sa.String(length=32), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("creator_id", sa.String(length=128), nullable=False),
        sa.Column("external_content_id", sa.String(length=128), nullable=False),
        sa.Column("encryption_key", sa.Text(), nullable=False),
        sa.Column("is_encrypted", sa.Boolean(), nullable=False),
        sa.Column("verification_code", sa.String(length=32), nullable=True),
        sa.Column("is_verified", sa.Boolean(), nullable=False),
        sa.Column("batch_id", sa.String(length=64), nullable=True),
        sa.Column(
            "tags",
            postgresql.ARRAY(sa.String()),
            nullable=False,
            server_default="{}",
        ),
        sa.Column("recipient", postgresql.JSONB(), nullable=False),
        sa.Column("institution", postgresql.JSONB(), nullable=False),
        sa.Column("course", postgresql.JSONB(), nullable=False),
        sa.Column("verifier", postgresql.JSONB(), nullable=True),
        sa.Column("issuer", postgresql.JSONB(), nullable=True),
        sa.Column("anchor", postgresql.JSONB(), nullable=True),
        sa.Column(
            "history", postgresql.JSONB(), nullable=False, server_default="[]"
        ),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("verification_code"),
    )
    op.create_index(
        "ix_certificates_content_hash", "certificates", ["content_hash"], unique=True
    )
    op.create_index("ix_certificates_status", "certificates", ["status"])
    op.create_index("ix_certificates_creator_id", "certificates", ["creator_id"])
    op.create_index("ix_certificates_batch_id", "certificates", ["batch_id"])


def downgrade() -> None:
    op.drop_index("ix_certificates_batch_id", table_name="certificates")
    op.drop_index("ix_certificates_creator_id", table_name="certificates")
    op.drop_index("ix_certificates_status", table_name="certificates")
    op.drop_index("ix_certificates_content_hash", table_name="certificates")
    op.drop_table("certificates")
