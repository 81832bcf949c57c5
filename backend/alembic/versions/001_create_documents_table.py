"""Create documents table

Revision ID: 001
Revises: None
Create Date: 2024-01-15 00:00:00.000000+00:00

What:  Creates the `documents` table holding study document metadata.
How:   Generic column types only, so the same migration runs on PostgreSQL
       and on SQLite. The id is a string assigned by the application, shared
       with the local snapshot file.

Rollback: downgrade() drops the table (metadata lost; PDFs stay on disk).
"""

from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "documents",
        sa.Column(
            "id",
            sa.String(64),
            nullable=False,
            comment="Writer-assigned identifier, identical in the local snapshot",
        ),
        sa.Column("name", sa.String(255), nullable=False, server_default=sa.text("''")),
        sa.Column("display_name", sa.String(255), nullable=False, comment="Title shown to end users"),
        sa.Column(
            "filename",
            sa.String(255),
            nullable=False,
            comment="Generated name of the payload file in the upload directory",
        ),
        sa.Column(
            "path",
            sa.String(512),
            nullable=False,
            comment="Retrieval path of the payload, e.g. /uploads/<filename>",
        ),
        sa.Column("type", sa.String(32), nullable=False),
        sa.Column("icon", sa.String(64), nullable=False),
        sa.Column("color", sa.String(32), nullable=False, server_default=sa.text("'#6a11cb'")),
        sa.Column("date_added", sa.DateTime(timezone=True), nullable=False),
        sa.Column("size_bytes", sa.Integer(), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_documents"),
        sa.CheckConstraint(
            "type IN ('material', 'imp-material')",
            name="ck_documents_type",
        ),
    )

    op.create_index("idx_documents_type", "documents", ["type"])
    op.create_index(
        "idx_documents_date_added",
        "documents",
        [sa.text("date_added DESC")],
    )


def downgrade() -> None:
    op.drop_index("idx_documents_date_added", table_name="documents")
    op.drop_index("idx_documents_type", table_name="documents")
    op.drop_table("documents")
