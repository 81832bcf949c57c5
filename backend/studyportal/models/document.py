"""
Study Portal Backend — Document SQLAlchemy Model
==================================================

What:  ORM model representing the `documents` table in the primary database.
How:   Inherits from the shared DeclarativeBase; Alembic migration 001 creates
       the same table.
Who:   PrimaryStoreClient (queries, upserts, deletes) and Alembic.

Table Design:
    - id: String primary key assigned by the writer, never by the database.
      The same id identifies a document in the local snapshot, so a pending
      record can be re-inserted any number of times without duplicating.
    - No "synced" column: presence in this table is what "synced" means.
    - Generic column types only (String, Text, Integer, DateTime) so the
      model works on PostgreSQL in production and SQLite in tests.
"""

from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from studyportal.database import Base


class DocumentRecord(Base):
    """
    One uploaded study document's metadata in the primary database.

    The PDF payload itself lives in the upload directory; `filename` and
    `path` reference it.
    """

    __tablename__ = "documents"

    id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        comment="Writer-assigned identifier, identical in the local snapshot",
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    display_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Title shown to end users",
    )

    filename: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Generated name of the payload file in the upload directory",
    )

    path: Mapped[str] = mapped_column(
        String(512),
        nullable=False,
        comment="Retrieval path of the payload, e.g. /uploads/<filename>",
    )

    # Values: 'material' | 'imp-material'
    type: Mapped[str] = mapped_column(String(32), nullable=False)

    icon: Mapped[str] = mapped_column(String(64), nullable=False)

    color: Mapped[str] = mapped_column(String(32), nullable=False, default="#6a11cb")

    # Set once at creation by the writer; never updated.
    date_added: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    size_bytes: Mapped[int | None] = mapped_column(Integer, nullable=True, default=None)

    __table_args__ = (
        CheckConstraint("type IN ('material', 'imp-material')", name="ck_documents_type"),
        Index("idx_documents_type", "type"),
        Index("idx_documents_date_added", date_added.desc()),
    )

    def __repr__(self) -> str:
        return (
            f"<DocumentRecord(id={self.id}, type='{self.type}', "
            f"display_name='{self.display_name}')>"
        )
