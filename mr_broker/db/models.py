# =============================================================================
# SQLAlchemy ORM Models - pgvector Index Entries
# =============================================================================
#
# Only used when VECTORSTORE_TYPE=pgvector. One table holds every tenant's
# entries; the `namespace` column is the tenant partition and every query
# filters on it.
#
# The primary key is the deterministic entry id
#   hash(tenant):hash(document_name):chunk_index
# so re-ingesting a document is an INSERT ... ON CONFLICT DO UPDATE, never
# a duplicate row.
# =============================================================================

from datetime import datetime

from pgvector.sqlalchemy import Vector
from sqlalchemy import DateTime, Index, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from mr_broker.config import settings


class Base(DeclarativeBase):
    """SQLAlchemy declarative base class."""

    pass


class IndexEntryRow(Base):
    """
    One chunk of one tenant document with its embedding.

    Denormalized on purpose: a match must be renderable as a source
    (name, link, page, text) without a second lookup.
    """

    __tablename__ = "index_entries"

    # hash(tenant):hash(document_name):chunk_index
    id: Mapped[str] = mapped_column(String(128), primary_key=True)

    # Tenant partition; never queried without it
    namespace: Mapped[str] = mapped_column(String(255), nullable=False)

    # Document store file id, used by the membership filter and orphan cleanup
    file_id: Mapped[str] = mapped_column(String(255), nullable=False)

    document_name: Mapped[str] = mapped_column(String(1024), nullable=False)
    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)

    embedding: Mapped[list[float]] = mapped_column(
        Vector(settings.embedding_dimensions),
        nullable=False,
    )

    # Source link, page number, modified time, report tag, date labels.
    # Named `metadata_` to avoid collision with SQLAlchemy's Base.metadata.
    metadata_: Mapped[dict] = mapped_column("metadata", JSONB, default=dict)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        Index("ix_index_entries_namespace_file", "namespace", "file_id"),
        Index("ix_index_entries_namespace_document", "namespace", "document_name"),
    )

    def __repr__(self) -> str:
        return f"<IndexEntryRow(id='{self.id}', namespace='{self.namespace}')>"
