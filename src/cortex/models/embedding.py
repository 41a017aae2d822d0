"""
Note Embedding Model

Backing table for the pgvector implementation of the vector index.
Keyed by note id so that upserts are idempotent; title and summary are
denormalized for result display only. Notes remain the source of truth.
"""

from datetime import datetime

from pgvector.sqlalchemy import Vector
from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from cortex.core.config import settings
from cortex.models.base import Base, utcnow


class NoteEmbedding(Base):
    """
    One vector record per enriched note.

    No foreign key to notes: the index is maintained independently and
    may briefly lag behind (or outlive) the relational row.
    """

    __tablename__ = "note_embeddings"

    note_id: Mapped[int] = mapped_column(primary_key=True, autoincrement=False)
    embedding: Mapped[list[float]] = mapped_column(
        Vector(settings.EMBEDDING_DIMENSION)
    )
    title: Mapped[str] = mapped_column(String(500), default="")
    summary: Mapped[str] = mapped_column(Text, default="")
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    def __repr__(self) -> str:
        return f"<NoteEmbedding(note_id={self.note_id})>"
