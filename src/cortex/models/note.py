"""
Note Models

Core entities for captured knowledge: notes, their tags and collections
(many-to-many), and the source citations attached at enrichment time.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Table,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cortex.models.base import Base, TimestampMixin, utcnow


class AIStatus(StrEnum):
    """
    Enrichment state of a note.

    pending -> completed | failed | cancelled. Terminal states are final.
    """

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not AIStatus.PENDING


# Association rows have no lifecycle of their own: created on first link,
# never updated, removed on unlink or purge.
note_tags = Table(
    "note_tags",
    Base.metadata,
    Column("note_id", ForeignKey("notes.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)

note_collections = Table(
    "note_collections",
    Base.metadata,
    Column("note_id", ForeignKey("notes.id", ondelete="CASCADE"), primary_key=True),
    Column(
        "collection_id",
        ForeignKey("collections.id", ondelete="CASCADE"),
        primary_key=True,
    ),
)


class Note(Base, TimestampMixin):
    """
    A captured unit of knowledge.

    Attributes:
        id: Primary key, assigned on creation.
        title: Provisional on capture, replaced by the generated title.
        summary: AI-generated or fallback-truncated.
        content: Raw captured text.
        source_url / source_type: Provenance.
        ai_status: Enrichment state (see AIStatus).
        sort_order: Manual ordering, max+1 on creation (new notes on top).
        is_archived / is_deleted: Mutually exclusive soft-state flags.
    """

    __tablename__ = "notes"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    title: Mapped[str] = mapped_column(String(500), index=True)
    summary: Mapped[str] = mapped_column(Text, default="")
    content: Mapped[str] = mapped_column(Text, default="")
    source_url: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    source_type: Mapped[str] = mapped_column(String(50), default="manual", index=True)
    ai_status: Mapped[str] = mapped_column(
        String(16), default=AIStatus.PENDING, index=True
    )
    sort_order: Mapped[int] = mapped_column(Integer, default=0, index=True)
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, index=True)

    tags: Mapped[list[Tag]] = relationship(
        secondary=note_tags, back_populates="notes", lazy="raise"
    )
    collections: Mapped[list[Collection]] = relationship(
        secondary=note_collections, back_populates="notes", lazy="raise"
    )
    sources: Mapped[list[SourceContext]] = relationship(
        back_populates="note",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="raise",
    )

    def __repr__(self) -> str:
        return f"<Note(id={self.id}, title='{self.title[:20]}...', status={self.ai_status})>"


class Tag(Base):
    """Unique tag name, linked to notes through note_tags."""

    __tablename__ = "tags"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(100), unique=True, index=True)
    color: Mapped[str] = mapped_column(String(16), default="#6366f1")

    notes: Mapped[list[Note]] = relationship(
        secondary=note_tags, back_populates="tags", lazy="raise"
    )

    def __repr__(self) -> str:
        return f"<Tag(id={self.id}, name='{self.name}')>"


class Collection(Base):
    """User- or AI-curated group of notes."""

    __tablename__ = "collections"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200), unique=True, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    notes: Mapped[list[Note]] = relationship(
        secondary=note_collections, back_populates="collections", lazy="raise"
    )

    def __repr__(self) -> str:
        return f"<Collection(id={self.id}, name='{self.name}')>"


class SourceContext(Base):
    """Background citation supplied by the producer, owned by its note."""

    __tablename__ = "sources"

    id: Mapped[int] = mapped_column(primary_key=True)
    note_id: Mapped[int] = mapped_column(
        ForeignKey("notes.id", ondelete="CASCADE"), index=True
    )
    title: Mapped[str | None] = mapped_column(String(500), nullable=True)
    url: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    snippet: Mapped[str | None] = mapped_column(Text, nullable=True)

    note: Mapped[Note] = relationship(back_populates="sources")

    def __repr__(self) -> str:
        return f"<SourceContext(id={self.id}, note={self.note_id})>"
