"""Models package - re-exports all models for convenient imports."""

from cortex.models.base import Base, TimestampMixin
from cortex.models.embedding import NoteEmbedding
from cortex.models.note import (
    AIStatus,
    Collection,
    Note,
    SourceContext,
    Tag,
    note_collections,
    note_tags,
)

__all__ = [
    "Base",
    "TimestampMixin",
    "AIStatus",
    "Collection",
    "Note",
    "NoteEmbedding",
    "SourceContext",
    "Tag",
    "note_collections",
    "note_tags",
]
