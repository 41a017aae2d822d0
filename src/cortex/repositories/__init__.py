"""Repositories package."""

from cortex.repositories.base import BaseRepository
from cortex.repositories.collections import CollectionRepository, collection_repository
from cortex.repositories.notes import (
    NoteFilter,
    NoteRepository,
    NoteView,
    note_repository,
)

__all__ = [
    "BaseRepository",
    "CollectionRepository",
    "NoteFilter",
    "NoteRepository",
    "NoteView",
    "collection_repository",
    "note_repository",
]
