"""
Note Schemas

Pydantic models for Note, Tag and Collection API request/response validation.
Producers (browser extension, web UI) speak camelCase ids (noteId); the
models accept both spellings and serialize with the alias.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class SourceContextIn(BaseModel):
    """Background citation supplied alongside captured content."""

    title: str | None = None
    url: str | None = None
    snippet: str | None = None


class SourceContextRead(SourceContextIn):
    id: int

    model_config = ConfigDict(from_attributes=True)


class IngestRequest(BaseModel):
    """
    Request schema for POST /ingest.

    Content emptiness is checked by the ingestion service (400 rather
    than the generic 422) so the producer gets a single error shape.
    """

    content: str = Field(default="", description="Raw captured text (required)")
    title: str | None = Field(default=None, max_length=500)
    source_url: str | None = Field(default=None, max_length=2000)
    source_type: str | None = Field(default="extension", max_length=50)
    context: list[SourceContextIn] = Field(default_factory=list)


class IngestResponse(BaseModel):
    """Response for POST /ingest: the note exists, enrichment runs in background."""

    success: bool = True
    note_id: int = Field(serialization_alias="noteId")
    title: str
    status: str
    message: str = "Saved, AI enrichment running in background"


class TagRead(BaseModel):
    id: int
    name: str
    color: str

    model_config = ConfigDict(from_attributes=True)


class TagCount(TagRead):
    """Tag with the number of live notes carrying it."""

    count: int = 0


class TagLinkRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)


class CollectionCreate(BaseModel):
    name: str = Field(default="", max_length=200)
    description: str | None = None


class CollectionRead(BaseModel):
    id: int
    name: str
    description: str | None = None
    count: int = 0

    model_config = ConfigDict(from_attributes=True)


class CollectionNoteRequest(BaseModel):
    note_id: int | None = Field(default=None, alias="noteId")

    model_config = ConfigDict(populate_by_name=True)


class NoteRead(BaseModel):
    """Full Note representation including status flags and timestamps."""

    id: int
    title: str
    summary: str
    content: str
    source_url: str | None = None
    source_type: str
    ai_status: str
    sort_order: int
    is_archived: bool
    is_deleted: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)  # Enables ORM model conversion


class NoteListItem(NoteRead):
    tags: list[TagRead] = Field(default_factory=list)


class NoteDetail(NoteListItem):
    """Single note with every association attached."""

    collections: list[CollectionRead] = Field(default_factory=list)
    sources: list[SourceContextRead] = Field(default_factory=list)


class NoteListResponse(BaseModel):
    notes: list[NoteListItem]
    page: int = 1
    has_more: bool = Field(default=False, serialization_alias="hasMore")


class ArchiveRequest(BaseModel):
    archived: bool = True


class ReorderItem(BaseModel):
    id: int
    sort_order: int


class SuccessResponse(BaseModel):
    success: bool = True
    message: str | None = None
