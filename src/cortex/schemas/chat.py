"""
Chat, Search and AI Maintenance Schemas

Pydantic models for the retrieval endpoints and the AI control endpoints.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class ChatRequest(BaseModel):
    """Request body for POST /chat. Empty query is rejected with 400."""

    query: str = Field(default="", max_length=4000)
    stream: bool = True


class SourceRef(BaseModel):
    """A note cited as context for an answer or returned by search."""

    id: int
    title: str
    summary: str = ""
    score: float | None = Field(
        default=None,
        description="Cosine similarity (semantic) or null (keyword match)",
    )


class ChatResponse(BaseModel):
    answer: str
    sources: list[SourceRef] = Field(default_factory=list)


class SearchResponse(BaseModel):
    results: list[SourceRef]
    mode: Literal["semantic", "keyword"] = Field(
        description="Mode that actually produced the results"
    )


class CancelRequest(BaseModel):
    note_id: int | None = Field(default=None, alias="noteId")

    model_config = ConfigDict(populate_by_name=True)


class CancelResponse(BaseModel):
    success: bool
    message: str


class OrganizeRequest(BaseModel):
    source: str = Field(..., min_length=1, description="source_type to organize")


class OrganizeResponse(BaseModel):
    success: bool = True
    collections: int = 0
    message: str | None = None


class RegenerateTitlesResponse(BaseModel):
    success: bool = True
    updated: int = 0
