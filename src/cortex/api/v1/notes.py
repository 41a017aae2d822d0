"""
Notes API Router

REST endpoints for browsing and managing notes: filtered listing, detail,
trash / restore / purge, archive, manual reordering and tag linking.
Thin pass-throughs to the note repository; purges also drop the note's
vector record.
"""

import logging
from collections.abc import Sequence

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from cortex.api.deps import get_db, get_services, http_error
from cortex.core.container import Services
from cortex.core.exceptions import CortexError, VectorIndexError
from cortex.models import Note, Tag
from cortex.repositories.notes import NoteFilter
from cortex.schemas.notes import (
    ArchiveRequest,
    CollectionRead,
    NoteDetail,
    NoteListItem,
    NoteListResponse,
    NoteRead,
    ReorderItem,
    SourceContextRead,
    SuccessResponse,
    TagLinkRequest,
    TagRead,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notes")


def _list_item(note: Note, tags: Sequence[Tag]) -> NoteListItem:
    # Relationships are lazy="raise": copy columns, attach tags explicitly
    return NoteListItem(
        **NoteRead.model_validate(note).model_dump(),
        tags=[TagRead.model_validate(tag) for tag in tags],
    )


def _note_filter(
    tag: str | None,
    source: str | None,
    collection_id: int | None,
    archived: bool,
    trash: bool,
) -> NoteFilter:
    if trash:
        return NoteFilter.deleted()
    if archived:
        return NoteFilter.archived()
    if tag:
        return NoteFilter.by_tag(tag)
    if source:
        return NoteFilter.by_source_type(source)
    if collection_id is not None:
        return NoteFilter.by_collection(collection_id)
    return NoteFilter()


async def _drop_vectors(services: Services, note_ids: Sequence[int]) -> None:
    try:
        await services.vector_index.delete_many(note_ids)
    except VectorIndexError as e:
        # Orphaned vectors are skipped at query time; not worth failing the purge
        logger.warning("Vector cleanup failed for notes %s: %s", list(note_ids), e)


@router.get("", response_model=NoteListResponse, response_model_by_alias=True)
async def list_notes(
    tag: str | None = None,
    source: str | None = None,
    collection_id: int | None = Query(default=None, alias="collectionId"),
    archived: bool = False,
    trash: bool = False,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
) -> NoteListResponse:
    """
    List one view of the corpus.

    Views (first match wins): trash, archived, tag, source, collectionId,
    otherwise every live, unarchived note.
    """
    note_filter = _note_filter(tag, source, collection_id, archived, trash)
    # One extra row tells whether another page exists
    notes = list(
        await services.notes.list(db, note_filter, limit=limit + 1, offset=(page - 1) * limit)
    )
    has_more = len(notes) > limit
    notes = notes[:limit]

    tags = await services.notes.get_tags_for_notes(db, [note.id for note in notes])
    return NoteListResponse(
        notes=[_list_item(note, tags[note.id]) for note in notes],
        page=page,
        has_more=has_more,
    )


@router.delete("/trash", response_model=SuccessResponse)
async def empty_trash(
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
) -> SuccessResponse:
    """Permanently delete every note in the trash."""
    try:
        purged = await services.notes.empty_trash(db)
    except CortexError as e:
        raise http_error(e) from e

    await _drop_vectors(services, purged)
    return SuccessResponse(message=f"{len(purged)} notes purged")


@router.patch("/reorder", response_model=SuccessResponse)
async def reorder_notes(
    items: list[ReorderItem],
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
) -> SuccessResponse:
    try:
        await services.notes.reorder(
            db, [item.id for item in items], [item.sort_order for item in items]
        )
    except CortexError as e:
        raise http_error(e) from e
    return SuccessResponse()


@router.get("/{note_id}", response_model=NoteDetail)
async def read_note(
    note_id: int,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
) -> NoteDetail:
    """Retrieve a single note (trashed ones included) with its associations."""
    note = await services.notes.get(db, note_id)
    if note is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Note not found"
        )

    tags = await services.notes.get_tags(db, note_id)
    collections = await services.collections.get_note_collections(db, note_id)
    sources = await services.notes.get_sources(db, note_id)
    return NoteDetail(
        **_list_item(note, tags).model_dump(),
        collections=[CollectionRead.model_validate(c) for c in collections],
        sources=[SourceContextRead.model_validate(s) for s in sources],
    )


@router.delete("/{note_id}", response_model=SuccessResponse)
async def delete_note(
    note_id: int,
    permanent: bool = False,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
) -> SuccessResponse:
    """
    Move a note to the trash, or purge it with ``?permanent=true``.

    A running enrichment notices the deletion at its next checkpoint and
    drops its results.
    """
    if permanent:
        if not await services.notes.purge(db, note_id):
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND, detail="Note not found"
            )
        await _drop_vectors(services, [note_id])
        return SuccessResponse(message="Note purged")

    try:
        await services.notes.soft_delete(db, note_id)
    except CortexError as e:
        raise http_error(e) from e
    return SuccessResponse(message="Note moved to trash")


@router.post("/{note_id}/restore", response_model=SuccessResponse)
async def restore_note(
    note_id: int,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
) -> SuccessResponse:
    try:
        await services.notes.restore(db, note_id)
    except CortexError as e:
        raise http_error(e) from e
    return SuccessResponse()


@router.post("/{note_id}/archive", response_model=SuccessResponse)
async def archive_note(
    note_id: int,
    request: ArchiveRequest,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
) -> SuccessResponse:
    try:
        await services.notes.archive(db, note_id, request.archived)
    except CortexError as e:
        raise http_error(e) from e
    return SuccessResponse()


@router.post(
    "/{note_id}/tags", response_model=TagRead, status_code=status.HTTP_201_CREATED
)
async def add_tag(
    note_id: int,
    request: TagLinkRequest,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
) -> TagRead:
    """Attach a tag by name, creating it on first use. Idempotent."""
    if await services.notes.get(db, note_id) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Note not found"
        )
    try:
        tag = await services.notes.get_or_create_tag(db, request.name)
        await services.notes.link_tag(db, note_id, tag.id)
    except CortexError as e:
        raise http_error(e) from e
    return TagRead.model_validate(tag)


@router.delete("/{note_id}/tags/{tag_id}", response_model=SuccessResponse)
async def remove_tag(
    note_id: int,
    tag_id: int,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
) -> SuccessResponse:
    removed = await services.notes.unlink_tag(db, note_id, tag_id)
    return SuccessResponse(message=None if removed else "Tag was not linked")
