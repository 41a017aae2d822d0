"""
Collections API Router

CRUD for collections and their note membership. Membership changes are
idempotent.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from cortex.api.deps import get_db, get_services, http_error
from cortex.core.container import Services
from cortex.core.exceptions import CortexError
from cortex.schemas.notes import (
    CollectionCreate,
    CollectionNoteRequest,
    CollectionRead,
    SuccessResponse,
)

router = APIRouter(prefix="/collections")


@router.get("", response_model=list[CollectionRead])
async def list_collections(
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
) -> list[CollectionRead]:
    """All collections with their live note counts, newest first."""
    rows = await services.collections.list_with_counts(db)
    return [
        CollectionRead(
            id=collection.id,
            name=collection.name,
            description=collection.description,
            count=count,
        )
        for collection, count in rows
    ]


@router.post("", response_model=CollectionRead, status_code=status.HTTP_201_CREATED)
async def create_collection(
    request: CollectionCreate,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
) -> CollectionRead:
    if await services.collections.get_by_name(db, request.name.strip()) is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail="Collection already exists"
        )
    try:
        collection = await services.collections.create(db, request)
    except CortexError as e:
        raise http_error(e) from e
    return CollectionRead.model_validate(collection)


@router.delete("/{collection_id}", response_model=SuccessResponse)
async def delete_collection(
    collection_id: int,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
) -> SuccessResponse:
    """Delete a collection. Its notes are kept."""
    if not await services.collections.remove(db, collection_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Collection not found"
        )
    return SuccessResponse()


@router.post("/{collection_id}/notes", response_model=SuccessResponse)
async def add_note_to_collection(
    collection_id: int,
    request: CollectionNoteRequest,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
) -> SuccessResponse:
    if request.note_id is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="noteId is required"
        )
    try:
        added = await services.collections.add_note(db, collection_id, request.note_id)
    except CortexError as e:
        raise http_error(e) from e
    return SuccessResponse(message=None if added else "Already in collection")


@router.delete("/{collection_id}/notes/{note_id}", response_model=SuccessResponse)
async def remove_note_from_collection(
    collection_id: int,
    note_id: int,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
) -> SuccessResponse:
    removed = await services.collections.remove_note(db, collection_id, note_id)
    return SuccessResponse(message=None if removed else "Note was not in collection")
