"""
Ingest API Router

POST /ingest: producers (browser extension, web UI) submit captured
content. The note is persisted immediately and enriched in the background.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from cortex.api.deps import get_db, get_services, http_error
from cortex.core.container import Services
from cortex.core.exceptions import CortexError
from cortex.schemas.notes import IngestRequest, IngestResponse

router = APIRouter()


@router.post(
    "/ingest",
    response_model=IngestResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_201_CREATED,
    summary="Capture content as a new note",
)
async def ingest(
    request: IngestRequest,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
) -> IngestResponse:
    """
    Create a pending note and launch its enrichment.

    Returns 201 as soon as the note exists; summary, tags, title and
    embedding arrive later (poll GET /notes/{id} for ai_status).
    """
    try:
        note = await services.ingestor.ingest(db, request)
    except CortexError as e:
        raise http_error(e) from e

    return IngestResponse(note_id=note.id, title=note.title, status=note.ai_status)
