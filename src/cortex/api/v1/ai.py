"""
AI Control API Router

Endpoints:
    POST /ai/cancel             Cancel a note's running enrichment.
    POST /ai/organize           Group one source type into collections.
    POST /ai/regenerate-titles  Replace placeholder / overlong titles.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from cortex.api.deps import get_db, get_services, http_error
from cortex.core.container import Services
from cortex.core.exceptions import CortexError
from cortex.schemas.chat import (
    CancelRequest,
    CancelResponse,
    OrganizeRequest,
    OrganizeResponse,
    RegenerateTitlesResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ai")


@router.post("/cancel", response_model=CancelResponse)
async def cancel_enrichment(
    request: CancelRequest,
    services: Services = Depends(get_services),
) -> CancelResponse:
    """Cancelling a note whose enrichment already finished is a successful no-op."""
    if request.note_id is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="noteId is required"
        )

    if await services.coordinator.cancel(request.note_id):
        return CancelResponse(success=True, message="Cancellation requested")
    return CancelResponse(success=True, message="No running task for this note")


@router.post("/organize", response_model=OrganizeResponse)
async def organize(
    request: OrganizeRequest,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
) -> OrganizeResponse:
    try:
        count = await services.organizer.organize(db, request.source)
    except CortexError as e:
        raise http_error(e) from e

    if count == 0:
        return OrganizeResponse(collections=0, message="No notes to organize")
    return OrganizeResponse(collections=count)


@router.post("/regenerate-titles", response_model=RegenerateTitlesResponse)
async def regenerate_titles(
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
) -> RegenerateTitlesResponse:
    try:
        updated = await services.titles.regenerate(db)
    except CortexError as e:
        raise http_error(e) from e
    return RegenerateTitlesResponse(updated=updated)
