"""
Search API Router

GET /search?q=&type=semantic|keyword. Semantic mode falls back to
keyword mode transparently when retrieval fails.
"""

from typing import Literal

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from cortex.api.deps import get_db, get_services, http_error
from cortex.core.container import Services
from cortex.core.exceptions import CortexError
from cortex.schemas.chat import SearchResponse

router = APIRouter()


@router.get("/search", response_model=SearchResponse)
async def search(
    q: str = Query(default="", max_length=500),
    type: Literal["semantic", "keyword"] = Query(default="semantic"),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
) -> SearchResponse:
    try:
        results, mode = await services.search.search(db, q, type)
    except CortexError as e:
        raise http_error(e) from e
    return SearchResponse(results=results, mode=mode)
