"""Tags API Router."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from cortex.api.deps import get_db, get_services
from cortex.core.container import Services
from cortex.schemas.notes import TagCount

router = APIRouter(prefix="/tags")


@router.get("", response_model=list[TagCount])
async def list_tags(
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
) -> list[TagCount]:
    """All tags with the number of live notes carrying each."""
    rows = await services.notes.list_tags(db)
    return [
        TagCount(id=tag.id, name=tag.name, color=tag.color, count=count)
        for tag, count in rows
    ]
