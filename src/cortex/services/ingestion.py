"""
Ingestion Service

Entry point for producers: persist captured content as a pending note
under the producer title (or a provisional one), then hand it to the
enrichment coordinator.
The note exists before this returns; enrichment never blocks the caller.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from cortex.core.exceptions import ValidationError
from cortex.models import Note
from cortex.repositories.notes import NoteRepository
from cortex.schemas.notes import IngestRequest
from cortex.services.annotations import PROVISIONAL_TITLE
from cortex.services.enrichment import EnrichmentCoordinator

logger = logging.getLogger(__name__)


class NoteIngestor:
    def __init__(
        self, repository: NoteRepository, coordinator: EnrichmentCoordinator
    ) -> None:
        self._repository = repository
        self._coordinator = coordinator

    async def ingest(self, session: AsyncSession, request: IngestRequest) -> Note:
        """
        Create the note and launch its enrichment.

        Raises:
            ValidationError: content is empty or whitespace.
        """
        if not request.content.strip():
            raise ValidationError("content is required")

        note = await self._repository.create(
            session,
            {
                "title": (request.title or "").strip() or PROVISIONAL_TITLE,
                "content": request.content,
                "source_url": request.source_url,
                "source_type": request.source_type or "extension",
            },
        )
        logger.info(
            "Ingested note %d (source_type=%s, %d chars)",
            note.id,
            note.source_type,
            len(request.content),
        )

        self._coordinator.launch(
            note.id,
            request.content,
            fallback_title=note.title,
            context=[item.model_dump() for item in request.context],
        )
        return note
