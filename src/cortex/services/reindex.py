"""
Reindex Service

Reconciliation sweep between the notes table and the vector index.
A completed note can end up without a vector record (upsert failure,
crash between the status write and the upsert); the sweep re-embeds
those notes, or every completed note when asked to. Upserts are keyed
by note id, so re-running it is harmless.
"""

import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cortex.core.exceptions import AIServiceError, ServiceUnavailableError, VectorIndexError
from cortex.repositories.notes import NoteRepository
from cortex.services.ai import AIClient
from cortex.services.vector_index import VectorIndex

logger = logging.getLogger(__name__)


@dataclass
class ReindexStats:
    total: int = 0
    indexed: int = 0
    skipped: int = 0
    failed: int = 0


class NoteReindexer:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        repository: NoteRepository,
        ai: AIClient,
        vector_index: VectorIndex,
        embed_char_limit: int = 2000,
    ) -> None:
        self._session_factory = session_factory
        self._repository = repository
        self._ai = ai
        self._vector_index = vector_index
        self._embed_char_limit = embed_char_limit

    async def run(self, reindex_all: bool = False) -> ReindexStats:
        """
        Re-embed completed, live notes.

        Args:
            reindex_all: Re-embed every completed note, not only those
                missing a vector record.

        Raises:
            ServiceUnavailableError: AI backend offline.
        """
        if not await self._ai.health_check():
            raise ServiceUnavailableError("AI backend offline", {"offline": True})

        async with self._session_factory() as session:
            note_ids = await self._repository.list_completed_ids(session)

        stats = ReindexStats(total=len(note_ids))
        for note_id in note_ids:
            if not reindex_all and await self._vector_index.exists(note_id):
                stats.skipped += 1
                continue

            async with self._session_factory() as session:
                note = await self._repository.get(session, note_id)
            if note is None or note.is_deleted:
                stats.skipped += 1
                continue

            try:
                vector = await self._ai.embed(note.content[: self._embed_char_limit])
                if not vector:
                    stats.skipped += 1
                    continue
                await self._vector_index.upsert(
                    note_id, vector, {"title": note.title, "summary": note.summary}
                )
            except (AIServiceError, VectorIndexError) as e:
                logger.warning("Reindex failed for note %d: %s", note_id, e)
                stats.failed += 1
                continue
            stats.indexed += 1

        logger.info(
            "Reindex done: indexed=%d skipped=%d failed=%d",
            stats.indexed,
            stats.skipped,
            stats.failed,
        )
        return stats
