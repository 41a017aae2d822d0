"""
Search Service

Semantic search through the vector index, with transparent fallback to
keyword search whenever embedding or the vector query fails.
Both modes return the same SourceRef shape; keyword hits carry no score.
"""

import logging
from typing import Literal

from sqlalchemy.ext.asyncio import AsyncSession

from cortex.core.exceptions import ValidationError
from cortex.repositories.notes import NoteRepository
from cortex.schemas.chat import SourceRef
from cortex.services.ai import AIClient
from cortex.services.vector_index import VectorIndex

logger = logging.getLogger(__name__)

SearchMode = Literal["semantic", "keyword"]


class SearchService:
    def __init__(
        self,
        repository: NoteRepository,
        ai: AIClient,
        vector_index: VectorIndex,
        top_k: int = 10,
    ) -> None:
        self._repository = repository
        self._ai = ai
        self._vector_index = vector_index
        self._top_k = top_k

    async def search(
        self, session: AsyncSession, query: str, mode: SearchMode = "semantic"
    ) -> tuple[list[SourceRef], SearchMode]:
        """
        Search notes.

        Returns:
            (results, mode that actually produced them)
        """
        query = query.strip()
        if not query:
            raise ValidationError("q is required")

        if mode == "semantic":
            try:
                return await self._semantic(session, query), "semantic"
            except Exception as e:
                logger.warning("Semantic search failed, falling back to keyword: %s", e)

        return await self.keyword(session, query), "keyword"

    async def keyword(self, session: AsyncSession, query: str) -> list[SourceRef]:
        notes = await self._repository.search(session, query, limit=self._top_k)
        return [
            SourceRef(id=note.id, title=note.title, summary=note.summary, score=None)
            for note in notes
        ]

    async def _semantic(self, session: AsyncSession, query: str) -> list[SourceRef]:
        embedding = await self._ai.embed(query)
        matches = await self._vector_index.query(embedding, self._top_k)

        results: list[SourceRef] = []
        for match in matches:
            note = await self._repository.get(session, match.id)
            if note is None or note.is_deleted:
                continue
            results.append(
                SourceRef(
                    id=note.id, title=note.title, summary=note.summary, score=match.score
                )
            )
        return results
