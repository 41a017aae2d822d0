"""
Vector Index Adapter

Upsert / query / delete of embedding records keyed by note id.

The index is not the source of truth for note content, only a lookup
structure: records carry a denormalized title and summary for result
display and are rebuilt idempotently by upserting again.

PgVectorIndex stores records in the note_embeddings table and ranks by
pgvector cosine distance, converted to a similarity score
``score = 1 - distance`` (higher = more similar).
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from sqlalchemy import delete, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cortex.core.exceptions import VectorIndexError
from cortex.models import NoteEmbedding
from cortex.models.base import utcnow

logger = logging.getLogger(__name__)


@dataclass
class VectorMatch:
    """One query hit: note id, denormalized metadata, cosine similarity."""

    id: int
    score: float
    metadata: dict[str, str] = field(default_factory=dict)


class VectorIndex(ABC):
    """Abstract vector store keyed by note id."""

    @abstractmethod
    async def upsert(
        self, note_id: int, vector: Sequence[float], metadata: Mapping[str, str]
    ) -> None:
        """Insert or replace the record for note_id."""

    @abstractmethod
    async def query(self, vector: Sequence[float], top_k: int) -> list[VectorMatch]:
        """At most top_k matches, most similar first."""

    @abstractmethod
    async def delete(self, note_id: int) -> None:
        """Remove the record for note_id. Missing records are ignored."""

    async def delete_many(self, note_ids: Sequence[int]) -> None:
        for note_id in note_ids:
            await self.delete(note_id)

    async def count(self) -> int | None:
        """Number of records, or None when the backend cannot tell."""
        return None

    @abstractmethod
    async def exists(self, note_id: int) -> bool:
        """Whether a record is stored for note_id."""


class PgVectorIndex(VectorIndex):
    """
    pgvector-backed index.

    Opens a short-lived session per operation, independent of any request
    session, since it is called from background enrichment tasks.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def upsert(
        self, note_id: int, vector: Sequence[float], metadata: Mapping[str, str]
    ) -> None:
        values = {
            "note_id": note_id,
            "embedding": list(vector),
            "title": metadata.get("title", ""),
            "summary": metadata.get("summary", ""),
            "updated_at": utcnow(),
        }
        stmt = pg_insert(NoteEmbedding).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[NoteEmbedding.note_id],
            set_={
                "embedding": stmt.excluded.embedding,
                "title": stmt.excluded.title,
                "summary": stmt.excluded.summary,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        try:
            async with self._session_factory() as session:
                await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as e:
            raise VectorIndexError(
                f"Upsert failed for note {note_id}: {e}", {"note_id": note_id}
            ) from e
        logger.debug("Vector upserted for note %d (dim=%d)", note_id, len(values["embedding"]))

    async def query(self, vector: Sequence[float], top_k: int) -> list[VectorMatch]:
        distance = NoteEmbedding.embedding.cosine_distance(list(vector)).label(
            "distance"
        )
        stmt = select(NoteEmbedding, distance).order_by(distance).limit(top_k)
        try:
            async with self._session_factory() as session:
                rows = (await session.execute(stmt)).all()
        except SQLAlchemyError as e:
            raise VectorIndexError(f"Vector query failed: {e}") from e

        # Convert cosine distance -> similarity score
        return [
            VectorMatch(
                id=record.note_id,
                score=1.0 - float(dist),
                metadata={"title": record.title, "summary": record.summary},
            )
            for record, dist in rows
        ]

    async def delete(self, note_id: int) -> None:
        await self.delete_many([note_id])

    async def delete_many(self, note_ids: Sequence[int]) -> None:
        if not note_ids:
            return
        try:
            async with self._session_factory() as session:
                await session.execute(
                    delete(NoteEmbedding).where(NoteEmbedding.note_id.in_(note_ids))
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise VectorIndexError(f"Vector delete failed: {e}") from e

    async def count(self) -> int | None:
        try:
            async with self._session_factory() as session:
                return await session.scalar(select(func.count()).select_from(NoteEmbedding))
        except SQLAlchemyError as e:
            logger.warning("Vector count unavailable: %s", e)
            return None

    async def exists(self, note_id: int) -> bool:
        async with self._session_factory() as session:
            found = await session.scalar(
                select(NoteEmbedding.note_id).where(NoteEmbedding.note_id == note_id)
            )
        return found is not None
