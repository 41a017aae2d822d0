"""
Collection Repository

Data access for user- and AI-curated note groups. Membership lives in the
note_collections association table; linking is idempotent.
"""

from collections.abc import Sequence

from sqlalchemy import delete, func, insert, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from cortex.core.exceptions import NotFoundError, ValidationError
from cortex.models import Collection, Note, note_collections
from cortex.repositories.base import BaseRepository


class CollectionRepository(BaseRepository[Collection]):
    """Repository for Collection CRUD and membership."""

    def __init__(self) -> None:
        super().__init__(Collection)

    async def create(
        self, session: AsyncSession, obj_in, description: str | None = None
    ) -> Collection:
        """
        Create a collection by name.

        Accepts a schema/dict (BaseRepository signature) or a bare name.
        """
        if isinstance(obj_in, str):
            data = {"name": obj_in, "description": description}
        else:
            data = obj_in.model_dump() if hasattr(obj_in, "model_dump") else dict(obj_in)
        data["name"] = (data.get("name") or "").strip()
        if not data["name"]:
            raise ValidationError("Collection name must not be empty")
        return await super().create(session, data)

    async def get(self, session: AsyncSession, collection_id: int) -> Collection | None:
        return await self.get_by_id(session, collection_id)

    async def get_by_name(self, session: AsyncSession, name: str) -> Collection | None:
        result = await session.execute(
            select(Collection).where(Collection.name == name)
        )
        return result.scalars().first()

    async def get_or_create(self, session: AsyncSession, name: str) -> Collection:
        """Reuse an existing collection with this name, otherwise create it."""
        existing = await self.get_by_name(session, name.strip())
        if existing is not None:
            return existing
        return await self.create(session, name)

    async def list_with_counts(
        self, session: AsyncSession
    ) -> list[tuple[Collection, int]]:
        """All collections, each with the number of live notes it holds."""
        live_members = (
            select(note_collections.c.collection_id, note_collections.c.note_id)
            .join(Note, Note.id == note_collections.c.note_id)
            .where(Note.is_deleted.is_(False))
            .subquery()
        )
        result = await session.execute(
            select(Collection, func.count(live_members.c.note_id))
            .outerjoin(live_members, live_members.c.collection_id == Collection.id)
            .group_by(Collection.id)
            .order_by(Collection.created_at.desc())
        )
        return [(collection, count) for collection, count in result.all()]

    async def remove(self, session: AsyncSession, collection_id: int) -> bool:
        """Delete a collection. Member notes are untouched."""
        await session.execute(
            delete(note_collections).where(
                note_collections.c.collection_id == collection_id
            )
        )
        result = await session.execute(
            delete(Collection).where(Collection.id == collection_id)
        )
        await self._commit(session)
        return bool(result.rowcount)

    async def add_note(
        self, session: AsyncSession, collection_id: int, note_id: int
    ) -> bool:
        """
        Put a note into a collection. Adding twice is a no-op.

        Raises:
            NotFoundError: Collection or note does not exist.
        """
        if await self.get(session, collection_id) is None:
            raise NotFoundError(
                f"Collection {collection_id} not found",
                {"collection_id": collection_id},
            )
        if await session.get(Note, note_id) is None:
            raise NotFoundError(f"Note {note_id} not found", {"note_id": note_id})

        existing = await session.execute(
            select(note_collections.c.note_id).where(
                note_collections.c.collection_id == collection_id,
                note_collections.c.note_id == note_id,
            )
        )
        if existing.first() is not None:
            return False

        await session.execute(
            insert(note_collections).values(
                collection_id=collection_id, note_id=note_id
            )
        )
        try:
            await session.commit()
        except IntegrityError:
            await session.rollback()
            return False
        return True

    async def remove_note(
        self, session: AsyncSession, collection_id: int, note_id: int
    ) -> bool:
        result = await session.execute(
            delete(note_collections).where(
                note_collections.c.collection_id == collection_id,
                note_collections.c.note_id == note_id,
            )
        )
        await self._commit(session)
        return bool(result.rowcount)

    async def get_note_collections(
        self, session: AsyncSession, note_id: int
    ) -> Sequence[Collection]:
        result = await session.execute(
            select(Collection)
            .join(note_collections, note_collections.c.collection_id == Collection.id)
            .where(note_collections.c.note_id == note_id)
            .order_by(Collection.name)
        )
        return result.scalars().all()


collection_repository = CollectionRepository()
