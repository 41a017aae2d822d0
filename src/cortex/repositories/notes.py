"""
Note Repository

Data access layer for Note entities and their tag / source associations.
The only component that writes note rows: the enrichment coordinator,
the API routers and the maintenance services all go through it.

Key guarantees:
    - create: assigns sort_order = max + 1 in the INSERT itself.
    - update: touches only supplied fields, always refreshes updated_at,
      and never lets ai_status leave a terminal state.
    - list: normal views exclude deleted rows, and archived rows unless
      the archived view is requested.
    - tag linking is idempotent.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from sqlalchemy import delete, func, insert, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from cortex.core.exceptions import (
    NoteDeletedError,
    NotFoundError,
    StatusTransitionError,
    ValidationError,
)
from cortex.models import (
    AIStatus,
    Note,
    SourceContext,
    Tag,
    note_collections,
    note_tags,
)
from cortex.models.base import utcnow
from cortex.repositories.base import BaseRepository

logger = logging.getLogger(__name__)

# Columns a caller may set through update(); identity and creation time are immutable
UPDATABLE_FIELDS = frozenset(
    {
        "title",
        "summary",
        "content",
        "source_url",
        "source_type",
        "ai_status",
        "sort_order",
        "is_archived",
        "is_deleted",
    }
)


class NoteView(StrEnum):
    """Which slice of the corpus a list() call returns."""

    ALL = "all"
    TAG = "tag"
    SOURCE_TYPE = "source_type"
    COLLECTION = "collection"
    ARCHIVED = "archived"
    DELETED = "deleted"


@dataclass(frozen=True)
class NoteFilter:
    """List filter: a view plus the tag name / source type / collection id it needs."""

    view: NoteView = NoteView.ALL
    value: str | int | None = None

    @classmethod
    def by_tag(cls, name: str) -> NoteFilter:
        return cls(NoteView.TAG, name)

    @classmethod
    def by_source_type(cls, source_type: str) -> NoteFilter:
        return cls(NoteView.SOURCE_TYPE, source_type)

    @classmethod
    def by_collection(cls, collection_id: int) -> NoteFilter:
        return cls(NoteView.COLLECTION, collection_id)

    @classmethod
    def archived(cls) -> NoteFilter:
        return cls(NoteView.ARCHIVED)

    @classmethod
    def deleted(cls) -> NoteFilter:
        return cls(NoteView.DELETED)


class NoteRepository(BaseRepository[Note]):
    """
    Repository for notes, tags and source citations.

    Inherits get_by_id / get_all / _commit from BaseRepository and adds the
    note lifecycle (soft delete, restore, archive, purge), filtered listing,
    keyword search and the guarded status update.
    """

    def __init__(self) -> None:
        super().__init__(Note)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def create(self, session: AsyncSession, obj_in: Any) -> Note:
        """
        Insert a new pending note on top of the manual ordering.

        sort_order is computed by a scalar subquery inside the INSERT so
        the max+1 read and the write happen in one statement.
        """
        data = obj_in.model_dump() if hasattr(obj_in, "model_dump") else dict(obj_in)
        data.pop("ai_status", None)
        next_order = select(
            func.coalesce(func.max(Note.sort_order), 0) + 1
        ).scalar_subquery()

        note = Note(**data, ai_status=AIStatus.PENDING, sort_order=next_order)
        session.add(note)
        await self._commit(session)
        await session.refresh(note)
        logger.debug("Created note %d (sort_order=%d)", note.id, note.sort_order)
        return note

    async def get(self, session: AsyncSession, note_id: int) -> Note | None:
        """Get a note by id, including soft-deleted ones."""
        return await self.get_by_id(session, note_id)

    async def update(
        self,
        session: AsyncSession,
        note_id: int,
        fields: Mapping[str, Any],
        *,
        require_live: bool = False,
    ) -> None:
        """
        Update only the supplied fields and refresh updated_at.

        Status changes are applied with a conditional UPDATE so that a
        concurrent writer can never move a note out of a terminal state.

        Args:
            session: Database session.
            note_id: Note to update.
            fields: Column -> value mapping (unknown keys are rejected).
            require_live: Refuse the write if the note is soft-deleted.

        Raises:
            ValidationError: Unknown field names.
            StatusTransitionError: ai_status would go back to pending or
                leave a terminal state.
            NoteDeletedError: require_live and the note is in the trash.
            NotFoundError: No such note.
        """
        values = dict(fields)
        unknown = set(values) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Unknown note fields: {sorted(unknown)}")

        stmt = update(Note).where(Note.id == note_id)

        status = values.get("ai_status")
        if status is not None:
            status = AIStatus(status)
            if status is AIStatus.PENDING:
                raise StatusTransitionError(
                    f"Note {note_id} cannot re-enter pending",
                    {"note_id": note_id},
                )
            values["ai_status"] = status.value
            stmt = stmt.where(
                Note.ai_status.in_([AIStatus.PENDING.value, status.value])
            )

        if require_live:
            stmt = stmt.where(Note.is_deleted.is_(False))

        values["updated_at"] = utcnow()
        result = await session.execute(
            stmt.values(**values).execution_options(synchronize_session=False)
        )
        await self._commit(session)

        if result.rowcount:
            return

        # Nothing matched: work out which guard tripped
        current = await self.get(session, note_id)
        if current is None:
            raise NotFoundError(f"Note {note_id} not found", {"note_id": note_id})
        if require_live and current.is_deleted:
            raise NoteDeletedError(f"Note {note_id} is deleted", {"note_id": note_id})
        raise StatusTransitionError(
            f"Note {note_id} is {current.ai_status}, refusing {status}",
            {"note_id": note_id, "current": current.ai_status, "requested": status},
        )

    async def set_status(
        self, session: AsyncSession, note_id: int, status: AIStatus
    ) -> bool:
        """
        Move a pending note to a terminal status.

        Returns:
            False instead of raising when the note is gone or already terminal.
        """
        try:
            await self.update(session, note_id, {"ai_status": status})
        except (NotFoundError, StatusTransitionError) as e:
            logger.debug("Status %s not applied to note %d: %s", status, note_id, e)
            return False
        return True

    async def soft_delete(self, session: AsyncSession, note_id: int) -> None:
        """Move a note to the trash. Trash and archive are mutually exclusive."""
        await self.update(session, note_id, {"is_deleted": True, "is_archived": False})

    async def restore(self, session: AsyncSession, note_id: int) -> None:
        """Bring a note back from the trash."""
        await self.update(session, note_id, {"is_deleted": False})

    async def archive(
        self, session: AsyncSession, note_id: int, archived: bool = True
    ) -> None:
        """Archive or unarchive a live note. Trashed notes must be restored first."""
        await self.update(
            session, note_id, {"is_archived": archived}, require_live=True
        )

    async def purge(self, session: AsyncSession, note_id: int) -> bool:
        """
        Hard delete a note and everything it owns.

        Association and source rows are removed explicitly so the cascade
        does not depend on the backend enforcing foreign keys.

        Returns:
            True if a note row was deleted.
        """
        await self._delete_owned_rows(session, [note_id])
        result = await session.execute(delete(Note).where(Note.id == note_id))
        await self._commit(session)
        return bool(result.rowcount)

    async def empty_trash(self, session: AsyncSession) -> list[int]:
        """
        Purge every soft-deleted note in one transaction.

        Returns:
            Ids of the purged notes (callers drop their vector records).
        """
        result = await session.execute(select(Note.id).where(Note.is_deleted.is_(True)))
        note_ids = list(result.scalars().all())
        if not note_ids:
            return []

        await self._delete_owned_rows(session, note_ids)
        await session.execute(delete(Note).where(Note.id.in_(note_ids)))
        await self._commit(session)
        logger.info("Emptied trash: %d notes purged", len(note_ids))
        return note_ids

    @staticmethod
    async def _delete_owned_rows(session: AsyncSession, note_ids: list[int]) -> None:
        await session.execute(delete(note_tags).where(note_tags.c.note_id.in_(note_ids)))
        await session.execute(
            delete(note_collections).where(note_collections.c.note_id.in_(note_ids))
        )
        await session.execute(
            delete(SourceContext).where(SourceContext.note_id.in_(note_ids))
        )

    async def reorder(
        self,
        session: AsyncSession,
        note_ids: Sequence[int],
        sort_orders: Sequence[int],
    ) -> None:
        """Apply manual ordering: note_ids[i] gets sort_orders[i]."""
        if len(note_ids) != len(sort_orders):
            raise ValidationError("note_ids and sort_orders differ in length")

        now = utcnow()
        for note_id, order in zip(note_ids, sort_orders, strict=True):
            await session.execute(
                update(Note)
                .where(Note.id == note_id)
                .values(sort_order=order, updated_at=now)
                .execution_options(synchronize_session=False)
            )
        await self._commit(session)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def list(
        self,
        session: AsyncSession,
        note_filter: NoteFilter | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Sequence[Note]:
        """
        List notes for one view, newest manual order first.

        The trash view is ordered by deletion time (updated_at) instead.
        """
        note_filter = note_filter or NoteFilter()
        view = note_filter.view
        stmt = select(Note)

        if view is NoteView.DELETED:
            stmt = stmt.where(Note.is_deleted.is_(True)).order_by(
                Note.updated_at.desc()
            )
        else:
            stmt = stmt.where(
                Note.is_deleted.is_(False),
                Note.is_archived.is_(view is NoteView.ARCHIVED),
            )
            if view is NoteView.TAG:
                stmt = (
                    stmt.join(note_tags, note_tags.c.note_id == Note.id)
                    .join(Tag, Tag.id == note_tags.c.tag_id)
                    .where(Tag.name == note_filter.value)
                )
            elif view is NoteView.SOURCE_TYPE:
                stmt = stmt.where(
                    Note.source_type.icontains(str(note_filter.value), autoescape=True)
                )
            elif view is NoteView.COLLECTION:
                stmt = stmt.join(
                    note_collections, note_collections.c.note_id == Note.id
                ).where(note_collections.c.collection_id == note_filter.value)
            stmt = stmt.order_by(Note.sort_order.desc(), Note.created_at.desc())

        result = await session.execute(
            stmt.offset(offset)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return result.scalars().all()

    async def search(
        self,
        session: AsyncSession,
        query: str,
        limit: int = 20,
    ) -> Sequence[Note]:
        """
        Keyword search: case-insensitive substring over title, summary, content.

        Used directly by /search?type=keyword and as the fallback whenever
        semantic retrieval is unavailable.
        """
        stmt = (
            select(Note)
            .where(
                Note.is_deleted.is_(False),
                or_(
                    Note.title.icontains(query, autoescape=True),
                    Note.summary.icontains(query, autoescape=True),
                    Note.content.icontains(query, autoescape=True),
                ),
            )
            .order_by(Note.sort_order.desc(), Note.created_at.desc())
            .limit(limit)
        )
        result = await session.execute(stmt)
        return result.scalars().all()

    async def list_pending(self, session: AsyncSession) -> Sequence[Note]:
        """Live notes still waiting for enrichment (orphans after a restart)."""
        result = await session.execute(
            select(Note)
            .where(Note.ai_status == AIStatus.PENDING, Note.is_deleted.is_(False))
            .order_by(Note.id)
        )
        return result.scalars().all()

    async def list_live(self, session: AsyncSession) -> Sequence[Note]:
        """Every non-deleted note, archived ones included."""
        result = await session.execute(
            select(Note).where(Note.is_deleted.is_(False)).order_by(Note.id)
        )
        return result.scalars().all()

    async def list_completed_ids(self, session: AsyncSession) -> list[int]:
        """Ids of live, enriched notes (input of the reindex sweep)."""
        result = await session.execute(
            select(Note.id)
            .where(Note.ai_status == AIStatus.COMPLETED, Note.is_deleted.is_(False))
            .order_by(Note.id)
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Tags
    # ------------------------------------------------------------------

    async def get_or_create_tag(self, session: AsyncSession, name: str) -> Tag:
        """
        Fetch a tag by name, creating it on first use.

        Concurrent enrichment tasks race on popular names ("Uncategorized");
        the loser of the unique-constraint race re-reads the winner's row.
        """
        name = name.strip()
        if not name:
            raise ValidationError("Tag name must not be empty")

        tag = await self._get_tag_by_name(session, name)
        if tag is not None:
            return tag

        session.add(Tag(name=name))
        try:
            await session.commit()
        except IntegrityError:
            await session.rollback()
        tag = await self._get_tag_by_name(session, name)
        if tag is None:
            raise NotFoundError(f"Tag '{name}' vanished after creation")
        return tag

    async def _get_tag_by_name(self, session: AsyncSession, name: str) -> Tag | None:
        result = await session.execute(select(Tag).where(Tag.name == name))
        return result.scalars().first()

    async def link_tag(self, session: AsyncSession, note_id: int, tag_id: int) -> bool:
        """
        Attach a tag to a note. Linking twice is a no-op.

        Returns:
            True if a new association row was created.
        """
        existing = await session.execute(
            select(note_tags.c.note_id).where(
                note_tags.c.note_id == note_id, note_tags.c.tag_id == tag_id
            )
        )
        if existing.first() is not None:
            return False

        await session.execute(insert(note_tags).values(note_id=note_id, tag_id=tag_id))
        try:
            await session.commit()
        except IntegrityError:
            await session.rollback()
            return False
        return True

    async def unlink_tag(self, session: AsyncSession, note_id: int, tag_id: int) -> bool:
        result = await session.execute(
            delete(note_tags).where(
                note_tags.c.note_id == note_id, note_tags.c.tag_id == tag_id
            )
        )
        await self._commit(session)
        return bool(result.rowcount)

    async def get_tags(self, session: AsyncSession, note_id: int) -> list[Tag]:
        result = await session.execute(
            select(Tag)
            .join(note_tags, note_tags.c.tag_id == Tag.id)
            .where(note_tags.c.note_id == note_id)
            .order_by(Tag.name)
        )
        return list(result.scalars().all())

    async def get_tags_for_notes(
        self, session: AsyncSession, note_ids: Sequence[int]
    ) -> dict[int, list[Tag]]:
        """Tags for many notes in one query (list endpoints)."""
        tags: dict[int, list[Tag]] = {note_id: [] for note_id in note_ids}
        if not note_ids:
            return tags

        result = await session.execute(
            select(note_tags.c.note_id, Tag)
            .join(Tag, Tag.id == note_tags.c.tag_id)
            .where(note_tags.c.note_id.in_(note_ids))
            .order_by(Tag.name)
        )
        for note_id, tag in result.all():
            tags[note_id].append(tag)
        return tags

    async def list_tags(self, session: AsyncSession) -> list[tuple[Tag, int]]:
        """All tags with the number of live notes linked to each."""
        live_links = (
            select(note_tags.c.tag_id, note_tags.c.note_id)
            .join(Note, Note.id == note_tags.c.note_id)
            .where(Note.is_deleted.is_(False))
            .subquery()
        )
        result = await session.execute(
            select(Tag, func.count(live_links.c.note_id))
            .outerjoin(live_links, live_links.c.tag_id == Tag.id)
            .group_by(Tag.id)
            .order_by(Tag.name)
        )
        return [(tag, count) for tag, count in result.all()]

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    async def add_sources(
        self,
        session: AsyncSession,
        note_id: int,
        sources: Sequence[Mapping[str, str | None]],
    ) -> int:
        """Persist producer-supplied citations against a note."""
        for source in sources:
            session.add(
                SourceContext(
                    note_id=note_id,
                    title=source.get("title"),
                    url=source.get("url"),
                    snippet=source.get("snippet"),
                )
            )
        await self._commit(session)
        return len(sources)

    async def get_sources(
        self, session: AsyncSession, note_id: int
    ) -> list[SourceContext]:
        result = await session.execute(
            select(SourceContext)
            .where(SourceContext.note_id == note_id)
            .order_by(SourceContext.id)
        )
        return list(result.scalars().all())


# Module-level instance for convenience imports
note_repository = NoteRepository()
