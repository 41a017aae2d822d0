"""
Enrichment Coordinator

Launches, tracks and cancels the per-note background task that turns raw
captured text into an annotated, searchable note.

Pipeline (one task per note):
    1. Register a cancellation handle, schedule the task, return at once.
    2. Checkpoint: abort if the note is gone/deleted (silently) or the
       handle was tripped (-> cancelled).
    3. Probe the AI backend. Offline -> fallback values, no embedding.
    4. Online -> summary, tags and embedding concurrently, each stage
       falling back on its own failure; then the title.
    5. Checkpoint again, before any write.
    6. Write annotations, tags and sources, then mark the note completed.
    7. Upsert the embedding into the vector index if one was produced
       and the note was not purged meanwhile.
    8. Any unexpected error -> failed. The handle is always released.

Status is monotonic (pending -> completed | failed | cancelled), enforced
by the repository's guarded update rather than by this module.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import TypeVar

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cortex.core.exceptions import (
    NoteDeletedError,
    NotFoundError,
    StatusTransitionError,
    VectorIndexError,
)
from cortex.models import AIStatus
from cortex.repositories.notes import NoteRepository
from cortex.services import annotations
from cortex.services.ai import AIClient
from cortex.services.cancellation import CancellationHandle, CancellationRegistry
from cortex.services.vector_index import VectorIndex

logger = logging.getLogger(__name__)

T = TypeVar("T")


class EnrichmentCancelled(Exception):
    """Raised at a checkpoint once the note has been marked cancelled."""


@dataclass
class Enrichment:
    """Annotations produced for one note (generated or fallback)."""

    title: str
    summary: str
    tags: list[str] = field(default_factory=list)
    embedding: list[float] = field(default_factory=list)


class EnrichmentCoordinator:
    """
    Background enrichment orchestrator.

    Every collaborator is injected, including the cancellation registry,
    so independent coordinators (e.g. one per test) never share state.

    Usage::

        coordinator = EnrichmentCoordinator(session_factory, note_repository,
                                            ai_client, vector_index)
        coordinator.launch(note.id, note.content, fallback_title=note.title)
        ...
        await coordinator.shutdown()
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        repository: NoteRepository,
        ai: AIClient,
        vector_index: VectorIndex,
        registry: CancellationRegistry | None = None,
        embed_char_limit: int = 2000,
    ) -> None:
        self._session_factory = session_factory
        self._repository = repository
        self._ai = ai
        self._vector_index = vector_index
        self.registry = registry or CancellationRegistry()
        self._embed_char_limit = embed_char_limit
        # Strong references: the loop only keeps weak ones to running tasks
        self._tasks: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def launch(
        self,
        note_id: int,
        content: str,
        fallback_title: str | None = None,
        context: Sequence[Mapping[str, str | None]] | None = None,
    ) -> asyncio.Task:
        """
        Register and schedule enrichment for a freshly created note.

        Must be called from inside the running event loop. The caller is
        not expected to await the returned task.

        Args:
            fallback_title: Title kept when no title is generated (AI
                offline or the title stage failed). Defaults to the
                provisional title.
            context: Producer-supplied source citations to persist.

        Raises:
            AlreadyRegisteredError: A task is already running for note_id.
        """
        handle = self.registry.register(note_id)
        task = asyncio.create_task(
            self._run(handle, content, fallback_title, list(context or [])),
            name=f"enrich-note-{note_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info("Enrichment launched for note %d", note_id)
        return task

    async def cancel(self, note_id: int) -> bool:
        """
        Request cancellation of a note's enrichment.

        Trips the running task's handle if there is one. A note that is
        still pending without a task (e.g. orphaned by a restart) is moved
        to cancelled directly.

        Returns:
            True if a cancellation was requested or applied, False if
            there was nothing to cancel (already finished, unknown note).
        """
        if self.registry.cancel(note_id):
            return True

        async with self._session_factory() as session:
            cancelled = await self._repository.set_status(
                session, note_id, AIStatus.CANCELLED
            )
        if cancelled:
            logger.info("Note %d cancelled without a running task", note_id)
        return cancelled

    async def resume_pending(self) -> int:
        """
        Relaunch enrichment for live notes left pending by a previous process.

        Producer-supplied source context is not persisted before enrichment
        and cannot be recovered.

        Returns:
            Number of tasks launched.
        """
        async with self._session_factory() as session:
            pending = await self._repository.list_pending(session)

        launched = 0
        for note in pending:
            if note.id in self.registry:
                continue
            self.launch(note.id, note.content, fallback_title=note.title)
            launched += 1

        if launched:
            logger.info("Resumed enrichment for %d pending notes", launched)
        return launched

    async def shutdown(self, timeout: float = 10.0) -> None:
        """Trip every handle and wait for outstanding tasks to wind down."""
        tripped = self.registry.cancel_all()
        if not self._tasks:
            return

        logger.info("Waiting for %d enrichment tasks (%d cancelled)", len(self._tasks), tripped)
        _, still_running = await asyncio.wait(set(self._tasks), timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            await asyncio.gather(*still_running, return_exceptions=True)

    async def wait_idle(self) -> None:
        """Wait until every launched task has finished."""
        while self._tasks:
            await asyncio.gather(*set(self._tasks), return_exceptions=True)

    @property
    def active(self) -> int:
        return len(self._tasks)

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _run(
        self,
        handle: CancellationHandle,
        content: str,
        fallback_title: str | None,
        context: list[Mapping[str, str | None]],
    ) -> AIStatus | None:
        """
        Task body.

        Returns:
            The status this task wrote, or None when it aborted without
            writing (note deleted, or status already terminal).
        """
        note_id = handle.note_id
        try:
            # No connection is held while the AI backend works
            async with self._session_factory() as session:
                await self._checkpoint(session, handle)
            enrichment = await self._enrich(note_id, content, fallback_title)
            async with self._session_factory() as session:
                await self._checkpoint(session, handle)
                await self._write(session, note_id, enrichment, context)

            await self._index(note_id, enrichment)
            logger.info("Enrichment completed for note %d", note_id)
            return AIStatus.COMPLETED

        except EnrichmentCancelled:
            return AIStatus.CANCELLED
        except NotFoundError:
            # Includes NoteDeletedError raised by the guarded writes
            logger.info("Note %d gone or deleted, enrichment aborted", note_id)
            return None
        except StatusTransitionError as e:
            logger.info("Note %d left pending elsewhere, results dropped: %s", note_id, e)
            return None
        except Exception:
            logger.exception("Enrichment failed for note %d", note_id)
            return await self._mark_failed(note_id)
        finally:
            self.registry.release(handle)

    async def _checkpoint(self, session: AsyncSession, handle: CancellationHandle) -> None:
        """
        Stop the task if the note went away or cancellation was requested.

        Deletion leaves the status as it is; cancellation is recorded.

        Raises:
            NoteDeletedError / NotFoundError: Note in the trash or purged.
            EnrichmentCancelled: Handle tripped, note now cancelled.
        """
        note = await self._repository.get(session, handle.note_id)
        if note is None:
            raise NotFoundError(f"Note {handle.note_id} not found")
        if note.is_deleted:
            raise NoteDeletedError(f"Note {handle.note_id} is deleted")
        if handle.cancelled:
            await self._repository.set_status(session, handle.note_id, AIStatus.CANCELLED)
            logger.info("Enrichment cancelled for note %d", handle.note_id)
            raise EnrichmentCancelled(handle.note_id)

    async def _enrich(
        self, note_id: int, content: str, fallback_title: str | None
    ) -> Enrichment:
        title = fallback_title or annotations.PROVISIONAL_TITLE
        summary = annotations.fallback_summary(content)
        tags = list(annotations.FALLBACK_TAGS)

        if not await self._ai.health_check():
            logger.info("AI backend offline, fallback annotations for note %d", note_id)
            return Enrichment(title=title, summary=summary, tags=tags)

        # Independent stages: join all, judge each result on its own
        summary, tags, embedding = await asyncio.gather(
            self._stage("summary", note_id, annotations.summarize(self._ai, content), summary),
            self._stage("tags", note_id, annotations.generate_tags(self._ai, content), tags),
            self._stage(
                "embedding",
                note_id,
                self._ai.embed(content[: self._embed_char_limit]),
                [],
            ),
        )
        title = await self._stage(
            "title", note_id, annotations.generate_title(self._ai, content), title
        )
        return Enrichment(title=title, summary=summary, tags=tags, embedding=embedding)

    @staticmethod
    async def _stage(name: str, note_id: int, call: Awaitable[T], fallback: T) -> T:
        try:
            return await call
        except Exception as e:
            logger.warning(
                "Stage %s failed for note %d, using fallback (%s: %s)",
                name,
                note_id,
                type(e).__name__,
                e,
            )
            return fallback

    async def _write(
        self,
        session: AsyncSession,
        note_id: int,
        enrichment: Enrichment,
        context: list[Mapping[str, str | None]],
    ) -> None:
        """
        Persist annotations, then flip the status.

        Status goes last so that a failure in any earlier write can still
        end the note in failed.
        """
        await self._repository.update(
            session,
            note_id,
            {"title": enrichment.title, "summary": enrichment.summary},
            require_live=True,
        )
        for name in enrichment.tags:
            tag = await self._repository.get_or_create_tag(session, name)
            await self._repository.link_tag(session, note_id, tag.id)
        if context:
            await self._repository.add_sources(session, note_id, context)

        await self._repository.update(
            session, note_id, {"ai_status": AIStatus.COMPLETED}, require_live=True
        )

    async def _index(self, note_id: int, enrichment: Enrichment) -> None:
        if len(enrichment.embedding) == 0:
            return
        async with self._session_factory() as session:
            if await self._repository.get(session, note_id) is None:
                logger.info("Note %d purged before indexing, upsert skipped", note_id)
                return
        try:
            await self._vector_index.upsert(
                note_id,
                enrichment.embedding,
                {"title": enrichment.title, "summary": enrichment.summary},
            )
        except VectorIndexError as e:
            # Note stays completed but unindexed; the reindex sweep repairs it
            logger.error("Vector upsert failed for note %d: %s", note_id, e)

    async def _mark_failed(self, note_id: int) -> AIStatus | None:
        try:
            async with self._session_factory() as session:
                if await self._repository.set_status(session, note_id, AIStatus.FAILED):
                    return AIStatus.FAILED
        except Exception:
            logger.exception("Could not mark note %d as failed", note_id)
        return None
