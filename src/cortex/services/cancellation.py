"""
Cancellation Registry

In-memory map of note id -> cancellation handle for running enrichment
tasks. Owned by one EnrichmentCoordinator (never module-level), so several
coordinators can coexist in one process.

Cancellation is cooperative: tripping a handle only takes effect when
the task reaches its next checkpoint.

All access happens on the event loop thread, so plain dict operations
are atomic with respect to the tasks racing on it.
"""

import asyncio
import logging

logger = logging.getLogger(__name__)


class AlreadyRegisteredError(RuntimeError):
    """A handle already exists for this note id (single-flight violated)."""


class CancellationHandle:
    """Cooperative cancellation signal for one enrichment task."""

    def __init__(self, note_id: int) -> None:
        self.note_id = note_id
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def __repr__(self) -> str:
        return f"<CancellationHandle(note_id={self.note_id}, cancelled={self.cancelled})>"


class CancellationRegistry:
    """At most one handle per note id."""

    def __init__(self) -> None:
        self._handles: dict[int, CancellationHandle] = {}

    def register(self, note_id: int) -> CancellationHandle:
        if note_id in self._handles:
            raise AlreadyRegisteredError(f"Enrichment already running for note {note_id}")
        handle = CancellationHandle(note_id)
        self._handles[note_id] = handle
        return handle

    def get(self, note_id: int) -> CancellationHandle | None:
        return self._handles.get(note_id)

    def cancel(self, note_id: int) -> bool:
        """Trip the handle for note_id. Returns False if no task is registered."""
        handle = self._handles.get(note_id)
        if handle is None:
            return False
        handle.cancel()
        logger.info("Cancellation requested for note %d", note_id)
        return True

    def cancel_all(self) -> int:
        for handle in self._handles.values():
            handle.cancel()
        return len(self._handles)

    def release(self, handle: CancellationHandle) -> None:
        """Deregister, only if the registered handle is this one."""
        if self._handles.get(handle.note_id) is handle:
            del self._handles[handle.note_id]

    def __contains__(self, note_id: object) -> bool:
        return note_id in self._handles

    def __len__(self) -> int:
        return len(self._handles)
