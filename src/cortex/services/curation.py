"""
Curation Services

AI-assisted maintenance of an existing corpus:
    - CollectionOrganizer: group the notes of one source type into topic
      collections using a JSON-mode completion.
    - TitleRegenerator: replace placeholder or overly long titles.

Both require a live AI backend and fail fast with ServiceUnavailableError
otherwise.
"""

from __future__ import annotations

import logging
from typing import Final

from sqlalchemy.ext.asyncio import AsyncSession

from cortex.core.exceptions import AIServiceError, ServiceUnavailableError
from cortex.models import Note
from cortex.repositories.collections import CollectionRepository
from cortex.repositories.notes import NoteFilter, NoteRepository
from cortex.services import annotations
from cortex.services.ai import AIClient

logger = logging.getLogger(__name__)

ORGANIZE_PROMPT: Final[
    str
] = """You are an expert content organizer.
Group the notes you are given into logical topic collections.

Rules:
1. Create 3-8 distinct collections based on the topics found.
2. Assign each note to EXACTLY ONE collection.
3. Collection names are concise (2-5 words).
4. Return JSON ONLY in this format:
{"collections": [{"name": "Collection Name", "note_ids": [1, 2]}]}"""

ORGANIZE_NOTE_LIMIT: Final[int] = 200
TITLE_MAX_KEEP: Final[int] = 30


def needs_new_title(title: str) -> bool:
    """The provisional title and titles longer than TITLE_MAX_KEEP characters."""
    return len(title) > TITLE_MAX_KEEP or title == annotations.PROVISIONAL_TITLE


class CollectionOrganizer:
    def __init__(
        self,
        notes: NoteRepository,
        collections: CollectionRepository,
        ai: AIClient,
    ) -> None:
        self._notes = notes
        self._collections = collections
        self._ai = ai

    async def organize(self, session: AsyncSession, source_type: str) -> int:
        """
        Group the live notes of one source type into collections.

        Existing collections are reused by name. Note ids the model invents
        are ignored.

        Returns:
            Number of collections the model proposed (0 if no notes).

        Raises:
            ServiceUnavailableError: AI backend offline.
            AIServiceError: Reply was not usable JSON.
        """
        notes = await self._notes.list(
            session, NoteFilter.by_source_type(source_type), limit=ORGANIZE_NOTE_LIMIT
        )
        if not notes:
            return 0

        if not await self._ai.health_check():
            raise ServiceUnavailableError("AI backend offline", {"offline": True})

        listing = "\n".join(
            f"- ID: {note.id}\n  Title: {note.title}\n  Summary: {note.summary or ''}"
            for note in notes
        )
        result = await annotations.generate_json(
            self._ai, ORGANIZE_PROMPT, f"Notes ({source_type}):\n{listing}"
        )
        proposed = result.get("collections") if isinstance(result, dict) else None
        if not isinstance(proposed, list):
            raise AIServiceError("AI reply has no 'collections' list", {"reply": result})

        known_ids = {note.id for note in notes}
        for group in proposed:
            name = str(group.get("name") or "").strip() if isinstance(group, dict) else ""
            if not name:
                continue
            collection = await self._collections.get_or_create(session, name)
            for raw_id in group.get("note_ids") or []:
                try:
                    note_id = int(raw_id)
                except (TypeError, ValueError):
                    continue
                if note_id in known_ids:
                    await self._collections.add_note(session, collection.id, note_id)

        logger.info(
            "Organized %d %s notes into %d collections",
            len(notes),
            source_type,
            len(proposed),
        )
        return len(proposed)


class TitleRegenerator:
    def __init__(self, notes: NoteRepository, ai: AIClient) -> None:
        self._notes = notes
        self._ai = ai

    async def regenerate(self, session: AsyncSession) -> int:
        """
        Regenerate titles that are placeholders or too long.

        A failure on one note is logged and skipped.

        Returns:
            Number of notes whose title changed.
        """
        if not await self._ai.health_check():
            raise ServiceUnavailableError("AI backend offline", {"offline": True})

        candidates: list[Note] = [
            note for note in await self._notes.list_live(session) if needs_new_title(note.title)
        ]
        logger.info("Regenerating titles for %d notes", len(candidates))

        updated = 0
        for note in candidates:
            text = note.content or note.summary
            if not text:
                continue
            try:
                title = await annotations.generate_title(self._ai, text)
            except AIServiceError as e:
                logger.warning("Title generation failed for note %d: %s", note.id, e)
                continue
            await self._notes.update(session, note.id, {"title": title})
            updated += 1
        return updated
