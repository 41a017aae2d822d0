"""
Retrieval Chat Service

Retrieval-augmented answers over the note corpus.

Pipeline:
    1. Probe the AI backend; offline fails fast with ServiceUnavailableError
       (the caller decides whether to fall back to keyword search).
    2. Embed the query and fetch the nearest notes from the vector index.
    3. Load each note, skip deleted ones, build a context block per note.
    4. System prompt with the assembled context + the user query.
    5. Stream: sources event, content events, then done (or error).
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Final

from sqlalchemy.ext.asyncio import AsyncSession

from cortex.core.exceptions import ServiceUnavailableError, ValidationError
from cortex.repositories.notes import NoteRepository
from cortex.schemas.chat import ChatResponse, SourceRef
from cortex.services.ai import AIClient, ChatMessage
from cortex.services.vector_index import VectorIndex

logger = logging.getLogger(__name__)

SYSTEM_PROMPT: Final[
    str
] = """You are a helpful knowledge assistant. Answer using the Knowledge Base below.
If the answer is not in the Knowledge Base, say so clearly.
Answer in the language of the question. Keep it concise.

## Knowledge Base:
{context}"""

NO_CONTEXT: Final[str] = "(No relevant notes found)"
CONTEXT_SEPARATOR: Final[str] = "\n\n---\n\n"


@dataclass
class ChatContext:
    """Everything needed to generate an answer, resolved before streaming starts."""

    query: str
    sources: list[SourceRef] = field(default_factory=list)
    messages: list[ChatMessage] = field(default_factory=list)


def build_messages(query: str, context_parts: list[str]) -> list[ChatMessage]:
    context = CONTEXT_SEPARATOR.join(context_parts) or NO_CONTEXT
    return [
        {"role": "system", "content": SYSTEM_PROMPT.format(context=context)},
        {"role": "user", "content": query},
    ]


class ChatService:
    """
    Usage::

        context = await chat_service.prepare(session, "What is pgvector?")
        async for event in chat_service.stream(context):
            ...
    """

    def __init__(
        self,
        repository: NoteRepository,
        ai: AIClient,
        vector_index: VectorIndex,
        top_k: int = 5,
        context_char_limit: int = 1000,
    ) -> None:
        self._repository = repository
        self._ai = ai
        self._vector_index = vector_index
        self._top_k = top_k
        self._context_char_limit = context_char_limit

    async def prepare(self, session: AsyncSession, query: str) -> ChatContext:
        """
        Retrieve sources and build the prompt.

        Raises:
            ValidationError: Empty query.
            ServiceUnavailableError: AI backend offline.
            AIServiceError / VectorIndexError: Retrieval failed.
        """
        query = query.strip()
        if not query:
            raise ValidationError("query is required")

        if not await self._ai.health_check():
            raise ServiceUnavailableError("AI backend offline", {"offline": True})

        embedding = await self._ai.embed(query)
        matches = await self._vector_index.query(embedding, self._top_k)

        sources: list[SourceRef] = []
        context_parts: list[str] = []
        for match in matches:
            note = await self._repository.get(session, match.id)
            if note is None or note.is_deleted:
                continue
            body = note.content or note.summary or ""
            context_parts.append(f"## {note.title}\n{body[: self._context_char_limit]}")
            sources.append(
                SourceRef(id=note.id, title=note.title, summary=note.summary, score=match.score)
            )

        logger.info(
            "Chat context: %d matches, %d usable sources", len(matches), len(sources)
        )
        return ChatContext(
            query=query, sources=sources, messages=build_messages(query, context_parts)
        )

    async def stream(self, context: ChatContext) -> AsyncIterator[dict[str, Any]]:
        """
        Answer events in order: one sources event, content chunks, then
        exactly one terminal done or error event. No retry on failure.
        """
        yield {
            "type": "sources",
            "sources": [source.model_dump() for source in context.sources],
        }
        try:
            async for chunk in self._ai.stream_complete(context.messages):
                yield {"type": "content", "content": chunk}
        except Exception as e:
            logger.error("Chat stream failed: %s", e)
            yield {"type": "error", "error": str(e)}
            return
        yield {"type": "done"}

    async def answer(self, session: AsyncSession, query: str) -> ChatResponse:
        """Non-streaming answer: drain the stream and return the full text."""
        context = await self.prepare(session, query)
        chunks = [chunk async for chunk in self._ai.stream_complete(context.messages)]
        return ChatResponse(answer="".join(chunks), sources=context.sources)
