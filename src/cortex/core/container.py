"""
Service Container

Builds and owns the process-wide collaborators: engine, session factory,
AI client, vector index, enrichment coordinator and the services built on
top of them. One instance lives on app.state for the application lifetime;
tests build their own around an aiosqlite engine and fake backends.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from cortex.core.config import Settings, settings as default_settings
from cortex.core.database import build_engine, build_session_factory, init_db, wait_for_db
from cortex.repositories.collections import CollectionRepository
from cortex.repositories.notes import NoteRepository
from cortex.services.ai import AIClient, create_ai_client
from cortex.services.cancellation import CancellationRegistry
from cortex.services.chat import ChatService
from cortex.services.curation import CollectionOrganizer, TitleRegenerator
from cortex.services.enrichment import EnrichmentCoordinator
from cortex.services.ingestion import NoteIngestor
from cortex.services.search import SearchService
from cortex.services.vector_index import PgVectorIndex, VectorIndex

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    notes: NoteRepository
    collections: CollectionRepository
    ai: AIClient
    vector_index: VectorIndex
    coordinator: EnrichmentCoordinator
    ingestor: NoteIngestor
    chat: ChatService
    search: SearchService
    organizer: CollectionOrganizer
    titles: TitleRegenerator

    async def start(self, wait: bool = True) -> None:
        """
        Startup: database reachability, schema bootstrap, orphan recovery.

        Raises:
            RuntimeError: Database unreachable after all retries.
        """
        if wait and not await wait_for_db(self.engine):
            logger.critical("Could not connect to the database. Shutting down.")
            raise RuntimeError("Database connection failed")

        if self.settings.CREATE_TABLES:
            await init_db(self.engine)

        if self.settings.RESUME_PENDING_ON_STARTUP:
            await self.coordinator.resume_pending()

    async def stop(self) -> None:
        await self.coordinator.shutdown()
        await self.ai.aclose()
        await self.engine.dispose()


def build_services(
    settings: Settings | None = None,
    *,
    engine: AsyncEngine | None = None,
    ai: AIClient | None = None,
    vector_index: VectorIndex | None = None,
) -> Services:
    """Wire every collaborator; any of engine / ai / vector_index may be overridden."""
    settings = settings or default_settings
    engine = engine or build_engine(settings.DATABASE_URL, pool_pre_ping=True)
    session_factory = build_session_factory(engine)

    notes = NoteRepository()
    collections = CollectionRepository()
    ai = ai or create_ai_client(settings)
    vector_index = vector_index or PgVectorIndex(session_factory)

    coordinator = EnrichmentCoordinator(
        session_factory,
        notes,
        ai,
        vector_index,
        registry=CancellationRegistry(),
        embed_char_limit=settings.EMBED_CHAR_LIMIT,
    )

    return Services(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        notes=notes,
        collections=collections,
        ai=ai,
        vector_index=vector_index,
        coordinator=coordinator,
        ingestor=NoteIngestor(notes, coordinator),
        chat=ChatService(
            notes,
            ai,
            vector_index,
            top_k=settings.CHAT_TOP_K,
            context_char_limit=settings.CONTEXT_CHAR_LIMIT,
        ),
        search=SearchService(notes, ai, vector_index, top_k=settings.SEARCH_TOP_K),
        organizer=CollectionOrganizer(notes, collections, ai),
        titles=TitleRegenerator(notes, ai),
    )
