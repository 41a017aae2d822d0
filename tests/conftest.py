"""
Pytest Configuration and Fixtures

Shared fixtures for the unit suite (file-backed SQLite through aiosqlite,
scripted fake AI backend, in-memory vector index) and for the live
integration tests that need a running stack.
"""

import os

from dotenv import load_dotenv

# ---------------------------------------------------------------------------
# Test environment defaults. MUST be before any cortex imports.
#
# 1. Load .env first so that Docker-matching credentials are available.
# 2. setdefault fills in anything still missing (CI runners, fresh clones
#    without a .env file) so that pydantic Settings validation doesn't crash.
# ---------------------------------------------------------------------------
load_dotenv()  # .env → os.environ (no-op if file is missing)

_test_env = {
    "POSTGRES_USER": "cortex",
    "POSTGRES_PASSWORD": "cortex_password",
    "POSTGRES_HOST": "localhost",
    "POSTGRES_PORT": "5432",
    "POSTGRES_DB": "cortex_db",
    "AI_PROVIDER": "ollama",
}
for _key, _value in _test_env.items():
    os.environ.setdefault(_key, _value)

# ---------------------------------------------------------------------------
# Imports (safe now that env vars are set)
# ---------------------------------------------------------------------------
import asyncio  # noqa: E402
import math  # noqa: E402
import time  # noqa: E402
from collections.abc import AsyncGenerator, AsyncIterator, Generator  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402

from cortex.core.database import build_engine, build_session_factory, init_db  # noqa: E402
from cortex.core.exceptions import ServiceUnavailableError, VectorIndexError  # noqa: E402
from cortex.repositories.collections import CollectionRepository  # noqa: E402
from cortex.repositories.notes import NoteRepository  # noqa: E402
from cortex.services import annotations  # noqa: E402
from cortex.services.ai import AIClient  # noqa: E402
from cortex.services.enrichment import EnrichmentCoordinator  # noqa: E402
from cortex.services.vector_index import VectorIndex, VectorMatch  # noqa: E402

BASE_URL = os.getenv("CORTEX_API_URL", "http://localhost:8000")


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeAIClient(AIClient):
    """
    Scripted AI backend.

    Completions are routed by system prompt, so each enrichment stage can
    be given its own reply or failure. ``gate`` (an asyncio.Event) holds
    the summary stage open until the test releases it; ``entered`` is set
    once the summary stage has started.
    """

    def __init__(
        self,
        *,
        online: bool = True,
        summary: str = "S",
        tags: str = "a, b",
        title: str = "T",
        embedding: list[float] | None = None,
        chunks: tuple[str, ...] = ("Hello", " world"),
        json_reply: str = '{"collections": []}',
    ) -> None:
        self.online = online
        self.summary = summary
        self.tags = tags
        self.title = title
        self.embedding = [0.1, 0.2] if embedding is None else embedding
        self.chunks = chunks
        self.json_reply = json_reply
        self.failures: dict[str, Exception] = {}
        self.stream_error: Exception | None = None
        self.gate: asyncio.Event | None = None
        self.entered = asyncio.Event()
        self.calls: list[str] = []
        self.messages: list[list[dict]] = []

    def _fail(self, stage: str) -> None:
        self.calls.append(stage)
        if stage in self.failures:
            raise self.failures[stage]

    async def health_check(self) -> bool:
        self.calls.append("health")
        return self.online

    async def embed(self, text: str) -> list[float]:
        self._fail("embedding")
        return list(self.embedding)

    async def complete(self, messages, *, json_mode: bool = False) -> str:
        self.messages.append(list(messages))
        if json_mode:
            self._fail("json")
            return self.json_reply

        system = messages[0]["content"]
        if system == annotations.SUMMARY_PROMPT:
            self.entered.set()
            if self.gate is not None:
                await self.gate.wait()
            self._fail("summary")
            return self.summary
        if system == annotations.TAGS_PROMPT:
            self._fail("tags")
            return self.tags
        if system == annotations.TITLE_PROMPT:
            self._fail("title")
            return self.title
        self._fail("complete")
        return "".join(self.chunks)

    async def stream_complete(self, messages) -> AsyncIterator[str]:
        self.messages.append(list(messages))
        self.calls.append("stream")
        for chunk in self.chunks:
            yield chunk
        if self.stream_error is not None:
            raise self.stream_error


class FakeVectorIndex(VectorIndex):
    """In-memory cosine index."""

    def __init__(self) -> None:
        self.records: dict[int, tuple[list[float], dict[str, str]]] = {}
        self.upserts: list[int] = []
        self.fail_query = False

    async def upsert(self, note_id, vector, metadata) -> None:
        self.upserts.append(note_id)
        self.records[note_id] = (list(vector), dict(metadata))

    async def query(self, vector, top_k) -> list[VectorMatch]:
        if self.fail_query:
            raise VectorIndexError("index unavailable")
        scored = [
            VectorMatch(id=note_id, score=_cosine(vector, stored), metadata=meta)
            for note_id, (stored, meta) in self.records.items()
        ]
        scored.sort(key=lambda match: match.score, reverse=True)
        return scored[:top_k]

    async def delete(self, note_id) -> None:
        self.records.pop(note_id, None)

    async def count(self) -> int:
        return len(self.records)

    async def exists(self, note_id) -> bool:
        return note_id in self.records


def _cosine(a, b) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """
    Fresh SQLite database per test.

    File-backed with NullPool so that every session (including the ones
    opened by background tasks) gets its own connection.
    """
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'cortex.db'}", poolclass=NullPool)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def repo() -> NoteRepository:
    return NoteRepository()


@pytest.fixture
def collection_repo() -> CollectionRepository:
    return CollectionRepository()


@pytest.fixture
def fake_ai() -> FakeAIClient:
    return FakeAIClient()


@pytest.fixture
def fake_index() -> FakeVectorIndex:
    return FakeVectorIndex()


@pytest_asyncio.fixture
async def coordinator(
    session_factory, repo, fake_ai, fake_index
) -> AsyncGenerator[EnrichmentCoordinator, None]:
    coordinator = EnrichmentCoordinator(session_factory, repo, fake_ai, fake_index)
    yield coordinator
    await coordinator.shutdown(timeout=1.0)


@pytest.fixture
def offline_error() -> ServiceUnavailableError:
    return ServiceUnavailableError("connection refused")


# ---------------------------------------------------------------------------
# Live stack fixtures (tests/integration)
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def wait_for_api():
    """
    Block until the API is ready; skip live tests when no stack is running.

    Polls /api/health with 1s intervals for up to 10s.
    """
    url = f"{BASE_URL}/api/health"
    timeout = 10
    start = time.time()

    while time.time() - start < timeout:
        try:
            res = httpx.get(url, timeout=1.0)
            if res.status_code == 200:
                return res.json()
        except httpx.RequestError:
            time.sleep(1)

    pytest.skip("API unreachable. Stack is likely down.")


@pytest.fixture(scope="session")
def api_client(wait_for_api) -> Generator[httpx.Client, None, None]:
    """
    Pre-configured HTTP client for integration tests.

    Yields:
        httpx.Client: Session-scoped client with base URL /api.
    """
    with httpx.Client(base_url=f"{BASE_URL}/api", timeout=30.0) as client:
        yield client
