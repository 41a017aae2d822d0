"""
AI Service Client

Abstraction over the inference backend used for enrichment and chat:
health probe, embedding, chat completion (blocking and streamed).

Design:
    - Two providers behind one interface: a local Ollama server (httpx
      against its REST API) and the OpenAI API (official async SDK).
    - No silent retries. Every failure surfaces as ServiceUnavailableError
      or AITimeoutError and the caller decides the fallback.
    - health_check never raises: timeout or refusal means offline.
    - stream_complete returns a fresh async iterator per call.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Sequence
from typing import Literal, TypedDict

import httpx
from openai import APIConnectionError, APIStatusError, APITimeoutError, AsyncOpenAI

from cortex.core.config import Settings
from cortex.core.exceptions import AITimeoutError, ServiceUnavailableError

logger = logging.getLogger(__name__)


class ChatMessage(TypedDict):
    role: Literal["system", "user", "assistant"]
    content: str


class AIClient(ABC):
    """
    Abstract inference backend.

    Implementations must keep every call bounded by a timeout so that an
    unreachable backend can never leave a note pending forever.
    """

    @abstractmethod
    async def health_check(self) -> bool:
        """Bounded-timeout availability probe. Returns False instead of raising."""

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Embedding vector for text."""

    @abstractmethod
    async def complete(
        self, messages: Sequence[ChatMessage], *, json_mode: bool = False
    ) -> str:
        """
        Blocking chat completion.

        Args:
            messages: Conversation turns, system prompt first.
            json_mode: Ask the backend to constrain output to JSON.

        Returns:
            The assistant reply text.
        """

    @abstractmethod
    def stream_complete(self, messages: Sequence[ChatMessage]) -> AsyncIterator[str]:
        """Streamed chat completion yielding text chunks as they arrive."""

    async def aclose(self) -> None:
        """Release provider resources. Optional to override."""
        return None


class OllamaClient(AIClient):
    """
    Ollama backend over its native REST API.

    Endpoints:
        GET  /api/tags        health probe
        POST /api/embeddings  {"model", "prompt"} -> {"embedding"}
        POST /api/chat        {"model", "messages", "stream"} -> message / NDJSON

    A new httpx.AsyncClient is opened per call; a transport can be injected
    for tests (httpx.MockTransport).
    """

    def __init__(
        self,
        base_url: str,
        chat_model: str,
        embed_model: str,
        timeout: float = 120.0,
        health_timeout: float = 3.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._chat_model = chat_model
        self._embed_model = embed_model
        self._timeout = timeout
        self._health_timeout = health_timeout
        self._transport = transport

    def _client(self, timeout: float | None = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            timeout=timeout or self._timeout,
            transport=self._transport,
        )

    async def health_check(self) -> bool:
        try:
            async with self._client(self._health_timeout) as client:
                response = await client.get("/api/tags")
                return response.status_code == 200
        except httpx.HTTPError as e:
            logger.info("Ollama health check failed (%s): %s", type(e).__name__, e)
            return False

    async def embed(self, text: str) -> list[float]:
        data = await self._post(
            "/api/embeddings", {"model": self._embed_model, "prompt": text}
        )
        return list(data.get("embedding") or [])

    async def complete(
        self, messages: Sequence[ChatMessage], *, json_mode: bool = False
    ) -> str:
        payload: dict = {
            "model": self._chat_model,
            "messages": list(messages),
            "stream": False,
        }
        if json_mode:
            payload["format"] = "json"

        data = await self._post("/api/chat", payload)
        content = (data.get("message") or {}).get("content", "")
        logger.debug(
            "Ollama completion (model=%s, length=%d)", self._chat_model, len(content)
        )
        return content

    async def stream_complete(
        self, messages: Sequence[ChatMessage]
    ) -> AsyncIterator[str]:
        payload = {
            "model": self._chat_model,
            "messages": list(messages),
            "stream": True,
        }
        try:
            async with self._client() as client:
                async with client.stream("POST", "/api/chat", json=payload) as response:
                    response.raise_for_status()
                    async for line in response.aiter_lines():
                        if not line.strip():
                            continue
                        try:
                            chunk = json.loads(line)
                        except json.JSONDecodeError:
                            logger.debug("Skipping malformed stream line: %r", line[:80])
                            continue
                        if chunk.get("error"):
                            raise ServiceUnavailableError(
                                f"Ollama stream error: {chunk['error']}"
                            )
                        content = (chunk.get("message") or {}).get("content")
                        if content:
                            yield content
                        if chunk.get("done"):
                            break
        except httpx.TimeoutException as e:
            raise AITimeoutError(f"Ollama stream timed out: {e}") from e
        except httpx.HTTPStatusError as e:
            raise ServiceUnavailableError(
                f"Ollama stream failed: {e.response.status_code}",
                {"status_code": e.response.status_code},
            ) from e
        except httpx.HTTPError as e:
            raise ServiceUnavailableError(f"Ollama unreachable: {e}") from e

    async def _post(self, path: str, payload: dict) -> dict:
        """POST JSON and translate transport failures into AI errors."""
        try:
            async with self._client() as client:
                response = await client.post(path, json=payload)
                response.raise_for_status()
                return response.json()
        except httpx.TimeoutException as e:
            raise AITimeoutError(f"Ollama {path} timed out", {"path": path}) from e
        except httpx.HTTPStatusError as e:
            logger.error("Ollama API error on %s: %s", path, e.response.text[:200])
            raise ServiceUnavailableError(
                f"Ollama {path} failed: {e.response.status_code}",
                {"path": path, "status_code": e.response.status_code},
            ) from e
        except httpx.HTTPError as e:
            raise ServiceUnavailableError(
                f"Ollama unreachable: {e}", {"path": path}
            ) from e


class OpenAIClient(AIClient):
    """OpenAI backend through the official async SDK."""

    def __init__(
        self,
        api_key: str,
        chat_model: str,
        embed_model: str,
        timeout: float = 120.0,
        health_timeout: float = 3.0,
        client: AsyncOpenAI | None = None,
    ) -> None:
        # max_retries=0: failures must stay visible and bounded
        self._client = client or AsyncOpenAI(
            api_key=api_key, timeout=timeout, max_retries=0
        )
        self._chat_model = chat_model
        self._embed_model = embed_model
        self._health_timeout = health_timeout

    async def health_check(self) -> bool:
        try:
            await self._client.with_options(timeout=self._health_timeout).models.list()
            return True
        except Exception as e:
            logger.info("OpenAI health check failed (%s): %s", type(e).__name__, e)
            return False

    async def embed(self, text: str) -> list[float]:
        text = text.replace("\n", " ")  # OpenAI recommends single-line input
        try:
            response = await self._client.embeddings.create(
                input=[text], model=self._embed_model
            )
        except Exception as e:
            raise self._translate(e) from e
        return list(response.data[0].embedding)

    async def complete(
        self, messages: Sequence[ChatMessage], *, json_mode: bool = False
    ) -> str:
        kwargs: dict = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        try:
            response = await self._client.chat.completions.create(
                model=self._chat_model, messages=list(messages), **kwargs
            )
        except Exception as e:
            raise self._translate(e) from e
        return response.choices[0].message.content or ""

    async def stream_complete(
        self, messages: Sequence[ChatMessage]
    ) -> AsyncIterator[str]:
        try:
            stream = await self._client.chat.completions.create(
                model=self._chat_model, messages=list(messages), stream=True
            )
            async for chunk in stream:
                if not chunk.choices:
                    continue
                content = chunk.choices[0].delta.content
                if content:
                    yield content
        except Exception as e:
            raise self._translate(e) from e

    async def aclose(self) -> None:
        await self._client.close()

    @staticmethod
    def _translate(error: Exception) -> Exception:
        """Map SDK errors onto the AI error taxonomy; anything else passes through."""
        # APITimeoutError subclasses APIConnectionError, check it first
        if isinstance(error, APITimeoutError):
            return AITimeoutError(f"OpenAI request timed out: {error}")
        if isinstance(error, APIConnectionError):
            return ServiceUnavailableError(f"OpenAI unreachable: {error}")
        if isinstance(error, APIStatusError):
            return ServiceUnavailableError(
                f"OpenAI API error: {error.status_code}",
                {"status_code": error.status_code},
            )
        return error


def create_ai_client(settings: Settings) -> AIClient:
    """Build the configured provider."""
    if settings.AI_PROVIDER == "openai":
        logger.info("AI provider: OpenAI (chat=%s)", settings.OPENAI_CHAT_MODEL)
        return OpenAIClient(
            api_key=settings.OPENAI_API_KEY,
            chat_model=settings.OPENAI_CHAT_MODEL,
            embed_model=settings.OPENAI_EMBED_MODEL,
            timeout=settings.AI_TIMEOUT,
            health_timeout=settings.AI_HEALTH_TIMEOUT,
        )

    logger.info(
        "AI provider: Ollama at %s (chat=%s)",
        settings.OLLAMA_BASE_URL,
        settings.OLLAMA_CHAT_MODEL,
    )
    return OllamaClient(
        base_url=settings.OLLAMA_BASE_URL,
        chat_model=settings.OLLAMA_CHAT_MODEL,
        embed_model=settings.OLLAMA_EMBED_MODEL,
        timeout=settings.AI_TIMEOUT,
        health_timeout=settings.AI_HEALTH_TIMEOUT,
    )
