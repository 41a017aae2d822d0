"""
Annotation Helpers

Prompt templates and response parsing for the enrichment stages
(summary, tags, title) and for JSON-mode curation requests, plus the
deterministic fallback values used whenever the AI backend is offline
or a stage fails.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Final

from cortex.core.exceptions import AIServiceError
from cortex.services.ai import AIClient, ChatMessage

logger = logging.getLogger(__name__)

PROVISIONAL_TITLE: Final[str] = "New note (processing...)"
FALLBACK_TAGS: Final[tuple[str, ...]] = ("Uncategorized",)

PROMPT_CHAR_LIMIT: Final[int] = 2000
MAX_TAGS: Final[int] = 5
TAG_MIN_LENGTH: Final[int] = 1
TAG_MAX_LENGTH: Final[int] = 32
TITLE_MAX_LENGTH: Final[int] = 60

SUMMARY_PROMPT: Final[
    str
] = """You are a knowledgeable mentor helping the user understand captured material.
Write a concise, practical summary in Markdown (no top-level heading):

**Core idea**: one sentence stating what the content is about.

**Background**:
- Explain the terms, tools and platforms mentioned.

**How to use it**:
- Concrete steps, caveats or ways to verify the information.

Teach directly. Do not ask the reader rhetorical questions."""

TAGS_PROMPT: Final[str] = (
    "You are a content classification assistant. Generate 3-5 relevant tags "
    "for the following content. Return only the tags separated by commas, "
    "with no explanation. Tags should be short and meaningful (1-3 words)."
)

TITLE_PROMPT: Final[str] = (
    "You are a professional editor. Write a short title (at most 10 words) "
    "for the following content. Return only the title text, without quotes, "
    "punctuation at the end or any prefix."
)

# Commas (ASCII and full-width), enumeration comma, newlines
_TAG_SEPARATORS = re.compile(r"[,，、\r\n]+")
_TITLE_STRIP = re.compile(r"[\"“”《》]")


def fallback_summary(content: str) -> str:
    """Truncated content used as summary when generation is unavailable."""
    return content[:100] + "..."


def parse_tags(response: str) -> list[str]:
    """
    Split a model reply into tag names.

    Accepts comma, full-width comma, enumeration comma and newline
    separators, strips leading '#' and keeps at most MAX_TAGS names
    between TAG_MIN_LENGTH and TAG_MAX_LENGTH characters.
    """
    tags: list[str] = []
    for raw in _TAG_SEPARATORS.split(response):
        tag = raw.strip().lstrip("#＃").strip()
        if TAG_MIN_LENGTH <= len(tag) <= TAG_MAX_LENGTH and tag not in tags:
            tags.append(tag)
    if not tags:
        logger.info("Tag parsing produced nothing, using fallback tags")
        return list(FALLBACK_TAGS)
    return tags[:MAX_TAGS]


def clean_title(response: str) -> str:
    return _TITLE_STRIP.sub("", response).strip()[:TITLE_MAX_LENGTH].strip()


def extract_json(content: str) -> str:
    """Strip markdown code fences a model may wrap around JSON."""
    content = content.strip()
    if "```json" in content:
        content = content.split("```json")[1].split("```")[0].strip()
    elif "```" in content:
        content = content.split("```")[1].split("```")[0].strip()
    return content


async def summarize(ai: AIClient, content: str) -> str:
    messages: list[ChatMessage] = [
        {"role": "system", "content": SUMMARY_PROMPT},
        {"role": "user", "content": content},
    ]
    summary = (await ai.complete(messages)).strip()
    if not summary:
        raise AIServiceError("Empty summary returned")
    return summary


async def generate_tags(ai: AIClient, content: str) -> list[str]:
    messages: list[ChatMessage] = [
        {"role": "system", "content": TAGS_PROMPT},
        {"role": "user", "content": content[:PROMPT_CHAR_LIMIT]},
    ]
    return parse_tags(await ai.complete(messages))


async def generate_title(ai: AIClient, content: str) -> str:
    """
    Generated title, cleaned and capped.

    Raises:
        AIServiceError: The backend failed or replied with nothing usable.
    """
    messages: list[ChatMessage] = [
        {"role": "system", "content": TITLE_PROMPT},
        {"role": "user", "content": content[:PROMPT_CHAR_LIMIT]},
    ]
    title = clean_title(await ai.complete(messages))
    if not title:
        raise AIServiceError("Empty title returned")
    return title


async def generate_json(ai: AIClient, system: str, user: str) -> Any:
    """
    JSON-mode completion.

    Raises:
        AIServiceError: The reply is not valid JSON.
    """
    messages: list[ChatMessage] = [
        {"role": "system", "content": system},
        {"role": "user", "content": user},
    ]
    raw = await ai.complete(messages, json_mode=True)
    try:
        return json.loads(extract_json(raw))
    except json.JSONDecodeError as e:
        raise AIServiceError(
            f"Invalid JSON from AI backend: {e}", {"raw": raw[:500]}
        ) from e
