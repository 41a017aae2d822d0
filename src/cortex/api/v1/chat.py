"""
Chat API Router

POST /chat: retrieval-augmented answer over the note corpus, either as a
Server-Sent Events stream or as a single JSON body.

Stream frames (``data: {json}\\n\\n``):
    {"type": "sources", "sources": [...]}   always first
    {"type": "content", "content": "..."}   zero or more
    {"type": "done"} | {"type": "error", "error": "..."}   always last
"""

import json
from collections.abc import AsyncIterator

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from cortex.api.deps import get_db, get_services, http_error
from cortex.core.container import Services
from cortex.core.exceptions import CortexError
from cortex.schemas.chat import ChatRequest, ChatResponse
from cortex.services.chat import ChatContext, ChatService

router = APIRouter()


async def _sse(chat: ChatService, context: ChatContext) -> AsyncIterator[str]:
    async for event in chat.stream(context):
        yield "data: " + json.dumps(event, ensure_ascii=False) + "\n\n"


@router.post(
    "/chat",
    response_model=ChatResponse,
    responses={
        200: {"content": {"text/event-stream": {}}},
        400: {"description": "Empty query"},
        503: {"description": "AI backend offline"},
    },
)
async def chat(
    request: ChatRequest,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
):
    """
    Answer a question from the knowledge base.

    Retrieval runs before the response starts, so validation and offline
    errors come back as plain 400 / 503 responses even when streaming.
    """
    try:
        if not request.stream:
            return await services.chat.answer(db, request.query)
        context = await services.chat.prepare(db, request.query)
    except CortexError as e:
        raise http_error(e) from e

    return StreamingResponse(
        _sse(services.chat, context),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
