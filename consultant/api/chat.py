"""Chat API endpoints."""

from collections.abc import AsyncIterator
from contextlib import aclosing
from functools import lru_cache
from typing import Any, AsyncGenerator, Dict

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse, StreamingResponse

from consultant.core.auth import get_current_user_id
from consultant.core.chat_context import ChatPipeline, build_chat_pipeline
from consultant.core.config import get_settings
from consultant.core.errors import GenerationFailedBeforeOutput
from consultant.core.logging import get_logger
from consultant.core.rate_limiter import check_chat_rate_limit, get_chat_rate_limit_stats
from consultant.core.schemas_chat import ChatEvent, ChatRequest
from consultant.db.chat_turns import list_session_turns

logger = get_logger(__name__)

router = APIRouter()

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # Disable nginx buffering
}


@lru_cache(maxsize=1)
def get_chat_pipeline() -> ChatPipeline:
    """Process-wide pipeline; its session manager serialises appends per session."""
    return build_chat_pipeline(get_settings())


async def encode_sse(events: AsyncGenerator[ChatEvent, None]) -> AsyncIterator[str]:
    """Adapt the coordinator's event sequence to SSE frames.

    Closing this iterator closes ``events``, which is how a client
    disconnect reaches the coordinator.
    """
    async with aclosing(events):
        async for event in events:
            yield event.to_sse()


@router.post("/chat")
async def chat_with_consultant(
    request: ChatRequest,
    user_id: str = Depends(get_current_user_id),
):
    """
    Ask the consultant a question.

    This endpoint:
    1. Resolves or creates the session and records the question
    2. Retrieves ranked sources and recent context in parallel
    3. Assembles a bounded prompt
    4. Streams the answer as SSE (or returns it as JSON when ``stream`` is false)
    5. Records the answer once, however the stream ends

    Returns:
        StreamingResponse of ``sources``/``token``/``done``/``error`` events,
        or ``{response, sessionId, sources}``
    """
    message = request.message.strip()
    if not message:
        raise HTTPException(status_code=400, detail="Message is required")

    check_chat_rate_limit(user_id)

    settings = get_settings()
    if not settings.ANTHROPIC_API_KEY:
        raise HTTPException(
            status_code=500,
            detail="Anthropic API key not configured. Please set ANTHROPIC_API_KEY in environment.",
        )

    try:
        pipeline = get_chat_pipeline()
        exchange = await pipeline.prepare(
            user_id=user_id,
            message=message,
            session_id=request.session_id,
        )
    except Exception as e:
        logger.error(f"Error preparing chat: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")

    if request.stream:
        return StreamingResponse(
            encode_sse(pipeline.coordinator.stream_events(exchange)),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )

    try:
        result = await pipeline.coordinator.complete_once(exchange)
    except GenerationFailedBeforeOutput as e:
        return JSONResponse(status_code=502, content={"error": str(e)})

    return result.model_dump(by_alias=True)


@router.get("/chat/sessions/{session_id}/turns")
async def get_session_turns(
    session_id: str,
    limit: int = Query(100, ge=1, le=500, description="Maximum number of turns to return"),
    user_id: str = Depends(get_current_user_id),
) -> Dict[str, Any]:
    """
    Get stored turns for one of the user's sessions, oldest first.

    Args:
        session_id: Session id
        limit: Maximum number of turns

    Returns:
        Turns and count
    """
    try:
        turns = list_session_turns(session_id, user_id, limit)
    except Exception as e:
        logger.error(f"Error getting session turns: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))

    return {
        "sessionId": session_id,
        "turns": [turn.to_record() for turn in turns],
        "total": len(turns),
    }


@router.get("/chat/rate-limit-status")
async def get_rate_limit_status(user_id: str = Depends(get_current_user_id)) -> Dict[str, Any]:
    """Rate limit stats for the caller's chat bucket."""
    return {"status": "ok", "rate_limit": get_chat_rate_limit_stats(user_id)}
