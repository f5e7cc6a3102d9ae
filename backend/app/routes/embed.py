"""
Embed chat API routes: one widget turn in, a Server-Sent Events stream out.
"""
import json
import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Path
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.chat import CallerMetadata, ChatHistory, ChatMessage, EmbedChatRequest
from app.models.embed import EmbedConfig
from app.services import database as db
from app.services.responder import get_responder

log = logging.getLogger("embed")

router = APIRouter()

EMBED_ID_PATTERN = r"^[A-Za-z0-9_-]{1,64}$"

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def get_caller(
    x_username: Optional[str] = Header(None, alias="X-Username"),
) -> Optional[CallerMetadata]:
    """Caller identity forwarded by the auth middleware in front of us, if any."""
    if not x_username:
        return None
    return CallerMetadata(username=x_username)


async def _load_embed(session: AsyncSession, embed_id: str) -> EmbedConfig:
    row = await db.get_embed_config(session, embed_id)
    if row is None or not row.enabled:
        log.info(f"Unknown or disabled embed requested: {embed_id}")
        raise HTTPException(status_code=404, detail=f"Embed {embed_id} not found")
    return EmbedConfig.model_validate(row)


def _sse(data: str) -> bytes:
    return f"data: {data}\n\n".encode("utf-8")


@router.post("/embed/{embed_id}/chat")
async def embed_chat(
    request: EmbedChatRequest,
    embed_id: str = Path(..., pattern=EMBED_ID_PATTERN),
    caller: Optional[CallerMetadata] = Depends(get_caller),
):
    """Stream a chat reply for the given embed, forwarding the optional user context."""
    # Empty or missing context is always handed over as None
    context = request.context or None

    # Reserve the turn up front so concurrent requests share the session limit
    async with db.async_session() as session:
        async with session.begin():
            embed = await _load_embed(session, embed_id)
            turn_id = await db.reserve_chat(
                session,
                embed.id,
                request.session_id,
                request.message,
                limit=embed.max_chats_per_session,
                user_context=context,
                username=caller.username if caller else None,
            )

    if turn_id is None:
        raise HTTPException(
            status_code=429,
            detail="This session has reached its chat limit",
        )

    events = get_responder().stream(
        embed,
        request.message,
        request.session_id,
        context,
        caller,
        turn_id=turn_id,
    )

    # Pull the first event before committing to a 200 so early failures get a real status
    try:
        first = await events.__anext__()
    except StopAsyncIteration:
        first = None
    except Exception as e:
        log.error(f"Responder failed for embed {embed_id}: {e}", exc_info=True)
        async with db.async_session() as session:
            async with session.begin():
                await db.release_chat(session, turn_id)
        raise HTTPException(status_code=502, detail="Chat responder failed")

    async def generate_response():
        try:
            if first is not None:
                yield _sse(first)
                async for chunk in events:
                    yield _sse(chunk)
            yield _sse("[DONE]")
        except asyncio.CancelledError:
            log.info(f"Client disconnected from embed {embed_id} stream")
            raise
        except Exception as e:
            log.error(f"Error while streaming embed {embed_id}: {e}", exc_info=True)
            yield _sse(json.dumps({"type": "error", "content": "Streaming error occurred"}))
            yield _sse("[DONE]")
        finally:
            await events.aclose()

    return StreamingResponse(
        generate_response(),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.get("/embed/{embed_id}/{session_id}", response_model=ChatHistory)
async def embed_history(
    embed_id: str = Path(..., pattern=EMBED_ID_PATTERN),
    session_id: str = Path(..., min_length=1),
):
    """Return the stored conversation for a widget session."""
    async with db.async_session() as session:
        embed = await _load_embed(session, embed_id)
        chats = await db.get_chats(session, embed.id, session_id, limit=None)

    history = []
    for chat in chats:
        history.append(ChatMessage(role="user", content=chat.prompt, sent_at=chat.created_at))
        history.append(ChatMessage(role="assistant", content=chat.response, sent_at=chat.created_at))
    return ChatHistory(history=history)


@router.delete("/embed/{embed_id}/{session_id}")
async def embed_reset(
    embed_id: str = Path(..., pattern=EMBED_ID_PATTERN),
    session_id: str = Path(..., min_length=1),
):
    """Forget a widget session so the next turn starts fresh."""
    async with db.async_session() as session:
        async with session.begin():
            embed = await _load_embed(session, embed_id)
            deleted = await db.delete_chats(session, embed.id, session_id)

    log.info(f"Cleared {deleted} turns for embed={embed_id} session={session_id}")
    return {"success": True, "deleted": deleted}
