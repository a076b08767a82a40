import asyncio
import json
import logging
import os
from typing import Any, AsyncGenerator, Awaitable, Callable, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from models.user import User
from services.supabase_auth import get_current_db_user
from services.sync.change_feed import ChangeEvent, ChangeFeed, change_feed

logger = logging.getLogger(__name__)

router = APIRouter()

HEARTBEAT_SEC = float(os.getenv("SSE_HEARTBEAT_SEC", "15"))


def _sse_pack(event: str, data: Any) -> str:
    payload = data if isinstance(data, str) else json.dumps(data, separators=(",", ":"))
    lines = payload.splitlines() or [""]
    out = f"event: {event}\n" if event else ""
    for line in lines:
        out += f"data: {line}\n"
    out += "\n"
    return out


async def change_stream(
    user_id: str,
    *,
    feed: ChangeFeed = change_feed,
    heartbeat_sec: float = HEARTBEAT_SEC,
    is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None,
) -> AsyncGenerator[str, None]:
    """SSE frames for one user's change events until the consumer goes away."""
    loop = asyncio.get_running_loop()
    q: asyncio.Queue[ChangeEvent] = asyncio.Queue()

    # publishers run in the threadpool, so hand events over to the loop
    def _on_change(event: ChangeEvent) -> None:
        loop.call_soon_threadsafe(q.put_nowait, event)

    sub = feed.subscribe(user_id, _on_change)
    logger.info("realtime_subscribed user_id=%s", user_id)
    try:
        yield _sse_pack("ready", {"user_id": user_id})
        while True:
            if is_disconnected is not None and await is_disconnected():
                break
            try:
                event = await asyncio.wait_for(q.get(), timeout=heartbeat_sec)
            except asyncio.TimeoutError:
                yield ": heartbeat\n\n"
                continue
            yield _sse_pack("change", event.to_dict())
    finally:
        sub.close()
        logger.info("realtime_unsubscribed user_id=%s", user_id)


@router.get("/changes")
async def stream_changes(
    request: Request,
    current_user: User = Depends(get_current_db_user),
):
    headers = {
        "Cache-Control": "no-cache",
        "X-Accel-Buffering": "no",
    }
    return StreamingResponse(
        change_stream(current_user.id, is_disconnected=request.is_disconnected),
        media_type="text/event-stream",
        headers=headers,
    )
