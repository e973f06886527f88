"""Live snapshot streams: Server-Sent Events and WebSocket."""

import asyncio
import logging
import time

from fastapi import APIRouter, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse, StreamingResponse

from app.config import settings

logger = logging.getLogger(__name__)

router = APIRouter()

# Will be set by main.py on startup
broadcaster = None


async def _sse_events(request: Request, subscription, heartbeat: float):
    try:
        while True:
            try:
                data = await asyncio.wait_for(subscription.get(), timeout=heartbeat)
            except asyncio.TimeoutError:
                yield f": ping {int(time.time() * 1000)}\n\n".encode()
            else:
                yield b"data: " + data + b"\n\n"
            if await request.is_disconnected():
                break
    finally:
        subscription.close()


@router.get("/stream")
async def snapshot_stream(request: Request):
    """Stream snapshots as SSE: the cached one first, then every publish."""
    if broadcaster is None or not broadcaster.enabled:
        return JSONResponse(
            {"error": "SSE unavailable: Redis not configured"}, status_code=503,
        )
    subscription = await broadcaster.subscribe()
    return StreamingResponse(
        _sse_events(request, subscription, settings.stream_heartbeat_seconds),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache, no-transform", "Connection": "keep-alive"},
    )


@router.websocket("/ws/stream")
async def snapshot_ws(websocket: WebSocket) -> None:
    """Same stream over a WebSocket."""
    await websocket.accept()

    if broadcaster is None or not broadcaster.enabled:
        await websocket.close(code=1011, reason="Service not ready")
        return

    subscription = await broadcaster.subscribe()
    try:
        async for data in subscription:
            await websocket.send_bytes(data)
    except WebSocketDisconnect:
        pass
    except asyncio.CancelledError:
        pass
    except Exception:
        logger.exception("WebSocket error")
    finally:
        subscription.close()
