"""Log access endpoints for the two in-memory log rings.

Routes (process output log):
    GET    /api/logs         - snapshot
    DELETE /api/logs         - clear
    GET    /api/logs/stream  - Server-Sent Events

The same three routes exist under /api/zmq/logs for the parameter channel.

SSE Protocol:
    1. {"type": "connected", "timestamp": ...}
    2. Every entry currently in the ring, oldest first
    3. Each new entry as it is appended
    4. {"type": "heartbeat", "timestamp": ...} after HEARTBEAT_INTERVAL idle

    Entries are handed over through a bounded queue. When a client falls
    behind, new entries are dropped for that client only.

Logging Strategy:
    DEBUG - Snapshot requests
    INFO  - SSE connect/disconnect, log clearing
    ERROR - SSE generator failures
"""
from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, Final, Protocol

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from ..models.logs import LogEntry
from ..services.container import get_services
from ..services.log_buffer import LogCallback
from ..services.orchestrator import StreamerServices

logger = logging.getLogger(__name__)

# ============================================================================
# Constants
# ============================================================================

HEARTBEAT_INTERVAL: Final[float] = 30.0
"""Seconds of inactivity before a heartbeat event."""

SSE_QUEUE_SIZE: Final[int] = 500
"""Per-client backlog before entries are dropped."""


class LogSource(Protocol):
    def get_logs(self) -> list[LogEntry]: ...

    def clear_logs(self) -> None: ...

    def on_log(self, callback: LogCallback) -> Callable[[], None]: ...


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def format_sse(payload: dict[str, Any]) -> str:
    return f"data: {json.dumps(payload)}\n\n"


# ============================================================================
# SSE Generator
# ============================================================================

async def log_event_stream(
    source: LogSource,
    request: Request,
    heartbeat_interval: float = HEARTBEAT_INTERVAL
) -> AsyncIterator[str]:
    """Replay the ring, then follow new entries until the client disconnects."""
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue[LogEntry] = asyncio.Queue(maxsize=SSE_QUEUE_SIZE)

    def put(entry: LogEntry) -> None:
        try:
            queue.put_nowait(entry)
        except asyncio.QueueFull:
            pass

    def enqueue(entry: LogEntry) -> None:
        # Producers may run on other threads
        loop.call_soon_threadsafe(put, entry)

    yield format_sse({"type": "connected", "timestamp": _now()})

    for entry in source.get_logs():
        yield format_sse(entry.model_dump())

    unsubscribe = source.on_log(enqueue)
    sent = 0
    try:
        while not await request.is_disconnected():
            try:
                entry = await asyncio.wait_for(queue.get(), timeout=heartbeat_interval)
            except asyncio.TimeoutError:
                yield format_sse({"type": "heartbeat", "timestamp": _now()})
                continue

            yield format_sse(entry.model_dump())
            sent += 1

    except asyncio.CancelledError:
        logger.info(f"Log stream cancelled ({sent} live entries)")
        raise
    except Exception as e:
        logger.error(f"Log stream error: {e}", exc_info=True)
    finally:
        unsubscribe()
        logger.info("Log stream client disconnected")


# ============================================================================
# Router Factory
# ============================================================================

def get_process_log(services: StreamerServices = Depends(get_services)) -> LogSource:
    return services.supervisor


def get_parameter_log(services: StreamerServices = Depends(get_services)) -> LogSource:
    return services.parameters


def create_log_router(source_dependency: Callable[..., LogSource], label: str) -> APIRouter:
    """Snapshot, clear and SSE routes for one log ring."""
    router = APIRouter()

    @router.get("")
    async def get_logs(source: LogSource = Depends(source_dependency)) -> dict[str, Any]:
        logs = source.get_logs()
        logger.debug(f"{label} log snapshot: {len(logs)} entries")
        return {
            "success": True,
            "logs": [entry.model_dump() for entry in logs],
            "totalLogs": len(logs),
            "timestamp": _now(),
        }

    @router.delete("")
    async def clear_logs(source: LogSource = Depends(source_dependency)) -> dict[str, Any]:
        source.clear_logs()
        logger.info(f"{label} logs cleared")
        return {
            "success": True,
            "message": f"{label} logs cleared successfully",
            "timestamp": _now(),
        }

    @router.get("/stream")
    async def stream_logs(
        request: Request,
        source: LogSource = Depends(source_dependency)
    ) -> StreamingResponse:
        logger.info(f"{label} log stream client connected")
        return StreamingResponse(
            log_event_stream(source, request),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache, no-store, must-revalidate",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",
                "Access-Control-Allow-Origin": "*",
            }
        )

    return router


router = APIRouter(tags=["logs"])
router.include_router(create_log_router(get_process_log, "FFmpeg"), prefix="/api/logs")
router.include_router(create_log_router(get_parameter_log, "ZMQ"), prefix="/api/zmq/logs")
