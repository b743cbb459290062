"""REST API endpoints for live stream control.

Routes:
    POST /api/update  - switch content, replace a layer, send a filter command
    GET  /api/status  - process, parameter channel and output status
    GET  /api/info    - stream URL and usage reference

Update Semantics:
    Boundary validation failures return 400 with the standard error body.
    Otherwise the core call's boolean is returned as `success` with 200,
    including when the core reports failure (e.g. file vanished).

Logging Strategy:
    DEBUG - Validation details
    INFO  - Accepted updates
    WARN  - Rejected updates
"""
from __future__ import annotations

import logging
import platform
import time
from datetime import datetime, timezone
from typing import Any, Final

from fastapi import APIRouter, Depends, Request

from ..models.update import FilterUpdateData, LayerUpdateData, UpdateRequest, UpdateResponse
from ..services.container import get_services
from ..services.orchestrator import StreamerServices
from ..utils.validation import (
    validate_file_path,
    validate_filter_command,
    validate_layer_index,
)
from .errors import ErrorCode, raise_validation_error

logger = logging.getLogger(__name__)

router = APIRouter(tags=["stream"])

STARTED_AT: Final[float] = time.monotonic()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ============================================================================
# Update
# ============================================================================

@router.post("/update", response_model=UpdateResponse)
def update_stream(
    request: UpdateRequest,
    services: StreamerServices = Depends(get_services)
) -> UpdateResponse:
    """Apply a live update.

    Runs in the threadpool: content and layer writes are synchronous file
    I/O and may wait briefly for the transcoder to open a FIFO.

    Raises:
        HTTPException 400: Path traversal, bad layer index, dangerous command
    """
    if request.type == "content":
        path = request.data
        valid, error = validate_file_path(path)
        if not valid:
            logger.warning(f"Rejected content update: {error}")
            raise_validation_error(
                f"Content validation failed: {error}",
                details={"path": path},
                code=ErrorCode.INVALID_FILE_PATH
            )

        success = services.channels.write_content(path)
        message = "Content updated successfully" if success else "Failed to update content"

    elif request.type == "layer":
        layer: LayerUpdateData = request.data
        valid, error = validate_layer_index(layer.index, services.channels.layer_count)
        if not valid:
            logger.warning(f"Rejected layer update: {error}")
            raise_validation_error(
                f"Layer index validation failed: {error}",
                details={"index": layer.index, "layer_count": services.channels.layer_count},
                code=ErrorCode.INVALID_LAYER_INDEX
            )

        valid, error = validate_file_path(layer.path)
        if not valid:
            logger.warning(f"Rejected layer update: {error}")
            raise_validation_error(
                f"Layer path validation failed: {error}",
                details={"path": layer.path},
                code=ErrorCode.INVALID_FILE_PATH
            )

        success = services.channels.write_layer(layer.index, layer.path)
        message = (
            f"Layer {layer.index} updated successfully" if success
            else f"Failed to update layer {layer.index}"
        )

    else:
        filter_data: FilterUpdateData = request.data
        valid, error = validate_filter_command(filter_data.command)
        if not valid:
            logger.warning(f"Rejected filter command: {error}")
            raise_validation_error(
                f"Filter command validation failed: {error}",
                details={"command": filter_data.command},
                code=ErrorCode.INVALID_COMMAND
            )

        success = services.parameters.send_instruction(filter_data.command)
        message = "Filter command sent successfully" if success else "Failed to send filter command"

    logger.info(f"Update {request.type}: success={success}")
    return UpdateResponse(success=success, message=message, timestamp=_now())


# ============================================================================
# Status and Info
# ============================================================================

@router.get("/status")
async def get_status(services: StreamerServices = Depends(get_services)) -> dict[str, Any]:
    """Snapshot of the process, parameter channel and HLS output."""
    ffmpeg_running = services.supervisor.is_running()
    zmq_connected = services.parameters.is_connected()
    hls_generating = services.retention.is_generating_segments()
    config = services.config

    return {
        "ffmpeg": "running" if ffmpeg_running else "stopped",
        "ffmpegState": services.supervisor.state.value,
        "zmq": "connected" if zmq_connected else "disconnected",
        "hls": {
            "generating": hls_generating,
            "segmentCount": services.retention.get_current_segment_count(),
        },
        "healthy": ffmpeg_running and zmq_connected and hls_generating,
        "uptime": round(time.monotonic() - STARTED_AT, 3),
        "config": {
            "layers": config.layer_count,
            "hlsSegmentTime": config.hls.segment_time,
            "hlsPlaylistSize": config.hls.playlist_size,
            "platform": platform.system().lower(),
            "namedPipes": services.channels.supports_named_pipe,
        },
        "timestamp": _now(),
    }


@router.get("/info")
async def get_stream_info(
    request: Request,
    services: StreamerServices = Depends(get_services)
) -> dict[str, Any]:
    """Stream URL, endpoint list and request examples."""
    base_url = str(request.base_url).rstrip("/")
    update_url = f"{base_url}/api/update"

    return {
        "streamUrl": services.retention.get_stream_url(base_url),
        "dashboardUrl": f"{base_url}/",
        "apiEndpoints": {
            "update": update_url,
            "status": f"{base_url}/api/status",
            "info": f"{base_url}/api/info",
            "health": f"{base_url}/api/health",
            "logs": f"{base_url}/api/logs",
            "zmqLogs": f"{base_url}/api/zmq/logs",
            "metrics": f"{base_url}/metrics",
        },
        "usage": {
            "updateContent": {
                "method": "POST",
                "url": update_url,
                "body": {"type": "content", "data": "/path/to/video.mp4"},
            },
            "updateLayer": {
                "method": "POST",
                "url": update_url,
                "body": {"type": "layer", "data": {"index": 0, "path": "/path/to/overlay.png"}},
            },
            "sendFilter": {
                "method": "POST",
                "url": update_url,
                "body": {"type": "filter", "data": {"command": "Parsed_overlay_1 x 200"}},
            },
        },
        "timestamp": _now(),
    }
