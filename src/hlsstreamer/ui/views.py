"""Dashboard page.

Serves a single server-rendered page with an HLS player, a live log view
(fed by the SSE endpoints) and forms for the update API.
"""
from __future__ import annotations

import logging
from pathlib import Path

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates

from ..services.container import get_services
from ..services.orchestrator import StreamerServices

logger = logging.getLogger(__name__)

router = APIRouter(tags=["ui"])

TEMPLATES_DIR = Path(__file__).parent.parent / "templates"
templates = Jinja2Templates(directory=str(TEMPLATES_DIR))


@router.get("/", response_class=HTMLResponse, include_in_schema=False)
async def dashboard(
    request: Request,
    services: StreamerServices = Depends(get_services)
) -> HTMLResponse:
    """Render the dashboard with the current stream URL and layer count."""
    return templates.TemplateResponse(
        request,
        "index.html",
        {
            "stream_url": services.retention.get_stream_url(),
            "layer_count": services.channels.layer_count,
            "named_pipes": services.channels.supports_named_pipe,
        }
    )
