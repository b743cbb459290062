"""Service container for the singleton StreamerServices.

main.py creates the instance during startup and stores it here, API routers
obtain it through get_services() with Depends(). Tests substitute their own
instance through app.dependency_overrides.

Logging Strategy:
    DEBUG - Service dependency injection
    ERROR - Services not initialized
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .orchestrator import StreamerServices

logger = logging.getLogger(__name__)

services: StreamerServices | None = None
"""Global StreamerServices singleton initialized during app startup."""


def get_services() -> StreamerServices:
    """Get the global StreamerServices singleton for dependency injection.

    Returns:
        Global StreamerServices instance

    Raises:
        RuntimeError: If called before app startup
    """
    if services is None:
        logger.error("StreamerServices dependency requested before initialization")
        raise RuntimeError(
            "StreamerServices not initialized. "
            "Application startup may have failed."
        )

    logger.debug("Injecting StreamerServices singleton")
    return services
