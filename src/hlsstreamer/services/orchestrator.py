"""Service wiring for startup and shutdown.

StreamerServices owns one instance of each core service and applies the
lifecycle order:

Startup (initialize_services, idempotent):
    1. Output directory
    2. Input channels
    3. Parameter channel bind (before the transcoder claims the port)
    4. Retention scheduler

start_stream:
    Queue initial content, then start the transcoder after start_delay so
    the channels are in place.

Shutdown (idempotent):
    1. Shutdown flag (blocks automatic restarts)
    2. Transcoder stop
    3. Parameter channel close
    4. Input channel cleanup
    5. Retention scheduler stop
    6. Output cleanup (if configured)

Logging Strategy:
    INFO  - Lifecycle steps
    ERROR - Step failures during shutdown (shutdown always completes)
"""
from __future__ import annotations

import asyncio
import logging

from ..models.settings import StreamerConfig
from .channels import InputChannelManager
from .parameter_channel import LiveParameterChannel
from .retention import OutputRetentionManager
from .supervisor import ProcessSupervisor, SpawnFunc

logger = logging.getLogger(__name__)


class StreamerServices:
    """Container for the core services of one streamer instance."""

    def __init__(
        self,
        config: StreamerConfig,
        supports_named_pipe: bool | None = None,
        spawn: SpawnFunc | None = None
    ) -> None:
        self.config = config
        self.channels = InputChannelManager(config, supports_named_pipe=supports_named_pipe)
        self.supervisor = ProcessSupervisor(config, self.channels, spawn=spawn)
        self.parameters = LiveParameterChannel(config)
        self.retention = OutputRetentionManager(config)

        self._initialized = False
        self._shut_down = False
        self._start_task: asyncio.Task | None = None

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize_services(self) -> None:
        """Create directories, channels and sockets, start the scheduler.

        Raises:
            OSError: Output or channel directory cannot be created
            zmq.ZMQError: Parameter channel bind failed
        """
        if self._initialized:
            logger.debug("Services already initialized")
            return

        logger.info("Initializing services...")
        self.retention.setup_directory()
        self.channels.create_all()
        self.parameters.initialize()
        self.retention.start_cleanup_scheduler()
        self._initialized = True
        self._shut_down = False
        logger.info("Services initialized")

    async def start_stream(self) -> None:
        """Queue the initial content and schedule the transcoder start."""
        await self.supervisor.initialize_content()

        delay = self.config.ffmpeg.start_delay
        logger.info(f"Starting FFmpeg in {delay:g}s")
        self._start_task = asyncio.get_running_loop().create_task(self._delayed_start(delay))

    async def _delayed_start(self, delay: float) -> None:
        await asyncio.sleep(delay)
        if self.supervisor.shutting_down:
            return
        # Past the delay: shutdown waits for the spawn instead of cancelling it
        self._start_task = None
        await self.supervisor.start()

    async def shutdown(self) -> None:
        """Stop everything in order. Safe to call more than once."""
        if self._shut_down:
            logger.debug("Services already shut down")
            return
        self._shut_down = True

        logger.info("Shutting down services...")

        if self._start_task is not None and not self._start_task.done():
            self._start_task.cancel()

        self.supervisor.set_shutting_down(True)
        self.supervisor.stop()
        await self.supervisor.wait_stopped(timeout=self.config.ffmpeg.stop_grace + 1.0)
        await self.supervisor.cancel_background_tasks()

        self.parameters.close()
        self.channels.cleanup()
        self.retention.stop_cleanup_scheduler()

        if self.config.hls.cleanup_on_shutdown:
            self.retention.cleanup_all()

        self._initialized = False
        logger.info("Services shut down")
