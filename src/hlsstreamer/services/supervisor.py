"""FFmpeg process supervision.

Owns the single long-lived transcoder process:
- Builds its argument vector from configuration and the channel layout
- Spawns it with stdout/stderr captured into a bounded log ring
- Restarts it after a fixed delay when it exits unexpectedly
- Stops it with SIGTERM, escalating to SIGKILL after a grace window

State Machine:
    STOPPED -> start() -> STARTING -> spawned -> RUNNING
    RUNNING -> exits on its own -> EXITED -> (restart_delay) -> STARTING
    RUNNING -> stop() -> STOPPING -> exited or killed -> STOPPED
    STARTING -> stop() -> STOPPING -> spawned -> terminated as above

    An exit while STOPPING, or while the shutdown flag is set, is terminal.
    Setting the shutdown flag before stop() keeps a pending restart from
    reviving the process.

FFmpeg Pipeline:
    content FIFO (concat) + layer FIFOs -> overlay chain -> zmq -> H.264/AAC -> HLS

Logging Strategy:
    DEBUG - Process output lines, stale exit notifications
    INFO  - Process lifecycle (start, stop, restart)
    WARN  - Duplicate start, unexpected exits, forced kills
    ERROR - Spawn failures, placeholder generation failures
"""
from __future__ import annotations

import asyncio
import logging
import subprocess
import tempfile
import threading
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Final

from .. import metrics
from ..config.ffmpeg_defaults import (
    BASE_FFMPEG_PARAMS,
    CONCAT_INPUT_PARAMS,
    get_audio_encoding_params,
    get_hls_output_params,
    get_synthetic_input_params,
    get_video_encoding_params,
)
from ..models.logs import LogChannel, LogEntry
from ..models.settings import StreamerConfig
from ..utils.ffmpeg import (
    AUDIO_OUT_LABEL,
    VIDEO_OUT_LABEL,
    build_filter_complex,
    build_placeholder_command,
    build_synthetic_filter_complex,
)
from .channels import InputChannelManager
from .log_buffer import LogBuffer, LogCallback

logger = logging.getLogger(__name__)

# ============================================================================
# Constants
# ============================================================================

PLACEHOLDER_TIMEOUT: Final[float] = 60.0
"""Upper bound for the one-shot placeholder generation."""

PLACEHOLDER_FILENAME: Final[str] = "hlsstreamer-placeholder.mp4"

SpawnFunc = Callable[..., Awaitable[Any]]
"""Signature of asyncio.create_subprocess_exec (injectable for tests)."""


class SupervisorState(str, Enum):
    """Lifecycle state of the supervised process."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    EXITED = "exited"


def describe_exit(returncode: int | None) -> str:
    """Human-readable exit status (negative return codes are signals)."""
    if returncode is None:
        return "unknown status"
    if returncode < 0:
        return f"signal {-returncode}"
    return f"code {returncode}"


# ============================================================================
# Process Supervisor
# ============================================================================

class ProcessSupervisor:
    """Lifecycle owner of the transcoder process.

    Attributes:
        config: Streamer configuration
        channels: Input channel manager (paths and named-pipe capability)
        logs: Ring of captured process output and lifecycle events
    """

    def __init__(
        self,
        config: StreamerConfig,
        channels: InputChannelManager,
        spawn: SpawnFunc | None = None
    ) -> None:
        self.config = config
        self.channels = channels
        self.logs = LogBuffer(config.log_capacity)

        self._spawn = spawn or asyncio.create_subprocess_exec
        self._lock = threading.RLock()
        self._process: Any = None
        self._state = SupervisorState.STOPPED
        self._shutting_down = False
        self._restart_task: asyncio.Task | None = None
        self._kill_task: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()

    # ========================================================================
    # Status
    # ========================================================================

    @property
    def state(self) -> SupervisorState:
        with self._lock:
            return self._state

    @property
    def pid(self) -> int | None:
        with self._lock:
            return self._process.pid if self._process is not None else None

    @property
    def shutting_down(self) -> bool:
        with self._lock:
            return self._shutting_down

    @property
    def supports_named_pipe(self) -> bool:
        return self.channels.supports_named_pipe

    def is_running(self) -> bool:
        """True iff a process handle is currently tracked."""
        with self._lock:
            return self._process is not None

    def set_shutting_down(self, value: bool) -> None:
        """Set the shutdown flag. Setting it cancels a pending restart."""
        with self._lock:
            self._shutting_down = value
            if value:
                self._cancel_restart()
        logger.debug(f"Shutdown flag set to {value}")

    # ========================================================================
    # Logs
    # ========================================================================

    def get_logs(self) -> list[LogEntry]:
        return self.logs.get_logs()

    def clear_logs(self) -> None:
        self.logs.clear()

    def on_log(self, callback: LogCallback) -> Callable[[], None]:
        return self.logs.on_log(callback)

    def _record(self, channel: LogChannel, text: str) -> None:
        self.logs.append(channel, text)

    # ========================================================================
    # Argument Building
    # ========================================================================

    def build_filter_complex(self) -> str:
        """Filter graph for the current channel layout and capability."""
        zmq_port = self.config.zmq.port
        if self.supports_named_pipe:
            return build_filter_complex(self.channels.layer_count, zmq_port)
        return build_synthetic_filter_complex(zmq_port)

    def build_args(self) -> list[str]:
        """Build the argument vector (without the binary).

        Order: global options, inputs, filter graph, encoding, HLS output.
        """
        ffmpeg = self.config.ffmpeg
        hls = self.config.hls

        args = list(BASE_FFMPEG_PARAMS)

        if self.supports_named_pipe:
            args += [*CONCAT_INPUT_PARAMS, "-i", str(self.channels.get_content_path())]
            for index in range(self.channels.layer_count):
                args += ["-i", str(self.channels.get_layer_path(index))]
        else:
            args += get_synthetic_input_params()

        args += ["-filter_complex", self.build_filter_complex()]

        args += ["-map", VIDEO_OUT_LABEL, *get_video_encoding_params(ffmpeg, hls)]
        args += ["-map", AUDIO_OUT_LABEL, *get_audio_encoding_params(ffmpeg)]

        output_dir = Path(hls.output_dir)
        args += get_hls_output_params(
            hls,
            str(output_dir / hls.segment_pattern),
            str(output_dir / hls.playlist_name)
        )
        return args

    def build_command(self) -> list[str]:
        return [self.config.ffmpeg.binary, *self.build_args()]

    # ========================================================================
    # Start
    # ========================================================================

    async def start(self) -> bool:
        """Spawn the transcoder.

        Returns immediately after the spawn. Output capture, exit handling
        and restarts run as background tasks.

        Returns:
            True if a process is running after the call
        """
        with self._lock:
            if self._process is not None or self._state == SupervisorState.STARTING:
                logger.warning("FFmpeg process is already running")
                return True
            if self._state == SupervisorState.STOPPING:
                logger.info("FFmpeg stop pending on an in-flight spawn, not starting")
                return False
            if self._shutting_down:
                logger.info("Shutdown in progress, not starting FFmpeg")
                return False
            self._state = SupervisorState.STARTING

        cmd = self.build_command()
        logger.info("Starting FFmpeg process")
        logger.debug(f"FFmpeg command: {' '.join(cmd)}")
        self._record("system", f"Starting FFmpeg: {' '.join(cmd)}")

        try:
            process = await self._spawn(
                *cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE
            )
        except (OSError, ValueError) as e:
            logger.error(f"Failed to start FFmpeg: {e}")
            self._record("error", f"Failed to start FFmpeg: {e}")
            metrics.ffmpeg_spawn_failures_total.inc()
            with self._lock:
                self._process = None
                self._state = SupervisorState.STOPPED
            return False
        except asyncio.CancelledError:
            logger.warning("FFmpeg spawn cancelled")
            with self._lock:
                self._process = None
                self._state = SupervisorState.STOPPED
            raise

        with self._lock:
            stop_pending = self._state == SupervisorState.STOPPING or self._shutting_down
            self._process = process
            self._state = SupervisorState.RUNNING

        metrics.ffmpeg_process_starts_total.inc()
        metrics.ffmpeg_process_active.set(1)
        logger.info(f"FFmpeg started (PID={process.pid})")
        self._record("system", f"FFmpeg started (PID {process.pid})")

        self._spawn_task(self._read_output(process.stdout, "stdout"))
        self._spawn_task(self._read_output(process.stderr, "stderr"))
        self._spawn_task(self._watch(process))

        if stop_pending:
            logger.info("Stop requested during spawn, stopping FFmpeg")
            self.stop()

        return True

    def _spawn_task(self, coro: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _read_output(self, stream: asyncio.StreamReader | None, channel: LogChannel) -> None:
        """Append each output line to the ring until EOF."""
        if stream is None:
            logger.warning(f"FFmpeg {channel} unavailable")
            return

        try:
            while True:
                try:
                    line = await stream.readline()
                except ValueError:
                    # Line longer than the reader limit, remainder discarded
                    logger.debug(f"FFmpeg {channel}: overlong line dropped")
                    continue

                if not line:
                    break

                # Progress updates are separated by carriage returns
                for message in line.decode("utf-8", errors="replace").replace("\r", "\n").splitlines():
                    message = message.strip()
                    if not message:
                        continue
                    self._record(channel, message)
                    self._log_output_line(message)

        except asyncio.CancelledError:
            logger.debug(f"FFmpeg {channel} reader cancelled")
            raise
        except Exception as e:
            logger.error(f"FFmpeg {channel} reader error: {e}")

    @staticmethod
    def _log_output_line(message: str) -> None:
        msg_lower = message.lower()
        if 'error' in msg_lower or 'fatal' in msg_lower:
            logger.error(f"FFmpeg: {message}")
        elif 'warning' in msg_lower:
            logger.warning(f"FFmpeg: {message}")
        else:
            logger.debug(f"FFmpeg: {message}")

    # ========================================================================
    # Exit Handling and Restart
    # ========================================================================

    async def _watch(self, process: Any) -> None:
        """Wait for the process to exit and apply the restart policy."""
        returncode = await process.wait()
        status = describe_exit(returncode)

        with self._lock:
            if process is not self._process:
                logger.debug(f"Exit of untracked FFmpeg process ({status})")
                return
            self._process = None
            deliberate = self._state == SupervisorState.STOPPING or self._shutting_down
            self._state = SupervisorState.STOPPED if deliberate else SupervisorState.EXITED

        metrics.ffmpeg_process_active.set(0)

        if deliberate:
            logger.info(f"FFmpeg process exited with {status}")
            self._record("system", f"FFmpeg process exited with {status}")
            metrics.ffmpeg_exits_total.labels(reason="requested").inc()
            return

        logger.warning(f"FFmpeg process exited unexpectedly with {status}")
        self._record("error", f"FFmpeg process exited unexpectedly with {status}")
        metrics.ffmpeg_exits_total.labels(reason="unexpected").inc()
        self._schedule_restart()

    def _schedule_restart(self) -> None:
        with self._lock:
            if self._shutting_down:
                return
            if self._restart_task is not None and not self._restart_task.done():
                return
            self._restart_task = self._spawn_task(self._restart_after_delay())

    async def _restart_after_delay(self) -> None:
        delay = self.config.ffmpeg.restart_delay
        logger.info(f"Restarting FFmpeg in {delay:g}s")
        await asyncio.sleep(delay)

        with self._lock:
            if self._shutting_down or self._process is not None:
                return
            if self._state != SupervisorState.EXITED:
                return
            self._state = SupervisorState.STOPPED
            # Past the backoff: stop() must no longer cancel this task
            self._restart_task = None

        logger.info("Restarting FFmpeg process")
        self._record("system", "Restarting FFmpeg process")
        metrics.ffmpeg_process_restarts_total.inc()
        await self.start()

    def _cancel_restart(self) -> None:
        task = self._restart_task
        if task is None or task.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if task is not current:
            task.cancel()
            logger.debug("Pending FFmpeg restart cancelled")
        self._restart_task = None

    # ========================================================================
    # Stop
    # ========================================================================

    def stop(self) -> None:
        """Request termination without waiting for it.

        Sends SIGTERM and schedules a SIGKILL after the grace window. A
        pending restart is cancelled. No-op if nothing is running.
        """
        with self._lock:
            self._cancel_restart()
            process = self._process
            if process is None:
                if self._state == SupervisorState.STARTING:
                    logger.info("FFmpeg spawn in flight, stopping once it lands")
                    self._state = SupervisorState.STOPPING
                    return
                logger.debug("FFmpeg not running, nothing to stop")
                if self._state == SupervisorState.EXITED:
                    self._state = SupervisorState.STOPPED
                return
            if self._state == SupervisorState.STOPPING:
                logger.debug("FFmpeg stop already in progress")
                return
            self._state = SupervisorState.STOPPING

        logger.info(f"Stopping FFmpeg process (PID={process.pid})")
        self._record("system", "Stopping FFmpeg process")

        try:
            process.terminate()
        except ProcessLookupError:
            logger.debug("FFmpeg process already gone")

        self._kill_task = self._spawn_task(self._escalate(process))

    async def _escalate(self, process: Any) -> None:
        """Kill the process if it outlives the grace window."""
        try:
            await asyncio.wait_for(process.wait(), timeout=self.config.ffmpeg.stop_grace)
            logger.debug("FFmpeg terminated gracefully")
            return
        except asyncio.TimeoutError:
            pass

        with self._lock:
            if self._process is not process:
                return

        logger.warning("FFmpeg did not exit within grace window, killing")
        self._record("system", "FFmpeg did not exit in time, sending SIGKILL")
        try:
            process.kill()
        except ProcessLookupError:
            logger.debug("FFmpeg process already gone")
        metrics.ffmpeg_forced_kills_total.inc()

        with self._lock:
            if self._process is process:
                self._process = None
                self._state = SupervisorState.STOPPED
        metrics.ffmpeg_process_active.set(0)

    async def wait_stopped(self, timeout: float | None = None) -> bool:
        """Wait until no process is tracked and no spawn is in flight.

        Returns:
            True if stopped before the timeout
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while self.is_running() or self.state in (SupervisorState.STARTING, SupervisorState.STOPPING):
            if deadline is not None and loop.time() >= deadline:
                return False
            await asyncio.sleep(0.05)
        return True

    async def cancel_background_tasks(self) -> None:
        """Cancel output readers, watchers and timers (used at shutdown)."""
        tasks = [task for task in self._tasks if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ========================================================================
    # Initial Content
    # ========================================================================

    async def initialize_content(self) -> bool:
        """Queue the default clip, or a generated placeholder, as first content.

        Skipped when named pipes are unavailable since the process then
        generates its own input.

        Returns:
            True if an initial clip was queued
        """
        if not self.supports_named_pipe:
            logger.info("Named pipes unavailable, skipping initial content")
            return False

        default = Path(self.config.initial_content)
        if default.is_file():
            logger.info(f"Queueing default content: {default}")
            return await asyncio.to_thread(self.channels.write_content, default)

        logger.warning(f"Default content not found: {default}, generating placeholder")
        placeholder = await self._generate_placeholder()
        if placeholder is None:
            return False

        logger.info(f"Queueing placeholder content: {placeholder}")
        return await asyncio.to_thread(self.channels.write_content, placeholder)

    def get_placeholder_path(self) -> Path:
        if self.config.placeholder_path is not None:
            return Path(self.config.placeholder_path)
        return Path(tempfile.gettempdir()) / PLACEHOLDER_FILENAME

    async def _generate_placeholder(self) -> Path | None:
        """Run a one-shot FFmpeg to produce a color + silence clip."""
        output = self.get_placeholder_path()
        cmd = build_placeholder_command(self.config.ffmpeg.binary, output)
        logger.debug(f"Placeholder command: {' '.join(cmd)}")

        try:
            output.parent.mkdir(parents=True, exist_ok=True)
            process = await self._spawn(
                *cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE
            )
        except (OSError, ValueError) as e:
            logger.error(f"Failed to generate placeholder: {e}")
            self._record("error", f"Failed to generate placeholder: {e}")
            return None

        try:
            _, stderr = await asyncio.wait_for(process.communicate(), timeout=PLACEHOLDER_TIMEOUT)
        except asyncio.TimeoutError:
            logger.error("Placeholder generation timed out")
            try:
                process.kill()
            except ProcessLookupError:
                pass
            return None

        if process.returncode != 0:
            error_msg = (stderr or b"").decode("utf-8", errors="replace").strip()
            logger.error(f"Placeholder generation failed ({describe_exit(process.returncode)}): {error_msg}")
            self._record("error", f"Placeholder generation failed: {error_msg}")
            return None

        logger.info(f"Generated placeholder clip: {output}")
        return output
