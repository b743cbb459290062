"""Input channel management for the transcoder.

Every input the FFmpeg process reads is a stable filesystem path:
- content channel: a concat-demuxer list, appended one entry per clip
- layer channels: overlay sources, fully overwritten on each update

On POSIX the backing objects are named pipes (FIFOs). Where mkfifo is not
available they are plain files and the supervisor substitutes a synthetic
input, since a regular file cannot be read as a live stream.

Write Model:
    Each channel owns one writer thread. Writes are queued to it, so appends
    to the same channel never interleave and run in call order. For regular
    files the caller waits for the result. A FIFO write blocks until the
    transcoder opens the read end, so the caller waits at most
    FIFO_WRITE_WAIT and then returns True with the write still queued.

Failure Semantics:
    write_content / write_layer return False on bad input or I/O errors and
    never raise. Only create_all() failing to create the base directory is
    fatal. cleanup() never raises.

Logging Strategy:
    DEBUG - Backing object creation, queued writes
    INFO  - Channel updates, cleanup
    WARN  - Degraded (non-FIFO) operation, cleanup errors
    ERROR - Missing source files, invalid indices, write failures
"""
from __future__ import annotations

import concurrent.futures
import logging
import os
import queue
import stat
import threading
from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import BinaryIO, Callable, Final

from .. import metrics
from ..models.settings import StreamerConfig
from ..utils.ffmpeg import detect_named_pipe_support

logger = logging.getLogger(__name__)

# ============================================================================
# Constants
# ============================================================================

CONTENT_ROLE: Final[str] = "content"

FIFO_WRITE_WAIT: Final[float] = 0.5
"""Seconds a caller waits for a FIFO write before returning with it queued."""

COPY_CHUNK_SIZE: Final[int] = 64 * 1024


def layer_role(index: int) -> str:
    return f"layer:{index}"


def format_concat_entry(path: Path) -> str:
    """Concat-demuxer line referencing an absolute path.

    Single quotes are closed, escaped and reopened as the concat syntax
    requires.
    """
    quoted = str(path.resolve()).replace("'", "'\\''")
    return f"file '{quoted}'\n"


class InvalidIndexError(IndexError):
    """Layer index outside [0, layer_count)."""


@dataclass
class InputChannel:
    """One backing object the transcoder reads."""

    role: str
    path: Path
    is_named_pipe: bool = False


# ============================================================================
# Per-Channel Writer
# ============================================================================

WriteJob = Callable[[], bool]


class _ChannelWriter:
    """Daemon thread running write jobs for one channel in submission order."""

    def __init__(self, role: str) -> None:
        self.role = role
        self._jobs: queue.Queue[tuple[WriteJob, concurrent.futures.Future] | None] = queue.Queue()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()
        self._closed = False
        self.busy = False

    def submit(self, job: WriteJob) -> concurrent.futures.Future:
        future: concurrent.futures.Future = concurrent.futures.Future()
        with self._lock:
            if self._closed:
                future.set_result(False)
                return future
            if self._thread is None:
                self._thread = threading.Thread(
                    target=self._run,
                    name=f"channel-writer-{self.role}",
                    daemon=True
                )
                self._thread.start()
            self._jobs.put((job, future))
        return future

    def _run(self) -> None:
        while True:
            item = self._jobs.get()
            if item is None:
                return
            job, future = item
            if not future.set_running_or_notify_cancel():
                continue
            self.busy = True
            try:
                future.set_result(job())
            except Exception as e:
                logger.error(f"Channel {self.role}: write job failed: {e}", exc_info=True)
                future.set_result(False)
            finally:
                self.busy = False

    def close(self) -> int:
        """Stop accepting jobs and cancel queued ones.

        Returns:
            Number of queued jobs cancelled
        """
        with self._lock:
            self._closed = True
        cancelled = 0
        while True:
            try:
                item = self._jobs.get_nowait()
            except queue.Empty:
                break
            if item is not None and item[1].cancel():
                cancelled += 1
        self._jobs.put(None)
        return cancelled


# ============================================================================
# Input Channel Manager
# ============================================================================

class InputChannelManager:
    """Owns the content channel and the configured overlay layer channels.

    Attributes:
        supports_named_pipe: Capability flag shared with the supervisor.
            Resolved once at construction; create_all() downgrades it if
            FIFO creation fails.
    """

    def __init__(
        self,
        config: StreamerConfig,
        supports_named_pipe: bool | None = None
    ) -> None:
        self.config = config
        self.base_dir = Path(config.fifos.base_dir)
        self.supports_named_pipe = (
            detect_named_pipe_support() if supports_named_pipe is None else supports_named_pipe
        )

        self._content = InputChannel(CONTENT_ROLE, self.base_dir / config.fifos.content)
        self._layers = [
            InputChannel(layer_role(i), self.base_dir / name)
            for i, name in enumerate(config.fifos.layers)
        ]
        self._writers = {channel.role: _ChannelWriter(channel.role) for channel in self.channels}
        self._layer_generations = [0] * len(self._layers)
        self._generation_lock = threading.Lock()
        self._active_handles: dict[str, BinaryIO] = {}
        self._handles_lock = threading.Lock()
        self._closed = False

    @property
    def channels(self) -> list[InputChannel]:
        """Content first, then layers in index order."""
        return [self._content, *self._layers]

    @property
    def layer_count(self) -> int:
        return len(self._layers)

    # ========================================================================
    # Creation
    # ========================================================================

    def create_all(self) -> None:
        """Create every backing object.

        Raises:
            OSError: Base directory cannot be created
        """
        logger.info("Creating input channels...")

        self.base_dir.mkdir(parents=True, exist_ok=True)

        if not self.supports_named_pipe:
            logger.warning(
                "Named pipes unavailable: using regular files for input channels. "
                "The transcoder will run on a synthetic input."
            )

        if self._closed:
            # cleanup() shut the writer threads down for good
            self._writers = {channel.role: _ChannelWriter(channel.role) for channel in self.channels}
            with self._generation_lock:
                self._layer_generations = [0] * len(self._layers)

        for channel in self.channels:
            self._create_single(channel)

        self._closed = False
        kind = "FIFOs" if self.supports_named_pipe else "placeholder files"
        logger.info(f"Created {len(self.channels)} input channel(s) as {kind} in {self.base_dir}")

    def _create_single(self, channel: InputChannel) -> None:
        """Create one backing object, keeping an existing one of the right kind."""
        path = channel.path

        if path.exists() or path.is_symlink():
            is_fifo = stat.S_ISFIFO(path.lstat().st_mode)
            if self.supports_named_pipe and is_fifo:
                channel.is_named_pipe = True
                logger.debug(f"FIFO already exists: {path}")
                return
            if not self.supports_named_pipe and path.is_file():
                channel.is_named_pipe = False
                logger.debug(f"Channel file already exists: {path}")
                return
            logger.debug(f"Replacing backing object of the wrong kind: {path}")
            path.unlink()

        if self.supports_named_pipe:
            try:
                os.mkfifo(path)
                channel.is_named_pipe = True
                logger.debug(f"Created FIFO: {path}")
                return
            except OSError as e:
                logger.error(f"Failed to create FIFO {path}: {e}")
                logger.warning("FIFO creation failed, falling back to regular files")
                self.supports_named_pipe = False

        path.write_bytes(b"")
        channel.is_named_pipe = False
        logger.debug(f"Created placeholder file: {path}")

    # ========================================================================
    # Accessors
    # ========================================================================

    def get_content_path(self) -> Path:
        return self._content.path

    def get_layer_path(self, index: int) -> Path:
        """Path of layer channel `index`.

        Raises:
            InvalidIndexError: index outside [0, layer_count)
        """
        return self._get_layer(index).path

    def _get_layer(self, index: int) -> InputChannel:
        if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < len(self._layers):
            raise InvalidIndexError(f"Invalid layer index: {index}")
        return self._layers[index]

    # ========================================================================
    # Writes
    # ========================================================================

    def write_content(self, path: str | os.PathLike[str]) -> bool:
        """Append a clip to the content channel.

        Args:
            path: Media file to play next (must exist now)

        Returns:
            True if the entry was appended (or queued for the reader)
        """
        source = Path(path)
        if self._closed:
            logger.error("Input channels are closed, content update rejected")
            metrics.channel_updates_total.labels(channel="content", status="failure").inc()
            return False

        if not source.exists():
            logger.error(f"Content file does not exist: {source}")
            metrics.channel_updates_total.labels(channel="content", status="failure").inc()
            return False

        entry = format_concat_entry(source)
        job = partial(self._append_entry, self._content, entry)
        result = self._submit(self._content, job)

        if result:
            logger.info(f"Updated main content: {source}")
        metrics.channel_updates_total.labels(
            channel="content",
            status="success" if result else "failure"
        ).inc()
        return result

    def write_layer(self, index: int, path: str | os.PathLike[str]) -> bool:
        """Replace a layer channel's contents with the bytes of a file.

        Args:
            index: Layer index
            path: Overlay source (must exist now)

        Returns:
            True if the copy completed (or is queued for the reader)
        """
        source = Path(path)
        try:
            channel = self._get_layer(index)
        except InvalidIndexError:
            logger.error(
                f"Invalid layer index: {index}. "
                f"Available layers: {self._describe_layer_range()}"
            )
            metrics.channel_updates_total.labels(channel="layer", status="failure").inc()
            return False

        if self._closed:
            logger.error("Input channels are closed, layer update rejected")
            metrics.channel_updates_total.labels(channel="layer", status="failure").inc()
            return False

        if not source.is_file():
            logger.error(f"Layer file does not exist: {source}")
            metrics.channel_updates_total.labels(channel="layer", status="failure").inc()
            return False

        with self._generation_lock:
            self._layer_generations[index] += 1
            generation = self._layer_generations[index]

        job = partial(self._copy_source, channel, index, source, generation)
        result = self._submit(channel, job)

        if result:
            logger.info(f"Updated layer {index}: {source}")
        metrics.channel_updates_total.labels(
            channel="layer",
            status="success" if result else "failure"
        ).inc()
        return result

    def _describe_layer_range(self) -> str:
        if not self._layers:
            return "none"
        return f"0-{len(self._layers) - 1}"

    def _submit(self, channel: InputChannel, job: WriteJob) -> bool:
        """Queue a job on the channel's writer and wait for it as allowed."""
        future = self._writers[channel.role].submit(job)

        if not channel.is_named_pipe:
            return future.result()

        try:
            return future.result(timeout=FIFO_WRITE_WAIT)
        except concurrent.futures.TimeoutError:
            logger.info(f"Channel {channel.role}: no reader attached yet, write queued")
            return True

    def _open_for_write(self, channel: InputChannel, append: bool) -> BinaryIO:
        """Open the backing object. Blocks on a FIFO until a reader attaches."""
        flags = os.O_WRONLY | (os.O_APPEND if append else os.O_TRUNC)
        if not channel.is_named_pipe:
            flags |= os.O_CREAT
        fd = os.open(channel.path, flags, 0o644)
        handle = os.fdopen(fd, "wb")
        with self._handles_lock:
            self._active_handles[channel.role] = handle
        return handle

    def _release_handle(self, channel: InputChannel, handle: BinaryIO) -> None:
        with self._handles_lock:
            if self._active_handles.get(channel.role) is handle:
                del self._active_handles[channel.role]
        handle.close()

    def _append_entry(self, channel: InputChannel, entry: str) -> bool:
        """Writer-thread job: one append-then-close cycle."""
        try:
            handle = self._open_for_write(channel, append=True)
            try:
                handle.write(entry.encode("utf-8"))
                handle.flush()
            finally:
                self._release_handle(channel, handle)
            return True
        except (OSError, ValueError) as e:
            logger.error(f"Failed to append to {channel.role} channel: {e}")
            return False

    def _copy_source(self, channel: InputChannel, index: int, source: Path, generation: int) -> bool:
        """Writer-thread job: overwrite a layer with the bytes of `source`.

        Stops early if a newer update for the same layer arrives.
        """
        if self._layer_generations[index] != generation:
            logger.debug(f"Layer {index}: update superseded before start")
            return True

        try:
            with open(source, "rb") as src:
                handle = self._open_for_write(channel, append=False)
                try:
                    while True:
                        if self._layer_generations[index] != generation:
                            logger.debug(f"Layer {index}: update superseded mid-copy")
                            break
                        chunk = src.read(COPY_CHUNK_SIZE)
                        if not chunk:
                            break
                        handle.write(chunk)
                    handle.flush()
                finally:
                    self._release_handle(channel, handle)
            return True
        except (OSError, ValueError) as e:
            logger.error(f"Failed to update layer {index} with {source}: {e}")
            return False

    # ========================================================================
    # Cleanup
    # ========================================================================

    def cleanup(self) -> None:
        """Close open handles and remove every backing object. Never raises."""
        logger.info("Cleaning up input channels...")
        self._closed = True

        for writer in self._writers.values():
            cancelled = writer.close()
            if cancelled:
                logger.debug(f"Cancelled {cancelled} queued write(s) on {writer.role}")

        with self._handles_lock:
            handles = list(self._active_handles.items())
            self._active_handles.clear()

        for role, handle in handles:
            try:
                handle.close()
                logger.debug(f"Closed channel handle: {role}")
            except OSError as e:
                logger.warning(f"Error closing channel {role}: {e}")

        for channel in self.channels:
            if channel.is_named_pipe and self._writers[channel.role].busy:
                self._release_blocked_writer(channel)
            try:
                channel.path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning(f"Error removing channel {channel.path}: {e}")

    def _release_blocked_writer(self, channel: InputChannel) -> None:
        """Briefly open the read end so a writer blocked in open() returns."""
        try:
            fd = os.open(channel.path, os.O_RDONLY | os.O_NONBLOCK)
            os.close(fd)
        except OSError as e:
            logger.debug(f"Could not release writer on {channel.role}: {e}")
