"""HLS output directory retention.

The transcoder writes numbered segments and a rolling playlist into the
output directory. A periodic pass keeps the number of segment files on disk
bounded while the transcoder keeps writing new ones.

Retention Window:
    playlist_size + SAFETY_MARGIN segments. The margin keeps segments that
    just left the playlist available to players still fetching them.

Logging Strategy:
    DEBUG - Pass results, individual deletions
    INFO  - Scheduler start/stop, shutdown cleanup
    WARN  - Unreadable directory, failed deletions
"""
from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Final

from .. import metrics
from ..models.settings import SEGMENT_PLACEHOLDER, StreamerConfig

logger = logging.getLogger(__name__)

SAFETY_MARGIN: Final[int] = 2


def segment_regex(pattern: str) -> re.Pattern[str]:
    """Regex matching filenames produced by a printf-style segment pattern.

    Example:
        "stream_%03d.ts" -> ^stream_\\d+\\.ts$

    Raises:
        ValueError: pattern does not hold exactly one %d-style placeholder
    """
    parts = SEGMENT_PLACEHOLDER.split(pattern)
    if len(parts) != 2 or "%" in parts[0] + parts[1]:
        raise ValueError(f"Segment pattern needs one %d-style placeholder: {pattern!r}")
    prefix, suffix = parts
    return re.compile(f"^{re.escape(prefix)}\\d+{re.escape(suffix)}$")


@dataclass(frozen=True)
class SegmentFile:
    name: str
    path: Path
    mtime: float


class OutputRetentionManager:
    """Bounds the number of segment files in the output directory."""

    def __init__(self, config: StreamerConfig) -> None:
        self.config = config
        self.output_dir = Path(config.hls.output_dir)
        self.playlist_name = config.hls.playlist_name
        self.cleanup_interval = config.hls.cleanup_interval
        self.retention_window = config.hls.playlist_size + SAFETY_MARGIN
        self._segment_re = segment_regex(config.hls.segment_pattern)
        self._task: asyncio.Task | None = None

    # ========================================================================
    # Paths
    # ========================================================================

    def setup_directory(self) -> None:
        """Create the output directory.

        Raises:
            OSError: Directory cannot be created
        """
        self.output_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"HLS output directory: {self.output_dir}")

    def get_output_path(self) -> Path:
        return self.output_dir / self.playlist_name

    def get_segment_pattern_path(self) -> Path:
        return self.output_dir / self.config.hls.segment_pattern

    def get_stream_url(self, base_url: str = "") -> str:
        return f"{base_url.rstrip('/')}/hls/{self.playlist_name}"

    # ========================================================================
    # Scheduler
    # ========================================================================

    def start_cleanup_scheduler(self) -> None:
        """Start the periodic cleanup task (no-op if already running)."""
        if self._task is not None and not self._task.done():
            logger.debug("Cleanup scheduler already running")
            return
        self._task = asyncio.get_running_loop().create_task(self._run_scheduler())
        logger.info(f"Segment cleanup scheduled every {self.cleanup_interval:g}s (window={self.retention_window})")

    def stop_cleanup_scheduler(self) -> None:
        """Stop the periodic cleanup task. Idempotent."""
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        logger.info("Segment cleanup scheduler stopped")

    @property
    def scheduler_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _run_scheduler(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval)
            try:
                await asyncio.to_thread(self.cleanup_old_segments)
            except Exception as e:
                logger.error(f"Segment cleanup pass failed: {e}", exc_info=True)

    # ========================================================================
    # Cleanup
    # ========================================================================

    def list_segments(self) -> list[SegmentFile]:
        """Segment files currently on disk.

        Raises:
            OSError: Directory cannot be read
        """
        segments: list[SegmentFile] = []
        for entry in self.output_dir.iterdir():
            if not self._segment_re.match(entry.name):
                continue
            try:
                mtime = entry.stat().st_mtime
            except FileNotFoundError:
                continue
            segments.append(SegmentFile(entry.name, entry, mtime))
        return segments

    def cleanup_old_segments(self) -> int:
        """Delete the oldest segments beyond the retention window.

        Returns:
            Number of files deleted
        """
        try:
            segments = self.list_segments()
        except OSError as e:
            logger.warning(f"Cannot read output directory {self.output_dir}: {e}")
            return 0

        metrics.hls_segments_current.set(len(segments))
        excess = len(segments) - self.retention_window
        if excess <= 0:
            return 0

        segments.sort(key=lambda segment: segment.mtime)
        deleted = 0
        for segment in segments[:excess]:
            try:
                segment.path.unlink()
                deleted += 1
                logger.debug(f"Deleted old segment: {segment.name}")
            except OSError as e:
                logger.warning(f"Failed to delete segment {segment.name}: {e}")

        metrics.hls_segments_deleted_total.inc(deleted)
        metrics.hls_segments_current.set(len(segments) - deleted)
        logger.debug(f"Cleanup pass removed {deleted} segment(s)")
        return deleted

    def cleanup_all(self) -> None:
        """Delete the playlist and every segment file. Never raises."""
        logger.info("Removing HLS output files...")
        try:
            entries = list(self.output_dir.iterdir())
        except OSError as e:
            logger.warning(f"Cannot read output directory {self.output_dir}: {e}")
            return

        for entry in entries:
            if entry.suffix not in (".ts", ".m3u8"):
                continue
            try:
                entry.unlink()
            except OSError as e:
                logger.warning(f"Failed to delete {entry.name}: {e}")

        metrics.hls_segments_current.set(0)

    # ========================================================================
    # Status
    # ========================================================================

    def is_generating_segments(self) -> bool:
        return self.get_output_path().exists()

    def get_current_segment_count(self) -> int:
        try:
            return len(self.list_segments())
        except OSError:
            return 0
