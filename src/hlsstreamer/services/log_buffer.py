"""Bounded in-memory log ring with live subscription.

Holds the most recent LogEntry records for one subsystem (process output or
parameter channel). Capacity is fixed at construction; appending beyond it
evicts the oldest entry. Producers never block on consumers: subscribers are
called synchronously and any exception they raise is logged and swallowed,
so a broken subscriber loses its events but never stalls the producer.

Thread Safety:
    A single lock guards the ring and the subscriber list. Callbacks run
    outside the lock.

Usage:
    >>> buffer = LogBuffer(capacity=1000)
    >>> unsubscribe = buffer.on_log(print)
    >>> buffer.append("stderr", "frame=  100 fps=30")
    >>> unsubscribe()
"""
from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Callable

from ..models.logs import LogChannel, LogEntry

logger = logging.getLogger(__name__)

LogCallback = Callable[[LogEntry], None]


class LogBuffer:
    """Fixed-capacity ring of LogEntry with fan-out to subscribers."""

    def __init__(self, capacity: int = 1000) -> None:
        if capacity < 1:
            raise ValueError("Log buffer capacity must be at least 1")
        self.capacity = capacity
        self._entries: deque[LogEntry] = deque(maxlen=capacity)
        self._subscribers: list[LogCallback] = []
        self._lock = threading.Lock()

    def append(self, channel: LogChannel, text: str) -> LogEntry:
        """Record an entry and notify subscribers.

        Args:
            channel: Entry origin
            text: Message text

        Returns:
            The stored entry
        """
        entry = LogEntry(channel=channel, text=text)
        with self._lock:
            self._entries.append(entry)
            subscribers = list(self._subscribers)

        for callback in subscribers:
            try:
                callback(entry)
            except Exception as e:
                logger.debug(f"Log subscriber failed, event dropped: {e}")

        return entry

    def get_logs(self) -> list[LogEntry]:
        """Snapshot of the ring, most recent last."""
        with self._lock:
            return list(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def on_log(self, callback: LogCallback) -> Callable[[], None]:
        """Subscribe to new entries.

        Args:
            callback: Called with each new LogEntry

        Returns:
            Function that removes the subscription (safe to call twice)
        """
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
