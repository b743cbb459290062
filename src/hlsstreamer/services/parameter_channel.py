"""Live parameter channel to the running transcoder.

Sending side of a ZeroMQ PUSH channel. Commands are opaque strings in the
transcoder's filter-command syntax (e.g. "drawtext@title text 'Hello'");
nothing here parses or validates them. The filter graph built by the
supervisor embeds the receiving zmq filter.

Delivery:
    Sends are non-blocking. With no peer attached the send fails with
    zmq.Again and the attempt is reported as failed. There is no delivery
    acknowledgement, so is_connected() only reflects local bind state.

Logging Strategy:
    DEBUG - Socket options
    INFO  - Bind, close, sent instructions
    ERROR - Send failures, sends before initialize()
"""
from __future__ import annotations

import logging
import threading
from typing import Callable

import zmq

from .. import metrics
from ..models.logs import LogEntry
from ..models.settings import StreamerConfig
from .log_buffer import LogBuffer, LogCallback

logger = logging.getLogger(__name__)


class LiveParameterChannel:
    """PUSH socket bound to the configured ZeroMQ address."""

    def __init__(self, config: StreamerConfig) -> None:
        self.config = config
        self.address = config.zmq.address
        self.logs = LogBuffer(config.log_capacity)
        self._context: zmq.Context | None = None
        self._socket: zmq.Socket | None = None
        self._lock = threading.Lock()

    def initialize(self) -> None:
        """Create and bind the sending socket.

        Raises:
            zmq.ZMQError: Bind failed (address in use, bad endpoint)
        """
        with self._lock:
            if self._socket is not None:
                logger.debug("Parameter channel already initialized")
                return

            context = zmq.Context()
            socket = context.socket(zmq.PUSH)
            socket.setsockopt(zmq.LINGER, 0)
            try:
                socket.bind(self.address)
            except zmq.ZMQError as e:
                logger.error(f"Failed to bind parameter channel at {self.address}: {e}")
                socket.close()
                context.term()
                raise

            self._context = context
            self._socket = socket

        logger.info(f"Parameter channel bound at {self.address}")

    def send_instruction(self, command: str) -> bool:
        """Push a raw command to the transcoder.

        Args:
            command: Filter command string

        Returns:
            True if the message was queued on the socket
        """
        with self._lock:
            socket = self._socket
            if socket is None:
                logger.error("Parameter channel not initialized")
                self.logs.append("error", f"Not initialized, dropped: {command}")
                metrics.filter_instructions_total.labels(status="failure").inc()
                return False

            try:
                socket.send_string(command, flags=zmq.NOBLOCK)
            except zmq.Again:
                logger.error(f"Parameter channel has no receiver, instruction not sent: {command}")
                self.logs.append("error", f"No receiver attached: {command}")
                metrics.filter_instructions_total.labels(status="failure").inc()
                return False
            except zmq.ZMQError as e:
                logger.error(f"Failed to send instruction: {e}")
                self.logs.append("error", f"Send failed ({e}): {command}")
                metrics.filter_instructions_total.labels(status="failure").inc()
                return False

        logger.info(f"Sent instruction: {command}")
        self.logs.append("sent", command)
        metrics.filter_instructions_total.labels(status="success").inc()
        return True

    def is_connected(self) -> bool:
        with self._lock:
            return self._socket is not None

    def close(self) -> None:
        """Close the socket and context. Idempotent, never raises."""
        with self._lock:
            socket, context = self._socket, self._context
            self._socket = None
            self._context = None

        if socket is None:
            return

        try:
            socket.close()
        except zmq.ZMQError as e:
            logger.warning(f"Error closing parameter channel socket: {e}")
        if context is not None:
            try:
                context.term()
            except zmq.ZMQError as e:
                logger.warning(f"Error terminating ZeroMQ context: {e}")

        logger.info("Parameter channel closed")

    # ========================================================================
    # Logs
    # ========================================================================

    def get_logs(self) -> list[LogEntry]:
        return self.logs.get_logs()

    def clear_logs(self) -> None:
        self.logs.clear()

    def on_log(self, callback: LogCallback) -> Callable[[], None]:
        return self.logs.on_log(callback)
