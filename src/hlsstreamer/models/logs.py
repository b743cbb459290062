"""Log entry model shared by the process and parameter-channel logs."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field

LogChannel = Literal["stdout", "stderr", "system", "error", "sent"]
"""Origin of a log entry.

stdout/stderr: captured child-process output
system: supervisor lifecycle events
sent: instruction pushed over the parameter channel
error: failures in either log
"""


class LogEntry(BaseModel):
    """Single line held in a LogBuffer."""

    timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat(),
        description="ISO 8601 UTC timestamp"
    )
    channel: LogChannel = Field(description="Entry origin")
    text: str = Field(description="Log line without trailing newline")
