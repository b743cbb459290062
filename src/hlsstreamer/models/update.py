"""Update request models for the HLS streamer API.

Defines Pydantic v2 models for POST /api/update:
- LayerUpdateData: overlay replacement payload
- FilterUpdateData: live filter command payload
- UpdateRequest: envelope with a type discriminator
- UpdateResponse: uniform {success, message, timestamp} reply

Field Validation:
- content data must be a non-empty path string
- layer data requires an integer index and a path
- filter data requires a non-empty command (max 1000 chars)
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal, Union

from pydantic import BaseModel, Field, model_validator

# ============================================================================
# Payloads
# ============================================================================

class LayerUpdateData(BaseModel):
    """Replace one overlay layer with a new source."""

    index: int = Field(description="Layer index (0-based)", examples=[0])
    path: str = Field(min_length=1, description="Source file path", examples=["samples/watermark.png"])


class FilterUpdateData(BaseModel):
    """Live parameter command forwarded to the running transcoder."""

    command: str = Field(
        min_length=1,
        max_length=1000,
        description="Filter command",
        examples=["Parsed_overlay_1 x=200:y=300"]
    )


# ============================================================================
# Request Envelope
# ============================================================================

class UpdateRequest(BaseModel):
    """Body of POST /api/update.

    Examples:
        {"type": "content", "data": "/media/clip.mp4"}
        {"type": "layer", "data": {"index": 0, "path": "/media/logo.png"}}
        {"type": "filter", "data": {"command": "Parsed_overlay_1 x=200:y=300"}}
    """

    type: Literal["content", "layer", "filter"] = Field(description="Update kind")
    data: Union[str, LayerUpdateData, FilterUpdateData] = Field(description="Type-specific payload")

    @model_validator(mode="after")
    def validate_payload_matches_type(self) -> UpdateRequest:
        """Validate that the payload shape matches the declared type."""
        expected = {
            "content": str,
            "layer": LayerUpdateData,
            "filter": FilterUpdateData,
        }[self.type]
        if not isinstance(self.data, expected):
            raise ValueError(f"Invalid data for update type '{self.type}'")
        if self.type == "content" and not self.data.strip():
            raise ValueError("Content update requires a file path")
        return self


class UpdateResponse(BaseModel):
    """Result of an update request."""

    success: bool
    message: str
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
