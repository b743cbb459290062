"""Configuration models for the HLS streamer.

Defines Pydantic v2 models for every configuration section:
- HttpSettings: bind address of the API server
- ZmqSettings: live parameter channel address
- FFmpegSettings: binary, encoder quality and process supervision timing
- HlsSettings: segmented output layout and retention
- FifoSettings: input channel directory and names
- StreamerConfig: root model combining all sections

Field Validation:
- Ports must be in 1-65535
- Segment time and playlist size must be at least 1
- Layer channel names must be unique and non-empty
"""
from __future__ import annotations

import re
from pathlib import Path

from pydantic import BaseModel, Field, field_validator

SEGMENT_PLACEHOLDER = re.compile(r"%0?\d*d")
"""printf-style integer placeholder in a segment filename pattern."""

# ============================================================================
# Section Models
# ============================================================================

class HttpSettings(BaseModel):
    """HTTP server bind address."""

    host: str = Field(default="0.0.0.0", description="Bind host")
    port: int = Field(default=3000, ge=1, le=65535, description="Bind port")


class ZmqSettings(BaseModel):
    """Live parameter channel endpoint."""

    protocol: str = Field(default="tcp", description="ZeroMQ transport")
    host: str = Field(default="localhost", description="Host the sending socket binds to")
    port: int = Field(default=5555, ge=1, le=65535, description="Channel port")

    @property
    def address(self) -> str:
        """Bind address for the sending socket."""
        return f"{self.protocol}://{self.host}:{self.port}"


class FFmpegSettings(BaseModel):
    """Transcoder binary, encoding quality and supervision timing."""

    binary: str = Field(default="ffmpeg", min_length=1)
    preset: str = Field(default="ultrafast")
    crf: int = Field(default=23, ge=0, le=51)
    gop: int = Field(default=48, ge=1)
    audio_bitrate: str = Field(default="128k")
    restart_delay: float = Field(
        default=5.0,
        ge=0,
        description="Backoff before restarting after an unexpected exit (seconds)"
    )
    stop_grace: float = Field(
        default=10.0,
        ge=0,
        description="Grace window between SIGTERM and SIGKILL (seconds)"
    )
    start_delay: float = Field(
        default=2.0,
        ge=0,
        description="Delay before the first start so FIFOs are ready (seconds)"
    )


class HlsSettings(BaseModel):
    """Segmented output parameters."""

    segment_time: int = Field(default=2, ge=1)
    playlist_size: int = Field(default=5, ge=1)
    output_dir: Path = Field(default=Path("./hls"))
    segment_pattern: str = Field(default="stream_%03d.ts")
    playlist_name: str = Field(default="stream.m3u8")
    cleanup_interval: float = Field(default=30.0, gt=0)
    cleanup_on_shutdown: bool = Field(default=True)

    @field_validator("segment_pattern")
    @classmethod
    def validate_segment_pattern(cls, value: str) -> str:
        """Pattern must contain exactly one zero-padded integer placeholder."""
        if value.count("%") != 1 or len(SEGMENT_PLACEHOLDER.findall(value)) != 1:
            raise ValueError("segment_pattern must contain one %d-style placeholder")
        return value


class FifoSettings(BaseModel):
    """Input channel directory and backing object names."""

    base_dir: Path = Field(default=Path("./fifos"))
    content: str = Field(default="content.fifo", min_length=1)
    layers: list[str] = Field(default_factory=lambda: ["overlay1.fifo", "overlay2.fifo"])

    @field_validator("layers")
    @classmethod
    def validate_layers(cls, value: list[str]) -> list[str]:
        """Layer names must be non-empty and unique."""
        names = [name.strip() for name in value]
        if any(not name for name in names):
            raise ValueError("Layer names must be non-empty")
        if len(names) != len(set(names)):
            raise ValueError("Layer names must be unique")
        return names


# ============================================================================
# Root Model
# ============================================================================

class StreamerConfig(BaseModel):
    """Complete streamer configuration."""

    http: HttpSettings = Field(default_factory=HttpSettings)
    zmq: ZmqSettings = Field(default_factory=ZmqSettings)
    ffmpeg: FFmpegSettings = Field(default_factory=FFmpegSettings)
    hls: HlsSettings = Field(default_factory=HlsSettings)
    fifos: FifoSettings = Field(default_factory=FifoSettings)
    initial_content: Path = Field(default=Path("./assets/default.mp4"))
    placeholder_path: Path | None = Field(
        default=None,
        description="Where the synthesized placeholder clip is written (default: temp dir)"
    )
    log_capacity: int = Field(default=1000, ge=1)

    @property
    def layer_count(self) -> int:
        return len(self.fifos.layers)
