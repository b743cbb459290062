"""FFmpeg helpers: filter graph, placeholder clip and platform probe.

Filter Graph Layout (N layers, inputs 0..N):
    [0:v] content, [1:v]..[N:v] layers composited in index order so layer 0
    sits under layer 1 and so on. Layer i (input i+1) is placed at
    (i*50, i*50). The zmq filter terminates the video chain; all audio
    tracks are mixed with amix.

    0 layers: [0:v]zmq=...[vout];[0:a]anull[aout]
    2 layers: [0:v][1:v]overlay=0:0[v1];[v1][2:v]overlay=50:50,zmq=...[vout];
              [0:a][1:a][2:a]amix=inputs=3[aout]

Logging Strategy:
    DEBUG - Generated graph and commands
    INFO  - Capability probe result
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Final

from ..config.ffmpeg_defaults import (
    PLACEHOLDER_DURATION,
    SYNTHETIC_AUDIO,
    SYNTHETIC_VIDEO,
)

logger = logging.getLogger(__name__)

# ============================================================================
# Constants
# ============================================================================

VIDEO_OUT_LABEL: Final[str] = "[vout]"
AUDIO_OUT_LABEL: Final[str] = "[aout]"

OVERLAY_OFFSET_STEP: Final[int] = 50
"""Pixel offset between successive overlay layers."""

# ============================================================================
# Filter Graph
# ============================================================================

def escape_filter_value(value: str) -> str:
    """Escape characters that are special inside a filtergraph option value."""
    for char in ("\\", ":", "*", ",", ";", "[", "]", "'"):
        value = value.replace(char, "\\" + char)
    return value


def build_zmq_filter(port: int) -> str:
    """zmq filter bound on all interfaces at the given port."""
    return f"zmq=bind_address={escape_filter_value(f'tcp://*:{port}')}"


def build_filter_complex(layer_count: int, zmq_port: int) -> str:
    """Build the filter_complex expression for the given layer count.

    Args:
        layer_count: Number of overlay layer inputs after the content input
        zmq_port: Port the zmq filter binds

    Returns:
        Filter graph producing [vout] and [aout]

    Raises:
        ValueError: Negative layer count
    """
    if layer_count < 0:
        raise ValueError(f"Invalid layer count: {layer_count}")

    zmq_filter = build_zmq_filter(zmq_port)
    chains: list[str] = []

    if layer_count == 0:
        chains.append(f"[0:v]{zmq_filter}{VIDEO_OUT_LABEL}")
        chains.append(f"[0:a]anull{AUDIO_OUT_LABEL}")
    else:
        previous = "[0:v]"
        for layer in range(layer_count):
            offset = layer * OVERLAY_OFFSET_STEP
            overlay = f"{previous}[{layer + 1}:v]overlay={offset}:{offset}"
            if layer == layer_count - 1:
                chains.append(f"{overlay},{zmq_filter}{VIDEO_OUT_LABEL}")
            else:
                previous = f"[v{layer + 1}]"
                chains.append(f"{overlay}{previous}")

        audio_inputs = "".join(f"[{i}:a]" for i in range(layer_count + 1))
        chains.append(f"{audio_inputs}amix=inputs={layer_count + 1}{AUDIO_OUT_LABEL}")

    graph = ";".join(chains)
    logger.debug(f"Filter graph ({layer_count} layer(s)): {graph}")
    return graph


def build_synthetic_filter_complex(zmq_port: int) -> str:
    """Filter graph for the synthetic lavfi inputs (video 0, audio 1).

    Keeps the zmq sink so live instructions still have a receiver.
    """
    graph = f"[0:v]{build_zmq_filter(zmq_port)}{VIDEO_OUT_LABEL};[1:a]anull{AUDIO_OUT_LABEL}"
    logger.debug(f"Synthetic filter graph: {graph}")
    return graph


# ============================================================================
# Placeholder Clip
# ============================================================================

def build_placeholder_command(binary: str, output_path: Path) -> list[str]:
    """Command producing a solid color + silence clip of fixed duration.

    Args:
        binary: FFmpeg executable
        output_path: Target MP4 file (overwritten)

    Returns:
        Argument vector for a one-shot invocation
    """
    return [
        binary,
        "-hide_banner",
        "-loglevel", "error",
        "-nostdin",
        "-f", "lavfi", "-i", f"{SYNTHETIC_VIDEO}:d={PLACEHOLDER_DURATION}",
        "-f", "lavfi", "-i", SYNTHETIC_AUDIO,
        "-t", str(PLACEHOLDER_DURATION),
        "-c:v", "libx264",
        "-c:a", "aac",
        "-y",
        str(output_path),
    ]


# ============================================================================
# Platform Capability
# ============================================================================

def detect_named_pipe_support() -> bool:
    """Check whether the OS can create named pipes.

    POSIX systems (including WSL and MSYS2 Pythons, which expose
    os.mkfifo) support them. Native Windows does not.

    Returns:
        True if os.mkfifo is available
    """
    supported = os.name != "nt" and hasattr(os, "mkfifo")
    logger.info(f"Named pipe support: {'available' if supported else 'unavailable'}")
    return supported
