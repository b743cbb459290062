"""Configuration loading for the HLS streamer.

Builds a StreamerConfig from three layers, later layers winning:
    1. Model defaults (models/settings.py)
    2. Optional YAML file (CONFIG_FILE, default ./config.yml)
    3. Environment variables

Failure Semantics:
    A missing YAML file is normal (defaults + env apply). A malformed YAML
    file or a value that fails validation raises ConfigError, which aborts
    startup.

Logging Strategy:
    DEBUG - Individual overrides applied
    INFO  - Config source selection, summary
    ERROR - YAML parsing and validation failures
"""
from __future__ import annotations

import io
import logging
import os
from pathlib import Path
from typing import Any, Final, Mapping

import yaml
from pydantic import ValidationError

from .models.settings import StreamerConfig

logger = logging.getLogger(__name__)

# ============================================================================
# Constants
# ============================================================================

DEFAULT_CONFIG_FILE: Final[Path] = Path("./config.yml")

ENV_OVERRIDES: Final[dict[str, tuple[str, ...]]] = {
    "HOST": ("http", "host"),
    "PORT": ("http", "port"),
    "ZMQ_HOST": ("zmq", "host"),
    "ZMQ_PORT": ("zmq", "port"),
    "FFMPEG_BINARY": ("ffmpeg", "binary"),
    "FFMPEG_PRESET": ("ffmpeg", "preset"),
    "FFMPEG_CRF": ("ffmpeg", "crf"),
    "FFMPEG_GOP": ("ffmpeg", "gop"),
    "FFMPEG_AUDIO_BITRATE": ("ffmpeg", "audio_bitrate"),
    "FFMPEG_RESTART_DELAY": ("ffmpeg", "restart_delay"),
    "FFMPEG_STOP_GRACE": ("ffmpeg", "stop_grace"),
    "FFMPEG_START_DELAY": ("ffmpeg", "start_delay"),
    "HLS_SEGMENT_TIME": ("hls", "segment_time"),
    "HLS_PLAYLIST_SIZE": ("hls", "playlist_size"),
    "HLS_OUTPUT_DIR": ("hls", "output_dir"),
    "HLS_CLEANUP_INTERVAL": ("hls", "cleanup_interval"),
    "HLS_CLEANUP_ON_SHUTDOWN": ("hls", "cleanup_on_shutdown"),
    "FIFO_BASE_DIR": ("fifos", "base_dir"),
    "FIFO_LAYERS": ("fifos", "layers"),
    "INITIAL_CONTENT": ("initial_content",),
    "PLACEHOLDER_PATH": ("placeholder_path",),
    "LOG_BUFFER_SIZE": ("log_capacity",),
}
"""Environment variable -> config key path."""


class ConfigError(Exception):
    """Configuration could not be loaded or failed validation."""


# ============================================================================
# Loading
# ============================================================================

def load_yaml_config(path: Path) -> dict[str, Any]:
    """Read the YAML config file.

    Args:
        path: YAML file location

    Returns:
        Parsed mapping, empty if the file does not exist

    Raises:
        ConfigError: File is not valid YAML or not a mapping
    """
    if not path.exists():
        logger.debug(f"No config file at {path}, using defaults")
        return {}

    try:
        with io.open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        logger.error(f"YAML parsing error in {path}: {e}")
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")

    logger.info(f"Loaded config file: {path}")
    return data


def _parse_env_value(name: str, raw: str) -> Any:
    """Convert raw env strings where the model cannot coerce them itself."""
    if name == "FIFO_LAYERS":
        return [item.strip() for item in raw.split(",") if item.strip()]
    return raw


def apply_env_overrides(data: dict[str, Any], environ: Mapping[str, str]) -> dict[str, Any]:
    """Overlay environment variables onto a raw config mapping.

    Args:
        data: Raw config (mutated and returned)
        environ: Environment mapping

    Returns:
        The updated mapping
    """
    for name, key_path in ENV_OVERRIDES.items():
        if name not in environ:
            continue

        target = data
        for key in key_path[:-1]:
            section = target.get(key)
            if not isinstance(section, dict):
                section = {}
                target[key] = section
            target = section

        target[key_path[-1]] = _parse_env_value(name, environ[name])
        logger.debug(f"Config override from {name}")

    return data


def load_config(
    path: Path | None = None,
    environ: Mapping[str, str] | None = None
) -> StreamerConfig:
    """Load and validate the streamer configuration.

    Args:
        path: YAML file (default: $CONFIG_FILE or ./config.yml)
        environ: Environment mapping (default: os.environ)

    Returns:
        Validated StreamerConfig

    Raises:
        ConfigError: Invalid YAML or failed validation
    """
    environ = os.environ if environ is None else environ
    if path is None:
        path = Path(environ.get("CONFIG_FILE", str(DEFAULT_CONFIG_FILE)))

    data = apply_env_overrides(load_yaml_config(path), environ)

    try:
        config = StreamerConfig.model_validate(data)
    except ValidationError as e:
        logger.error(f"Configuration validation failed: {e}")
        raise ConfigError(f"Configuration validation failed:\n{e}") from e

    logger.info(
        f"Config: layers={config.layer_count}, "
        f"hls={config.hls.segment_time}s x {config.hls.playlist_size}, "
        f"zmq={config.zmq.address}, output={config.hls.output_dir}"
    )
    return config
