"""Input validation for update requests.

Provides validation functions for:
- Media file paths (directory traversal)
- Layer indices
- Filter commands sent over the parameter channel

Note on Logging:
    These are pure validation functions that return (bool, error_message).
    The caller decides how to log and respond.

Note on Pydantic:
    Request shape (type/data pairing, required fields) is validated by the
    UpdateRequest model. This module holds the checks that depend on
    runtime configuration or content.
"""
from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Final

logger = logging.getLogger(__name__)

# ============================================================================
# Constants
# ============================================================================

MAX_COMMAND_LENGTH: Final[int] = 1000

DANGEROUS_COMMAND_PATTERNS: Final[list[re.Pattern[str]]] = [
    re.compile(r"system\s*\("),
    re.compile(r"exec\s*\("),
    re.compile(r"eval\s*\("),
    re.compile(r"\$\("),
    re.compile(r"`"),
    re.compile(r";"),
    re.compile(r"\|\|"),
    re.compile(r"&&"),
]
"""Shell-like constructs rejected in filter commands."""

ValidationResult = tuple[bool, str | None]
"""Validation result: (is_valid, error_message)"""

# ============================================================================
# Validators
# ============================================================================

def validate_file_path(file_path: str, allowed_dir: str | Path | None = None) -> ValidationResult:
    """Validate a media file path.

    Args:
        file_path: Path from the request
        allowed_dir: Optional directory the path must resolve into

    Returns:
        (True, None) if valid
        (False, error_message) if invalid

    Examples:
        >>> validate_file_path("samples/video1.mp4")
        (True, None)

        >>> validate_file_path("../etc/passwd")
        (False, "Directory traversal is not allowed")
    """
    if not file_path or not isinstance(file_path, str):
        return False, "File path must be a non-empty string"

    normalized = os.path.normpath(file_path)
    if ".." in normalized:
        return False, "Directory traversal is not allowed"

    if allowed_dir is not None:
        resolved = Path(normalized).resolve()
        allowed = Path(allowed_dir).resolve()
        if resolved != allowed and allowed not in resolved.parents:
            return False, "File path is outside allowed directory"

    return True, None


def validate_layer_index(index: int, layer_count: int) -> ValidationResult:
    """Validate a layer index against the configured layer count.

    Examples:
        >>> validate_layer_index(1, 2)
        (True, None)

        >>> validate_layer_index(2, 2)
        (False, "Layer index must be between 0 and 1")
    """
    if isinstance(index, bool) or not isinstance(index, int):
        return False, "Layer index must be an integer"

    if layer_count <= 0:
        return False, "No overlay layers are configured"

    if index < 0 or index >= layer_count:
        return False, f"Layer index must be between 0 and {layer_count - 1}"

    return True, None


def validate_filter_command(command: str) -> ValidationResult:
    """Reject empty, overlong or shell-like filter commands.

    Examples:
        >>> validate_filter_command("Parsed_overlay_1 x 200")
        (True, None)

        >>> validate_filter_command("overlay x 1; rm -rf /")
        (False, "Command contains potentially dangerous patterns")
    """
    if not command or not isinstance(command, str):
        return False, "Command must be a non-empty string"

    if len(command) > MAX_COMMAND_LENGTH:
        return False, f"Command is too long (max {MAX_COMMAND_LENGTH} characters)"

    for pattern in DANGEROUS_COMMAND_PATTERNS:
        if pattern.search(command):
            return False, "Command contains potentially dangerous patterns"

    return True, None
