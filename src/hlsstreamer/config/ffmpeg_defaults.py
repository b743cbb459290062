"""FFmpeg default parameter configuration.

Single source of truth for the fixed parts of the transcoder invocation.
Input and filter-graph sections depend on the channel layout and are built
by the supervisor; everything here depends only on configuration.
"""
from typing import Final

from ..models.settings import FFmpegSettings, HlsSettings

# ============================================================================
# Base FFmpeg Parameters
# ============================================================================

BASE_FFMPEG_PARAMS: Final[list[str]] = [
    '-hide_banner',
    '-loglevel', 'info',
    '-nostdin',
]
"""Global parameters placed before any input."""

CONCAT_INPUT_PARAMS: Final[list[str]] = [
    '-f', 'concat',
    '-safe', '0',
]
"""Demuxer options for the content channel (appendable clip list)."""

HLS_FLAGS: Final[str] = 'delete_segments+independent_segments'
"""Rolling playlist: segments leaving the window are deleted by the muxer."""

AUDIO_SAMPLE_RATE: Final[str] = '48000'

# Synthetic source used when named pipes are unavailable and for the
# placeholder clip
SYNTHETIC_VIDEO: Final[str] = 'color=c=black:s=1280x720:r=30'
SYNTHETIC_AUDIO: Final[str] = 'anullsrc=r=48000:cl=stereo'

PLACEHOLDER_DURATION: Final[int] = 60
"""Length of the generated placeholder clip (seconds)."""

# ============================================================================
# Helper Functions
# ============================================================================

def get_video_encoding_params(ffmpeg: FFmpegSettings, hls: HlsSettings) -> list[str]:
    """Get H.264 encoding parameters.

    Keyframes are forced on segment boundaries so every segment starts
    with an IDR frame.

    Args:
        ffmpeg: Encoder settings
        hls: Output settings (segment duration)

    Returns:
        Video codec parameter list
    """
    return [
        '-c:v', 'libx264',
        '-preset', ffmpeg.preset,
        '-crf', str(ffmpeg.crf),
        '-g', str(ffmpeg.gop),
        '-keyint_min', str(ffmpeg.gop),
        '-sc_threshold', '0',
        '-force_key_frames', f'expr:gte(t,n_forced*{hls.segment_time})',
    ]


def get_audio_encoding_params(ffmpeg: FFmpegSettings) -> list[str]:
    """Get AAC encoding parameters."""
    return [
        '-c:a', 'aac',
        '-b:a', ffmpeg.audio_bitrate,
        '-ar', AUDIO_SAMPLE_RATE,
    ]


def get_hls_output_params(hls: HlsSettings, segment_path: str, playlist_path: str) -> list[str]:
    """Get segmented output parameters, ending with the playlist target.

    Args:
        hls: Output settings
        segment_path: Segment filename pattern (absolute or relative path)
        playlist_path: Playlist file path

    Returns:
        HLS muxer parameter list
    """
    return [
        '-f', 'hls',
        '-hls_time', str(hls.segment_time),
        '-hls_list_size', str(hls.playlist_size),
        '-hls_flags', HLS_FLAGS,
        '-hls_segment_filename', segment_path,
        playlist_path,
    ]


def get_synthetic_input_params() -> list[str]:
    """Get lavfi inputs producing a solid color with silence."""
    return [
        '-re',
        '-f', 'lavfi', '-i', SYNTHETIC_VIDEO,
        '-f', 'lavfi', '-i', SYNTHETIC_AUDIO,
    ]
