"""
Integration tests against a real FFmpeg binary.

Tests:
- Placeholder clip generation through the supervisor
- FFmpeg's concat demuxer reading entries written to the content FIFO

Skipped when ffmpeg is not on PATH or named pipes are unavailable.
"""

import os
import shutil
import subprocess
from unittest.mock import Mock

import pytest

from hlsstreamer.services.channels import InputChannelManager
from hlsstreamer.services.supervisor import ProcessSupervisor

FFMPEG = shutil.which("ffmpeg")


def has_encoder(name):
    if FFMPEG is None:
        return False
    result = subprocess.run(
        [FFMPEG, "-hide_banner", "-encoders"],
        capture_output=True,
        text=True,
        timeout=10
    )
    return f" {name} " in result.stdout


pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(FFMPEG is None, reason="ffmpeg not installed"),
    pytest.mark.skipif(not hasattr(os, "mkfifo"), reason="Named pipes not supported"),
]


@pytest.fixture
def clip(tmp_path):
    """One-second test clip encoded with FFmpeg's built-in MPEG-4 encoder."""
    path = tmp_path / "clip.mp4"
    subprocess.run(
        [
            FFMPEG, "-hide_banner", "-loglevel", "error", "-nostdin",
            "-f", "lavfi", "-i", "testsrc=d=1:s=64x64:r=10",
            "-c:v", "mpeg4", "-y", str(path),
        ],
        check=True,
        timeout=30
    )
    return path


class TestPlaceholderGeneration:
    """Tests for initial content without a default clip."""

    @pytest.mark.skipif(not has_encoder("libx264"), reason="ffmpeg built without libx264")
    @pytest.mark.asyncio
    async def test_generates_and_queues_placeholder(self, make_config):
        """Should produce a playable placeholder and queue it."""
        config = make_config()
        channels = Mock(spec=InputChannelManager)
        channels.supports_named_pipe = True
        channels.write_content.return_value = True
        supervisor = ProcessSupervisor(config, channels)

        assert await supervisor.initialize_content() is True

        assert config.placeholder_path.stat().st_size > 0
        channels.write_content.assert_called_once_with(config.placeholder_path)


class TestContentFifo:
    """Tests for the content channel feeding a real concat demuxer."""

    def test_concat_reader_plays_queued_clip(self, make_config, clip):
        """Should let FFmpeg read the clip list from the FIFO and decode it."""
        manager = InputChannelManager(make_config(), supports_named_pipe=True)
        manager.create_all()
        reader = subprocess.Popen(
            [
                FFMPEG, "-hide_banner", "-loglevel", "error", "-nostdin",
                "-f", "concat", "-safe", "0", "-i", str(manager.get_content_path()),
                "-t", "1", "-f", "null", "-",
            ],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE
        )
        try:
            assert manager.write_content(clip) is True
            _, stderr = reader.communicate(timeout=30)
            assert reader.returncode == 0, stderr.decode("utf-8", errors="replace")
        finally:
            if reader.poll() is None:
                reader.kill()
                reader.wait()
            manager.cleanup()
