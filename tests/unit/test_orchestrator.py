"""
Unit tests for StreamerServices startup and shutdown ordering.

Runs the real channel, parameter and retention services with a fake
process spawner and regular-file channels.
"""

import socket

import pytest

from conftest import wait_until
from hlsstreamer.services import container
from hlsstreamer.services.orchestrator import StreamerServices


def free_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture
def build_services(make_config, spawner):
    def factory(**overrides):
        config = make_config(zmq_port=free_port(), **overrides)
        return StreamerServices(config, supports_named_pipe=False, spawn=spawner)
    return factory


class TestLifecycle:
    """Tests for initialize_services(), start_stream() and shutdown()."""

    @pytest.mark.asyncio
    async def test_initialize_creates_resources(self, build_services):
        """Should create directories, channels and bind the socket."""
        services = build_services()

        await services.initialize_services()
        try:
            assert services.initialized
            assert services.retention.output_dir.is_dir()
            assert services.channels.get_content_path().exists()
            assert services.parameters.is_connected()
            assert services.retention.scheduler_running
        finally:
            await services.shutdown()

    @pytest.mark.asyncio
    async def test_initialize_idempotent(self, build_services):
        services = build_services()

        await services.initialize_services()
        await services.initialize_services()

        assert services.parameters.is_connected()
        await services.shutdown()

    @pytest.mark.asyncio
    async def test_start_then_shutdown(self, build_services, spawner):
        """Should start the process and tear everything down in order."""
        services = build_services()
        await services.initialize_services()
        (services.retention.output_dir / "stream.m3u8").write_text("#EXTM3U\n")
        (services.retention.output_dir / "stream_000.ts").write_bytes(b"ts")

        await services.start_stream()
        assert await wait_until(services.supervisor.is_running)

        await services.shutdown()

        assert not services.supervisor.is_running()
        assert spawner.processes[0].terminate_calls == 1
        assert len(spawner.processes) == 1
        assert not services.parameters.is_connected()
        assert not services.retention.scheduler_running
        for channel in services.channels.channels:
            assert not channel.path.exists()
        assert list(services.retention.output_dir.iterdir()) == []
        assert not services.initialized

    @pytest.mark.asyncio
    async def test_shutdown_before_delayed_start(self, build_services, spawner):
        """Should never spawn when shut down during the start delay."""
        services = build_services(ffmpeg={"restart_delay": 0.05, "stop_grace": 0.2, "start_delay": 10})
        await services.initialize_services()
        await services.start_stream()

        await services.shutdown()

        assert spawner.calls == []

    @pytest.mark.asyncio
    async def test_shutdown_during_initial_spawn_stops_process(self, build_services, spawner):
        """Should wait for an in-flight spawn and terminate what it started."""
        services = build_services()
        spawner.spawn_delay = 0.2
        await services.initialize_services()
        await services.start_stream()
        assert await wait_until(lambda: spawner.calls != [])

        await services.shutdown()

        assert len(spawner.processes) == 1
        assert spawner.processes[0].terminate_calls == 1
        assert not services.supervisor.is_running()

    @pytest.mark.asyncio
    async def test_shutdown_idempotent(self, build_services):
        services = build_services()
        await services.initialize_services()

        await services.shutdown()
        await services.shutdown()

    @pytest.mark.asyncio
    async def test_keeps_output_when_configured(self, build_services, tmp_path):
        """Should leave HLS files when cleanup_on_shutdown is off."""
        services = build_services(hls={
            "output_dir": str(tmp_path / "hls"),
            "cleanup_on_shutdown": False,
        })
        await services.initialize_services()
        playlist = services.retention.output_dir / "stream.m3u8"
        playlist.write_text("#EXTM3U\n")

        await services.shutdown()

        assert playlist.exists()


class TestContainer:
    """Tests for get_services()."""

    def test_raises_before_startup(self, monkeypatch):
        monkeypatch.setattr(container, "services", None)

        with pytest.raises(RuntimeError):
            container.get_services()

    def test_returns_instance(self, monkeypatch, build_services):
        services = build_services()
        monkeypatch.setattr(container, "services", services)

        assert container.get_services() is services
