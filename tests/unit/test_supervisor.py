"""
Unit tests for ProcessSupervisor.

Tests the lifecycle state machine (start, unexpected exit and restart,
graceful and forced stop, spawn failure), output capture and argument
building. A fake process spawner replaces the real FFmpeg binary.
"""

import asyncio
from unittest.mock import Mock

import pytest

from conftest import FakeSpawner, wait_until
from hlsstreamer.services.channels import InputChannelManager
from hlsstreamer.services.supervisor import ProcessSupervisor, SupervisorState, describe_exit


def build_supervisor(config, spawner, supports_named_pipe=True):
    channels = InputChannelManager(config, supports_named_pipe=supports_named_pipe)
    return ProcessSupervisor(config, channels, spawn=spawner)


def log_texts(supervisor):
    return [entry.text for entry in supervisor.get_logs()]


class TestStart:
    """Tests for start()."""

    @pytest.mark.asyncio
    async def test_start_spawns_process_and_reports_running(self, make_config, spawner):
        """Should spawn with captured output and report running."""
        supervisor = build_supervisor(make_config(), spawner)

        assert await supervisor.start() is True

        assert supervisor.is_running()
        assert supervisor.state == SupervisorState.RUNNING
        cmd, kwargs = spawner.calls[0]
        assert cmd[0] == "ffmpeg"
        assert kwargs["stdout"] is not None
        assert kwargs["stderr"] is not None
        await supervisor.cancel_background_tasks()

    @pytest.mark.asyncio
    async def test_second_start_is_noop(self, make_config, spawner):
        """Should not spawn a second process while one is running."""
        supervisor = build_supervisor(make_config(), spawner)

        await supervisor.start()
        await supervisor.start()

        assert len(spawner.calls) == 1
        await supervisor.cancel_background_tasks()

    @pytest.mark.asyncio
    async def test_spawn_failure_clears_handle_without_restart(self, make_config):
        """Should log spawn errors and not schedule a restart."""
        spawner = FakeSpawner(error=FileNotFoundError("ffmpeg not found"))
        supervisor = build_supervisor(make_config(restart_delay=0.01), spawner)

        assert await supervisor.start() is False

        assert not supervisor.is_running()
        assert supervisor.state == SupervisorState.STOPPED
        await asyncio.sleep(0.1)
        assert len(spawner.calls) == 1
        assert any("Failed to start FFmpeg" in text for text in log_texts(supervisor))

    @pytest.mark.asyncio
    async def test_start_refused_while_shutting_down(self, make_config, spawner):
        """Should not spawn once the shutdown flag is set."""
        supervisor = build_supervisor(make_config(), spawner)
        supervisor.set_shutting_down(True)

        assert await supervisor.start() is False
        assert spawner.calls == []


class TestOutputCapture:
    """Tests for stdout/stderr capture into the log ring."""

    @pytest.mark.asyncio
    async def test_captures_tagged_lines(self, make_config, spawner):
        """Should append each line tagged with its stream."""
        supervisor = build_supervisor(make_config(), spawner)
        await supervisor.start()
        process = spawner.processes[0]

        process.stdout.feed_data(b"out line\n")
        process.stderr.feed_data(b"frame=  10 fps=30\rframe=  20 fps=30\n")

        assert await wait_until(lambda: len([e for e in supervisor.get_logs() if e.channel == "stderr"]) == 2)
        channels = {(entry.channel, entry.text) for entry in supervisor.get_logs()}
        assert ("stdout", "out line") in channels
        assert ("stderr", "frame=  10 fps=30") in channels
        assert ("stderr", "frame=  20 fps=30") in channels
        await supervisor.cancel_background_tasks()

    @pytest.mark.asyncio
    async def test_subscribers_receive_live_lines(self, make_config, spawner):
        """Should notify on_log subscribers for captured output."""
        supervisor = build_supervisor(make_config(), spawner)
        received = []
        unsubscribe = supervisor.on_log(received.append)
        await supervisor.start()

        spawner.processes[0].stderr.feed_data(b"hello\n")

        assert await wait_until(lambda: any(entry.text == "hello" for entry in received))
        unsubscribe()
        await supervisor.cancel_background_tasks()

    @pytest.mark.asyncio
    async def test_clear_logs(self, make_config, spawner):
        """Should empty the ring."""
        supervisor = build_supervisor(make_config(), spawner)
        await supervisor.start()

        supervisor.clear_logs()

        assert supervisor.get_logs() == []
        await supervisor.cancel_background_tasks()


class TestRestartPolicy:
    """Tests for automatic restart after unexpected exits."""

    @pytest.mark.asyncio
    async def test_unexpected_exit_restarts_after_delay(self, make_config, spawner):
        """Should restart within backoff and log the exit before the restart."""
        supervisor = build_supervisor(make_config(restart_delay=0.05), spawner)
        await supervisor.start()

        spawner.processes[0].exit(1)

        assert await wait_until(lambda: len(spawner.processes) == 2 and supervisor.is_running(), timeout=1.0)
        texts = log_texts(supervisor)
        exit_index = next(i for i, text in enumerate(texts) if "unexpectedly" in text)
        restart_index = next(i for i, text in enumerate(texts) if "Restarting" in text)
        assert exit_index < restart_index
        await supervisor.cancel_background_tasks()

    @pytest.mark.asyncio
    async def test_not_running_during_backoff(self, make_config, spawner):
        """Should report not running between exit and restart."""
        supervisor = build_supervisor(make_config(restart_delay=0.5), spawner)
        await supervisor.start()

        spawner.processes[0].exit(1)

        assert await wait_until(lambda: supervisor.state == SupervisorState.EXITED)
        assert not supervisor.is_running()
        await supervisor.cancel_background_tasks()

    @pytest.mark.asyncio
    async def test_shutdown_flag_prevents_restart(self, make_config, spawner):
        """Should not restart an exit that happens during shutdown."""
        supervisor = build_supervisor(make_config(restart_delay=0.01), spawner)
        await supervisor.start()
        supervisor.set_shutting_down(True)

        spawner.processes[0].exit(1)
        await asyncio.sleep(0.1)

        assert len(spawner.processes) == 1
        assert not supervisor.is_running()
        assert supervisor.state == SupervisorState.STOPPED

    @pytest.mark.asyncio
    async def test_shutdown_flag_cancels_pending_restart(self, make_config, spawner):
        """Should cancel a restart already waiting on its backoff."""
        supervisor = build_supervisor(make_config(restart_delay=0.1), spawner)
        await supervisor.start()
        spawner.processes[0].exit(1)
        assert await wait_until(lambda: supervisor.state == SupervisorState.EXITED)

        supervisor.set_shutting_down(True)
        await asyncio.sleep(0.2)

        assert len(spawner.processes) == 1
        assert not supervisor.is_running()

    @pytest.mark.asyncio
    async def test_stop_during_backoff_cancels_restart(self, make_config, spawner):
        """Should treat stop() during backoff as a deliberate stop."""
        supervisor = build_supervisor(make_config(restart_delay=0.1), spawner)
        await supervisor.start()
        spawner.processes[0].exit(1)
        assert await wait_until(lambda: supervisor.state == SupervisorState.EXITED)

        supervisor.stop()
        await asyncio.sleep(0.2)

        assert len(spawner.processes) == 1
        assert supervisor.state == SupervisorState.STOPPED

    @pytest.mark.asyncio
    async def test_stop_during_restart_spawn_does_not_wedge(self, make_config, spawner):
        """Should finish an in-flight restart spawn, stop it, and allow a later start."""
        supervisor = build_supervisor(make_config(restart_delay=0.01), spawner)
        await supervisor.start()
        spawner.spawn_delay = 0.2

        spawner.processes[0].exit(1)
        assert await wait_until(lambda: supervisor.state == SupervisorState.STARTING)
        supervisor.stop()

        assert await wait_until(lambda: supervisor.state == SupervisorState.STOPPED, timeout=1.0)
        assert len(spawner.processes) == 2
        assert spawner.processes[1].terminate_calls == 1
        assert not supervisor.is_running()

        assert await supervisor.start() is True
        assert supervisor.is_running()
        assert supervisor.state == SupervisorState.RUNNING
        assert len(spawner.processes) == 3
        await supervisor.cancel_background_tasks()

    @pytest.mark.asyncio
    async def test_shutdown_during_restart_spawn_waits_and_stops(self, make_config, spawner):
        """Should let wait_stopped() cover a spawn that lands after shutdown began."""
        supervisor = build_supervisor(make_config(restart_delay=0.01), spawner)
        await supervisor.start()
        spawner.spawn_delay = 0.2

        spawner.processes[0].exit(1)
        assert await wait_until(lambda: supervisor.state == SupervisorState.STARTING)
        supervisor.set_shutting_down(True)
        supervisor.stop()

        assert await supervisor.wait_stopped(timeout=1.0) is True
        assert supervisor.state == SupervisorState.STOPPED
        assert spawner.processes[1].terminate_calls == 1
        assert await supervisor.start() is False

    @pytest.mark.asyncio
    async def test_cancelled_spawn_resets_state(self, make_config, spawner):
        """Should not stay STARTING when the spawning task is cancelled."""
        spawner.spawn_delay = 1.0
        supervisor = build_supervisor(make_config(), spawner)

        task = asyncio.ensure_future(supervisor.start())
        assert await wait_until(lambda: supervisor.state == SupervisorState.STARTING)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert supervisor.state == SupervisorState.STOPPED
        assert not supervisor.is_running()


class TestStop:
    """Tests for stop()."""

    @pytest.mark.asyncio
    async def test_stop_when_not_running_is_noop(self, make_config, spawner):
        """Should do nothing without a process."""
        supervisor = build_supervisor(make_config(), spawner)

        supervisor.stop()

        assert supervisor.state == SupervisorState.STOPPED

    @pytest.mark.asyncio
    async def test_graceful_stop_does_not_restart(self, make_config, spawner):
        """Should terminate and stay stopped."""
        supervisor = build_supervisor(make_config(restart_delay=0.01), spawner)
        await supervisor.start()

        supervisor.stop()

        assert await wait_until(lambda: not supervisor.is_running())
        await asyncio.sleep(0.05)
        process = spawner.processes[0]
        assert process.terminate_calls == 1
        assert process.kill_calls == 0
        assert len(spawner.processes) == 1
        assert supervisor.state == SupervisorState.STOPPED

    @pytest.mark.asyncio
    async def test_stop_returns_before_exit(self, make_config):
        """Should not wait for the process to exit."""
        spawner = FakeSpawner(ignore_terminate=True)
        supervisor = build_supervisor(make_config(stop_grace=0.2), spawner)
        await supervisor.start()

        supervisor.stop()

        assert supervisor.is_running()
        assert supervisor.state == SupervisorState.STOPPING
        await supervisor.cancel_background_tasks()

    @pytest.mark.asyncio
    async def test_forced_kill_after_grace_window(self, make_config):
        """Should kill a process that ignores SIGTERM within grace + epsilon."""
        spawner = FakeSpawner(ignore_terminate=True)
        supervisor = build_supervisor(make_config(stop_grace=0.1, restart_delay=0.01), spawner)
        await supervisor.start()

        supervisor.stop()

        assert await wait_until(lambda: not supervisor.is_running(), timeout=0.5)
        process = spawner.processes[0]
        assert process.kill_calls == 1
        await asyncio.sleep(0.05)
        assert len(spawner.processes) == 1
        assert supervisor.state == SupervisorState.STOPPED


class TestBuildArgs:
    """Tests for build_args()."""

    def test_named_pipe_inputs_in_order(self, make_config, spawner):
        """Should list content (concat) first, then layers by index."""
        config = make_config()
        supervisor = build_supervisor(config, spawner)
        args = supervisor.build_args()
        content = str(supervisor.channels.get_content_path())
        layer0 = str(supervisor.channels.get_layer_path(0))
        layer1 = str(supervisor.channels.get_layer_path(1))

        concat_at = args.index("concat")
        assert args[concat_at - 1] == "-f"
        assert args[concat_at + 1:concat_at + 5] == ["-safe", "0", "-i", content]
        inputs = [args[i + 1] for i, arg in enumerate(args) if arg == "-i"]
        assert inputs == [content, layer0, layer1]

    def test_filter_graph_and_mapping(self, make_config, spawner):
        """Should embed the layer-count graph and map its outputs."""
        supervisor = build_supervisor(make_config(), spawner)
        args = supervisor.build_args()

        graph = args[args.index("-filter_complex") + 1]
        assert graph == supervisor.build_filter_complex()
        assert "overlay=50:50" in graph
        assert "amix=inputs=3" in graph
        assert ["-map", "[vout]"] == args[args.index("[vout]") - 1:args.index("[vout]") + 1]
        assert "[aout]" in args

    def test_hls_output_last(self, make_config, spawner):
        """Should end with the HLS muxer targeting the playlist."""
        config = make_config()
        supervisor = build_supervisor(config, spawner)
        args = supervisor.build_args()

        assert args[-1] == str(config.hls.output_dir / "stream.m3u8")
        assert args[args.index("-hls_segment_filename") + 1] == str(config.hls.output_dir / "stream_%03d.ts")
        assert args[args.index("-hls_list_size") + 1] == "5"
        assert "delete_segments" in args[args.index("-hls_flags") + 1]

    def test_degraded_platform_uses_synthetic_input(self, make_config, spawner):
        """Should replace FIFO inputs with lavfi sources."""
        supervisor = build_supervisor(make_config(), spawner, supports_named_pipe=False)
        args = supervisor.build_args()

        assert "lavfi" in args
        assert "concat" not in args
        assert str(supervisor.channels.get_content_path()) not in args
        assert "zmq=" in args[args.index("-filter_complex") + 1]

    def test_deterministic(self, make_config, spawner):
        """Should build identical args for identical configuration."""
        supervisor = build_supervisor(make_config(), spawner)
        assert supervisor.build_args() == supervisor.build_args()


class TestInitializeContent:
    """Tests for initialize_content()."""

    def _mock_channels(self, supports_named_pipe=True):
        channels = Mock(spec=InputChannelManager)
        channels.supports_named_pipe = supports_named_pipe
        channels.write_content.return_value = True
        return channels

    @pytest.mark.asyncio
    async def test_queues_existing_default(self, make_config, spawner, tmp_path):
        """Should enqueue the default clip when it exists."""
        default = tmp_path / "default.mp4"
        default.write_bytes(b"video")
        config = make_config(initial_content=str(default))
        channels = self._mock_channels()
        supervisor = ProcessSupervisor(config, channels, spawn=spawner)

        assert await supervisor.initialize_content() is True

        channels.write_content.assert_called_once_with(default)
        assert spawner.calls == []

    @pytest.mark.asyncio
    async def test_generates_placeholder_when_default_missing(self, make_config, spawner):
        """Should run a one-shot FFmpeg and enqueue its output."""
        config = make_config()
        channels = self._mock_channels()
        supervisor = ProcessSupervisor(config, channels, spawn=spawner)

        assert await supervisor.initialize_content() is True

        cmd, _ = spawner.calls[0]
        assert "lavfi" in cmd
        assert cmd[-1] == str(config.placeholder_path)
        channels.write_content.assert_called_once_with(config.placeholder_path)

    @pytest.mark.asyncio
    async def test_placeholder_failure_is_logged(self, make_config):
        """Should not enqueue anything when placeholder generation fails."""
        spawner = FakeSpawner(exit_code=1)
        channels = self._mock_channels()
        supervisor = ProcessSupervisor(make_config(), channels, spawn=spawner)

        assert await supervisor.initialize_content() is False

        channels.write_content.assert_not_called()
        assert any("Placeholder generation failed" in text for text in log_texts(supervisor))

    @pytest.mark.asyncio
    async def test_skipped_without_named_pipes(self, make_config, spawner):
        """Should skip entirely on the degraded platform."""
        channels = self._mock_channels(supports_named_pipe=False)
        supervisor = ProcessSupervisor(make_config(), channels, spawn=spawner)

        assert await supervisor.initialize_content() is False

        channels.write_content.assert_not_called()
        assert spawner.calls == []


class TestDescribeExit:
    """Tests for describe_exit()."""

    def test_exit_code(self):
        assert describe_exit(1) == "code 1"

    def test_signal(self):
        assert describe_exit(-9) == "signal 9"
