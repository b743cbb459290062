"""Shared fixtures: configuration factory and a fake FFmpeg process."""
from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Callable

import pytest

from hlsstreamer.models.settings import StreamerConfig


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., StreamerConfig]:
    """Build a StreamerConfig rooted in tmp_path with fast timings."""

    def factory(
        layers: list[str] | None = None,
        restart_delay: float = 0.05,
        stop_grace: float = 0.2,
        playlist_size: int = 5,
        cleanup_interval: float = 30.0,
        log_capacity: int = 1000,
        zmq_port: int = 5555,
        **overrides: Any
    ) -> StreamerConfig:
        data: dict[str, Any] = {
            "zmq": {"host": "127.0.0.1", "port": zmq_port},
            "ffmpeg": {
                "restart_delay": restart_delay,
                "stop_grace": stop_grace,
                "start_delay": 0,
            },
            "hls": {
                "output_dir": str(tmp_path / "hls"),
                "playlist_size": playlist_size,
                "cleanup_interval": cleanup_interval,
            },
            "fifos": {
                "base_dir": str(tmp_path / "fifos"),
                "layers": ["overlay1.fifo", "overlay2.fifo"] if layers is None else layers,
            },
            "initial_content": str(tmp_path / "missing-default.mp4"),
            "placeholder_path": str(tmp_path / "placeholder.mp4"),
            "log_capacity": log_capacity,
        }
        data.update(overrides)
        return StreamerConfig.model_validate(data)

    return factory


class FakeProcess:
    """Stand-in for asyncio.subprocess.Process.

    Exits on terminate() unless ignore_terminate is set; always exits on kill().
    """

    def __init__(self, pid: int, ignore_terminate: bool = False, exit_code: int = 0) -> None:
        self.pid = pid
        self.returncode: int | None = None
        self.stdout = asyncio.StreamReader()
        self.stderr = asyncio.StreamReader()
        self.ignore_terminate = ignore_terminate
        self.exit_code = exit_code
        self.terminate_calls = 0
        self.kill_calls = 0
        self._exited = asyncio.Event()

    def exit(self, code: int) -> None:
        if self.returncode is not None:
            return
        self.returncode = code
        self.stdout.feed_eof()
        self.stderr.feed_eof()
        self._exited.set()

    async def wait(self) -> int:
        await self._exited.wait()
        return self.returncode

    def terminate(self) -> None:
        self.terminate_calls += 1
        if not self.ignore_terminate:
            self.exit(-15)

    def kill(self) -> None:
        self.kill_calls += 1
        self.exit(-9)

    async def communicate(self) -> tuple[bytes, bytes]:
        self.exit(self.exit_code)
        return b"", b""


class FakeSpawner:
    """Injectable replacement for asyncio.create_subprocess_exec."""

    def __init__(
        self,
        ignore_terminate: bool = False,
        error: Exception | None = None,
        exit_code: int = 0,
        spawn_delay: float = 0.0
    ) -> None:
        self.ignore_terminate = ignore_terminate
        self.spawn_delay = spawn_delay
        self.error = error
        self.exit_code = exit_code
        self.calls: list[tuple[tuple[str, ...], dict[str, Any]]] = []
        self.processes: list[FakeProcess] = []

    async def __call__(self, *cmd: str, **kwargs: Any) -> FakeProcess:
        self.calls.append((cmd, kwargs))
        if self.spawn_delay:
            await asyncio.sleep(self.spawn_delay)
        if self.error is not None:
            raise self.error
        process = FakeProcess(
            pid=1000 + len(self.processes),
            ignore_terminate=self.ignore_terminate,
            exit_code=self.exit_code
        )
        self.processes.append(process)
        return process


async def wait_until(condition: Callable[[], bool], timeout: float = 2.0) -> bool:
    """Poll a condition on the event loop."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not condition():
        if loop.time() >= deadline:
            return False
        await asyncio.sleep(0.01)
    return True


@pytest.fixture
def spawner() -> FakeSpawner:
    return FakeSpawner()
