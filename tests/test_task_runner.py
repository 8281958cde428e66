"""TaskRunner tests.

Covers the per-task event contract: Started first, Exited exactly once and
last, sequence numbers, spawn failures and cancellation.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from unittest import mock

import pytest

from congregation.cancellation import CancelSignal
from congregation.errors import StreamReadError
from congregation.events import EventKind, ExitedEvent, LineEvent, StartedEvent, Stream, TaskError
from congregation.models import (
    CANCELLED_EXIT_CODE,
    INTERNAL_ERROR_EXIT_CODE,
    SPAWN_FAILED_EXIT_CODE,
    STREAM_ERROR_EXIT_CODE,
    TaskSpec,
    TaskState,
)
from congregation.runtime import ExitResult, ProcessHandle
from congregation.task_runner import TaskRunner

from conftest import IS_WINDOWS, fake_task_command


def drain(channel: asyncio.Queue) -> list:
    events = []
    while not channel.empty():
        events.append(channel.get_nowait())
    return events


def make_runner(command: str, workdir=None, cancel=None) -> tuple[TaskRunner, asyncio.Queue]:
    channel: asyncio.Queue = asyncio.Queue()
    spec = TaskSpec.create(0, command, name="task", workdir=workdir)
    return TaskRunner(spec, channel, cancel), channel


class TestEventOrder:
    """Test the event sequence of one task."""

    @pytest.mark.asyncio
    async def test_started_lines_exited(self, temp_workspace: Path):
        runner, channel = make_runner(
            fake_task_command("--stdout", "3", "--stderr", "2"), temp_workspace
        )
        exited = await runner.run()
        events = drain(channel)

        assert isinstance(events[0], StartedEvent)
        assert events[0].pid == runner.pid
        assert isinstance(events[-1], ExitedEvent)
        assert events[-1] is exited
        assert [e.kind for e in events].count(EventKind.EXITED) == 1

        stdout = [e.text for e in events if isinstance(e, LineEvent) and e.stream == Stream.STDOUT]
        stderr = [e.text for e in events if isinstance(e, LineEvent) and e.stream == Stream.STDERR]
        assert stdout == ["out 0", "out 1", "out 2"]
        assert stderr == ["err 0", "err 1"]

    @pytest.mark.asyncio
    async def test_sequence_numbers_are_dense(self, temp_workspace: Path):
        runner, channel = make_runner(fake_task_command("--stdout", "5"), temp_workspace)
        await runner.run()
        events = drain(channel)

        assert [e.seq for e in events] == list(range(len(events)))
        assert all(e.task_index == 0 and e.task_name == "task" for e in events)

    @pytest.mark.asyncio
    async def test_exit_code_is_reported(self, temp_workspace: Path):
        runner, _ = make_runner(fake_task_command("--exit-code", "4"), temp_workspace)
        exited = await runner.run()

        assert exited.code == 4
        assert not exited.killed
        assert exited.error is None
        assert runner.state == TaskState.EXITED
        assert runner.is_terminal

    @pytest.mark.asyncio
    async def test_partial_last_line_is_flushed(self, temp_workspace: Path):
        runner, channel = make_runner(
            fake_task_command("--stdout", "1", "--partial", "no newline"), temp_workspace
        )
        await runner.run()
        lines = [e.text for e in drain(channel) if isinstance(e, LineEvent)]

        assert lines == ["out 0", "no newline"]

    @pytest.mark.asyncio
    async def test_split_multibyte_and_crlf(self, temp_workspace: Path):
        runner, channel = make_runner(
            fake_task_command("--stdout", "1", "--split-utf8", "--crlf"), temp_workspace
        )
        await runner.run()
        lines = [e.text for e in drain(channel) if isinstance(e, LineEvent)]

        assert lines == ["out 0", "héllo wörld"]

    @pytest.mark.asyncio
    async def test_run_twice_is_rejected(self, temp_workspace: Path):
        runner, _ = make_runner("echo hi", temp_workspace)
        await runner.run()

        with pytest.raises(RuntimeError):
            await runner.run()


class TestSpawnFailure:
    """Test tasks that cannot be started."""

    @pytest.mark.asyncio
    async def test_missing_workdir(self, tmp_path: Path):
        runner, channel = make_runner("echo hi", tmp_path / "missing")
        exited = await runner.run()
        events = drain(channel)

        assert events == [exited]
        assert exited.code == SPAWN_FAILED_EXIT_CODE
        assert exited.error == TaskError.SPAWN_FAILED
        assert "does not exist" in exited.message
        assert runner.state == TaskState.EXITED
        assert runner.pid is None


class TestCancellation:
    """Test kill() and the shared CancelSignal."""

    @pytest.mark.asyncio
    async def test_cancelled_before_start(self, temp_workspace: Path):
        cancel = CancelSignal()
        cancel.cancel("test")
        runner, channel = make_runner("echo never", temp_workspace, cancel)

        exited = await runner.run()

        assert drain(channel) == [exited]
        assert runner.state == TaskState.KILLED
        assert exited.killed
        assert exited.code == CANCELLED_EXIT_CODE
        assert runner.pid is None

    @pytest.mark.asyncio
    @pytest.mark.skipif(IS_WINDOWS, reason="POSIX-specific test")
    async def test_cancel_running_task(self, temp_workspace: Path):
        cancel = CancelSignal()
        runner, channel = make_runner(fake_task_command("--hang"), temp_workspace, cancel)
        run = asyncio.create_task(runner.run())

        # "ready" means the task is idle
        while True:
            event = await asyncio.wait_for(channel.get(), timeout=5)
            if isinstance(event, LineEvent) and event.text == "ready":
                break

        cancel.cancel("test")
        exited = await asyncio.wait_for(run, timeout=5)

        assert runner.state == TaskState.KILLED
        assert exited.killed
        assert exited.signaled
        assert drain(channel)[-1] is exited

    @pytest.mark.asyncio
    async def test_kill_after_exit_is_noop(self, temp_workspace: Path):
        runner, _ = make_runner("echo hi", temp_workspace)
        exited = await runner.run()

        runner.kill()
        runner.force_kill()

        assert runner.state == TaskState.EXITED
        assert runner.exited_event is exited
        assert not exited.killed


class TestSynthesizedExits:
    """Test abandon() and fail()."""

    def test_abandon_never_started(self):
        runner, channel = make_runner("echo hi")
        exited = runner.abandon()

        assert exited is not None
        assert exited.killed
        assert runner.state == TaskState.KILLED
        assert channel.empty()
        assert runner.abandon() is None

    def test_fail_records_internal_error(self):
        runner, _ = make_runner("echo hi")
        exited = runner.fail(ValueError("boom"))

        assert exited.code == INTERNAL_ERROR_EXIT_CODE
        assert exited.error == TaskError.INTERNAL
        assert exited.message == "ValueError: boom"
        assert runner.fail(ValueError("again")) is None


class BrokenOutputHandle:
    """ProcessHandle stand-in whose stdout fails after one chunk."""

    pid = 4242

    def __init__(self) -> None:
        self.terminated = False
        self._chunks = [b"first\npartial"]
        self._exited = asyncio.Event()

    async def read_chunk(self, stream: Stream) -> bytes:
        if stream == Stream.STDERR:
            await self._exited.wait()
            return b""
        if self._chunks:
            return self._chunks.pop(0)
        raise StreamReadError("stdout", "Input/output error")

    async def wait(self) -> ExitResult:
        await self._exited.wait()
        return ExitResult.from_returncode(-15)

    def terminate(self) -> bool:
        self.terminated = True
        self._exited.set()
        return True

    def kill(self) -> bool:
        return self.terminate()


class TestStreamReadError:
    """A failing output stream ends the task with the stream error code."""

    @pytest.mark.asyncio
    async def test_read_error_terminates_and_reports(self):
        handle = BrokenOutputHandle()
        runner, channel = make_runner("cat big.log")

        with mock.patch.object(ProcessHandle, "spawn", new=mock.AsyncMock(return_value=handle)):
            exited = await asyncio.wait_for(runner.run(), timeout=5)
        events = drain(channel)

        assert handle.terminated
        assert [e.kind for e in events] == [
            EventKind.STARTED,
            EventKind.LINE,
            EventKind.LINE,
            EventKind.EXITED,
        ]
        assert [e.text for e in events if isinstance(e, LineEvent)] == ["first", "partial"]
        assert events[-1] is exited
        assert exited.code == STREAM_ERROR_EXIT_CODE
        assert exited.error == TaskError.STREAM_ERROR
        assert "Input/output error" in exited.message
        assert not exited.killed
        assert runner.state == TaskState.EXITED
