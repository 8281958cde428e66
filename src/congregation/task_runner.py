"""Per-task execution unit.

A TaskRunner owns one ProcessHandle and two LineSplitters (stdout, stderr)
and turns raw output into TaskEvents on the shared event channel.

State machine:
    NOT_STARTED -> RUNNING -> EXITED | KILLED
    NOT_STARTED -> KILLED            (cancelled before spawn)
    NOT_STARTED -> EXITED            (spawn failed)

Exactly one ExitedEvent is emitted per task, after all of its LineEvents.
"""

from __future__ import annotations

import asyncio
import logging
import signal

from .cancellation import CancelSignal
from .errors import SpawnError, StreamReadError
from .events import ExitedEvent, LineEvent, StartedEvent, Stream, TaskError
from .models import (
    CANCELLED_EXIT_CODE,
    INTERNAL_ERROR_EXIT_CODE,
    SPAWN_FAILED_EXIT_CODE,
    STREAM_ERROR_EXIT_CODE,
    TaskSpec,
    TaskState,
)
from .runtime import ExitResult, LineSplitter, ProcessHandle

__all__ = ["TaskRunner", "EventChannel"]

logger = logging.getLogger(__name__)

EventChannel = asyncio.Queue

# Reported for a task that never confirmed termination after SIGKILL
_ABANDONED_EXIT_CODE = 128 + getattr(signal, "SIGKILL", 9)


class TaskRunner:
    """Run one TaskSpec and stream its events.

    Attributes:
        spec: The task being run
    """

    def __init__(
        self,
        spec: TaskSpec,
        channel: EventChannel,
        cancel: CancelSignal | None = None,
        *,
        encoding: str = "utf-8",
    ) -> None:
        self.spec = spec
        self._channel = channel
        self._cancel = cancel if cancel is not None else CancelSignal()
        self._state = TaskState.NOT_STARTED
        self._handle: ProcessHandle | None = None
        self._splitters = {
            Stream.STDOUT: LineSplitter(encoding),
            Stream.STDERR: LineSplitter(encoding),
        }
        self._seq = 0
        self._kill_requested = False
        self._kill_delivered = False
        self._read_error: StreamReadError | None = None
        self._exited: ExitedEvent | None = None

    def __repr__(self) -> str:
        return (
            f"TaskRunner(index={self.spec.index}, "
            f"name={self.spec.name!r}, "
            f"state={self._state.value})"
        )

    @property
    def state(self) -> TaskState:
        return self._state

    @property
    def is_terminal(self) -> bool:
        return self._state.is_terminal

    @property
    def exited_event(self) -> ExitedEvent | None:
        """The ExitedEvent of this task, once terminal."""
        return self._exited

    @property
    def pid(self) -> int | None:
        return self._handle.pid if self._handle is not None else None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def run(self) -> ExitedEvent:
        """Run the task to completion.

        Never raises for per-task failures: spawn and read errors end up in
        the returned (and emitted) ExitedEvent.
        """
        if self._state != TaskState.NOT_STARTED:
            raise RuntimeError(f"{self!r} has already been run")

        unsubscribe = self._cancel.subscribe(self.kill)
        try:
            if self._kill_requested:
                logger.info(f"Task '{self.spec.name}' cancelled before start")
                return await self._finish(
                    TaskState.KILLED,
                    code=CANCELLED_EXIT_CODE,
                    killed=True,
                    message="cancelled before start",
                )

            if not await self.start():
                assert self._exited is not None
                return self._exited

            await self._pump_streams()
            assert self._handle is not None
            result = await self._handle.wait()
        finally:
            unsubscribe()

        for stream, splitter in self._splitters.items():
            tail = splitter.flush()
            if tail is not None:
                await self._emit_line(stream, tail)

        return await self._finish_with(result)

    async def start(self) -> bool:
        """Spawn the process and emit StartedEvent.

        Returns:
            True if the process is running, False if spawning failed (the
            task is then already terminal)
        """
        if self._state != TaskState.NOT_STARTED:
            raise RuntimeError(f"{self!r} has already been started")

        try:
            self._handle = await ProcessHandle.spawn(
                self.spec.command,
                cwd=self.spec.workdir,
                env=self.spec.env,
            )
        except SpawnError as e:
            logger.warning(f"Task '{self.spec.name}': {e}")
            await self._finish(
                TaskState.EXITED,
                code=SPAWN_FAILED_EXIT_CODE,
                error=TaskError.SPAWN_FAILED,
                message=e.reason,
            )
            return False

        self._state = TaskState.RUNNING
        logger.info(f"Task '{self.spec.name}' started pid={self._handle.pid}")
        await self._emit(StartedEvent(**self._event_fields(), pid=self._handle.pid))

        # kill() may have been requested while the spawn was in flight
        if self._kill_requested:
            self._deliver_kill()
        return True

    def kill(self) -> None:
        """Ask the task to stop. Idempotent and asynchronous.

        The ExitedEvent still fires once the OS confirms termination.
        """
        if self._state.is_terminal:
            return
        self._kill_requested = True
        self._deliver_kill()

    def force_kill(self) -> None:
        """Escalate to SIGKILL for a task that ignored kill()."""
        if self._state.is_terminal or self._handle is None:
            return
        self._kill_requested = True
        if self._handle.kill():
            self._kill_delivered = True

    def abandon(self) -> ExitedEvent | None:
        """Record a task that never confirmed termination as KILLED.

        Returns:
            The synthesized ExitedEvent, or None if the task was already
            terminal. The event is not put on the channel.
        """
        if self._state.is_terminal:
            return None
        logger.warning(f"Task '{self.spec.name}' abandoned after kill")
        return self._transition(
            TaskState.KILLED,
            code=_ABANDONED_EXIT_CODE,
            signaled=True,
            killed=True,
            message="did not exit after kill",
        )

    def fail(self, exc: BaseException) -> ExitedEvent | None:
        """Record an unexpected runner failure. Not put on the channel."""
        if self._state.is_terminal:
            return None
        if self._handle is not None:
            self._handle.kill()
        return self._transition(
            TaskState.EXITED,
            code=INTERNAL_ERROR_EXIT_CODE,
            error=TaskError.INTERNAL,
            message=f"{type(exc).__name__}: {exc}",
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _deliver_kill(self) -> None:
        if self._handle is None or self._kill_delivered:
            return
        self._kill_delivered = self._handle.terminate()

    async def _pump_streams(self) -> None:
        """Read stdout and stderr concurrently until both reach EOF."""
        readers = [
            asyncio.create_task(
                self._pump(stream),
                name=f"{self.spec.name}-{stream.value}",
            )
            for stream in (Stream.STDOUT, Stream.STDERR)
        ]
        try:
            await asyncio.gather(*readers)
        finally:
            for reader in readers:
                if not reader.done():
                    reader.cancel()

    async def _pump(self, stream: Stream) -> None:
        assert self._handle is not None
        splitter = self._splitters[stream]
        while True:
            try:
                chunk = await self._handle.read_chunk(stream)
            except StreamReadError as e:
                logger.warning(f"Task '{self.spec.name}': {e}")
                if self._read_error is None:
                    self._read_error = e
                self._handle.terminate()
                return
            if not chunk:
                return
            for line in splitter.feed(chunk):
                await self._emit_line(stream, line)

    async def _finish_with(self, result: ExitResult) -> ExitedEvent:
        if self._read_error is not None:
            return await self._finish(
                TaskState.EXITED,
                code=STREAM_ERROR_EXIT_CODE,
                signaled=result.signaled,
                error=TaskError.STREAM_ERROR,
                message=str(self._read_error),
            )
        if self._kill_delivered:
            return await self._finish(
                TaskState.KILLED,
                code=result.code,
                signaled=result.signaled,
                killed=True,
            )
        return await self._finish(
            TaskState.EXITED,
            code=result.code,
            signaled=result.signaled,
        )

    async def _finish(self, state: TaskState, **fields) -> ExitedEvent:
        event = self._transition(state, **fields)
        await self._emit(event)
        return event

    def _transition(self, state: TaskState, **fields) -> ExitedEvent:
        if self._state.is_terminal:
            raise RuntimeError(f"{self!r} is already terminal")
        self._state = state
        self._exited = ExitedEvent(**self._event_fields(), **fields)
        logger.info(
            f"Task '{self.spec.name}' {state.value} "
            f"code={self._exited.code} signaled={self._exited.signaled}"
        )
        return self._exited

    async def _emit_line(self, stream: Stream, text: str) -> None:
        await self._emit(LineEvent(**self._event_fields(), stream=stream, text=text))

    async def _emit(self, event: StartedEvent | LineEvent | ExitedEvent) -> None:
        await self._channel.put(event)

    def _event_fields(self) -> dict:
        seq = self._seq
        self._seq += 1
        return {
            "task_index": self.spec.index,
            "task_name": self.spec.name,
            "seq": seq,
        }
