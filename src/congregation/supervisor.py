"""Task supervisor.

Runs N TaskRunners concurrently and merges their events into one stream for
the presenter:

- all runners put events on one bounded asyncio.Queue (the fan-in channel)
- the Supervisor is the single consumer and applies the output mode
- cancellation interrupts the consumer through an anyio cancel scope, kills
  every live task and waits for them within a grace period

Cancellation timeline:
    cancel()          -> kill() every task (SIGTERM), keep consuming events
    grace period over -> TerminationTimeout logged, force_kill() (SIGKILL)
    kill timeout over -> remaining tasks abandoned and recorded as KILLED
A second signal (CancelSignal.force) skips the rest of the grace period.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from typing import Union

import anyio

from .cancellation import CancelSignal
from .errors import OrchestrationError, TerminationTimeout
from .events import ExitedEvent, LineEvent, StartedEvent, Stream
from .models import AggregateResult, OutputMode, TaskOutcome, TaskSpec
from .task_runner import EventChannel, TaskRunner

__all__ = [
    "DEFAULT_GRACE_PERIOD",
    "DEFAULT_KILL_TIMEOUT",
    "DEFAULT_QUEUE_SIZE",
    "Presenter",
    "Supervisor",
]

logger = logging.getLogger(__name__)

DEFAULT_GRACE_PERIOD = 5.0  # seconds to wait after SIGTERM
DEFAULT_KILL_TIMEOUT = 1.0  # seconds to wait after SIGKILL
DEFAULT_QUEUE_SIZE = 1024

AnyEvent = Union[StartedEvent, LineEvent, ExitedEvent]
Presenter = Callable[[AnyEvent], object]


def _block_order(event: AnyEvent) -> int:
    """Sort key inside a grouped block: Started, stdout lines, stderr lines."""
    if isinstance(event, StartedEvent):
        return 0
    if isinstance(event, LineEvent) and event.stream == Stream.STDERR:
        return 2
    return 1


class _EventRouter:
    """Applies the output mode between the channel and the presenter."""

    def __init__(self, mode: OutputMode, present: Presenter, task_count: int) -> None:
        self.mode = mode
        self._present = present
        self._task_count = task_count
        self._blocks: dict[int, list[AnyEvent]] = {}
        self._exited: dict[int, ExitedEvent] = {}

    @property
    def all_exited(self) -> bool:
        return len(self._exited) == self._task_count

    def has_exited(self, index: int) -> bool:
        return index in self._exited

    def exited(self, index: int) -> ExitedEvent | None:
        return self._exited.get(index)

    def dispatch(self, event: AnyEvent) -> None:
        index = event.task_index
        if index in self._exited:
            logger.warning(f"Dropping event after exit of task {index}: {event.kind.value}")
            return

        if isinstance(event, ExitedEvent):
            self._exited[index] = event

        if self.mode == OutputMode.INTERLEAVED:
            self._present(event)
            return

        if not isinstance(event, ExitedEvent):
            self._blocks.setdefault(index, []).append(event)
            return

        # sorted() is stable, so each stream keeps its arrival order
        for buffered in sorted(self._blocks.pop(index, []), key=_block_order):
            self._present(buffered)
        self._present(event)


class Supervisor:
    """Orchestrates a set of TaskRunners.

    Example:
        ```python
        supervisor = Supervisor(presenter)
        result = await supervisor.run_all(specs, OutputMode.GROUPED)
        sys.exit(result.exit_code)
        ```

    Attributes:
        cancel_signal: Shared cancellation signal observed by all tasks
        grace_period: Seconds a killed task gets before SIGKILL
        kill_timeout: Seconds to wait after SIGKILL before giving up
        queue_size: Capacity of the event channel
    """

    def __init__(
        self,
        presenter: Presenter,
        *,
        cancel_signal: CancelSignal | None = None,
        grace_period: float = DEFAULT_GRACE_PERIOD,
        kill_timeout: float = DEFAULT_KILL_TIMEOUT,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        encoding: str = "utf-8",
    ) -> None:
        self._present = presenter
        self.cancel_signal = cancel_signal if cancel_signal is not None else CancelSignal()
        self.grace_period = grace_period
        self.kill_timeout = kill_timeout
        self.queue_size = queue_size
        self.encoding = encoding
        self._runners: list[TaskRunner] = []

    @property
    def runners(self) -> list[TaskRunner]:
        """Runners of the current (or last) run, in index order."""
        return list(self._runners)

    def cancel(self, reason: str = "cancelled") -> bool:
        """Request cancellation of the current run."""
        return self.cancel_signal.cancel(reason)

    async def run_all(
        self,
        specs: Iterable[TaskSpec],
        mode: OutputMode = OutputMode.INTERLEAVED,
    ) -> AggregateResult:
        """Run every spec concurrently and return the aggregate result.

        Args:
            specs: Task specs with dense indices 0..N-1 in order
            mode: Presentation order of events

        Raises:
            OrchestrationError: If the spec list is malformed
        """
        specs = list(specs)
        self._validate(specs)

        channel: EventChannel = asyncio.Queue(maxsize=self.queue_size)
        router = _EventRouter(mode, self._present, len(specs))
        self._runners = [
            TaskRunner(spec, channel, self.cancel_signal, encoding=self.encoding)
            for spec in specs
        ]
        logger.info(f"Starting {len(specs)} task(s) in {mode.value} mode")

        tasks = [
            asyncio.create_task(
                self._run_guarded(runner, channel),
                name=f"task-{runner.spec.index}",
            )
            for runner in self._runners
        ]

        cancelled = False
        try:
            finished = await self._consume(channel, router)
            cancelled = self.cancel_signal.is_cancelled
            if not finished:
                await self._shutdown(tasks, channel, router)
        finally:
            # never leave children behind, even if run_all itself is cancelled
            for runner in self._runners:
                if not runner.is_terminal:
                    runner.force_kill()
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        outcomes = [self._outcome(runner, router) for runner in self._runners]
        result = AggregateResult.from_outcomes(outcomes, cancelled=cancelled)
        logger.info(f"Run finished: status={result.status.value} exit_code={result.exit_code}")
        return result

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _validate(specs: list[TaskSpec]) -> None:
        if not specs:
            raise OrchestrationError("no tasks to run")
        for position, spec in enumerate(specs):
            if not isinstance(spec, TaskSpec):
                raise OrchestrationError(
                    f"expected TaskSpec at position {position}, got {type(spec).__name__}"
                )
            if spec.index != position:
                raise OrchestrationError(
                    f"task indices must be 0..{len(specs) - 1} in order, "
                    f"got index {spec.index} at position {position}"
                )
            if not spec.command.strip():
                raise OrchestrationError(f"task {position} has an empty command")

    async def _run_guarded(self, runner: TaskRunner, channel: EventChannel) -> None:
        """Run one task, containing unexpected failures to that task."""
        try:
            await runner.run()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"Runner for task '{runner.spec.name}' failed")
            event = runner.fail(e)
            if event is not None:
                await channel.put(event)

    async def _consume(self, channel: EventChannel, router: _EventRouter) -> bool:
        """Forward events until every task exited.

        Returns:
            False if cancellation interrupted the run
        """
        with anyio.CancelScope() as scope:
            unsubscribe = self.cancel_signal.subscribe(scope.cancel)
            try:
                while not router.all_exited:
                    router.dispatch(await channel.get())
            finally:
                unsubscribe()
        return not scope.cancelled_caught

    async def _drain(
        self,
        channel: EventChannel,
        router: _EventRouter,
        timeout: float,
        *,
        interruptible: bool = False,
    ) -> bool:
        """Keep forwarding events for at most ``timeout`` seconds.

        Returns:
            True if every task exited in time
        """
        with anyio.move_on_after(timeout) as scope:
            unsubscribe = (
                self.cancel_signal.subscribe_force(scope.cancel)
                if interruptible
                else (lambda: None)
            )
            try:
                while not router.all_exited:
                    router.dispatch(await channel.get())
            finally:
                unsubscribe()
        return router.all_exited

    async def _shutdown(
        self,
        tasks: list[asyncio.Task[None]],
        channel: EventChannel,
        router: _EventRouter,
    ) -> None:
        live = [r for r in self._runners if not router.has_exited(r.spec.index)]
        logger.info(f"Cancelling {len(live)} unfinished task(s)")
        for runner in live:
            runner.kill()

        if await self._drain(channel, router, self.grace_period, interruptible=True):
            return

        for runner in self._runners:
            if not router.has_exited(runner.spec.index):
                logger.warning(str(TerminationTimeout(runner.spec.name, self.grace_period)))
                runner.force_kill()

        if await self._drain(channel, router, self.kill_timeout):
            return

        # forced reclamation: stop waiting on the remaining runners
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        while not channel.empty():
            router.dispatch(channel.get_nowait())

        for runner in self._runners:
            if router.has_exited(runner.spec.index):
                continue
            event = runner.abandon() or runner.exited_event
            if event is not None:
                router.dispatch(event)

    @staticmethod
    def _outcome(runner: TaskRunner, router: _EventRouter) -> TaskOutcome:
        event = router.exited(runner.spec.index) or runner.exited_event
        if event is None:
            # only reachable if run_all itself was cancelled mid-run
            return TaskOutcome(
                index=runner.spec.index,
                name=runner.spec.name,
                state=runner.state,
                code=1,
            )
        return TaskOutcome(
            index=runner.spec.index,
            name=runner.spec.name,
            state=runner.state,
            code=event.code,
            signaled=event.signaled,
            error=event.error.value if event.error is not None else None,
        )
