"""Core data model: task specifications, task states and run results."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from .colors import color_for_index

__all__ = [
    "SPAWN_FAILED_EXIT_CODE",
    "STREAM_ERROR_EXIT_CODE",
    "INTERNAL_ERROR_EXIT_CODE",
    "CANCELLED_EXIT_CODE",
    "DEFAULT_NAME_LENGTH",
    "OutputMode",
    "TaskSpec",
    "TaskState",
    "TaskOutcome",
    "RunStatus",
    "AggregateResult",
    "derive_name",
]

# Sentinel exit codes for tasks that never produced a real status
SPAWN_FAILED_EXIT_CODE = 127  # same as a shell's "command not found"
STREAM_ERROR_EXIT_CODE = 74  # EX_IOERR
INTERNAL_ERROR_EXIT_CODE = 70  # EX_SOFTWARE
# 128 + SIGINT. A task that exits 130 by itself yields the same aggregate code;
# AggregateResult.status tells the two apart.
CANCELLED_EXIT_CODE = 130

DEFAULT_NAME_LENGTH = 32


class OutputMode(str, Enum):
    """How the Supervisor orders events for the presenter.

    - INTERLEAVED: forward each event as soon as it arrives
    - GROUPED: buffer a task's output and flush it as one block on exit
    """

    INTERLEAVED = "interleaved"
    GROUPED = "grouped"

    @classmethod
    def from_string(cls, value: str) -> "OutputMode":
        """Parse a mode name, case-insensitive. Unknown values give INTERLEAVED."""
        value = value.lower().strip()
        for mode in cls:
            if mode.value == value:
                return mode
        return cls.INTERLEAVED


class TaskState(str, Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    EXITED = "exited"
    KILLED = "killed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskState.EXITED, TaskState.KILLED)


def derive_name(
    command: str,
    workdir: str | None = None,
    max_length: int = DEFAULT_NAME_LENGTH,
) -> str:
    """Build a display label for a task without an explicit name.

    The working directory (as typed) wins over the command text, which is
    truncated to ``max_length`` characters with a trailing ellipsis.
    """
    if workdir:
        return workdir
    text = " ".join(command.split())
    if len(text) <= max_length:
        return text
    return text[: max(1, max_length - 1)] + "…"


@dataclass(frozen=True)
class TaskSpec:
    """Immutable description of one task.

    Attributes:
        index: Position on the command line (dense 0..N-1)
        name: Display label
        command: Shell command line to execute
        color: Hex color ``#RRGGBB`` used for the label
        workdir: Working directory (None = current directory)
        env: Extra environment variables merged over the parent's
    """

    index: int
    name: str
    command: str
    color: str
    workdir: Path | None = None
    env: Mapping[str, str] | None = field(default=None, compare=False)

    @classmethod
    def create(
        cls,
        index: int,
        command: str,
        *,
        name: str | None = None,
        workdir: str | Path | None = None,
        color: str | None = None,
        env: Mapping[str, str] | None = None,
        name_max_length: int = DEFAULT_NAME_LENGTH,
    ) -> "TaskSpec":
        """Build a spec, deriving name and color when not given."""
        raw_workdir = str(workdir) if workdir is not None else None
        return cls(
            index=index,
            name=name or derive_name(command, raw_workdir, name_max_length),
            command=command,
            color=color or color_for_index(index),
            workdir=Path(workdir) if workdir is not None else None,
            env=env,
        )


@dataclass(frozen=True)
class TaskOutcome:
    """Final fate of one task, as reported in an AggregateResult."""

    index: int
    name: str
    state: TaskState
    code: int
    signaled: bool = False
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.state == TaskState.EXITED and self.code == 0 and self.error is None


class RunStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class AggregateResult:
    """Combined outcome of a run.

    ``exit_code`` is 0 on success, the code of the lowest-index failed task
    on failure and CANCELLED_EXIT_CODE on cancellation.
    """

    status: RunStatus
    exit_code: int
    outcomes: tuple[TaskOutcome, ...] = ()

    @property
    def succeeded(self) -> bool:
        return self.status == RunStatus.SUCCEEDED

    @property
    def cancelled(self) -> bool:
        return self.status == RunStatus.CANCELLED

    @classmethod
    def from_outcomes(
        cls,
        outcomes: list[TaskOutcome],
        cancelled: bool = False,
    ) -> "AggregateResult":
        ordered = tuple(sorted(outcomes, key=lambda o: o.index))
        if cancelled:
            return cls(RunStatus.CANCELLED, CANCELLED_EXIT_CODE, ordered)
        for outcome in ordered:
            if not outcome.succeeded:
                # a killed task may still report 0 if it trapped SIGTERM
                code = outcome.code or 1
                return cls(RunStatus.FAILED, code, ordered)
        return cls(RunStatus.SUCCEEDED, 0, ordered)
