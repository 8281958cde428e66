"""Exception hierarchy for congregation.

Per-task failures (SpawnError, StreamReadError) never escape a TaskRunner;
they are reported through the task's Exited event. Only OrchestrationError
and UsageError surface to the caller.
"""

from __future__ import annotations

__all__ = [
    "CongregationError",
    "SpawnError",
    "StreamReadError",
    "TerminationTimeout",
    "CancellationRequested",
    "OrchestrationError",
    "UsageError",
]


class CongregationError(Exception):
    """Base exception for congregation."""
    pass


class SpawnError(CongregationError):
    """A task's command could not be started.

    Attributes:
        command: The shell command line
        reason: Human readable cause (missing directory, permission denied...)
    """

    def __init__(self, command: str, reason: str) -> None:
        self.command = command
        self.reason = reason
        super().__init__(f"failed to start `{command}`: {reason}")


class StreamReadError(CongregationError):
    """Reading a child's stdout or stderr failed."""

    def __init__(self, stream: str, reason: str) -> None:
        self.stream = stream
        self.reason = reason
        super().__init__(f"error reading {stream}: {reason}")


class TerminationTimeout(CongregationError):
    """A killed task did not exit within the grace period."""

    def __init__(self, task_name: str, grace_period: float) -> None:
        self.task_name = task_name
        self.grace_period = grace_period
        super().__init__(
            f"task '{task_name}' did not exit within {grace_period:g}s, force killing"
        )


class CancellationRequested(CongregationError):
    """Raised by CancelSignal.raise_if_cancelled(). A control signal, not a failure."""

    def __init__(self, reason: str = "") -> None:
        self.reason = reason
        super().__init__(reason or "cancellation requested")


class OrchestrationError(CongregationError):
    """The run could not even begin (e.g. malformed spec list)."""
    pass


class UsageError(CongregationError):
    """Invalid command line.

    Attributes:
        title: Short headline, rendered in red
        message: Explanation
        examples: Example invocations shown under the message
        notes: Extra hints rendered as ``note:`` lines
    """

    def __init__(
        self,
        title: str,
        message: str,
        examples: list[str] | None = None,
        notes: list[str] | None = None,
    ) -> None:
        self.title = title
        self.message = message
        self.examples = list(examples or [])
        self.notes = list(notes or [])
        super().__init__(f"{title}: {message}")
