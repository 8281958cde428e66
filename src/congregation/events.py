"""Task event model.

A TaskRunner produces these events and the Supervisor forwards them to the
presenter. Events of one task are strictly ordered (``seq`` grows by one per
event); there is no ordering across tasks.

Variants:
- StartedEvent: the process was spawned
- LineEvent: one complete line from stdout or stderr
- ExitedEvent: the task reached a terminal state (exactly one per task)
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

__all__ = [
    "EventKind",
    "Stream",
    "TaskError",
    "TaskEventBase",
    "StartedEvent",
    "LineEvent",
    "ExitedEvent",
    "TaskEvent",
    "parse_event",
]


class EventKind(str, Enum):
    STARTED = "started"
    LINE = "line"
    EXITED = "exited"


class Stream(str, Enum):
    STDOUT = "stdout"
    STDERR = "stderr"


class TaskError(str, Enum):
    """Why a task ended without a real exit status from its process."""

    SPAWN_FAILED = "spawn_failed"
    STREAM_ERROR = "stream_error"
    INTERNAL = "internal"


class TaskEventBase(BaseModel):
    """Fields shared by every task event.

    Attributes:
        task_index: Index of the originating TaskSpec
        task_name: Display label of the task
        seq: Per-task sequence number, starting at 0
        timestamp: Unix time the event was produced
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    task_index: int
    task_name: str
    seq: int = 0
    timestamp: float = Field(default_factory=time.time)


class StartedEvent(TaskEventBase):
    kind: Literal[EventKind.STARTED] = EventKind.STARTED
    pid: int | None = None


class LineEvent(TaskEventBase):
    kind: Literal[EventKind.LINE] = EventKind.LINE
    stream: Stream = Stream.STDOUT
    text: str = ""


class ExitedEvent(TaskEventBase):
    """Terminal event of a task.

    Attributes:
        code: Exit code (128 + N for a signal N, or a sentinel for errors)
        signaled: The process was ended by a signal
        killed: The task was terminated by the supervisor
        error: Set when the code is a sentinel rather than a real status
        message: Human readable detail for ``error``
    """

    kind: Literal[EventKind.EXITED] = EventKind.EXITED
    code: int = 0
    signaled: bool = False
    killed: bool = False
    error: TaskError | None = None
    message: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.code == 0 and not self.killed and self.error is None


TaskEvent = Annotated[
    Union[StartedEvent, LineEvent, ExitedEvent],
    Field(discriminator="kind"),
]

_event_adapter: TypeAdapter[TaskEvent] = TypeAdapter(TaskEvent)


def parse_event(data: dict) -> StartedEvent | LineEvent | ExitedEvent:
    """Rebuild a TaskEvent from its ``model_dump()`` form."""
    return _event_adapter.validate_python(data)
