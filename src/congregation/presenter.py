"""Terminal rendering of task events.

The presenter turns one TaskEvent into one display line. It holds no process
state and is only ever called from the Supervisor's consuming side.

Interleaved layout:
    web    │ listening on :8080
    api    ┃ warning: deprecated flag        (stderr)
    web    └ completed

Grouped layout:
    web
    │ listening on :8080
    └ completed

LivePresenter redraws the grouped layout in place while tasks run.
"""

from __future__ import annotations

import json
import sys
from collections.abc import Iterable
from dataclasses import asdict
from typing import IO

from rich.console import Console
from rich.live import Live
from rich.text import Text

from .colors import STATUS_COLORS
from .events import ExitedEvent, LineEvent, StartedEvent, Stream, TaskError
from .models import AggregateResult, OutputMode, RunStatus, TaskSpec, TaskState

__all__ = [
    "Presenter",
    "JsonLinesPresenter",
    "LivePresenter",
    "status_text",
]

MAX_LABEL_WIDTH = 24
DEFAULT_TAIL_LINES = 8


def status_text(
    code: int,
    *,
    signaled: bool = False,
    killed: bool = False,
    error: TaskError | str | None = None,
    message: str | None = None,
) -> Text:
    """Describe a task's fate, e.g. ``completed`` or ``failed (code 2)``."""
    error = TaskError(error) if isinstance(error, str) else error

    if error == TaskError.SPAWN_FAILED:
        detail = f": {message}" if message else ""
        return Text(f"failed to start{detail}", style=STATUS_COLORS["error"])
    if error == TaskError.STREAM_ERROR:
        return Text("failed (output read error)", style=STATUS_COLORS["error"])
    if error == TaskError.INTERNAL:
        return Text("failed (internal error)", style=STATUS_COLORS["error"])
    if killed:
        return Text("killed", style=STATUS_COLORS["killed"])
    if signaled:
        return Text(f"terminated (signal {code - 128})", style=STATUS_COLORS["error"])
    if code == 0:
        return Text("completed", style=STATUS_COLORS["success"])
    return Text(f"failed (code {code})", style=STATUS_COLORS["error"])


class Presenter:
    """Render TaskEvents to a rich Console.

    Child output is parsed with ``Text.from_ansi`` so the children's own
    colors survive and their text is never interpreted as rich markup.

    Attributes:
        mode: Layout to use
        console: Output console (stdout by default)
    """

    def __init__(
        self,
        specs: Iterable[TaskSpec],
        mode: OutputMode = OutputMode.INTERLEAVED,
        console: Console | None = None,
    ) -> None:
        self._specs = {spec.index: spec for spec in specs}
        self.mode = mode
        self.console = console or Console(highlight=False)
        widths = [Text(spec.name).cell_len for spec in self._specs.values()]
        self._label_width = min(max(widths, default=0), MAX_LABEL_WIDTH)

    def __enter__(self):
        return self

    def __exit__(self, *exc_info) -> None:
        return None

    def __call__(self, event: StartedEvent | LineEvent | ExitedEvent) -> None:
        self.present(event)

    def present(self, event: StartedEvent | LineEvent | ExitedEvent) -> None:
        self.console.print(self.render(event), soft_wrap=True)

    def render(self, event: StartedEvent | LineEvent | ExitedEvent) -> Text:
        """Build the display line for one event."""
        if self.mode == OutputMode.GROUPED:
            return self._render_grouped(event)
        return self._render_interleaved(event)

    def summary(self, result: AggregateResult) -> None:
        """Print every task's fate followed by the overall outcome."""
        self.console.print()
        for outcome in result.outcomes:
            line = self._label(outcome.index, pad=True)
            line.append(" └ ", style=STATUS_COLORS["separator"])
            line.append_text(
                status_text(
                    outcome.code,
                    signaled=outcome.signaled,
                    killed=outcome.state == TaskState.KILLED,
                    error=outcome.error,
                )
            )
            self.console.print(line, soft_wrap=True)

        total = len(result.outcomes)
        if result.status == RunStatus.SUCCEEDED:
            verdict = Text(f"all {total} task(s) completed", style=STATUS_COLORS["success"])
        elif result.status == RunStatus.CANCELLED:
            verdict = Text(
                f"cancelled (exit code {result.exit_code})",
                style=STATUS_COLORS["killed"],
            )
        else:
            failed = sum(1 for outcome in result.outcomes if not outcome.succeeded)
            verdict = Text(
                f"{failed} of {total} task(s) failed (exit code {result.exit_code})",
                style=STATUS_COLORS["error"],
            )
        self.console.print(verdict)

    # ------------------------------------------------------------------
    # Layouts
    # ------------------------------------------------------------------

    def _render_interleaved(self, event: StartedEvent | LineEvent | ExitedEvent) -> Text:
        line = self._label(event.task_index, pad=True)
        if isinstance(event, LineEvent):
            if event.stream == Stream.STDERR:
                line.append(" ┃ ", style=STATUS_COLORS["error"])
            else:
                line.append(" │ ", style=STATUS_COLORS["separator"])
            line.append_text(Text.from_ansi(event.text))
        elif isinstance(event, StartedEvent):
            line.append(" │ ", style=STATUS_COLORS["separator"])
            line.append(f"started (pid {event.pid})", style=STATUS_COLORS["running"])
        else:
            line.append(" └ ", style=STATUS_COLORS["separator"])
            line.append_text(self._exit_status(event))
        return line

    def _render_grouped(self, event: StartedEvent | LineEvent | ExitedEvent) -> Text:
        if isinstance(event, StartedEvent):
            return self._label(event.task_index)
        if isinstance(event, LineEvent):
            style = STATUS_COLORS["error"] if event.stream == Stream.STDERR else STATUS_COLORS["separator"]
            line = Text("│ ", style=style)
            line.append_text(Text.from_ansi(event.text))
            return line
        # seq 0: the task never started, so no header was printed
        if event.seq == 0:
            line = self._label(event.task_index)
            line.append(" └ ", style=STATUS_COLORS["separator"])
        else:
            line = Text("└ ", style=STATUS_COLORS["separator"])
        line.append_text(self._exit_status(event))
        return line

    def _label(self, index: int, pad: bool = False) -> Text:
        spec = self._specs.get(index)
        name = spec.name if spec is not None else f"#{index + 1}"
        color = spec.color if spec is not None else STATUS_COLORS["running"]
        label = Text(name, style=f"bold {color}")
        if pad:
            label.truncate(self._label_width, overflow="ellipsis")
            label.align("left", self._label_width)
        return label

    @staticmethod
    def _exit_status(event: ExitedEvent) -> Text:
        return status_text(
            event.code,
            signaled=event.signaled,
            killed=event.killed,
            error=event.error,
            message=event.message,
        )


class LivePresenter(Presenter):
    """Inline live view (``--live``).

    One block per task in index order, each ending in a status line that
    reads ``running...`` until the task exits and is then updated in place.
    While the run lasts a block shows only its last ``tail_lines`` lines;
    when the view closes every block is printed in full.

    Must be used as a context manager around the run. The Supervisor should
    run in interleaved mode so the view sees events as they arrive.

    Layout:
        web
        │ … 12 earlier line(s)
        │ listening on :8080
        └ running...
        api
        └ completed
        congregation 0.2.0
    """

    def __init__(
        self,
        specs: Iterable[TaskSpec],
        console: Console | None = None,
        *,
        tail_lines: int = DEFAULT_TAIL_LINES,
        refresh_per_second: float = 8.0,
    ) -> None:
        super().__init__(specs, OutputMode.GROUPED, console)
        self.tail_lines = max(0, tail_lines)
        self._lines: dict[int, list[LineEvent]] = {index: [] for index in self._specs}
        self._exited: dict[int, ExitedEvent] = {}
        self._live = Live(
            console=self.console,
            get_renderable=self.render_view,
            refresh_per_second=refresh_per_second,
            transient=True,
            redirect_stdout=False,
            redirect_stderr=False,
        )

    def __enter__(self):
        self._live.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self._live.stop()
        for index in sorted(self._specs):
            for line in self._block(index, None):
                self.console.print(line, soft_wrap=True)

    def present(self, event: StartedEvent | LineEvent | ExitedEvent) -> None:
        # the Live refresh thread picks the change up
        if isinstance(event, LineEvent):
            self._lines.setdefault(event.task_index, []).append(event)
        elif isinstance(event, ExitedEvent):
            self._exited[event.task_index] = event

    def render_view(self) -> Text:
        """The current live frame: every task's tail plus a footer."""
        from . import __version__

        lines: list[Text] = []
        for index in sorted(self._specs):
            lines.extend(self._block(index, self.tail_lines))
        lines.append(Text(f"congregation {__version__}", style=STATUS_COLORS["separator"]))
        return Text("\n").join(lines)

    def _block(self, index: int, tail: int | None) -> list[Text]:
        logs = self._lines.get(index, [])
        shown = logs if tail is None else logs[max(0, len(logs) - tail):]

        block = [self._label(index)]
        hidden = len(logs) - len(shown)
        if hidden:
            block.append(
                Text(f"│ … {hidden} earlier line(s)", style=STATUS_COLORS["separator"])
            )
        block.extend(self._render_grouped(event) for event in shown)

        status = Text("└ ", style=STATUS_COLORS["separator"])
        exited = self._exited.get(index)
        if exited is None:
            status.append("running...", style=STATUS_COLORS["running"])
        else:
            status.append_text(self._exit_status(exited))
        block.append(status)
        return block


class JsonLinesPresenter:
    """Write each TaskEvent as one JSON object per line (``--json``)."""

    def __init__(self, stream: IO[str] | None = None) -> None:
        self._stream = stream if stream is not None else sys.stdout

    def __enter__(self):
        return self

    def __exit__(self, *exc_info) -> None:
        return None

    def __call__(self, event: StartedEvent | LineEvent | ExitedEvent) -> None:
        self.present(event)

    def present(self, event: StartedEvent | LineEvent | ExitedEvent) -> None:
        self._stream.write(event.model_dump_json() + "\n")
        self._stream.flush()

    def summary(self, result: AggregateResult) -> None:
        payload = {
            "kind": "summary",
            "status": result.status.value,
            "exit_code": result.exit_code,
            "outcomes": [
                {**asdict(outcome), "state": outcome.state.value}
                for outcome in result.outcomes
            ],
        }
        self._stream.write(json.dumps(payload, ensure_ascii=False) + "\n")
        self._stream.flush()
