"""Usage errors and help text for the command line."""

from __future__ import annotations

from rich.console import Console
from rich.text import Text

from .colors import STATUS_COLORS
from .errors import UsageError

__all__ = ["render_usage_error", "print_usage_error", "help_text", "print_help"]

_NOTE_PREFIX = "note:"


def render_usage_error(error: UsageError) -> Text:
    """Format a UsageError.

    Layout:
        <title>                         (red)
        <message>:
        │ <example>
        note: <first note>
              <further notes>
    """
    out = Text(error.title, style=STATUS_COLORS["error"])
    out.append("\n")

    if not error.examples:
        out.append(error.message)
        out.append("\n")
    else:
        out.append("\n")
        out.append(f"{error.message}:\n")
        for example in error.examples:
            out.append("│ ", style=STATUS_COLORS["separator"])
            out.append(f"{example}\n")

    padding = " " * len(_NOTE_PREFIX)
    for i, note in enumerate(error.notes):
        out.append("\n")
        if i == 0:
            out.append(_NOTE_PREFIX, style=STATUS_COLORS["success"])
        else:
            out.append(padding)
        out.append(" ")
        out.append(note, style=STATUS_COLORS["running"])
        out.append("\n")

    out.rstrip()
    return out


def print_usage_error(error: UsageError, console: Console | None = None) -> None:
    console = console or Console(stderr=True, highlight=False)
    console.print(render_usage_error(error))


def help_text(prog: str) -> str:
    return f"""\
Run multiple parallel tasks with attributed output

Usage: {prog} [options] <task> [<task> ...]

Task syntax:
  run <command> [-d <dir>] [-n <name>] [-c <rrggbb>]

  <command>     The shell command to run (wrap in quotes if it contains spaces)
  -d <dir>      Working directory for the task (defaults to the current directory)
  -n <name>     Name of the task (defaults to the directory or the command)
  -c <rrggbb>   Hex RGB color for the task name (e.g. ff8800, defaults to a palette color)

Options:
  --interleaved        Print lines as they arrive (default)
  --grouped            Print each task's output as one block when it exits
  --grace-period <s>   Seconds to wait for tasks after Ctrl+C before killing them
  --json               Print events as JSON lines
  --live               Show each task's latest lines, updated in place
  -v, --verbose        Log progress to stderr
  --log-debug          Write a debug log to a temp file
  --version            Print the version and exit
  -h, --help           Print this help

Press Ctrl+C once to stop all tasks, twice to kill them immediately.

Exit status:
  0     all tasks completed
  130   the run was cancelled (a task that exits 130 by itself also gives 130)
  2     invalid command line
  Otherwise the exit code of the first task that failed."""


def print_help(prog: str, console: Console | None = None) -> None:
    console = console or Console(highlight=False)
    console.print(help_text(prog), markup=False)
