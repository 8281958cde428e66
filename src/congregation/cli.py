"""Command line parsing.

Syntax:
    congregation [options] run <command> [-n <name>] [-d <dir>] [-c <rrggbb>] [run ...]

Global options come before the first ``run`` and are handled by argparse;
the repeated task groups are parsed by hand since every group reuses the
same short flags.
"""

from __future__ import annotations

import argparse
from collections import deque
from dataclasses import dataclass, field

from .colors import parse_hex_color
from .errors import UsageError
from .models import DEFAULT_NAME_LENGTH, OutputMode, TaskSpec

__all__ = ["CliOptions", "parse_args", "parse_task"]

TASK_KEYWORD = "run"


@dataclass
class CliOptions:
    """Parsed command line.

    ``None`` values mean "not given", leaving the environment config in
    charge.
    """

    specs: list[TaskSpec] = field(default_factory=list)
    mode: OutputMode | None = None
    grace_period: float | None = None
    json_output: bool = False
    live: bool = False
    verbose: bool = False
    log_debug: bool = False
    show_help: bool = False
    show_version: bool = False


class _ArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that raises UsageError instead of exiting."""

    def error(self, message: str):  # type: ignore[override]
        raise UsageError(
            "invalid syntax",
            message,
            notes=[f"run '{self.prog} help' for more information"],
        )


def _build_option_parser(prog: str) -> _ArgumentParser:
    parser = _ArgumentParser(prog=prog, add_help=False)
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--grouped", dest="mode", action="store_const", const=OutputMode.GROUPED,
    )
    mode.add_argument(
        "--interleaved", dest="mode", action="store_const", const=OutputMode.INTERLEAVED,
    )
    parser.add_argument("--grace-period", type=float, default=None)
    parser.add_argument("--json", dest="json_output", action="store_true")
    parser.add_argument("--live", action="store_true")
    parser.add_argument("-v", "--verbose", action="store_true")
    parser.add_argument("--log-debug", action="store_true")
    parser.add_argument("--version", action="store_true")
    parser.add_argument("-h", "--help", dest="show_help", action="store_true")
    return parser


def _is_help(arg: str) -> bool:
    return arg in ("-h", "--help") or arg.lower().startswith("h")


def _take_value(args: deque[str], task_count: int, message: str, **extra) -> str:
    if not args or args[0] == TASK_KEYWORD:
        raise UsageError(
            f"invalid syntax (in task {task_count + 1})",
            message,
            **extra,
        )
    return args.popleft()


def parse_task(
    args: deque[str],
    task_count: int,
    name_length: int = DEFAULT_NAME_LENGTH,
) -> TaskSpec:
    """Consume one ``run <command> [options]`` group from ``args``.

    Args:
        args: Remaining arguments; the group is popped off the front
        task_count: Number of tasks parsed so far (becomes the index)
        name_length: Maximum length of a derived name

    Raises:
        UsageError: On malformed input
    """
    if not args or args.popleft() != TASK_KEYWORD:
        raise UsageError(
            "invalid syntax",
            "expected 'run' or 'help' as the first argument",
        )

    if not args:
        raise UsageError("invalid syntax", "expected command after 'run' keyword")
    command = args.popleft()
    if not command.strip():
        raise UsageError(
            f"invalid syntax (in task {task_count + 1})",
            "the command after 'run' is empty",
        )

    name: str | None = None
    workdir: str | None = None
    color: str | None = None

    while args and args[0] != TASK_KEYWORD:
        option = args.popleft()
        if option == "-n":
            name = _take_value(args, task_count, "expected task name after -n")
        elif option == "-d":
            workdir = _take_value(args, task_count, "expected directory after -d")
        elif option == "-c":
            color_arg = _take_value(
                args,
                task_count,
                "expected color after -c",
                notes=["color syntax: RRGGBB (hex)", "if you have a # symbol, remove it"],
            )
            color = parse_hex_color(color_arg)
            if color is None:
                raise UsageError(
                    f"invalid syntax (in task {task_count + 1})",
                    f"invalid color '{color_arg}'",
                    notes=["color syntax: RRGGBB (hex)"],
                )
        else:
            raise UsageError(
                f"invalid syntax (in task {task_count + 1})",
                f"expected -n <name>, -d <dir>, -c <color> or run after command, got '{option}'",
                notes=[
                    "ensure that the command goes after the 'run' keyword",
                    "if your command includes spaces, please wrap it in quotes",
                    f"the command you provided is: `{command}`",
                ],
            )

    return TaskSpec.create(
        task_count,
        command,
        name=name,
        workdir=workdir,
        color=color,
        name_max_length=name_length,
    )


def parse_args(
    argv: list[str],
    *,
    prog: str = "congregation",
    name_length: int = DEFAULT_NAME_LENGTH,
) -> CliOptions:
    """Parse the full command line (without the program name).

    Raises:
        UsageError: On malformed input or when no task is given
    """
    args = deque(argv)

    head: list[str] = []
    while args and args[0] != TASK_KEYWORD and args[0].startswith("-"):
        head.append(args.popleft())
        # option values, e.g. "--grace-period 3"
        if head[-1] == "--grace-period" and args:
            head.append(args.popleft())

    parsed = _build_option_parser(prog).parse_args(head)
    options = CliOptions(
        mode=parsed.mode,
        grace_period=parsed.grace_period,
        json_output=parsed.json_output,
        live=parsed.live,
        verbose=parsed.verbose,
        log_debug=parsed.log_debug,
        show_help=parsed.show_help,
        show_version=parsed.version,
    )
    if options.show_help or options.show_version:
        return options

    if options.grace_period is not None and options.grace_period <= 0:
        raise UsageError("invalid syntax", "--grace-period must be a positive number of seconds")

    while args:
        if args[0] != TASK_KEYWORD and _is_help(args[0]):
            options.show_help = True
            return options
        options.specs.append(parse_task(args, len(options.specs), name_length))

    if not options.specs:
        raise UsageError(
            "no tasks specified!",
            "please list some commands to execute using the 'run' keyword",
            examples=[f"{prog} run 'echo hello'"],
            notes=[f"run '{prog} help' for more information"],
        )

    return options
