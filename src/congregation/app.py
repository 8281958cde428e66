"""congregation application entry point.

Wires the pieces together: command line -> TaskSpecs -> Supervisor (with a
SignalManager driving cancellation) -> Presenter, and turns the aggregate
result into the process exit status.
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from collections.abc import Sequence

from rich.console import Console

from .cancellation import CancelSignal
from .cli import CliOptions, parse_args
from .config import Config, generate_log_file_path, get_config
from .diagnostics import print_help, print_usage_error
from .errors import OrchestrationError, UsageError
from .models import AggregateResult, OutputMode
from .presenter import JsonLinesPresenter, LivePresenter, Presenter
from .signal_manager import SignalManager
from .supervisor import Supervisor

__all__ = ["USAGE_EXIT_CODE", "BROKEN_PIPE_EXIT_CODE", "run_tasks", "configure_logging", "main"]

logger = logging.getLogger(__name__)

USAGE_EXIT_CODE = 2
BROKEN_PIPE_EXIT_CODE = 141  # 128 + SIGPIPE, as a shell reports it


async def run_tasks(
    options: CliOptions,
    config: Config,
    console: Console | None = None,
) -> AggregateResult:
    """Run the parsed tasks under signal handling and print the summary."""
    mode = options.mode or config.mode
    grace_period = options.grace_period if options.grace_period is not None else config.grace_period

    if options.json_output:
        presenter: Presenter | JsonLinesPresenter = JsonLinesPresenter()
    elif options.live or config.live:
        presenter = LivePresenter(options.specs, console)
        # the live view keeps its own per-task blocks
        mode = OutputMode.INTERLEAVED
    else:
        presenter = Presenter(options.specs, mode, console)

    cancel = CancelSignal()
    signal_manager = SignalManager(cancel)
    supervisor = Supervisor(
        presenter,
        cancel_signal=cancel,
        grace_period=grace_period,
        kill_timeout=config.kill_timeout,
        queue_size=config.queue_size,
    )

    await signal_manager.start()
    try:
        with presenter:
            result = await supervisor.run_all(options.specs, mode)
    finally:
        await signal_manager.stop()

    presenter.summary(result)
    return result


def configure_logging(config: Config, verbose: bool = False) -> None:
    """Configure log handlers.

    Default: warnings to stderr. ``verbose``: INFO to stderr.
    ``config.log_debug``: DEBUG to a temp file.
    """
    log_handlers: list[logging.Handler] = []
    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    if config.log_debug and config.log_file:
        file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        log_handlers.append(file_handler)
        log_level = logging.DEBUG
    else:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(formatter)
        log_handlers.append(stderr_handler)
        log_level = logging.INFO if verbose or config.verbose else logging.WARNING

    # third-party loggers stay at WARNING
    logging.basicConfig(level=logging.WARNING, handlers=log_handlers, force=True)
    logging.getLogger("congregation").setLevel(log_level)


def _silence_stdout() -> None:
    """Point stdout at devnull so the interpreter's final flush cannot fail."""
    try:
        devnull = os.open(os.devnull, os.O_WRONLY)
        os.dup2(devnull, sys.stdout.fileno())
    except (OSError, ValueError) as e:
        logger.debug(f"Cannot redirect stdout: {e}")


def main(argv: Sequence[str] | None = None) -> None:
    """Console script entry point."""
    from . import __version__

    args = list(sys.argv[1:] if argv is None else argv)
    prog = os.path.basename(sys.argv[0]) if sys.argv and sys.argv[0] else "congregation"
    if prog in ("__main__.py", "-c", ""):
        prog = "congregation"

    config = get_config()

    try:
        options = parse_args(args, prog=prog, name_length=config.name_length)
    except UsageError as e:
        print_usage_error(e)
        sys.exit(USAGE_EXIT_CODE)

    if options.show_help:
        print_help(prog)
        sys.exit(0)
    if options.show_version:
        print(f"{prog} {__version__}")
        sys.exit(0)

    if options.log_debug and not config.log_debug:
        config.log_debug = True
        config.log_file = generate_log_file_path()
    configure_logging(config, verbose=options.verbose)
    logger.debug(f"Starting with {config}")
    if config.log_debug:
        Console(stderr=True, highlight=False).print(f"debug log: {config.log_file}", markup=False)

    try:
        result = asyncio.run(run_tasks(options, config))
    except OrchestrationError as e:
        logger.error(f"Cannot start: {e}")
        sys.exit(USAGE_EXIT_CODE)
    except BrokenPipeError:
        # reader of our stdout went away, e.g. `congregation run yes | head`
        logger.debug("stdout closed by reader, exiting")
        _silence_stdout()
        sys.exit(BROKEN_PIPE_EXIT_CODE)

    sys.exit(result.exit_code)


if __name__ == "__main__":
    main()
