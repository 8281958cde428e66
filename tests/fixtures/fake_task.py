#!/usr/bin/env python3
"""Fake task for integration testing.

Writes numbered lines to stdout and stderr, then exits, hangs or ignores
SIGTERM depending on the flags.

Usage:
    python fake_task.py [--stdout N] [--stderr N] [--interval SECONDS]
                        [--partial TEXT] [--split-utf8] [--crlf]
                        [--hang] [--ignore-sigterm] [--exit-code CODE]

Lines look like ``out 0``, ``out 1``... on stdout and ``err 0``... on stderr.
"""

from __future__ import annotations

import argparse
import signal
import sys
import time
from typing import NoReturn


def write(stream, data: bytes) -> None:
    stream.buffer.write(data)
    stream.buffer.flush()


def main() -> NoReturn:
    parser = argparse.ArgumentParser(description="Fake task for testing")
    parser.add_argument("--stdout", type=int, default=0, help="stdout lines to print")
    parser.add_argument("--stderr", type=int, default=0, help="stderr lines to print")
    parser.add_argument("--interval", type=float, default=0.0, help="delay between lines")
    parser.add_argument("--partial", default=None, help="final stdout text without newline")
    parser.add_argument("--split-utf8", action="store_true", help="split a multi-byte character")
    parser.add_argument("--crlf", action="store_true", help="use CRLF line endings")
    parser.add_argument("--hang", action="store_true", help="sleep forever after output")
    parser.add_argument("--ignore-sigterm", action="store_true", help="ignore SIGTERM")
    parser.add_argument("--exit-code", type=int, default=0, help="exit code")
    args = parser.parse_args()

    if args.ignore_sigterm and hasattr(signal, "SIGTERM"):
        signal.signal(signal.SIGTERM, signal.SIG_IGN)

    ending = b"\r\n" if args.crlf else b"\n"

    for i in range(max(args.stdout, args.stderr)):
        if i < args.stdout:
            write(sys.stdout, f"out {i}".encode() + ending)
        if i < args.stderr:
            write(sys.stderr, f"err {i}".encode() + ending)
        if args.interval:
            time.sleep(args.interval)

    if args.split_utf8:
        encoded = "héllo wörld".encode("utf-8")
        # cut inside the two-byte "é"
        write(sys.stdout, encoded[:2])
        time.sleep(0.05)
        write(sys.stdout, encoded[2:] + ending)

    if args.partial is not None:
        write(sys.stdout, args.partial.encode("utf-8"))

    # tells the test harness the task is now idle
    if args.hang:
        write(sys.stdout, b"ready" + ending)
        while True:
            time.sleep(1)

    sys.exit(args.exit_code)


if __name__ == "__main__":
    main()
