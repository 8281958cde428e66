"""Handle on one spawned shell command.

This module provides:
- Shell spawning in an isolated process group/session
- Chunked reads of stdout/stderr
- Exit status retrieval that suspends only the awaiting coroutine
- Process-group termination (SIGTERM) and forced kill (SIGKILL)

Key design points:
- POSIX: start_new_session=True so signals reach the whole process tree
- Windows: CREATE_NEW_PROCESS_GROUP, CTRL_BREAK_EVENT as the soft signal
- terminate()/kill() are no-ops once the process has exited
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import subprocess
import sys
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..errors import SpawnError, StreamReadError
from ..events import Stream

__all__ = [
    "IS_WINDOWS",
    "READ_CHUNK_SIZE",
    "ExitResult",
    "ProcessHandle",
    "shell_argv",
]

logger = logging.getLogger(__name__)

# Platform detection
IS_WINDOWS = sys.platform == "win32"

READ_CHUNK_SIZE = 4096


def shell_argv(command: str) -> list[str]:
    """Return the argv that runs ``command`` through the platform shell."""
    if IS_WINDOWS:
        return ["cmd.exe", "/C", command]
    return ["sh", "-c", command]


@dataclass(frozen=True)
class ExitResult:
    """Exit status of a finished process.

    Attributes:
        code: Exit code; 128 + N when ended by signal N
        signaled: True when the process was ended by a signal
        signal: The signal number, if any
    """

    code: int
    signaled: bool = False
    signal: int | None = None

    @classmethod
    def from_returncode(cls, returncode: int) -> "ExitResult":
        """Convert an asyncio returncode (negative for signals on POSIX)."""
        if returncode < 0:
            signum = -returncode
            return cls(code=128 + signum, signaled=True, signal=signum)
        return cls(code=returncode)


class ProcessHandle:
    """One OS child process running a shell command.

    Example:
        handle = await ProcessHandle.spawn("echo hello")
        while chunk := await handle.read_chunk(Stream.STDOUT):
            ...
        result = await handle.wait()
    """

    def __init__(self, process: asyncio.subprocess.Process, command: str) -> None:
        self._process = process
        self.command = command

    @classmethod
    async def spawn(
        cls,
        command: str,
        *,
        cwd: Path | str | None = None,
        env: Mapping[str, str] | None = None,
    ) -> "ProcessHandle":
        """Start ``command`` through the shell.

        Args:
            command: Shell command line
            cwd: Working directory (None = inherit)
            env: Extra variables merged over the current environment

        Raises:
            SpawnError: If the process could not be created
        """
        if cwd is not None and not Path(cwd).is_dir():
            raise SpawnError(command, f"working directory does not exist: {cwd}")

        kwargs = cls._build_subprocess_kwargs(env)
        argv = shell_argv(command)

        try:
            # stdin=DEVNULL: children must not compete for the operator's terminal
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                **kwargs,
            )
        except FileNotFoundError as e:
            raise SpawnError(command, f"shell not found: {e.filename or argv[0]}") from e
        except PermissionError as e:
            raise SpawnError(command, f"permission denied: {e}") from e
        except OSError as e:
            raise SpawnError(command, str(e)) from e

        logger.debug(f"Started subprocess pid={process.pid} command={command!r} cwd={cwd}")
        return cls(process, command)

    @staticmethod
    def _build_subprocess_kwargs(env: Mapping[str, str] | None) -> dict[str, Any]:
        """Build platform-specific kwargs for asyncio.create_subprocess_exec."""
        kwargs: dict[str, Any] = {}

        if env:
            merged = os.environ.copy()
            merged.update(env)
            kwargs["env"] = merged

        if IS_WINDOWS:
            kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            kwargs["start_new_session"] = True

        return kwargs

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        """Raw asyncio returncode, None while running."""
        return self._process.returncode

    @property
    def has_exited(self) -> bool:
        return self._process.returncode is not None

    async def read_chunk(self, stream: Stream) -> bytes:
        """Read the next chunk from stdout or stderr.

        Returns:
            Up to READ_CHUNK_SIZE bytes; ``b""`` at end of stream

        Raises:
            StreamReadError: On an I/O failure
        """
        reader = self._process.stdout if stream == Stream.STDOUT else self._process.stderr
        if reader is None:
            return b""
        try:
            return await reader.read(READ_CHUNK_SIZE)
        except OSError as e:
            raise StreamReadError(stream.value, str(e)) from e

    async def wait(self) -> ExitResult:
        """Wait for the process to exit and return its status."""
        returncode = await self._process.wait()
        return ExitResult.from_returncode(returncode)

    def terminate(self) -> bool:
        """Ask the process group to stop (SIGTERM / CTRL_BREAK_EVENT).

        Returns:
            True if a signal was delivered, False if the process had
            already exited
        """
        if self.has_exited:
            return False
        try:
            if IS_WINDOWS:
                self._windows_terminate()
            else:
                self._posix_signal(signal.SIGTERM)
        except ProcessLookupError:
            logger.debug(f"Subprocess already exited pid={self.pid}")
            return False
        return True

    def kill(self) -> bool:
        """Force kill the process group (SIGKILL / TerminateProcess)."""
        if self.has_exited:
            return False
        try:
            if IS_WINDOWS:
                self._process.kill()
                logger.debug(f"Called kill() on pid={self.pid}")
            else:
                self._posix_signal(signal.SIGKILL)
        except ProcessLookupError:
            logger.debug(f"Subprocess already exited pid={self.pid}")
            return False
        return True

    def _posix_signal(self, sig: signal.Signals) -> None:
        """Send ``sig`` to the process group on POSIX systems."""
        try:
            # pgid equals pid because of start_new_session
            pgid = os.getpgid(self.pid)
            os.killpg(pgid, sig)
            logger.debug(f"Sent {sig.name} to process group pgid={pgid}")
        except ProcessLookupError:
            raise
        except OSError as e:
            logger.debug(f"killpg failed, falling back to single process: {e}")
            self._process.send_signal(sig)

    def _windows_terminate(self) -> None:
        """Send CTRL_BREAK_EVENT on Windows."""
        try:
            # works because of CREATE_NEW_PROCESS_GROUP
            os.kill(self.pid, signal.CTRL_BREAK_EVENT)
            logger.debug(f"Sent CTRL_BREAK_EVENT to pid={self.pid}")
        except OSError as e:
            logger.debug(f"CTRL_BREAK_EVENT failed, falling back: {e}")
            self._process.terminate()
