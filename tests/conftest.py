"""Pytest configuration and fixtures."""

from __future__ import annotations

import shlex
import subprocess
import sys
from pathlib import Path

import pytest

# Project root
PROJECT_ROOT = Path(__file__).parent.parent

# Add src to the Python path (development checkout)
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

FIXTURES_DIR = Path(__file__).parent / "fixtures"
FAKE_TASK = FIXTURES_DIR / "fake_task.py"

IS_WINDOWS = sys.platform == "win32"


def quote_argv(argv: list[str]) -> str:
    """Join argv into a command line for the platform shell."""
    if IS_WINDOWS:
        return subprocess.list2cmdline(argv)
    return shlex.join(argv)


def fake_task_command(*args: str) -> str:
    """Shell command line running the fake task with ``args``."""
    return quote_argv([sys.executable, str(FAKE_TASK), *args])


class EventRecorder:
    """Presenter stand-in that records every event it is given."""

    def __init__(self) -> None:
        self.events: list = []

    def __call__(self, event) -> None:
        self.events.append(event)

    def for_task(self, index: int) -> list:
        return [e for e in self.events if e.task_index == index]

    def lines(self, index: int, stream: str | None = None) -> list[str]:
        return [
            e.text
            for e in self.for_task(index)
            if e.kind.value == "line" and (stream is None or e.stream.value == stream)
        ]

    def kinds(self, index: int) -> list[str]:
        return [e.kind.value for e in self.for_task(index)]


@pytest.fixture
def project_root() -> Path:
    return PROJECT_ROOT


@pytest.fixture
def fake_task() -> Path:
    """Path of the fake task script."""
    return FAKE_TASK


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def temp_workspace(tmp_path: Path) -> Path:
    """Temporary working directory for tasks."""
    workspace = tmp_path / "workspace"
    workspace.mkdir()
    return workspace
