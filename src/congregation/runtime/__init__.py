"""Runtime module for child processes and their output streams.

This module provides isolated process execution with reliable termination
and chunk-to-line re-assembly of child output.
"""

from __future__ import annotations

from .line_splitter import LineSplitter
from .process_handle import ExitResult, ProcessHandle

__all__ = [
    "ExitResult",
    "LineSplitter",
    "ProcessHandle",
]
