"""Environment variable configuration.

Environment variables:
    CONG_MODE: Output mode
        - interleaved = forward lines as soon as they arrive (default)
        - grouped = print each task's output as one block when it exits

    CONG_GRACE_PERIOD: Seconds a cancelled task gets after SIGTERM
        - default 5.0, clamped to 0.1-60

    CONG_KILL_TIMEOUT: Seconds to wait after SIGKILL before giving up
        - default 1.0, clamped to 0.1-30

    CONG_QUEUE_SIZE: Capacity of the event channel
        - default 1024, clamped to 16-65536

    CONG_NAME_LENGTH: Length of task names derived from the command
        - default 32, clamped to 8-200

    CONG_LIVE: Inline live view of every task's latest lines
        - true/1/yes = on
        - false/0/no = off (default)

    CONG_VERBOSE: Log progress to stderr
        - true/1/yes = on
        - false/0/no = off (default, warnings only)

    CONG_LOG_DEBUG: Debug log mode
        - true/1/yes = on (debug log written to a temp file)
        - false/0/no = off (default)

Command line flags override these values.
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from .models import DEFAULT_NAME_LENGTH, OutputMode
from .supervisor import DEFAULT_GRACE_PERIOD, DEFAULT_KILL_TIMEOUT, DEFAULT_QUEUE_SIZE

__all__ = ["Config", "load_config", "get_config", "reload_config"]


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """Parse a boolean environment variable."""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_float(value: str | None, default: float, low: float, high: float) -> float:
    """Parse a float, clamped to [low, high]. Invalid values give the default."""
    if not value:
        return default
    try:
        return max(low, min(float(value), high))
    except ValueError:
        return default


def _parse_int(value: str | None, default: int, low: int, high: int) -> int:
    """Parse an int, clamped to [low, high]. Invalid values give the default."""
    if not value:
        return default
    try:
        return max(low, min(int(value), high))
    except ValueError:
        return default


def _parse_mode(value: str | None) -> OutputMode:
    if not value:
        return OutputMode.INTERLEAVED
    return OutputMode.from_string(value)


@dataclass
class Config:
    """congregation configuration.

    Attributes:
        mode: Output mode
        grace_period: Seconds between SIGTERM and SIGKILL on cancellation
        kill_timeout: Seconds to wait after SIGKILL
        queue_size: Event channel capacity
        name_length: Maximum length of derived task names
        live: Redraw task blocks in place while they run
        verbose: INFO logging to stderr
        log_debug: DEBUG logging to a temp file
        log_file: Log file path (set automatically when log_debug=True)
    """

    mode: OutputMode = OutputMode.INTERLEAVED
    grace_period: float = DEFAULT_GRACE_PERIOD
    kill_timeout: float = DEFAULT_KILL_TIMEOUT
    queue_size: int = DEFAULT_QUEUE_SIZE
    name_length: int = DEFAULT_NAME_LENGTH
    live: bool = False
    verbose: bool = False
    log_debug: bool = False
    log_file: str | None = None

    def __repr__(self) -> str:
        return (
            f"Config(mode={self.mode.value}, "
            f"grace_period={self.grace_period}, "
            f"kill_timeout={self.kill_timeout}, "
            f"queue_size={self.queue_size}, "
            f"name_length={self.name_length}, "
            f"live={self.live}, "
            f"verbose={self.verbose}, "
            f"log_debug={self.log_debug}, "
            f"log_file={self.log_file})"
        )


def generate_log_file_path() -> str:
    """Return a timestamped log file path under the system temp directory."""
    log_dir = Path(tempfile.gettempdir()) / "congregation"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"congregation_debug_{timestamp}.log"

    return str(log_file.resolve())


def load_config() -> Config:
    """Load configuration from environment variables."""
    log_debug = _parse_bool(os.environ.get("CONG_LOG_DEBUG"), default=False)
    log_file = generate_log_file_path() if log_debug else None

    return Config(
        mode=_parse_mode(os.environ.get("CONG_MODE")),
        grace_period=_parse_float(
            os.environ.get("CONG_GRACE_PERIOD"), DEFAULT_GRACE_PERIOD, 0.1, 60.0
        ),
        kill_timeout=_parse_float(
            os.environ.get("CONG_KILL_TIMEOUT"), DEFAULT_KILL_TIMEOUT, 0.1, 30.0
        ),
        queue_size=_parse_int(
            os.environ.get("CONG_QUEUE_SIZE"), DEFAULT_QUEUE_SIZE, 16, 65536
        ),
        name_length=_parse_int(
            os.environ.get("CONG_NAME_LENGTH"), DEFAULT_NAME_LENGTH, 8, 200
        ),
        live=_parse_bool(os.environ.get("CONG_LIVE"), default=False),
        verbose=_parse_bool(os.environ.get("CONG_VERBOSE"), default=False),
        log_debug=log_debug,
        log_file=log_file,
    )


# Global config instance (lazy)
_config: Config | None = None


def get_config() -> Config:
    """Return the global config instance."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """Reload configuration (for tests)."""
    global _config
    _config = load_config()
    return _config
