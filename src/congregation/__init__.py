"""congregation - run several shell commands at once with attributed output.

Environment variables:
    CONG_MODE: interleaved | grouped (default interleaved)
    CONG_GRACE_PERIOD: seconds between SIGTERM and SIGKILL (default 5.0)
    CONG_LOG_DEBUG: write a debug log to a temp file (default false)

Usage:
    congregation run "npm run dev" -d ./app run "npm run start" -d ./api
"""

__version__ = "0.2.0"

from .app import main

__all__ = ["__version__", "main"]
