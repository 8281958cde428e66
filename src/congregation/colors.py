"""Task color palette.

Colors are a pure function of the task index so they are reproducible
regardless of process timing.
"""

from __future__ import annotations

import re

__all__ = [
    "PALETTE",
    "STATUS_COLORS",
    "color_for_index",
    "parse_hex_color",
]

# Dark-theme friendly colors, cycled by task index
PALETTE: tuple[str, ...] = (
    "#4FC1FF",  # sky blue
    "#89D185",  # green
    "#CE9178",  # orange
    "#C586C0",  # purple
    "#DCDCAA",  # yellow
    "#4EC9B0",  # teal
    "#569CD6",  # blue
    "#D16969",  # brick red
)

STATUS_COLORS = {
    "running": "#6A6A6A",
    "success": "#89D185",
    "error": "#F44747",
    "killed": "#DCDCAA",
    "separator": "#5A5A5A",
}

_HEX_RE = re.compile(r"^[0-9A-Fa-f]{6}$")


def color_for_index(index: int) -> str:
    """Return the palette color for a task index."""
    if index < 0:
        raise ValueError(f"task index must be non-negative, got {index}")
    return PALETTE[index % len(PALETTE)]


def parse_hex_color(value: str) -> str | None:
    """Parse an ``RRGGBB`` string into ``#RRGGBB``.

    Returns None if the value is not exactly six hex digits (a leading ``#``
    is not accepted).
    """
    if not _HEX_RE.match(value):
        return None
    return f"#{value.upper()}"
