"""Incremental byte-chunk to line re-assembly.

One LineSplitter is used per stream per task. Chunk boundaries are
transparent: feeding a byte sequence in any split and then calling flush()
yields the same lines as splitting the whole sequence at once.
"""

from __future__ import annotations

import codecs

__all__ = ["LineSplitter"]


class LineSplitter:
    """Re-assemble raw chunks into complete lines.

    Lines are split on ``\\n``; a ``\\r`` directly before the ``\\n`` is
    dropped. Bytes are decoded incrementally, so a multi-byte character
    split across two chunks decodes correctly.

    Example:
        splitter = LineSplitter()
        splitter.feed(b"hel")        # []
        splitter.feed(b"lo\\nwor")    # ["hello"]
        splitter.flush()             # "wor"
    """

    def __init__(self, encoding: str = "utf-8", errors: str = "replace") -> None:
        self._decoder = codecs.getincrementaldecoder(encoding)(errors=errors)
        # partial line kept as fragments, joined once its newline arrives
        self._fragments: list[str] = []

    @property
    def pending(self) -> str:
        """Decoded text of the current partial line."""
        return "".join(self._fragments)

    def feed(self, chunk: bytes) -> list[str]:
        """Consume a chunk and return the lines it completed."""
        if not chunk:
            return []

        text = self._decoder.decode(chunk)
        if "\n" not in text:
            if text:
                self._fragments.append(text)
            return []

        first, *rest = text.split("\n")
        self._fragments.append(first)
        lines = ["".join(self._fragments), *rest[:-1]]
        self._fragments = [rest[-1]] if rest[-1] else []
        return [line[:-1] if line.endswith("\r") else line for line in lines]

    def flush(self) -> str | None:
        """Return the partial line left over at end of stream, if any."""
        self._fragments.append(self._decoder.decode(b"", final=True))
        tail = "".join(self._fragments)
        self._fragments = []
        self._decoder.reset()
        return tail or None
