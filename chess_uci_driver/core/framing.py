"""
Line framing for engine output.

An engine's stdout arrives in arbitrary chunks. The framer turns those chunks
into complete lines, carrying any incomplete trailing fragment over to the
next chunk, so the resulting line sequence never depends on where the chunk
boundaries fell.
"""

from __future__ import annotations

import codecs
import re
from typing import List, Optional, Tuple, Union

_EOL = re.compile(r"\r\n|\r|\n")


def split_lines(data: str, pending: str = "") -> Tuple[List[str], str]:
    """
    Split buffered text into complete lines and an incomplete remainder.

    A trailing carriage return is kept in the remainder because the line feed
    that may complete a CRLF pair has not arrived yet.

    Args:
        data: Newly received text
        pending: Incomplete fragment left over from the previous call

    Returns:
        Tuple of (complete lines, new incomplete fragment)

    Example:
        >>> split_lines("abc\\ndef\\ngh")
        (['abc', 'def'], 'gh')
    """
    text = pending + data
    held = ""
    if text.endswith("\r"):
        text, held = text[:-1], "\r"
    parts = _EOL.split(text)
    remainder = parts.pop()
    return parts, remainder + held


class LineFramer:
    """Incremental line splitter accepting text or UTF-8 bytes."""

    def __init__(self, encoding: str = "utf-8"):
        self._pending = ""
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")

    @property
    def pending(self) -> str:
        """The incomplete trailing fragment currently buffered."""
        return self._pending

    def feed(self, chunk: Union[str, bytes]) -> List[str]:
        """Add a chunk and return the lines it completed, in order."""
        if isinstance(chunk, (bytes, bytearray)):
            chunk = self._decoder.decode(bytes(chunk))
        lines, self._pending = split_lines(chunk, self._pending)
        return lines

    def flush(self) -> Optional[str]:
        """Return the unterminated final line at end of stream, if any."""
        tail = self._pending + self._decoder.decode(b"", final=True)
        self._pending = ""
        tail = tail.rstrip("\r")
        return tail or None
