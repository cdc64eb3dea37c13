"""Split a chunked byte stream into text lines."""

from __future__ import annotations

import codecs
import re
from typing import List, Optional

_LINE_BREAK = re.compile(r"\r?\n")


class LineFramer:
    """Carries the unterminated tail of the stream between ``feed`` calls.

    Lines end at ``\\n`` or ``\\r\\n``. Empty lines are dropped. Bytes are
    decoded incrementally so a UTF-8 sequence split across chunks survives.
    """

    def __init__(self, encoding: str = "utf-8"):
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._pending = ""

    def feed(self, data: bytes) -> List[str]:
        buffer = self._pending + self._decoder.decode(data)
        parts = _LINE_BREAK.split(buffer)
        self._pending = parts.pop()
        return [line for line in parts if line]

    def flush(self) -> Optional[str]:
        tail = self._pending + self._decoder.decode(b"", final=True)
        self._pending = ""
        return tail or None

    @property
    def pending(self) -> str:
        return self._pending
