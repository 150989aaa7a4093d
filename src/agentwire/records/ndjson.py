"""Line-buffered NDJSON decoder for agent output."""

from __future__ import annotations

import codecs
import json
import logging

from agentwire.records.models import Record, parse_record

logger = logging.getLogger(__name__)

#: Max characters of a rejected line to include in log output.
_PREVIEW_LEN = 200


class LineBuffer:
    """Accumulates output chunks and decodes each complete line as a record.

    Chunks may split lines (and multi-byte UTF-8 sequences) anywhere; only
    the trailing fragment after the last newline is held back. Lines that
    are blank, not JSON, or not a record are dropped.
    """

    def __init__(self, verbose: bool = False) -> None:
        self._pending = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._log_level = logging.WARNING if verbose else logging.DEBUG
        self.dropped = 0

    @property
    def pending(self) -> str:
        """Incomplete trailing fragment awaiting its newline."""
        return self._pending

    def feed(self, chunk: str | bytes) -> list[Record]:
        """Append *chunk* and return the records completed by it."""
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)
        if not chunk:
            return []
        lines = (self._pending + chunk).split("\n")
        self._pending = lines.pop()
        return [r for r in (self._decode_line(line) for line in lines) if r is not None]

    def flush(self) -> list[Record]:
        """Decode whatever remains once the source has ended."""
        tail = self._pending + self._decoder.decode(b"", final=True)
        self._pending = ""
        record = self._decode_line(tail)
        return [record] if record is not None else []

    def _decode_line(self, line: str) -> Record | None:
        stripped = line.strip()
        if not stripped:
            return None
        try:
            data = json.loads(stripped)
        except json.JSONDecodeError:
            self.dropped += 1
            logger.log(self._log_level, "Skipping malformed JSON line: %s", stripped[:_PREVIEW_LEN])
            return None
        record = parse_record(data)
        if record is None:
            self.dropped += 1
            logger.log(self._log_level, "Skipping non-record JSON line: %s", stripped[:_PREVIEW_LEN])
        return record
