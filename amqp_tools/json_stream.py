from __future__ import annotations

"""Incremental JSON decoding of standard input.

Two input layouts are accepted and told apart by the first non-blank
character:

* ``[`` -- batch mode. The whole input is one JSON document, parsed once
  the input ends.
* ``{`` -- stream mode. One JSON value per line, each parsed as soon as its
  line terminator (``\\n``, ``\\r\\n`` or ``\\r``) arrives, so publishing
  can start before the input ends.

Arrays produced by either mode are expanded into their elements.
"""

import re
from typing import Any, Iterator, List, Optional

from amqp_tools.content_codec import load_json
from amqp_tools.errors import InputError, UsageError

BATCH_MODE = "["
STREAM_MODE = "{"

_LINE_BREAK = re.compile(r"\r\n|\n|\r")


def expand(value: Any) -> Iterator[Any]:
    """Yield *value*, or its elements (recursively) when it is a list."""
    if isinstance(value, list):
        for item in value:
            yield from expand(item)
    else:
        yield value


class JsonStreamDecoder:
    """Turns text chunks with arbitrary boundaries into JSON values."""

    def __init__(self) -> None:
        self.mode: Optional[str] = None
        # Text not parsed yet: the whole document in batch mode, the
        # unterminated line in stream mode
        self._pending: List[str] = []
        self._line_number = 0
        self._skip_line_feed = False

    def feed(self, chunk: str) -> List[Any]:
        """Consume *chunk* and return the values it completed, in order."""
        if self.mode is None:
            self._pending.append(chunk)
            self._detect_mode(chunk)
            if self.mode is None:
                return []
            chunk = "".join(self._pending)
            self._pending = []

        if self.mode == BATCH_MODE:
            self._pending.append(chunk)
            return []
        return self._feed_lines(chunk)

    def close(self) -> List[Any]:
        """Signal end of input and return the values still pending."""
        text = "".join(self._pending)
        self._pending = []

        if self.mode == BATCH_MODE:
            try:
                document = load_json(text)
            except ValueError as e:
                raise InputError(f"Invalid JSON input: {e}") from e
            return list(expand(document))

        if self.mode == STREAM_MODE:
            return self._parse_line(text)

        return []

    def _detect_mode(self, chunk: str) -> None:
        stripped = chunk.lstrip()
        if not stripped:
            return
        if stripped[0] not in (BATCH_MODE, STREAM_MODE):
            raise UsageError("Incorrect usage, try using --help")
        self.mode = stripped[0]

    def _feed_lines(self, chunk: str) -> List[Any]:
        # A \r\n split between two chunks is a single terminator
        if self._skip_line_feed and chunk.startswith("\n"):
            chunk = chunk[1:]
        self._skip_line_feed = chunk.endswith("\r")

        lines = _LINE_BREAK.split(chunk)
        if len(lines) == 1:
            self._pending.append(chunk)
            return []

        lines[0] = "".join(self._pending) + lines[0]
        self._pending = [lines.pop()]
        values = []
        for line in lines:
            values.extend(self._parse_line(line))
        return values

    def _parse_line(self, line: str) -> List[Any]:
        self._line_number += 1
        if not line.strip():
            return []
        try:
            value = load_json(line)
        except ValueError as e:
            raise InputError(f"Invalid JSON on input line {self._line_number}: {e}") from e
        return list(expand(value))
