"""Incremental Server-Sent Events parser for LLM byte streams.

Bytes arrive in whatever pieces the network hands us: a chunk boundary can
fall inside a UTF-8 sequence, inside a ``data:`` line, or between the ``\\r``
and ``\\n`` of a line break. The parser buffers across chunks and dispatches an
event only when its terminating blank line has been seen, so feeding a stream
in any split produces the same events as feeding it whole.
"""

import codecs
import re
from dataclasses import dataclass
from typing import List, Optional, Union

from moodlog.utils.logging import get_logger


logger = get_logger(__name__)

DONE_SENTINEL = "[DONE]"

_LINE_BREAK = re.compile(r"\r\n|\r|\n")


@dataclass(frozen=True)
class SSEEvent:
    """One dispatched SSE event."""

    data: str
    event: Optional[str] = None
    id: Optional[str] = None


class SSEParser:
    """
    Push-style SSE decoder.

    Feed raw chunks with ``feed`` and collect the events each call completes.
    The ``[DONE]`` sentinel is never returned as an event: it sets ``done``,
    after which all further input is ignored.

    Example:
        >>> parser = SSEParser()
        >>> parser.feed(b'data: {"a"')
        []
        >>> parser.feed(b': 1}\\n\\ndata: [DONE]\\n\\n')
        [SSEEvent(data='{"a": 1}', event=None, id=None)]
        >>> parser.done
        True
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._data_lines: List[str] = []
        self._event_type: Optional[str] = None
        self._last_event_id: Optional[str] = None
        self._started = False
        self.done = False
        self.event_count = 0

    def feed(self, chunk: Union[bytes, str]) -> List[SSEEvent]:
        """
        Consume one chunk of the stream.

        Args:
            chunk: Raw bytes from the network (or already decoded text)

        Returns:
            Events completed by this chunk, in stream order
        """
        if self.done:
            return []

        if isinstance(chunk, bytes):
            text = self._decoder.decode(chunk)
        else:
            text = chunk

        return self._consume(text)

    def close(self) -> List[SSEEvent]:
        """
        Signal end of input and flush anything still buffered.

        A final line without a line break, and a final event without its
        blank line, are dispatched rather than dropped.

        Returns:
            Events completed by flushing
        """
        if self.done:
            return []

        events = self._consume(self._decoder.decode(b"", final=True))
        if self.done:
            return events

        if self._buffer:
            line = self._buffer.rstrip("\r")
            self._buffer = ""
            self._process_line(line, events)

        if not self.done and self._data_lines:
            logger.debug("sse_flush_unterminated_event", lines=len(self._data_lines))
            self._dispatch(events)

        return events

    def _consume(self, text: str) -> List[SSEEvent]:
        events: List[SSEEvent] = []
        if not text:
            return events

        if not self._started:
            self._started = True
            if text.startswith("\ufeff"):
                text = text[1:]

        self._buffer += text

        while not self.done:
            match = _LINE_BREAK.search(self._buffer)
            if match is None:
                break

            # A lone \r at the end of the buffer may be the first half of \r\n
            if match.group() == "\r" and match.end() == len(self._buffer):
                break

            line = self._buffer[:match.start()]
            self._buffer = self._buffer[match.end():]
            self._process_line(line, events)

        if self.done:
            self._buffer = ""

        return events

    def _process_line(self, line: str, events: List[SSEEvent]) -> None:
        if line == "":
            self._dispatch(events)
            return

        if line.startswith(":"):
            return

        field, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]

        if field == "data":
            # "data: [DONE]" followed by a single newline still ends the stream
            if value == DONE_SENTINEL and not self._data_lines:
                self._mark_done()
                return
            self._data_lines.append(value)
        elif field == "event":
            self._event_type = value
        elif field == "id":
            if "\0" not in value:
                self._last_event_id = value
        elif field == "retry":
            pass
        else:
            logger.debug("sse_unknown_field", field=field)

    def _dispatch(self, events: List[SSEEvent]) -> None:
        if not self._data_lines:
            self._event_type = None
            return

        data = "\n".join(self._data_lines)
        event_type = self._event_type
        self._data_lines = []
        self._event_type = None

        if data == DONE_SENTINEL:
            self._mark_done()
            return

        self.event_count += 1
        events.append(SSEEvent(data=data, event=event_type, id=self._last_event_id))

    def _mark_done(self) -> None:
        self.done = True
        self._data_lines = []
        self._event_type = None
        logger.debug("sse_done_sentinel", events=self.event_count)
