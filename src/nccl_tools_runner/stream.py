"""
Event stream decoding for the `run-stream` endpoint.

Provides:
- LineReassembler: turns arbitrarily split text chunks into complete lines.
- EventFrameDecoder: turns lines into (event, payload) frames.
- iter_lines / decode_events: iterator helpers over both.

Wire format (subset of text/event-stream):
    event: output
    data:#  size  count ...

`event:` sets the current event type (trimmed) until the next `event:` line.
Every `data:` line is dispatched on its own as one frame; the payload is the
text after the marker, verbatim. Consecutive data lines are NOT joined.
Any other line is ignored.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from typing import Final

EVENT_MARKER: Final[str] = "event:"
DATA_MARKER: Final[str] = "data:"

EVENT_COMMAND: Final[str] = "command"
EVENT_OUTPUT: Final[str] = "output"
EVENT_DONE: Final[str] = "done"
EVENT_ERROR: Final[str] = "error"

KNOWN_EVENTS: Final[frozenset[str]] = frozenset(
    {EVENT_COMMAND, EVENT_OUTPUT, EVENT_DONE, EVENT_ERROR}
)


@dataclass(frozen=True, slots=True)
class StreamEvent:
    """One decoded frame: the current event type and one data line's payload."""

    kind: str
    payload: str

    @property
    def known(self) -> bool:
        return self.kind in KNOWN_EVENTS


class LineReassembler:
    """
    Carry buffer that reframes text chunks into lines.

    Splits on both `\\n` and `\\r` (so CRLF streams work regardless of where the
    chunk boundary falls) and drops empty lines. The trailing fragment without
    a terminator is kept for the next `feed`.
    """

    __slots__ = ("_buf",)

    def __init__(self) -> None:
        self._buf = ""

    @property
    def pending(self) -> str:
        return self._buf

    def feed(self, chunk: str) -> list[str]:
        self._buf += chunk
        lines: list[str] = []
        while True:
            idx_n = self._buf.find("\n")
            idx_r = self._buf.find("\r")
            idxs = [i for i in (idx_n, idx_r) if i != -1]
            if not idxs:
                break
            i = min(idxs)
            line = self._buf[:i]
            self._buf = self._buf[i + 1 :]
            if line:
                lines.append(line)
        return lines

    def close(self) -> str:
        """End of stream: drop and return any unterminated fragment."""
        dangling = self._buf
        self._buf = ""
        return dangling


class EventFrameDecoder:
    """Line-at-a-time frame decoder; its only state is the current event type."""

    __slots__ = ("_event",)

    def __init__(self) -> None:
        self._event = ""

    @property
    def current_event(self) -> str:
        return self._event

    def feed(self, line: str) -> StreamEvent | None:
        if line.startswith(EVENT_MARKER):
            self._event = line[len(EVENT_MARKER) :].strip()
            return None
        if line.startswith(DATA_MARKER):
            # Payloads are columnar text: do not trim.
            return StreamEvent(kind=self._event, payload=line[len(DATA_MARKER) :])
        return None


def iter_lines(chunks: Iterable[str]) -> Iterator[str]:
    """Reassemble lines from chunks; an unterminated tail is discarded."""
    reassembler = LineReassembler()
    for chunk in chunks:
        yield from reassembler.feed(chunk)
    reassembler.close()


def decode_events(lines: Iterable[str]) -> Iterator[StreamEvent]:
    decoder = EventFrameDecoder()
    for line in lines:
        ev = decoder.feed(line)
        if ev is not None:
            yield ev

