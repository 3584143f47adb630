from __future__ import annotations

"""Relay newline-delimited JSON generation output as server-sent events."""

import codecs
import json
import logging
from collections.abc import AsyncIterable, AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from typing import List, Optional, Union

logger = logging.getLogger(__name__)

SSE_DONE = b"data: [DONE]\n\n"


@dataclass(frozen=True, slots=True)
class Token:
    text: str


@dataclass(frozen=True, slots=True)
class Done:
    pass


RelayEvent = Union[Token, Done]


class StreamRelayParser:
    """Incremental NDJSON parser.

    Bytes are fed in arbitrary chunks. A line is only parsed once its
    terminating newline has arrived, so objects split across chunks are
    recombined. Malformed lines are skipped. After the first ``done`` marker
    the parser keeps accepting input but emits nothing further.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending = ""
        self._finished = False
        self.skipped_lines = 0

    @property
    def finished(self) -> bool:
        return self._finished

    def feed(self, chunk: bytes) -> List[RelayEvent]:
        if not chunk:
            return []
        self._pending += self._decoder.decode(chunk)
        if "\n" not in self._pending:
            return []
        *lines, self._pending = self._pending.split("\n")
        events: List[RelayEvent] = []
        for line in lines:
            events.extend(self._parse_line(line))
        return events

    def close(self) -> List[RelayEvent]:
        """Flush the final line when the body ends without a trailing newline."""
        tail = self._pending + self._decoder.decode(b"", final=True)
        self._pending = ""
        return self._parse_line(tail)

    def _parse_line(self, line: str) -> List[RelayEvent]:
        line = line.strip()
        if not line or self._finished:
            return []
        try:
            obj = json.loads(line)
        except ValueError:
            self.skipped_lines += 1
            logger.warning("relay.line.malformed", extra={"line": line[:120]})
            return []
        if not isinstance(obj, dict):
            self.skipped_lines += 1
            logger.warning("relay.line.unexpected", extra={"line": line[:120]})
            return []

        events: List[RelayEvent] = []
        message = obj.get("message")
        content = message.get("content") if isinstance(message, dict) else None
        if isinstance(content, str) and content:
            events.append(Token(content))
        if obj.get("done") is True:
            self._finished = True
            events.append(Done())
        return events


async def relay_events(
    chunks: AsyncIterable[bytes],
    *,
    should_stop: Optional[Callable[[], Awaitable[bool]]] = None,
) -> AsyncIterator[RelayEvent]:
    """Yield events as soon as each upstream chunk completes a line.

    The upstream body is drained to the end even after ``Done``. When
    ``should_stop`` reports true (for example, the caller disconnected) the
    relay stops reading and emitting; closing the upstream response is left
    to the owner of ``chunks``.
    """
    parser = StreamRelayParser()
    async for chunk in chunks:
        for event in parser.feed(chunk):
            yield event
        if should_stop is not None and await should_stop():
            logger.info("relay.stopped", extra={"finished": parser.finished})
            return
    for event in parser.close():
        yield event
    if not parser.finished:
        logger.warning("relay.stream.truncated", extra={"skipped_lines": parser.skipped_lines})


def format_sse(event: RelayEvent) -> bytes:
    """Render an event in the caller-facing ``text/event-stream`` format."""
    if isinstance(event, Done):
        return SSE_DONE
    payload = json.dumps({"content": event.text}, ensure_ascii=False)
    return f"data: {payload}\n\n".encode("utf-8")


__all__ = ["Token", "Done", "RelayEvent", "StreamRelayParser", "relay_events", "format_sse", "SSE_DONE"]
