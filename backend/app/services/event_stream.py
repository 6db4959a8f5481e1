from __future__ import annotations

import asyncio
import codecs
import logging
from collections.abc import AsyncIterator
from typing import Protocol

from pydantic import ValidationError

from backend.app.models.extraction_contracts import (
    EXTRACTION_EVENT_ADAPTER,
    ExtractionEvent,
)

LOGGER = logging.getLogger("channel_transcripts.event_stream")

NDJSON_MEDIA_TYPE = "application/octet-stream"
_MAX_LOGGED_LINE_LENGTH = 200


def encode_event(event: ExtractionEvent) -> bytes:
    return EXTRACTION_EVENT_ADAPTER.dump_json(event) + b"\n"


def decode_event_line(line: str | bytes) -> ExtractionEvent:
    return EXTRACTION_EVENT_ADAPTER.validate_json(line)


class NdjsonEventDecoder:
    """Incremental decoder for a newline-delimited JSON event stream.

    Chunks may end in the middle of a line (or of a UTF-8 sequence); the
    remainder is buffered until the next ``feed``. Lines that are not valid
    events are logged and skipped.
    """

    def __init__(self) -> None:
        self._text_decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self.skipped_lines = 0

    def feed(self, chunk: bytes) -> list[ExtractionEvent]:
        self._buffer += self._text_decoder.decode(chunk)
        *complete_lines, self._buffer = self._buffer.split("\n")
        return self._decode_lines(complete_lines)

    def flush(self) -> list[ExtractionEvent]:
        self._buffer += self._text_decoder.decode(b"", final=True)
        remainder, self._buffer = self._buffer, ""
        return self._decode_lines([remainder])

    def _decode_lines(self, lines: list[str]) -> list[ExtractionEvent]:
        events: list[ExtractionEvent] = []
        for raw_line in lines:
            line = raw_line.strip()
            if not line:
                continue
            try:
                events.append(decode_event_line(line))
            except ValidationError as exc:
                self.skipped_lines += 1
                LOGGER.warning(
                    "skipping malformed event line error_count=%s line=%s",
                    exc.error_count(),
                    line[:_MAX_LOGGED_LINE_LENGTH],
                )
        return events


class EventSink(Protocol):
    @property
    def is_open(self) -> bool:
        ...

    async def send(self, event: ExtractionEvent) -> None:
        ...


class QueueEventSink:
    """Hands events from the extraction task to the response body iterator."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[ExtractionEvent | None] = asyncio.Queue()
        self._open = True

    @property
    def is_open(self) -> bool:
        return self._open

    async def send(self, event: ExtractionEvent) -> None:
        if not self._open:
            return
        await self._queue.put(event)

    def finish(self) -> None:
        """Signal the reader that no further events will arrive."""
        self._queue.put_nowait(None)

    def close(self) -> None:
        self._open = False

    async def __aiter__(self) -> AsyncIterator[ExtractionEvent]:
        while self._open:
            event = await self._queue.get()
            if event is None:
                return
            yield event
