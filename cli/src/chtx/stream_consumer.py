"""Client side of the extraction event stream.

An ``ExtractionSession`` owns at most one running extraction. Events read
from the response body are folded into an ``ExtractionProgress`` that a UI
can render at any time.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum

import httpx

from backend.app.models.extraction_contracts import (
    DoneEvent,
    ExtractionEvent,
    ExtractionParams,
    FailureEvent,
    FetchPolicy,
    ProgressEvent,
    TotalEvent,
    TranscriptReadyEvent,
    VideoResult,
)
from backend.app.services.event_stream import NdjsonEventDecoder
from .api_client import PROCESS_CHANNEL_PATH, ApiRequestError

LOGGER = logging.getLogger("chtx.stream")

STREAM_ENDED_EARLY_MESSAGE = "The stream ended before the extraction completed."


class ExtractionOutcome(StrEnum):
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class ExtractionProgress:
    current: int = 0
    total: int = 0
    message: str = ""
    results: list[VideoResult] = field(default_factory=list)
    error: str | None = None
    outcome: ExtractionOutcome | None = None

    @property
    def finished(self) -> bool:
        return self.outcome is not None

    def apply(self, event: ExtractionEvent) -> None:
        if self.finished:
            return
        if isinstance(event, TotalEvent):
            self.total = max(self.total, event.count)
        elif isinstance(event, ProgressEvent):
            self.current = max(self.current, event.index)
            self.total = max(self.total, event.total)
            self.message = event.message
        elif isinstance(event, TranscriptReadyEvent):
            self.results.append(event.data)
        elif isinstance(event, FailureEvent):
            self.fail(event.message)
        elif isinstance(event, DoneEvent):
            self.message = event.message
            self.outcome = ExtractionOutcome.COMPLETED

    def fail(self, message: str) -> None:
        if self.finished:
            return
        self.error = message
        self.outcome = ExtractionOutcome.FAILED

    def mark_cancelled(self) -> None:
        if self.finished:
            return
        self.outcome = ExtractionOutcome.CANCELLED


ProgressCallback = Callable[[ExtractionProgress], None]
ResultCallback = Callable[[VideoResult], None]


class ExtractionSession:
    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        on_progress: ProgressCallback | None = None,
        on_result: ResultCallback | None = None,
    ) -> None:
        self._client = client
        self._on_progress = on_progress
        self._on_result = on_result
        self._task: asyncio.Task[ExtractionProgress] | None = None
        self._progress: ExtractionProgress | None = None

    @property
    def progress(self) -> ExtractionProgress | None:
        return self._progress

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(
        self,
        params: ExtractionParams,
        *,
        policy: FetchPolicy | None = None,
    ) -> ExtractionProgress:
        """Start a new extraction, cancelling the one in flight (if any)."""
        await self.cancel()
        progress = ExtractionProgress()
        self._progress = progress
        self._task = asyncio.create_task(self._consume(params, policy, progress))
        return progress

    async def cancel(self) -> None:
        task = self._task
        if task is None or task.done():
            return
        if self._progress is not None:
            self._progress.mark_cancelled()
        task.cancel()
        await asyncio.wait([task])

    async def wait(self) -> ExtractionProgress:
        """Wait for the current extraction; re-raises ``ApiRequestError`` for rejected requests."""
        task = self._task
        if task is None or self._progress is None:
            raise RuntimeError("No extraction has been started.")
        await asyncio.wait([task])
        if not task.cancelled():
            error = task.exception()
            if error is not None:
                raise error
        return self._progress

    async def _consume(
        self,
        params: ExtractionParams,
        policy: FetchPolicy | None,
        progress: ExtractionProgress,
    ) -> ExtractionProgress:
        query = {
            "channelUrl": params.channel_reference,
            "language": params.language,
            "dateFilter": params.date_filter.value,
        }
        if policy is not None:
            query["policy"] = policy.value

        decoder = NdjsonEventDecoder()
        try:
            async with self._client.stream("GET", PROCESS_CHANNEL_PATH, params=query) as response:
                if response.is_error:
                    await response.aread()
                    error = ApiRequestError.from_response(response)
                    progress.fail(error.error)
                    raise error
                async for chunk in response.aiter_bytes():
                    for event in decoder.feed(chunk):
                        self._apply(progress, event)
                    if progress.finished:
                        return progress
                for event in decoder.flush():
                    self._apply(progress, event)
        except httpx.HTTPError as exc:
            LOGGER.warning("extraction stream failed error=%s", exc)
            progress.fail(f"Connection to the server failed: {exc}")
            return progress

        if not progress.finished:
            progress.fail(STREAM_ENDED_EARLY_MESSAGE)
        return progress

    def _apply(self, progress: ExtractionProgress, event: ExtractionEvent) -> None:
        if progress.finished:
            return
        progress.apply(event)
        if isinstance(event, TranscriptReadyEvent):
            if self._on_result is not None:
                self._on_result(event.data)
        elif self._on_progress is not None:
            self._on_progress(progress)
