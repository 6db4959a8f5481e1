"""Channel extraction orchestrator.

Drives one extraction from a channel reference to a stream of events:

    RESOLVING -> LISTING -> FILTERING -> EMITTING -> DONE
        any non-terminal state      -> FAILED (single error event)
        any non-terminal state      -> ABORTED (requester cancelled, no terminal event)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from time import perf_counter

from backend.app.models.extraction_contracts import (
    DoneEvent,
    ExtractionEvent,
    ExtractionParams,
    FailureEvent,
    FetchPolicy,
    ProgressEvent,
    TotalEvent,
    TranscriptReadyEvent,
    VideoRef,
    VideoResult,
)
from backend.app.services.channel_resolver import resolve_channel_reference
from backend.app.services.date_filter import filter_by_date
from backend.app.services.errors import (
    ExtractionCancelled,
    ExtractionError,
    NoVideosMatchFilter,
)
from backend.app.services.event_stream import EventSink
from backend.app.services.transcript_fetcher import (
    TRANSCRIPT_FETCH_ERROR_PLACEHOLDER,
    TranscriptProvider,
    fetch_video_result,
)
from backend.app.services.video_lister import (
    MAX_LISTING_PAGES,
    ChannelListingProvider,
    list_channel_videos,
    to_video_refs,
)
from backend.app.telemetry import TelemetryClient

LOGGER = logging.getLogger("channel_transcripts.extraction")

DONE_MESSAGE = "Extraction complete!"
UNEXPECTED_FAILURE_MESSAGE = "Unexpected error while processing the channel."


class ExtractionState(StrEnum):
    RESOLVING = "resolving"
    LISTING = "listing"
    FILTERING = "filtering"
    EMITTING = "emitting"
    DONE = "done"
    FAILED = "failed"
    ABORTED = "aborted"


TERMINAL_STATES: frozenset[ExtractionState] = frozenset(
    {ExtractionState.DONE, ExtractionState.FAILED, ExtractionState.ABORTED}
)
_ALLOWED_TRANSITIONS: dict[ExtractionState, frozenset[ExtractionState]] = {
    ExtractionState.RESOLVING: frozenset(
        {ExtractionState.LISTING, ExtractionState.FAILED, ExtractionState.ABORTED}
    ),
    ExtractionState.LISTING: frozenset(
        {ExtractionState.FILTERING, ExtractionState.FAILED, ExtractionState.ABORTED}
    ),
    ExtractionState.FILTERING: frozenset(
        {ExtractionState.EMITTING, ExtractionState.FAILED, ExtractionState.ABORTED}
    ),
    ExtractionState.EMITTING: frozenset(
        {ExtractionState.DONE, ExtractionState.FAILED, ExtractionState.ABORTED}
    ),
    ExtractionState.DONE: frozenset(),
    ExtractionState.FAILED: frozenset(),
    ExtractionState.ABORTED: frozenset(),
}


class IllegalStateTransition(RuntimeError):
    pass


class CancellationToken:
    """Cooperative cancellation flag shared between a request and its extraction."""

    def __init__(self) -> None:
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True


@dataclass
class ExtractionReport:
    state: ExtractionState = ExtractionState.RESOLVING
    channel_id: str | None = None
    listed_count: int = 0
    total: int = 0
    emitted_results: int = 0
    failure_message: str | None = None
    history: list[ExtractionState] = field(default_factory=lambda: [ExtractionState.RESOLVING])


@dataclass(frozen=True)
class _SlotFailure:
    error: BaseException


class _ExtractionRun:
    """One extraction's state machine. Events are only written from the states that allow them."""

    def __init__(self, sink: EventSink, cancellation: CancellationToken) -> None:
        self._sink = sink
        self._cancellation = cancellation
        self.report = ExtractionReport()

    @property
    def state(self) -> ExtractionState:
        return self.report.state

    def transition(self, target: ExtractionState) -> None:
        current = self.report.state
        if target not in _ALLOWED_TRANSITIONS[current]:
            raise IllegalStateTransition(f"Cannot move extraction from {current} to {target}.")
        self.report.state = target
        self.report.history.append(target)

    def cancelled(self) -> bool:
        return self._cancellation.cancelled or not self._sink.is_open

    def ensure_not_cancelled(self) -> None:
        if self.cancelled():
            raise ExtractionCancelled()

    async def emit_total(self, count: int) -> None:
        self.transition(ExtractionState.EMITTING)
        self.report.total = count
        await self._write(TotalEvent(count=count))

    async def emit_progress(self, index: int, message: str) -> None:
        self._require_state(ExtractionState.EMITTING)
        await self._write(ProgressEvent(index=index, total=self.report.total, message=message))

    async def emit_result(self, result: VideoResult) -> None:
        self._require_state(ExtractionState.EMITTING)
        self.report.emitted_results += 1
        await self._write(TranscriptReadyEvent(data=result))

    async def finish(self) -> None:
        self.transition(ExtractionState.DONE)
        await self._write(DoneEvent(message=DONE_MESSAGE))

    async def fail(self, message: str) -> None:
        self.transition(ExtractionState.FAILED)
        self.report.failure_message = message
        if self.cancelled():
            return
        await self._write(FailureEvent(message=message))

    def abort(self) -> None:
        self.transition(ExtractionState.ABORTED)

    def _require_state(self, expected: ExtractionState) -> None:
        if self.report.state is not expected:
            raise IllegalStateTransition(
                f"Per-video events require state {expected}, not {self.report.state}."
            )

    async def _write(self, event: ExtractionEvent) -> None:
        if self._sink.is_open:
            await self._sink.send(event)


class ExtractionService:
    def __init__(
        self,
        *,
        listing_provider: ChannelListingProvider,
        transcript_provider: TranscriptProvider,
        fetch_policy: FetchPolicy = FetchPolicy.CONCURRENT,
        max_pages: int = MAX_LISTING_PAGES,
        transcript_timeout_seconds: float | None = 60.0,
        telemetry: TelemetryClient | None = None,
    ) -> None:
        self._listing_provider = listing_provider
        self._transcript_provider = transcript_provider
        self._fetch_policy = fetch_policy
        self._max_pages = max(1, max_pages)
        self._transcript_timeout_seconds = transcript_timeout_seconds
        self._telemetry = telemetry or TelemetryClient.disabled()

    @property
    def fetch_policy(self) -> FetchPolicy:
        return self._fetch_policy

    @property
    def max_pages(self) -> int:
        return self._max_pages

    @property
    def listing_provider(self) -> ChannelListingProvider:
        return self._listing_provider

    @property
    def transcript_provider(self) -> TranscriptProvider:
        return self._transcript_provider

    async def run(
        self,
        params: ExtractionParams,
        sink: EventSink,
        cancellation: CancellationToken | None = None,
        *,
        fetch_policy: FetchPolicy | None = None,
    ) -> ExtractionReport:
        policy = fetch_policy or self._fetch_policy
        run = _ExtractionRun(sink, cancellation or CancellationToken())
        started_at = perf_counter()
        self._telemetry.emit(
            "extraction.start",
            channel_reference=params.channel_reference,
            language=params.language,
            date_filter=params.date_filter.value,
            fetch_policy=policy.value,
        )
        try:
            await self._drive(run, params, policy)
        except ExtractionCancelled:
            run.abort()
            LOGGER.info(
                "extraction cancelled channel_id=%s emitted=%s total=%s",
                run.report.channel_id,
                run.report.emitted_results,
                run.report.total,
            )
        except Exception as exc:
            await self._handle_failure(run, exc)

        self._telemetry.emit(
            "extraction.finish",
            outcome=run.state.value,
            channel_id=run.report.channel_id,
            listed_count=run.report.listed_count,
            total=run.report.total,
            emitted_results=run.report.emitted_results,
            duration_ms=int((perf_counter() - started_at) * 1000),
        )
        return run.report

    async def _handle_failure(self, run: _ExtractionRun, exc: Exception) -> None:
        if run.state in TERMINAL_STATES:
            LOGGER.exception(
                "extraction errored after reaching state=%s channel_id=%s",
                run.state,
                run.report.channel_id,
            )
            return
        if run.cancelled():
            # The requester is gone; nothing may be written to the stream any more.
            run.abort()
            LOGGER.info(
                "extraction ended after cancellation channel_id=%s error_type=%s",
                run.report.channel_id,
                type(exc).__name__,
            )
            return

        if isinstance(exc, ExtractionError):
            LOGGER.warning(
                "extraction failed channel_id=%s state=%s error=%s",
                run.report.channel_id,
                run.state,
                exc,
            )
            message = str(exc)
        else:
            LOGGER.exception(
                "extraction failed unexpectedly channel_id=%s state=%s",
                run.report.channel_id,
                run.state,
            )
            message = f"{UNEXPECTED_FAILURE_MESSAGE} ({type(exc).__name__})"
        await run.fail(message)

    async def _drive(
        self,
        run: _ExtractionRun,
        params: ExtractionParams,
        policy: FetchPolicy,
    ) -> None:
        channel_id = resolve_channel_reference(params.channel_reference)
        run.report.channel_id = channel_id
        run.transition(ExtractionState.LISTING)

        items = await list_channel_videos(
            self._listing_provider,
            channel_id,
            max_pages=self._max_pages,
            is_cancelled=run.cancelled,
        )
        run.report.listed_count = len(items)
        run.ensure_not_cancelled()
        run.transition(ExtractionState.FILTERING)

        videos = to_video_refs(filter_by_date(items, params.date_filter))
        if not videos:
            raise NoVideosMatchFilter(params.date_filter.value)
        LOGGER.info(
            "extraction videos selected channel_id=%s listed=%s selected=%s date_filter=%s",
            channel_id,
            len(items),
            len(videos),
            params.date_filter.value,
        )
        await run.emit_total(len(videos))

        if policy is FetchPolicy.SERIAL:
            await self._emit_serial(run, videos, params.language)
        else:
            await self._emit_concurrent(run, videos, params.language)

        run.ensure_not_cancelled()
        await run.finish()

    async def _emit_serial(
        self,
        run: _ExtractionRun,
        videos: Sequence[VideoRef],
        language: str,
    ) -> None:
        total = len(videos)
        for index, video in enumerate(videos, start=1):
            run.ensure_not_cancelled()
            await run.emit_progress(index, _processing_message(index, total, video.title))
            result = await self._fetch(video, language)
            run.ensure_not_cancelled()
            await run.emit_result(result)

    async def _emit_concurrent(
        self,
        run: _ExtractionRun,
        videos: Sequence[VideoRef],
        language: str,
    ) -> None:
        run.ensure_not_cancelled()
        slots: list[VideoResult | _SlotFailure | None] = [None] * len(videos)

        async def settle(position: int, video: VideoRef) -> None:
            try:
                slots[position] = await self._fetch(video, language)
            except Exception as exc:
                slots[position] = _SlotFailure(exc)

        async with asyncio.TaskGroup() as task_group:
            for position, video in enumerate(videos):
                task_group.create_task(settle(position, video))

        run.ensure_not_cancelled()
        total = len(videos)
        for index, (video, slot) in enumerate(zip(videos, slots, strict=True), start=1):
            if isinstance(slot, VideoResult):
                await run.emit_progress(index, _processing_message(index, total, slot.title))
                await run.emit_result(slot)
            else:
                error_type = type(slot.error).__name__ if slot is not None else "missing"
                LOGGER.error(
                    "video processing failed video_id=%s error_type=%s",
                    video.id,
                    error_type,
                )
                await run.emit_progress(index, f"Error processing video {index}/{total}")

    async def _fetch(self, video: VideoRef, language: str) -> VideoResult:
        loop = asyncio.get_running_loop()
        started: asyncio.Future[None] = loop.create_future()

        def fetch_in_worker() -> VideoResult:
            loop.call_soon_threadsafe(_mark_started, started)
            return fetch_video_result(self._transcript_provider, video, language)

        fetch = asyncio.ensure_future(asyncio.to_thread(fetch_in_worker))
        if self._transcript_timeout_seconds is None:
            return await fetch
        try:
            # Time spent queued behind busy executor threads does not count against the timeout.
            await asyncio.wait([fetch, started], return_when=asyncio.FIRST_COMPLETED)
            return await asyncio.wait_for(fetch, timeout=self._transcript_timeout_seconds)
        except TimeoutError:
            LOGGER.warning(
                "transcript fetch timed out video_id=%s timeout_seconds=%s",
                video.id,
                self._transcript_timeout_seconds,
            )
            return VideoResult.from_ref(video, TRANSCRIPT_FETCH_ERROR_PLACEHOLDER)
        finally:
            if not fetch.done():
                fetch.cancel()
            if not started.done():
                started.cancel()


def _mark_started(started: asyncio.Future[None]) -> None:
    if not started.done():
        started.set_result(None)


def _processing_message(index: int, total: int, title: str) -> str:
    return f'Processing ({index}/{total}): "{title}"'
