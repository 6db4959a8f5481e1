from __future__ import annotations

import asyncio
import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest
from conftest import (
    CHANNEL_ID,
    CHANNEL_URL,
    FakeListingProvider,
    FakeTranscriptProvider,
    RecordingSink,
    disabled_transcript,
    video_item,
)

from backend.app.models.extraction_contracts import (
    DateFilter,
    DoneEvent,
    ExtractionParams,
    FailureEvent,
    FetchPolicy,
    ProgressEvent,
    TotalEvent,
    TranscriptReadyEvent,
)
from backend.app.services.extraction_service import (
    CancellationToken,
    ExtractionReport,
    ExtractionService,
    ExtractionState,
    IllegalStateTransition,
    _ExtractionRun,
)
from backend.app.services.transcript_fetcher import (
    TRANSCRIPT_DISABLED_PLACEHOLDER,
    TRANSCRIPT_FETCH_ERROR_PLACEHOLDER,
)

TERMINAL_TYPES = {"done", "error"}


def _service(
    listing: FakeListingProvider,
    transcripts: FakeTranscriptProvider,
    *,
    policy: FetchPolicy = FetchPolicy.CONCURRENT,
    transcript_timeout_seconds: float | None = 5.0,
) -> ExtractionService:
    return ExtractionService(
        listing_provider=listing,
        transcript_provider=transcripts,
        fetch_policy=policy,
        max_pages=50,
        transcript_timeout_seconds=transcript_timeout_seconds,
    )


def _params(reference: str = CHANNEL_URL, date_filter: DateFilter = DateFilter.ALL) -> ExtractionParams:
    return ExtractionParams(channel_reference=reference, language="es", date_filter=date_filter)


def _run(
    service: ExtractionService,
    sink: RecordingSink,
    params: ExtractionParams | None = None,
    cancellation: CancellationToken | None = None,
) -> ExtractionReport:
    return asyncio.run(service.run(params or _params(), sink, cancellation))


def _assert_stream_shape(sink: RecordingSink) -> None:
    terminal_positions = [i for i, kind in enumerate(sink.types) if kind in TERMINAL_TYPES]
    assert len(terminal_positions) <= 1
    if terminal_positions:
        assert terminal_positions[0] == len(sink.events) - 1
    if "total" in sink.types:
        total_position = sink.types.index("total")
        assert sink.types.count("total") == 1
        assert all(
            kind not in {"progress", "transcript"} for kind in sink.types[:total_position]
        )


@pytest.mark.parametrize("policy", [FetchPolicy.SERIAL, FetchPolicy.CONCURRENT])
def test_successful_extraction_emits_ordered_events(policy: FetchPolicy) -> None:
    listing = FakeListingProvider(pages=[[video_item(1), video_item(2)], [video_item(3)]])
    sink = RecordingSink()

    report = _run(_service(listing, FakeTranscriptProvider(), policy=policy), sink)

    _assert_stream_shape(sink)
    assert sink.types == [
        "total",
        "progress",
        "transcript",
        "progress",
        "transcript",
        "progress",
        "transcript",
        "done",
    ]
    total_event = sink.events[0]
    assert isinstance(total_event, TotalEvent)
    assert total_event.count == 3
    progress_events = [event for event in sink.events if isinstance(event, ProgressEvent)]
    assert [event.index for event in progress_events] == [1, 2, 3]
    assert progress_events[0].message == 'Processing (1/3): "Video 1"'
    assert all(event.total == 3 for event in progress_events)
    results = [event.data for event in sink.events if isinstance(event, TranscriptReadyEvent)]
    assert [result.id for result in results] == ["vid001", "vid002", "vid003"]
    assert results[0].transcript == "transcript of vid001"
    done_event = sink.events[-1]
    assert isinstance(done_event, DoneEvent)
    assert done_event.message == "Extraction complete!"

    assert report.state is ExtractionState.DONE
    assert report.channel_id == CHANNEL_ID
    assert report.history == [
        ExtractionState.RESOLVING,
        ExtractionState.LISTING,
        ExtractionState.FILTERING,
        ExtractionState.EMITTING,
        ExtractionState.DONE,
    ]


def test_concurrent_results_follow_list_order_when_fetches_finish_out_of_order() -> None:
    listing = FakeListingProvider(pages=[[video_item(1), video_item(2)]])
    transcripts = FakeTranscriptProvider()
    first_gate = threading.Event()
    transcripts.gates["vid001"] = first_gate

    def release_first_after_second() -> None:
        deadline = time.monotonic() + 5
        while time.monotonic() < deadline:
            if ("vid002", "es") in transcripts.calls:
                break
            time.sleep(0.01)
        # Give the second fetch time to return before the first one does.
        time.sleep(0.05)
        first_gate.set()

    releaser = threading.Thread(target=release_first_after_second)
    releaser.start()
    sink = RecordingSink()
    try:
        _run(_service(listing, transcripts, policy=FetchPolicy.CONCURRENT), sink)
    finally:
        first_gate.set()
        releaser.join()

    results = [event.data.id for event in sink.events if isinstance(event, TranscriptReadyEvent)]
    assert results == ["vid001", "vid002"]
    _assert_stream_shape(sink)


def test_unavailable_transcript_is_reported_as_placeholder_and_extraction_completes() -> None:
    listing = FakeListingProvider(pages=[[video_item(1), video_item(2)]])
    transcripts = FakeTranscriptProvider(failures={"vid002": disabled_transcript()})
    sink = RecordingSink()

    report = _run(_service(listing, transcripts), sink)

    results = [event.data for event in sink.events if isinstance(event, TranscriptReadyEvent)]
    assert [result.transcript for result in results] == [
        "transcript of vid001",
        TRANSCRIPT_DISABLED_PLACEHOLDER,
    ]
    assert sink.types[-1] == "done"
    assert report.state is ExtractionState.DONE


def test_transcript_timeout_yields_fetch_error_placeholder() -> None:
    listing = FakeListingProvider(pages=[[video_item(1)]])
    transcripts = FakeTranscriptProvider()
    gate = threading.Event()
    transcripts.gates["vid001"] = gate
    # The blocked worker thread must finish before asyncio.run can shut its executor down.
    releaser = threading.Timer(0.3, gate.set)
    releaser.start()
    sink = RecordingSink()

    try:
        _run(_service(listing, transcripts, transcript_timeout_seconds=0.05), sink)
    finally:
        releaser.cancel()
        gate.set()

    results = [event.data for event in sink.events if isinstance(event, TranscriptReadyEvent)]
    assert [result.transcript for result in results] == [TRANSCRIPT_FETCH_ERROR_PLACEHOLDER]
    assert sink.types[-1] == "done"


def test_queued_fetches_are_not_timed_out_behind_a_small_executor() -> None:
    listing = FakeListingProvider(pages=[[video_item(index) for index in range(1, 41)]])
    transcripts = FakeTranscriptProvider()
    transcripts.delay_seconds = 0.2
    service = _service(listing, transcripts, transcript_timeout_seconds=1.0)
    sink = RecordingSink()

    async def run_with_four_workers() -> ExtractionReport:
        asyncio.get_running_loop().set_default_executor(ThreadPoolExecutor(max_workers=4))
        return await service.run(_params(), sink)

    report = asyncio.run(run_with_four_workers())

    results = [event.data for event in sink.events if isinstance(event, TranscriptReadyEvent)]
    assert len(results) == 40
    timed_out = [result.id for result in results if result.transcript == TRANSCRIPT_FETCH_ERROR_PLACEHOLDER]
    assert timed_out == []
    assert report.state is ExtractionState.DONE


def test_unrecognized_reference_emits_single_error_event() -> None:
    listing = FakeListingProvider(pages=[[video_item(1)]])
    sink = RecordingSink()

    report = _run(
        _service(listing, FakeTranscriptProvider()),
        sink,
        _params("https://www.youtube.com/watch?v=abc"),
    )

    assert sink.types == ["error"]
    assert listing.calls == []
    assert report.state is ExtractionState.FAILED


def test_listing_failure_emits_error_without_total() -> None:
    listing = FakeListingProvider(pages=[[video_item(1)]])
    listing.failure = RuntimeError("upstream down")
    sink = RecordingSink()

    report = _run(_service(listing, FakeTranscriptProvider()), sink)

    assert sink.types == ["error"]
    error_event = sink.events[0]
    assert isinstance(error_event, FailureEvent)
    assert "upstream down" in error_event.message
    assert report.state is ExtractionState.FAILED


def test_empty_channel_emits_error() -> None:
    sink = RecordingSink()

    _run(_service(FakeListingProvider(pages=[[]]), FakeTranscriptProvider()), sink)

    assert sink.types == ["error"]


def test_no_videos_matching_filter_emits_error_without_total() -> None:
    listing = FakeListingProvider(
        pages=[[video_item(1, "3 years ago"), video_item(2, None), video_item(3, "hace 1 día")]]
    )
    sink = RecordingSink()

    report = _run(
        _service(listing, FakeTranscriptProvider()),
        sink,
        _params(date_filter=DateFilter.LAST_MONTH),
    )

    assert sink.types == ["error"]
    error_event = sink.events[0]
    assert isinstance(error_event, FailureEvent)
    assert "date filter" in error_event.message
    assert report.listed_count == 3
    assert report.state is ExtractionState.FAILED


def test_date_filter_reduces_the_total() -> None:
    listing = FakeListingProvider(
        pages=[[video_item(1, "2 days ago"), video_item(2, "5 years ago"), video_item(3, "1 week ago")]]
    )
    sink = RecordingSink()

    _run(_service(listing, FakeTranscriptProvider()), sink, _params(date_filter=DateFilter.LAST_MONTH))

    total_event = sink.events[0]
    assert isinstance(total_event, TotalEvent)
    assert total_event.count == 2
    results = [event.data.id for event in sink.events if isinstance(event, TranscriptReadyEvent)]
    assert results == ["vid001", "vid003"]


def test_unexpected_error_is_reported_without_internal_details() -> None:
    listing = FakeListingProvider(pages=[[video_item(1)]])
    sink = RecordingSink()
    service = _service(listing, FakeTranscriptProvider())

    async def exploding_emit(*_: object) -> None:
        raise ValueError("slot bookkeeping broke")

    service._emit_concurrent = exploding_emit  # type: ignore[method-assign]
    report = _run(service, sink)

    assert sink.types == ["total", "error"]
    error_event = sink.events[-1]
    assert isinstance(error_event, FailureEvent)
    assert error_event.message.startswith("Unexpected error while processing the channel.")
    assert "slot bookkeeping broke" not in error_event.message
    assert error_event.message.endswith("(ValueError)")
    assert report.state is ExtractionState.FAILED


def test_serial_cancellation_stops_without_terminal_event() -> None:
    listing = FakeListingProvider(pages=[[video_item(1), video_item(2), video_item(3)]])
    # Total, progress 1, transcript 1, then the requester goes away.
    sink = RecordingSink(close_after=3)
    transcripts = FakeTranscriptProvider()

    report = _run(_service(listing, transcripts, policy=FetchPolicy.SERIAL), sink)

    assert sink.types == ["total", "progress", "transcript"]
    assert transcripts.calls == [("vid001", "es")]
    assert report.state is ExtractionState.ABORTED


def test_cancellation_during_listing_stops_before_next_page() -> None:
    listing = FakeListingProvider(pages=[[video_item(1)], [video_item(2)], [video_item(3)]])
    cancellation = CancellationToken()
    listing.on_page = lambda page_index: cancellation.cancel() if page_index == 1 else None
    sink = RecordingSink()

    report = _run(_service(listing, FakeTranscriptProvider()), sink, cancellation=cancellation)

    assert sink.events == []
    assert [continuation for _, continuation in listing.calls] == [None, "page-1"]
    assert report.state is ExtractionState.ABORTED


def test_concurrent_cancellation_during_batch_emits_nothing_further() -> None:
    listing = FakeListingProvider(pages=[[video_item(1), video_item(2)]])
    transcripts = FakeTranscriptProvider()
    gate = threading.Event()
    transcripts.gates["vid001"] = gate
    cancellation = CancellationToken()

    async def scenario(sink: RecordingSink) -> ExtractionReport:
        service = _service(listing, transcripts, policy=FetchPolicy.CONCURRENT)
        run = asyncio.create_task(service.run(_params(), sink, cancellation))
        while "total" not in sink.types:
            await asyncio.sleep(0.01)
        cancellation.cancel()
        gate.set()
        return await run

    sink = RecordingSink()
    try:
        report = asyncio.run(scenario(sink))
    finally:
        gate.set()

    assert sink.types == ["total"]
    assert report.state is ExtractionState.ABORTED


def test_per_request_policy_overrides_service_default() -> None:
    listing = FakeListingProvider(pages=[[video_item(1), video_item(2)]])
    transcripts = FakeTranscriptProvider()
    sink = RecordingSink(close_after=3)
    service = _service(listing, transcripts, policy=FetchPolicy.CONCURRENT)

    asyncio.run(service.run(_params(), sink, fetch_policy=FetchPolicy.SERIAL))

    # Serial fetching stops after the first video once the sink closes.
    assert transcripts.calls == [("vid001", "es")]


def test_per_video_events_require_the_emitting_state() -> None:
    async def scenario() -> RecordingSink:
        sink = RecordingSink()
        run = _ExtractionRun(sink, CancellationToken())
        with pytest.raises(IllegalStateTransition):
            await run.emit_progress(1, "too early")
        with pytest.raises(IllegalStateTransition):
            await run.finish()
        return sink

    sink = asyncio.run(scenario())

    assert sink.events == []
