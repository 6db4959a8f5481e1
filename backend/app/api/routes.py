from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import AsyncIterator, Iterator
from typing import Annotated

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse, Response, StreamingResponse
from structlog.contextvars import bind_contextvars, reset_contextvars

from backend.app.config import AppSettings
from backend.app.dependencies import get_extraction_service, get_settings, get_summarizer
from backend.app.models.extraction_contracts import (
    AnalyzeRequest,
    AnalyzeResponse,
    DateFilter,
    ErrorResponse,
    ExtractionParams,
    FetchPolicy,
    TranscriptResponse,
    VideoRef,
)
from backend.app.services.channel_resolver import resolve_channel_reference
from backend.app.services.errors import ListingError, NoVideosFound, UnrecognizedChannelReference
from backend.app.services.event_stream import NDJSON_MEDIA_TYPE, QueueEventSink, encode_event
from backend.app.services.extraction_service import (
    CancellationToken,
    ExtractionReport,
    ExtractionService,
)
from backend.app.services.summarization_service import (
    InvalidSummaryRequest,
    SummarizationError,
    Summarizer,
    build_analysis_prompt,
)
from backend.app.services.transcript_fetcher import fetch_transcript_text
from backend.app.services.video_lister import (
    ChannelNotFoundError,
    list_channel_videos,
    to_video_refs,
)

LOGGER = logging.getLogger("channel_transcripts.api")

router = APIRouter(prefix="/api")

STREAM_HEADERS: dict[str, str] = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}
# Extraction tasks outlive the response body when the client disconnects; keep them referenced.
_RUNNING_EXTRACTIONS: set[asyncio.Task[ExtractionReport]] = set()


def cancel_running_extractions() -> int:
    pending = [task for task in _RUNNING_EXTRACTIONS if not task.done()]
    for task in pending:
        task.cancel()
    return len(pending)


def _error_response(status_code: int, error: str, details: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=error, details=details).model_dump(exclude_none=True),
    )


def _required_text(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip()
    return normalized or None


async def _run_extraction(
    service: ExtractionService,
    params: ExtractionParams,
    sink: QueueEventSink,
    cancellation: CancellationToken,
    fetch_policy: FetchPolicy | None,
) -> ExtractionReport:
    try:
        return await service.run(params, sink, cancellation, fetch_policy=fetch_policy)
    finally:
        sink.finish()


async def _stream_extraction(
    service: ExtractionService,
    params: ExtractionParams,
    fetch_policy: FetchPolicy | None,
) -> AsyncIterator[bytes]:
    sink = QueueEventSink()
    cancellation = CancellationToken()
    task = asyncio.create_task(
        _run_extraction(service, params, sink, cancellation, fetch_policy)
    )
    _RUNNING_EXTRACTIONS.add(task)
    task.add_done_callback(_RUNNING_EXTRACTIONS.discard)
    try:
        async for event in sink:
            yield encode_event(event)
    finally:
        if not task.done():
            LOGGER.info(
                "extraction stream closed before completion channel_reference=%s",
                params.channel_reference,
            )
        cancellation.cancel()
        sink.close()


@router.get(
    "/process-channel",
    tags=["extraction"],
    operation_id="process_channel",
    response_class=StreamingResponse,
    responses={400: {"model": ErrorResponse}},
)
async def process_channel(
    settings: Annotated[AppSettings, Depends(get_settings)],
    service: Annotated[ExtractionService, Depends(get_extraction_service)],
    channel_url: Annotated[str | None, Query(alias="channelUrl", max_length=2048)] = None,
    language: Annotated[str | None, Query(max_length=16)] = None,
    date_filter: Annotated[DateFilter, Query(alias="dateFilter")] = DateFilter.ALL,
    policy: Annotated[FetchPolicy | None, Query()] = None,
) -> Response:
    channel_reference = _required_text(channel_url)
    if channel_reference is None:
        return _error_response(400, "The `channelUrl` query parameter is required.")

    params = ExtractionParams(
        channel_reference=channel_reference,
        language=_required_text(language) or settings.default_language,
        date_filter=date_filter,
    )
    return StreamingResponse(
        _stream_extraction(service, params, policy),
        media_type=NDJSON_MEDIA_TYPE,
        headers=STREAM_HEADERS,
    )


@router.get(
    "/videos",
    response_model=list[VideoRef],
    tags=["extraction"],
    operation_id="list_channel_videos",
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)
async def list_videos(
    service: Annotated[ExtractionService, Depends(get_extraction_service)],
    channel_url: Annotated[str | None, Query(alias="channelUrl", max_length=2048)] = None,
) -> Response:
    channel_reference = _required_text(channel_url)
    if channel_reference is None:
        return _error_response(400, "The `channelUrl` query parameter is required.")

    context_tokens = bind_contextvars(channel_reference=channel_reference)
    try:
        channel_id = resolve_channel_reference(channel_reference)
        items = await list_channel_videos(
            service.listing_provider,
            channel_id,
            max_pages=service.max_pages,
        )
    except UnrecognizedChannelReference as exc:
        return _error_response(400, str(exc))
    except (NoVideosFound, ChannelNotFoundError) as exc:
        return _error_response(404, "No videos were found for this channel.", str(exc))
    except ListingError as exc:
        LOGGER.warning("video listing failed channel_reference=%s error=%s", channel_reference, exc)
        return _error_response(502, "Failed to fetch the video list from YouTube.", str(exc))
    finally:
        reset_contextvars(**context_tokens)

    videos = to_video_refs(items)
    return JSONResponse(
        content=[video.model_dump() for video in videos],
        headers={"Cache-Control": "s-maxage=3600, stale-while-revalidate"},
    )


@router.get(
    "/transcript",
    response_model=TranscriptResponse,
    tags=["extraction"],
    operation_id="get_transcript",
    responses={400: {"model": ErrorResponse}},
)
def get_transcript(
    settings: Annotated[AppSettings, Depends(get_settings)],
    service: Annotated[ExtractionService, Depends(get_extraction_service)],
    video_id: Annotated[str | None, Query(alias="videoId", max_length=64)] = None,
    language: Annotated[str | None, Query(max_length=16)] = None,
) -> Response:
    normalized_video_id = _required_text(video_id)
    if normalized_video_id is None:
        return _error_response(400, "The `videoId` query parameter is required.")

    transcript = fetch_transcript_text(
        service.transcript_provider,
        normalized_video_id,
        _required_text(language) or settings.default_language,
    )
    return JSONResponse(
        content=TranscriptResponse(transcript=transcript).model_dump(),
        headers={"Cache-Control": "s-maxage=86400, stale-while-revalidate"},
    )


@router.post(
    "/analyze",
    response_model=AnalyzeResponse,
    tags=["summarization"],
    operation_id="analyze_transcripts",
    responses={
        400: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
    },
)
def analyze(
    request: AnalyzeRequest,
    settings: Annotated[AppSettings, Depends(get_settings)],
    summarizer: Annotated[Summarizer, Depends(get_summarizer)],
) -> Response:
    try:
        prompt = build_analysis_prompt(request.transcripts, request.custom_prompt)
    except InvalidSummaryRequest as exc:
        return _error_response(
            400,
            'Invalid request body. A non-empty "transcripts" array and "customPrompt" are required.',
            str(exc),
        )
    if not summarizer.configured:
        LOGGER.error("summarization requested but no LLM API key is configured")
        return _error_response(500, "Server configuration error: the LLM API key is missing.")

    if settings.summary_stream:
        return _stream_analysis(summarizer, prompt)

    try:
        analysis = summarizer.summarize(prompt)
    except SummarizationError as exc:
        return _error_response(502, "The LLM request failed.", str(exc))
    return JSONResponse(content=AnalyzeResponse(analysis=analysis).model_dump())


def _stream_analysis(summarizer: Summarizer, prompt: str) -> Response:
    chunks = summarizer.stream(prompt)
    # Pull the first chunk eagerly so an upstream failure still maps to an HTTP error.
    try:
        first_chunk = next(chunks, "")
    except SummarizationError as exc:
        return _error_response(502, "The LLM request failed.", str(exc))
    return StreamingResponse(
        _guarded_chunks(itertools.chain([first_chunk], chunks)),
        media_type="text/plain; charset=utf-8",
        headers={"Cache-Control": "no-cache"},
    )


def _guarded_chunks(chunks: Iterator[str]) -> Iterator[str]:
    try:
        yield from chunks
    except SummarizationError as exc:
        LOGGER.warning("analysis stream interrupted error=%s", exc)
        yield f"\n\n[Analysis interrupted: {exc}]"
