"""Async HTTP client for the channel transcripts API."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Any

import httpx
from pydantic import TypeAdapter

from backend.app.models.extraction_contracts import (
    AnalyzeRequest,
    AnalyzeResponse,
    TranscriptResponse,
    VideoRef,
    VideoResult,
)

VIDEOS_PATH = "/api/videos"
TRANSCRIPT_PATH = "/api/transcript"
ANALYZE_PATH = "/api/analyze"
PROCESS_CHANNEL_PATH = "/api/process-channel"

_VIDEO_LIST_ADAPTER: TypeAdapter[list[VideoRef]] = TypeAdapter(list[VideoRef])


class ApiRequestError(Exception):
    """The server rejected a request before any streamed content was delivered."""

    def __init__(self, status_code: int, error: str, details: str | None = None) -> None:
        super().__init__(error if details is None else f"{error} ({details})")
        self.status_code = status_code
        self.error = error
        self.details = details

    @classmethod
    def from_response(cls, response: httpx.Response) -> ApiRequestError:
        try:
            body: Any = response.json()
        except ValueError:
            body = None

        error: str | None = None
        details: str | None = None
        if isinstance(body, dict):
            raw_error = body.get("error")
            raw_details = body.get("details")
            raw_detail = body.get("detail")
            if isinstance(raw_error, str) and raw_error:
                error = raw_error
                details = raw_details if isinstance(raw_details, str) else None
            elif isinstance(raw_detail, str) and raw_detail:
                error = raw_detail
            elif isinstance(raw_detail, list) and raw_detail:
                error = "Invalid request."
                first = raw_detail[0]
                if isinstance(first, dict) and isinstance(first.get("msg"), str):
                    details = first["msg"]

        return cls(
            response.status_code,
            error or f"Request failed with HTTP {response.status_code}.",
            details,
        )


class InvalidInputError(ValueError):
    pass


def build_http_client(base_url: str, *, timeout_seconds: float = 30.0) -> httpx.AsyncClient:
    # Streams stay open for as long as the extraction runs; only connecting is bounded.
    timeout = httpx.Timeout(timeout_seconds, read=None)
    return httpx.AsyncClient(base_url=base_url, timeout=timeout)


class ChannelTranscriptsApi:
    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def list_videos(self, channel_reference: str) -> list[VideoRef]:
        if not channel_reference.strip():
            raise InvalidInputError("A channel reference is required.")
        response = await self._client.get(
            VIDEOS_PATH,
            params={"channelUrl": channel_reference.strip()},
        )
        if response.is_error:
            raise ApiRequestError.from_response(response)
        return _VIDEO_LIST_ADAPTER.validate_json(response.content)

    async def get_transcript(self, video_id: str, language: str) -> str:
        if not video_id.strip():
            raise InvalidInputError("A video id is required.")
        response = await self._client.get(
            TRANSCRIPT_PATH,
            params={"videoId": video_id.strip(), "language": language},
        )
        if response.is_error:
            raise ApiRequestError.from_response(response)
        return TranscriptResponse.model_validate_json(response.content).transcript

    async def analyze(
        self,
        transcripts: Sequence[VideoResult],
        custom_prompt: str,
        *,
        on_chunk: Callable[[str], None] | None = None,
    ) -> str:
        """Request an analysis of ``transcripts``.

        The server answers either with a JSON ``{analysis}`` document or with a
        streamed plain-text body; the response content type decides which.
        Streamed chunks are handed to ``on_chunk`` as they arrive.
        """
        if not transcripts:
            raise InvalidInputError("At least one transcript is required.")
        if not custom_prompt.strip():
            raise InvalidInputError("A non-empty prompt is required.")

        payload = AnalyzeRequest(
            transcripts=list(transcripts),
            custom_prompt=custom_prompt,
        ).model_dump(by_alias=True, mode="json")
        async with self._client.stream("POST", ANALYZE_PATH, json=payload) as response:
            if response.is_error:
                await response.aread()
                raise ApiRequestError.from_response(response)

            content_type = response.headers.get("content-type", "")
            if content_type.startswith("application/json"):
                body = await response.aread()
                analysis = AnalyzeResponse.model_validate_json(body).analysis
                if on_chunk is not None:
                    on_chunk(analysis)
                return analysis

            parts: list[str] = []
            async for chunk in response.aiter_text():
                if not chunk:
                    continue
                parts.append(chunk)
                if on_chunk is not None:
                    on_chunk(chunk)
            return "".join(parts)
