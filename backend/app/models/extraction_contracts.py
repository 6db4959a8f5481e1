from __future__ import annotations

from enum import StrEnum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

WATCH_URL_TEMPLATE = "https://www.youtube.com/watch?v={video_id}"


def watch_url(video_id: str) -> str:
    return WATCH_URL_TEMPLATE.format(video_id=video_id)


class DateFilter(StrEnum):
    ALL = "all"
    LAST_MONTH = "last_month"
    LAST_YEAR = "last_year"


class FetchPolicy(StrEnum):
    SERIAL = "serial"
    CONCURRENT = "concurrent"


class VideoRef(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str
    title: str
    url: str

    @classmethod
    def from_video_id(cls, video_id: str, title: str) -> VideoRef:
        return cls(id=video_id, title=title, url=watch_url(video_id))


class VideoResult(VideoRef):
    transcript: str

    @classmethod
    def from_ref(cls, video: VideoRef, transcript: str) -> VideoResult:
        return cls(id=video.id, title=video.title, url=video.url, transcript=transcript)


class TotalEvent(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    type: Literal["total"] = "total"
    count: int = Field(ge=0)


class ProgressEvent(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    type: Literal["progress"] = "progress"
    index: int = Field(ge=1)
    total: int = Field(ge=0)
    message: str


class TranscriptReadyEvent(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    type: Literal["transcript"] = "transcript"
    data: VideoResult


class FailureEvent(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    type: Literal["error"] = "error"
    message: str


class DoneEvent(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    type: Literal["done"] = "done"
    message: str


ExtractionEvent = Annotated[
    TotalEvent | ProgressEvent | TranscriptReadyEvent | FailureEvent | DoneEvent,
    Field(discriminator="type"),
]

EXTRACTION_EVENT_ADAPTER: TypeAdapter[ExtractionEvent] = TypeAdapter(ExtractionEvent)


def is_terminal_event(event: object) -> bool:
    return isinstance(event, FailureEvent | DoneEvent)


class ExtractionParams(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    channel_reference: str = Field(min_length=1, max_length=2048)
    language: str = Field(default="es", min_length=1, max_length=16)
    date_filter: DateFilter = DateFilter.ALL

    @field_validator("channel_reference", "language", mode="before")
    @classmethod
    def _strip_text(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip()
        return value


class TranscriptResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    transcript: str


def _default_transcripts() -> list[VideoResult]:
    return []


class AnalyzeRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    transcripts: list[VideoResult] = Field(default_factory=_default_transcripts)
    custom_prompt: str = Field(default="", alias="customPrompt", max_length=20_000)


class AnalyzeResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    analysis: str


class ErrorResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    error: str
    details: str | None = None
