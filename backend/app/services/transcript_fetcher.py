from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from enum import StrEnum
from typing import Protocol

from youtube_transcript_api import (
    CouldNotRetrieveTranscript,
    NoTranscriptFound,
    TranscriptsDisabled,
    VideoUnavailable,
    YouTubeTranscriptApi,
)

from backend.app.models.extraction_contracts import VideoRef, VideoResult

LOGGER = logging.getLogger("channel_transcripts.transcripts")

TRANSCRIPT_DISABLED_PLACEHOLDER = "[Transcript is disabled for this video]"
TRANSCRIPT_NOT_AVAILABLE_PLACEHOLDER = "[Transcript not available for this video]"
TRANSCRIPT_FETCH_ERROR_PLACEHOLDER = "[Error fetching transcript]"
TRANSCRIPT_PLACEHOLDERS: frozenset[str] = frozenset(
    {
        TRANSCRIPT_DISABLED_PLACEHOLDER,
        TRANSCRIPT_NOT_AVAILABLE_PLACEHOLDER,
        TRANSCRIPT_FETCH_ERROR_PLACEHOLDER,
    }
)


class TranscriptFailureReason(StrEnum):
    DISABLED = "disabled"
    NOT_FOUND = "not_found"
    OTHER = "other"


@dataclass(frozen=True)
class TranscriptFragment:
    text: str
    start: float = 0.0
    duration: float = 0.0


class TranscriptUnavailableError(Exception):
    def __init__(self, reason: TranscriptFailureReason, message: str = "") -> None:
        super().__init__(message or reason.value)
        self.reason = reason


class TranscriptProvider(Protocol):
    def fetch(self, video_id: str, language: str) -> Sequence[TranscriptFragment]:
        ...


class YouTubeTranscriptApiProvider:
    def __init__(self, api: YouTubeTranscriptApi | None = None) -> None:
        self._api = api or YouTubeTranscriptApi()

    def fetch(self, video_id: str, language: str) -> Sequence[TranscriptFragment]:
        try:
            fetched = self._api.fetch(video_id, languages=[language])
        except TranscriptsDisabled as exc:
            raise TranscriptUnavailableError(TranscriptFailureReason.DISABLED, str(exc)) from exc
        except (NoTranscriptFound, VideoUnavailable) as exc:
            raise TranscriptUnavailableError(TranscriptFailureReason.NOT_FOUND, str(exc)) from exc
        except CouldNotRetrieveTranscript as exc:
            raise TranscriptUnavailableError(TranscriptFailureReason.OTHER, str(exc)) from exc
        return [
            TranscriptFragment(
                text=snippet.text,
                start=float(snippet.start),
                duration=float(snippet.duration),
            )
            for snippet in fetched
        ]


_PLACEHOLDER_BY_REASON: dict[TranscriptFailureReason, str] = {
    TranscriptFailureReason.DISABLED: TRANSCRIPT_DISABLED_PLACEHOLDER,
    TranscriptFailureReason.NOT_FOUND: TRANSCRIPT_NOT_AVAILABLE_PLACEHOLDER,
    TranscriptFailureReason.OTHER: TRANSCRIPT_FETCH_ERROR_PLACEHOLDER,
}


def fetch_transcript_text(provider: TranscriptProvider, video_id: str, language: str) -> str:
    """Return the joined transcript text, or a placeholder describing why there is none."""
    try:
        fragments = provider.fetch(video_id, language)
    except TranscriptUnavailableError as exc:
        LOGGER.info(
            "transcript unavailable video_id=%s language=%s reason=%s",
            video_id,
            language,
            exc.reason,
        )
        return _PLACEHOLDER_BY_REASON[exc.reason]
    except Exception as exc:
        LOGGER.warning(
            "transcript fetch failed video_id=%s language=%s error_type=%s error=%s",
            video_id,
            language,
            type(exc).__name__,
            exc,
        )
        return TRANSCRIPT_FETCH_ERROR_PLACEHOLDER
    return " ".join(fragment.text for fragment in fragments)


def fetch_video_result(
    provider: TranscriptProvider,
    video: VideoRef,
    language: str,
) -> VideoResult:
    return VideoResult.from_ref(video, fetch_transcript_text(provider, video.id, language))
