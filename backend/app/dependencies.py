from __future__ import annotations

from functools import lru_cache

from backend.app.config import AppSettings, load_settings
from backend.app.models.extraction_contracts import FetchPolicy
from backend.app.services.extraction_service import ExtractionService
from backend.app.services.summarization_service import OpenAISummarizer, Summarizer
from backend.app.services.transcript_fetcher import YouTubeTranscriptApiProvider
from backend.app.services.video_lister import InnertubeChannelListingProvider
from backend.app.telemetry import TelemetryClient, build_telemetry_client


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    return load_settings()


@lru_cache(maxsize=1)
def get_extraction_service() -> ExtractionService:
    settings = get_settings()
    return ExtractionService(
        listing_provider=InnertubeChannelListingProvider(
            timeout_seconds=settings.listing_http_timeout_seconds,
            user_agent=settings.youtube_user_agent,
        ),
        transcript_provider=YouTubeTranscriptApiProvider(),
        fetch_policy=FetchPolicy(settings.fetch_policy),
        max_pages=settings.listing_max_pages,
        transcript_timeout_seconds=settings.transcript_timeout_seconds,
        telemetry=get_telemetry(),
    )


@lru_cache(maxsize=1)
def get_summarizer() -> Summarizer:
    settings = get_settings()
    return OpenAISummarizer(
        api_key=settings.openai_api_key,
        model=settings.summary_model,
        base_url=settings.openai_base_url,
        temperature=settings.summary_temperature,
        top_p=settings.summary_top_p,
    )


@lru_cache(maxsize=1)
def get_telemetry() -> TelemetryClient:
    settings = get_settings()
    return build_telemetry_client(
        enabled=settings.telemetry_enabled,
        sink=settings.telemetry_sink,
    )


def reset_cached_dependencies() -> None:
    get_extraction_service.cache_clear()
    get_summarizer.cache_clear()
    get_telemetry.cache_clear()
    get_settings.cache_clear()
