from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterator, Mapping, Sequence
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from backend.app.dependencies import (
    get_extraction_service,
    get_summarizer,
    reset_cached_dependencies,
)
from backend.app.main import create_app
from backend.app.models.extraction_contracts import ExtractionEvent, FetchPolicy
from backend.app.services.extraction_service import ExtractionService
from backend.app.services.transcript_fetcher import (
    TranscriptFailureReason,
    TranscriptFragment,
    TranscriptUnavailableError,
)
from backend.app.services.video_lister import ChannelPage, ChannelVideoItem, SortOrder

CHANNEL_ID = "UCabcdefghijklmnopqrstuv"
CHANNEL_URL = f"https://www.youtube.com/channel/{CHANNEL_ID}"


def video_item(index: int, published_text: str | None = "2 days ago") -> ChannelVideoItem:
    return ChannelVideoItem(
        video_id=f"vid{index:03d}",
        title=f"Video {index}",
        published_text=published_text,
    )


class FakeListingProvider:
    """Serves pre-built pages; page N is reached with continuation token ``page-N``."""

    def __init__(self, pages: Sequence[Sequence[ChannelVideoItem]] = ()) -> None:
        self.pages = [list(page) for page in pages]
        self.calls: list[tuple[str, str | None]] = []
        self.failure: Exception | None = None
        self.fail_on_page: int | None = None
        self.on_page: Callable[[int], None] | None = None

    def list_page(
        self,
        channel_id: str,
        sort_order: SortOrder,
        continuation: str | None = None,
    ) -> ChannelPage:
        assert sort_order is SortOrder.NEWEST
        self.calls.append((channel_id, continuation))
        page_index = 0 if continuation is None else int(continuation.removeprefix("page-"))
        if self.on_page is not None:
            self.on_page(page_index)
        if self.failure is not None and (self.fail_on_page in (None, page_index)):
            raise self.failure
        if page_index >= len(self.pages):
            return ChannelPage(items=[])
        has_next = page_index + 1 < len(self.pages)
        return ChannelPage(
            items=list(self.pages[page_index]),
            continuation=f"page-{page_index + 1}" if has_next else None,
        )


class FakeTranscriptProvider:
    def __init__(
        self,
        transcripts: Mapping[str, str] | None = None,
        failures: Mapping[str, Exception] | None = None,
    ) -> None:
        self.transcripts = dict(transcripts or {})
        self.failures = dict(failures or {})
        self.gates: dict[str, threading.Event] = {}
        self.delay_seconds = 0.0
        self.calls: list[tuple[str, str]] = []
        self._lock = threading.Lock()

    def fetch(self, video_id: str, language: str) -> Sequence[TranscriptFragment]:
        with self._lock:
            self.calls.append((video_id, language))
        gate = self.gates.get(video_id)
        if gate is not None:
            assert gate.wait(timeout=5), f"gate for {video_id} was never opened"
        if self.delay_seconds:
            time.sleep(self.delay_seconds)
        failure = self.failures.get(video_id)
        if failure is not None:
            raise failure
        text = self.transcripts.get(video_id, f"transcript of {video_id}")
        return [TranscriptFragment(text=word) for word in text.split()]


def disabled_transcript() -> TranscriptUnavailableError:
    return TranscriptUnavailableError(TranscriptFailureReason.DISABLED, "disabled")


class RecordingSink:
    def __init__(self, close_after: int | None = None) -> None:
        self.events: list[ExtractionEvent] = []
        self._open = True
        self._close_after = close_after

    @property
    def is_open(self) -> bool:
        return self._open

    async def send(self, event: ExtractionEvent) -> None:
        assert self._open, "event written to a closed sink"
        self.events.append(event)
        if self._close_after is not None and len(self.events) >= self._close_after:
            self._open = False

    def close(self) -> None:
        self._open = False

    @property
    def types(self) -> list[str]:
        return [event.type for event in self.events]


class FakeSummarizer:
    def __init__(
        self,
        *,
        configured: bool = True,
        analysis: str = "Three recurring themes.",
        chunks: Sequence[str] = ("Three ", "recurring ", "themes."),
        failure: Exception | None = None,
    ) -> None:
        self._configured = configured
        self.analysis = analysis
        self.chunks = list(chunks)
        self.failure = failure
        self.prompts: list[str] = []

    @property
    def configured(self) -> bool:
        return self._configured

    def summarize(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.failure is not None:
            raise self.failure
        return self.analysis

    def stream(self, prompt: str) -> Iterator[str]:
        self.prompts.append(prompt)
        if self.failure is not None:
            raise self.failure
        yield from self.chunks


@pytest.fixture
def listing_provider() -> FakeListingProvider:
    return FakeListingProvider(pages=[[video_item(1), video_item(2)], [video_item(3)]])


@pytest.fixture
def transcript_provider() -> FakeTranscriptProvider:
    return FakeTranscriptProvider()


@pytest.fixture
def summarizer() -> FakeSummarizer:
    return FakeSummarizer()


@pytest.fixture
def runtime_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[Path]:
    data_dir = tmp_path / "runtime-data"
    data_dir.mkdir(parents=True, exist_ok=True)
    monkeypatch.setenv("CHANNEL_TRANSCRIPTS_DATA_DIR", str(data_dir))
    monkeypatch.setenv("CHANNEL_TRANSCRIPTS_TELEMETRY_SINK", "none")
    monkeypatch.delenv("CHANNEL_TRANSCRIPTS_OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("CHANNEL_TRANSCRIPTS_SUMMARY_STREAM", raising=False)
    reset_cached_dependencies()
    yield data_dir
    reset_cached_dependencies()


@pytest.fixture
def client(
    runtime_env: Path,
    listing_provider: FakeListingProvider,
    transcript_provider: FakeTranscriptProvider,
    summarizer: FakeSummarizer,
) -> Iterator[TestClient]:
    _ = runtime_env
    service = ExtractionService(
        listing_provider=listing_provider,
        transcript_provider=transcript_provider,
        fetch_policy=FetchPolicy.CONCURRENT,
        max_pages=50,
    )
    app = create_app()
    app.dependency_overrides[get_extraction_service] = lambda: service
    app.dependency_overrides[get_summarizer] = lambda: summarizer
    with TestClient(app) as test_client:
        yield test_client
