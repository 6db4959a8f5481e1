from __future__ import annotations

import asyncio
import json
import logging
import re
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Protocol
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from backend.app.models.extraction_contracts import VideoRef
from backend.app.services.errors import ExtractionCancelled, ListingError, NoVideosFound

LOGGER = logging.getLogger("channel_transcripts.listing")

MAX_LISTING_PAGES = 50
INNERTUBE_BASE_URL = "https://www.youtube.com/youtubei/v1"
INNERTUBE_CLIENT_VERSION = "2.20240726.00.00"
# Protobuf-encoded selector for a channel's "Videos" tab, newest first.
INNERTUBE_VIDEOS_TAB_PARAMS = "EgZ2aWRlb3PyBgQKAjoA"
CHANNEL_ID_PATTERN = re.compile(r"^UC[0-9A-Za-z_-]{22}$")


class SortOrder(StrEnum):
    NEWEST = "newest"


@dataclass(frozen=True)
class ChannelVideoItem:
    video_id: str
    title: str
    published_text: str | None = None


@dataclass(frozen=True)
class ChannelPage:
    items: list[ChannelVideoItem]
    continuation: str | None = None


class ChannelListingProvider(Protocol):
    def list_page(
        self,
        channel_id: str,
        sort_order: SortOrder,
        continuation: str | None = None,
    ) -> ChannelPage:
        ...


class ListingProviderError(ListingError):
    pass


class ChannelNotFoundError(ListingProviderError):
    pass


async def list_channel_videos(
    provider: ChannelListingProvider,
    channel_id: str,
    *,
    max_pages: int = MAX_LISTING_PAGES,
    is_cancelled: Callable[[], bool] | None = None,
) -> list[ChannelVideoItem]:
    """Collect a channel's videos, newest first, following continuation tokens.

    Stops when the provider returns no continuation or after ``max_pages``
    pages; hitting the ceiling truncates the result without an error.
    """
    try:
        first_page = await asyncio.to_thread(
            provider.list_page, channel_id, SortOrder.NEWEST, None
        )
    except ListingError:
        raise
    except Exception as exc:
        raise ListingError(f"Failed to fetch the video list for {channel_id!r}: {exc}") from exc

    items = list(first_page.items)
    continuation = first_page.continuation
    pages_loaded = 1

    while continuation and pages_loaded < max_pages:
        if is_cancelled is not None and is_cancelled():
            raise ExtractionCancelled()
        try:
            page = await asyncio.to_thread(
                provider.list_page, channel_id, SortOrder.NEWEST, continuation
            )
        except ListingError:
            raise
        except Exception as exc:
            raise ListingError(
                f"Failed to fetch page {pages_loaded + 1} of the video list for "
                f"{channel_id!r}: {exc}"
            ) from exc
        items.extend(page.items)
        continuation = page.continuation
        pages_loaded += 1

    if continuation:
        LOGGER.warning(
            "channel listing truncated channel_id=%s pages=%s items=%s",
            channel_id,
            pages_loaded,
            len(items),
        )
    else:
        LOGGER.info(
            "channel listing complete channel_id=%s pages=%s items=%s",
            channel_id,
            pages_loaded,
            len(items),
        )

    if not items:
        raise NoVideosFound(channel_id)
    return items


def to_video_refs(items: Sequence[ChannelVideoItem]) -> list[VideoRef]:
    return [
        VideoRef.from_video_id(item.video_id, item.title)
        for item in items
        if item.video_id
    ]


class InnertubeChannelListingProvider:
    """Pages through a channel's Videos tab via YouTube's public `youtubei/v1` API."""

    def __init__(
        self,
        *,
        timeout_seconds: float = 20.0,
        user_agent: str = "channel-transcripts/0.1",
        base_url: str = INNERTUBE_BASE_URL,
        language: str = "en",
    ) -> None:
        self._timeout_seconds = max(1.0, timeout_seconds)
        self._user_agent = user_agent
        self._base_url = base_url.rstrip("/")
        # Relative publish labels ("3 weeks ago") are only parseable in English.
        self._language = language
        self._browse_ids: dict[str, str] = {}

    def list_page(
        self,
        channel_id: str,
        sort_order: SortOrder,
        continuation: str | None = None,
    ) -> ChannelPage:
        if sort_order is not SortOrder.NEWEST:
            raise ListingProviderError(f"Unsupported sort order: {sort_order}")

        if continuation is None:
            payload = self._post(
                "browse",
                {
                    "browseId": self._resolve_browse_id(channel_id),
                    "params": INNERTUBE_VIDEOS_TAB_PARAMS,
                },
            )
        else:
            payload = self._post("browse", {"continuation": continuation})
        return _parse_browse_page(payload)

    def _resolve_browse_id(self, channel_id: str) -> str:
        if CHANNEL_ID_PATTERN.match(channel_id):
            return channel_id
        cached = self._browse_ids.get(channel_id)
        if cached is not None:
            return cached

        for candidate_url in _candidate_channel_urls(channel_id):
            payload = self._post("navigation/resolve_url", {"url": candidate_url})
            browse_id = _as_dict(_as_dict(payload.get("endpoint")).get("browseEndpoint")).get(
                "browseId"
            )
            if isinstance(browse_id, str) and CHANNEL_ID_PATTERN.match(browse_id):
                LOGGER.debug(
                    "channel resolved channel_id=%s url=%s browse_id=%s",
                    channel_id,
                    candidate_url,
                    browse_id,
                )
                self._browse_ids[channel_id] = browse_id
                return browse_id
        raise ChannelNotFoundError(f"Channel not found: {channel_id!r}")

    def _post(self, endpoint: str, body: dict[str, Any]) -> dict[str, Any]:
        request_body = {
            "context": {
                "client": {
                    "clientName": "WEB",
                    "clientVersion": INNERTUBE_CLIENT_VERSION,
                    "hl": self._language,
                    "gl": "US",
                }
            },
            **body,
        }
        request = Request(
            f"{self._base_url}/{endpoint}?prettyPrint=false",
            data=json.dumps(request_body).encode("utf-8"),
            headers={
                "content-type": "application/json",
                "accept": "application/json",
                "user-agent": self._user_agent,
            },
            method="POST",
        )
        try:
            with urlopen(request, timeout=self._timeout_seconds) as response:
                raw_body = response.read().decode("utf-8", errors="replace")
        except HTTPError as exc:
            if exc.code == 404:
                return {}
            raise ListingProviderError(
                f"YouTube {endpoint} request failed with HTTP {exc.code}"
            ) from exc
        except (URLError, TimeoutError, OSError) as exc:
            raise ListingProviderError(f"YouTube {endpoint} request failed: {exc}") from exc

        try:
            return _as_dict(json.loads(raw_body))
        except json.JSONDecodeError as exc:
            raise ListingProviderError(f"YouTube {endpoint} returned invalid JSON") from exc


def _candidate_channel_urls(channel_id: str) -> list[str]:
    if channel_id.startswith("@") or channel_id.startswith("c/"):
        return [f"https://www.youtube.com/{channel_id}"]
    return [
        f"https://www.youtube.com/@{channel_id}",
        f"https://www.youtube.com/user/{channel_id}",
        f"https://www.youtube.com/c/{channel_id}",
    ]


def _parse_browse_page(payload: dict[str, Any]) -> ChannelPage:
    items: list[ChannelVideoItem] = []
    continuation: str | None = None
    for node in _walk_dicts(payload):
        renderer = node.get("videoRenderer")
        if isinstance(renderer, dict):
            item = _video_item_from_renderer(renderer)
            if item is not None:
                items.append(item)
            continue
        continuation_renderer = node.get("continuationItemRenderer")
        if isinstance(continuation_renderer, dict):
            token = (
                _as_dict(
                    _as_dict(continuation_renderer.get("continuationEndpoint")).get(
                        "continuationCommand"
                    )
                ).get("token")
            )
            if isinstance(token, str) and token:
                continuation = token
    return ChannelPage(items=items, continuation=continuation)


def _walk_dicts(node: Any) -> Iterator[dict[str, Any]]:
    if isinstance(node, dict):
        yield node
        for value in node.values():
            yield from _walk_dicts(value)
    elif isinstance(node, list):
        for value in node:
            yield from _walk_dicts(value)


def _video_item_from_renderer(renderer: dict[str, Any]) -> ChannelVideoItem | None:
    video_id = renderer.get("videoId")
    if not isinstance(video_id, str) or not video_id:
        return None
    return ChannelVideoItem(
        video_id=video_id,
        title=_text_of(renderer.get("title")) or "",
        published_text=_text_of(renderer.get("publishedTimeText")),
    )


def _text_of(value: Any) -> str | None:
    text_node = _as_dict(value)
    simple_text = text_node.get("simpleText")
    if isinstance(simple_text, str):
        return simple_text
    runs = text_node.get("runs")
    if isinstance(runs, list):
        joined = "".join(
            run["text"] for run in runs if isinstance(run, dict) and isinstance(run.get("text"), str)
        )
        return joined or None
    return None


def _as_dict(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        return value
    return {}
