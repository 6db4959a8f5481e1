from __future__ import annotations

from datetime import UTC, datetime, timedelta

from backend.app.models.extraction_contracts import DateFilter
from backend.app.services.date_filter import filter_by_date, filter_cutoff, parse_published_text
from backend.app.services.video_lister import ChannelVideoItem

NOW = datetime(2024, 3, 31, 12, 0, tzinfo=UTC)


def _item(video_id: str, published_text: str | None) -> ChannelVideoItem:
    return ChannelVideoItem(video_id=video_id, title=video_id, published_text=published_text)


def test_parses_each_relative_unit() -> None:
    assert parse_published_text("5 minutes ago", now=NOW) == NOW - timedelta(minutes=5)
    assert parse_published_text("1 hour ago", now=NOW) == NOW - timedelta(hours=1)
    assert parse_published_text("3 days ago", now=NOW) == NOW - timedelta(days=3)
    assert parse_published_text("2 weeks ago", now=NOW) == NOW - timedelta(days=14)
    assert parse_published_text("1 month ago", now=NOW) == datetime(2024, 2, 29, 12, 0, tzinfo=UTC)
    assert parse_published_text("2 years ago", now=NOW) == datetime(2022, 3, 31, 12, 0, tzinfo=UTC)


def test_parse_is_case_insensitive_and_tolerates_prefixes() -> None:
    assert parse_published_text("Streamed 2 Days Ago", now=NOW) == NOW - timedelta(days=2)


def test_unparseable_labels_yield_none() -> None:
    assert parse_published_text(None, now=NOW) is None
    assert parse_published_text("", now=NOW) is None
    assert parse_published_text("hace 2 días", now=NOW) is None
    assert parse_published_text("Premieres tomorrow", now=NOW) is None


def test_filter_cutoff() -> None:
    assert filter_cutoff(DateFilter.ALL, now=NOW) is None
    assert filter_cutoff(DateFilter.LAST_MONTH, now=NOW) == datetime(2024, 2, 29, 12, 0, tzinfo=UTC)
    assert filter_cutoff(DateFilter.LAST_YEAR, now=NOW) == datetime(2023, 3, 31, 12, 0, tzinfo=UTC)


def test_all_keeps_every_item_including_unlabelled() -> None:
    items = [_item("a", None), _item("b", "10 years ago"), _item("c", "garbage")]
    assert filter_by_date(items, DateFilter.ALL, now=NOW) == items


def test_last_month_keeps_recent_items_in_order_and_drops_unparseable() -> None:
    items = [
        _item("recent", "3 days ago"),
        _item("unlabelled", None),
        _item("boundary", "1 month ago"),
        _item("old", "2 months ago"),
        _item("weeks", "4 weeks ago"),
        _item("spanish", "hace 1 día"),
    ]
    kept = filter_by_date(items, DateFilter.LAST_MONTH, now=NOW)
    assert [item.video_id for item in kept] == ["recent", "boundary", "weeks"]


def test_last_year_filter() -> None:
    items = [
        _item("months", "11 months ago"),
        _item("year", "1 year ago"),
        _item("two-years", "2 years ago"),
    ]
    kept = filter_by_date(items, DateFilter.LAST_YEAR, now=NOW)
    assert [item.video_id for item in kept] == ["months", "year"]
