"""Date filtering over YouTube's relative publish labels.

YouTube's listing only exposes labels such as ``"3 weeks ago"``, so every
computed publish time is an approximation: a label's precision is its unit
("1 year ago" may be anywhere between 12 and 23 months old). Items whose label
is missing or does not match the grammar are dropped by any filter other than
``all``.
"""

from __future__ import annotations

import calendar
import re
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta

from backend.app.models.extraction_contracts import DateFilter
from backend.app.services.video_lister import ChannelVideoItem

RELATIVE_TIME_PATTERN = re.compile(
    r"(\d+)\s+(year|month|week|day|hour|minute)s?\s+ago",
    re.IGNORECASE,
)


def parse_published_text(published_text: str | None, *, now: datetime) -> datetime | None:
    if not published_text:
        return None
    match = RELATIVE_TIME_PATTERN.search(published_text)
    if match is None:
        return None

    quantity = int(match.group(1))
    unit = match.group(2).lower()
    if unit == "year":
        return _shift_months(now, -12 * quantity)
    if unit == "month":
        return _shift_months(now, -quantity)
    if unit == "week":
        return now - timedelta(days=7 * quantity)
    if unit == "day":
        return now - timedelta(days=quantity)
    if unit == "hour":
        return now - timedelta(hours=quantity)
    return now - timedelta(minutes=quantity)


def filter_cutoff(date_filter: DateFilter, *, now: datetime) -> datetime | None:
    if date_filter is DateFilter.LAST_MONTH:
        return _shift_months(now, -1)
    if date_filter is DateFilter.LAST_YEAR:
        return _shift_months(now, -12)
    return None


def filter_by_date(
    items: Sequence[ChannelVideoItem],
    date_filter: DateFilter,
    *,
    now: datetime | None = None,
) -> list[ChannelVideoItem]:
    if date_filter is DateFilter.ALL:
        return list(items)

    reference_now = now or datetime.now(UTC)
    cutoff = filter_cutoff(date_filter, now=reference_now)
    assert cutoff is not None

    kept: list[ChannelVideoItem] = []
    for item in items:
        published_at = parse_published_text(item.published_text, now=reference_now)
        if published_at is not None and published_at >= cutoff:
            kept.append(item)
    return kept


def _shift_months(moment: datetime, months: int) -> datetime:
    month_index = moment.year * 12 + (moment.month - 1) + months
    year, month_zero_based = divmod(month_index, 12)
    month = month_zero_based + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)
