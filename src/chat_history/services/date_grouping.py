from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import UTC, date, datetime, timedelta
from typing import TypeVar

T = TypeVar("T")


def to_utc_datetime(timestamp_ms: int) -> datetime:
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=UTC)


def utc_date_key(timestamp_ms: int) -> str:
    return to_utc_datetime(timestamp_ms).date().isoformat()


def format_time(timestamp_ms: int) -> str:
    return to_utc_datetime(timestamp_ms).strftime("%H:%M")


def format_timestamp(timestamp_ms: int) -> str:
    return to_utc_datetime(timestamp_ms).strftime("%Y-%m-%d %H:%M")


def format_day_label(date_key: str, today: date | None = None) -> str:
    today = today or datetime.now(UTC).date()
    day = date.fromisoformat(date_key)
    if day == today:
        return "Today"
    if day == today - timedelta(days=1):
        return "Yesterday"
    return f"{day:%A, %B} {day.day}, {day.year}"


def group_by_date(items: Iterable[T], created_at: Callable[[T], int]) -> list[tuple[str, list[T]]]:
    """Group items by UTC calendar date, newest date first and newest item first within a date."""
    grouped: dict[str, list[T]] = {}
    for item in items:
        grouped.setdefault(utc_date_key(created_at(item)), []).append(item)
    return [
        (key, sorted(grouped[key], key=created_at, reverse=True))
        for key in sorted(grouped, reverse=True)
    ]
