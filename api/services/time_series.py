"""
Time-Series Builder - bucket one contact's messages into fixed windows.

Windows are Monday-anchored (UTC) and DEFAULT_BUCKET_DAYS wide. Every window
between the first and last message gets exactly one point; inactive windows
are zero-filled so trajectory math sees real silence instead of skipping it.

Per window:
- messages sent / received / total
- average response latency (minutes) from alternating same-thread pairs
- initiations, from the earliest message of each thread in the window

The series is always rebuilt from scratch, never patched incrementally.
"""
import math
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from api.services.messages import Message
from config.trajectory_config import (
    DEFAULT_BUCKET_DAYS,
    DEFAULT_INITIATION_RATIO,
    MAX_RESPONSE_GAP_MINUTES,
)


@dataclass(frozen=True)
class TimeSeriesPoint:
    """Activity for one contact in one window."""
    period_start: datetime
    period_end: datetime
    messages_sent: int = 0
    messages_received: int = 0
    total_messages: int = 0
    avg_response_time_minutes: Optional[int] = None
    initiated_by_you: int = 0
    initiated_by_them: int = 0
    sentiment_score: Optional[float] = None  # No sentiment source yet

    def to_dict(self) -> dict:
        """Convert to dict for JSON serialization."""
        return {
            "period_start": self.period_start.isoformat(),
            "period_end": self.period_end.isoformat(),
            "messages_sent": self.messages_sent,
            "messages_received": self.messages_received,
            "total_messages": self.total_messages,
            "avg_response_time_minutes": self.avg_response_time_minutes,
            "initiated_by_you": self.initiated_by_you,
            "initiated_by_them": self.initiated_by_them,
            "sentiment_score": self.sentiment_score,
        }


@dataclass(frozen=True)
class TimeSeriesStats:
    """Aggregate statistics over a whole series."""
    avg_messages_per_week: float
    avg_response_time_minutes: Optional[int]
    total_messages: int
    initiation_ratio: float


def round_half_up(value: float) -> int:
    """Round to nearest integer, halves away from zero for positives."""
    return int(math.floor(value + 0.5))


def days_between(a: datetime, b: datetime) -> int:
    """Whole days between two datetimes (absolute, floored)."""
    return int(abs((b - a).total_seconds()) // 86400)


def minutes_between(a: datetime, b: datetime) -> int:
    """Whole minutes between two datetimes (absolute, floored)."""
    return int(abs((b - a).total_seconds()) // 60)


def week_start(dt: datetime) -> datetime:
    """Monday 00:00 UTC of the week containing dt."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    monday = dt - timedelta(days=dt.weekday())
    return monday.replace(hour=0, minute=0, second=0, microsecond=0)


def generate_week_buckets(
    start: datetime,
    end: datetime,
    bucket_days: int = DEFAULT_BUCKET_DAYS,
) -> list[tuple[datetime, datetime]]:
    """
    Generate consecutive windows covering [start, end].

    The first window starts on the Monday on or before start. Each window's
    end is the last microsecond before the next window's start.
    """
    width = timedelta(days=bucket_days)
    current = week_start(start)
    buckets = []
    while current <= end:
        buckets.append((current, current + width - timedelta(microseconds=1)))
        current += width
    return buckets


def calculate_response_times(messages: Iterable[Message]) -> list[int]:
    """
    Response latencies in minutes between alternating messages per thread.

    Gaps of 7 days or more are not treated as replies.
    """
    by_thread: dict[str, list[Message]] = defaultdict(list)
    for message in messages:
        by_thread[message.thread_id].append(message)

    response_times: list[int] = []
    for thread_messages in by_thread.values():
        ordered = sorted(thread_messages, key=lambda m: (m.timestamp, m.id))
        for prev, curr in zip(ordered, ordered[1:]):
            if prev.is_from_user == curr.is_from_user:
                continue
            minutes = minutes_between(prev.timestamp, curr.timestamp)
            if minutes < MAX_RESPONSE_GAP_MINUTES:
                response_times.append(minutes)
    return response_times


def count_initiations(messages: Iterable[Message]) -> tuple[int, int]:
    """
    Count threads started by the user vs. the contact.

    Returns:
        (initiated_by_you, initiated_by_them)
    """
    first_by_thread: dict[str, Message] = {}
    for message in messages:
        existing = first_by_thread.get(message.thread_id)
        if existing is None or (message.timestamp, message.id) < (existing.timestamp, existing.id):
            first_by_thread[message.thread_id] = message

    by_you = sum(1 for m in first_by_thread.values() if m.is_from_user)
    return by_you, len(first_by_thread) - by_you


def _empty_point(start: datetime, end: datetime) -> TimeSeriesPoint:
    return TimeSeriesPoint(period_start=start, period_end=end)


def _build_point(start: datetime, end: datetime, messages: list[Message]) -> TimeSeriesPoint:
    if not messages:
        return _empty_point(start, end)

    sent = sum(1 for m in messages if m.is_from_user)
    received = len(messages) - sent
    response_times = calculate_response_times(messages)
    avg_response = (
        round_half_up(sum(response_times) / len(response_times))
        if response_times else None
    )
    by_you, by_them = count_initiations(messages)

    return TimeSeriesPoint(
        period_start=start,
        period_end=end,
        messages_sent=sent,
        messages_received=received,
        total_messages=sent + received,
        avg_response_time_minutes=avg_response,
        initiated_by_you=by_you,
        initiated_by_them=by_them,
    )


def build_time_series(
    messages: list[Message],
    bucket_days: int = DEFAULT_BUCKET_DAYS,
) -> list[TimeSeriesPoint]:
    """
    Build a gap-free series from one contact's messages.

    Args:
        messages: The contact's messages, any order
        bucket_days: Window width in days

    Returns:
        One point per window from the earliest to the latest message
    """
    if not messages:
        return []

    ordered = sorted(messages, key=lambda m: (m.timestamp, m.id))
    buckets = generate_week_buckets(ordered[0].timestamp, ordered[-1].timestamp, bucket_days)
    anchor = buckets[0][0]
    width_seconds = bucket_days * 86400

    by_bucket: dict[int, list[Message]] = defaultdict(list)
    for message in ordered:
        index = int((message.timestamp - anchor).total_seconds() // width_seconds)
        by_bucket[index].append(message)

    return [
        _build_point(start, end, by_bucket.get(i, []))
        for i, (start, end) in enumerate(buckets)
    ]


def fill_time_series_gaps(
    time_series: list[TimeSeriesPoint],
    start: datetime,
    end: datetime,
    bucket_days: int = DEFAULT_BUCKET_DAYS,
) -> list[TimeSeriesPoint]:
    """
    Re-lay a series onto every window between start and end.

    Existing points are kept; missing windows become zero-activity points.
    Used to extend a contact's series up to "now" so trailing silence counts.
    """
    if not time_series:
        return []

    existing = {point.period_start: point for point in time_series}
    return [
        existing.get(bucket_start) or _empty_point(bucket_start, bucket_end)
        for bucket_start, bucket_end in generate_week_buckets(start, end, bucket_days)
    ]


def calculate_time_series_stats(time_series: list[TimeSeriesPoint]) -> TimeSeriesStats:
    """Compute averages and the initiation ratio over a series."""
    if not time_series:
        return TimeSeriesStats(
            avg_messages_per_week=0.0,
            avg_response_time_minutes=None,
            total_messages=0,
            initiation_ratio=DEFAULT_INITIATION_RATIO,
        )

    total = sum(p.total_messages for p in time_series)
    latencies = [
        p.avg_response_time_minutes
        for p in time_series
        if p.avg_response_time_minutes is not None
    ]
    by_you = sum(p.initiated_by_you for p in time_series)
    by_them = sum(p.initiated_by_them for p in time_series)
    initiations = by_you + by_them

    return TimeSeriesStats(
        avg_messages_per_week=total / len(time_series),
        avg_response_time_minutes=(
            round_half_up(sum(latencies) / len(latencies)) if latencies else None
        ),
        total_messages=total,
        initiation_ratio=by_you / initiations if initiations else DEFAULT_INITIATION_RATIO,
    )
