"""
Trajectory Engine - turn a contact's time series into motion metrics.

- velocity: OLS slope of total messages per window over the last
  VELOCITY_WINDOW windows (messages/week change; + growing, - declining)
- acceleration: velocity of the second half minus velocity of the first half
- normal contact frequency: median day gap between active windows
- recency: days since the latest message, taken from the raw messages
  rather than the windowed series to avoid boundary rounding
"""
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Optional

from api.services.messages import Message
from api.services.time_series import (
    TimeSeriesPoint,
    calculate_time_series_stats,
    days_between,
)
from config.trajectory_config import (
    DEFAULT_CONTACT_FREQUENCY_DAYS,
    DEFAULT_INITIATION_RATIO,
    MAX_CONTACT_FREQUENCY_DAYS,
    MIN_CONTACT_FREQUENCY_DAYS,
    MIN_POINTS_FOR_ACCELERATION,
    VELOCITY_WINDOW,
)


@dataclass(frozen=True)
class Trajectory:
    """Derived motion metrics for one relationship."""
    time_series: list[TimeSeriesPoint] = field(default_factory=list)
    velocity: float = 0.0
    acceleration: float = 0.0
    avg_messages_per_week: float = 0.0
    avg_response_time_minutes: Optional[int] = None
    normal_contact_frequency_days: float = DEFAULT_CONTACT_FREQUENCY_DAYS
    days_since_last_contact: float = 0
    initiation_ratio: float = DEFAULT_INITIATION_RATIO

    @property
    def data_points(self) -> int:
        return len(self.time_series)

    def to_dict(self, include_series: bool = True) -> dict:
        """Convert to dict for JSON serialization."""
        data = {
            "velocity": self.velocity,
            "acceleration": self.acceleration,
            "avg_messages_per_week": round(self.avg_messages_per_week, 2),
            "avg_response_time_minutes": self.avg_response_time_minutes,
            "normal_contact_frequency_days": self.normal_contact_frequency_days,
            "days_since_last_contact": self.days_since_last_contact,
            "initiation_ratio": round(self.initiation_ratio, 3),
        }
        if include_series:
            data["time_series"] = [p.to_dict() for p in self.time_series]
        return data


def _round2(value: float) -> float:
    return math.floor(value * 100 + 0.5) / 100


def calculate_velocity(time_series: list[TimeSeriesPoint]) -> float:
    """
    Slope of messages-per-window over the most recent windows.

    Returns:
        Slope rounded to 2 decimals, or 0 with fewer than 2 windows
    """
    recent = time_series[-VELOCITY_WINDOW:]
    n = len(recent)
    if n < 2:
        return 0.0

    x_mean = (n - 1) / 2
    y_values = [p.total_messages for p in recent]
    y_mean = sum(y_values) / n

    numerator = sum((i - x_mean) * (y - y_mean) for i, y in enumerate(y_values))
    denominator = sum((i - x_mean) ** 2 for i in range(n))
    if denominator == 0:
        return 0.0

    return _round2(numerator / denominator)


def calculate_acceleration(time_series: list[TimeSeriesPoint]) -> float:
    """Second-half velocity minus first-half velocity (0 below 6 windows)."""
    if len(time_series) < MIN_POINTS_FOR_ACCELERATION:
        return 0.0

    midpoint = len(time_series) // 2
    first = calculate_velocity(time_series[:midpoint])
    second = calculate_velocity(time_series[midpoint:])
    return _round2(second - first)


def calculate_normal_contact_frequency(time_series: list[TimeSeriesPoint]) -> float:
    """
    Typical days between active windows.

    Uses the median gap (robust to one long silence), clamped to
    [MIN_CONTACT_FREQUENCY_DAYS, MAX_CONTACT_FREQUENCY_DAYS].
    """
    active = [p for p in time_series if p.total_messages > 0]
    if len(active) < 2:
        return DEFAULT_CONTACT_FREQUENCY_DAYS

    gaps = sorted(
        days_between(prev.period_start, curr.period_start)
        for prev, curr in zip(active, active[1:])
    )
    median_gap = gaps[len(gaps) // 2]
    return max(MIN_CONTACT_FREQUENCY_DAYS, min(MAX_CONTACT_FREQUENCY_DAYS, median_gap))


def calculate_days_since_last_contact(
    messages: Iterable[Message],
    now: Optional[datetime] = None,
) -> int:
    """Whole days between now and the most recent message (0 if none or in the future)."""
    timestamps = [m.timestamp for m in messages]
    if not timestamps:
        return 0
    now = now or datetime.now(timezone.utc)
    latest = max(timestamps)
    if latest >= now:
        return 0
    return days_between(latest, now)


def compute_trajectory(
    time_series: list[TimeSeriesPoint],
    messages: list[Message],
    now: Optional[datetime] = None,
) -> Trajectory:
    """
    Compute the full trajectory for one contact.

    Args:
        time_series: Gap-filled series for the contact
        messages: The contact's raw messages (for recency)
        now: Reference time for recency

    Returns:
        Trajectory (an empty default one if the series is empty)
    """
    if not time_series:
        return Trajectory()

    stats = calculate_time_series_stats(time_series)
    return Trajectory(
        time_series=list(time_series),
        velocity=calculate_velocity(time_series),
        acceleration=calculate_acceleration(time_series),
        avg_messages_per_week=stats.avg_messages_per_week,
        avg_response_time_minutes=stats.avg_response_time_minutes,
        normal_contact_frequency_days=calculate_normal_contact_frequency(time_series),
        days_since_last_contact=calculate_days_since_last_contact(messages, now),
        initiation_ratio=stats.initiation_ratio,
    )
