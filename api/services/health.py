"""
Health Classifier - a deterministic state machine over trajectory + commitments.

Rules are evaluated in priority order; the first match wins:
1. fewer than 3 points                          -> new
2. silent longer than min(3 x cadence, 90 days) -> dormant
3. overdue outbound commitment and velocity < -0.3 -> at_risk
4. velocity > 0.5 and > 2 msgs/week             -> thriving
5. velocity > 0.2, or velocity >= 0 and > 1/wk  -> strong
6. |velocity| <= 0.2                            -> stable
7. velocity < -0.5                              -> decaying
8. otherwise                                    -> cooling

The score starts at 50, moves with velocity, recency, activity and overdue
commitments, then status ceilings/floors apply and it is clamped to 0-100.
"""
from typing import Iterable

from api.services.commitments import (
    DIRECTION_OUTBOUND,
    STATUS_OVERDUE,
    Commitment,
)
from api.services.time_series import round_half_up
from api.services.trajectory import Trajectory
from config.trajectory_config import (
    AT_RISK_SCORE_CEILING,
    AT_RISK_VELOCITY,
    BASE_SCORE,
    DECAYING_VELOCITY,
    DORMANT_FREQUENCY_MULTIPLIER,
    DORMANT_MAX_DAYS,
    DORMANT_SCORE_CEILING,
    HIGH_ACTIVITY_BONUS,
    HIGH_ACTIVITY_WEEKLY,
    LOW_ACTIVITY_PENALTY,
    LOW_ACTIVITY_WEEKLY,
    MIN_POINTS_FOR_CLASSIFICATION,
    OVERDUE_COMMITMENT_PENALTY,
    OVERDUE_CONTACT_PENALTY,
    OVERDUE_RATIO,
    RECENT_CONTACT_BONUS,
    STABLE_VELOCITY_BAND,
    STRONG_MIN_WEEKLY,
    STRONG_VELOCITY,
    THRIVING_MIN_WEEKLY,
    THRIVING_SCORE_FLOOR,
    THRIVING_VELOCITY,
    VELOCITY_SCORE_CAP,
    VELOCITY_SCORE_MULTIPLIER,
    WAY_OVERDUE_CONTACT_PENALTY,
    WAY_OVERDUE_RATIO,
)

STATUS_NEW = "new"
STATUS_THRIVING = "thriving"
STATUS_STRONG = "strong"
STATUS_STABLE = "stable"
STATUS_COOLING = "cooling"
STATUS_DECAYING = "decaying"
STATUS_AT_RISK = "at_risk"
STATUS_DORMANT = "dormant"

HEALTH_STATUSES = (
    STATUS_THRIVING,
    STATUS_STRONG,
    STATUS_STABLE,
    STATUS_COOLING,
    STATUS_DECAYING,
    STATUS_AT_RISK,
    STATUS_DORMANT,
    STATUS_NEW,
)

# Statuses that represent a worsening relationship
DECLINING_STATUSES = (STATUS_COOLING, STATUS_DECAYING, STATUS_AT_RISK, STATUS_DORMANT)


def dormant_threshold_days(trajectory: Trajectory) -> float:
    """Days of silence after which a relationship counts as dormant."""
    return min(trajectory.normal_contact_frequency_days * DORMANT_FREQUENCY_MULTIPLIER, DORMANT_MAX_DAYS)


def has_overdue_outbound(commitments: Iterable[Commitment]) -> bool:
    """True if the user owes the contact something past due."""
    return any(
        c.status == STATUS_OVERDUE and c.direction == DIRECTION_OUTBOUND
        for c in commitments
    )


def determine_health_status(
    trajectory: Trajectory,
    open_commitments: list[Commitment],
) -> str:
    """Classify a relationship into one of HEALTH_STATUSES."""
    velocity = trajectory.velocity
    weekly = trajectory.avg_messages_per_week

    if trajectory.data_points < MIN_POINTS_FOR_CLASSIFICATION:
        return STATUS_NEW

    if trajectory.days_since_last_contact > dormant_threshold_days(trajectory):
        return STATUS_DORMANT

    if has_overdue_outbound(open_commitments) and velocity < AT_RISK_VELOCITY:
        return STATUS_AT_RISK

    if velocity > THRIVING_VELOCITY and weekly > THRIVING_MIN_WEEKLY:
        return STATUS_THRIVING

    if velocity > STRONG_VELOCITY or (velocity >= 0 and weekly > STRONG_MIN_WEEKLY):
        return STATUS_STRONG

    if -STABLE_VELOCITY_BAND <= velocity <= STABLE_VELOCITY_BAND:
        return STATUS_STABLE

    if velocity < DECAYING_VELOCITY:
        return STATUS_DECAYING

    return STATUS_COOLING


def calculate_health_score(
    trajectory: Trajectory,
    health_status: str,
    open_commitments: list[Commitment],
) -> int:
    """
    Numeric health (0-100) for sorting and comparison.

    Components:
    - velocity: velocity x 20, capped at +/-20
    - recency: +10 inside normal cadence, -10 past 1.5x, -20 past 2x
    - activity: +10 at >= 3 msgs/week, -10 under 0.5
    - commitments: -10 per overdue commitment
    """
    score = float(BASE_SCORE)

    velocity_impact = trajectory.velocity * VELOCITY_SCORE_MULTIPLIER
    score += max(-VELOCITY_SCORE_CAP, min(VELOCITY_SCORE_CAP, velocity_impact))

    cadence = max(trajectory.normal_contact_frequency_days, 1)
    recency_ratio = trajectory.days_since_last_contact / cadence
    if recency_ratio < 1:
        score += RECENT_CONTACT_BONUS
    elif recency_ratio > WAY_OVERDUE_RATIO:
        score -= WAY_OVERDUE_CONTACT_PENALTY
    elif recency_ratio > OVERDUE_RATIO:
        score -= OVERDUE_CONTACT_PENALTY

    if trajectory.avg_messages_per_week >= HIGH_ACTIVITY_WEEKLY:
        score += HIGH_ACTIVITY_BONUS
    elif trajectory.avg_messages_per_week < LOW_ACTIVITY_WEEKLY:
        score -= LOW_ACTIVITY_PENALTY

    overdue_count = sum(1 for c in open_commitments if c.status == STATUS_OVERDUE)
    score -= overdue_count * OVERDUE_COMMITMENT_PENALTY

    if health_status == STATUS_DORMANT:
        score = min(score, DORMANT_SCORE_CEILING)
    elif health_status == STATUS_AT_RISK:
        score = min(score, AT_RISK_SCORE_CEILING)
    elif health_status == STATUS_THRIVING:
        score = max(score, THRIVING_SCORE_FLOOR)

    return max(0, min(100, round_half_up(score)))
