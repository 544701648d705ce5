"""
Predictor - project a relationship's health forward in time.

The projection is linear: the weekly message rate moves by velocity per week
(floored at 0) and days-since-contact grows one per day, assuming no new
messages. The Health Classifier is re-run on the projected trajectory with
commitments held fixed.

days_until_status_change is found by binary search over day offsets. The
classifier is not guaranteed monotonic in the offset, so the search returns
the first deviation it lands on, which may not be the earliest one. This is
an accepted approximation.
"""
import math
from dataclasses import dataclass, replace
from typing import Optional

from api.services.commitments import DIRECTION_OUTBOUND, Commitment
from api.services.health import (
    DECLINING_STATUSES,
    STATUS_AT_RISK,
    STATUS_COOLING,
    STATUS_DECAYING,
    STATUS_DORMANT,
    STATUS_NEW,
    STATUS_STABLE,
    STATUS_STRONG,
    STATUS_THRIVING,
    determine_health_status,
    dormant_threshold_days,
    has_overdue_outbound,
)
from api.services.trajectory import Trajectory
from config.trajectory_config import (
    CONFIDENCE_POINTS_TARGET,
    DEFAULT_PREDICTION_DAYS,
    HIGH_URGENCY_DORMANT_DAYS,
    MAX_PREDICTION_CONFIDENCE,
    MEDIUM_URGENCY_DORMANT_DAYS,
    MIN_PREDICTION_CONFIDENCE,
)

URGENCY_CRITICAL = "critical"
URGENCY_HIGH = "high"
URGENCY_MEDIUM = "medium"
URGENCY_LOW = "low"
URGENCY_NONE = "none"

_RECOMMENDATIONS = {
    STATUS_AT_RISK: "This relationship needs immediate attention. Reach out with a personal message.",
    STATUS_DECAYING: "This relationship is declining. Consider scheduling a catch-up or sending a quick check-in.",
    STATUS_COOLING: "Interaction frequency is slowing down. A quick message could help maintain momentum.",
    STATUS_DORMANT: "This relationship has gone quiet. Decide: reconnect intentionally or acknowledge the natural drift.",
    STATUS_STABLE: "Relationship is healthy. Continue current engagement pattern.",
    STATUS_STRONG: "Strong relationship. Keep nurturing it with consistent engagement.",
    STATUS_THRIVING: "Excellent relationship health! Your engagement is paying off.",
    STATUS_NEW: "New connection. Regular engagement will help establish the relationship.",
}
_STABLE_TRENDING_DOWN = "Currently stable, but trending downward. Stay engaged to maintain the connection."
_DEFAULT_RECOMMENDATION = "Monitor this relationship and maintain regular contact."


@dataclass(frozen=True)
class Prediction:
    """Forward-looking view of one relationship."""
    current_status: str
    predicted_status: str
    days_until_status_change: Optional[int]
    days_until_dormant: Optional[int]
    confidence: float
    recommendation: str
    urgency: str
    horizon_days: int = DEFAULT_PREDICTION_DAYS

    def to_dict(self) -> dict:
        """Convert to dict for JSON serialization."""
        return {
            "current_status": self.current_status,
            "predicted_status": self.predicted_status,
            "days_until_status_change": self.days_until_status_change,
            "days_until_dormant": self.days_until_dormant,
            "confidence": self.confidence,
            "recommendation": self.recommendation,
            "urgency": self.urgency,
            "horizon_days": self.horizon_days,
        }


def project_trajectory(trajectory: Trajectory, days_ahead: int) -> Trajectory:
    """Trajectory as it would look after `days_ahead` days of silence."""
    projected_rate = max(
        0.0,
        trajectory.avg_messages_per_week + trajectory.velocity * (days_ahead / 7),
    )
    return replace(
        trajectory,
        avg_messages_per_week=projected_rate,
        days_since_last_contact=trajectory.days_since_last_contact + days_ahead,
    )


def find_status_change_point(
    trajectory: Trajectory,
    open_commitments: list[Commitment],
    current_status: str,
    max_days: int,
) -> Optional[int]:
    """
    Binary search for the smallest day offset in [1, max_days] whose
    projected status differs from current_status.

    Returns:
        Day offset, or None if the probe it settles on does not differ
    """
    if max_days < 1:
        return None

    low, high = 1, max_days
    while low < high:
        mid = (low + high) // 2
        status = determine_health_status(project_trajectory(trajectory, mid), open_commitments)
        if status != current_status:
            high = mid
        else:
            low = mid + 1

    final = determine_health_status(project_trajectory(trajectory, low), open_commitments)
    return low if final != current_status else None


def calculate_days_until_dormant(trajectory: Trajectory) -> Optional[int]:
    """
    Days left before silence crosses the dormant threshold.

    Returns:
        None when not declining (velocity >= 0), 0 when already past it
    """
    if trajectory.velocity >= 0:
        return None
    remaining = dormant_threshold_days(trajectory) - trajectory.days_since_last_contact
    if remaining <= 0:
        return 0
    return int(math.floor(remaining + 0.5))


def calculate_confidence(trajectory: Trajectory) -> float:
    """More history, more confidence (0.3 - 0.95)."""
    raw = trajectory.data_points / CONFIDENCE_POINTS_TARGET
    return max(MIN_PREDICTION_CONFIDENCE, min(MAX_PREDICTION_CONFIDENCE, raw))


def generate_recommendation(
    current_status: str,
    predicted_status: str,
    open_commitments: list[Commitment],
) -> str:
    """Pick the recommendation text for a status / commitment combination."""
    overdue_outbound = [
        c for c in open_commitments
        if c.is_overdue and c.direction == DIRECTION_OUTBOUND
    ]
    if overdue_outbound:
        return (
            f"You have {len(overdue_outbound)} overdue commitment(s). "
            "Address these to restore trust."
        )

    if current_status == STATUS_STABLE and predicted_status in (STATUS_COOLING, STATUS_DECAYING):
        return _STABLE_TRENDING_DOWN

    return _RECOMMENDATIONS.get(current_status, _DEFAULT_RECOMMENDATION)


def determine_urgency(
    current_status: str,
    predicted_status: str,
    days_until_dormant: Optional[int],
    open_commitments: list[Commitment],
) -> str:
    """Map status, dormancy countdown and overdue promises to an urgency level."""
    has_overdue = has_overdue_outbound(open_commitments)

    if current_status == STATUS_AT_RISK or (has_overdue and current_status == STATUS_DECAYING):
        return URGENCY_CRITICAL

    if current_status == STATUS_DECAYING or (
        days_until_dormant is not None and days_until_dormant < HIGH_URGENCY_DORMANT_DAYS
    ):
        return URGENCY_HIGH

    if current_status == STATUS_COOLING or (
        days_until_dormant is not None and days_until_dormant < MEDIUM_URGENCY_DORMANT_DAYS
    ):
        return URGENCY_MEDIUM

    if predicted_status != current_status and predicted_status in DECLINING_STATUSES:
        return URGENCY_LOW

    return URGENCY_NONE


def predict_relationship_state(
    trajectory: Trajectory,
    open_commitments: list[Commitment],
    days_from_now: int = DEFAULT_PREDICTION_DAYS,
) -> Prediction:
    """
    Predict where a relationship will be in `days_from_now` days.

    Args:
        trajectory: Current trajectory
        open_commitments: Pending/overdue commitments (held fixed)
        days_from_now: Prediction horizon

    Returns:
        Prediction with statuses, countdowns, urgency and recommendation
    """
    current_status = determine_health_status(trajectory, open_commitments)
    predicted_status = determine_health_status(
        project_trajectory(trajectory, days_from_now),
        open_commitments,
    )

    days_until_status_change = None
    if predicted_status != current_status:
        days_until_status_change = find_status_change_point(
            trajectory, open_commitments, current_status, days_from_now
        )

    days_until_dormant = calculate_days_until_dormant(trajectory)

    return Prediction(
        current_status=current_status,
        predicted_status=predicted_status,
        days_until_status_change=days_until_status_change,
        days_until_dormant=days_until_dormant,
        confidence=calculate_confidence(trajectory),
        recommendation=generate_recommendation(current_status, predicted_status, open_commitments),
        urgency=determine_urgency(current_status, predicted_status, days_until_dormant, open_commitments),
        horizon_days=days_from_now,
    )
