"""
Relationship alerts derived from a RelationshipMap.

Alert types:
- at_risk: relationship classified at_risk (urgent)
- decaying: relationship classified decaying (warning)
- overdue_commitment: one per overdue promise the user made (urgent)
- going_dormant: dormant within GOING_DORMANT_ALERT_DAYS and not yet dormant (warning)

Alerts are derived on demand and carry no delivery state beyond dismissed_at.
"""
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from api.services.commitments import DIRECTION_OUTBOUND
from api.services.health import STATUS_AT_RISK, STATUS_DECAYING, STATUS_DORMANT
from api.services.relationship_extractor import Relationship, RelationshipMap
from config.trajectory_config import GOING_DORMANT_ALERT_DAYS

ALERT_AT_RISK = "at_risk"
ALERT_DECAYING = "decaying"
ALERT_OVERDUE_COMMITMENT = "overdue_commitment"
ALERT_GOING_DORMANT = "going_dormant"

SEVERITY_INFO = "info"
SEVERITY_WARNING = "warning"
SEVERITY_URGENT = "urgent"

_SEVERITY_ORDER = {SEVERITY_URGENT: 0, SEVERITY_WARNING: 1, SEVERITY_INFO: 2}
_ALERT_NAMESPACE = uuid.UUID("c2a84f1e-6d37-4b9a-b5e0-71f3d9a2c864")


@dataclass(frozen=True)
class RelationshipAlert:
    """A single actionable signal about one relationship."""
    id: str
    relationship_id: str
    contact_email: str
    alert_type: str
    severity: str
    title: str
    description: str
    recommendation: str
    created_at: datetime
    suggested_message_draft: Optional[str] = None
    dismissed_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        """Convert to dict for JSON serialization."""
        return {
            "id": self.id,
            "relationship_id": self.relationship_id,
            "contact_email": self.contact_email,
            "alert_type": self.alert_type,
            "severity": self.severity,
            "title": self.title,
            "description": self.description,
            "recommendation": self.recommendation,
            "suggested_message_draft": self.suggested_message_draft,
            "created_at": self.created_at.isoformat(),
            "dismissed_at": self.dismissed_at.isoformat() if self.dismissed_at else None,
        }


def _display_name(relationship: Relationship) -> str:
    return relationship.contact.name or relationship.contact.email


def _make_alert(
    relationship: Relationship,
    alert_type: str,
    severity: str,
    title: str,
    description: str,
    created_at: datetime,
    key: str = "",
) -> RelationshipAlert:
    return RelationshipAlert(
        id=str(uuid.uuid5(_ALERT_NAMESPACE, f"{relationship.id}:{alert_type}:{key}")),
        relationship_id=relationship.id,
        contact_email=relationship.contact.email,
        alert_type=alert_type,
        severity=severity,
        title=title,
        description=description,
        recommendation=relationship.prediction.recommendation,
        created_at=created_at,
    )


def alerts_for_relationship(relationship: Relationship, now: datetime) -> list[RelationshipAlert]:
    """Alerts for one relationship, in type order."""
    alerts = []
    name = _display_name(relationship)
    trajectory = relationship.trajectory

    if relationship.health_status == STATUS_AT_RISK:
        alerts.append(_make_alert(
            relationship, ALERT_AT_RISK, SEVERITY_URGENT,
            title=f"Relationship with {name} is at risk",
            description=(
                f"Engagement is falling (velocity {trajectory.velocity:+.2f} msgs/week) "
                f"and you have overdue commitments to {name}."
            ),
            created_at=now,
        ))
    elif relationship.health_status == STATUS_DECAYING:
        alerts.append(_make_alert(
            relationship, ALERT_DECAYING, SEVERITY_WARNING,
            title=f"Relationship with {name} is decaying",
            description=(
                f"Message volume is dropping (velocity {trajectory.velocity:+.2f} msgs/week). "
                f"Last contact was {trajectory.days_since_last_contact} days ago."
            ),
            created_at=now,
        ))

    for commitment in relationship.open_commitments:
        if not (commitment.is_overdue and commitment.direction == DIRECTION_OUTBOUND):
            continue
        due = commitment.due_date.date().isoformat() if commitment.due_date else "an earlier date"
        alerts.append(_make_alert(
            relationship, ALERT_OVERDUE_COMMITMENT, SEVERITY_URGENT,
            title=f"Overdue commitment to {name}",
            description=f'You promised "{commitment.commitment_text}" (due {due}).',
            created_at=now,
            key=commitment.id,
        ))

    days_until_dormant = relationship.days_until_dormant
    if (
        days_until_dormant is not None
        and days_until_dormant <= GOING_DORMANT_ALERT_DAYS
        and relationship.health_status != STATUS_DORMANT
    ):
        alerts.append(_make_alert(
            relationship, ALERT_GOING_DORMANT, SEVERITY_WARNING,
            title=f"{name} is going quiet",
            description=(
                f"At the current pace this relationship goes dormant in "
                f"{days_until_dormant} days."
            ),
            created_at=now,
        ))

    return alerts


def build_alerts(
    relationship_map: RelationshipMap,
    now: Optional[datetime] = None,
) -> list[RelationshipAlert]:
    """
    Derive alerts from a map.

    Args:
        relationship_map: Output of an extraction run
        now: created_at for the alerts (default: the map's computed_at)

    Returns:
        Alerts ordered by severity, then by the map's relationship order
    """
    now = now or relationship_map.computed_at
    alerts = []
    for relationship in relationship_map.relationships:
        alerts.extend(alerts_for_relationship(relationship, now))
    return sorted(alerts, key=lambda a: _SEVERITY_ORDER.get(a.severity, len(_SEVERITY_ORDER)))
