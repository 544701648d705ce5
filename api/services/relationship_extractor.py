"""
Relationship Extractor - build a RelationshipMap from a user's messages.

Pipeline per contact (contacts are independent and run in bounded batches):
1. Group messages by contact, drop contacts under the message threshold
2. Time series (gap-filled through "now") -> trajectory
3. Commitments from recent messages via the oracle, then fulfillment re-check
4. Health status + score
5. Prediction over the configured horizon

The Aggregator then sorts relationships (lowest health first), splits them
into buckets and computes map-level statistics. Each run produces a new
immutable snapshot; nothing from a previous map is patched.
"""
import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Optional

from api.services.commitments import (
    Commitment,
    CommitmentExtractor,
    get_open_commitments,
    update_commitment_statuses,
)
from api.services.contacts import Person, group_messages_by_contact, resolve_contact_person
from api.services.health import (
    HEALTH_STATUSES,
    STATUS_AT_RISK,
    STATUS_COOLING,
    STATUS_DECAYING,
    STATUS_DORMANT,
    STATUS_STABLE,
    STATUS_STRONG,
    STATUS_THRIVING,
    calculate_health_score,
    determine_health_status,
)
from api.services.messages import Message, _make_aware, parse_messages
from api.services.oracle import CommitmentOracle
from api.services.prediction import Prediction, predict_relationship_state
from api.services.time_series import build_time_series, fill_time_series_gaps, round_half_up
from api.services.trajectory import Trajectory, compute_trajectory
from config.extraction_config import ExtractionConfig, get_default_config
from config.trajectory_config import TREND_VELOCITY_THRESHOLD

logger = logging.getLogger(__name__)

_RELATIONSHIP_NAMESPACE = uuid.UUID("9d3c1e7a-4b2f-4f60-8a15-6c0e2b7d4a91")


@dataclass(frozen=True)
class Relationship:
    """Everything known about one (user, contact) pair in one run."""
    id: str
    user_id: str
    contact: Person
    trajectory: Trajectory
    commitments: list[Commitment]
    open_commitments: list[Commitment]
    health_status: str
    health_score: int
    prediction: Prediction
    first_interaction: datetime
    last_interaction: datetime
    total_messages: int
    computed_at: datetime

    @property
    def predicted_status(self) -> str:
        return self.prediction.predicted_status

    @property
    def days_until_dormant(self) -> Optional[int]:
        return self.prediction.days_until_dormant

    def to_dict(self, include_series: bool = True) -> dict:
        """Convert to dict for JSON serialization."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "contact": self.contact.to_dict(),
            "trajectory": self.trajectory.to_dict(include_series=include_series),
            "commitments": [c.to_dict() for c in self.commitments],
            "open_commitments": [c.to_dict() for c in self.open_commitments],
            "health_status": self.health_status,
            "health_score": self.health_score,
            "predicted_status": self.predicted_status,
            "days_until_dormant": self.days_until_dormant,
            "prediction": self.prediction.to_dict(),
            "first_interaction": self.first_interaction.isoformat(),
            "last_interaction": self.last_interaction.isoformat(),
            "total_messages": self.total_messages,
            "computed_at": self.computed_at.isoformat(),
        }


@dataclass(frozen=True)
class RelationshipStats:
    """Aggregate statistics over a RelationshipMap."""
    total_relationships: int = 0
    active_relationships: int = 0
    health_breakdown: dict[str, int] = field(
        default_factory=lambda: {status: 0 for status in HEALTH_STATUSES}
    )
    total_open_commitments: int = 0
    overdue_commitments: int = 0
    avg_response_time_minutes: int = 0
    avg_messages_per_week: float = 0.0
    relationships_growing: int = 0
    relationships_decaying: int = 0

    def to_dict(self) -> dict:
        """Convert to dict for JSON serialization."""
        return {
            "total_relationships": self.total_relationships,
            "active_relationships": self.active_relationships,
            "health_breakdown": dict(self.health_breakdown),
            "total_open_commitments": self.total_open_commitments,
            "overdue_commitments": self.overdue_commitments,
            "avg_response_time_minutes": self.avg_response_time_minutes,
            "avg_messages_per_week": self.avg_messages_per_week,
            "relationships_growing": self.relationships_growing,
            "relationships_decaying": self.relationships_decaying,
        }


@dataclass(frozen=True)
class RelationshipMap:
    """All of a user's relationships for one run, bucketed by health."""
    user_id: str
    relationships: list[Relationship]
    thriving: list[Relationship]
    strong: list[Relationship]
    stable: list[Relationship]
    at_risk: list[Relationship]
    decaying: list[Relationship]
    dormant: list[Relationship]
    stats: RelationshipStats
    computed_at: datetime

    def get(self, contact_email: str) -> Optional[Relationship]:
        """Find a relationship by contact address."""
        contact_email = contact_email.lower()
        for relationship in self.relationships:
            if relationship.contact.email == contact_email:
                return relationship
        return None

    def to_dict(self, include_series: bool = True) -> dict:
        """
        Convert to dict for JSON serialization.

        Buckets are emitted as lists of contact emails; full records live
        under "relationships".
        """
        return {
            "user_id": self.user_id,
            "relationships": [r.to_dict(include_series=include_series) for r in self.relationships],
            "thriving": [r.contact.email for r in self.thriving],
            "strong": [r.contact.email for r in self.strong],
            "stable": [r.contact.email for r in self.stable],
            "at_risk": [r.contact.email for r in self.at_risk],
            "decaying": [r.contact.email for r in self.decaying],
            "dormant": [r.contact.email for r in self.dormant],
            "stats": self.stats.to_dict(),
            "computed_at": self.computed_at.isoformat(),
        }


# =============================================================================
# Aggregation
# =============================================================================

def sort_relationships(relationships: Iterable[Relationship]) -> list[Relationship]:
    """Lowest health score first; ties broken by contact email."""
    return sorted(relationships, key=lambda r: (r.health_score, r.contact.email))


def calculate_stats(relationships: list[Relationship]) -> RelationshipStats:
    """Compute map-level statistics."""
    if not relationships:
        return RelationshipStats()

    breakdown = {status: 0 for status in HEALTH_STATUSES}
    for relationship in relationships:
        breakdown[relationship.health_status] = breakdown.get(relationship.health_status, 0) + 1

    open_commitments = [c for r in relationships for c in r.open_commitments]
    latencies = [
        r.trajectory.avg_response_time_minutes
        for r in relationships
        if r.trajectory.avg_response_time_minutes is not None
    ]
    weekly = sum(r.trajectory.avg_messages_per_week for r in relationships) / len(relationships)

    return RelationshipStats(
        total_relationships=len(relationships),
        active_relationships=sum(1 for r in relationships if r.health_status != STATUS_DORMANT),
        health_breakdown=breakdown,
        total_open_commitments=len(open_commitments),
        overdue_commitments=sum(1 for c in open_commitments if c.is_overdue),
        avg_response_time_minutes=round_half_up(sum(latencies) / len(latencies)) if latencies else 0,
        avg_messages_per_week=round_half_up(weekly * 10) / 10,
        relationships_growing=sum(
            1 for r in relationships if r.trajectory.velocity > TREND_VELOCITY_THRESHOLD
        ),
        relationships_decaying=sum(
            1 for r in relationships if r.trajectory.velocity < -TREND_VELOCITY_THRESHOLD
        ),
    )


def build_relationship_map(
    user_id: str,
    relationships: Iterable[Relationship],
    computed_at: datetime,
) -> RelationshipMap:
    """Sort, bucket and summarize relationships into a map."""
    ordered = sort_relationships(relationships)

    def bucket(*statuses: str) -> list[Relationship]:
        return [r for r in ordered if r.health_status in statuses]

    return RelationshipMap(
        user_id=user_id,
        relationships=ordered,
        thriving=bucket(STATUS_THRIVING),
        strong=bucket(STATUS_STRONG),
        stable=bucket(STATUS_STABLE, STATUS_COOLING),
        at_risk=bucket(STATUS_AT_RISK),
        decaying=bucket(STATUS_DECAYING),
        dormant=bucket(STATUS_DORMANT),
        stats=calculate_stats(ordered),
        computed_at=computed_at,
    )


# =============================================================================
# Extraction
# =============================================================================

class RelationshipExtractor:
    """
    Builds RelationshipMaps from message history.

    The oracle is optional: without one (or with extract_commitments off)
    relationships carry no commitments. The caller owns the oracle's
    lifecycle.
    """

    def __init__(
        self,
        oracle: Optional[CommitmentOracle] = None,
        config: Optional[ExtractionConfig] = None,
        commitment_extractor: Optional[CommitmentExtractor] = None,
    ):
        """
        Initialize extractor.

        Args:
            oracle: Text-classification oracle for commitment extraction
            config: Run options (default from settings)
            commitment_extractor: Pre-built extractor (overrides oracle)
        """
        self.config = get_default_config(config)
        if commitment_extractor is None and oracle is not None:
            commitment_extractor = CommitmentExtractor(oracle)
        self.commitment_extractor = commitment_extractor

    async def extract_relationships(
        self,
        messages: Iterable[Any],
        user_email: str,
        user_id: Optional[str] = None,
        now: Optional[datetime] = None,
        deadline_seconds: Optional[float] = None,
    ) -> RelationshipMap:
        """
        Build the RelationshipMap for one user.

        Args:
            messages: Message records (dicts or Message instances)
            user_email: The user's own address
            user_id: Identifier stored on the map (default: user_email)
            now: Reference time for the whole run (default: current UTC time)
            deadline_seconds: Stop starting new batches after this long;
                contacts not yet processed are left out of the map

        Returns:
            RelationshipMap (empty if there are no messages)
        """
        now = _make_aware(now) or datetime.now(timezone.utc)
        user_id = user_id or user_email
        config = self.config

        parsed = parse_messages(messages, lookback_days=config.lookback_days, now=now)
        if not parsed:
            logger.info(f"No messages for {user_email}; returning empty relationship map")
            return build_relationship_map(user_id, [], now)

        groups = group_messages_by_contact(parsed, user_email, config)
        eligible = [
            (email, groups[email])
            for email in sorted(groups)
            if len(groups[email]) >= config.min_messages_threshold
        ]
        logger.info(
            f"Extracting relationships for {user_email}: {len(parsed)} messages, "
            f"{len(groups)} contacts, {len(eligible)} above threshold"
        )

        started = time.monotonic()
        relationships: list[Relationship] = []
        batch_size = max(1, config.contact_batch_size)

        for i in range(0, len(eligible), batch_size):
            if deadline_seconds is not None and time.monotonic() - started >= deadline_seconds:
                logger.warning(
                    f"Deadline of {deadline_seconds}s reached; "
                    f"skipping {len(eligible) - i} remaining contacts"
                )
                break

            batch = eligible[i:i + batch_size]
            results = await asyncio.gather(
                *(self._safe_build(email, msgs, user_id, now) for email, msgs in batch)
            )
            relationships.extend(r for r in results if r is not None)

            if config.batch_pause_seconds and i + batch_size < len(eligible):
                await asyncio.sleep(config.batch_pause_seconds)

        relationship_map = build_relationship_map(user_id, relationships, now)
        logger.info(
            f"Relationship map for {user_email}: {len(relationship_map.relationships)} relationships, "
            f"{len(relationship_map.at_risk)} at risk, {len(relationship_map.dormant)} dormant"
        )
        return relationship_map

    async def _safe_build(
        self,
        contact_email: str,
        messages: list[Message],
        user_id: str,
        now: datetime,
    ) -> Optional[Relationship]:
        """Build one relationship; log and skip the contact on any failure."""
        try:
            return await self.build_relationship(contact_email, messages, user_id, now)
        except Exception as e:
            logger.error(f"Failed to build relationship for {contact_email}: {e}", exc_info=True)
            return None

    async def build_relationship(
        self,
        contact_email: str,
        messages: list[Message],
        user_id: str,
        now: datetime,
    ) -> Relationship:
        """Run the full per-contact pipeline."""
        config = self.config
        ordered = sorted(messages, key=lambda m: (m.timestamp, m.id))
        first, last = ordered[0].timestamp, ordered[-1].timestamp

        series = build_time_series(ordered, config.bucket_size_days)
        series = fill_time_series_gaps(series, first, max(now, last), config.bucket_size_days)
        trajectory = compute_trajectory(series, ordered, now)

        commitments = await self._extract_commitments(ordered, now)
        open_commitments = get_open_commitments(commitments)

        health_status = determine_health_status(trajectory, open_commitments)
        health_score = calculate_health_score(trajectory, health_status, open_commitments)
        prediction = predict_relationship_state(
            trajectory, open_commitments, config.prediction_horizon_days
        )

        return Relationship(
            id=str(uuid.uuid5(_RELATIONSHIP_NAMESPACE, f"{user_id}:{contact_email}")),
            user_id=user_id,
            contact=resolve_contact_person(contact_email, ordered),
            trajectory=trajectory,
            commitments=commitments,
            open_commitments=open_commitments,
            health_status=health_status,
            health_score=health_score,
            prediction=prediction,
            first_interaction=first,
            last_interaction=last,
            total_messages=len(ordered),
            computed_at=now,
        )

    async def _extract_commitments(
        self,
        messages: list[Message],
        now: datetime,
    ) -> list[Commitment]:
        """Commitments from messages inside the commitment lookback window."""
        if not self.config.extract_commitments or self.commitment_extractor is None:
            return []

        cutoff = now - timedelta(days=self.config.commitment_lookback_days)
        recent = [m for m in messages if m.timestamp >= cutoff]
        if not recent:
            return []

        commitments = await self.commitment_extractor.extract_from_messages(
            recent,
            now=now,
            batch_size=self.config.contact_batch_size,
        )
        return update_commitment_statuses(commitments, messages, now)


def extract_relationship_map(
    messages: Iterable[Any],
    user_email: str,
    user_id: Optional[str] = None,
    oracle: Optional[CommitmentOracle] = None,
    config: Optional[ExtractionConfig] = None,
    now: Optional[datetime] = None,
    deadline_seconds: Optional[float] = None,
) -> RelationshipMap:
    """
    Blocking entry point: build a RelationshipMap and return it.

    Must not be called from inside a running event loop; use
    RelationshipExtractor.extract_relationships there instead.
    """
    extractor = RelationshipExtractor(oracle=oracle, config=config)
    return asyncio.run(extractor.extract_relationships(
        messages,
        user_email,
        user_id=user_id,
        now=now,
        deadline_seconds=deadline_seconds,
    ))
