"""
Relationship map API endpoints.

Callers post a user's normalized messages and get back the computed
RelationshipMap (or the alerts derived from it). Nothing is stored; every
request is a fresh extraction run.
"""
import logging
from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, field_validator

from api.services.alerts import build_alerts
from api.services.oracle import AnthropicOracle, create_oracle
from api.services.relationship_extractor import RelationshipExtractor, RelationshipMap
from config.extraction_config import ExtractionConfig
from config.settings import settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/relationships", tags=["relationships"])

_oracle = None


def get_oracle():
    """
    Get or create the shared oracle client.

    Returns None when commitment extraction is disabled or the Anthropic
    provider has no API key configured.
    """
    global _oracle
    if not settings.extract_commitments:
        return None
    if _oracle is None:
        oracle = create_oracle()
        if isinstance(oracle, AnthropicOracle) and not settings.anthropic_api_key.strip():
            logger.warning("ANTHROPIC_API_KEY not set; commitment extraction disabled")
            return None
        _oracle = oracle
    return _oracle


class ExtractionOptions(BaseModel):
    """Per-request overrides for the extraction run."""
    min_messages_threshold: Optional[int] = Field(default=None, ge=1)
    lookback_days: Optional[int] = Field(default=None, ge=1)
    extract_commitments: Optional[bool] = None
    commitment_lookback_days: Optional[int] = Field(default=None, ge=1)
    prediction_horizon_days: Optional[int] = Field(default=None, ge=1, le=365)
    excluded_domains: Optional[list[str]] = None
    excluded_patterns: Optional[list[str]] = None
    deadline_seconds: Optional[float] = Field(default=None, gt=0)
    include_series: bool = True


class RelationshipMapRequest(BaseModel):
    """Relationship map request schema."""
    user_email: str = Field(..., description="The user's own email address")
    user_id: Optional[str] = None
    messages: list[dict[str, Any]] = Field(default_factory=list)
    options: ExtractionOptions = Field(default_factory=ExtractionOptions)
    now: Optional[datetime] = Field(default=None, description="Reference time for the run")

    @field_validator("user_email")
    @classmethod
    def user_email_not_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("user_email cannot be empty")
        return v.strip().lower()


class AlertsResponse(BaseModel):
    """Response for the alerts endpoint."""
    alerts: list[dict[str, Any]]
    count: int
    computed_at: str


async def _run_extraction(request: RelationshipMapRequest, oracle) -> RelationshipMap:
    options = request.options
    config = ExtractionConfig.from_settings(
        min_messages_threshold=options.min_messages_threshold,
        lookback_days=options.lookback_days,
        extract_commitments=options.extract_commitments,
        commitment_lookback_days=options.commitment_lookback_days,
        prediction_horizon_days=options.prediction_horizon_days,
    )
    # Request exclusions extend the configured ones
    if options.excluded_domains:
        config = config.with_overrides(
            excluded_domains=config.excluded_domains + tuple(options.excluded_domains)
        )
    if options.excluded_patterns:
        config = config.with_overrides(
            excluded_patterns=config.excluded_patterns + tuple(options.excluded_patterns)
        )
    extractor = RelationshipExtractor(oracle=oracle, config=config)
    return await extractor.extract_relationships(
        request.messages,
        request.user_email,
        user_id=request.user_id,
        now=request.now,
        deadline_seconds=options.deadline_seconds,
    )


@router.post("/map")
async def relationship_map(request: RelationshipMapRequest, oracle=Depends(get_oracle)):
    """
    Build the relationship map for the posted messages.

    Relationships are ordered lowest health first. Buckets hold contact
    emails that index into the relationships list.
    """
    result = await _run_extraction(request, oracle)
    return result.to_dict(include_series=request.options.include_series)


@router.post("/alerts", response_model=AlertsResponse)
async def relationship_alerts(request: RelationshipMapRequest, oracle=Depends(get_oracle)):
    """Build the relationship map and return only the alerts derived from it."""
    result = await _run_extraction(request, oracle)
    alerts = build_alerts(result)
    return AlertsResponse(
        alerts=[a.to_dict() for a in alerts],
        count=len(alerts),
        computed_at=result.computed_at.isoformat(),
    )
