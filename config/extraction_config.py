"""
Per-run extraction options.

Settings supply the defaults; callers (API, CLI, tests) override individual
fields for a single run without touching global state.
"""
from dataclasses import dataclass, field, replace
from typing import Optional

from config.settings import settings
from config.trajectory_config import (
    DEFAULT_BUCKET_DAYS,
    DEFAULT_EXCLUDED_DOMAINS,
    DEFAULT_EXCLUDED_PATTERNS,
    DEFAULT_PREDICTION_DAYS,
)


@dataclass(frozen=True)
class ExtractionConfig:
    """Options recognized by one relationship extraction run."""

    lookback_days: int = 365
    min_messages_threshold: int = 3
    bucket_size_days: int = DEFAULT_BUCKET_DAYS
    extract_commitments: bool = True
    commitment_lookback_days: int = 90
    prediction_horizon_days: int = DEFAULT_PREDICTION_DAYS
    contact_batch_size: int = 10
    batch_pause_seconds: float = 0.5
    excluded_domains: tuple[str, ...] = field(default_factory=lambda: tuple(DEFAULT_EXCLUDED_DOMAINS))
    excluded_patterns: tuple[str, ...] = field(default_factory=lambda: tuple(DEFAULT_EXCLUDED_PATTERNS))

    @classmethod
    def from_settings(cls, **overrides) -> "ExtractionConfig":
        """Build a config from environment settings, applying keyword overrides."""
        config = cls(
            lookback_days=settings.lookback_days,
            min_messages_threshold=settings.min_messages_threshold,
            bucket_size_days=settings.bucket_size_days,
            extract_commitments=settings.extract_commitments,
            commitment_lookback_days=settings.commitment_lookback_days,
            prediction_horizon_days=settings.prediction_horizon_days,
            contact_batch_size=settings.contact_batch_size,
            batch_pause_seconds=settings.batch_pause_seconds,
            excluded_domains=tuple(DEFAULT_EXCLUDED_DOMAINS + settings.excluded_domains),
            excluded_patterns=tuple(DEFAULT_EXCLUDED_PATTERNS + settings.excluded_patterns),
        )
        return config.with_overrides(**overrides)

    def with_overrides(self, **overrides) -> "ExtractionConfig":
        """Return a copy with the given non-None fields replaced."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        for key in ("excluded_domains", "excluded_patterns"):
            if key in changes:
                changes[key] = tuple(changes[key])
        return replace(self, **changes) if changes else self


def get_default_config(config: Optional[ExtractionConfig] = None) -> ExtractionConfig:
    """Return the given config, or one built from settings."""
    return config if config is not None else ExtractionConfig.from_settings()
