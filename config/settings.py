"""
Relationship Map Configuration Settings
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Server
    port: int = Field(default=8000, alias="RELMAP_PORT")
    host: str = Field(default="0.0.0.0", alias="RELMAP_HOST")

    # API Keys (no prefix - standard env var names)
    anthropic_api_key: str = Field(default="", alias="ANTHROPIC_API_KEY")

    # Commitment oracle
    oracle_provider: str = Field(
        default="anthropic",
        alias="RELMAP_ORACLE_PROVIDER",
        description="Which text-classification backend to use: 'anthropic' or 'ollama'"
    )
    oracle_model: str = Field(default="claude-haiku-4-5", alias="RELMAP_ORACLE_MODEL")
    oracle_timeout: int = Field(default=45, alias="RELMAP_ORACLE_TIMEOUT")
    oracle_max_retries: int = Field(default=3, alias="RELMAP_ORACLE_MAX_RETRIES")
    oracle_retry_base_seconds: float = Field(default=1.0, alias="RELMAP_ORACLE_RETRY_BASE")

    # Local LLM (Ollama)
    ollama_host: str = Field(default="http://localhost:11434", alias="OLLAMA_HOST")
    ollama_model: str = Field(default="qwen2.5:7b-instruct", alias="OLLAMA_MODEL")

    # Extraction
    min_messages_threshold: int = Field(default=3, alias="RELMAP_MIN_MESSAGES")
    lookback_days: int = Field(default=365, alias="RELMAP_LOOKBACK_DAYS")
    commitment_lookback_days: int = Field(default=90, alias="RELMAP_COMMITMENT_LOOKBACK_DAYS")
    extract_commitments: bool = Field(default=True, alias="RELMAP_EXTRACT_COMMITMENTS")
    prediction_horizon_days: int = Field(default=30, alias="RELMAP_PREDICTION_DAYS")
    bucket_size_days: int = Field(default=7, alias="RELMAP_BUCKET_DAYS")

    # Worker pool (respects oracle rate limits)
    contact_batch_size: int = Field(default=10, alias="RELMAP_BATCH_SIZE")
    batch_pause_seconds: float = Field(default=0.5, alias="RELMAP_BATCH_PAUSE")

    # Extra noise filters, appended to the built-in defaults
    excluded_domains_raw: str = Field(
        default="",
        alias="RELMAP_EXCLUDED_DOMAINS",
        description="Comma-separated local-part/domain fragments to ignore (e.g., 'billing,alerts')"
    )
    excluded_patterns_raw: str = Field(
        default="",
        alias="RELMAP_EXCLUDED_PATTERNS",
        description="Pipe-separated regex patterns for addresses to ignore"
    )

    @property
    def excluded_domains(self) -> list[str]:
        """Parse comma-separated domain fragments into list."""
        if not self.excluded_domains_raw:
            return []
        return [x.strip().lower() for x in self.excluded_domains_raw.split(",") if x.strip()]

    @property
    def excluded_patterns(self) -> list[str]:
        """Parse pipe-separated regex patterns into list."""
        if not self.excluded_patterns_raw:
            return []
        return [x.strip() for x in self.excluded_patterns_raw.split("|") if x.strip()]


settings = Settings()
