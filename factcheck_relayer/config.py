"""Configuration management for the fact-check relayer."""

from pathlib import Path
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

# Environment variables the relayer cannot start without
REQUIRED_SETTINGS = {
    "alchemy_url": "ALCHEMY_URL",
    "relayer_private_key": "RELAYER_PRIVATE_KEY",
    "factcheck_contract": "FACTCHECK_CONTRACT",
    "walrus_gateway_url": "WALRUS_GATEWAY_URL",
}


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Chain (required for `run`, optional for startup so `check-config` works)
    alchemy_url: Optional[str] = None
    relayer_private_key: Optional[str] = None
    factcheck_contract: Optional[str] = None

    # Blob store
    walrus_gateway_url: Optional[str] = None

    # Inference broker
    broker_url: Optional[str] = None
    deepseek_provider: Optional[str] = None
    broker_fallback_fee: float = 0.01
    broker_requests_per_minute: int = 0

    # Web search
    serpapi_key: Optional[str] = None
    serpapi_url: str = "https://serpapi.com/search"
    num_results: int = 5

    # Claim truncation policy: the model is asked for at most this many claims
    max_claims: int = 1

    # Timeouts
    http_timeout: int = 30
    llm_timeout: int = 120
    confirmation_timeout: int = 180

    # Event polling
    poll_interval: float = 4.0
    start_block: Optional[int] = None
    max_block_range: int = 2000
    max_concurrent_requests: int = 10

    # Retry bookkeeping
    max_attempts: int = 3
    retry_delay: int = 60
    max_records: int = 1000
    state_dir: Optional[Path] = None

    # Circuit breaker
    circuit_failure_threshold: int = 5
    circuit_reset_timeout: float = 60.0

    # Application Settings
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def missing_required(self) -> List[str]:
        """Return the names of required environment variables that are unset."""
        return [
            env_name
            for field, env_name in REQUIRED_SETTINGS.items()
            if not getattr(self, field)
        ]

    @property
    def has_broker(self) -> bool:
        """Check if the inference broker is configured."""
        return bool(self.broker_url and self.deepseek_provider)

    @property
    def has_search(self) -> bool:
        """Check if the search API is configured."""
        return bool(self.serpapi_key)

    @property
    def resolved_state_dir(self) -> Path:
        """Directory holding durable request state."""
        return self.state_dir or Path.home() / ".factcheck-relayer"


def get_settings() -> Settings:
    """Get application settings from the environment and `.env`."""
    return Settings()
