"""Application settings via pydantic-settings."""

from pathlib import Path
from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Booking engine configuration.

    All settings can be overridden via environment variables or .env file.
    """

    # Upstream FHIR server
    fhir_base_url: str = "http://localhost:8080/fhir"
    fhir_timeout_seconds: float = 10.0
    fhir_store: str = "http"  # http | mock

    # Overlap validation
    slot_search_count: int = 1000
    slot_overlap_lookback_minutes: int = 720
    reject_past_slots: bool = True

    # Redis (practitioner advisory locks)
    redis_url: str = "redis://localhost:6379/0"
    practitioner_lock_enabled: bool = True
    practitioner_lock_ttl_ms: int = 5000
    practitioner_lock_retries: int = 8

    # API
    api_key: str = "dev-key-change-me"
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    cors_origins: List[str] = ["http://localhost:3000"]

    # Logging
    log_level: str = "INFO"
    hipaa_audit_log: bool = True

    model_config = {
        "env_file": str(Path(__file__).resolve().parent.parent / ".env"),
        "env_file_encoding": "utf-8",
    }


settings = Settings()
