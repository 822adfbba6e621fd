"""Configuration management for the Contract Workflow service."""

from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

from contract_workflow.models import TerminationPolicy


class Settings(BaseSettings):
    """Contract Workflow configuration.

    Values are read from the environment (or a ``.env`` file) using the
    upper-cased field name, e.g. ``LOG_LEVEL`` or ``DEFAULT_TERMINATION_POLICY``.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Service identity
    service_name: str = "contract-workflow"
    service_version: str = "0.1.0"
    environment: str = "development"
    host: str = "0.0.0.0"
    port: int = 8014

    # Logging
    log_level: str = "INFO"
    json_logs: bool = False

    # Renewal defaults, used when neither the request nor the contract sets them
    default_renewal_term_months: int = 12
    default_notice_period_days: int = 30
    default_uplift_percent: float = 0.0
    internal_decision_lead_days: int = 30
    renewal_reminder_days: list[int] = [90, 60, 30]

    # Renewal policies
    default_termination_policy: TerminationPolicy = TerminationPolicy.AT_END_DATE
    enforce_reexecution_gate: bool = False

    # Demo data
    seed_demo_data: bool = False

    # Event stream
    event_queue_size: int = 256


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""
    return Settings()
