"""
Discharge Planning Agent - Configuration Module

This module centralizes all environment-based configuration for the discharge
planning workflow service. It follows the 12-factor app methodology by
externalizing configuration through environment variables.

================================================================================
AGENT PURPOSE & CLINICAL CONTEXT
================================================================================

The Discharge Planning Agent keeps the system of record for every discharge
plan in the hospital:

1. WORKFLOW TRACKING:
   - A plan is opened at admission with an expected discharge date
   - Readiness, orders, home health, DME, follow-ups, education, SNF
     coordination and readmission risk are recorded against the plan
   - The plan is closed exactly once when the patient actually leaves

2. AUDITABILITY:
   - Every step is stored as a keyed record with a retention horizon
   - Every accepted step emits a notification event
   - A rejected step leaves no trace in the store

================================================================================
"""

from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# One year expressed in clock ticks (seconds).
ONE_YEAR_SECONDS = 365 * 24 * 60 * 60


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Configuration is organized into logical sections that map to
    different aspects of the discharge planning workflow.
    """

    # ==========================================================================
    # SERVICE IDENTIFICATION
    # ==========================================================================
    service_name: str = Field(
        default="discharge-planning-agent",
        description="Unique identifier for this microservice"
    )
    service_version: str = Field(
        default="2.0.0",
        description="Semantic version of this agent"
    )
    environment: str = Field(
        default="development",
        description="Runtime environment (development, staging, production)"
    )

    # ==========================================================================
    # RECORD STORE CONFIGURATION
    # ==========================================================================
    database_url: str = Field(
        default="sqlite:///./discharge_planning.db",
        description="SQLAlchemy URL of the discharge record store"
    )
    db_echo: bool = Field(
        default=False,
        description="Echo SQL statements to the log"
    )
    record_ttl_seconds: int = Field(
        default=ONE_YEAR_SECONDS,
        ge=1,
        description="Retention horizon applied to a record on every write"
    )

    # ==========================================================================
    # CLINICAL WORKFLOW RULES
    # ==========================================================================
    readiness_threshold: int = Field(
        default=75,
        ge=0,
        le=100,
        description="Total readiness score at or above which a patient is ready"
    )

    # ==========================================================================
    # CALLER AUTHORIZATION
    # ==========================================================================
    # Empty list accepts every caller (development / behind a trusted gateway)
    authorized_callers: List[str] = Field(
        default_factory=list,
        description="Caller identities allowed to mutate discharge plans"
    )

    # ==========================================================================
    # EVENT PUBLICATION
    # ==========================================================================
    event_sink: str = Field(
        default="log",
        pattern="^(log|memory)$",
        description="Where notification events go (log, memory)"
    )

    # ==========================================================================
    # API CONFIGURATION
    # ==========================================================================
    api_host: str = Field(
        default="0.0.0.0",
        description="API server host"
    )
    api_port: int = Field(
        default=8004,
        description="API server port"
    )
    api_workers: int = Field(
        default=1,
        description="Number of Uvicorn workers"
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode"
    )

    # ==========================================================================
    # LOGGING CONFIGURATION
    # ==========================================================================
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)"
    )
    log_format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Format string passed to logging.basicConfig"
    )

    model_config = SettingsConfigDict(
        env_prefix="DISCHARGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Returns a cached Settings instance.

    Using lru_cache ensures we only parse environment variables once,
    improving performance and consistency across the application.

    Returns:
        Settings: Application configuration object
    """
    return Settings()


# ==========================================================================
# CONVENIENCE EXPORTS
# ==========================================================================
settings = get_settings()
