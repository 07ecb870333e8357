"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="deskwatch-sla", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/helpdesk",
        description="PostgreSQL connection URL (async)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== SLA Engine ==========
    sla_config_path: Path = Field(
        default=Path("sla_config.yaml"),
        description="Path to SLA configuration YAML file"
    )
    sla_evaluation_interval: int = Field(
        default=300,
        description="Seconds between SLA ticks (0 disables the scheduler)",
        ge=0
    )
    sla_lock_timeout_seconds: float = Field(
        default=2.0,
        description="How long to wait for a ticket lock before reporting a conflict",
        gt=0
    )
    sla_lock_max_retries: int = Field(
        default=3,
        description="Attempts per recalculation before deferring to the next tick",
        ge=1
    )
    sla_lock_backoff_seconds: float = Field(
        default=0.25,
        description="Base delay for exponential backoff between lock attempts",
        ge=0
    )

    # ========== Notification collaborator ==========
    notification_webhook_url: Optional[str] = Field(
        default=None,
        description="Webhook receiving escalation events"
    )
    notification_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for notification webhook calls",
        ge=0.1,
        le=30
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080"],
        description="Allowed CORS origins"
    )

    # ========== Grafana OTLP Metrics ==========
    grafana_host: Optional[str] = Field(
        default=None,
        description="Grafana OTLP gateway URL (e.g., https://otlp-gateway-prod-eu-west-2.grafana.net)"
    )
    grafana_api_key: Optional[str] = Field(
        default=None,
        description="Grafana API key for OTLP authentication"
    )
    grafana_instance_id: Optional[str] = Field(
        default=None,
        description="Grafana instance ID for OTLP authentication"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "staging", "production", "test"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class Priority(str, Enum):
    """Ticket priority levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class TicketStatus(str, Enum):
    """Ticket lifecycle statuses as exposed by the ticket collaborator."""
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    PENDING = "pending"
    RESOLVED = "resolved"
    CLOSED = "closed"


class SLATrack(str, Enum):
    """The two parallel SLA clocks of a ticket."""
    RESPONSE = "response"
    RESOLUTION = "resolution"


class SLAStatus(str, Enum):
    """Per-track SLA status."""
    PENDING = "pending"
    OK = "ok"
    WARNING = "warning"
    OVERDUE = "overdue"
    MET = "met"
    BREACHED = "breached"


class PausePolicy(str, Enum):
    """How pause periods interact with business-hours rules."""
    UNIFORM = "uniform"                 # subtract the whole pause overlap
    BUSINESS_HOURS = "business_hours"   # subtract only the part inside working windows


# ========== Shared constants ==========

FROZEN_SLA_STATUSES = (SLAStatus.MET, SLAStatus.BREACHED)
DEFAULT_NOTIFY_ROLES = ("admin",)
