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
    app_name: str = Field(default="fleetdesk-sts", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/fleetdesk",
        description="PostgreSQL connection URL (async)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== SLA Engine ==========
    sla_warning_ratio: float = Field(
        default=0.8,
        description="Progress ratio from which an open SLA clock is reported as near breach",
        ge=0.0,
        le=1.0
    )
    sts_enforce_transitions: bool = Field(
        default=True,
        description="Reject status changes outside the ticket transition table"
    )
    sla_policy_seed_path: Optional[Path] = Field(
        default=None,
        description="Optional YAML file with SLA policies upserted at startup"
    )

    # ========== Case Service ==========
    case_service_url: Optional[str] = Field(
        default=None,
        description="Base URL of the case/work-order service (status sync)"
    )
    case_service_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for case service calls",
        ge=0.1,
        le=30
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080"],
        description="Allowed CORS origins"
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
        allowed = {"development", "test", "staging", "production"}
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

class TicketStatus(str, Enum):
    """STS ticket lifecycle statuses."""
    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    WAITING_VENDOR = "WAITING_VENDOR"
    RESOLVED = "RESOLVED"
    CLOSED = "CLOSED"


class TicketSeverity(str, Enum):
    """STS ticket severities."""
    EMERGENCY = "EMERGENCY"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class TicketChannel(str, Enum):
    """Channel through which a ticket was reported."""
    PHONE = "PHONE"
    EMAIL = "EMAIL"
    PORTAL = "PORTAL"
    WHATSAPP = "WHATSAPP"
    OTHER = "OTHER"


class TicketEventType(str, Enum):
    """Ticket timeline event types."""
    STATUS_CHANGE = "STATUS_CHANGE"
    COMMENT = "COMMENT"
    ASSIGN = "ASSIGN"


class CaseStatus(str, Enum):
    """Statuses of the external case a ticket can be linked to."""
    NEW = "NEW"
    IN_EXECUTION = "IN_EXECUTION"
    RESOLVED = "RESOLVED"
    CLOSED = "CLOSED"


# Statuses that stop the resolution clock when a policy names none
DEFAULT_PAUSE_STATUSES = frozenset({TicketStatus.WAITING_VENDOR})
