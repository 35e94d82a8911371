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
    app_name: str = Field(default="municipal-ticketing", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/complaints",
        description="Database connection URL (async driver)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== SLA Configuration ==========
    sla_config_path: Path = Field(
        default=Path("sla_config.yaml"),
        description="Path to SLA configuration YAML file"
    )
    sla_sweep_interval: int = Field(
        default=60,
        description="Seconds between SLA sweeps (0 disables the scheduler)",
        ge=0
    )
    at_risk_window_hours: int = Field(
        default=24,
        description="Tickets due within this many hours are reported as at risk",
        ge=1
    )

    # ========== Lifecycle ==========
    reopen_window_days: int = Field(
        default=7,
        description="Days after resolution/closure during which a ticket may be reopened",
        ge=0
    )

    # ========== Assignment ==========
    ranking_workload_weight: float = Field(default=0.5, ge=0.0, description="Weight of inverse workload")
    ranking_distance_weight: float = Field(default=0.3, ge=0.0, description="Weight of inverse distance")
    ranking_match_boost: float = Field(default=0.2, ge=0.0, description="Boost for exact department+ward match")
    default_max_concurrent_assignments: int = Field(
        default=10,
        description="Capacity used when a staff member has none configured",
        ge=1
    )
    overload_threshold_percent: int = Field(
        default=80,
        description="Capacity percentage at which a staff member counts as overloaded",
        ge=1,
        le=100
    )

    # ========== Notifications ==========
    notification_webhook_url: Optional[str] = Field(
        default=None,
        description="Webhook receiving notification events"
    )
    notification_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for notification webhook calls",
        ge=0.1,
        le=30
    )
    notification_max_retries: int = Field(default=3, ge=1, le=10)
    notification_queue_size: int = Field(default=1000, ge=1)

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
        allowed = {"development", "testing", "staging", "production"}
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
    """Ticket lifecycle statuses."""
    SUBMITTED = "submitted"
    RECEIVED = "received"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    PENDING = "pending"
    RESOLVED = "resolved"
    CLOSED = "closed"
    REJECTED = "rejected"
    REOPENED = "reopened"


class Priority(str, Enum):
    """Ticket priority levels."""
    CRITICAL = "critical"
    URGENT = "urgent"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ActorRole(str, Enum):
    """Roles that may act on a ticket."""
    CITIZEN = "citizen"
    STAFF = "staff"
    SUPERVISOR = "supervisor"
    ADMIN = "admin"
    SYSTEM = "system"


class ReassignmentReason(str, Enum):
    """Why a ticket was moved to another staff member."""
    UNAVAILABLE = "unavailable"
    WORKLOAD_REBALANCE = "workload_rebalance"
    SKILL_MISMATCH = "skill_mismatch"
    STAFF_REQUEST = "staff_request"
    PERFORMANCE = "performance"
    OTHER = "other"


class AvailabilityStatus(str, Enum):
    """Staff availability as reported by the staff directory."""
    AVAILABLE = "available"
    BUSY = "busy"
    ON_BREAK = "on_break"
    OFF_DUTY = "off_duty"
    ON_LEAVE = "on_leave"
    TRAINING = "training"


class NotificationKind(str, Enum):
    """Notification events emitted by the engine."""
    TICKET_ASSIGNED = "complaint_assigned"
    TICKET_UNASSIGNED = "complaint_unassigned"
    STATUS_CHANGED = "complaint_status"
    SLA_BREACH = "sla_breach"
    SLA_ESCALATION = "staff_escalation"


class NoteKind(str, Enum):
    """Entries in the ticket note ledger."""
    INTERNAL = "internal"
    SLA_RECOMPUTE = "sla_recompute"
    PRIORITY_CHANGE = "priority_change"


# ========== Status groups ==========

# SLA clock stopped and not counted as workload.
INACTIVE_STATUSES = frozenset({
    TicketStatus.RESOLVED, TicketStatus.CLOSED, TicketStatus.REJECTED
})

ACTIVE_STATUSES = frozenset(s for s in TicketStatus if s not in INACTIVE_STATUSES)

# Statuses in which a staff member holds an open assignment record.
STAFFED_STATUSES = frozenset({
    TicketStatus.ASSIGNED, TicketStatus.IN_PROGRESS, TicketStatus.PENDING
})

UNAVAILABLE_STATUSES = frozenset({AvailabilityStatus.OFF_DUTY, AvailabilityStatus.ON_LEAVE})

VALID_PRIORITIES = [p.value for p in Priority]
VALID_REASSIGNMENT_REASONS = [r.value for r in ReassignmentReason]
