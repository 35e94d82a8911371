"""
SLA Value Objects
==================

Immutable value objects for the SLA domain.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared.
"""

from datetime import datetime, timedelta
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from municipal_ticketing.config import Priority, VALID_PRIORITIES
from municipal_ticketing.tickets.domain.entities import Ticket


class SLATargets(BaseModel):
    """Response, resolution and escalation times in hours."""
    model_config = ConfigDict(frozen=True)

    response_hours: float = Field(gt=0, description="Hours until the ticket is due")
    resolution_hours: float = Field(gt=0, description="Hours until resolution is expected")
    escalation_hours: float = Field(
        ge=0,
        description="Hours past the due date after which the ticket is escalated"
    )


# Global defaults by priority, in hours
DEFAULT_TARGETS: Dict[str, SLATargets] = {
    Priority.CRITICAL.value: SLATargets(response_hours=24, resolution_hours=24, escalation_hours=12),
    Priority.URGENT.value: SLATargets(response_hours=24, resolution_hours=36, escalation_hours=12),
    Priority.HIGH.value: SLATargets(response_hours=48, resolution_hours=48, escalation_hours=24),
    Priority.MEDIUM.value: SLATargets(response_hours=72, resolution_hours=72, escalation_hours=24),
    Priority.LOW.value: SLATargets(response_hours=120, resolution_hours=120, escalation_hours=48),
}


def _check_priority_keys(v: Dict[str, SLATargets]) -> Dict[str, SLATargets]:
    unknown = set(v) - set(VALID_PRIORITIES)
    if unknown:
        raise ValueError(f"unknown priorities: {sorted(unknown)}")
    return v


class CategorySLA(BaseModel):
    """Per-category routing and priority rows."""
    department: Optional[str] = Field(None, description="Department that owns the category")
    priorities: Dict[str, SLATargets] = Field(default_factory=dict)

    @field_validator("priorities")
    @classmethod
    def validate_priorities(cls, v: Dict[str, SLATargets]) -> Dict[str, SLATargets]:
        """Only known priority names are accepted."""
        return _check_priority_keys(v)


class SLAConfig(BaseModel):
    """
    SLA configuration loaded from YAML.

    Lookup order for (category, priority):
        1. categories[category].priorities[priority]
        2. departments[department]  (explicit department, else the category's)
        3. defaults[priority]

    This is a value object - immutable and defined by its attributes.
    """
    defaults: Dict[str, SLATargets] = Field(
        default_factory=lambda: dict(DEFAULT_TARGETS),
        description="Global targets by priority"
    )
    departments: Dict[str, SLATargets] = Field(
        default_factory=dict,
        description="Department-level defaults"
    )
    categories: Dict[str, CategorySLA] = Field(
        default_factory=dict,
        description="Category routing and category x priority rows"
    )

    @field_validator("defaults")
    @classmethod
    def validate_defaults(cls, v: Dict[str, SLATargets]) -> Dict[str, SLATargets]:
        """Fill in any priority the file leaves out."""
        _check_priority_keys(v)
        for priority, targets in DEFAULT_TARGETS.items():
            v.setdefault(priority, targets)
        return v

    def department_for(self, category: str) -> Optional[str]:
        row = self.categories.get(category)
        return row.department if row else None

    def lookup(
        self,
        category: str,
        priority: Priority,
        department: Optional[str] = None
    ) -> SLATargets:
        """Targets for a ticket, falling back department then global."""
        priority_key = Priority(priority).value
        row = self.categories.get(category)
        if row and priority_key in row.priorities:
            return row.priorities[priority_key]

        department = department or (row.department if row else None)
        if department and department in self.departments:
            return self.departments[department]

        return self.defaults[priority_key]


class SLACalculator:
    """
    Pure functions for SLA calculations.

    Stateless utility class - all due date and breach arithmetic in one place.
    """

    @staticmethod
    def due_at(submitted_at: datetime, targets: SLATargets) -> datetime:
        return submitted_at + timedelta(hours=targets.response_hours)

    @staticmethod
    def escalate_at(ticket: Ticket, targets: SLATargets) -> datetime:
        return ticket.sla_due_at + timedelta(hours=targets.escalation_hours)

    @staticmethod
    def is_overdue(ticket: Ticket, now: datetime) -> bool:
        """Active and past due. Computed, never read from the sweep flag."""
        return ticket.is_past_due(now)

    @classmethod
    def needs_escalation(cls, ticket: Ticket, targets: SLATargets, now: datetime) -> bool:
        return ticket.is_active and now > cls.escalate_at(ticket, targets)

    @staticmethod
    def hours_between(start: datetime, end: datetime) -> float:
        return (end - start).total_seconds() / 3600
