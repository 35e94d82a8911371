"""
Ticket Domain Entities
=======================

Pure Python domain entities for the complaint lifecycle.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, Optional, Tuple
from uuid import UUID

from municipal_ticketing.config import (
    ActorRole, INACTIVE_STATUSES, NoteKind, Priority, TicketStatus
)


@dataclass(frozen=True)
class Actor:
    """The user (or system job) performing an operation."""
    id: str
    role: ActorRole

    @classmethod
    def system(cls, name: str = "system") -> "Actor":
        return cls(id=name, role=ActorRole.SYSTEM)


@dataclass(frozen=True)
class Location:
    """WGS84 point."""
    latitude: float
    longitude: float


@dataclass(frozen=True)
class Ticket:
    """
    A complaint or task tracked through its lifecycle.

    Snapshots are immutable; every change goes through the ticket store as a
    versioned write and yields a new snapshot.
    """

    id: UUID
    tracking_code: str
    title: str
    category: str
    priority: Priority
    status: TicketStatus
    submitted_at: datetime
    sla_due_at: datetime
    version: int = 1

    description: str = ""
    department: Optional[str] = None
    ward: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    submitted_by: Optional[str] = None

    # Assignment
    assigned_staff_id: Optional[str] = None
    assigned_at: Optional[datetime] = None

    # Lifecycle timestamps
    resolved_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    resolution_note: Optional[str] = None
    updated_at: Optional[datetime] = None

    # SLA flags (set by the sweep, never by transitions)
    is_overdue: bool = False
    overdue_at: Optional[datetime] = None
    is_escalated: bool = False
    escalated_at: Optional[datetime] = None

    @property
    def location(self) -> Optional[Location]:
        if self.latitude is None or self.longitude is None:
            return None
        return Location(self.latitude, self.longitude)

    @property
    def is_active(self) -> bool:
        """SLA clock running and counted as workload."""
        return self.status not in INACTIVE_STATUSES

    def is_past_due(self, now: datetime) -> bool:
        return self.is_active and now > self.sla_due_at

    def with_changes(self, **changes: Any) -> "Ticket":
        return replace(self, **changes)


@dataclass(frozen=True)
class AssignmentRecord:
    """
    One stint of a staff member on a ticket.

    Active while ``ended_at`` is None. Never deleted.
    """
    id: Optional[int]
    ticket_id: UUID
    staff_id: str
    assigned_by: str
    assigned_at: datetime
    ended_at: Optional[datetime] = None
    note: Optional[str] = None
    reason: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.ended_at is None


@dataclass(frozen=True)
class StatusHistoryEntry:
    """Append-only audit record of one status transition."""
    ticket_id: UUID
    old_status: Optional[TicketStatus]
    new_status: TicketStatus
    changed_by: str
    changed_at: datetime
    note: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    id: Optional[int] = None


@dataclass(frozen=True)
class TicketNote:
    """Entry in the note ledger (internal notes and audited non-status events)."""
    ticket_id: UUID
    author: str
    body: str
    kind: NoteKind
    created_at: datetime
    details: Dict[str, Any] = field(default_factory=dict)
    id: Optional[int] = None


@dataclass(frozen=True)
class TicketFilter:
    """Filter for queue and SLA queries."""
    ward: Optional[str] = None
    department: Optional[str] = None
    category: Optional[str] = None
    priority: Optional[Priority] = None
    assigned_staff_id: Optional[str] = None
    statuses: Tuple[TicketStatus, ...] = ()
    limit: int = 500
    offset: int = 0
