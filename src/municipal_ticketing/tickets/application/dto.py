"""
Ticket Application DTOs
========================

Data Transfer Objects for the tickets API layer.

These Pydantic models handle serialization/deserialization and validation
for API requests and responses.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, model_validator

from municipal_ticketing.tickets.domain.entities import (
    AssignmentRecord, StatusHistoryEntry, Ticket, TicketNote
)


# ========== Type Aliases for Literals ==========
PriorityStr = Literal["critical", "urgent", "high", "medium", "low"]
TicketStatusStr = Literal[
    "submitted", "received", "assigned", "in_progress", "pending",
    "resolved", "closed", "rejected", "reopened"
]


# ========== Request DTOs ==========

class TicketCreateRequest(BaseModel):
    """Request model for filing a complaint."""
    title: str = Field(..., min_length=1, max_length=500, description="Short summary")
    description: str = Field(default="", description="Free-text description")
    category: str = Field(..., min_length=1, max_length=100, description="Complaint category, e.g. 'pothole'")
    priority: PriorityStr = Field(default="medium", description="Ticket priority")
    department: Optional[str] = Field(
        None,
        max_length=100,
        description="Owning department; derived from the category when omitted"
    )
    ward: Optional[str] = Field(None, max_length=100, description="Municipal ward")
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)

    @model_validator(mode="after")
    def validate_location(self) -> "TicketCreateRequest":
        """Latitude and longitude come as a pair."""
        if (self.latitude is None) != (self.longitude is None):
            raise ValueError("latitude and longitude must be provided together")
        return self


class TransitionRequest(BaseModel):
    """Request model for a status transition."""
    status: TicketStatusStr = Field(..., description="Target status")
    note: Optional[str] = Field(None, description="Required for resolved, rejected and reopened")


class NoteCreateRequest(BaseModel):
    """Request model for an internal note."""
    body: str = Field(..., min_length=1, description="Note text")


# ========== Response DTOs ==========

class TicketResponse(BaseModel):
    """Response model for a ticket."""
    id: str
    tracking_code: str
    title: str
    description: str
    category: str
    department: Optional[str]
    priority: PriorityStr
    status: TicketStatusStr
    ward: Optional[str]
    latitude: Optional[float]
    longitude: Optional[float]
    submitted_by: Optional[str]
    submitted_at: datetime
    sla_due_at: datetime
    assigned_staff_id: Optional[str]
    assigned_at: Optional[datetime]
    resolved_at: Optional[datetime]
    closed_at: Optional[datetime]
    resolution_note: Optional[str]
    is_overdue: bool
    is_escalated: bool
    version: int

    @classmethod
    def from_entity(cls, ticket: Ticket) -> "TicketResponse":
        return cls(
            id=str(ticket.id),
            tracking_code=ticket.tracking_code,
            title=ticket.title,
            description=ticket.description,
            category=ticket.category,
            department=ticket.department,
            priority=ticket.priority.value,
            status=ticket.status.value,
            ward=ticket.ward,
            latitude=ticket.latitude,
            longitude=ticket.longitude,
            submitted_by=ticket.submitted_by,
            submitted_at=ticket.submitted_at,
            sla_due_at=ticket.sla_due_at,
            assigned_staff_id=ticket.assigned_staff_id,
            assigned_at=ticket.assigned_at,
            resolved_at=ticket.resolved_at,
            closed_at=ticket.closed_at,
            resolution_note=ticket.resolution_note,
            is_overdue=ticket.is_overdue,
            is_escalated=ticket.is_escalated,
            version=ticket.version,
        )


class TicketListResponse(BaseModel):
    """Response model for ticket queues."""
    tickets: List[TicketResponse]
    total: int


class StatusHistoryResponse(BaseModel):
    """Response model for one audit entry."""
    old_status: Optional[TicketStatusStr]
    new_status: TicketStatusStr
    changed_by: str
    changed_at: datetime
    note: Optional[str]
    details: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_entity(cls, entry: StatusHistoryEntry) -> "StatusHistoryResponse":
        return cls(
            old_status=entry.old_status.value if entry.old_status else None,
            new_status=entry.new_status.value,
            changed_by=entry.changed_by,
            changed_at=entry.changed_at,
            note=entry.note,
            details=entry.details,
        )


class NoteResponse(BaseModel):
    """Response model for a ledger note."""
    author: str
    body: str
    kind: str
    created_at: datetime
    details: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_entity(cls, note: TicketNote) -> "NoteResponse":
        return cls(
            author=note.author,
            body=note.body,
            kind=note.kind.value,
            created_at=note.created_at,
            details=note.details,
        )


class AssignmentRecordResponse(BaseModel):
    """Response model for an assignment record."""
    staff_id: str
    assigned_by: str
    assigned_at: datetime
    ended_at: Optional[datetime]
    note: Optional[str]
    reason: Optional[str]

    @classmethod
    def from_entity(cls, record: AssignmentRecord) -> "AssignmentRecordResponse":
        return cls(
            staff_id=record.staff_id,
            assigned_by=record.assigned_by,
            assigned_at=record.assigned_at,
            ended_at=record.ended_at,
            note=record.note,
            reason=record.reason,
        )
