"""
Assignment Application DTOs
============================

Data Transfer Objects for the assignment API layer.
"""

from datetime import datetime
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from municipal_ticketing.assignment.domain.entities import (
    BulkAssignResult, StaffCandidate, StaffWorkload
)
from municipal_ticketing.tickets.application.dto import TicketResponse


# ========== Type Aliases for Literals ==========
ReassignmentReasonStr = Literal[
    "unavailable", "workload_rebalance", "skill_mismatch",
    "staff_request", "performance", "other"
]


# ========== Request DTOs ==========

class AssignRequest(BaseModel):
    """Request model for assigning one ticket."""
    staff_id: str = Field(..., min_length=1)
    note: Optional[str] = None


class ReassignRequest(BaseModel):
    """Request model for reassigning one ticket."""
    new_staff_id: str = Field(..., min_length=1)
    reason: ReassignmentReasonStr = Field(..., description="Why the ticket is moving")
    note: Optional[str] = None


class BulkAssignRequest(BaseModel):
    """Request model for bulk assignment."""
    ticket_ids: List[UUID] = Field(..., min_length=1, max_length=500)
    staff_id: str = Field(..., min_length=1)
    note: Optional[str] = None


# ========== Response DTOs ==========

class StaffCandidateResponse(BaseModel):
    """Response model for one ranked candidate."""
    staff_id: str
    full_name: str
    department: Optional[str]
    ward: Optional[str]
    score: float
    active_ticket_count: int
    capacity_percentage: float
    distance_km: Optional[float]
    exact_match: bool
    last_assigned_at: Optional[datetime]

    @classmethod
    def from_entity(cls, candidate: StaffCandidate) -> "StaffCandidateResponse":
        staff = candidate.staff
        return cls(
            staff_id=staff.id,
            full_name=staff.full_name,
            department=staff.department,
            ward=staff.ward,
            score=candidate.score,
            active_ticket_count=candidate.active_ticket_count,
            capacity_percentage=candidate.capacity_percentage,
            distance_km=candidate.distance_km,
            exact_match=candidate.exact_match,
            last_assigned_at=staff.last_assigned_at,
        )


class BulkAssignFailureResponse(BaseModel):
    ticket_id: str
    error: str
    error_type: str


class BulkAssignResponse(BaseModel):
    """Response model for bulk assignment."""
    succeeded: List[TicketResponse]
    failed: List[BulkAssignFailureResponse]

    @classmethod
    def from_result(cls, result: BulkAssignResult) -> "BulkAssignResponse":
        return cls(
            succeeded=[TicketResponse.from_entity(t) for t in result.succeeded],
            failed=[
                BulkAssignFailureResponse(
                    ticket_id=str(f.ticket_id), error=f.error, error_type=f.error_type
                )
                for f in result.failed
            ],
        )


class StaffWorkloadResponse(BaseModel):
    """Response model for one staff member's workload."""
    staff_id: str
    full_name: str
    department: Optional[str]
    ward: Optional[str]
    availability_status: str
    active: int
    in_progress: int
    pending: int
    overdue: int
    capacity: int
    capacity_percentage: float
    overloaded: bool

    @classmethod
    def from_entity(cls, workload: StaffWorkload) -> "StaffWorkloadResponse":
        return cls(
            staff_id=workload.staff_id,
            full_name=workload.full_name,
            department=workload.department,
            ward=workload.ward,
            availability_status=workload.availability_status.value,
            active=workload.active,
            in_progress=workload.in_progress,
            pending=workload.pending,
            overdue=workload.overdue,
            capacity=workload.capacity,
            capacity_percentage=workload.capacity_percentage,
            overloaded=workload.overloaded,
        )
