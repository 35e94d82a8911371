"""
Assignment Domain Entities
===========================

Staff members as seen by the assignment module, ranked candidates and
the results of workload and bulk operations.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from municipal_ticketing.config import (
    ActorRole, AvailabilityStatus, UNAVAILABLE_STATUSES, settings
)
from municipal_ticketing.tickets.domain.entities import Location, Ticket


@dataclass(frozen=True)
class StaffMember:
    """Staff directory entry plus the cached workload counter."""
    id: str
    full_name: str
    role: ActorRole = ActorRole.STAFF
    department: Optional[str] = None
    ward: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    is_active: bool = True
    availability_status: AvailabilityStatus = AvailabilityStatus.AVAILABLE
    max_concurrent_assignments: Optional[int] = None

    # Cached; bounded staleness is tolerated for ranking only
    active_ticket_count: int = 0
    last_assigned_at: Optional[datetime] = None

    @property
    def location(self) -> Optional[Location]:
        if self.latitude is None or self.longitude is None:
            return None
        return Location(self.latitude, self.longitude)

    @property
    def is_available(self) -> bool:
        return self.is_active and self.availability_status not in UNAVAILABLE_STATUSES

    @property
    def capacity(self) -> int:
        return self.max_concurrent_assignments or settings.default_max_concurrent_assignments

    def capacity_percentage(self, active_count: Optional[int] = None) -> float:
        count = self.active_ticket_count if active_count is None else active_count
        return round(count / self.capacity * 100, 1)


@dataclass(frozen=True)
class StaffCandidate:
    """A staff member eligible for a ticket, with its score."""
    staff: StaffMember
    score: float
    active_ticket_count: int
    exact_match: bool
    distance_km: Optional[float] = None

    @property
    def staff_id(self) -> str:
        return self.staff.id

    @property
    def capacity_percentage(self) -> float:
        return self.staff.capacity_percentage(self.active_ticket_count)


@dataclass(frozen=True)
class BulkAssignFailure:
    """One ticket that could not be assigned in a bulk run."""
    ticket_id: UUID
    error: str
    error_type: str


@dataclass
class BulkAssignResult:
    """Per-item outcome of a bulk assignment."""
    succeeded: List[Ticket] = field(default_factory=list)
    failed: List[BulkAssignFailure] = field(default_factory=list)


@dataclass(frozen=True)
class StaffWorkload:
    """
    Workload of one staff member, computed from assignment records.

    Used for reports; never read from the cached counter.
    """
    staff_id: str
    full_name: str
    department: Optional[str]
    ward: Optional[str]
    availability_status: AvailabilityStatus
    active: int
    in_progress: int
    pending: int
    overdue: int
    capacity: int
    capacity_percentage: float
    overloaded: bool
