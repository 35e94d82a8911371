"""
Assignment Application Layer
=============================

Contains:
- Services: AssignmentOrchestrator, WorkloadIndex
- DTOs: Data transfer objects for API serialization

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from municipal_ticketing.assignment.application.dto import (
    AssignRequest,
    BulkAssignRequest,
    BulkAssignResponse,
    ReassignRequest,
    StaffCandidateResponse,
    StaffWorkloadResponse,
)
from municipal_ticketing.assignment.application.services import (
    AssignmentOrchestrator,
    IStaffRepository,
    WorkloadIndex,
    staff_repository,
    workload_counter,
)

__all__ = [
    # DTOs
    "AssignRequest",
    "BulkAssignRequest",
    "BulkAssignResponse",
    "ReassignRequest",
    "StaffCandidateResponse",
    "StaffWorkloadResponse",
    # Services
    "AssignmentOrchestrator",
    "WorkloadIndex",
    "staff_repository",
    "workload_counter",
    # Repository Interfaces
    "IStaffRepository",
]
