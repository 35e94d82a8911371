"""
Assignment Domain Layer
=======================

Contains:
- Entities: StaffMember, StaffCandidate, StaffWorkload, bulk results
- Domain Services: AssignmentRanker

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from municipal_ticketing.assignment.domain.entities import (
    BulkAssignFailure,
    BulkAssignResult,
    StaffCandidate,
    StaffMember,
    StaffWorkload,
)
from municipal_ticketing.assignment.domain.ranking import (
    AssignmentRanker,
    RankingWeights,
    haversine_km,
)

__all__ = [
    "BulkAssignFailure",
    "BulkAssignResult",
    "StaffCandidate",
    "StaffMember",
    "StaffWorkload",
    "AssignmentRanker",
    "RankingWeights",
    "haversine_km",
]
