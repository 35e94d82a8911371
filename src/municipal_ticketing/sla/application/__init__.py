"""
SLA Application Layer
======================

Contains:
- Services: SLAClock
- DTOs: Data transfer objects for API serialization

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from municipal_ticketing.sla.application.dto import (
    ComplianceResponse,
    PriorityChangeRequest,
    RecomputeRequest,
    SweepResponse,
)
from municipal_ticketing.sla.application.services import ISLAConfigProvider, SLAClock

__all__ = [
    # DTOs
    "ComplianceResponse",
    "PriorityChangeRequest",
    "RecomputeRequest",
    "SweepResponse",
    # Services
    "SLAClock",
    "ISLAConfigProvider",
]
