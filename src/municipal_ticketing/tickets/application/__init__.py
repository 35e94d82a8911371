"""
Tickets Application Layer
==========================

Contains:
- Services: TicketService and the TicketLifecycle used by other modules
- DTOs: Data transfer objects for API serialization
- Ports: interfaces the SLA and assignment modules implement

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from municipal_ticketing.tickets.application.dto import (
    AssignmentRecordResponse,
    NoteCreateRequest,
    NoteResponse,
    StatusHistoryResponse,
    TicketCreateRequest,
    TicketListResponse,
    TicketResponse,
    TransitionRequest,
)
from municipal_ticketing.tickets.application.services import (
    IAuditLogRepository,
    ISLAPolicy,
    ITicketRepository,
    IWorkloadCounter,
    TicketLifecycle,
    TicketRepositories,
    TicketService,
)

__all__ = [
    # DTOs
    "AssignmentRecordResponse",
    "NoteCreateRequest",
    "NoteResponse",
    "StatusHistoryResponse",
    "TicketCreateRequest",
    "TicketListResponse",
    "TicketResponse",
    "TransitionRequest",
    # Services
    "TicketLifecycle",
    "TicketRepositories",
    "TicketService",
    # Interfaces
    "IAuditLogRepository",
    "ISLAPolicy",
    "ITicketRepository",
    "IWorkloadCounter",
]
