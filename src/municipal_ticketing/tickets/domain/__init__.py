"""
Tickets Domain Layer
====================

Contains:
- Entities: Ticket, AssignmentRecord, StatusHistoryEntry, TicketNote
- State machine: the edge table, guards and entry effects

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from municipal_ticketing.tickets.domain.entities import (
    Actor,
    AssignmentRecord,
    Location,
    StatusHistoryEntry,
    Ticket,
    TicketFilter,
    TicketNote,
)
from municipal_ticketing.tickets.domain.state_machine import (
    EDGES,
    Edge,
    TicketStateMachine,
    TransitionContext,
    state_machine,
)

__all__ = [
    # Entities
    "Actor",
    "AssignmentRecord",
    "Location",
    "StatusHistoryEntry",
    "Ticket",
    "TicketFilter",
    "TicketNote",
    # State machine
    "EDGES",
    "Edge",
    "TicketStateMachine",
    "TransitionContext",
    "state_machine",
]
