"""
Tickets Infrastructure Layer
=============================

Infrastructure implementations for the tickets module:
- Models: SQLAlchemy ORM models
- Repositories: Data access layer
"""

from municipal_ticketing.tickets.infrastructure.models import (
    AssignmentRecordModel,
    StatusHistoryModel,
    TicketModel,
    TicketNoteModel,
)
from municipal_ticketing.tickets.infrastructure.repositories import (
    SQLAlchemyAuditLogRepository,
    SQLAlchemyTicketRepository,
)

__all__ = [
    "AssignmentRecordModel",
    "StatusHistoryModel",
    "TicketModel",
    "TicketNoteModel",
    "SQLAlchemyAuditLogRepository",
    "SQLAlchemyTicketRepository",
]
