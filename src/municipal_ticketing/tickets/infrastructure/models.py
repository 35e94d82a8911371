"""
Ticket Infrastructure Models
=============================

SQLAlchemy ORM models for the tickets module.

These are the database representations of our domain entities.
They belong in the infrastructure layer, not the domain layer.
"""

from datetime import datetime
from typing import Any, Dict, Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON, Boolean, Float, ForeignKey, Index, Integer, String, Text, Uuid, text
)
from sqlalchemy.orm import Mapped, mapped_column

from municipal_ticketing.config import NoteKind, Priority, TicketStatus
from municipal_ticketing.infrastructure.database import Base, UTCDateTime
from municipal_ticketing.shared.clock import utcnow


class TicketModel(Base):
    """
    Database model for Ticket entity.

    Maps to the 'tickets' table. ``version`` is the optimistic concurrency
    token; every lifecycle write is ``UPDATE ... WHERE id = ? AND version = ?``.
    """
    __tablename__ = "tickets"

    # Primary key
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Citizen-facing reference
    tracking_code: Mapped[str] = mapped_column(String(32), unique=True, index=True, nullable=False)

    # Content
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    category: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    department: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    priority: Mapped[Priority] = mapped_column(String(20), nullable=False, default=Priority.MEDIUM)
    status: Mapped[TicketStatus] = mapped_column(
        String(20), nullable=False, default=TicketStatus.SUBMITTED, index=True
    )

    # Location
    ward: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    submitted_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Timestamps
    submitted_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    sla_due_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)

    # Assignment
    assigned_staff_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    assigned_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    # Resolution
    resolved_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    closed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    resolution_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # SLA flags
    is_overdue: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    overdue_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    is_escalated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    escalated_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)


class AssignmentRecordModel(Base):
    """
    Database model for AssignmentRecord entity.

    Maps to the 'assignment_records' table. Rows are closed by setting
    ``ended_at`` and never deleted. The partial unique index allows at most
    one open row per ticket.
    """
    __tablename__ = "assignment_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ticket_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("tickets.id"), nullable=False, index=True)
    staff_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    assigned_by: Mapped[str] = mapped_column(String(100), nullable=False)
    assigned_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    ended_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reason: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    __table_args__ = (
        Index(
            "uq_assignment_records_active_ticket",
            "ticket_id",
            unique=True,
            sqlite_where=text("ended_at IS NULL"),
            postgresql_where=text("ended_at IS NULL"),
        ),
    )


class StatusHistoryModel(Base):
    """
    Database model for StatusHistoryEntry.

    Maps to the 'status_history' table. Append-only; ordered by
    ``changed_at`` then ``id``.
    """
    __tablename__ = "status_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ticket_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("tickets.id"), nullable=False, index=True)
    old_status: Mapped[Optional[TicketStatus]] = mapped_column(String(20), nullable=True)
    new_status: Mapped[TicketStatus] = mapped_column(String(20), nullable=False)
    changed_by: Mapped[str] = mapped_column(String(100), nullable=False)
    changed_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow, index=True)
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    details: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)


class TicketNoteModel(Base):
    """
    Database model for TicketNote.

    Maps to the 'ticket_notes' table.
    """
    __tablename__ = "ticket_notes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ticket_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("tickets.id"), nullable=False, index=True)
    author: Mapped[str] = mapped_column(String(100), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    kind: Mapped[NoteKind] = mapped_column(String(30), nullable=False, default=NoteKind.INTERNAL)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    details: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
