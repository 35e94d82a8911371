"""
Ticket Infrastructure Repositories
===================================

Concrete implementations of repository interfaces using SQLAlchemy.

This layer contains the data access logic - how we store and retrieve
tickets, assignment records and the audit ledger.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy import and_, exists, func, select, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from municipal_ticketing.config import (
    ACTIVE_STATUSES, NoteKind, Priority, TicketStatus
)
from municipal_ticketing.core import ConflictError
from municipal_ticketing.tickets.application.services import (
    IAuditLogRepository, ITicketRepository
)
from municipal_ticketing.tickets.domain.entities import (
    AssignmentRecord, StatusHistoryEntry, Ticket, TicketFilter, TicketNote
)
from municipal_ticketing.tickets.infrastructure.models import (
    AssignmentRecordModel, StatusHistoryModel, TicketModel, TicketNoteModel
)


# ========== Mapping ==========

def _plain(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def _column_values(values: Dict[str, Any]) -> Dict[str, Any]:
    return {key: _plain(value) for key, value in values.items()}


def ticket_from_model(model: TicketModel) -> Ticket:
    """Convert a ticket row to the domain snapshot."""
    return Ticket(
        id=model.id,
        tracking_code=model.tracking_code,
        title=model.title,
        description=model.description or "",
        category=model.category,
        department=model.department,
        priority=Priority(model.priority),
        status=TicketStatus(model.status),
        ward=model.ward,
        latitude=model.latitude,
        longitude=model.longitude,
        submitted_by=model.submitted_by,
        submitted_at=model.submitted_at,
        updated_at=model.updated_at,
        sla_due_at=model.sla_due_at,
        assigned_staff_id=model.assigned_staff_id,
        assigned_at=model.assigned_at,
        resolved_at=model.resolved_at,
        closed_at=model.closed_at,
        resolution_note=model.resolution_note,
        is_overdue=model.is_overdue,
        overdue_at=model.overdue_at,
        is_escalated=model.is_escalated,
        escalated_at=model.escalated_at,
        version=model.version,
    )


def _record_from_model(model: AssignmentRecordModel) -> AssignmentRecord:
    return AssignmentRecord(
        id=model.id,
        ticket_id=model.ticket_id,
        staff_id=model.staff_id,
        assigned_by=model.assigned_by,
        assigned_at=model.assigned_at,
        ended_at=model.ended_at,
        note=model.note,
        reason=model.reason,
    )


def _apply_filter(stmt, ticket_filter: Optional[TicketFilter]):
    if ticket_filter is None:
        return stmt
    conditions = []
    if ticket_filter.ward:
        conditions.append(TicketModel.ward == ticket_filter.ward)
    if ticket_filter.department:
        conditions.append(TicketModel.department == ticket_filter.department)
    if ticket_filter.category:
        conditions.append(TicketModel.category == ticket_filter.category)
    if ticket_filter.priority:
        conditions.append(TicketModel.priority == _plain(ticket_filter.priority))
    if ticket_filter.assigned_staff_id:
        conditions.append(TicketModel.assigned_staff_id == ticket_filter.assigned_staff_id)
    if ticket_filter.statuses:
        conditions.append(TicketModel.status.in_([s.value for s in ticket_filter.statuses]))
    if conditions:
        stmt = stmt.where(and_(*conditions))
    return stmt


def _page(stmt, ticket_filter: Optional[TicketFilter]):
    if ticket_filter is None:
        return stmt
    return stmt.limit(ticket_filter.limit).offset(ticket_filter.offset)


_ACTIVE = [s.value for s in ACTIVE_STATUSES]


class SQLAlchemyTicketRepository(ITicketRepository):
    """
    SQLAlchemy implementation of the ticket store.

    Handles persistence of tickets and their assignment records.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def add(self, ticket: Ticket) -> Ticket:
        """Insert a new ticket row."""
        model = TicketModel(
            id=ticket.id,
            tracking_code=ticket.tracking_code,
            title=ticket.title,
            description=ticket.description,
            category=ticket.category,
            department=ticket.department,
            priority=_plain(ticket.priority),
            status=_plain(ticket.status),
            ward=ticket.ward,
            latitude=ticket.latitude,
            longitude=ticket.longitude,
            submitted_by=ticket.submitted_by,
            submitted_at=ticket.submitted_at,
            updated_at=ticket.updated_at or ticket.submitted_at,
            sla_due_at=ticket.sla_due_at,
            version=ticket.version,
        )
        self._session.add(model)
        await self._session.flush()
        return ticket_from_model(model)

    async def get(self, ticket_id: UUID) -> Optional[Ticket]:
        """Get ticket by internal ID, bypassing the identity map."""
        stmt = (
            select(TicketModel)
            .where(TicketModel.id == ticket_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return ticket_from_model(model) if model else None

    async def get_by_tracking_code(self, tracking_code: str) -> Optional[Ticket]:
        """Get ticket by citizen-facing tracking code."""
        stmt = select(TicketModel).where(TicketModel.tracking_code == tracking_code)
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return ticket_from_model(model) if model else None

    async def compare_and_set(
        self,
        ticket_id: UUID,
        expected_version: int,
        values: Dict[str, Any]
    ) -> Optional[Ticket]:
        """
        Write ``values`` only if the row still has ``expected_version``.

        Returns the new snapshot, or None when another writer got there first.
        """
        stmt = (
            update(TicketModel)
            .where(TicketModel.id == ticket_id, TicketModel.version == expected_version)
            .values(**_column_values(values))
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self._session.execute(stmt)
        except OperationalError as e:
            # SQLite reports a competing writer as a locked database
            if "locked" in str(e.orig).lower():
                raise ConflictError(
                    "Ticket was modified concurrently",
                    details={"ticket_id": str(ticket_id)}
                ) from e
            raise

        if result.rowcount != 1:
            return None
        return await self.get(ticket_id)

    async def list(self, ticket_filter: Optional[TicketFilter] = None) -> List[Ticket]:
        """List tickets, newest first."""
        stmt = _apply_filter(select(TicketModel), ticket_filter)
        stmt = _page(stmt.order_by(TicketModel.submitted_at.desc()), ticket_filter)
        result = await self._session.execute(stmt)
        return [ticket_from_model(m) for m in result.scalars().all()]

    async def list_active_ids(self) -> List[UUID]:
        """IDs of every ticket whose SLA clock is running."""
        stmt = (
            select(TicketModel.id)
            .where(TicketModel.status.in_(_ACTIVE))
            .order_by(TicketModel.sla_due_at.asc())
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def list_due_before(
        self,
        cutoff: datetime,
        ticket_filter: Optional[TicketFilter] = None,
        not_before: Optional[datetime] = None
    ) -> List[Ticket]:
        """
        Active tickets with ``sla_due_at < cutoff``.

        With ``not_before`` only tickets due at or after that instant are
        returned, which is how the at-risk window is expressed.
        """
        stmt = select(TicketModel).where(
            TicketModel.status.in_(_ACTIVE),
            TicketModel.sla_due_at < cutoff,
        )
        if not_before is not None:
            stmt = stmt.where(TicketModel.sla_due_at >= not_before)
        stmt = _apply_filter(stmt, ticket_filter)
        stmt = _page(stmt.order_by(TicketModel.sla_due_at.asc(), TicketModel.id), ticket_filter)
        result = await self._session.execute(stmt)
        return [ticket_from_model(m) for m in result.scalars().all()]

    async def list_unassigned(self, ticket_filter: Optional[TicketFilter] = None) -> List[Ticket]:
        """Active tickets without an open assignment record, oldest first."""
        open_record = exists().where(
            AssignmentRecordModel.ticket_id == TicketModel.id,
            AssignmentRecordModel.ended_at.is_(None),
        )
        stmt = select(TicketModel).where(TicketModel.status.in_(_ACTIVE), ~open_record)
        stmt = _apply_filter(stmt, ticket_filter)
        stmt = _page(stmt.order_by(TicketModel.submitted_at.asc(), TicketModel.id), ticket_filter)
        result = await self._session.execute(stmt)
        return [ticket_from_model(m) for m in result.scalars().all()]

    async def flag_overdue(self, ticket_id: UUID, at: datetime) -> bool:
        """Set the overdue flag once; False if it was already set."""
        stmt = (
            update(TicketModel)
            .where(TicketModel.id == ticket_id, TicketModel.is_overdue.is_(False))
            .values(is_overdue=True, overdue_at=at)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def flag_escalated(self, ticket_id: UUID, at: datetime) -> bool:
        """Set the escalation flag once; False if it was already set."""
        stmt = (
            update(TicketModel)
            .where(TicketModel.id == ticket_id, TicketModel.is_escalated.is_(False))
            .values(is_escalated=True, escalated_at=at)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    # ========== Assignment records ==========

    async def get_active_assignment(self, ticket_id: UUID) -> Optional[AssignmentRecord]:
        stmt = select(AssignmentRecordModel).where(
            AssignmentRecordModel.ticket_id == ticket_id,
            AssignmentRecordModel.ended_at.is_(None),
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return _record_from_model(model) if model else None

    async def open_assignment(self, record: AssignmentRecord) -> AssignmentRecord:
        model = AssignmentRecordModel(
            ticket_id=record.ticket_id,
            staff_id=record.staff_id,
            assigned_by=record.assigned_by,
            assigned_at=record.assigned_at,
            note=record.note,
            reason=record.reason,
        )
        self._session.add(model)
        await self._session.flush()
        return _record_from_model(model)

    async def end_assignment(self, record_id: int, ended_at: datetime) -> bool:
        """Close an open record; False if it was already closed."""
        stmt = (
            update(AssignmentRecordModel)
            .where(AssignmentRecordModel.id == record_id, AssignmentRecordModel.ended_at.is_(None))
            .values(ended_at=ended_at)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def list_assignments(self, ticket_id: UUID) -> List[AssignmentRecord]:
        stmt = (
            select(AssignmentRecordModel)
            .where(AssignmentRecordModel.ticket_id == ticket_id)
            .order_by(AssignmentRecordModel.assigned_at, AssignmentRecordModel.id)
        )
        result = await self._session.execute(stmt)
        return [_record_from_model(m) for m in result.scalars().all()]


class SQLAlchemyAuditLogRepository(IAuditLogRepository):
    """
    SQLAlchemy implementation of the audit log.

    Status history and notes are insert-only.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def append_status_change(self, entry: StatusHistoryEntry) -> StatusHistoryEntry:
        model = StatusHistoryModel(
            ticket_id=entry.ticket_id,
            old_status=_plain(entry.old_status),
            new_status=_plain(entry.new_status),
            changed_by=entry.changed_by,
            changed_at=entry.changed_at,
            note=entry.note,
            details=dict(entry.details),
        )
        self._session.add(model)
        await self._session.flush()
        return self._history_from_model(model)

    async def list_history(self, ticket_id: UUID) -> List[StatusHistoryEntry]:
        stmt = (
            select(StatusHistoryModel)
            .where(StatusHistoryModel.ticket_id == ticket_id)
            .order_by(StatusHistoryModel.changed_at, StatusHistoryModel.id)
        )
        result = await self._session.execute(stmt)
        return [self._history_from_model(m) for m in result.scalars().all()]

    async def add_note(self, note: TicketNote) -> TicketNote:
        model = TicketNoteModel(
            ticket_id=note.ticket_id,
            author=note.author,
            body=note.body,
            kind=_plain(note.kind),
            created_at=note.created_at,
            details=dict(note.details),
        )
        self._session.add(model)
        await self._session.flush()
        return self._note_from_model(model)

    async def list_notes(
        self,
        ticket_id: UUID,
        kind: Optional[NoteKind] = None
    ) -> List[TicketNote]:
        stmt = select(TicketNoteModel).where(TicketNoteModel.ticket_id == ticket_id)
        if kind is not None:
            stmt = stmt.where(TicketNoteModel.kind == kind.value)
        stmt = stmt.order_by(TicketNoteModel.created_at, TicketNoteModel.id)
        result = await self._session.execute(stmt)
        return [self._note_from_model(m) for m in result.scalars().all()]

    async def first_resolutions(
        self,
        ticket_filter: Optional[TicketFilter] = None
    ) -> Sequence[Tuple[Ticket, datetime]]:
        """
        Each ticket that was ever resolved, with the time of its first resolution.

        Read from the history ledger so reopen/close cycles do not move it.
        """
        first_resolved = (
            select(
                StatusHistoryModel.ticket_id.label("ticket_id"),
                func.min(StatusHistoryModel.changed_at).label("resolved_at"),
            )
            .where(StatusHistoryModel.new_status == TicketStatus.RESOLVED.value)
            .group_by(StatusHistoryModel.ticket_id)
            .subquery()
        )
        stmt = select(TicketModel, first_resolved.c.resolved_at).join(
            first_resolved, first_resolved.c.ticket_id == TicketModel.id
        )
        stmt = _apply_filter(stmt, ticket_filter).order_by(TicketModel.submitted_at)
        result = await self._session.execute(stmt)
        return [(ticket_from_model(model), resolved_at) for model, resolved_at in result.all()]

    @staticmethod
    def _history_from_model(model: StatusHistoryModel) -> StatusHistoryEntry:
        return StatusHistoryEntry(
            id=model.id,
            ticket_id=model.ticket_id,
            old_status=TicketStatus(model.old_status) if model.old_status else None,
            new_status=TicketStatus(model.new_status),
            changed_by=model.changed_by,
            changed_at=model.changed_at,
            note=model.note,
            details=dict(model.details or {}),
        )

    @staticmethod
    def _note_from_model(model: TicketNoteModel) -> TicketNote:
        return TicketNote(
            id=model.id,
            ticket_id=model.ticket_id,
            author=model.author,
            body=model.body,
            kind=NoteKind(model.kind),
            created_at=model.created_at,
            details=dict(model.details or {}),
        )
