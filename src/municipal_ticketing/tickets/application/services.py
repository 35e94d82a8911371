"""
Ticket Application Services
============================

Application services orchestrate the lifecycle: they load a snapshot,
ask the state machine whether a move is legal, write it with a version
check and append the audit entry, all inside one transaction.

Following SOLID principles:
- Single Responsibility: TicketLifecycle applies moves, TicketService exposes operations
- Dependency Inversion: SLA and workload concerns arrive through interfaces
"""

import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple
from uuid import UUID, uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from municipal_ticketing.config import (
    ActorRole, INACTIVE_STATUSES, NoteKind, NotificationKind, Priority,
    STAFFED_STATUSES, TicketStatus, settings
)
from municipal_ticketing.core import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from municipal_ticketing.infrastructure.database import SessionFactory, get_session_context
from municipal_ticketing.shared.clock import Clock, utcnow
from municipal_ticketing.shared.infrastructure.logging import get_logger
from municipal_ticketing.shared.infrastructure.notifications import (
    NotificationEvent, NotificationPublisher
)
from municipal_ticketing.tickets.application.dto import TicketCreateRequest
from municipal_ticketing.tickets.domain.entities import (
    Actor, AssignmentRecord, StatusHistoryEntry, Ticket, TicketFilter, TicketNote
)
from municipal_ticketing.tickets.domain.state_machine import (
    TicketStateMachine, TransitionContext, state_machine
)

logger = get_logger(__name__)


# ========== Repository Interfaces (Dependency Inversion) ==========

class ITicketRepository(ABC):
    """Interface for the ticket store."""

    @abstractmethod
    async def add(self, ticket: Ticket) -> Ticket:
        """Insert a new ticket."""

    @abstractmethod
    async def get(self, ticket_id: UUID) -> Optional[Ticket]:
        """Get ticket by internal ID."""

    @abstractmethod
    async def get_by_tracking_code(self, tracking_code: str) -> Optional[Ticket]:
        """Get ticket by tracking code."""

    @abstractmethod
    async def compare_and_set(
        self,
        ticket_id: UUID,
        expected_version: int,
        values: Dict[str, Any]
    ) -> Optional[Ticket]:
        """Versioned write; None when the version no longer matches."""

    @abstractmethod
    async def list(self, ticket_filter: Optional[TicketFilter] = None) -> List[Ticket]:
        """List tickets with filters."""

    @abstractmethod
    async def list_active_ids(self) -> List[UUID]:
        """IDs of tickets whose SLA clock is running."""

    @abstractmethod
    async def list_due_before(
        self,
        cutoff: datetime,
        ticket_filter: Optional[TicketFilter] = None,
        not_before: Optional[datetime] = None
    ) -> List[Ticket]:
        """Active tickets due before ``cutoff``."""

    @abstractmethod
    async def list_unassigned(self, ticket_filter: Optional[TicketFilter] = None) -> List[Ticket]:
        """Active tickets without an open assignment."""

    @abstractmethod
    async def flag_overdue(self, ticket_id: UUID, at: datetime) -> bool:
        """Set the overdue flag if not set."""

    @abstractmethod
    async def flag_escalated(self, ticket_id: UUID, at: datetime) -> bool:
        """Set the escalation flag if not set."""

    @abstractmethod
    async def get_active_assignment(self, ticket_id: UUID) -> Optional[AssignmentRecord]:
        """Open assignment record for a ticket, if any."""

    @abstractmethod
    async def open_assignment(self, record: AssignmentRecord) -> AssignmentRecord:
        """Create an assignment record."""

    @abstractmethod
    async def end_assignment(self, record_id: int, ended_at: datetime) -> bool:
        """Close an assignment record."""

    @abstractmethod
    async def list_assignments(self, ticket_id: UUID) -> List[AssignmentRecord]:
        """All assignment records of a ticket, oldest first."""


class IAuditLogRepository(ABC):
    """Interface for the append-only audit log."""

    @abstractmethod
    async def append_status_change(self, entry: StatusHistoryEntry) -> StatusHistoryEntry:
        """Append one status history entry."""

    @abstractmethod
    async def list_history(self, ticket_id: UUID) -> List[StatusHistoryEntry]:
        """Status history of a ticket, time ordered."""

    @abstractmethod
    async def add_note(self, note: TicketNote) -> TicketNote:
        """Append a note to the ledger."""

    @abstractmethod
    async def list_notes(self, ticket_id: UUID, kind: Optional[NoteKind] = None) -> List[TicketNote]:
        """Notes of a ticket, time ordered."""

    @abstractmethod
    async def first_resolutions(
        self,
        ticket_filter: Optional[TicketFilter] = None
    ) -> Sequence[Tuple[Ticket, datetime]]:
        """Resolved tickets with the time of their first resolution."""


# ========== Ports implemented by other modules ==========

class IWorkloadCounter(ABC):
    """Cached per-staff active ticket counter (owned by the assignment module)."""

    @abstractmethod
    async def increment(self, staff_id: str, assigned_at: datetime) -> None:
        """A ticket was assigned to the staff member."""

    @abstractmethod
    async def decrement(self, staff_id: str) -> None:
        """A ticket left the staff member's active set."""


class ISLAPolicy(ABC):
    """Due-date policy (owned by the SLA module)."""

    @abstractmethod
    def department_for(self, category: str) -> Optional[str]:
        """Department that owns a category, if configured."""

    @abstractmethod
    def due_at(
        self,
        category: str,
        priority: Priority,
        department: Optional[str],
        submitted_at: datetime
    ) -> datetime:
        """SLA due date for a new ticket."""


WorkloadCounterFactory = Callable[[AsyncSession], IWorkloadCounter]


@dataclass
class TicketRepositories:
    """Ticket store and audit log bound to one session."""
    tickets: ITicketRepository
    audit: IAuditLogRepository

    @classmethod
    def for_session(cls, session: AsyncSession) -> "TicketRepositories":
        from municipal_ticketing.tickets.infrastructure.repositories import (
            SQLAlchemyAuditLogRepository, SQLAlchemyTicketRepository
        )

        return cls(
            tickets=SQLAlchemyTicketRepository(session),
            audit=SQLAlchemyAuditLogRepository(session),
        )

    async def load(self, ticket_id: UUID) -> Ticket:
        ticket = await self.tickets.get(ticket_id)
        if ticket is None:
            raise NotFoundError("Ticket", str(ticket_id))
        return ticket


def generate_tracking_code(submitted_at: datetime) -> str:
    """Citizen-facing reference, e.g. CMP-20240101-3F9A1C."""
    return f"CMP-{submitted_at:%Y%m%d}-{secrets.token_hex(3).upper()}"


# ========== Lifecycle ==========

class TicketLifecycle:
    """
    Applies one validated status move inside the caller's transaction.

    Steps: validate against the edge table, write the ticket row with a
    version check, append exactly one history entry, then bring the
    assignment records and workload counter in line with the new status.
    """

    def __init__(
        self,
        repositories: TicketRepositories,
        workload: IWorkloadCounter,
        clock: Clock = utcnow,
        machine: TicketStateMachine = state_machine,
        reopen_window: Optional[timedelta] = None
    ):
        self._repos = repositories
        self._workload = workload
        self._clock = clock
        self._machine = machine
        self._reopen_window = reopen_window or timedelta(days=settings.reopen_window_days)

    async def apply(
        self,
        ticket: Ticket,
        new_status: TicketStatus,
        actor: Actor,
        note: Optional[str] = None,
        changes: Optional[Dict[str, Any]] = None,
        details: Optional[Dict[str, Any]] = None,
        reassignment: bool = False,
        orchestrated: bool = False,
        assignment_reason: Optional[str] = None
    ) -> Ticket:
        """
        Move ``ticket`` to ``new_status``.

        Args:
            ticket: Snapshot read in the current transaction
            new_status: Target status
            actor: Who is acting
            note: Free text recorded on the history entry
            changes: Extra ticket fields written with the move (assignment)
            details: Structured context for the history entry
            reassignment: Use the reassignment edges
            orchestrated: Caller is the assignment orchestrator and may take
                the edges into ``assigned``
            assignment_reason: Reason stored on a newly opened assignment record

        Raises:
            ConflictError: Illegal edge or the row changed since it was read
            PermissionDeniedError: Actor may not take the edge
            ValidationError: A guard rejected the move
        """
        now = self._clock()
        changes = dict(changes or {})
        staff_changed = changes.get("assigned_staff_id") not in (None, ticket.assigned_staff_id)
        if new_status == TicketStatus.ASSIGNED or staff_changed:
            changes["assigned_at"] = now

        ctx = TransitionContext(
            ticket=ticket,
            target=ticket.with_changes(status=new_status, **changes),
            new_status=new_status,
            actor=actor,
            note=note,
            now=now,
            reopen_window=self._reopen_window,
        )
        edge = self._machine.validate(ctx, reassignment=reassignment, orchestrated=orchestrated)

        values = {
            **changes,
            **self._machine.entry_effects(ctx),
            "status": new_status,
            "updated_at": now,
            "version": ticket.version + 1,
        }
        updated = await self._repos.tickets.compare_and_set(ticket.id, ticket.version, values)
        if updated is None:
            raise ConflictError(
                "Ticket was modified concurrently",
                details={"ticket_id": str(ticket.id), "expected_version": ticket.version}
            )

        await self._repos.audit.append_status_change(StatusHistoryEntry(
            ticket_id=ticket.id,
            old_status=ticket.status,
            new_status=new_status,
            changed_by=actor.id,
            changed_at=now,
            note=note.strip() if note else None,
            details=dict(details or {}),
        ))
        await self._sync_assignment(updated, actor, note, now, assignment_reason)

        logger.info(
            "Ticket status changed",
            extra={
                "ticket_id": str(ticket.id),
                "tracking_code": ticket.tracking_code,
                "edge": edge.label,
                "actor_id": actor.id,
                "actor_role": actor.role.value,
                "version": updated.version,
            }
        )
        return updated

    async def _sync_assignment(
        self,
        ticket: Ticket,
        actor: Actor,
        note: Optional[str],
        now: datetime,
        reason: Optional[str]
    ) -> None:
        active = await self._repos.tickets.get_active_assignment(ticket.id)

        if ticket.status in INACTIVE_STATUSES:
            if active is not None:
                await self._repos.tickets.end_assignment(active.id, now)
                await self._workload.decrement(active.staff_id)
            return

        if ticket.status in STAFFED_STATUSES and active is None and ticket.assigned_staff_id:
            await self._repos.tickets.open_assignment(AssignmentRecord(
                id=None,
                ticket_id=ticket.id,
                staff_id=ticket.assigned_staff_id,
                assigned_by=actor.id,
                assigned_at=now,
                note=note,
                reason=reason,
            ))
            await self._workload.increment(ticket.assigned_staff_id, now)


# ========== Application Services ==========

class TicketService:
    """
    Ticket creation, transitions and the audit trail.

    Every operation runs in its own transaction; notifications are published
    only after it commits.
    """

    def __init__(
        self,
        sla_policy: ISLAPolicy,
        workload_factory: WorkloadCounterFactory,
        publisher: Optional[NotificationPublisher] = None,
        session_factory: Optional[SessionFactory] = None,
        clock: Clock = utcnow
    ):
        self._sla_policy = sla_policy
        self._workload_factory = workload_factory
        self._publisher = publisher
        self._session_factory = session_factory or get_session_context
        self._clock = clock

    def lifecycle(self, session: AsyncSession, repositories: TicketRepositories) -> TicketLifecycle:
        return TicketLifecycle(repositories, self._workload_factory(session), clock=self._clock)

    async def create_ticket(self, payload: TicketCreateRequest, actor: Actor) -> Ticket:
        """
        File a new complaint in ``submitted`` with its SLA due date set.

        Raises:
            ExternalDependencyError: SLA configuration or ticket store unavailable
        """
        now = self._clock()
        priority = Priority(payload.priority)
        department = payload.department or self._sla_policy.department_for(payload.category)
        sla_due_at = self._sla_policy.due_at(payload.category, priority, department, now)

        ticket = Ticket(
            id=uuid4(),
            tracking_code=generate_tracking_code(now),
            title=payload.title.strip(),
            description=payload.description,
            category=payload.category,
            department=department,
            priority=priority,
            status=TicketStatus.SUBMITTED,
            ward=payload.ward,
            latitude=payload.latitude,
            longitude=payload.longitude,
            submitted_by=actor.id,
            submitted_at=now,
            updated_at=now,
            sla_due_at=sla_due_at,
        )

        async with self._session_factory() as session:
            ticket = await TicketRepositories.for_session(session).tickets.add(ticket)

        logger.info(
            "Ticket created",
            extra={
                "ticket_id": str(ticket.id),
                "tracking_code": ticket.tracking_code,
                "category": ticket.category,
                "priority": ticket.priority.value,
                "sla_due_at": ticket.sla_due_at.isoformat(),
            }
        )
        return ticket

    async def get_ticket(self, ticket_id: UUID) -> Ticket:
        async with self._session_factory() as session:
            return await TicketRepositories.for_session(session).load(ticket_id)

    async def get_by_tracking_code(self, tracking_code: str) -> Ticket:
        async with self._session_factory() as session:
            ticket = await TicketRepositories.for_session(session).tickets.get_by_tracking_code(tracking_code)
        if ticket is None:
            raise NotFoundError("Ticket", tracking_code)
        return ticket

    async def transition(
        self,
        ticket_id: UUID,
        new_status: TicketStatus,
        actor: Actor,
        note: Optional[str] = None
    ) -> Ticket:
        """
        Validate and apply one status change.

        The ticket row is untouched when any check fails.
        """
        async with self._session_factory() as session:
            repos = TicketRepositories.for_session(session)
            ticket = await repos.load(ticket_id)
            updated = await self.lifecycle(session, repos).apply(ticket, new_status, actor, note)

        self._notify_status_change(ticket, updated, actor)
        return updated

    async def list_history(self, ticket_id: UUID) -> List[StatusHistoryEntry]:
        async with self._session_factory() as session:
            repos = TicketRepositories.for_session(session)
            await repos.load(ticket_id)
            return await repos.audit.list_history(ticket_id)

    async def list_assignments(self, ticket_id: UUID) -> List[AssignmentRecord]:
        async with self._session_factory() as session:
            repos = TicketRepositories.for_session(session)
            await repos.load(ticket_id)
            return await repos.tickets.list_assignments(ticket_id)

    async def add_note(self, ticket_id: UUID, actor: Actor, body: str) -> TicketNote:
        """Append an internal note. Citizens cannot write internal notes."""
        if actor.role == ActorRole.CITIZEN:
            raise PermissionDeniedError(actor.role.value, "add internal notes")
        if not body or not body.strip():
            raise ValidationError("Note body must not be empty", field="body")

        async with self._session_factory() as session:
            repos = TicketRepositories.for_session(session)
            await repos.load(ticket_id)
            return await repos.audit.add_note(TicketNote(
                ticket_id=ticket_id,
                author=actor.id,
                body=body.strip(),
                kind=NoteKind.INTERNAL,
                created_at=self._clock(),
            ))

    async def list_notes(self, ticket_id: UUID) -> List[TicketNote]:
        async with self._session_factory() as session:
            repos = TicketRepositories.for_session(session)
            await repos.load(ticket_id)
            return await repos.audit.list_notes(ticket_id)

    def _notify_status_change(self, before: Ticket, after: Ticket, actor: Actor) -> None:
        if self._publisher is None:
            return

        message = f"Complaint {after.tracking_code} is now {after.status.value.replace('_', ' ')}"
        recipients = []
        if after.submitted_by and after.submitted_by != actor.id:
            recipients.append(after.submitted_by)
        # The previous assignee hears about reopened work
        if after.status == TicketStatus.REOPENED and after.assigned_staff_id:
            recipients.append(after.assigned_staff_id)

        for recipient in recipients:
            self._publisher.publish(NotificationEvent(
                recipient=recipient,
                ticket_ref=after.tracking_code,
                ticket_id=str(after.id),
                message=message,
                kind=NotificationKind.STATUS_CHANGED,
                payload={"old_status": before.status.value, "new_status": after.status.value},
            ))
