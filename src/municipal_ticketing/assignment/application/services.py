"""
Assignment Application Services
================================

Staff workload and the assignment orchestrator.

The orchestrator runs every assign and reassign as one transaction:
preconditions are re-checked there and the ticket row is written with a
version check, so of two racing requests exactly one wins. Notifications
go out only after the transaction has committed.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from municipal_ticketing.assignment.domain.entities import (
    BulkAssignFailure, BulkAssignResult, StaffCandidate, StaffMember, StaffWorkload
)
from municipal_ticketing.assignment.domain.ranking import AssignmentRanker
from municipal_ticketing.config import (
    ActorRole, NotificationKind, ReassignmentReason, TicketStatus,
    VALID_REASSIGNMENT_REASONS, settings
)
from municipal_ticketing.core import (
    ApplicationException, ConflictError, NotFoundError, PermissionDeniedError, ValidationError
)
from municipal_ticketing.infrastructure.database import SessionFactory, get_session_context
from municipal_ticketing.shared.clock import Clock, utcnow
from municipal_ticketing.shared.infrastructure.logging import get_logger
from municipal_ticketing.shared.infrastructure.notifications import (
    NotificationEvent, NotificationPublisher
)
from municipal_ticketing.tickets.application.services import (
    IWorkloadCounter, TicketLifecycle, TicketRepositories
)
from municipal_ticketing.tickets.domain.entities import Actor, Ticket, TicketFilter

logger = get_logger(__name__)

_DISPATCHERS = frozenset({ActorRole.SUPERVISOR, ActorRole.ADMIN, ActorRole.SYSTEM})
_MANAGERS = frozenset({ActorRole.SUPERVISOR, ActorRole.ADMIN})


# ========== Repository Interfaces (Dependency Inversion) ==========

class IStaffRepository(ABC):
    """Interface for the staff directory."""

    @abstractmethod
    async def get(self, staff_id: str) -> Optional[StaffMember]:
        """Get staff member by ID."""

    @abstractmethod
    async def save(self, staff: StaffMember) -> StaffMember:
        """Insert or update a directory entry."""

    @abstractmethod
    async def list(
        self,
        department: Optional[str] = None,
        ward: Optional[str] = None,
        active_only: bool = True
    ) -> List[StaffMember]:
        """List staff by affiliation."""

    @abstractmethod
    async def list_candidates(
        self,
        department: Optional[str] = None,
        ward: Optional[str] = None
    ) -> List[StaffMember]:
        """Active staff affiliated with the department or ward."""

    @abstractmethod
    async def workload_counts(
        self,
        staff_ids: Sequence[str],
        now: datetime
    ) -> Dict[str, Dict[str, int]]:
        """Workload per staff member computed from assignment records."""

    @abstractmethod
    async def count_active(self, staff_id: str, now: datetime) -> int:
        """Active ticket count from the source of truth."""

    @abstractmethod
    async def set_cached_count(self, staff_id: str, count: int) -> None:
        """Overwrite the cached counter."""


def staff_repository(session: AsyncSession) -> IStaffRepository:
    from municipal_ticketing.assignment.infrastructure.repositories import SQLAlchemyStaffRepository

    return SQLAlchemyStaffRepository(session)


def workload_counter(session: AsyncSession) -> IWorkloadCounter:
    """Workload counter bound to a session; handed to the ticket service."""
    from municipal_ticketing.assignment.infrastructure.repositories import SQLAlchemyWorkloadCounter

    return SQLAlchemyWorkloadCounter(session)


async def _load_staff(repo: IStaffRepository, staff_id: str) -> StaffMember:
    staff = await repo.get(staff_id)
    if staff is None:
        raise NotFoundError("Staff member", staff_id)
    return staff


# ========== Workload ==========

class WorkloadIndex:
    """
    Active-assignment counts per staff member.

    Reports and capacity checks always recompute from assignment records;
    ``refresh`` reconciles the cached counter used by the ranker.
    """

    def __init__(
        self,
        session_factory: Optional[SessionFactory] = None,
        clock: Clock = utcnow,
        overload_threshold_percent: Optional[int] = None
    ):
        self._session_factory = session_factory or get_session_context
        self._clock = clock
        self._overload_threshold = overload_threshold_percent or settings.overload_threshold_percent

    async def active_ticket_count(self, staff_id: str) -> int:
        async with self._session_factory() as session:
            repo = staff_repository(session)
            await _load_staff(repo, staff_id)
            return await repo.count_active(staff_id, self._clock())

    async def refresh(self, staff_id: Optional[str] = None) -> Dict[str, int]:
        """
        Overwrite cached counters with counts from the source of truth.

        Returns the recomputed count for every staff member refreshed.
        """
        now = self._clock()
        async with self._session_factory() as session:
            repo = staff_repository(session)
            if staff_id is not None:
                staff = [await _load_staff(repo, staff_id)]
            else:
                staff = await repo.list(active_only=False)

            counts = await repo.workload_counts([s.id for s in staff], now)
            refreshed: Dict[str, int] = {}
            for member in staff:
                actual = counts[member.id]["active"]
                if actual != member.active_ticket_count:
                    logger.warning(
                        "Workload counter drift corrected",
                        extra={
                            "staff_id": member.id,
                            "cached": member.active_ticket_count,
                            "actual": actual,
                        }
                    )
                    await repo.set_cached_count(member.id, actual)
                refreshed[member.id] = actual
        return refreshed

    async def workload_report(
        self,
        department: Optional[str] = None,
        ward: Optional[str] = None
    ) -> List[StaffWorkload]:
        """Per-staff workload for a department and/or ward."""
        async with self._session_factory() as session:
            repo = staff_repository(session)
            staff = await repo.list(department=department, ward=ward)
            counts = await repo.workload_counts([s.id for s in staff], self._clock())
        return [self._to_workload(member, counts[member.id]) for member in staff]

    async def check_capacity(self, staff_id: str) -> StaffWorkload:
        async with self._session_factory() as session:
            repo = staff_repository(session)
            member = await _load_staff(repo, staff_id)
            counts = await repo.workload_counts([staff_id], self._clock())
        return self._to_workload(member, counts[staff_id])

    def _to_workload(self, member: StaffMember, counts: Dict[str, int]) -> StaffWorkload:
        percentage = member.capacity_percentage(counts["active"])
        return StaffWorkload(
            staff_id=member.id,
            full_name=member.full_name,
            department=member.department,
            ward=member.ward,
            availability_status=member.availability_status,
            active=counts["active"],
            in_progress=counts["in_progress"],
            pending=counts["pending"],
            overdue=counts["overdue"],
            capacity=member.capacity,
            capacity_percentage=percentage,
            overloaded=percentage >= self._overload_threshold,
        )


# ========== Orchestrator ==========

class AssignmentOrchestrator:
    """
    Suggests, assigns, reassigns and bulk-assigns tickets.

    Each operation is one transaction per ticket. Notifications are
    published after commit and never affect the outcome.
    """

    def __init__(
        self,
        ranker: Optional[AssignmentRanker] = None,
        publisher: Optional[NotificationPublisher] = None,
        session_factory: Optional[SessionFactory] = None,
        clock: Clock = utcnow
    ):
        self._ranker = ranker or AssignmentRanker()
        self._publisher = publisher
        self._session_factory = session_factory or get_session_context
        self._clock = clock

    async def suggest_staff(self, ticket_id: UUID, limit: Optional[int] = None) -> List[StaffCandidate]:
        """Ranked eligible staff for a ticket, read from one snapshot."""
        async with self._session_factory() as session:
            ticket = await TicketRepositories.for_session(session).load(ticket_id)
            staff = await staff_repository(session).list_candidates(ticket.department, ticket.ward)

        ranked = self._ranker.rank(
            staff, ticket.location, department=ticket.department, ward=ticket.ward
        )
        return ranked[:limit] if limit else ranked

    async def get_unassigned_queue(self, ticket_filter: Optional[TicketFilter] = None) -> List[Ticket]:
        """Active tickets nobody is working on, oldest first."""
        async with self._session_factory() as session:
            return await TicketRepositories.for_session(session).tickets.list_unassigned(ticket_filter)

    async def assign(
        self,
        ticket_id: UUID,
        staff_id: str,
        actor: Actor,
        note: Optional[str] = None
    ) -> Ticket:
        """
        Assign an unassigned ticket to a staff member.

        Raises:
            NotFoundError: Unknown ticket or staff member
            PermissionDeniedError: Actor is not a supervisor/admin
            ConflictError: Ticket inactive, already assigned, or changed concurrently
            ValidationError: Staff member not eligible for the ticket
        """
        self._require_dispatcher(actor, "assign tickets")

        async with self._session_factory() as session:
            repos = TicketRepositories.for_session(session)
            staff_repo = staff_repository(session)

            ticket = await repos.load(ticket_id)
            staff = await _load_staff(staff_repo, staff_id)
            self._require_active(ticket)

            active = await repos.tickets.get_active_assignment(ticket.id)
            if active is not None:
                raise ConflictError(
                    "Ticket is already assigned",
                    details={"ticket_id": str(ticket.id), "assigned_staff_id": active.staff_id}
                )
            self._require_eligible(staff, ticket)

            lifecycle = TicketLifecycle(repos, workload_counter(session), clock=self._clock)
            try:
                updated = await lifecycle.apply(
                    ticket,
                    TicketStatus.ASSIGNED,
                    actor,
                    note,
                    changes={"assigned_staff_id": staff.id},
                    details={"to_staff_id": staff.id},
                    orchestrated=True,
                )
            except IntegrityError as e:
                raise ConflictError(
                    "Ticket is already assigned",
                    details={"ticket_id": str(ticket.id)}
                ) from e

        logger.info(
            "Ticket assigned",
            extra={
                "ticket_id": str(updated.id),
                "staff_id": staff.id,
                "actor_id": actor.id,
                "capacity_percentage": staff.capacity_percentage(staff.active_ticket_count + 1),
            }
        )
        self._notify(staff.id, updated, NotificationKind.TICKET_ASSIGNED, note)
        return updated

    async def reassign(
        self,
        ticket_id: UUID,
        new_staff_id: str,
        reason: ReassignmentReason,
        actor: Actor,
        note: Optional[str] = None
    ) -> Ticket:
        """
        Move an assigned ticket to another staff member.

        Closes the current assignment record, opens one for the new staff
        member and writes a single history entry naming both and the reason.
        """
        if actor.role not in _MANAGERS:
            raise PermissionDeniedError(actor.role.value, "reassign tickets")
        reason = self._parse_reason(reason)

        async with self._session_factory() as session:
            repos = TicketRepositories.for_session(session)
            staff_repo = staff_repository(session)

            ticket = await repos.load(ticket_id)
            new_staff = await _load_staff(staff_repo, new_staff_id)
            self._require_active(ticket)

            current = await repos.tickets.get_active_assignment(ticket.id)
            if current is None:
                raise ConflictError(
                    "Ticket is not currently assigned",
                    details={"ticket_id": str(ticket.id)}
                )
            if current.staff_id == new_staff.id:
                raise ValidationError(
                    "Ticket is already assigned to this staff member",
                    field="new_staff_id"
                )
            self._require_eligible(new_staff, ticket)

            counter = workload_counter(session)
            await repos.tickets.end_assignment(current.id, self._clock())
            await counter.decrement(current.staff_id)

            lifecycle = TicketLifecycle(repos, counter, clock=self._clock)
            try:
                updated = await lifecycle.apply(
                    ticket,
                    TicketStatus.ASSIGNED,
                    actor,
                    note,
                    changes={"assigned_staff_id": new_staff.id},
                    details={
                        "from_staff_id": current.staff_id,
                        "to_staff_id": new_staff.id,
                        "reason": reason.value,
                    },
                    reassignment=True,
                    orchestrated=True,
                    assignment_reason=reason.value,
                )
            except IntegrityError as e:
                raise ConflictError(
                    "Ticket was reassigned concurrently",
                    details={"ticket_id": str(ticket.id)}
                ) from e

        logger.info(
            "Ticket reassigned",
            extra={
                "ticket_id": str(updated.id),
                "from_staff_id": current.staff_id,
                "to_staff_id": new_staff.id,
                "reason": reason.value,
                "actor_id": actor.id,
            }
        )
        self._notify(new_staff.id, updated, NotificationKind.TICKET_ASSIGNED, note)
        self._notify(current.staff_id, updated, NotificationKind.TICKET_UNASSIGNED, None)
        return updated

    async def bulk_assign(
        self,
        ticket_ids: Iterable[UUID],
        staff_id: str,
        actor: Actor,
        note: Optional[str] = None
    ) -> BulkAssignResult:
        """
        Assign each ticket independently.

        One ticket failing does not roll back the others; failures are
        reported per ticket.
        """
        self._require_dispatcher(actor, "assign tickets")
        result = BulkAssignResult()

        for ticket_id in dict.fromkeys(ticket_ids):
            try:
                result.succeeded.append(await self.assign(ticket_id, staff_id, actor, note))
            except ApplicationException as e:
                result.failed.append(BulkAssignFailure(ticket_id, e.message, type(e).__name__))
            except Exception as e:
                logger.exception("Bulk assignment item failed", extra={"ticket_id": str(ticket_id)})
                result.failed.append(BulkAssignFailure(ticket_id, str(e), type(e).__name__))

        logger.info(
            "Bulk assignment finished",
            extra={
                "staff_id": staff_id,
                "succeeded": len(result.succeeded),
                "failed": len(result.failed),
            }
        )
        return result

    # ========== Checks ==========

    @staticmethod
    def _require_dispatcher(actor: Actor, action: str) -> None:
        if actor.role not in _DISPATCHERS:
            raise PermissionDeniedError(actor.role.value, action)

    @staticmethod
    def _require_active(ticket: Ticket) -> None:
        if not ticket.is_active:
            raise ConflictError(
                f"Ticket is {ticket.status.value} and cannot be assigned",
                details={"ticket_id": str(ticket.id), "status": ticket.status.value}
            )

    def _require_eligible(self, staff: StaffMember, ticket: Ticket) -> None:
        if not self._ranker.is_eligible(staff, ticket.department, ticket.ward):
            raise ValidationError(
                f"Staff member '{staff.id}' is not eligible for this ticket",
                field="staff_id",
                details={
                    "role": staff.role.value,
                    "availability_status": staff.availability_status.value,
                    "is_active": staff.is_active,
                    "department": ticket.department,
                    "ward": ticket.ward,
                }
            )

    @staticmethod
    def _parse_reason(reason) -> ReassignmentReason:
        try:
            return ReassignmentReason(reason)
        except ValueError:
            raise ValidationError(
                f"reason must be one of {VALID_REASSIGNMENT_REASONS}",
                field="reason"
            ) from None

    def _notify(
        self,
        recipient: str,
        ticket: Ticket,
        kind: NotificationKind,
        note: Optional[str]
    ) -> None:
        if self._publisher is None:
            return
        if kind == NotificationKind.TICKET_ASSIGNED:
            message = f"Complaint {ticket.tracking_code} has been assigned to you"
        else:
            message = f"Complaint {ticket.tracking_code} has been reassigned to another staff member"
        self._publisher.publish(NotificationEvent(
            recipient=recipient,
            ticket_ref=ticket.tracking_code,
            ticket_id=str(ticket.id),
            message=message,
            kind=kind,
            payload={"note": note, "status": ticket.status.value},
        ))
