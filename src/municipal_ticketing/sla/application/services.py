"""
SLA Application Services
=========================

The SLA clock: due dates at creation, the audited recompute path, the
background sweep that flags breaches and escalations, and the overdue,
at-risk and compliance queries.

Overdue is always computed from ``sla_due_at``; the sweep flags exist so
that each breach and escalation is signalled exactly once.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import List, Optional, Tuple
from uuid import UUID

from municipal_ticketing.config import ActorRole, NoteKind, NotificationKind, Priority, settings
from municipal_ticketing.core import ConflictError, PermissionDeniedError, ValidationError
from municipal_ticketing.infrastructure.database import SessionFactory, get_session_context
from municipal_ticketing.shared.clock import Clock, utcnow
from municipal_ticketing.shared.infrastructure.logging import get_logger, log_latency
from municipal_ticketing.shared.infrastructure.notifications import (
    NotificationEvent, NotificationPublisher
)
from municipal_ticketing.sla.domain.entities import ComplianceReport, SweepReport
from municipal_ticketing.sla.domain.value_objects import SLACalculator, SLAConfig, SLATargets
from municipal_ticketing.tickets.application.services import ISLAPolicy, TicketRepositories
from municipal_ticketing.tickets.domain.entities import Actor, Ticket, TicketFilter, TicketNote

logger = get_logger(__name__)

_RECOMPUTE_ROLES = frozenset({ActorRole.SUPERVISOR, ActorRole.ADMIN, ActorRole.SYSTEM})


# ========== Config Interface (Dependency Inversion) ==========

class ISLAConfigProvider(ABC):
    """Interface for SLA configuration access."""

    @abstractmethod
    def get_config(self) -> SLAConfig:
        """Get current SLA configuration."""


# ========== Application Services ==========

class SLAClock(ISLAPolicy):
    """
    Computes and enforces ticket due dates.

    Also serves as the due-date policy the ticket service uses at creation.
    """

    def __init__(
        self,
        config_provider: ISLAConfigProvider,
        publisher: Optional[NotificationPublisher] = None,
        session_factory: Optional[SessionFactory] = None,
        clock: Clock = utcnow,
        at_risk_window_hours: Optional[int] = None
    ):
        self._config_provider = config_provider
        self._publisher = publisher
        self._session_factory = session_factory or get_session_context
        self._clock = clock
        self._at_risk_window = timedelta(hours=at_risk_window_hours or settings.at_risk_window_hours)

    # ========== Due-date policy ==========

    def department_for(self, category: str) -> Optional[str]:
        return self._config_provider.get_config().department_for(category)

    def targets_for(
        self,
        category: str,
        priority: Priority,
        department: Optional[str] = None
    ) -> SLATargets:
        return self._config_provider.get_config().lookup(category, priority, department)

    def due_at(
        self,
        category: str,
        priority: Priority,
        department: Optional[str],
        submitted_at: datetime
    ) -> datetime:
        return SLACalculator.due_at(submitted_at, self.targets_for(category, priority, department))

    # ========== Audited recompute ==========

    async def recompute_due_date(self, ticket_id: UUID, actor: Actor, reason: str) -> Ticket:
        """
        Recompute ``sla_due_at`` from the current configuration.

        The only way a due date changes after creation. Writes a note with
        the old and new due dates.
        """
        return await self._rewrite_due_date(ticket_id, actor, reason, NoteKind.SLA_RECOMPUTE)

    async def change_priority(
        self,
        ticket_id: UUID,
        priority: Priority,
        actor: Actor,
        reason: str
    ) -> Ticket:
        """Change a ticket's priority and recompute its due date through the audited path."""
        return await self._rewrite_due_date(
            ticket_id, actor, reason, NoteKind.PRIORITY_CHANGE, priority=Priority(priority)
        )

    async def _rewrite_due_date(
        self,
        ticket_id: UUID,
        actor: Actor,
        reason: str,
        kind: NoteKind,
        priority: Optional[Priority] = None
    ) -> Ticket:
        if actor.role not in _RECOMPUTE_ROLES:
            raise PermissionDeniedError(actor.role.value, "change a ticket's SLA")
        if not reason or not reason.strip():
            raise ValidationError("A reason is required", field="reason")

        now = self._clock()
        async with self._session_factory() as session:
            repos = TicketRepositories.for_session(session)
            ticket = await repos.load(ticket_id)
            if not ticket.is_active:
                raise ConflictError(
                    f"SLA of a {ticket.status.value} ticket cannot change",
                    details={"ticket_id": str(ticket_id)}
                )
            if priority is not None and priority == ticket.priority:
                raise ValidationError(
                    f"Ticket already has priority '{priority.value}'",
                    field="priority"
                )

            new_priority = priority or ticket.priority
            new_due = self.due_at(ticket.category, new_priority, ticket.department, ticket.submitted_at)

            values = {
                "priority": new_priority,
                "sla_due_at": new_due,
                "updated_at": now,
                "version": ticket.version + 1,
            }
            if new_due >= now:
                values.update(is_overdue=False, overdue_at=None, is_escalated=False, escalated_at=None)

            updated = await repos.tickets.compare_and_set(ticket.id, ticket.version, values)
            if updated is None:
                raise ConflictError(
                    "Ticket was modified concurrently",
                    details={"ticket_id": str(ticket_id), "expected_version": ticket.version}
                )

            await repos.audit.add_note(TicketNote(
                ticket_id=ticket.id,
                author=actor.id,
                body=reason.strip(),
                kind=kind,
                created_at=now,
                details={
                    "old_priority": ticket.priority.value,
                    "new_priority": new_priority.value,
                    "old_sla_due_at": ticket.sla_due_at.isoformat(),
                    "new_sla_due_at": new_due.isoformat(),
                },
            ))

        logger.info(
            "Ticket SLA recomputed",
            extra={
                "ticket_id": str(ticket_id),
                "kind": kind.value,
                "old_sla_due_at": ticket.sla_due_at.isoformat(),
                "new_sla_due_at": new_due.isoformat(),
                "actor_id": actor.id,
            }
        )
        return updated

    # ========== Sweep ==========

    async def sweep(self) -> SweepReport:
        """
        Flag every active ticket that is past due or past escalation.

        Each ticket is checked in its own transaction with conditional flag
        updates, so re-running the sweep, or running two at once, changes
        nothing twice. A failing ticket is logged and skipped.
        """
        now = self._clock()
        report = SweepReport(started_at=now)
        events: List[NotificationEvent] = []

        with log_latency(logger, "sla_sweep"):
            async with self._session_factory() as session:
                ticket_ids = await TicketRepositories.for_session(session).tickets.list_active_ids()

            for ticket_id in ticket_ids:
                report.scanned += 1
                try:
                    ticket, overdue, escalated = await self._check_ticket(ticket_id, now)
                except Exception as e:
                    report.failed.append(str(ticket_id))
                    logger.error(
                        "SLA check failed for ticket",
                        extra={"ticket_id": str(ticket_id), "error": str(e)}
                    )
                    continue

                if overdue:
                    report.newly_overdue += 1
                    events.extend(self._breach_events(ticket))
                if escalated:
                    report.newly_escalated += 1
                    events.append(self._escalation_event(ticket, now))

        report.finished_at = self._clock()
        for event in events:
            self._publish(event)

        logger.info("SLA sweep finished", extra=report.to_dict())
        return report

    async def _check_ticket(
        self,
        ticket_id: UUID,
        now: datetime
    ) -> Tuple[Optional[Ticket], bool, bool]:
        async with self._session_factory() as session:
            repos = TicketRepositories.for_session(session)
            ticket = await repos.tickets.get(ticket_id)
            # Resolved or removed since the scan started
            if ticket is None or not SLACalculator.is_overdue(ticket, now):
                return ticket, False, False

            overdue = await repos.tickets.flag_overdue(ticket.id, now)

            targets = self.targets_for(ticket.category, ticket.priority, ticket.department)
            escalated = False
            if SLACalculator.needs_escalation(ticket, targets, now):
                escalated = await repos.tickets.flag_escalated(ticket.id, now)

        return ticket, overdue, escalated

    def _breach_events(self, ticket: Ticket) -> List[NotificationEvent]:
        if not ticket.assigned_staff_id:
            return []
        return [NotificationEvent(
            recipient=ticket.assigned_staff_id,
            ticket_ref=ticket.tracking_code,
            ticket_id=str(ticket.id),
            message=f"Complaint {ticket.tracking_code} has passed its SLA due date",
            kind=NotificationKind.SLA_BREACH,
            payload={"sla_due_at": ticket.sla_due_at.isoformat()},
        )]

    def _escalation_event(self, ticket: Ticket, now: datetime) -> NotificationEvent:
        # Role-addressed; the dispatcher resolves the department's supervisors
        recipient = f"supervisors:{ticket.department}" if ticket.department else "supervisors"
        overdue_hours = round(SLACalculator.hours_between(ticket.sla_due_at, now), 1)
        return NotificationEvent(
            recipient=recipient,
            ticket_ref=ticket.tracking_code,
            ticket_id=str(ticket.id),
            message=(
                f"Complaint {ticket.tracking_code} is {overdue_hours}h overdue "
                f"and needs supervisor review"
            ),
            kind=NotificationKind.SLA_ESCALATION,
            payload={
                "sla_due_at": ticket.sla_due_at.isoformat(),
                "assigned_staff_id": ticket.assigned_staff_id,
                "ward": ticket.ward,
            },
        )

    def _publish(self, event: NotificationEvent) -> None:
        if self._publisher is not None:
            self._publisher.publish(event)

    # ========== Queries ==========

    async def get_overdue_tickets(self, ticket_filter: Optional[TicketFilter] = None) -> List[Ticket]:
        """Active tickets with ``now > sla_due_at``, most overdue first."""
        now = self._clock()
        async with self._session_factory() as session:
            repos = TicketRepositories.for_session(session)
            return await repos.tickets.list_due_before(now, ticket_filter)

    async def get_at_risk_tickets(
        self,
        ticket_filter: Optional[TicketFilter] = None,
        within_hours: Optional[float] = None
    ) -> List[Ticket]:
        """Active tickets not yet overdue but due within the window."""
        now = self._clock()
        window = timedelta(hours=within_hours) if within_hours is not None else self._at_risk_window
        async with self._session_factory() as session:
            repos = TicketRepositories.for_session(session)
            return await repos.tickets.list_due_before(now + window, ticket_filter, not_before=now)

    async def compliance_report(self, ticket_filter: Optional[TicketFilter] = None) -> ComplianceReport:
        """On-time rate of first resolutions, read from the status history."""
        async with self._session_factory() as session:
            repos = TicketRepositories.for_session(session)
            resolutions = await repos.audit.first_resolutions(ticket_filter)

        on_time = sum(1 for ticket, resolved_at in resolutions if resolved_at <= ticket.sla_due_at)
        hours = [
            SLACalculator.hours_between(ticket.submitted_at, resolved_at)
            for ticket, resolved_at in resolutions
        ]
        return ComplianceReport(
            total_resolved=len(resolutions),
            resolved_on_time=on_time,
            mean_resolution_hours=round(sum(hours) / len(hours), 2) if hours else None,
        )
