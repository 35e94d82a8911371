"""
Ticket State Machine
=====================

Every legal status change is one ``Edge`` in a single table. An edge names
the roles allowed to take it and the guards that must pass; entering a status
has a fixed set of field effects. Nothing outside this module compares
status values to decide whether a move is allowed.

    submitted  -> received | assigned | rejected
    received   -> assigned | rejected
    assigned   -> in_progress | rejected
    in_progress-> pending | resolved
    pending    -> in_progress
    resolved   -> closed | reopened
    closed     -> reopened
    reopened   -> assigned | in_progress

Every move into ``assigned`` is an orchestrated edge: only the assignment
orchestrator takes it, after checking the staff member is eligible.
Reassignment re-enters ``assigned`` from assigned, in_progress or pending.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Tuple

from municipal_ticketing.config import ActorRole, TicketStatus
from municipal_ticketing.core import ConflictError, PermissionDeniedError, ValidationError
from municipal_ticketing.tickets.domain.entities import Actor, Ticket


@dataclass(frozen=True)
class TransitionContext:
    """Everything a guard or entry effect may look at."""
    ticket: Ticket
    target: Ticket
    new_status: TicketStatus
    actor: Actor
    note: Optional[str]
    now: datetime
    reopen_window: timedelta


Guard = Callable[[TransitionContext], None]
EntryEffect = Callable[[TransitionContext], Dict[str, Any]]


# ========== Guards ==========

def _has_text(value: Optional[str]) -> bool:
    return bool(value and value.strip())


def require_resolution_note(ctx: TransitionContext) -> None:
    if not _has_text(ctx.note):
        raise ValidationError("A resolution note is required to resolve a ticket", field="note")


def require_note(ctx: TransitionContext) -> None:
    if not _has_text(ctx.note):
        raise ValidationError(
            f"A note is required to move a ticket to '{ctx.new_status.value}'",
            field="note"
        )


def require_prior_resolution(ctx: TransitionContext) -> None:
    if ctx.ticket.resolved_at is None:
        raise ConflictError(
            "Ticket cannot be closed before it has been resolved",
            details={"ticket_id": str(ctx.ticket.id)}
        )


def require_assigned_staff(ctx: TransitionContext) -> None:
    if not ctx.target.assigned_staff_id:
        raise ValidationError(
            f"Ticket must have an assigned staff member to move to '{ctx.new_status.value}'",
            field="assigned_staff_id"
        )


def within_reopen_window(ctx: TransitionContext) -> None:
    finished_at = ctx.ticket.closed_at or ctx.ticket.resolved_at
    if finished_at is None:
        return
    if ctx.now - finished_at > ctx.reopen_window:
        raise ConflictError(
            "Reopen window has elapsed",
            details={
                "ticket_id": str(ctx.ticket.id),
                "finished_at": finished_at.isoformat(),
                "reopen_window_days": ctx.reopen_window.days,
            }
        )


# ========== Entry effects ==========

def _enter_resolved(ctx: TransitionContext) -> Dict[str, Any]:
    return {"resolved_at": ctx.now, "resolution_note": ctx.note.strip()}


def _enter_closed(ctx: TransitionContext) -> Dict[str, Any]:
    return {"closed_at": ctx.now}


def _enter_reopened(ctx: TransitionContext) -> Dict[str, Any]:
    # assigned_staff_id is kept so the previous staff member can pick it up again
    return {"resolved_at": None, "closed_at": None, "resolution_note": None}


ENTRY_EFFECTS: Dict[TicketStatus, EntryEffect] = {
    TicketStatus.RESOLVED: _enter_resolved,
    TicketStatus.CLOSED: _enter_closed,
    TicketStatus.REOPENED: _enter_reopened,
}


# ========== Edge table ==========

@dataclass(frozen=True)
class Edge:
    """One allowed (old -> new) move."""
    source: TicketStatus
    target: TicketStatus
    roles: FrozenSet[ActorRole]
    guards: Tuple[Guard, ...] = ()
    reassignment: bool = False
    orchestrated: bool = False

    @property
    def label(self) -> str:
        return f"{self.source.value}→{self.target.value}"


_WORKERS = frozenset({ActorRole.STAFF, ActorRole.SUPERVISOR, ActorRole.ADMIN})
_MANAGERS = frozenset({ActorRole.SUPERVISOR, ActorRole.ADMIN})
_INTAKE = _WORKERS | {ActorRole.SYSTEM}
_DISPATCH = _MANAGERS | {ActorRole.SYSTEM}
_REOPENERS = _MANAGERS | {ActorRole.CITIZEN}
_CLOSERS = _MANAGERS | {ActorRole.CITIZEN, ActorRole.SYSTEM}

S = TicketStatus

EDGES: Tuple[Edge, ...] = (
    Edge(S.SUBMITTED, S.RECEIVED, _INTAKE),
    Edge(S.SUBMITTED, S.ASSIGNED, _DISPATCH, (require_assigned_staff,), orchestrated=True),
    Edge(S.SUBMITTED, S.REJECTED, _MANAGERS, (require_note,)),
    Edge(S.RECEIVED, S.ASSIGNED, _DISPATCH, (require_assigned_staff,), orchestrated=True),
    Edge(S.RECEIVED, S.REJECTED, _MANAGERS, (require_note,)),
    Edge(S.ASSIGNED, S.IN_PROGRESS, _WORKERS, (require_assigned_staff,)),
    Edge(S.ASSIGNED, S.REJECTED, _MANAGERS, (require_note,)),
    Edge(S.IN_PROGRESS, S.PENDING, _WORKERS),
    Edge(S.IN_PROGRESS, S.RESOLVED, _WORKERS, (require_resolution_note,)),
    Edge(S.PENDING, S.IN_PROGRESS, _WORKERS),
    Edge(S.RESOLVED, S.CLOSED, _CLOSERS, (require_prior_resolution,)),
    Edge(S.RESOLVED, S.REOPENED, _REOPENERS, (require_note, within_reopen_window)),
    Edge(S.CLOSED, S.REOPENED, _REOPENERS, (require_note, within_reopen_window)),
    Edge(S.REOPENED, S.ASSIGNED, _DISPATCH, (require_assigned_staff,), orchestrated=True),
    Edge(S.REOPENED, S.IN_PROGRESS, _WORKERS, (require_assigned_staff,)),
    # Reassignment path
    Edge(S.ASSIGNED, S.ASSIGNED, _MANAGERS, (require_assigned_staff,), reassignment=True, orchestrated=True),
    Edge(S.IN_PROGRESS, S.ASSIGNED, _MANAGERS, (require_assigned_staff,), reassignment=True, orchestrated=True),
    Edge(S.PENDING, S.ASSIGNED, _MANAGERS, (require_assigned_staff,), reassignment=True, orchestrated=True),
)

del S


class TicketStateMachine:
    """
    Validates status moves against the edge table.

    Pure: no I/O, no clock. Callers pass the current snapshot, the intended
    target snapshot and the acting user; the machine either returns the edge
    and the fields to write, or raises.
    """

    def __init__(self, edges: Iterable[Edge] = EDGES):
        self._edges: Dict[Tuple[TicketStatus, TicketStatus, bool], Edge] = {
            (e.source, e.target, e.reassignment): e for e in edges
        }

    def edge_for(
        self,
        old: TicketStatus,
        new: TicketStatus,
        reassignment: bool = False
    ) -> Edge:
        """Look up an edge; ConflictError naming the pair if there is none."""
        edge = self._edges.get((old, new, reassignment))
        if edge is None:
            raise ConflictError(
                f"Illegal status transition ({old.value}→{new.value})",
                details={"old_status": old.value, "new_status": new.value}
            )
        return edge

    def is_edge(self, old: TicketStatus, new: TicketStatus, reassignment: bool = False) -> bool:
        return (old, new, reassignment) in self._edges

    def allowed_targets(self, status: TicketStatus) -> List[TicketStatus]:
        return [e.target for e in self._edges.values() if e.source == status and not e.reassignment]

    def edges(self, reassignment: bool = False) -> List[Edge]:
        return [e for e in self._edges.values() if e.reassignment == reassignment]

    def validate(
        self,
        ctx: TransitionContext,
        reassignment: bool = False,
        orchestrated: bool = False
    ) -> Edge:
        """
        Check edge, role, ownership and guards in that order.

        ``orchestrated`` edges are only taken when the caller says so; a plain
        status change onto one is rejected like an illegal edge.

        Raises:
            ConflictError: illegal edge, orchestrated edge taken directly,
                stale preconditions (reopen window, no resolution)
            PermissionDeniedError: actor role may not take the edge or does not own the ticket
            ValidationError: missing note or assigned staff member
        """
        edge = self.edge_for(ctx.ticket.status, ctx.new_status, reassignment)
        if edge.orchestrated and not orchestrated:
            raise ConflictError(
                f"Status transition ({edge.label}) is only taken by assigning the ticket",
                details={"old_status": edge.source.value, "new_status": edge.target.value}
            )

        if ctx.actor.role not in edge.roles:
            raise PermissionDeniedError(
                ctx.actor.role.value,
                f"move a ticket {edge.label}",
                details={"ticket_id": str(ctx.ticket.id)}
            )
        self._check_ownership(ctx, edge)

        for guard in edge.guards:
            guard(ctx)
        return edge

    def entry_effects(self, ctx: TransitionContext) -> Dict[str, Any]:
        """Fields set by entering ``ctx.new_status``."""
        effect = ENTRY_EFFECTS.get(ctx.new_status)
        return effect(ctx) if effect else {}

    @staticmethod
    def _check_ownership(ctx: TransitionContext, edge: Edge) -> None:
        actor, ticket = ctx.actor, ctx.ticket
        if actor.role == ActorRole.STAFF and ticket.assigned_staff_id != actor.id:
            raise PermissionDeniedError(
                actor.role.value,
                f"move a ticket {edge.label} that is not assigned to them",
                details={"ticket_id": str(ticket.id), "actor_id": actor.id}
            )
        if actor.role == ActorRole.CITIZEN and ticket.submitted_by != actor.id:
            raise PermissionDeniedError(
                actor.role.value,
                f"move a ticket {edge.label} they did not submit",
                details={"ticket_id": str(ticket.id), "actor_id": actor.id}
            )


# Shared default instance
state_machine = TicketStateMachine()
