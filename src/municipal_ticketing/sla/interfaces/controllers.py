"""
SLA Controllers (API Routes)
=============================

FastAPI routes for overdue and at-risk queues, compliance, the manual
sweep trigger and the audited due-date recompute.

Controllers are thin - they delegate to application services.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from municipal_ticketing.config import ActorRole, Priority
from municipal_ticketing.core import PermissionDeniedError
from municipal_ticketing.shared.api.dependencies import get_actor, get_sla_clock, get_ticket_filter
from municipal_ticketing.shared.infrastructure.logging import get_logger
from municipal_ticketing.sla.application.dto import (
    ComplianceResponse,
    PriorityChangeRequest,
    RecomputeRequest,
    SweepResponse,
)
from municipal_ticketing.sla.application.services import SLAClock
from municipal_ticketing.tickets.application.dto import TicketListResponse, TicketResponse
from municipal_ticketing.tickets.domain.entities import Actor, TicketFilter

logger = get_logger(__name__)
router = APIRouter(prefix="/sla", tags=["SLA"])


@router.get(
    "/overdue",
    response_model=TicketListResponse,
    summary="Overdue tickets",
    description="Active tickets whose due date has passed, most overdue first.",
)
async def overdue_tickets(
    ticket_filter: TicketFilter = Depends(get_ticket_filter),
    clock: SLAClock = Depends(get_sla_clock),
):
    tickets = await clock.get_overdue_tickets(ticket_filter)
    return TicketListResponse(
        tickets=[TicketResponse.from_entity(t) for t in tickets],
        total=len(tickets),
    )


@router.get("/at-risk", response_model=TicketListResponse, summary="Tickets about to breach")
async def at_risk_tickets(
    within_hours: Optional[float] = Query(None, gt=0, le=24 * 30),
    ticket_filter: TicketFilter = Depends(get_ticket_filter),
    clock: SLAClock = Depends(get_sla_clock),
):
    tickets = await clock.get_at_risk_tickets(ticket_filter, within_hours=within_hours)
    return TicketListResponse(
        tickets=[TicketResponse.from_entity(t) for t in tickets],
        total=len(tickets),
    )


@router.get("/compliance", response_model=ComplianceResponse, summary="SLA compliance")
async def compliance(
    ticket_filter: TicketFilter = Depends(get_ticket_filter),
    clock: SLAClock = Depends(get_sla_clock),
):
    return ComplianceResponse.from_report(await clock.compliance_report(ticket_filter))


@router.post("/sweep", response_model=SweepResponse, summary="Run one SLA sweep now")
async def run_sweep(
    actor: Actor = Depends(get_actor),
    clock: SLAClock = Depends(get_sla_clock),
):
    if actor.role not in (ActorRole.ADMIN, ActorRole.SYSTEM):
        raise PermissionDeniedError(actor.role.value, "trigger an SLA sweep")
    logger.info("Manual SLA sweep requested", extra={"actor_id": actor.id})
    return SweepResponse.from_report(await clock.sweep())


@router.post(
    "/tickets/{ticket_id}/recompute",
    response_model=TicketResponse,
    summary="Recompute a ticket's due date",
    description="Recompute `sla_due_at` from the current configuration. Audited in the note ledger.",
)
async def recompute_due_date(
    ticket_id: UUID,
    request: RecomputeRequest,
    actor: Actor = Depends(get_actor),
    clock: SLAClock = Depends(get_sla_clock),
):
    ticket = await clock.recompute_due_date(ticket_id, actor, request.reason)
    return TicketResponse.from_entity(ticket)


@router.post(
    "/tickets/{ticket_id}/priority",
    response_model=TicketResponse,
    summary="Change priority and recompute the due date",
)
async def change_priority(
    ticket_id: UUID,
    request: PriorityChangeRequest,
    actor: Actor = Depends(get_actor),
    clock: SLAClock = Depends(get_sla_clock),
):
    ticket = await clock.change_priority(ticket_id, Priority(request.priority), actor, request.reason)
    return TicketResponse.from_entity(ticket)
