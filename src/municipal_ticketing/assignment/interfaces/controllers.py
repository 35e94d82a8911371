"""
Assignment Controllers (API Routes)
====================================

FastAPI routes for staff suggestions, assignment and workload.

Controllers are thin - they delegate to application services.
"""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from municipal_ticketing.assignment.application.dto import (
    AssignRequest,
    BulkAssignRequest,
    BulkAssignResponse,
    ReassignRequest,
    StaffCandidateResponse,
    StaffWorkloadResponse,
)
from municipal_ticketing.assignment.application.services import (
    AssignmentOrchestrator, WorkloadIndex
)
from municipal_ticketing.config import ActorRole, ReassignmentReason
from municipal_ticketing.core import PermissionDeniedError
from municipal_ticketing.shared.api.dependencies import (
    get_actor, get_orchestrator, get_ticket_filter, get_workload_index
)
from municipal_ticketing.tickets.application.dto import TicketListResponse, TicketResponse
from municipal_ticketing.tickets.domain.entities import Actor, TicketFilter

router = APIRouter(prefix="/assignments", tags=["Assignment"])


@router.get(
    "/tickets/{ticket_id}/suggestions",
    response_model=List[StaffCandidateResponse],
    summary="Ranked staff candidates for a ticket",
)
async def suggest_staff(
    ticket_id: UUID,
    limit: Optional[int] = Query(None, ge=1, le=100),
    orchestrator: AssignmentOrchestrator = Depends(get_orchestrator),
):
    candidates = await orchestrator.suggest_staff(ticket_id, limit=limit)
    return [StaffCandidateResponse.from_entity(c) for c in candidates]


@router.post(
    "/tickets/{ticket_id}/assign",
    response_model=TicketResponse,
    summary="Assign a ticket",
    description="""
    Assign an unassigned ticket. Of two concurrent requests for the same
    ticket exactly one succeeds; the other receives 409.
    """,
)
async def assign_ticket(
    ticket_id: UUID,
    request: AssignRequest,
    actor: Actor = Depends(get_actor),
    orchestrator: AssignmentOrchestrator = Depends(get_orchestrator),
):
    ticket = await orchestrator.assign(ticket_id, request.staff_id, actor, request.note)
    return TicketResponse.from_entity(ticket)


@router.post(
    "/tickets/{ticket_id}/reassign",
    response_model=TicketResponse,
    summary="Reassign a ticket",
)
async def reassign_ticket(
    ticket_id: UUID,
    request: ReassignRequest,
    actor: Actor = Depends(get_actor),
    orchestrator: AssignmentOrchestrator = Depends(get_orchestrator),
):
    ticket = await orchestrator.reassign(
        ticket_id,
        request.new_staff_id,
        ReassignmentReason(request.reason),
        actor,
        request.note,
    )
    return TicketResponse.from_entity(ticket)


@router.post("/bulk", response_model=BulkAssignResponse, summary="Assign many tickets")
async def bulk_assign(
    request: BulkAssignRequest,
    actor: Actor = Depends(get_actor),
    orchestrator: AssignmentOrchestrator = Depends(get_orchestrator),
):
    result = await orchestrator.bulk_assign(request.ticket_ids, request.staff_id, actor, request.note)
    return BulkAssignResponse.from_result(result)


@router.get("/unassigned", response_model=TicketListResponse, summary="Unassigned queue")
async def unassigned_queue(
    ticket_filter: TicketFilter = Depends(get_ticket_filter),
    orchestrator: AssignmentOrchestrator = Depends(get_orchestrator),
):
    tickets = await orchestrator.get_unassigned_queue(ticket_filter)
    return TicketListResponse(
        tickets=[TicketResponse.from_entity(t) for t in tickets],
        total=len(tickets),
    )


@router.get("/workload", response_model=List[StaffWorkloadResponse], summary="Staff workload")
async def workload(
    department: Optional[str] = Query(None),
    ward: Optional[str] = Query(None),
    index: WorkloadIndex = Depends(get_workload_index),
):
    rows = await index.workload_report(department=department, ward=ward)
    return [StaffWorkloadResponse.from_entity(r) for r in rows]


@router.post(
    "/workload/refresh",
    summary="Reconcile cached workload counters",
)
async def refresh_workload(
    staff_id: Optional[str] = Query(None),
    actor: Actor = Depends(get_actor),
    index: WorkloadIndex = Depends(get_workload_index),
):
    if actor.role not in (ActorRole.SUPERVISOR, ActorRole.ADMIN, ActorRole.SYSTEM):
        raise PermissionDeniedError(actor.role.value, "refresh workload counters")
    return {"refreshed": await index.refresh(staff_id)}
