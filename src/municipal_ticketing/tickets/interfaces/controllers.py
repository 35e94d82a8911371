"""
Ticket Controllers (API Routes)
================================

FastAPI routes for ticket intake, transitions and the audit trail.

Controllers are thin - they delegate to application services.
"""

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, status

from municipal_ticketing.config import TicketStatus
from municipal_ticketing.shared.api.dependencies import get_actor, get_ticket_service
from municipal_ticketing.tickets.application.dto import (
    AssignmentRecordResponse,
    NoteCreateRequest,
    NoteResponse,
    StatusHistoryResponse,
    TicketCreateRequest,
    TicketResponse,
    TransitionRequest,
)
from municipal_ticketing.tickets.application.services import TicketService
from municipal_ticketing.tickets.domain.entities import Actor

router = APIRouter(prefix="/tickets", tags=["Tickets"])


# ========== Example payloads for Swagger ==========

TICKET_CREATE_EXAMPLE = {
    "title": "Deep pothole outside the bus depot",
    "description": "Two-wheelers are swerving into traffic to avoid it.",
    "category": "pothole",
    "priority": "high",
    "ward": "ward-12",
    "latitude": 12.9716,
    "longitude": 77.5946
}


# ========== Route Handlers ==========

@router.post(
    "",
    response_model=TicketResponse,
    status_code=status.HTTP_201_CREATED,
    summary="File a complaint",
    description="""
    Create a ticket in `submitted`. The SLA due date is computed from the
    category x priority configuration and never changes afterwards except
    through `POST /sla/tickets/{id}/recompute`.
    """,
    openapi_extra={"requestBody": {"content": {"application/json": {"example": TICKET_CREATE_EXAMPLE}}}},
)
async def create_ticket(
    request: TicketCreateRequest,
    actor: Actor = Depends(get_actor),
    service: TicketService = Depends(get_ticket_service),
):
    ticket = await service.create_ticket(request, actor)
    return TicketResponse.from_entity(ticket)


@router.get("/{ticket_id}", response_model=TicketResponse, summary="Get a ticket")
async def get_ticket(
    ticket_id: UUID,
    service: TicketService = Depends(get_ticket_service),
):
    return TicketResponse.from_entity(await service.get_ticket(ticket_id))


@router.get(
    "/by-code/{tracking_code}",
    response_model=TicketResponse,
    summary="Get a ticket by tracking code",
)
async def get_ticket_by_code(
    tracking_code: str,
    service: TicketService = Depends(get_ticket_service),
):
    return TicketResponse.from_entity(await service.get_by_tracking_code(tracking_code))


@router.post(
    "/{ticket_id}/transitions",
    response_model=TicketResponse,
    summary="Change ticket status",
    description="""
    Apply one status transition. Illegal moves return 409 naming the
    `(old→new)` pair; missing notes return 422.
    """,
)
async def transition_ticket(
    ticket_id: UUID,
    request: TransitionRequest,
    actor: Actor = Depends(get_actor),
    service: TicketService = Depends(get_ticket_service),
):
    ticket = await service.transition(ticket_id, TicketStatus(request.status), actor, request.note)
    return TicketResponse.from_entity(ticket)


@router.get(
    "/{ticket_id}/history",
    response_model=List[StatusHistoryResponse],
    summary="Status history",
)
async def get_history(
    ticket_id: UUID,
    service: TicketService = Depends(get_ticket_service),
):
    entries = await service.list_history(ticket_id)
    return [StatusHistoryResponse.from_entity(e) for e in entries]


@router.get(
    "/{ticket_id}/assignments",
    response_model=List[AssignmentRecordResponse],
    summary="Assignment records",
)
async def get_assignments(
    ticket_id: UUID,
    service: TicketService = Depends(get_ticket_service),
):
    records = await service.list_assignments(ticket_id)
    return [AssignmentRecordResponse.from_entity(r) for r in records]


@router.post(
    "/{ticket_id}/notes",
    response_model=NoteResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add an internal note",
)
async def add_note(
    ticket_id: UUID,
    request: NoteCreateRequest,
    actor: Actor = Depends(get_actor),
    service: TicketService = Depends(get_ticket_service),
):
    return NoteResponse.from_entity(await service.add_note(ticket_id, actor, request.body))


@router.get("/{ticket_id}/notes", response_model=List[NoteResponse], summary="Note ledger")
async def list_notes(
    ticket_id: UUID,
    service: TicketService = Depends(get_ticket_service),
):
    return [NoteResponse.from_entity(n) for n in await service.list_notes(ticket_id)]
