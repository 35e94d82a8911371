"""
Shared API Dependencies
========================

FastAPI dependencies: the acting user and the services stored on
``app.state`` during startup.
"""

from typing import Optional

from fastapi import Header, Query, Request

from municipal_ticketing.config import ActorRole, Priority
from municipal_ticketing.core import ValidationError
from municipal_ticketing.tickets.domain.entities import Actor, TicketFilter


async def get_actor(
    x_actor_id: str = Header(..., description="Authenticated user id, set by the gateway"),
    x_actor_role: str = Header(..., description="Role of the authenticated user"),
) -> Actor:
    """Acting user from the headers the auth gateway sets."""
    if not x_actor_id.strip():
        raise ValidationError("X-Actor-Id must not be empty", field="X-Actor-Id")
    try:
        role = ActorRole(x_actor_role.lower())
    except ValueError:
        raise ValidationError(
            f"Unknown role '{x_actor_role}'",
            field="X-Actor-Role"
        ) from None
    return Actor(id=x_actor_id.strip(), role=role)


async def get_ticket_filter(
    ward: Optional[str] = Query(None),
    department: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    priority: Optional[Priority] = Query(None),
    assigned_staff_id: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
) -> TicketFilter:
    return TicketFilter(
        ward=ward,
        department=department,
        category=category,
        priority=priority,
        assigned_staff_id=assigned_staff_id,
        limit=limit,
        offset=offset,
    )


def get_ticket_service(request: Request):
    return request.app.state.ticket_service


def get_sla_clock(request: Request):
    return request.app.state.sla_clock


def get_orchestrator(request: Request):
    return request.app.state.assignment_orchestrator


def get_workload_index(request: Request):
    return request.app.state.workload_index
