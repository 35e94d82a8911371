"""
Shared fixtures: a file-backed SQLite database per test, a controllable
clock, a recording notification subscriber and services wired to them.
"""

from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest
from sqlalchemy.ext.asyncio import create_async_engine

from municipal_ticketing.assignment.application.services import (
    AssignmentOrchestrator, WorkloadIndex, workload_counter
)
from municipal_ticketing.assignment.domain.entities import StaffMember
from municipal_ticketing.assignment.domain.ranking import AssignmentRanker, RankingWeights
from municipal_ticketing.assignment.infrastructure.repositories import SQLAlchemyStaffRepository
from municipal_ticketing.config import ActorRole, AvailabilityStatus, TicketStatus
from municipal_ticketing.infrastructure.database import (
    create_session_maker, create_tables, session_scope
)
from municipal_ticketing.shared.infrastructure.notifications import (
    NotificationEvent, NotificationPublisher
)
from municipal_ticketing.sla.application.services import ISLAConfigProvider, SLAClock
from municipal_ticketing.sla.domain.value_objects import CategorySLA, SLAConfig, SLATargets
from municipal_ticketing.tickets.application.dto import TicketCreateRequest
from municipal_ticketing.tickets.application.services import TicketService
from municipal_ticketing.tickets.domain.entities import Actor

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)

CITIZEN = Actor("citizen-1", ActorRole.CITIZEN)
SUPERVISOR = Actor("sup-1", ActorRole.SUPERVISOR)
ADMIN = Actor("admin-1", ActorRole.ADMIN)
SYSTEM = Actor.system()


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class StaticConfigProvider(ISLAConfigProvider):
    """In-memory SLA configuration."""

    def __init__(self, config: SLAConfig):
        self.config = config

    def get_config(self) -> SLAConfig:
        return self.config


class RecordingSubscriber:
    def __init__(self):
        self.events: List[NotificationEvent] = []

    def __call__(self, event: NotificationEvent) -> None:
        self.events.append(event)

    def of_kind(self, kind) -> List[NotificationEvent]:
        return [e for e in self.events if e.kind == kind]


def make_sla_config() -> SLAConfig:
    return SLAConfig(
        departments={
            "roads": SLATargets(response_hours=48, resolution_hours=96, escalation_hours=24),
        },
        categories={
            "pothole": CategorySLA(
                department="roads",
                priorities={
                    "high": SLATargets(response_hours=4, resolution_hours=48, escalation_hours=2),
                },
            ),
            "streetlight": CategorySLA(department="roads"),
        },
    )


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'tickets.db'}")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    maker = create_session_maker(engine)
    return lambda: session_scope(maker)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def recorder():
    return RecordingSubscriber()


@pytest.fixture
def publisher(recorder):
    publisher = NotificationPublisher()
    publisher.subscribe(recorder)
    return publisher


@pytest.fixture
def config_provider():
    return StaticConfigProvider(make_sla_config())


@pytest.fixture
def sla_clock(config_provider, publisher, session_factory, clock):
    return SLAClock(
        config_provider,
        publisher=publisher,
        session_factory=session_factory,
        clock=clock,
        at_risk_window_hours=24,
    )


@pytest.fixture
def ticket_service(sla_clock, publisher, session_factory, clock):
    return TicketService(
        sla_policy=sla_clock,
        workload_factory=workload_counter,
        publisher=publisher,
        session_factory=session_factory,
        clock=clock,
    )


@pytest.fixture
def orchestrator(publisher, session_factory, clock):
    ranker = AssignmentRanker(RankingWeights(workload_weight=0.5, distance_weight=0.3, match_boost=0.2))
    return AssignmentOrchestrator(
        ranker=ranker,
        publisher=publisher,
        session_factory=session_factory,
        clock=clock,
    )


@pytest.fixture
def workload_index(session_factory, clock):
    return WorkloadIndex(session_factory=session_factory, clock=clock, overload_threshold_percent=80)


@pytest.fixture
def add_staff(session_factory):
    async def _add(
        staff_id: str,
        department: Optional[str] = "roads",
        ward: Optional[str] = "ward-1",
        active_ticket_count: int = 0,
        availability: AvailabilityStatus = AvailabilityStatus.AVAILABLE,
        **kwargs
    ) -> StaffMember:
        member = StaffMember(
            id=staff_id,
            full_name=f"Staff {staff_id}",
            department=department,
            ward=ward,
            active_ticket_count=active_ticket_count,
            availability_status=availability,
            **kwargs
        )
        async with session_factory() as session:
            return await SQLAlchemyStaffRepository(session).save(member)
    return _add


@pytest.fixture
def get_staff(session_factory):
    async def _get(staff_id: str) -> StaffMember:
        async with session_factory() as session:
            return await SQLAlchemyStaffRepository(session).get(staff_id)
    return _get


@pytest.fixture
def file_ticket(ticket_service):
    async def _file(
        category: str = "pothole",
        priority: str = "high",
        ward: Optional[str] = "ward-1",
        actor: Actor = CITIZEN,
        **kwargs
    ):
        payload = TicketCreateRequest(
            title="Pothole on Main Street",
            category=category,
            priority=priority,
            ward=ward,
            **kwargs
        )
        return await ticket_service.create_ticket(payload, actor)
    return _file


@pytest.fixture
def drive(ticket_service, orchestrator):
    """
    Move a fresh ticket along a path of statuses using the public operations.

    Every move into ``assigned`` goes through the orchestrator; the other
    moves are taken by the actor allowed to take them.
    """
    async def _drive(ticket, path, staff_id: str = "staff-1"):
        staff = Actor(staff_id, ActorRole.STAFF)
        for status in path:
            status = TicketStatus(status)
            if status == TicketStatus.ASSIGNED:
                ticket = await orchestrator.assign(ticket.id, staff_id, SUPERVISOR)
            elif status in (TicketStatus.RECEIVED, TicketStatus.REJECTED):
                note = "duplicate" if status == TicketStatus.REJECTED else None
                ticket = await ticket_service.transition(ticket.id, status, SUPERVISOR, note)
            elif status == TicketStatus.RESOLVED:
                ticket = await ticket_service.transition(ticket.id, status, staff, "filled and rolled")
            elif status == TicketStatus.REOPENED:
                ticket = await ticket_service.transition(ticket.id, status, CITIZEN, "still broken")
            elif status == TicketStatus.CLOSED:
                ticket = await ticket_service.transition(ticket.id, status, CITIZEN)
            else:
                ticket = await ticket_service.transition(ticket.id, status, staff)
        return ticket
    return _drive
