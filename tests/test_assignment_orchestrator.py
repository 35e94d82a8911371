"""
Tests for suggestions, assignment, reassignment and bulk assignment.
"""

import asyncio
from uuid import uuid4

import pytest

from municipal_ticketing.config import (
    ActorRole, AvailabilityStatus, NotificationKind, ReassignmentReason, TicketStatus
)
from municipal_ticketing.core import (
    ConflictError, NotFoundError, PermissionDeniedError, ValidationError
)
from municipal_ticketing.tickets.domain.entities import Actor, TicketFilter

from conftest import SUPERVISOR, SYSTEM


class TestScenario:
    """Pothole/high ticket, two candidates in the same ward."""

    async def test_suggest_assign_then_conflicts(self, file_ticket, orchestrator, add_staff, get_staff):
        await add_staff("S1", active_ticket_count=5)
        await add_staff("S2", active_ticket_count=1)
        await add_staff("S3")
        await add_staff("S4")
        t1 = await file_ticket()

        suggestions = await orchestrator.suggest_staff(t1.id, limit=2)
        assert [c.staff_id for c in suggestions] == ["S3", "S4"]

        ranked = await orchestrator.suggest_staff(t1.id)
        assert [c.staff_id for c in ranked][-2:] == ["S2", "S1"]

        assigned = await orchestrator.assign(t1.id, "S2", SUPERVISOR)
        assert assigned.status == TicketStatus.ASSIGNED
        assert assigned.assigned_staff_id == "S2"
        assert (await get_staff("S2")).active_ticket_count == 2

        results = await asyncio.gather(
            orchestrator.assign(t1.id, "S3", SUPERVISOR),
            orchestrator.assign(t1.id, "S4", SUPERVISOR),
            return_exceptions=True,
        )
        assert all(isinstance(r, ConflictError) for r in results)
        assert all("already assigned" in r.message for r in results)


class TestAssign:
    @pytest.fixture(autouse=True)
    async def staff(self, add_staff):
        await add_staff("staff-1")
        await add_staff("staff-2")
        await add_staff("away", availability=AvailabilityStatus.ON_LEAVE)
        await add_staff("elsewhere", department="water", ward="ward-9")

    async def test_racing_assigns_exactly_one_wins(self, file_ticket, orchestrator, ticket_service, get_staff):
        ticket = await file_ticket()
        results = await asyncio.gather(
            orchestrator.assign(ticket.id, "staff-1", SUPERVISOR),
            orchestrator.assign(ticket.id, "staff-2", SUPERVISOR),
            return_exceptions=True,
        )
        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, Exception)]
        assert len(winners) == 1
        assert len(losers) == 1
        assert isinstance(losers[0], ConflictError)

        records = await ticket_service.list_assignments(ticket.id)
        assert len(records) == 1
        assert records[0].staff_id == winners[0].assigned_staff_id

        counts = [(await get_staff(s)).active_ticket_count for s in ("staff-1", "staff-2")]
        assert sorted(counts) == [0, 1]

    async def test_assign_writes_record_and_history(self, file_ticket, orchestrator, ticket_service):
        ticket = await file_ticket()
        await orchestrator.assign(ticket.id, "staff-1", SUPERVISOR, note="nearest crew")

        records = await ticket_service.list_assignments(ticket.id)
        assert [(r.staff_id, r.assigned_by, r.note, r.is_active) for r in records] == [
            ("staff-1", SUPERVISOR.id, "nearest crew", True)
        ]
        history = await ticket_service.list_history(ticket.id)
        assert len(history) == 1
        assert history[0].details == {"to_staff_id": "staff-1"}

    async def test_system_actor_may_assign(self, file_ticket, orchestrator):
        ticket = await file_ticket()
        assigned = await orchestrator.assign(ticket.id, "staff-1", SYSTEM)
        assert assigned.status == TicketStatus.ASSIGNED

    async def test_staff_cannot_assign(self, file_ticket, orchestrator):
        ticket = await file_ticket()
        with pytest.raises(PermissionDeniedError):
            await orchestrator.assign(ticket.id, "staff-1", Actor("staff-1", ActorRole.STAFF))

    async def test_unknown_ticket_and_staff(self, file_ticket, orchestrator):
        with pytest.raises(NotFoundError):
            await orchestrator.assign(uuid4(), "staff-1", SUPERVISOR)
        ticket = await file_ticket()
        with pytest.raises(NotFoundError):
            await orchestrator.assign(ticket.id, "nobody", SUPERVISOR)

    async def test_ineligible_staff(self, file_ticket, orchestrator, ticket_service):
        ticket = await file_ticket()
        for staff_id in ("away", "elsewhere"):
            with pytest.raises(ValidationError) as exc_info:
                await orchestrator.assign(ticket.id, staff_id, SUPERVISOR)
            assert exc_info.value.field == "staff_id"
        assert (await ticket_service.get_ticket(ticket.id)).status == TicketStatus.SUBMITTED

    async def test_supervisor_is_not_assignable(self, file_ticket, orchestrator, add_staff):
        await add_staff("sup-9", role=ActorRole.SUPERVISOR)
        ticket = await file_ticket()

        assert "sup-9" not in [c.staff_id for c in await orchestrator.suggest_staff(ticket.id)]
        with pytest.raises(ValidationError) as exc_info:
            await orchestrator.assign(ticket.id, "sup-9", SUPERVISOR)
        assert exc_info.value.field == "staff_id"
        assert exc_info.value.details["role"] == "supervisor"

    async def test_reopened_ticket_is_reassigned_through_checks(
        self, file_ticket, drive, orchestrator, ticket_service, recorder, clock
    ):
        ticket = await drive(await file_ticket(), ["assigned", "in_progress", "resolved", "reopened"])
        first_assigned_at = ticket.assigned_at

        with pytest.raises(ValidationError):
            await orchestrator.assign(ticket.id, "away", SUPERVISOR)

        clock.advance(hours=3)
        assigned = await orchestrator.assign(ticket.id, "staff-1", SUPERVISOR)
        assert assigned.status == TicketStatus.ASSIGNED
        assert assigned.assigned_at == clock.now
        assert assigned.assigned_at > first_assigned_at

        records = await ticket_service.list_assignments(ticket.id)
        assert [(r.staff_id, r.is_active) for r in records] == [("staff-1", False), ("staff-1", True)]
        assert records[-1].assigned_at == assigned.assigned_at
        notified = recorder.of_kind(NotificationKind.TICKET_ASSIGNED)
        assert [e.recipient for e in notified] == ["staff-1", "staff-1"]

    async def test_inactive_ticket(self, file_ticket, drive, orchestrator):
        ticket = await drive(await file_ticket(), ["rejected"])
        with pytest.raises(ConflictError):
            await orchestrator.assign(ticket.id, "staff-1", SUPERVISOR)

    async def test_failing_subscriber_does_not_break_assign(
        self, file_ticket, orchestrator, publisher, recorder
    ):
        def broken(event):
            raise RuntimeError("push gateway down")

        publisher.subscribe(broken)
        ticket = await file_ticket()
        assigned = await orchestrator.assign(ticket.id, "staff-1", SUPERVISOR)

        assert assigned.status == TicketStatus.ASSIGNED
        assert [e.recipient for e in recorder.of_kind(NotificationKind.TICKET_ASSIGNED)] == ["staff-1"]

    async def test_unassigned_queue(self, file_ticket, orchestrator):
        first = await file_ticket()
        second = await file_ticket(ward="ward-2")
        await orchestrator.assign(first.id, "staff-1", SUPERVISOR)

        queue = await orchestrator.get_unassigned_queue()
        assert [t.id for t in queue] == [second.id]
        assert await orchestrator.get_unassigned_queue(TicketFilter(ward="ward-1")) == []


class TestReassign:
    @pytest.fixture(autouse=True)
    async def staff(self, add_staff):
        await add_staff("staff-1")
        await add_staff("staff-2")

    async def test_assign_and_reassign_write_two_history_entries(
        self, file_ticket, orchestrator, ticket_service, get_staff
    ):
        ticket = await file_ticket()
        await orchestrator.assign(ticket.id, "staff-1", SUPERVISOR)
        moved = await orchestrator.reassign(
            ticket.id, "staff-2", ReassignmentReason.WORKLOAD_REBALANCE, SUPERVISOR
        )
        assert moved.assigned_staff_id == "staff-2"
        assert moved.status == TicketStatus.ASSIGNED

        history = await ticket_service.list_history(ticket.id)
        assert len(history) == 2
        assert history[1].details == {
            "from_staff_id": "staff-1",
            "to_staff_id": "staff-2",
            "reason": "workload_rebalance",
        }

        records = await ticket_service.list_assignments(ticket.id)
        assert [(r.staff_id, r.is_active) for r in records] == [("staff-1", False), ("staff-2", True)]
        assert records[1].reason == "workload_rebalance"

        assert (await get_staff("staff-1")).active_ticket_count == 0
        assert (await get_staff("staff-2")).active_ticket_count == 1

    async def test_round_trip_restores_counts(self, file_ticket, orchestrator, get_staff, workload_index):
        ticket = await file_ticket()
        await orchestrator.assign(ticket.id, "staff-1", SUPERVISOR)
        await orchestrator.reassign(ticket.id, "staff-2", "unavailable", SUPERVISOR)
        await orchestrator.reassign(ticket.id, "staff-1", "other", SUPERVISOR)

        assert (await get_staff("staff-1")).active_ticket_count == 1
        assert (await get_staff("staff-2")).active_ticket_count == 0
        assert await workload_index.active_ticket_count("staff-1") == 1
        assert await workload_index.active_ticket_count("staff-2") == 0

    async def test_reassign_work_in_progress(self, file_ticket, drive, orchestrator):
        ticket = await drive(await file_ticket(), ["assigned", "in_progress"])
        moved = await orchestrator.reassign(ticket.id, "staff-2", "skill_mismatch", SUPERVISOR)
        assert moved.status == TicketStatus.ASSIGNED
        assert moved.assigned_staff_id == "staff-2"

    async def test_reassign_notifies_both_staff(self, file_ticket, orchestrator, recorder):
        ticket = await file_ticket()
        await orchestrator.assign(ticket.id, "staff-1", SUPERVISOR)
        await orchestrator.reassign(ticket.id, "staff-2", "staff_request", SUPERVISOR)

        assert [e.recipient for e in recorder.of_kind(NotificationKind.TICKET_ASSIGNED)] == [
            "staff-1", "staff-2"
        ]
        assert [e.recipient for e in recorder.of_kind(NotificationKind.TICKET_UNASSIGNED)] == ["staff-1"]

    async def test_reassign_requires_active_assignment(self, file_ticket, orchestrator):
        ticket = await file_ticket()
        with pytest.raises(ConflictError):
            await orchestrator.reassign(ticket.id, "staff-2", "other", SUPERVISOR)

    async def test_reassign_to_same_staff(self, file_ticket, orchestrator):
        ticket = await file_ticket()
        await orchestrator.assign(ticket.id, "staff-1", SUPERVISOR)
        with pytest.raises(ValidationError) as exc_info:
            await orchestrator.reassign(ticket.id, "staff-1", "other", SUPERVISOR)
        assert exc_info.value.field == "new_staff_id"

    async def test_unknown_reason(self, file_ticket, orchestrator):
        ticket = await file_ticket()
        await orchestrator.assign(ticket.id, "staff-1", SUPERVISOR)
        with pytest.raises(ValidationError) as exc_info:
            await orchestrator.reassign(ticket.id, "staff-2", "bored", SUPERVISOR)
        assert exc_info.value.field == "reason"

    async def test_system_cannot_reassign(self, file_ticket, orchestrator):
        ticket = await file_ticket()
        await orchestrator.assign(ticket.id, "staff-1", SUPERVISOR)
        with pytest.raises(PermissionDeniedError):
            await orchestrator.reassign(ticket.id, "staff-2", "other", SYSTEM)


class TestBulkAssign:
    async def test_partial_failure(self, file_ticket, drive, orchestrator, add_staff, ticket_service):
        await add_staff("staff-1")
        good = await file_ticket()
        rejected = await drive(await file_ticket(), ["rejected"])
        missing = uuid4()

        result = await orchestrator.bulk_assign([good.id, rejected.id, missing, good.id], "staff-1", SUPERVISOR)

        assert [t.id for t in result.succeeded] == [good.id]
        assert {(f.ticket_id, f.error_type) for f in result.failed} == {
            (rejected.id, "ConflictError"),
            (missing, "NotFoundError"),
        }
        assert (await ticket_service.get_ticket(good.id)).status == TicketStatus.ASSIGNED

    async def test_bulk_requires_dispatcher(self, orchestrator):
        with pytest.raises(PermissionDeniedError):
            await orchestrator.bulk_assign([uuid4()], "staff-1", Actor("c", ActorRole.CITIZEN))
