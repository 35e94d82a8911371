"""
HTTP tests: routing, actor headers and the error-to-status mapping.

The app's lifespan is not run; services built on the test database are
placed on ``app.state`` directly.
"""

from uuid import uuid4

import httpx
import pytest
from sqlalchemy.ext.asyncio import create_async_engine

from municipal_ticketing.assignment.application.services import workload_counter
from municipal_ticketing.infrastructure.database import create_session_maker, session_scope
from municipal_ticketing.main import create_app
from municipal_ticketing.shared.api import CONFLICT_HINT
from municipal_ticketing.tickets.application.services import TicketService

SUPERVISOR_HEADERS = {"X-Actor-Id": "sup-1", "X-Actor-Role": "supervisor"}
CITIZEN_HEADERS = {"X-Actor-Id": "citizen-1", "X-Actor-Role": "citizen"}
ADMIN_HEADERS = {"X-Actor-Id": "admin-1", "X-Actor-Role": "admin"}

NEW_TICKET = {
    "title": "Deep pothole outside the bus depot",
    "category": "pothole",
    "priority": "high",
    "ward": "ward-1",
}


@pytest.fixture
async def client(ticket_service, sla_clock, orchestrator, workload_index, add_staff):
    await add_staff("staff-1")
    app = create_app()
    app.state.ticket_service = ticket_service
    app.state.sla_clock = sla_clock
    app.state.assignment_orchestrator = orchestrator
    app.state.workload_index = workload_index

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


async def file(client) -> dict:
    response = await client.post("/tickets", json=NEW_TICKET, headers=CITIZEN_HEADERS)
    assert response.status_code == 201
    return response.json()


class TestTicketRoutes:
    async def test_create_and_fetch(self, client):
        ticket = await file(client)
        assert ticket["status"] == "submitted"
        assert ticket["department"] == "roads"
        assert ticket["version"] == 1

        by_id = await client.get(f"/tickets/{ticket['id']}")
        by_code = await client.get(f"/tickets/by-code/{ticket['tracking_code']}")
        assert by_id.json()["id"] == by_code.json()["id"] == ticket["id"]

    async def test_transition_and_history(self, client):
        ticket = await file(client)
        response = await client.post(
            f"/tickets/{ticket['id']}/transitions",
            json={"status": "received"},
            headers=SUPERVISOR_HEADERS,
        )
        assert response.status_code == 200
        assert response.json()["status"] == "received"

        history = (await client.get(f"/tickets/{ticket['id']}/history")).json()
        assert [(h["old_status"], h["new_status"]) for h in history] == [("submitted", "received")]

    async def test_correlation_id_echoed(self, client):
        response = await client.get("/health", headers={"X-Correlation-ID": "abc-123"})
        assert response.status_code == 200
        assert response.headers["X-Correlation-ID"] == "abc-123"


class TestErrorMapping:
    async def test_unknown_ticket_is_404(self, client):
        response = await client.get(f"/tickets/{uuid4()}")
        assert response.status_code == 404
        assert response.json()["error_type"] == "NotFoundError"

    async def test_illegal_transition_is_409_with_hint(self, client):
        ticket = await file(client)
        response = await client.post(
            f"/tickets/{ticket['id']}/transitions",
            json={"status": "closed"},
            headers=SUPERVISOR_HEADERS,
        )
        assert response.status_code == 409
        body = response.json()
        assert body["hint"] == CONFLICT_HINT
        assert "(submitted→closed)" in body["detail"]

    async def test_double_assign_is_409(self, client):
        ticket = await file(client)
        url = f"/assignments/tickets/{ticket['id']}/assign"
        first = await client.post(url, json={"staff_id": "staff-1"}, headers=SUPERVISOR_HEADERS)
        second = await client.post(url, json={"staff_id": "staff-1"}, headers=SUPERVISOR_HEADERS)
        assert first.status_code == 200
        assert second.status_code == 409
        assert second.json()["hint"] == CONFLICT_HINT

    async def test_missing_reject_note_is_422_with_field(self, client):
        ticket = await file(client)
        response = await client.post(
            f"/tickets/{ticket['id']}/transitions",
            json={"status": "rejected"},
            headers=SUPERVISOR_HEADERS,
        )
        assert response.status_code == 422
        assert response.json()["field"] == "note"

    async def test_wrong_role_is_403(self, client):
        ticket = await file(client)
        response = await client.post(
            f"/assignments/tickets/{ticket['id']}/assign",
            json={"staff_id": "staff-1"},
            headers=CITIZEN_HEADERS,
        )
        assert response.status_code == 403

    async def test_missing_actor_headers_is_422(self, client):
        response = await client.post("/tickets", json=NEW_TICKET)
        assert response.status_code == 422

    async def test_unknown_role_is_422(self, client):
        response = await client.post(
            "/tickets", json=NEW_TICKET, headers={"X-Actor-Id": "x", "X-Actor-Role": "mayor"}
        )
        assert response.status_code == 422
        assert response.json()["field"] == "X-Actor-Role"

    async def test_store_failure_is_503(self, tmp_path, sla_clock, publisher, clock):
        engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'empty.db'}")
        maker = create_session_maker(engine)
        app = create_app()
        app.state.ticket_service = TicketService(
            sla_policy=sla_clock,
            workload_factory=workload_counter,
            publisher=publisher,
            session_factory=lambda: session_scope(maker),
            clock=clock,
        )

        transport = httpx.ASGITransport(app=app)
        try:
            async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
                response = await client.post("/tickets", json=NEW_TICKET, headers=CITIZEN_HEADERS)
        finally:
            await engine.dispose()
        assert response.status_code == 503
        assert response.json()["error_type"] == "ExternalDependencyError"

    async def test_bad_payload_is_422(self, client):
        response = await client.post(
            "/tickets",
            json={**NEW_TICKET, "latitude": 12.9},
            headers=CITIZEN_HEADERS,
        )
        assert response.status_code == 422


class TestAssignmentAndSLARoutes:
    async def test_suggestions_and_workload(self, client):
        ticket = await file(client)
        suggestions = await client.get(f"/assignments/tickets/{ticket['id']}/suggestions")
        assert [c["staff_id"] for c in suggestions.json()] == ["staff-1"]

        await client.post(
            f"/assignments/tickets/{ticket['id']}/assign",
            json={"staff_id": "staff-1"},
            headers=SUPERVISOR_HEADERS,
        )
        workload = (await client.get("/assignments/workload", params={"department": "roads"})).json()
        assert workload[0]["staff_id"] == "staff-1"
        assert workload[0]["active"] == 1

    async def test_bulk_reports_failures(self, client):
        ticket = await file(client)
        response = await client.post(
            "/assignments/bulk",
            json={"ticket_ids": [ticket["id"], str(uuid4())], "staff_id": "staff-1"},
            headers=SUPERVISOR_HEADERS,
        )
        assert response.status_code == 200
        body = response.json()
        assert len(body["succeeded"]) == 1
        assert body["failed"][0]["error_type"] == "NotFoundError"

    async def test_sweep_is_admin_only(self, client):
        denied = await client.post("/sla/sweep", headers=SUPERVISOR_HEADERS)
        assert denied.status_code == 403

        allowed = await client.post("/sla/sweep", headers=ADMIN_HEADERS)
        assert allowed.status_code == 200

    async def test_compliance_without_resolutions(self, client):
        response = await client.get("/sla/compliance")
        assert response.status_code == 200
        assert response.json()["compliance_percent"] == 100.0
