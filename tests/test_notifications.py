"""
Tests for notification fan-out, queued delivery and the webhook dispatcher.
"""

import asyncio
import json

import httpx
import pytest

from municipal_ticketing.config import NotificationKind
from municipal_ticketing.shared.infrastructure.notifications import (
    CircuitBreaker,
    CircuitState,
    INotificationDispatcher,
    NotificationEvent,
    NotificationPublisher,
    NotificationQueue,
    WebhookNotificationDispatcher,
)

from conftest import RecordingSubscriber


def make_event(recipient: str = "staff-1") -> NotificationEvent:
    return NotificationEvent(
        recipient=recipient,
        ticket_ref="CMP-20240101-ABCDEF",
        message="Complaint CMP-20240101-ABCDEF has been assigned to you",
        kind=NotificationKind.TICKET_ASSIGNED,
    )


class FakeDispatcher(INotificationDispatcher):
    def __init__(self, fail: bool = False):
        self.delivered = []
        self.fail = fail

    async def dispatch(self, event: NotificationEvent) -> bool:
        if self.fail:
            raise RuntimeError("gateway unreachable")
        self.delivered.append(event)
        return True


class TestPublisher:
    def test_fan_out_survives_failing_subscriber(self):
        publisher = NotificationPublisher()
        before, after = RecordingSubscriber(), RecordingSubscriber()

        def broken(event):
            raise ValueError("boom")

        publisher.subscribe(before)
        publisher.subscribe(broken)
        publisher.subscribe(after)

        event = make_event()
        publisher.publish(event)

        assert before.events == [event]
        assert after.events == [event]

    def test_event_serialises_kind_and_timestamp(self):
        payload = make_event().to_dict()
        assert payload["kind"] == "complaint_assigned"
        assert payload["recipient"] == "staff-1"
        assert payload["created_at"].endswith("+00:00")


class TestNotificationQueue:
    async def test_worker_delivers_and_drains(self):
        dispatcher = FakeDispatcher()
        queue = NotificationQueue(dispatcher, maxsize=10)
        await queue.start()

        queue(make_event("a"))
        queue(make_event("b"))
        await queue.stop(drain_timeout=1.0)

        assert [e.recipient for e in dispatcher.delivered] == ["a", "b"]
        assert queue.pending == 0

    async def test_full_queue_drops_event(self):
        queue = NotificationQueue(FakeDispatcher(), maxsize=1)
        queue(make_event("a"))
        queue(make_event("b"))
        assert queue.pending == 1

    async def test_dispatcher_error_does_not_kill_worker(self):
        dispatcher = FakeDispatcher(fail=True)
        queue = NotificationQueue(dispatcher, maxsize=10)
        await queue.start()

        queue(make_event("a"))
        await asyncio.sleep(0.05)
        dispatcher.fail = False
        queue(make_event("b"))
        await queue.stop(drain_timeout=1.0)

        assert [e.recipient for e in dispatcher.delivered] == ["b"]


class TestCircuitBreaker:
    def test_opens_after_threshold(self):
        breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=60)
        breaker.record_failure()
        assert breaker.state == CircuitState.CLOSED
        breaker.record_failure()
        assert breaker.state == CircuitState.OPEN
        assert not breaker.allow_request()

    def test_half_open_after_timeout_then_closes(self):
        breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=0)
        breaker.record_failure()
        assert breaker.state == CircuitState.HALF_OPEN
        assert breaker.allow_request()
        breaker.record_success()
        assert breaker.state == CircuitState.CLOSED


class TestWebhookDispatcher:
    async def test_without_url_drops_event(self):
        dispatcher = WebhookNotificationDispatcher(webhook_url="")
        assert await dispatcher.dispatch(make_event()) is False

    async def test_posts_event_json(self):
        received = []

        def handler(request: httpx.Request) -> httpx.Response:
            received.append(json.loads(request.content))
            return httpx.Response(202)

        dispatcher = WebhookNotificationDispatcher(
            webhook_url="http://notify.test/events", max_retries=2, backoff_base=0
        )
        dispatcher._http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        try:
            assert await dispatcher.dispatch(make_event()) is True
        finally:
            await dispatcher.close()

        assert received[0]["ticket_ref"] == "CMP-20240101-ABCDEF"
        assert received[0]["kind"] == "complaint_assigned"

    async def test_retries_then_gives_up(self):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            return httpx.Response(503)

        dispatcher = WebhookNotificationDispatcher(
            webhook_url="http://notify.test/events", max_retries=3, backoff_base=0
        )
        dispatcher._http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        try:
            assert await dispatcher.dispatch(make_event()) is False
        finally:
            await dispatcher.close()

        assert len(attempts) == 3

    @pytest.mark.parametrize("status_code", [200, 204])
    async def test_success_statuses(self, status_code):
        dispatcher = WebhookNotificationDispatcher(
            webhook_url="http://notify.test/events", max_retries=1, backoff_base=0
        )
        dispatcher._http_client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(status_code))
        )
        try:
            assert await dispatcher.dispatch(make_event())
        finally:
            await dispatcher.close()
