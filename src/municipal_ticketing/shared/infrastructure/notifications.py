"""
Notification Events
===================

Triggering side of notifications. Delivery (push/SMS/email) is owned by an
external dispatcher; the engine only publishes events after its transaction
has committed.

Two phases:
1. The lifecycle write commits.
2. ``NotificationPublisher.publish`` fans the event out to subscribers. The
   usual subscriber is a ``NotificationQueue`` whose worker hands events to an
   ``INotificationDispatcher`` (retry, backoff and circuit breaking live there).

Publishing never raises into the caller.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import httpx

from municipal_ticketing.config import NotificationKind, settings
from municipal_ticketing.shared.clock import utcnow
from municipal_ticketing.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class NotificationEvent:
    """Who to notify, about which ticket, and what to say."""
    recipient: str
    ticket_ref: str
    message: str
    kind: NotificationKind
    ticket_id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    payload: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Convert to dictionary for webhook delivery."""
        return {
            "recipient": self.recipient,
            "ticket_ref": self.ticket_ref,
            "ticket_id": self.ticket_id,
            "message": self.message,
            "kind": self.kind.value,
            "created_at": self.created_at.isoformat(),
            "payload": self.payload,
        }


NotificationHandler = Callable[[NotificationEvent], None]


class NotificationPublisher:
    """
    Observer-style fan-out of notification events.

    Subscribers are plain callables; one failing subscriber does not stop the
    others and never propagates to the publisher's caller.
    """

    def __init__(self) -> None:
        self._subscribers: List[NotificationHandler] = []

    def subscribe(self, handler: NotificationHandler) -> None:
        self._subscribers.append(handler)

    def publish(self, event: NotificationEvent) -> None:
        for handler in list(self._subscribers):
            try:
                handler(event)
            except Exception as e:
                logger.error(
                    "Notification subscriber failed",
                    extra={
                        "kind": event.kind.value,
                        "ticket_ref": event.ticket_ref,
                        "recipient": event.recipient,
                        "error": str(e),
                    }
                )


class INotificationDispatcher(ABC):
    """Interface for the external notification dispatcher."""

    @abstractmethod
    async def dispatch(self, event: NotificationEvent) -> bool:
        """Deliver an event; returns True when accepted."""


class CircuitState:
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Circuit breaker for preventing cascade failures.

    States:
    - CLOSED: Normal operation, requests pass through
    - OPEN: After N failures, reject all requests for M seconds
    - HALF_OPEN: After timeout, allow one test request
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None

    @property
    def state(self) -> str:
        """Get current circuit state."""
        if self._state == CircuitState.OPEN and self._last_failure_time:
            elapsed = time.monotonic() - self._last_failure_time
            if elapsed >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
        return self._state

    def allow_request(self) -> bool:
        """Check if request should be allowed."""
        return self.state in (CircuitState.CLOSED, CircuitState.HALF_OPEN)

    def record_success(self) -> None:
        """Record successful request."""
        self._failure_count = 0
        self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        """Record failed request."""
        self._failure_count += 1
        self._last_failure_time = time.monotonic()

        if self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN
            logger.warning(
                "Circuit breaker opened",
                extra={
                    "failure_count": self._failure_count,
                    "recovery_timeout": self.recovery_timeout
                }
            )


class WebhookNotificationDispatcher(INotificationDispatcher):
    """
    Posts notification events to a webhook with circuit breaker and retry.

    The receiving service owns the actual channel (push/SMS/email).
    """

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        max_retries: Optional[int] = None,
        backoff_base: float = 1.0,
    ):
        self._webhook_url = webhook_url if webhook_url is not None else settings.notification_webhook_url
        self._timeout = timeout_seconds or settings.notification_timeout_seconds
        self._max_retries = max_retries or settings.notification_max_retries
        self._backoff_base = backoff_base
        self._circuit_breaker = CircuitBreaker(failure_threshold=5, recovery_timeout=60)
        self._http_client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    async def dispatch(self, event: NotificationEvent) -> bool:
        if not self._webhook_url:
            logger.debug(
                "Notification webhook not configured, dropping event",
                extra={"kind": event.kind.value, "ticket_ref": event.ticket_ref}
            )
            return False

        if not self._circuit_breaker.allow_request():
            logger.warning(
                "Circuit breaker open, skipping notification",
                extra={"ticket_ref": event.ticket_ref, "recipient": event.recipient}
            )
            return False

        for attempt in range(self._max_retries):
            try:
                client = await self._get_client()
                response = await client.post(self._webhook_url, json=event.to_dict())

                if response.status_code < 300:
                    self._circuit_breaker.record_success()
                    logger.info(
                        "Notification dispatched",
                        extra={
                            "ticket_ref": event.ticket_ref,
                            "recipient": event.recipient,
                            "kind": event.kind.value
                        }
                    )
                    return True

                logger.warning(
                    "Notification webhook returned error status",
                    extra={"status_code": response.status_code, "attempt": attempt + 1}
                )

            except httpx.HTTPError as e:
                logger.error(
                    "Notification dispatch failed",
                    extra={
                        "error": str(e),
                        "attempt": attempt + 1,
                        "ticket_ref": event.ticket_ref
                    }
                )

            if attempt < self._max_retries - 1:
                await asyncio.sleep(self._backoff_base * 2 ** attempt)

        self._circuit_breaker.record_failure()
        return False

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


class NotificationQueue:
    """
    Queued delivery task decoupled from the lifecycle transaction.

    Subscribe an instance to a ``NotificationPublisher``; ``start`` runs a
    worker draining the queue into the dispatcher.
    """

    def __init__(self, dispatcher: INotificationDispatcher, maxsize: Optional[int] = None):
        self._dispatcher = dispatcher
        self._queue: asyncio.Queue[NotificationEvent] = asyncio.Queue(
            maxsize=maxsize or settings.notification_queue_size
        )
        self._worker: Optional[asyncio.Task] = None

    def __call__(self, event: NotificationEvent) -> None:
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.error(
                "Notification queue full, event dropped",
                extra={
                    "kind": event.kind.value,
                    "ticket_ref": event.ticket_ref,
                    "recipient": event.recipient
                }
            )

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def start(self) -> None:
        if self._worker is None:
            self._worker = asyncio.create_task(self._run(), name="notification-queue")

    async def stop(self, drain_timeout: float = 5.0) -> None:
        """Give the worker a chance to drain, then cancel it."""
        if self._worker is None:
            return
        try:
            await asyncio.wait_for(self._queue.join(), timeout=drain_timeout)
        except asyncio.TimeoutError:
            logger.warning("Notification queue not drained on shutdown", extra={"pending": self.pending})
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._dispatcher.dispatch(event)
            except Exception as e:
                logger.error(
                    "Notification dispatcher raised",
                    extra={"ticket_ref": event.ticket_ref, "error": str(e)}
                )
            finally:
                self._queue.task_done()
