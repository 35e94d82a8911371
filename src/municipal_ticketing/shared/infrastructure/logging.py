"""
Structured Logging
==================

JSON-structured logging for the complaint engine.

Provides:
- One JSON object per log line (parseable by log aggregators)
- The request's correlation id on every line logged while it is handled
- Masking of free-text fields that may carry citizen details
- Latency timing for sweeps and other long operations

Usage:
    from municipal_ticketing.shared.infrastructure.logging import get_logger

    logger = get_logger(__name__)
    logger.info("Ticket assigned", extra={"ticket_id": "...", "staff_id": "..."})
"""

import logging
import sys
import time
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Optional

from pythonjsonlogger import jsonlogger

# Set by the correlation-id middleware for the duration of a request
correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

# Free-text fields logged as their length only
MASKED_FIELDS = frozenset({"note", "resolution_note", "body", "description"})

NOISY_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "apscheduler", "watchdog", "httpx")


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """
    JSON formatter adding timestamp, environment and correlation id.

    Values of ``MASKED_FIELDS`` passed through ``extra`` are replaced with
    ``<N chars>``.
    """

    def __init__(self, *args: Any, environment: str = "unknown", **kwargs: Any):
        self.environment = environment
        super().__init__(*args, **kwargs)

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        if not log_record.get("timestamp"):
            log_record["timestamp"] = datetime.now(timezone.utc).isoformat()

        correlation_id = getattr(record, "correlation_id", None) or correlation_id_var.get()
        if correlation_id:
            log_record["correlation_id"] = correlation_id

        log_record["environment"] = self.environment

        for key in MASKED_FIELDS.intersection(log_record):
            if isinstance(log_record[key], str):
                log_record[key] = f"<{len(log_record[key])} chars>"


def setup_logging(
    level: str = "INFO",
    environment: str = "development",
) -> None:
    """
    Configure structured JSON logging for the application.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        environment: Environment name for log context
    """
    log_level = getattr(logging, level.upper())
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.setFormatter(CustomJsonFormatter(
        fmt="%(asctime)s %(name)s %(levelname)s %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        environment=environment,
    ))
    root_logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


@contextmanager
def log_latency(logger: logging.Logger, operation: str, **extra_context: Any):
    """
    Log how long the block took, whether or not it raised.

    Usage:
        with log_latency(logger, "sla_sweep"):
            await clock.sweep()
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        logger.info(
            f"{operation} completed",
            extra={
                "operation": operation,
                "latency_ms": round((time.perf_counter() - start) * 1000, 2),
                **extra_context,
            },
        )
