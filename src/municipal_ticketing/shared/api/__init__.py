"""
Shared API Layer
================

Middleware, exception mapping and FastAPI dependencies used by every
module's controllers.
"""

from municipal_ticketing.shared.api.middleware import (
    CONFLICT_HINT,
    CorrelationIDMiddleware,
    LoggingMiddleware,
    register_exception_handlers,
)

__all__ = [
    "CONFLICT_HINT",
    "CorrelationIDMiddleware",
    "LoggingMiddleware",
    "register_exception_handlers",
]
