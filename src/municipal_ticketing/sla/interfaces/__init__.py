"""
SLA Interfaces Layer
====================

FastAPI route handlers for the SLA module.
"""

from municipal_ticketing.sla.interfaces.controllers import router as sla_router

__all__ = ["sla_router"]
