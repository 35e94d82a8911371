"""
Tickets Interfaces Layer
========================

FastAPI route handlers for the tickets module.
"""

from municipal_ticketing.tickets.interfaces.controllers import router as tickets_router

__all__ = ["tickets_router"]
