"""
Assignment Interfaces Layer
===========================

FastAPI route handlers for the assignment module.
"""

from municipal_ticketing.assignment.interfaces.controllers import router as assignment_router

__all__ = ["assignment_router"]
