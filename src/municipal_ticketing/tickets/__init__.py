"""
Tickets Module
==============

Bounded Context for the complaint lifecycle.

Responsibilities:
- Validate status transitions against the edge table
- Apply each move as one versioned write with exactly one history entry
- Keep assignment records in line with the ticket status
- Internal notes and the audit trail
"""

__version__ = "1.0.0"
