"""
Municipal Ticketing
===================

Complaint lifecycle engine for a municipal service desk.

Modules:
- Tickets: status state machine, audit trail and notes
- SLA: due dates, background sweep, overdue and compliance reporting
- Assignment: staff ranking, assignment orchestration and workload
"""

__version__ = "1.0.0"
