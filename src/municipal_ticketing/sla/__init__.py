"""
SLA Module
==========

Bounded Context for service level agreements on complaints.

Responsibilities:
- Calculate due dates from the category x priority configuration
- Sweep active tickets and flag breaches and escalations exactly once
- Overdue, at-risk and compliance queries
- Config hot-reload via watchdog
"""

__version__ = "1.0.0"
