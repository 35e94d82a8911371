"""
Assignment Module
=================

Bounded Context for putting tickets in front of staff.

Responsibilities:
- Rank eligible staff by workload, distance and affiliation
- Assign, reassign and bulk-assign with optimistic concurrency
- Workload reports and counter reconciliation
"""

__version__ = "1.0.0"
