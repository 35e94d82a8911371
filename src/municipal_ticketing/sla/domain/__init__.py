"""
SLA Domain Layer
================

Contains:
- Value Objects: SLATargets, SLAConfig
- Domain Services: SLACalculator
- Entities: SweepReport, ComplianceReport

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from municipal_ticketing.sla.domain.entities import ComplianceReport, SweepReport
from municipal_ticketing.sla.domain.value_objects import (
    DEFAULT_TARGETS,
    CategorySLA,
    SLACalculator,
    SLAConfig,
    SLATargets,
)

__all__ = [
    "ComplianceReport",
    "SweepReport",
    "DEFAULT_TARGETS",
    "CategorySLA",
    "SLACalculator",
    "SLAConfig",
    "SLATargets",
]
