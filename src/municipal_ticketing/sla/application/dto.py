"""
SLA Application DTOs
=====================

Data Transfer Objects for the SLA API layer.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from municipal_ticketing.sla.domain.entities import ComplianceReport, SweepReport
from municipal_ticketing.tickets.application.dto import PriorityStr


# ========== Request DTOs ==========

class RecomputeRequest(BaseModel):
    """Request model for an audited due-date recompute."""
    reason: str = Field(..., min_length=1, description="Why the due date is being recomputed")


class PriorityChangeRequest(BaseModel):
    """Request model for a priority change."""
    priority: PriorityStr
    reason: str = Field(..., min_length=1)


# ========== Response DTOs ==========

class SweepResponse(BaseModel):
    """Response model for a manually triggered sweep."""
    started_at: datetime
    finished_at: Optional[datetime]
    scanned: int
    newly_overdue: int
    newly_escalated: int
    failed: List[str]

    @classmethod
    def from_report(cls, report: SweepReport) -> "SweepResponse":
        return cls(
            started_at=report.started_at,
            finished_at=report.finished_at,
            scanned=report.scanned,
            newly_overdue=report.newly_overdue,
            newly_escalated=report.newly_escalated,
            failed=list(report.failed),
        )


class ComplianceResponse(BaseModel):
    """Response model for SLA compliance."""
    total_resolved: int
    resolved_on_time: int
    breached: int
    compliance_percent: float
    mean_resolution_hours: Optional[float]

    @classmethod
    def from_report(cls, report: ComplianceReport) -> "ComplianceResponse":
        return cls(
            total_resolved=report.total_resolved,
            resolved_on_time=report.resolved_on_time,
            breached=report.breached,
            compliance_percent=report.compliance_percent,
            mean_resolution_hours=report.mean_resolution_hours,
        )
