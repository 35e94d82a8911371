"""
SLA Domain Entities
====================

Results produced by the SLA clock.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional


@dataclass
class SweepReport:
    """Outcome of one sweep pass."""
    started_at: datetime
    scanned: int = 0
    newly_overdue: int = 0
    newly_escalated: int = 0
    failed: List[str] = field(default_factory=list)
    finished_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "scanned": self.scanned,
            "newly_overdue": self.newly_overdue,
            "newly_escalated": self.newly_escalated,
            "failed": list(self.failed),
        }


@dataclass(frozen=True)
class ComplianceReport:
    """
    SLA compliance computed from the status history.

    A ticket counts as on time when its first resolution happened at or
    before its due date.
    """
    total_resolved: int
    resolved_on_time: int
    mean_resolution_hours: Optional[float]

    @property
    def breached(self) -> int:
        return self.total_resolved - self.resolved_on_time

    @property
    def compliance_percent(self) -> float:
        if self.total_resolved == 0:
            return 100.0
        return round(self.resolved_on_time / self.total_resolved * 100, 2)
