"""
Assignment Ranker
==================

Pure scoring of staff candidates for a ticket.

    score = workload_weight * 1 / (1 + active_tickets)
          + distance_weight * 1 / (1 + km)        (only when both locations are known)
          + match_boost                           (department and ward both match)

Ties are broken by fewer active tickets, then the oldest
``last_assigned_at`` (never-assigned first), then staff id. Identical
inputs always give identical output order.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from municipal_ticketing.assignment.domain.entities import StaffCandidate, StaffMember
from municipal_ticketing.config import ActorRole, settings
from municipal_ticketing.tickets.domain.entities import Location

EARTH_RADIUS_KM = 6371.0

_NEVER = datetime.min.replace(tzinfo=timezone.utc)


def haversine_km(a: Location, b: Location) -> float:
    """Great-circle distance between two points in kilometres."""
    lat1, lon1 = math.radians(a.latitude), math.radians(a.longitude)
    lat2, lon2 = math.radians(b.latitude), math.radians(b.longitude)
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(h)))


@dataclass(frozen=True)
class RankingWeights:
    workload_weight: float
    distance_weight: float
    match_boost: float

    @classmethod
    def from_settings(cls) -> "RankingWeights":
        return cls(
            workload_weight=settings.ranking_workload_weight,
            distance_weight=settings.ranking_distance_weight,
            match_boost=settings.ranking_match_boost,
        )


class AssignmentRanker:
    """Deterministic, side-effect-free candidate ranking."""

    def __init__(self, weights: Optional[RankingWeights] = None):
        self.weights = weights or RankingWeights.from_settings()

    @staticmethod
    def is_eligible(
        staff: StaffMember,
        department: Optional[str] = None,
        ward: Optional[str] = None
    ) -> bool:
        """
        A front-line staff member who is active, available and affiliated with
        the ticket's department or ward.

        A ticket routed to neither a department nor a ward accepts any
        available staff member.
        """
        if staff.role != ActorRole.STAFF or not staff.is_available:
            return False
        if department is None and ward is None:
            return True
        return (
            (department is not None and staff.department == department)
            or (ward is not None and staff.ward == ward)
        )

    @staticmethod
    def is_exact_match(
        staff: StaffMember,
        department: Optional[str] = None,
        ward: Optional[str] = None
    ) -> bool:
        return (
            department is not None and ward is not None
            and staff.department == department and staff.ward == ward
        )

    def score(
        self,
        staff: StaffMember,
        ticket_location: Optional[Location] = None,
        department: Optional[str] = None,
        ward: Optional[str] = None
    ) -> StaffCandidate:
        active = max(0, staff.active_ticket_count)
        total = self.weights.workload_weight / (1 + active)

        distance_km = None
        if ticket_location is not None and staff.location is not None:
            distance_km = round(haversine_km(ticket_location, staff.location), 3)
            total += self.weights.distance_weight / (1 + distance_km)

        exact = self.is_exact_match(staff, department, ward)
        if exact:
            total += self.weights.match_boost

        return StaffCandidate(
            staff=staff,
            score=round(total, 6),
            active_ticket_count=active,
            exact_match=exact,
            distance_km=distance_km,
        )

    def rank(
        self,
        candidates: Iterable[StaffMember],
        ticket_location: Optional[Location] = None,
        department: Optional[str] = None,
        ward: Optional[str] = None
    ) -> List[StaffCandidate]:
        scored = [
            self.score(staff, ticket_location, department, ward)
            for staff in candidates
            if self.is_eligible(staff, department, ward)
        ]
        return sorted(scored, key=self._sort_key)

    @staticmethod
    def _sort_key(candidate: StaffCandidate):
        return (
            -candidate.score,
            candidate.active_ticket_count,
            candidate.staff.last_assigned_at or _NEVER,
            candidate.staff.id,
        )
