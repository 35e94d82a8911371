"""
Property-based tests for staff ranking.

Ranking is a pure function of its inputs: the same candidates in any
order rank the same way, and ineligible staff never appear.
"""

from datetime import datetime, timedelta, timezone

import pytest
from hypothesis import given, strategies as st
from hypothesis.strategies import composite

from municipal_ticketing.assignment.domain.entities import StaffMember
from municipal_ticketing.assignment.domain.ranking import AssignmentRanker, RankingWeights, haversine_km
from municipal_ticketing.config import ActorRole, AvailabilityStatus, UNAVAILABLE_STATUSES
from municipal_ticketing.tickets.domain.entities import Location

RANKER = AssignmentRanker(RankingWeights(workload_weight=0.5, distance_weight=0.3, match_boost=0.2))
EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)


@composite
def staff_strategy(draw, staff_id: str):
    located = draw(st.booleans())
    return StaffMember(
        id=staff_id,
        full_name=f"Staff {staff_id}",
        role=draw(st.sampled_from([ActorRole.STAFF, ActorRole.STAFF, ActorRole.SUPERVISOR])),
        department=draw(st.sampled_from(["roads", "water", None])),
        ward=draw(st.sampled_from(["ward-1", "ward-2", None])),
        latitude=draw(st.floats(12.8, 13.1)) if located else None,
        longitude=draw(st.floats(77.4, 77.8)) if located else None,
        is_active=draw(st.booleans()),
        availability_status=draw(st.sampled_from(list(AvailabilityStatus))),
        active_ticket_count=draw(st.integers(0, 20)),
        last_assigned_at=draw(st.one_of(
            st.none(), st.integers(0, 1000).map(lambda m: EPOCH + timedelta(minutes=m))
        )),
    )


@composite
def staff_pool(draw):
    size = draw(st.integers(0, 8))
    return [draw(staff_strategy(f"s{i}")) for i in range(size)]


ticket_location = st.one_of(st.none(), st.builds(Location, st.floats(12.8, 13.1), st.floats(77.4, 77.8)))


class TestRankingProperties:
    @given(pool=staff_pool(), location=ticket_location, data=st.data())
    def test_order_independent(self, pool, location, data):
        shuffled = data.draw(st.permutations(pool))
        first = RANKER.rank(pool, location, department="roads", ward="ward-1")
        second = RANKER.rank(shuffled, location, department="roads", ward="ward-1")
        assert [c.staff_id for c in first] == [c.staff_id for c in second]

    @given(pool=staff_pool(), location=ticket_location)
    def test_only_eligible_staff(self, pool, location):
        ranked = RANKER.rank(pool, location, department="roads", ward="ward-1")
        for candidate in ranked:
            staff = candidate.staff
            assert staff.role == ActorRole.STAFF
            assert staff.is_active
            assert staff.availability_status not in UNAVAILABLE_STATUSES
            assert staff.department == "roads" or staff.ward == "ward-1"

    @given(pool=staff_pool(), location=ticket_location)
    def test_scores_descending(self, pool, location):
        ranked = RANKER.rank(pool, location, department="roads", ward="ward-1")
        scores = [c.score for c in ranked]
        assert scores == sorted(scores, reverse=True)

    @given(count=st.integers(0, 50))
    def test_lower_workload_never_scores_lower(self, count):
        busy = StaffMember(id="a", full_name="A", ward="ward-1", active_ticket_count=count + 1)
        idle = StaffMember(id="b", full_name="B", ward="ward-1", active_ticket_count=count)
        assert RANKER.score(idle, ward="ward-1").score > RANKER.score(busy, ward="ward-1").score


class TestRankingExamples:
    def test_same_ward_lower_workload_first(self):
        s1 = StaffMember(id="S1", full_name="One", ward="ward-1", active_ticket_count=5)
        s2 = StaffMember(id="S2", full_name="Two", ward="ward-1", active_ticket_count=1)
        ranked = RANKER.rank([s1, s2], None, department="roads", ward="ward-1")
        assert [c.staff_id for c in ranked] == ["S2", "S1"]

    def test_exact_match_boost(self):
        exact = StaffMember(id="x", full_name="X", department="roads", ward="ward-1", active_ticket_count=1)
        ward_only = StaffMember(id="y", full_name="Y", ward="ward-1", active_ticket_count=1)
        ranked = RANKER.rank([ward_only, exact], None, department="roads", ward="ward-1")
        assert [c.staff_id for c in ranked] == ["x", "y"]
        assert ranked[0].exact_match
        assert ranked[0].score == pytest.approx(ranked[1].score + 0.2)

    def test_ties_break_on_least_recent_assignment(self):
        recent = StaffMember(id="a", full_name="A", ward="ward-1", last_assigned_at=EPOCH + timedelta(hours=1))
        earlier = StaffMember(id="b", full_name="B", ward="ward-1", last_assigned_at=EPOCH)
        never = StaffMember(id="c", full_name="C", ward="ward-1")
        ranked = RANKER.rank([recent, earlier, never], None, ward="ward-1")
        assert [c.staff_id for c in ranked] == ["c", "b", "a"]

    def test_distance_only_with_both_locations(self):
        near = StaffMember(id="n", full_name="N", ward="ward-1", latitude=12.97, longitude=77.59)
        far = StaffMember(id="f", full_name="F", ward="ward-1", latitude=13.10, longitude=77.70)
        site = Location(12.97, 77.59)

        ranked = RANKER.rank([far, near], site, ward="ward-1")
        assert [c.staff_id for c in ranked] == ["n", "f"]
        assert ranked[0].distance_km == 0.0

        unlocated = RANKER.rank([far, near], None, ward="ward-1")
        assert all(c.distance_km is None for c in unlocated)

    def test_unavailable_staff_excluded(self):
        on_leave = StaffMember(
            id="z", full_name="Z", ward="ward-1", availability_status=AvailabilityStatus.ON_LEAVE
        )
        assert RANKER.rank([on_leave], None, ward="ward-1") == []

    def test_supervisors_and_admins_never_eligible(self):
        supervisor = StaffMember(id="sup-1", full_name="Sup", role=ActorRole.SUPERVISOR, ward="ward-1")
        admin = StaffMember(id="admin-1", full_name="Admin", role=ActorRole.ADMIN)
        assert not RANKER.is_eligible(supervisor, ward="ward-1")
        assert not RANKER.is_eligible(admin)
        assert RANKER.rank([supervisor, admin], None, ward="ward-1") == []

    def test_unrouted_ticket_accepts_any_available(self):
        anyone = StaffMember(id="q", full_name="Q", department="water", ward="ward-9")
        assert RANKER.is_eligible(anyone)

    def test_haversine_known_distance(self):
        # Bengaluru to Chennai, roughly 290 km
        assert haversine_km(Location(12.9716, 77.5946), Location(13.0827, 80.2707)) == pytest.approx(290, abs=10)
