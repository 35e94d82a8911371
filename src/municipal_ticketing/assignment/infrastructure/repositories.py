"""
Assignment Infrastructure Repositories
=======================================

Concrete implementations of repository interfaces using SQLAlchemy.

The staff repository reads the directory and derives workload from the
assignment records; the workload counter maintains the cached per-staff
count used for ranking.
"""

from datetime import datetime
from typing import Dict, List, Optional, Sequence

from sqlalchemy import and_, case, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from municipal_ticketing.assignment.application.services import IStaffRepository
from municipal_ticketing.assignment.domain.entities import StaffMember
from municipal_ticketing.assignment.infrastructure.models import StaffMemberModel
from municipal_ticketing.config import (
    ACTIVE_STATUSES, ActorRole, AvailabilityStatus, TicketStatus
)
from municipal_ticketing.tickets.application.services import IWorkloadCounter
from municipal_ticketing.tickets.infrastructure.models import AssignmentRecordModel, TicketModel

_ACTIVE = [s.value for s in ACTIVE_STATUSES]


def _staff_from_model(model: StaffMemberModel) -> StaffMember:
    return StaffMember(
        id=model.id,
        full_name=model.full_name,
        role=ActorRole(model.role),
        department=model.department,
        ward=model.ward,
        latitude=model.latitude,
        longitude=model.longitude,
        is_active=model.is_active,
        availability_status=AvailabilityStatus(model.availability_status),
        max_concurrent_assignments=model.max_concurrent_assignments,
        active_ticket_count=model.active_ticket_count,
        last_assigned_at=model.last_assigned_at,
    )


class SQLAlchemyStaffRepository(IStaffRepository):
    """
    SQLAlchemy implementation of the staff directory.

    Workload figures returned here are always computed from assignment
    records joined to ticket status.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get(self, staff_id: str) -> Optional[StaffMember]:
        stmt = (
            select(StaffMemberModel)
            .where(StaffMemberModel.id == staff_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return _staff_from_model(model) if model else None

    async def save(self, staff: StaffMember) -> StaffMember:
        """Insert or update a directory entry (the cached counter is left alone on update)."""
        model = await self._session.get(StaffMemberModel, staff.id)
        if model is None:
            model = StaffMemberModel(
                id=staff.id,
                active_ticket_count=staff.active_ticket_count,
                last_assigned_at=staff.last_assigned_at,
            )
            self._session.add(model)

        model.full_name = staff.full_name
        model.role = staff.role.value
        model.department = staff.department
        model.ward = staff.ward
        model.latitude = staff.latitude
        model.longitude = staff.longitude
        model.is_active = staff.is_active
        model.availability_status = staff.availability_status.value
        model.max_concurrent_assignments = staff.max_concurrent_assignments

        await self._session.flush()
        return _staff_from_model(model)

    async def list(
        self,
        department: Optional[str] = None,
        ward: Optional[str] = None,
        active_only: bool = True
    ) -> List[StaffMember]:
        """Staff in the department and/or ward."""
        stmt = select(StaffMemberModel)
        if department:
            stmt = stmt.where(StaffMemberModel.department == department)
        if ward:
            stmt = stmt.where(StaffMemberModel.ward == ward)
        if active_only:
            stmt = stmt.where(StaffMemberModel.is_active.is_(True))
        result = await self._session.execute(stmt.order_by(StaffMemberModel.id))
        return [_staff_from_model(m) for m in result.scalars().all()]

    async def list_candidates(
        self,
        department: Optional[str] = None,
        ward: Optional[str] = None
    ) -> List[StaffMember]:
        """Active staff affiliated with the department or the ward."""
        stmt = select(StaffMemberModel).where(
            StaffMemberModel.is_active.is_(True),
            StaffMemberModel.role == ActorRole.STAFF.value,
        )
        affiliation = []
        if department:
            affiliation.append(StaffMemberModel.department == department)
        if ward:
            affiliation.append(StaffMemberModel.ward == ward)
        if affiliation:
            stmt = stmt.where(or_(*affiliation))
        result = await self._session.execute(stmt.order_by(StaffMemberModel.id))
        return [_staff_from_model(m) for m in result.scalars().all()]

    async def workload_counts(
        self,
        staff_ids: Sequence[str],
        now: datetime
    ) -> Dict[str, Dict[str, int]]:
        """
        Per staff member: active, in_progress, pending and overdue counts.

        Source of truth: open assignment records whose ticket is active.
        """
        counts: Dict[str, Dict[str, int]] = {
            staff_id: {"active": 0, "in_progress": 0, "pending": 0, "overdue": 0}
            for staff_id in staff_ids
        }
        if not staff_ids:
            return counts

        stmt = (
            select(
                AssignmentRecordModel.staff_id,
                TicketModel.status,
                func.count(AssignmentRecordModel.id),
                func.sum(case((TicketModel.sla_due_at < now, 1), else_=0)),
            )
            .join(TicketModel, TicketModel.id == AssignmentRecordModel.ticket_id)
            .where(
                and_(
                    AssignmentRecordModel.ended_at.is_(None),
                    AssignmentRecordModel.staff_id.in_(list(staff_ids)),
                    TicketModel.status.in_(_ACTIVE),
                )
            )
            .group_by(AssignmentRecordModel.staff_id, TicketModel.status)
        )
        result = await self._session.execute(stmt)
        for staff_id, status, count, overdue in result.all():
            row = counts[staff_id]
            row["active"] += count
            row["overdue"] += int(overdue or 0)
            if status == TicketStatus.IN_PROGRESS.value:
                row["in_progress"] += count
            elif status == TicketStatus.PENDING.value:
                row["pending"] += count
        return counts

    async def count_active(self, staff_id: str, now: datetime) -> int:
        counts = await self.workload_counts([staff_id], now)
        return counts[staff_id]["active"]

    async def set_cached_count(self, staff_id: str, count: int) -> None:
        stmt = (
            update(StaffMemberModel)
            .where(StaffMemberModel.id == staff_id)
            .values(active_ticket_count=count)
            .execution_options(synchronize_session=False)
        )
        await self._session.execute(stmt)


class SQLAlchemyWorkloadCounter(IWorkloadCounter):
    """
    Maintains ``staff_members.active_ticket_count``.

    Updates are relative (``count = count + 1``) so concurrent writers do
    not lose increments. The counter never goes below zero.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def increment(self, staff_id: str, assigned_at: datetime) -> None:
        stmt = (
            update(StaffMemberModel)
            .where(StaffMemberModel.id == staff_id)
            .values(
                active_ticket_count=StaffMemberModel.active_ticket_count + 1,
                last_assigned_at=assigned_at,
            )
            .execution_options(synchronize_session=False)
        )
        await self._session.execute(stmt)

    async def decrement(self, staff_id: str) -> None:
        stmt = (
            update(StaffMemberModel)
            .where(StaffMemberModel.id == staff_id, StaffMemberModel.active_ticket_count > 0)
            .values(active_ticket_count=StaffMemberModel.active_ticket_count - 1)
            .execution_options(synchronize_session=False)
        )
        await self._session.execute(stmt)
