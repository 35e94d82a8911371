"""
Assignment Infrastructure Models
=================================

SQLAlchemy ORM model for the staff directory.

The directory itself is owned by an external HR/staff service; this table
is the engine's read copy plus the cached workload counter.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, Float, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from municipal_ticketing.config import ActorRole, AvailabilityStatus
from municipal_ticketing.infrastructure.database import Base, UTCDateTime


class StaffMemberModel(Base):
    """
    Database model for StaffMember entity.

    Maps to the 'staff_members' table.
    """
    __tablename__ = "staff_members"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    full_name: Mapped[str] = mapped_column(String(200), nullable=False)
    role: Mapped[ActorRole] = mapped_column(String(20), nullable=False, default=ActorRole.STAFF)

    # Affiliation
    department: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    ward: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # Availability
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    availability_status: Mapped[AvailabilityStatus] = mapped_column(
        String(20), nullable=False, default=AvailabilityStatus.AVAILABLE
    )
    max_concurrent_assignments: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Cached workload (ranking only)
    active_ticket_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_assigned_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
