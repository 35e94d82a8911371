"""
Assignment Infrastructure Layer
================================

- Models: staff directory ORM model
- Repositories: staff directory access and the cached workload counter
"""

from municipal_ticketing.assignment.infrastructure.models import StaffMemberModel
from municipal_ticketing.assignment.infrastructure.repositories import (
    SQLAlchemyStaffRepository,
    SQLAlchemyWorkloadCounter,
)

__all__ = [
    "StaffMemberModel",
    "SQLAlchemyStaffRepository",
    "SQLAlchemyWorkloadCounter",
]
