"""SQLAlchemy ORM models."""

from cabin_rotation.db.models.jobs import Job
from cabin_rotation.db.models.organizations import (
    AllocationModelAudit,
    FamilyGroup,
    Organization,
)
from cabin_rotation.db.models.rotation import (
    LotteryDraw,
    RotationYear,
    SelectionClaim,
    TimePeriodUsage,
)

__all__ = [
    "AllocationModelAudit",
    "FamilyGroup",
    "Job",
    "LotteryDraw",
    "Organization",
    "RotationYear",
    "SelectionClaim",
    "TimePeriodUsage",
]
