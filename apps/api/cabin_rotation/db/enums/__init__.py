"""Enum definitions for application constants."""

from cabin_rotation.db.enums.allocation import (
    AllocationModelName,
    RotationShift,
    TurnPhase,
    UsageField,
)
from cabin_rotation.db.enums.auth import ROLES_CAN_MANAGE_SELECTION, Role
from cabin_rotation.db.enums.jobs import DEFAULT_JOB_STATUS, JobStatus, JobType

__all__ = [
    "AllocationModelName",
    "DEFAULT_JOB_STATUS",
    "JobStatus",
    "JobType",
    "ROLES_CAN_MANAGE_SELECTION",
    "Role",
    "RotationShift",
    "TurnPhase",
    "UsageField",
]
