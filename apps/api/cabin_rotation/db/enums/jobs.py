"""Job-related enums."""

from enum import Enum


class JobType(str, Enum):
    """Types of outbox jobs consumed by external workers."""

    SELECTION_TURN_NOTIFICATION = "selection_turn_notification"


class JobStatus(str, Enum):
    """Status of background jobs."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


DEFAULT_JOB_STATUS: JobStatus = JobStatus.PENDING
