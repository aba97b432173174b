"""Allocation model and turn-state enums."""

from enum import Enum


class AllocationModelName(str, Enum):
    """
    Booking policies an organization can run.

    The set is closed: every value maps to exactly one strategy in
    services.allocation_models.
    """

    ROTATING_SELECTION = "rotating_selection"
    STATIC_WEEKS = "static_weeks"
    FIRST_COME_FIRST_SERVE = "first_come_first_serve"
    MANUAL = "manual"
    LOTTERY = "lottery"

    @classmethod
    def has_value(cls, value: str) -> bool:
        return value in cls._value2member_map_


class TurnPhase(str, Enum):
    """Lifecycle of a rotation year's selection."""

    NOT_STARTED = "not_started"
    PRIMARY_ACTIVE = "primary_active"
    SECONDARY_ACTIVE = "secondary_active"
    COMPLETED = "completed"

    @property
    def is_active(self) -> bool:
        return self in (TurnPhase.PRIMARY_ACTIVE, TurnPhase.SECONDARY_ACTIVE)


class UsageField(str, Enum):
    """Ledger counters, one per selection phase."""

    PRIMARY = "primary_periods_used"
    SECONDARY = "secondary_periods_used"

    @classmethod
    def for_phase(cls, phase: TurnPhase) -> "UsageField":
        if phase == TurnPhase.SECONDARY_ACTIVE:
            return cls.SECONDARY
        return cls.PRIMARY


class RotationShift(str, Enum):
    """How the base rotation order moves from one year to the next."""

    FIRST = "first"  # 1,2,3 -> 2,3,1
    LAST = "last"  # 1,2,3 -> 3,1,2
