"""Rotation year and turn state schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from cabin_rotation.db.enums import TurnPhase


class SecondarySelectionStatusRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    current_family_group_id: UUID | None
    rotation_year: int


class TurnStateRead(BaseModel):
    """Turn state of a rotation year. `version` must be echoed back on mutations."""
    model_config = ConfigDict(from_attributes=True)

    rotation_year: int
    allocation_model: str
    phase: TurnPhase
    active_group_id: UUID | None
    rotation_index: int
    version: int
    turn_started_at: datetime | None = None
    turn_deadline: datetime | None = None
    secondary: SecondarySelectionStatusRead | None = None


class StartRotationRequest(BaseModel):
    """Omit `order` to derive it from the previous rotation year."""
    order: list[UUID] | None = None


class ClaimRequest(BaseModel):
    family_group_id: UUID | None = None  # Defaults to the caller's own group
    requested_periods: int = Field(gt=0)
    idempotency_token: str = Field(min_length=1, max_length=255)
    expected_version: int = Field(ge=0)
    # Owner of the requested weeks (static weeks), supplied by the calendar
    week_owner_group_id: UUID | None = None
    admin_approved: bool = False


class ClaimResponse(BaseModel):
    turn: TurnStateRead
    replayed: bool = False


class AdvanceRequest(BaseModel):
    expected_version: int = Field(ge=0)


class AssignRequest(BaseModel):
    family_group_id: UUID
    expected_version: int = Field(ge=0)


class UsageRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    family_group_id: UUID
    primary_periods_used: int
    secondary_periods_used: int


class UsageResponse(BaseModel):
    rotation_year: int
    primary_quota: int
    secondary_quota: int
    usage: list[UsageRead]


class UsageResetResponse(BaseModel):
    rotation_year: int
    rows_reset: int


class OrderPreview(BaseModel):
    """Rotation order a year has, or would get if started now."""
    rotation_year: int
    order: list[UUID]
    derived: bool
    base_year: int | None = None
