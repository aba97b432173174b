"""Organization settings and family group schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from cabin_rotation.db.enums import AllocationModelName, RotationShift


class AllocationModelRead(BaseModel):
    allocation_model: AllocationModelName


class AllocationModelUpdate(BaseModel):
    allocation_model: str
    reason: str | None = Field(default=None, max_length=500)


class AllocationModelAuditRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    old_model: str | None
    new_model: str
    changed_by_user_id: UUID | None
    changed_at: datetime
    change_reason: str | None


class SelectionSettingsRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    primary_quota: int
    secondary_quota: int
    secondary_pass_enabled: bool
    reverse_secondary_order: bool
    rotation_shift: RotationShift
    selection_days: int
    secondary_selection_days: int
    turn_notifications_enabled: bool


class SelectionSettingsUpdate(BaseModel):
    """Partial update; omitted fields keep their value."""
    primary_quota: int | None = Field(default=None, ge=0)
    secondary_quota: int | None = Field(default=None, ge=0)
    secondary_pass_enabled: bool | None = None
    reverse_secondary_order: bool | None = None
    rotation_shift: RotationShift | None = None
    selection_days: int | None = Field(default=None, ge=1)
    secondary_selection_days: int | None = Field(default=None, ge=1)
    turn_notifications_enabled: bool | None = None


class FamilyGroupCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    color: str | None = None
    lead_email: str | None = None

    @field_validator("color")
    @classmethod
    def validate_color(cls, v: str | None) -> str | None:
        """Hex color like '#0066cc'."""
        if v is None:
            return v
        v = v.strip()
        if len(v) != 7 or not v.startswith("#"):
            raise ValueError("Color must be a hex value like #0066cc")
        int(v[1:], 16)
        return v.lower()


class FamilyGroupRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    color: str | None
    lead_email: str | None
    created_at: datetime
    deleted_at: datetime | None = None
