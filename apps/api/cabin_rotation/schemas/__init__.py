"""Pydantic schemas for API request/response models."""

from cabin_rotation.schemas.auth import TokenPayload, UserSession
from cabin_rotation.schemas.org import (
    AllocationModelAuditRead,
    AllocationModelRead,
    AllocationModelUpdate,
    FamilyGroupCreate,
    FamilyGroupRead,
    SelectionSettingsRead,
    SelectionSettingsUpdate,
)
from cabin_rotation.schemas.rotation import (
    AdvanceRequest,
    AssignRequest,
    ClaimRequest,
    ClaimResponse,
    OrderPreview,
    SecondarySelectionStatusRead,
    StartRotationRequest,
    TurnStateRead,
    UsageRead,
    UsageResetResponse,
    UsageResponse,
)

__all__ = [
    "AdvanceRequest",
    "AllocationModelAuditRead",
    "AllocationModelRead",
    "AllocationModelUpdate",
    "AssignRequest",
    "ClaimRequest",
    "ClaimResponse",
    "FamilyGroupCreate",
    "FamilyGroupRead",
    "OrderPreview",
    "SecondarySelectionStatusRead",
    "SelectionSettingsRead",
    "SelectionSettingsUpdate",
    "StartRotationRequest",
    "TokenPayload",
    "TurnStateRead",
    "UsageRead",
    "UsageResetResponse",
    "UsageResponse",
    "UserSession",
]
