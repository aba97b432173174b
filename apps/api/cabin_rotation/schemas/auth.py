"""Authentication-related Pydantic schemas."""

from uuid import UUID

from pydantic import BaseModel

from cabin_rotation.db.enums import ROLES_CAN_MANAGE_SELECTION, Role


class TokenPayload(BaseModel):
    """Decoded JWT payload structure."""
    sub: UUID  # user_id
    org_id: UUID
    role: str
    family_group_id: UUID | None = None


class UserSession(BaseModel):
    """
    Session context for authenticated requests.

    Returned by the get_current_session dependency; the auth service that
    issued the token is trusted for every field.
    """
    user_id: UUID
    org_id: UUID
    role: Role  # Validated enum
    family_group_id: UUID | None = None

    @property
    def can_manage_selection(self) -> bool:
        return self.role in ROLES_CAN_MANAGE_SELECTION
