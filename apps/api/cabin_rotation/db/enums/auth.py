"""Auth-related enums."""

from enum import Enum


class Role(str, Enum):
    """
    Roles carried in the session token.

    - MEMBER: Family group member (may claim for own group)
    - GROUP_LEAD: Family group lead (may claim for own group)
    - ADMIN: Organization admin (turn overrides, ledger reset, settings)
    - SUPERVISOR: Platform operator (same powers as ADMIN across tenants)
    """

    MEMBER = "member"
    GROUP_LEAD = "group_lead"
    ADMIN = "admin"
    SUPERVISOR = "supervisor"

    @classmethod
    def has_value(cls, value: str) -> bool:
        """Check if value is a valid role."""
        return value in cls._value2member_map_


ROLES_CAN_MANAGE_SELECTION = frozenset({Role.ADMIN, Role.SUPERVISOR})
