"""Organization service - allocation model, selection settings and family groups."""

import logging
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import and_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from cabin_rotation.db.enums import AllocationModelName, RotationShift, TurnPhase
from cabin_rotation.db.models import (
    AllocationModelAudit,
    FamilyGroup,
    Organization,
    RotationYear,
)
from cabin_rotation.services.allocation_models import get_allocation_model
from cabin_rotation.services.selection_errors import (
    DuplicateFamilyGroupNameError,
    FamilyGroupInUseError,
    FamilyGroupNotFoundError,
    OrganizationNotFoundError,
)

logger = logging.getLogger(__name__)

SELECTION_SETTING_FIELDS = (
    "primary_quota",
    "secondary_quota",
    "secondary_pass_enabled",
    "reverse_secondary_order",
    "rotation_shift",
    "selection_days",
    "secondary_selection_days",
    "turn_notifications_enabled",
)


# =============================================================================
# Organizations
# =============================================================================


def get_org_by_id(db: Session, org_id: UUID) -> Organization | None:
    """Get organization by ID."""
    return db.execute(
        select(Organization).where(
            and_(Organization.id == org_id, Organization.deleted_at.is_(None))
        )
    ).scalar_one_or_none()


def get_org_by_slug(db: Session, slug: str) -> Organization | None:
    """Get organization by slug."""
    return db.execute(
        select(Organization).where(
            and_(Organization.slug == slug.lower(), Organization.deleted_at.is_(None))
        )
    ).scalar_one_or_none()


def require_org(db: Session, org_id: UUID) -> Organization:
    org = get_org_by_id(db, org_id)
    if not org:
        raise OrganizationNotFoundError(f"Organization {org_id} not found")
    return org


def create_org(db: Session, name: str, slug: str, **selection_settings) -> Organization:
    """
    Create a new organization.

    Raises:
        IntegrityError: If slug already exists
    """
    org = Organization(name=name, slug=slug.lower())
    _apply_selection_settings(org, selection_settings)
    db.add(org)
    db.flush()
    return org


# =============================================================================
# Allocation model
# =============================================================================


def resolve_allocation_model(org: Organization) -> AllocationModelName:
    """The organization's model; organizations predating the setting run rotating selection."""
    return get_allocation_model(org.allocation_model).name


def set_allocation_model(
    db: Session,
    org: Organization,
    model: str | AllocationModelName,
    user_id: UUID | None = None,
    reason: str | None = None,
) -> Organization:
    """
    Switch the organization's allocation model and append an audit row.

    A rotation year already started keeps the model it started with; the new
    model applies from the next rotation year.

    Raises:
        UnknownAllocationModelError: If `model` is not a supported model
    """
    new_model = get_allocation_model(model).name
    old_model = org.allocation_model or None
    if old_model == new_model.value:
        return org

    org.allocation_model = new_model.value
    db.add(
        AllocationModelAudit(
            organization_id=org.id,
            old_model=old_model,
            new_model=new_model.value,
            changed_by_user_id=user_id,
            change_reason=reason,
        )
    )
    db.flush()
    logger.info(
        "Allocation model changed for org=%s: %s -> %s", org.id, old_model, new_model.value
    )
    return org


def list_allocation_model_audit(
    db: Session, org_id: UUID, limit: int = 50
) -> list[AllocationModelAudit]:
    """Model changes, newest first."""
    return list(
        db.execute(
            select(AllocationModelAudit)
            .where(AllocationModelAudit.organization_id == org_id)
            .order_by(AllocationModelAudit.changed_at.desc(), AllocationModelAudit.id)
            .limit(limit)
        ).scalars().all()
    )


# =============================================================================
# Selection settings
# =============================================================================


def _apply_selection_settings(org: Organization, changes: dict) -> None:
    for key, value in changes.items():
        if key not in SELECTION_SETTING_FIELDS:
            raise ValueError(f"Unknown selection setting '{key}'")
        if value is None:
            continue
        if key == "rotation_shift":
            value = RotationShift(value).value
        elif key in ("primary_quota", "secondary_quota") and value < 0:
            raise ValueError(f"{key} must not be negative")
        elif key in ("selection_days", "secondary_selection_days") and value < 1:
            raise ValueError(f"{key} must be at least one day")
        setattr(org, key, value)


def get_selection_settings(org: Organization) -> dict:
    return {key: getattr(org, key) for key in SELECTION_SETTING_FIELDS}


def update_selection_settings(db: Session, org: Organization, **changes) -> Organization:
    """
    Patch selection configuration. None values leave a setting unchanged.

    Quota changes take effect on the next turn decision of running rotation
    years; the ledger never moves backwards.
    """
    _apply_selection_settings(org, changes)
    db.flush()
    return org


# =============================================================================
# Family groups
# =============================================================================


def list_family_groups(
    db: Session,
    org_id: UUID,
    include_removed: bool = False,
) -> list[FamilyGroup]:
    query = select(FamilyGroup).where(FamilyGroup.organization_id == org_id)
    if not include_removed:
        query = query.where(FamilyGroup.deleted_at.is_(None))
    query = query.order_by(FamilyGroup.created_at, FamilyGroup.name)
    return list(db.execute(query).scalars().all())


def get_family_group(db: Session, org_id: UUID, group_id: UUID) -> FamilyGroup | None:
    return db.execute(
        select(FamilyGroup).where(
            and_(FamilyGroup.id == group_id, FamilyGroup.organization_id == org_id)
        )
    ).scalar_one_or_none()


def create_family_group(
    db: Session,
    org_id: UUID,
    name: str,
    color: str | None = None,
    lead_email: str | None = None,
) -> FamilyGroup:
    """Create a new family group."""
    group = FamilyGroup(
        organization_id=org_id,
        name=name.strip(),
        color=color,
        lead_email=lead_email.strip().lower() if lead_email else None,
    )
    try:
        db.add(group)
        db.flush()
    except IntegrityError:
        db.rollback()
        raise DuplicateFamilyGroupNameError(f"Family group '{name}' already exists")
    return group


def rotation_years_using_group(db: Session, org_id: UUID, group_id: UUID) -> list[int]:
    """Years of rotation cycles still running that list the group in their order."""
    running = db.execute(
        select(RotationYear).where(
            and_(
                RotationYear.organization_id == org_id,
                RotationYear.phase != TurnPhase.COMPLETED.value,
            )
        )
    ).scalars().all()
    return sorted(
        rotation_year.year
        for rotation_year in running
        if str(group_id) in (rotation_year.rotation_order or [])
    )


def remove_family_group(db: Session, org_id: UUID, group_id: UUID) -> FamilyGroup:
    """
    Soft-delete a family group.

    Usage history stays attributable to the group. Removing a group that a
    running rotation year still lists in its order is rejected.
    """
    group = get_family_group(db, org_id, group_id)
    if not group or not group.is_active:
        raise FamilyGroupNotFoundError(f"Family group {group_id} not found")

    years = rotation_years_using_group(db, org_id, group_id)
    if years:
        raise FamilyGroupInUseError(
            "Family group is part of the running rotation year(s) "
            + ", ".join(str(year) for year in years)
        )

    group.deleted_at = datetime.now(timezone.utc)
    db.flush()
    return group
