"""Organization selection settings and family group endpoints."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from cabin_rotation.core.deps import (
    get_current_session,
    get_db,
    require_csrf_header,
    require_roles,
)
from cabin_rotation.db.enums import ROLES_CAN_MANAGE_SELECTION
from cabin_rotation.schemas.auth import UserSession
from cabin_rotation.schemas.org import (
    AllocationModelAuditRead,
    AllocationModelRead,
    AllocationModelUpdate,
    FamilyGroupCreate,
    FamilyGroupRead,
    SelectionSettingsRead,
    SelectionSettingsUpdate,
)
from cabin_rotation.services import org_service

router = APIRouter(prefix="/organization", tags=["organization"])

require_manager = require_roles(ROLES_CAN_MANAGE_SELECTION)


# =============================================================================
# Allocation model
# =============================================================================


@router.get("/allocation-model", response_model=AllocationModelRead)
def get_allocation_model(
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    org = org_service.require_org(db, session.org_id)
    return AllocationModelRead(allocation_model=org_service.resolve_allocation_model(org))


@router.put(
    "/allocation-model",
    response_model=AllocationModelRead,
    dependencies=[Depends(require_csrf_header)],
)
def set_allocation_model(
    data: AllocationModelUpdate,
    session: UserSession = Depends(require_manager),
    db: Session = Depends(get_db),
):
    """Switch allocation model. Running rotation years keep their model."""
    org = org_service.require_org(db, session.org_id)
    org_service.set_allocation_model(
        db, org, data.allocation_model, user_id=session.user_id, reason=data.reason
    )
    db.commit()
    return AllocationModelRead(allocation_model=org_service.resolve_allocation_model(org))


@router.get("/allocation-model/audit", response_model=list[AllocationModelAuditRead])
def list_allocation_model_audit(
    limit: int = 50,
    session: UserSession = Depends(require_manager),
    db: Session = Depends(get_db),
):
    return org_service.list_allocation_model_audit(db, session.org_id, limit=min(limit, 200))


# =============================================================================
# Selection settings
# =============================================================================


@router.get("/selection-settings", response_model=SelectionSettingsRead)
def get_selection_settings(
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    return org_service.require_org(db, session.org_id)


@router.patch(
    "/selection-settings",
    response_model=SelectionSettingsRead,
    dependencies=[Depends(require_csrf_header)],
)
def update_selection_settings(
    data: SelectionSettingsUpdate,
    session: UserSession = Depends(require_manager),
    db: Session = Depends(get_db),
):
    org = org_service.require_org(db, session.org_id)
    org_service.update_selection_settings(db, org, **data.model_dump(exclude_unset=True))
    db.commit()
    db.refresh(org)
    return org


# =============================================================================
# Family groups
# =============================================================================


@router.get("/family-groups", response_model=list[FamilyGroupRead])
def list_family_groups(
    include_removed: bool = False,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    return org_service.list_family_groups(db, session.org_id, include_removed=include_removed)


@router.post(
    "/family-groups",
    response_model=FamilyGroupRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_csrf_header)],
)
def create_family_group(
    data: FamilyGroupCreate,
    session: UserSession = Depends(require_manager),
    db: Session = Depends(get_db),
):
    group = org_service.create_family_group(
        db, session.org_id, data.name, color=data.color, lead_email=data.lead_email
    )
    db.commit()
    db.refresh(group)
    return group


@router.delete(
    "/family-groups/{group_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_csrf_header)],
)
def remove_family_group(
    group_id: UUID,
    session: UserSession = Depends(require_manager),
    db: Session = Depends(get_db),
):
    """Soft-delete a family group that no running rotation year uses."""
    if not org_service.get_family_group(db, session.org_id, group_id):
        raise HTTPException(status_code=404, detail="Family group not found")
    org_service.remove_family_group(db, session.org_id, group_id)
    db.commit()
