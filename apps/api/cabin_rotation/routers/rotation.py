"""Rotation year selection API endpoints."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from cabin_rotation.core.deps import (
    get_current_session,
    get_db,
    require_csrf_header,
    require_roles,
)
from cabin_rotation.core.rate_limit import CLAIM_LIMIT, limiter
from cabin_rotation.db.enums import ROLES_CAN_MANAGE_SELECTION
from cabin_rotation.schemas.auth import UserSession
from cabin_rotation.schemas.rotation import (
    AdvanceRequest,
    AssignRequest,
    ClaimRequest,
    ClaimResponse,
    OrderPreview,
    StartRotationRequest,
    TurnStateRead,
    UsageRead,
    UsageResetResponse,
    UsageResponse,
)
from cabin_rotation.services import org_service, rotation_order_service, selection_service

router = APIRouter(prefix="/rotation-years", tags=["rotation"])

require_manager = require_roles(ROLES_CAN_MANAGE_SELECTION)


@router.post(
    "/{year}/start",
    response_model=TurnStateRead,
    dependencies=[Depends(require_csrf_header)],
)
def start_rotation_year(
    year: int,
    data: StartRotationRequest,
    session: UserSession = Depends(require_manager),
    db: Session = Depends(get_db),
):
    """Start selection for a rotation year (creating it if needed)."""
    return selection_service.start_rotation_year(db, session.org_id, year, data.order)


@router.get("/{year}/turn", response_model=TurnStateRead)
def get_turn(
    year: int,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Current turn state. Echo `version` back as `expected_version` on mutations."""
    return selection_service.get_turn_state(db, session.org_id, year)


@router.post(
    "/{year}/claims",
    response_model=ClaimResponse,
    dependencies=[Depends(require_csrf_header)],
)
@limiter.limit(CLAIM_LIMIT)
def claim_turn(
    request: Request,
    year: int,
    data: ClaimRequest,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """
    Book periods for a family group in the current phase.

    Members and group leads claim for their own group only; admins may claim
    for any group and approve manual-model claims.
    """
    group_id = data.family_group_id or session.family_group_id
    if group_id is None:
        raise HTTPException(status_code=400, detail="family_group_id is required")
    if not session.can_manage_selection:
        if group_id != session.family_group_id:
            raise HTTPException(status_code=403, detail="You can only claim for your own family group")
        if data.admin_approved:
            raise HTTPException(status_code=403, detail="Only admins can approve claims")

    outcome = selection_service.claim_turn(
        db,
        session.org_id,
        year,
        group_id=group_id,
        requested_periods=data.requested_periods,
        idempotency_token=data.idempotency_token,
        expected_version=data.expected_version,
        week_owner_group_id=data.week_owner_group_id,
        admin_approved=data.admin_approved,
        actor_user_id=session.user_id,
    )
    return ClaimResponse(
        turn=TurnStateRead.model_validate(outcome.state),
        replayed=outcome.replayed,
    )


@router.post(
    "/{year}/advance",
    response_model=TurnStateRead,
    dependencies=[Depends(require_csrf_header)],
)
def advance_turn(
    year: int,
    data: AdvanceRequest,
    session: UserSession = Depends(require_manager),
    db: Session = Depends(get_db),
):
    """Skip the current selector."""
    return selection_service.advance_turn(
        db, session.org_id, year, data.expected_version, actor_user_id=session.user_id
    )


@router.post(
    "/{year}/assign",
    response_model=TurnStateRead,
    dependencies=[Depends(require_csrf_header)],
)
def assign_turn(
    year: int,
    data: AssignRequest,
    session: UserSession = Depends(require_manager),
    db: Session = Depends(get_db),
):
    """Hand the turn to a specific family group."""
    return selection_service.assign_turn(
        db,
        session.org_id,
        year,
        data.family_group_id,
        data.expected_version,
        actor_user_id=session.user_id,
    )


@router.get("/{year}/usage", response_model=UsageResponse)
def get_usage(
    year: int,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    org = org_service.require_org(db, session.org_id)
    rows = selection_service.get_usage(db, session.org_id, year)
    return UsageResponse(
        rotation_year=year,
        primary_quota=org.primary_quota,
        secondary_quota=org.secondary_quota,
        usage=[UsageRead.model_validate(row) for row in rows.values()],
    )


@router.post(
    "/{year}/usage/reset",
    response_model=UsageResetResponse,
    dependencies=[Depends(require_csrf_header)],
)
def reset_usage(
    year: int,
    session: UserSession = Depends(require_manager),
    db: Session = Depends(get_db),
):
    """Zero every usage counter of the rotation year."""
    count = selection_service.reset_ledger(db, session.org_id, year, actor_user_id=session.user_id)
    return UsageResetResponse(rotation_year=year, rows_reset=count)


@router.get("/{year}/order", response_model=OrderPreview)
def get_order(
    year: int,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """The year's rotation order, or the one it would be derived with."""
    rotation_year = rotation_order_service.get_rotation_year(db, session.org_id, year)
    if rotation_year:
        return OrderPreview(
            rotation_year=year,
            order=[UUID(group_id) for group_id in rotation_year.rotation_order],
            derived=False,
        )

    org = org_service.require_org(db, session.org_id)
    base = rotation_order_service.get_base_rotation_year(db, session.org_id, year)
    if not base:
        raise HTTPException(status_code=404, detail="No earlier rotation year to derive an order from")
    order = rotation_order_service.derive_order_for_year(
        base.rotation_order, base.year, year, org.rotation_shift
    )
    return OrderPreview(
        rotation_year=year,
        order=[UUID(group_id) for group_id in order],
        derived=True,
        base_year=base.year,
    )
