"""Rotation order store.

A rotation year's order is a permutation of the organization's active family
groups, written once when the year is created and never reshuffled mid-cycle
(a new order means a new rotation year). When no order is supplied, it is
derived from the most recent earlier year by rotating it one step per year.
"""

from __future__ import annotations

from typing import Sequence
from uuid import UUID

from sqlalchemy import and_, select
from sqlalchemy.orm import Session

from cabin_rotation.db.enums import RotationShift, TurnPhase
from cabin_rotation.db.models import FamilyGroup, Organization, RotationYear
from cabin_rotation.services.selection_errors import (
    InvalidRotationOrderError,
    RotationYearNotFoundError,
)


def list_active_family_group_ids(db: Session, org_id: UUID) -> set[UUID]:
    return set(
        db.execute(
            select(FamilyGroup.id).where(
                and_(
                    FamilyGroup.organization_id == org_id,
                    FamilyGroup.deleted_at.is_(None),
                )
            )
        ).scalars().all()
    )


def validate_rotation_order(
    order: Sequence[UUID | str],
    active_group_ids: set[UUID],
) -> list[UUID]:
    """
    Check that `order` is a permutation of the active family groups.

    Raises InvalidRotationOrderError describing the first problem found.
    """
    if not order:
        raise InvalidRotationOrderError("Rotation order is empty")

    parsed: list[UUID] = []
    for raw in order:
        try:
            parsed.append(raw if isinstance(raw, UUID) else UUID(str(raw)))
        except (TypeError, ValueError):
            raise InvalidRotationOrderError(f"'{raw}' is not a family group id")

    seen: set[UUID] = set()
    duplicates = []
    for group_id in parsed:
        if group_id in seen:
            duplicates.append(group_id)
        seen.add(group_id)
    if duplicates:
        raise InvalidRotationOrderError(
            "Rotation order lists family groups more than once: "
            + ", ".join(str(g) for g in duplicates)
        )

    unknown = seen - active_group_ids
    if unknown:
        raise InvalidRotationOrderError(
            "Rotation order contains unknown or removed family groups: "
            + ", ".join(sorted(str(g) for g in unknown))
        )
    missing = active_group_ids - seen
    if missing:
        raise InvalidRotationOrderError(
            "Rotation order is missing active family groups: "
            + ", ".join(sorted(str(g) for g in missing))
        )
    return parsed


def derive_order_for_year(
    base_order: Sequence[str],
    base_year: int,
    target_year: int,
    shift: RotationShift | str = RotationShift.FIRST,
) -> list[str]:
    """
    Rotate `base_order` one step per year between base_year and target_year.

    FIRST moves the head to the tail (1,2,3 -> 2,3,1); LAST moves the tail
    to the head (1,2,3 -> 3,1,2). Years before the base keep the base order.
    """
    order = list(base_order)
    if not order or target_year <= base_year:
        return order
    steps = (target_year - base_year) % len(order)
    if RotationShift(shift) == RotationShift.FIRST:
        return order[steps:] + order[:steps]
    return order[len(order) - steps:] + order[:len(order) - steps]


def get_rotation_year(db: Session, org_id: UUID, year: int) -> RotationYear | None:
    return db.execute(
        select(RotationYear).where(
            and_(RotationYear.organization_id == org_id, RotationYear.year == year)
        )
    ).scalar_one_or_none()


def require_rotation_year(db: Session, org_id: UUID, year: int) -> RotationYear:
    rotation_year = get_rotation_year(db, org_id, year)
    if not rotation_year:
        raise RotationYearNotFoundError(f"No rotation year {year} for this organization")
    return rotation_year


def get_base_rotation_year(db: Session, org_id: UUID, before_year: int) -> RotationYear | None:
    """Most recent rotation year earlier than `before_year`."""
    return db.execute(
        select(RotationYear)
        .where(
            and_(
                RotationYear.organization_id == org_id,
                RotationYear.year < before_year,
            )
        )
        .order_by(RotationYear.year.desc())
        .limit(1)
    ).scalar_one_or_none()


def resolve_order(
    db: Session,
    org: Organization,
    year: int,
    order: Sequence[UUID | str] | None,
) -> list[UUID]:
    """
    The validated order for a new rotation year.

    Uses `order` when given, otherwise derives it from the previous year.
    """
    active_group_ids = list_active_family_group_ids(db, org.id)
    if order is None:
        base = get_base_rotation_year(db, org.id, year)
        if base is None:
            raise InvalidRotationOrderError(
                "No rotation order supplied and no earlier rotation year to derive one from"
            )
        order = derive_order_for_year(base.rotation_order, base.year, year, org.rotation_shift)
    return validate_rotation_order(order, active_group_ids)


def create_rotation_year(
    db: Session,
    org: Organization,
    year: int,
    order: Sequence[UUID],
) -> RotationYear:
    """Persist a not-yet-started rotation year. Order must already be validated."""
    rotation_year = RotationYear(
        organization_id=org.id,
        year=year,
        allocation_model=org.allocation_model,
        rotation_order=[str(group_id) for group_id in order],
        phase=TurnPhase.NOT_STARTED.value,
        rotation_index=0,
        version=0,
        activated_group_ids=[],
    )
    db.add(rotation_year)
    db.flush()
    return rotation_year
