"""Usage ledger - per family group period counters for a rotation year.

Counters only move up through `increment`, which is a single guarded UPDATE:
the quota check and the write happen in one statement, so concurrent
increments on the same row can never overshoot the quota. Rows for different
groups are independent.
"""

import logging
from typing import Iterable
from uuid import UUID

from sqlalchemy import and_, func, select, update
from sqlalchemy.orm import Session

from cabin_rotation.db.enums import UsageField
from cabin_rotation.db.models import RotationYear, TimePeriodUsage
from cabin_rotation.services.allocation_models import UsageCounts
from cabin_rotation.services.selection_errors import (
    QuotaExceededError,
    RotationYearNotFoundError,
)

logger = logging.getLogger(__name__)


def ensure_rows(
    db: Session,
    rotation_year: RotationYear,
    group_ids: Iterable[UUID],
) -> list[TimePeriodUsage]:
    """Create zeroed usage rows for any group that does not have one yet."""
    existing = get_usage_rows(db, rotation_year.id)
    created = []
    for group_id in group_ids:
        if group_id in existing:
            continue
        row = TimePeriodUsage(
            organization_id=rotation_year.organization_id,
            rotation_year_id=rotation_year.id,
            family_group_id=group_id,
            primary_periods_used=0,
            secondary_periods_used=0,
        )
        db.add(row)
        created.append(row)
    if created:
        db.flush()
    return created


def get_usage_rows(db: Session, rotation_year_id: UUID) -> dict[UUID, TimePeriodUsage]:
    rows = db.execute(
        select(TimePeriodUsage).where(TimePeriodUsage.rotation_year_id == rotation_year_id)
    ).scalars().all()
    return {row.family_group_id: row for row in rows}


def get_usage(db: Session, org_id: UUID, year: int) -> dict[UUID, TimePeriodUsage]:
    """Usage rows of a rotation year keyed by family group id."""
    rotation_year = db.execute(
        select(RotationYear).where(
            and_(RotationYear.organization_id == org_id, RotationYear.year == year)
        )
    ).scalar_one_or_none()
    if not rotation_year:
        raise RotationYearNotFoundError(f"No rotation year {year} for this organization")
    return get_usage_rows(db, rotation_year.id)


def usage_counts(rows: dict[UUID, TimePeriodUsage]) -> dict[str, UsageCounts]:
    """Ledger rows as the plain counters the allocation models read."""
    return {
        str(group_id): UsageCounts(
            primary=row.primary_periods_used,
            secondary=row.secondary_periods_used,
        )
        for group_id, row in rows.items()
    }


def increment(
    db: Session,
    rotation_year_id: UUID,
    family_group_id: UUID,
    field: UsageField,
    delta: int,
    quota: int,
) -> int:
    """
    Add `delta` to one counter if the result stays within `quota`.

    Returns the new counter value. Raises QuotaExceededError (and changes
    nothing) when the increment would exceed the quota.
    """
    if delta <= 0:
        raise ValueError("usage ledger increments must be positive")

    column = getattr(TimePeriodUsage, field.value)
    result = db.execute(
        update(TimePeriodUsage)
        .where(
            and_(
                TimePeriodUsage.rotation_year_id == rotation_year_id,
                TimePeriodUsage.family_group_id == family_group_id,
                column + delta <= quota,
            )
        )
        .values({field.value: column + delta})
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise QuotaExceededError(
            f"Usage for family group {family_group_id} would exceed quota of {quota}"
        )

    new_value = db.execute(
        select(column).where(
            and_(
                TimePeriodUsage.rotation_year_id == rotation_year_id,
                TimePeriodUsage.family_group_id == family_group_id,
            )
        )
    ).scalar_one()
    return new_value


def reset(db: Session, org_id: UUID, year: int) -> int:
    """
    Zero every counter of a rotation year (new cycle).

    Destructive; callers must hold admin privilege. Returns rows reset.
    """
    rotation_year = db.execute(
        select(RotationYear).where(
            and_(RotationYear.organization_id == org_id, RotationYear.year == year)
        )
    ).scalar_one_or_none()
    if not rotation_year:
        raise RotationYearNotFoundError(f"No rotation year {year} for this organization")

    result = db.execute(
        update(TimePeriodUsage)
        .where(TimePeriodUsage.rotation_year_id == rotation_year.id)
        .values(primary_periods_used=0, secondary_periods_used=0)
        .execution_options(synchronize_session=False)
    )
    logger.info(
        "Usage ledger reset for org=%s year=%s (%s rows)", org_id, year, result.rowcount
    )
    return result.rowcount


def historical_usage(db: Session, org_id: UUID, before_year: int) -> dict[str, int]:
    """Total periods each group used in all rotation years before `before_year`."""
    rows = db.execute(
        select(
            TimePeriodUsage.family_group_id,
            func.sum(
                TimePeriodUsage.primary_periods_used + TimePeriodUsage.secondary_periods_used
            ),
        )
        .join(RotationYear, RotationYear.id == TimePeriodUsage.rotation_year_id)
        .where(
            and_(
                RotationYear.organization_id == org_id,
                RotationYear.year < before_year,
            )
        )
        .group_by(TimePeriodUsage.family_group_id)
    ).all()
    return {str(group_id): int(total or 0) for group_id, total in rows}
