"""Selection session controller.

Entry point for every turn-state mutation of a rotation year. Each mutating
call runs one read-validate-write transition inside the per-(organization,
year) selection lock:

    lock -> load rotation year FOR UPDATE -> idempotency / version checks
         -> turn state machine -> ledger increment + turn state CAS -> commit
    unlock -> notification trigger

Any failure rolls the whole transition back, so a request abandoned halfway
leaves no partial state.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, TypeVar
from uuid import UUID

from sqlalchemy import and_, select, update
from sqlalchemy.orm import Session

from cabin_rotation.core.selection_lock import selection_locks
from cabin_rotation.core.structured_logging import build_log_context
from cabin_rotation.db.enums import AllocationModelName, TurnPhase
from cabin_rotation.db.models import (
    LotteryDraw,
    Organization,
    RotationYear,
    SelectionClaim,
    TimePeriodUsage,
)
from cabin_rotation.services import org_service, rotation_order_service, usage_ledger
from cabin_rotation.services.allocation_models import (
    PeriodRequest,
    Quotas,
    generate_draw_nonce,
    get_allocation_model,
)
from cabin_rotation.services.notification_trigger import (
    TurnChangedEvent,
    notification_trigger,
)
from cabin_rotation.services.selection_errors import (
    FamilyGroupNotFoundError,
    IdempotencyConflictError,
    InvalidRotationOrderError,
    RotationYearNotFoundError,
    SelectionServiceError,
    StaleStateError,
)
from cabin_rotation.services.turn_state_machine import (
    SelectionRules,
    Transition,
    TurnSnapshot,
    TurnStateMachine,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


# =============================================================================
# Read model
# =============================================================================


@dataclass(frozen=True)
class SecondarySelectionStatus:
    current_family_group_id: UUID | None
    rotation_year: int


@dataclass(frozen=True)
class TurnState:
    """What clients see of a rotation year's turn state."""

    rotation_year: int
    allocation_model: str
    phase: TurnPhase
    active_group_id: UUID | None
    rotation_index: int
    version: int
    turn_started_at: datetime | None = None
    turn_deadline: datetime | None = None
    secondary: SecondarySelectionStatus | None = None

    def to_dict(self) -> dict:
        """JSON-safe form, stored with idempotent claims."""
        data = asdict(self)
        data["phase"] = self.phase.value
        data["active_group_id"] = str(self.active_group_id) if self.active_group_id else None
        for key in ("turn_started_at", "turn_deadline"):
            value = data[key]
            data[key] = value.isoformat() if value else None
        if self.secondary:
            group_id = self.secondary.current_family_group_id
            data["secondary"] = {
                "current_family_group_id": str(group_id) if group_id else None,
                "rotation_year": self.secondary.rotation_year,
            }
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "TurnState":
        secondary = data.get("secondary")
        return cls(
            rotation_year=data["rotation_year"],
            allocation_model=data["allocation_model"],
            phase=TurnPhase(data["phase"]),
            active_group_id=_parse_uuid(data.get("active_group_id")),
            rotation_index=data["rotation_index"],
            version=data["version"],
            turn_started_at=_parse_datetime(data.get("turn_started_at")),
            turn_deadline=_parse_datetime(data.get("turn_deadline")),
            secondary=SecondarySelectionStatus(
                current_family_group_id=_parse_uuid(secondary.get("current_family_group_id")),
                rotation_year=secondary["rotation_year"],
            )
            if secondary
            else None,
        )


@dataclass(frozen=True)
class ClaimOutcome:
    state: TurnState
    # True when the token was seen before and the stored answer was returned
    replayed: bool = False


def _parse_uuid(value: str | None) -> UUID | None:
    return UUID(value) if value else None


def _parse_datetime(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; they are stored as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def turn_window(org: Organization, phase: TurnPhase) -> timedelta:
    if phase == TurnPhase.SECONDARY_ACTIVE:
        return timedelta(days=org.secondary_selection_days)
    return timedelta(days=org.selection_days)


def build_turn_state(org: Organization, rotation_year: RotationYear) -> TurnState:
    phase = TurnPhase(rotation_year.phase)
    turn_started_at = _as_utc(rotation_year.turn_started_at)
    deadline = None
    if rotation_year.active_group_id and turn_started_at and phase.is_active:
        deadline = turn_started_at + turn_window(org, phase)
    secondary = None
    if phase == TurnPhase.SECONDARY_ACTIVE:
        secondary = SecondarySelectionStatus(
            current_family_group_id=rotation_year.active_group_id,
            rotation_year=rotation_year.year,
        )
    return TurnState(
        rotation_year=rotation_year.year,
        allocation_model=rotation_year.allocation_model,
        phase=phase,
        active_group_id=rotation_year.active_group_id,
        rotation_index=rotation_year.rotation_index,
        version=rotation_year.version,
        turn_started_at=turn_started_at,
        turn_deadline=deadline,
        secondary=secondary,
    )


# =============================================================================
# Internals
# =============================================================================


def _lock_rotation_year(db: Session, org_id: UUID, year: int) -> RotationYear | None:
    # Row lock on PostgreSQL; SQLite serializes writers on its own
    return db.execute(
        select(RotationYear)
        .where(and_(RotationYear.organization_id == org_id, RotationYear.year == year))
        .with_for_update()
    ).scalar_one_or_none()


def _require_locked_rotation_year(db: Session, org_id: UUID, year: int) -> RotationYear:
    rotation_year = _lock_rotation_year(db, org_id, year)
    if not rotation_year:
        raise RotationYearNotFoundError(f"No rotation year {year} for this organization")
    return rotation_year


def _snapshot(rotation_year: RotationYear) -> TurnSnapshot:
    return TurnSnapshot(
        phase=TurnPhase(rotation_year.phase),
        active_group_id=str(rotation_year.active_group_id) if rotation_year.active_group_id else None,
        rotation_index=rotation_year.rotation_index,
        version=rotation_year.version,
        activated=tuple(rotation_year.activated_group_ids or ()),
    )


def _check_version(rotation_year: RotationYear, expected_version: int) -> None:
    if rotation_year.version != expected_version:
        raise StaleStateError(
            f"Turn state changed (expected version {expected_version}, "
            f"current {rotation_year.version})",
            current_version=rotation_year.version,
        )


def _machine(db: Session, org: Organization, rotation_year: RotationYear) -> TurnStateMachine:
    model = get_allocation_model(rotation_year.allocation_model)
    historical = {}
    if model.name == AllocationModelName.LOTTERY:
        historical = usage_ledger.historical_usage(db, org.id, rotation_year.year)
    rules = SelectionRules(
        model=model,
        order=tuple(rotation_year.rotation_order),
        quotas=Quotas(primary=org.primary_quota, secondary=org.secondary_quota),
        rotation_year=rotation_year.year,
        secondary_pass_enabled=org.secondary_pass_enabled,
        reverse_secondary_order=org.reverse_secondary_order,
        historical_usage=historical,
        nonce_factory=generate_draw_nonce,
    )
    return TurnStateMachine(rules)


def _current_usage(db: Session, rotation_year: RotationYear):
    return usage_ledger.usage_counts(usage_ledger.get_usage_rows(db, rotation_year.id))


def _apply(
    db: Session,
    org: Organization,
    rotation_year: RotationYear,
    transition: Transition,
) -> TurnState:
    """
    Persist a transition: ledger delta, lottery draws, then the turn state
    compare-and-set. Raises StaleStateError when the version moved underneath.
    """
    db.flush()
    before, after = transition.before, transition.after

    if transition.usage_delta:
        delta = transition.usage_delta
        usage_ledger.increment(
            db,
            rotation_year.id,
            UUID(delta.group_id),
            delta.field,
            delta.delta,
            Quotas(org.primary_quota, org.secondary_quota).for_phase(before.phase),
        )

    for draw in transition.draws:
        db.add(
            LotteryDraw(
                rotation_year_id=rotation_year.id,
                phase=draw.phase.value,
                nonce=draw.nonce,
                candidates=[
                    {"family_group_id": group_id, "weight": weight}
                    for group_id, weight in draw.candidates
                ],
                selected_group_id=UUID(draw.selected_group_id),
            )
        )

    now = datetime.now(timezone.utc)
    values = {
        "phase": after.phase.value,
        "active_group_id": UUID(after.active_group_id) if after.active_group_id else None,
        "rotation_index": after.rotation_index,
        "version": after.version,
        "activated_group_ids": list(after.activated),
        "updated_at": now,
    }
    if transition.active_group_changed or transition.phase_changed:
        values["turn_started_at"] = now if after.phase.is_active else None
    if before.phase == TurnPhase.NOT_STARTED:
        values["started_at"] = now
    if after.phase == TurnPhase.COMPLETED:
        values["completed_at"] = now

    result = db.execute(
        update(RotationYear)
        .where(
            and_(
                RotationYear.id == rotation_year.id,
                RotationYear.version == before.version,
            )
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise StaleStateError(
            "Turn state changed while the transition was being applied",
        )
    db.flush()
    db.expire(rotation_year)

    logger.info(
        "Turn transition v%s -> v%s: %s/%s -> %s/%s",
        before.version,
        after.version,
        before.phase.value,
        before.active_group_id,
        after.phase.value,
        after.active_group_id,
        extra=build_log_context(org_id=org.id, rotation_year=rotation_year.year),
    )
    return build_turn_state(org, rotation_year)


def _turn_changed_event(
    org_id: UUID, rotation_year_id: UUID, state: TurnState, transition: Transition
) -> TurnChangedEvent | None:
    new_selector = transition.new_selector
    if not new_selector:
        return None
    return TurnChangedEvent(
        organization_id=org_id,
        rotation_year=state.rotation_year,
        new_active_group_id=UUID(new_selector),
        phase=state.phase,
        version=state.version,
        rotation_year_id=rotation_year_id,
    )


def _notify(db: Session, event: TurnChangedEvent | None) -> None:
    """Runs after commit and outside the selection lock."""
    if event is not None:
        notification_trigger.fire(db, event)


def _log_rejection(exc: SelectionServiceError, org_id: UUID, year: int, group_id=None) -> None:
    logger.info(
        "Selection request rejected (%s): %s",
        exc.code,
        exc,
        extra=build_log_context(org_id=org_id, rotation_year=year, family_group_id=group_id),
    )


# =============================================================================
# Operations
# =============================================================================


def start_rotation_year(
    db: Session,
    org_id: UUID,
    year: int,
    order: list[UUID | str] | None = None,
) -> TurnState:
    """
    Create (if needed) and start a rotation year.

    Without `order`, the order is derived from the most recent earlier
    rotation year. The organization's current allocation model is
    snapshotted onto the year. A year created ahead of time keeps its stored
    order; an `order` that disagrees with it is rejected.

    Raises:
        AlreadyStartedError, InvalidRotationOrderError, UnknownAllocationModelError
    """
    org = org_service.require_org(db, org_id)
    with selection_locks.hold(db, org_id, year):
        try:
            rotation_year = _lock_rotation_year(db, org_id, year)
            if rotation_year is None:
                resolved = rotation_order_service.resolve_order(db, org, year, order)
                rotation_year = rotation_order_service.create_rotation_year(
                    db, org, year, resolved
                )
            elif order is not None and TurnPhase(rotation_year.phase) == TurnPhase.NOT_STARTED:
                resolved = rotation_order_service.resolve_order(db, org, year, order)
                if [str(group_id) for group_id in resolved] != list(rotation_year.rotation_order):
                    raise InvalidRotationOrderError(
                        f"Rotation year {year} already has a different rotation order"
                    )
            if TurnPhase(rotation_year.phase) == TurnPhase.NOT_STARTED:
                rotation_year.allocation_model = org_service.resolve_allocation_model(org).value

            machine = _machine(db, org, rotation_year)
            usage_ledger.ensure_rows(
                db, rotation_year, [UUID(group_id) for group_id in rotation_year.rotation_order]
            )
            transition = machine.start(_snapshot(rotation_year), _current_usage(db, rotation_year))
            state = _apply(db, org, rotation_year, transition)
            rotation_year_id = rotation_year.id
            db.commit()
        except SelectionServiceError as exc:
            db.rollback()
            _log_rejection(exc, org_id, year)
            raise
        except Exception:
            db.rollback()
            raise

    _notify(db, _turn_changed_event(org_id, rotation_year_id, state, transition))
    return state


def get_turn_state(db: Session, org_id: UUID, year: int) -> TurnState:
    """Unlocked read; may be stale by the time the caller acts on it."""
    org = org_service.require_org(db, org_id)
    rotation_year = rotation_order_service.require_rotation_year(db, org_id, year)
    return build_turn_state(org, rotation_year)


def claim_turn(
    db: Session,
    org_id: UUID,
    year: int,
    group_id: UUID,
    requested_periods: int,
    idempotency_token: str,
    expected_version: int,
    week_owner_group_id: UUID | None = None,
    admin_approved: bool = False,
    actor_user_id: UUID | None = None,
) -> ClaimOutcome:
    """
    Book `requested_periods` for `group_id` in the current phase.

    A token seen before with the same group and period count returns the
    stored answer without touching the ledger, even if the version has moved
    on since; the same token with a different payload is a conflict.

    Raises:
        NotStartedError, SelectionCompletedError, NotYourTurnError,
        QuotaExceededError, ApprovalRequiredError, StaleStateError,
        IdempotencyConflictError
    """
    if requested_periods <= 0:
        raise ValueError("requested periods must be a positive integer")

    org = org_service.require_org(db, org_id)
    with selection_locks.hold(db, org_id, year):
        try:
            rotation_year = _require_locked_rotation_year(db, org_id, year)

            previous = db.execute(
                select(SelectionClaim).where(
                    and_(
                        SelectionClaim.rotation_year_id == rotation_year.id,
                        SelectionClaim.idempotency_token == idempotency_token,
                    )
                )
            ).scalar_one_or_none()
            if previous:
                if (
                    previous.family_group_id != group_id
                    or previous.requested_periods != requested_periods
                ):
                    raise IdempotencyConflictError(
                        "Idempotency token was already used for a different claim"
                    )
                stored = TurnState.from_dict(previous.result)
                db.rollback()
                logger.info(
                    "Replayed claim for token %s",
                    idempotency_token,
                    extra=build_log_context(
                        org_id=org_id, rotation_year=year, family_group_id=group_id
                    ),
                )
                return ClaimOutcome(state=stored, replayed=True)

            _check_version(rotation_year, expected_version)
            if str(group_id) not in rotation_year.rotation_order:
                raise FamilyGroupNotFoundError(
                    f"Family group {group_id} is not part of rotation year {year}"
                )

            machine = _machine(db, org, rotation_year)
            usage_ledger.ensure_rows(db, rotation_year, [group_id])
            request = PeriodRequest(
                periods=requested_periods,
                week_owner_group_id=str(week_owner_group_id) if week_owner_group_id else None,
                admin_approved=admin_approved,
            )
            transition = machine.claim(
                _snapshot(rotation_year),
                _current_usage(db, rotation_year),
                str(group_id),
                request,
            )
            state = _apply(db, org, rotation_year, transition)
            db.add(
                SelectionClaim(
                    rotation_year_id=rotation_year.id,
                    idempotency_token=idempotency_token,
                    family_group_id=group_id,
                    requested_periods=requested_periods,
                    phase=transition.before.phase.value,
                    result=state.to_dict(),
                    claimed_by_user_id=actor_user_id,
                )
            )
            rotation_year_id = rotation_year.id
            db.commit()
        except SelectionServiceError as exc:
            db.rollback()
            _log_rejection(exc, org_id, year, group_id)
            raise
        except Exception:
            db.rollback()
            raise

    _notify(db, _turn_changed_event(org_id, rotation_year_id, state, transition))
    return ClaimOutcome(state=state)


def advance_turn(
    db: Session,
    org_id: UUID,
    year: int,
    expected_version: int,
    actor_user_id: UUID | None = None,
) -> TurnState:
    """
    Forced skip to the next selector (admin action or turn timeout).

    For allocation models without turns this closes the current phase.
    """
    org = org_service.require_org(db, org_id)
    with selection_locks.hold(db, org_id, year):
        try:
            rotation_year = _require_locked_rotation_year(db, org_id, year)
            _check_version(rotation_year, expected_version)
            skipped = rotation_year.active_group_id
            transition = _machine(db, org, rotation_year).advance(
                _snapshot(rotation_year), _current_usage(db, rotation_year)
            )
            state = _apply(db, org, rotation_year, transition)
            rotation_year_id = rotation_year.id
            db.commit()
        except SelectionServiceError as exc:
            db.rollback()
            _log_rejection(exc, org_id, year)
            raise
        except Exception:
            db.rollback()
            raise

    logger.info(
        "Turn advanced past %s",
        skipped,
        extra=build_log_context(user_id=actor_user_id, org_id=org_id, rotation_year=year),
    )
    _notify(db, _turn_changed_event(org_id, rotation_year_id, state, transition))
    return state


def assign_turn(
    db: Session,
    org_id: UUID,
    year: int,
    group_id: UUID,
    expected_version: int,
    actor_user_id: UUID | None = None,
) -> TurnState:
    """Admin override: hand the turn to a specific family group."""
    org = org_service.require_org(db, org_id)
    with selection_locks.hold(db, org_id, year):
        try:
            rotation_year = _require_locked_rotation_year(db, org_id, year)
            _check_version(rotation_year, expected_version)
            transition = _machine(db, org, rotation_year).assign(
                _snapshot(rotation_year), str(group_id)
            )
            state = _apply(db, org, rotation_year, transition)
            rotation_year_id = rotation_year.id
            db.commit()
        except SelectionServiceError as exc:
            db.rollback()
            _log_rejection(exc, org_id, year, group_id)
            raise
        except Exception:
            db.rollback()
            raise

    logger.info(
        "Turn assigned",
        extra=build_log_context(
            user_id=actor_user_id, org_id=org_id, rotation_year=year, family_group_id=group_id
        ),
    )
    _notify(db, _turn_changed_event(org_id, rotation_year_id, state, transition))
    return state


def get_usage(db: Session, org_id: UUID, year: int) -> dict[UUID, TimePeriodUsage]:
    return usage_ledger.get_usage(db, org_id, year)


def reset_ledger(
    db: Session,
    org_id: UUID,
    year: int,
    actor_user_id: UUID | None = None,
) -> int:
    """Zero all usage counters of a rotation year. Privileged."""
    org_service.require_org(db, org_id)
    with selection_locks.hold(db, org_id, year):
        try:
            count = usage_ledger.reset(db, org_id, year)
            db.commit()
        except Exception:
            db.rollback()
            raise
    logger.info(
        "Usage ledger reset",
        extra=build_log_context(user_id=actor_user_id, org_id=org_id, rotation_year=year),
    )
    return count


def run_with_stale_retry(db: Session, operation: Callable[[], T]) -> T:
    """
    Run `operation`, retrying it once on StaleStateError.

    `operation` must re-read the turn state (and its version) each time it
    is called; a second StaleStateError propagates.
    """
    try:
        return operation()
    except StaleStateError as exc:
        logger.info("Stale turn state (current version %s), retrying once", exc.current_version)
        db.expire_all()
        return operation()


# =============================================================================
# Turn timeouts
# =============================================================================


def is_turn_overdue(org: Organization, rotation_year: RotationYear, now: datetime) -> bool:
    phase = TurnPhase(rotation_year.phase)
    if not phase.is_active or rotation_year.active_group_id is None:
        return False
    started = _as_utc(rotation_year.turn_started_at)
    if started is None:
        return False
    return started + turn_window(org, phase) <= now


def list_overdue_turns(
    db: Session, now: datetime | None = None
) -> list[tuple[Organization, RotationYear]]:
    """Rotation years whose active group held the turn past its selection window."""
    now = now or datetime.now(timezone.utc)
    rows = db.execute(
        select(Organization, RotationYear)
        .join(RotationYear, RotationYear.organization_id == Organization.id)
        .where(
            and_(
                Organization.deleted_at.is_(None),
                RotationYear.phase.in_(
                    [TurnPhase.PRIMARY_ACTIVE.value, TurnPhase.SECONDARY_ACTIVE.value]
                ),
                RotationYear.active_group_id.is_not(None),
                RotationYear.turn_started_at.is_not(None),
            )
        )
        .order_by(RotationYear.turn_started_at)
    ).all()
    return [(org, rotation_year) for org, rotation_year in rows if is_turn_overdue(org, rotation_year, now)]


def advance_overdue_turns(db: Session, now: datetime | None = None) -> dict:
    """
    Skip every overdue turn once. Called by the external scheduler.

    A turn that moved on between listing and advancing is left alone.
    """
    now = now or datetime.now(timezone.utc)
    advanced = 0
    failed = 0
    candidates = [
        (org.id, rotation_year.year) for org, rotation_year in list_overdue_turns(db, now)
    ]

    for org_id, year in candidates:

        def advance_if_still_overdue(org_id=org_id, year=year) -> TurnState | None:
            org = org_service.require_org(db, org_id)
            rotation_year = rotation_order_service.require_rotation_year(db, org_id, year)
            if not is_turn_overdue(org, rotation_year, now):
                return None
            return advance_turn(db, org_id, year, rotation_year.version)

        try:
            if run_with_stale_retry(db, advance_if_still_overdue) is not None:
                advanced += 1
        except SelectionServiceError:
            failed += 1
            logger.exception(
                "Turn timeout advance failed",
                extra=build_log_context(org_id=org_id, rotation_year=year),
            )

    return {"checked": len(candidates), "advanced": advanced, "failed": failed}
