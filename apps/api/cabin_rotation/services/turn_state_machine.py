"""Turn state machine for a rotation year.

    not_started -> primary_active(g) -> ... -> secondary_active(g) -> ... -> completed

The machine is pure: every operation takes the current TurnSnapshot plus the
ledger view and returns a Transition (new snapshot, ledger delta, lottery
draws). It never reads or writes the database; the selection service applies
a Transition atomically with a compare-and-set on the snapshot's version.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Callable, Mapping

from cabin_rotation.db.enums import AllocationModelName, TurnPhase, UsageField
from cabin_rotation.services.allocation_models import (
    AllocationModel,
    ClaimDecision,
    LotteryOutcome,
    PeriodRequest,
    Quotas,
    Selection,
    SelectorContext,
    UsageCounts,
    generate_draw_nonce,
)
from cabin_rotation.services.selection_errors import (
    AlreadyStartedError,
    ApprovalRequiredError,
    FamilyGroupNotFoundError,
    InvalidRotationOrderError,
    NotStartedError,
    NotYourTurnError,
    QuotaExceededError,
    SelectionCompletedError,
)


@dataclass(frozen=True)
class TurnSnapshot:
    """The mutable cursor of a rotation year, frozen at one version."""

    phase: TurnPhase
    active_group_id: str | None
    rotation_index: int
    version: int
    activated: tuple[str, ...] = ()


@dataclass(frozen=True)
class UsageDelta:
    group_id: str
    field: UsageField
    delta: int


@dataclass(frozen=True)
class Transition:
    before: TurnSnapshot
    after: TurnSnapshot
    usage_delta: UsageDelta | None = None
    draws: tuple[LotteryOutcome, ...] = ()

    @property
    def active_group_changed(self) -> bool:
        return self.before.active_group_id != self.after.active_group_id

    @property
    def phase_changed(self) -> bool:
        return self.before.phase != self.after.phase

    @property
    def new_selector(self) -> str | None:
        """
        Group that just received the turn, if the transition handed it over.

        Opening the secondary pass is a new turn even when the same group
        keeps selecting (reversed order, single group, repeated lottery draw).
        """
        if self.active_group_changed or self.phase_changed:
            return self.after.active_group_id
        return None


@dataclass(frozen=True)
class SelectionRules:
    """Fixed inputs of a rotation year: model, order and org configuration."""

    model: AllocationModel
    order: tuple[str, ...]
    quotas: Quotas
    rotation_year: int
    secondary_pass_enabled: bool = False
    reverse_secondary_order: bool = False
    historical_usage: Mapping[str, int] = field(default_factory=dict)
    nonce_factory: Callable[[], str] = generate_draw_nonce

    def phase_order(self, phase: TurnPhase) -> tuple[str, ...]:
        if phase == TurnPhase.SECONDARY_ACTIVE and self.reverse_secondary_order:
            return tuple(reversed(self.order))
        return self.order


class TurnStateMachine:
    def __init__(self, rules: SelectionRules):
        self.rules = rules

    @property
    def model(self) -> AllocationModel:
        return self.rules.model

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def start(self, snapshot: TurnSnapshot, usage: Mapping[str, UsageCounts]) -> Transition:
        """Open the primary phase at the head of the rotation order."""
        if snapshot.phase != TurnPhase.NOT_STARTED:
            raise AlreadyStartedError("Selection has already been started for this rotation year")
        if not self.rules.order:
            raise InvalidRotationOrderError("Rotation order is empty")

        if not self.model.is_turn_based():
            after = TurnSnapshot(
                phase=TurnPhase.PRIMARY_ACTIVE,
                active_group_id=None,
                rotation_index=0,
                version=snapshot.version + 1,
            )
            return Transition(before=snapshot, after=after)

        if self.model.name == AllocationModelName.LOTTERY:
            selection = self._select(TurnPhase.PRIMARY_ACTIVE, usage, -1, frozenset())
            if selection is None:
                return self._complete_phase(snapshot, TurnPhase.PRIMARY_ACTIVE, usage)
            return self._hand_over(snapshot, TurnPhase.PRIMARY_ACTIVE, selection, ())

        first = self.rules.order[0]
        after = TurnSnapshot(
            phase=TurnPhase.PRIMARY_ACTIVE,
            active_group_id=first,
            rotation_index=0,
            version=snapshot.version + 1,
            activated=(first,),
        )
        return Transition(before=snapshot, after=after)

    def claim(
        self,
        snapshot: TurnSnapshot,
        usage: Mapping[str, UsageCounts],
        group_id: str,
        request: PeriodRequest,
    ) -> Transition:
        """
        Book `request.periods` for `group_id` in the current phase.

        Turn-based models keep the turn with the group until its phase quota
        is used up, then hand it to the next selector.
        """
        self._require_active(snapshot)
        if request.periods <= 0:
            raise ValueError("requested periods must be a positive integer")

        phase = snapshot.phase
        current = usage.get(group_id, UsageCounts())
        decision = self.model.validate_claim(
            group_id,
            request,
            current,
            self.rules.quotas,
            phase,
            snapshot.active_group_id,
        )
        self._raise_for_decision(decision, group_id, phase)

        field_name = UsageField.for_phase(phase)
        if field_name == UsageField.PRIMARY:
            updated = replace(current, primary=current.primary + request.periods)
        else:
            updated = replace(current, secondary=current.secondary + request.periods)
        new_usage = {**usage, group_id: updated}
        delta = UsageDelta(group_id=group_id, field=field_name, delta=request.periods)

        if self.model.is_turn_based() and updated.for_phase(phase) >= self.rules.quotas.for_phase(phase):
            moved = self._advance(snapshot, new_usage)
            return replace(moved, usage_delta=delta)

        after = replace(snapshot, version=snapshot.version + 1)
        return Transition(before=snapshot, after=after, usage_delta=delta)

    def advance(self, snapshot: TurnSnapshot, usage: Mapping[str, UsageCounts]) -> Transition:
        """
        Forced skip (admin or timeout scheduler).

        For models without turns this closes the current phase instead.
        """
        self._require_active(snapshot)
        if not self.model.is_turn_based():
            return self._complete_phase(snapshot, snapshot.phase, usage)
        return self._advance(snapshot, usage)

    def assign(self, snapshot: TurnSnapshot, group_id: str) -> Transition:
        """Admin override: hand the turn to a specific group."""
        self._require_active(snapshot)
        phase_order = self.rules.phase_order(snapshot.phase)
        if group_id not in phase_order:
            raise FamilyGroupNotFoundError(f"Family group {group_id} is not in the rotation order")
        activated = snapshot.activated
        if group_id not in activated:
            activated = activated + (group_id,)
        after = TurnSnapshot(
            phase=snapshot.phase,
            active_group_id=group_id,
            rotation_index=phase_order.index(group_id),
            version=snapshot.version + 1,
            activated=activated,
        )
        return Transition(before=snapshot, after=after)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _advance(self, snapshot: TurnSnapshot, usage: Mapping[str, UsageCounts]) -> Transition:
        selection = self._select(
            snapshot.phase, usage, snapshot.rotation_index, frozenset(snapshot.activated)
        )
        if selection is None:
            return self._complete_phase(snapshot, snapshot.phase, usage)
        return self._hand_over(snapshot, snapshot.phase, selection, snapshot.activated)

    def _complete_phase(
        self,
        snapshot: TurnSnapshot,
        phase: TurnPhase,
        usage: Mapping[str, UsageCounts],
    ) -> Transition:
        if phase == TurnPhase.PRIMARY_ACTIVE and self.rules.secondary_pass_enabled:
            return self._open_secondary(snapshot, usage)
        after = TurnSnapshot(
            phase=TurnPhase.COMPLETED,
            active_group_id=None,
            rotation_index=snapshot.rotation_index,
            version=snapshot.version + 1,
        )
        return Transition(before=snapshot, after=after)

    def _open_secondary(
        self, snapshot: TurnSnapshot, usage: Mapping[str, UsageCounts]
    ) -> Transition:
        phase = TurnPhase.SECONDARY_ACTIVE
        if not self.model.is_turn_based():
            after = TurnSnapshot(
                phase=phase,
                active_group_id=None,
                rotation_index=0,
                version=snapshot.version + 1,
            )
            return Transition(before=snapshot, after=after)

        selection = self._select(phase, usage, -1, frozenset())
        if selection is None:
            after = TurnSnapshot(
                phase=TurnPhase.COMPLETED,
                active_group_id=None,
                rotation_index=snapshot.rotation_index,
                version=snapshot.version + 1,
            )
            return Transition(before=snapshot, after=after)
        return self._hand_over(snapshot, phase, selection, ())

    def _hand_over(
        self,
        snapshot: TurnSnapshot,
        phase: TurnPhase,
        selection: Selection,
        activated: tuple[str, ...],
    ) -> Transition:
        after = TurnSnapshot(
            phase=phase,
            active_group_id=selection.group_id,
            rotation_index=selection.rotation_index,
            version=snapshot.version + 1,
            activated=activated + (selection.group_id,),
        )
        draws = (selection.draw,) if selection.draw else ()
        return Transition(before=snapshot, after=after, draws=draws)

    def _select(
        self,
        phase: TurnPhase,
        usage: Mapping[str, UsageCounts],
        rotation_index: int,
        activated: frozenset[str],
    ) -> Selection | None:
        nonce = None
        if self.model.name == AllocationModelName.LOTTERY:
            nonce = self.rules.nonce_factory()
        context = SelectorContext(
            order=self.rules.phase_order(phase),
            usage=usage,
            quotas=self.rules.quotas,
            phase=phase,
            rotation_year=self.rules.rotation_year,
            rotation_index=rotation_index,
            activated=activated,
            nonce=nonce,
            historical_usage=self.rules.historical_usage,
        )
        return self.model.next_selector(context)

    @staticmethod
    def _require_active(snapshot: TurnSnapshot) -> None:
        if snapshot.phase == TurnPhase.NOT_STARTED:
            raise NotStartedError("Selection has not been started for this rotation year")
        if snapshot.phase == TurnPhase.COMPLETED:
            raise SelectionCompletedError("Selection is completed for this rotation year")

    def _raise_for_decision(self, decision: ClaimDecision, group_id: str, phase: TurnPhase) -> None:
        if decision == ClaimDecision.OK:
            return
        if decision == ClaimDecision.NOT_YOUR_TURN:
            raise NotYourTurnError(f"It is not family group {group_id}'s turn to select")
        if decision == ClaimDecision.QUOTA_EXCEEDED:
            quota = self.rules.quotas.for_phase(phase)
            raise QuotaExceededError(
                f"Claim would exceed the {phase.value.split('_')[0]} quota of {quota} periods"
            )
        raise ApprovalRequiredError("Manual allocation requires admin approval for this claim")
