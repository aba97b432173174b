"""Allocation model registry.

Each organization runs exactly one allocation model. The set of models is
closed (AllocationModelName) and every name maps to one strategy below; all
strategies answer the same three questions:

- is_turn_based(): does a single group hold the turn at a time?
- next_selector(context): who gets the turn next in this phase?
- validate_claim(...): may this group book these periods right now?

Strategies are stateless and never touch the database. Group ids are passed
as strings, the same form the rotation order is stored in.
"""

from __future__ import annotations

import hashlib
import random
import secrets
from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Sequence

from cabin_rotation.db.enums import AllocationModelName, TurnPhase
from cabin_rotation.services.selection_errors import UnknownAllocationModelError


class ClaimDecision(str, Enum):
    """Outcome of an allocation model's pre-booking check."""

    OK = "ok"
    QUOTA_EXCEEDED = "quota_exceeded"
    NOT_YOUR_TURN = "not_your_turn"
    APPROVAL_REQUIRED = "approval_required"


@dataclass(frozen=True)
class Quotas:
    """Per-phase quotas configured on the organization."""

    primary: int
    secondary: int

    def for_phase(self, phase: TurnPhase) -> int:
        if phase == TurnPhase.SECONDARY_ACTIVE:
            return self.secondary
        return self.primary


@dataclass(frozen=True)
class UsageCounts:
    primary: int = 0
    secondary: int = 0

    def for_phase(self, phase: TurnPhase) -> int:
        if phase == TurnPhase.SECONDARY_ACTIVE:
            return self.secondary
        return self.primary


@dataclass(frozen=True)
class PeriodRequest:
    """
    Periods a group asks to book, as summarized by the calendar subsystem.

    week_owner_group_id is only meaningful for static weeks (the group the
    requested weeks are pre-assigned to); admin_approved only for manual.
    """

    periods: int
    week_owner_group_id: str | None = None
    admin_approved: bool = False


@dataclass(frozen=True)
class LotteryOutcome:
    """A reproducible lottery draw: same seed inputs, same selection."""

    rotation_year: int
    phase: TurnPhase
    nonce: str
    candidates: tuple[tuple[str, float], ...]
    selected_group_id: str


@dataclass(frozen=True)
class Selection:
    group_id: str
    rotation_index: int
    draw: LotteryOutcome | None = None


@dataclass(frozen=True)
class SelectorContext:
    """Everything a strategy may look at to pick the next selector."""

    order: tuple[str, ...]
    usage: Mapping[str, UsageCounts]
    quotas: Quotas
    phase: TurnPhase
    rotation_year: int
    # Index of the group that currently holds (or last held) the turn; -1 before the first
    rotation_index: int = -1
    activated: frozenset[str] = frozenset()
    nonce: str | None = None
    historical_usage: Mapping[str, int] = field(default_factory=dict)

    def usage_for(self, group_id: str) -> UsageCounts:
        return self.usage.get(group_id, UsageCounts())

    def has_remaining(self, group_id: str) -> bool:
        return self.usage_for(group_id).for_phase(self.phase) < self.quotas.for_phase(self.phase)


def quota_allows(
    usage: UsageCounts, quotas: Quotas, phase: TurnPhase, periods: int
) -> bool:
    """True when `periods` more fit under the phase quota."""
    return usage.for_phase(phase) + periods <= quotas.for_phase(phase)


def generate_draw_nonce() -> str:
    """Server-generated nonce, recorded with every lottery draw."""
    return secrets.token_hex(16)


def lottery_seed(rotation_year: int, phase: TurnPhase, nonce: str) -> int:
    material = f"{rotation_year}:{phase.value}:{nonce}".encode()
    return int.from_bytes(hashlib.sha256(material).digest()[:8], "big")


def lottery_weight(historical_usage: int) -> float:
    """Groups that used more in earlier years get proportionally fewer tickets."""
    return 1.0 / (1 + max(historical_usage, 0))


def lottery_draw(
    rotation_year: int,
    phase: TurnPhase,
    nonce: str,
    candidates: Sequence[str],
    historical_usage: Mapping[str, int] | None = None,
) -> LotteryOutcome:
    """
    Draw one group from `candidates`, weighted inversely by historical usage.

    Candidates are sorted before weighting so the caller's iteration order
    does not change the result.
    """
    if not candidates:
        raise ValueError("lottery draw needs at least one candidate")
    historical_usage = historical_usage or {}
    ordered = sorted(set(candidates))
    weights = [lottery_weight(historical_usage.get(group_id, 0)) for group_id in ordered]
    rng = random.Random(lottery_seed(rotation_year, phase, nonce))
    selected = rng.choices(ordered, weights=weights, k=1)[0]
    return LotteryOutcome(
        rotation_year=rotation_year,
        phase=phase,
        nonce=nonce,
        candidates=tuple(zip(ordered, weights)),
        selected_group_id=selected,
    )


# =============================================================================
# Strategies
# =============================================================================


class AllocationModel:
    """Shared decision interface; subclasses override what differs."""

    name: AllocationModelName

    def is_turn_based(self) -> bool:
        return False

    def next_selector(self, context: SelectorContext) -> Selection | None:
        return None

    def validate_claim(
        self,
        group_id: str,
        request: PeriodRequest,
        usage: UsageCounts,
        quotas: Quotas,
        phase: TurnPhase,
        active_group_id: str | None = None,
    ) -> ClaimDecision:
        raise NotImplementedError


class _TurnBasedModel(AllocationModel):
    def is_turn_based(self) -> bool:
        return True

    def validate_claim(
        self,
        group_id: str,
        request: PeriodRequest,
        usage: UsageCounts,
        quotas: Quotas,
        phase: TurnPhase,
        active_group_id: str | None = None,
    ) -> ClaimDecision:
        if active_group_id != group_id:
            return ClaimDecision.NOT_YOUR_TURN
        if not quota_allows(usage, quotas, phase, request.periods):
            return ClaimDecision.QUOTA_EXCEEDED
        return ClaimDecision.OK


class RotatingSelectionModel(_TurnBasedModel):
    """
    Round robin over the groups not yet activated in this phase.

    The search starts after the current index and wraps, so groups passed
    over by an admin assignment still get their turn. Groups at quota are
    skipped.
    """

    name = AllocationModelName.ROTATING_SELECTION

    def next_selector(self, context: SelectorContext) -> Selection | None:
        size = len(context.order)
        for step in range(1, size + 1):
            index = (context.rotation_index + step) % size
            group_id = context.order[index]
            if group_id in context.activated:
                continue
            if context.has_remaining(group_id):
                return Selection(group_id=group_id, rotation_index=index)
        return None


class LotteryModel(_TurnBasedModel):
    """Random turn order per phase, fairness-weighted and reproducible."""

    name = AllocationModelName.LOTTERY

    def next_selector(self, context: SelectorContext) -> Selection | None:
        candidates = [
            group_id
            for group_id in context.order
            if group_id not in context.activated and context.has_remaining(group_id)
        ]
        if not candidates:
            return None
        if not context.nonce:
            raise ValueError("lottery selection requires a draw nonce")
        outcome = lottery_draw(
            context.rotation_year,
            context.phase,
            context.nonce,
            candidates,
            context.historical_usage,
        )
        return Selection(
            group_id=outcome.selected_group_id,
            rotation_index=context.order.index(outcome.selected_group_id),
            draw=outcome,
        )


class StaticWeeksModel(AllocationModel):
    """Weeks are pre-assigned outside the engine; only ownership is checked."""

    name = AllocationModelName.STATIC_WEEKS

    def validate_claim(
        self,
        group_id: str,
        request: PeriodRequest,
        usage: UsageCounts,
        quotas: Quotas,
        phase: TurnPhase,
        active_group_id: str | None = None,
    ) -> ClaimDecision:
        if request.week_owner_group_id != group_id:
            return ClaimDecision.NOT_YOUR_TURN
        return ClaimDecision.OK


class FirstComeFirstServeModel(AllocationModel):
    name = AllocationModelName.FIRST_COME_FIRST_SERVE

    def validate_claim(
        self,
        group_id: str,
        request: PeriodRequest,
        usage: UsageCounts,
        quotas: Quotas,
        phase: TurnPhase,
        active_group_id: str | None = None,
    ) -> ClaimDecision:
        if not quota_allows(usage, quotas, phase, request.periods):
            return ClaimDecision.QUOTA_EXCEEDED
        return ClaimDecision.OK


class ManualModel(AllocationModel):
    """Admins decide everything; the engine never advances on its own."""

    name = AllocationModelName.MANUAL

    def validate_claim(
        self,
        group_id: str,
        request: PeriodRequest,
        usage: UsageCounts,
        quotas: Quotas,
        phase: TurnPhase,
        active_group_id: str | None = None,
    ) -> ClaimDecision:
        if not request.admin_approved:
            return ClaimDecision.APPROVAL_REQUIRED
        return ClaimDecision.OK


ALLOCATION_MODELS: Mapping[AllocationModelName, AllocationModel] = {
    AllocationModelName.ROTATING_SELECTION: RotatingSelectionModel(),
    AllocationModelName.STATIC_WEEKS: StaticWeeksModel(),
    AllocationModelName.FIRST_COME_FIRST_SERVE: FirstComeFirstServeModel(),
    AllocationModelName.MANUAL: ManualModel(),
    AllocationModelName.LOTTERY: LotteryModel(),
}


def get_allocation_model(name: str | AllocationModelName | None) -> AllocationModel:
    """
    Resolve an organization's configured model name to its strategy.

    Organizations created before the model column existed have no name and
    run rotating selection.
    """
    if name is None or name == "":
        return ALLOCATION_MODELS[AllocationModelName.ROTATING_SELECTION]
    if isinstance(name, AllocationModelName):
        return ALLOCATION_MODELS[name]
    if not AllocationModelName.has_value(name):
        raise UnknownAllocationModelError(f"Unknown allocation model '{name}'")
    return ALLOCATION_MODELS[AllocationModelName(name)]
