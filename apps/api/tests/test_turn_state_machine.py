"""Tests for the pure turn state machine."""

import pytest

from cabin_rotation.db.enums import TurnPhase, UsageField
from cabin_rotation.services.allocation_models import (
    FirstComeFirstServeModel,
    LotteryModel,
    ManualModel,
    PeriodRequest,
    Quotas,
    RotatingSelectionModel,
    UsageCounts,
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
from cabin_rotation.services.turn_state_machine import (
    SelectionRules,
    TurnSnapshot,
    TurnStateMachine,
)

ORDER = ("A", "B", "C")
NOT_STARTED = TurnSnapshot(phase=TurnPhase.NOT_STARTED, active_group_id=None, rotation_index=0, version=0)


def _machine(model=None, order=ORDER, secondary=False, reverse=False, nonces=None):
    nonce_iter = iter(nonces or [f"nonce-{i}" for i in range(100)])
    return TurnStateMachine(
        SelectionRules(
            model=model or RotatingSelectionModel(),
            order=order,
            quotas=Quotas(primary=2, secondary=1),
            rotation_year=2026,
            secondary_pass_enabled=secondary,
            reverse_secondary_order=reverse,
            nonce_factory=lambda: next(nonce_iter),
        )
    )


def _active(group, index, version=1, phase=TurnPhase.PRIMARY_ACTIVE, activated=None):
    return TurnSnapshot(
        phase=phase,
        active_group_id=group,
        rotation_index=index,
        version=version,
        activated=activated if activated is not None else ORDER[: index + 1],
    )


class TestStart:
    def test_start_activates_head_of_order(self):
        transition = _machine().start(NOT_STARTED, {})
        after = transition.after
        assert after.phase == TurnPhase.PRIMARY_ACTIVE
        assert after.active_group_id == "A"
        assert after.rotation_index == 0
        assert after.version == 1
        assert transition.new_selector == "A"

    def test_start_twice_fails(self):
        machine = _machine()
        started = machine.start(NOT_STARTED, {}).after
        with pytest.raises(AlreadyStartedError):
            machine.start(started, {})

    def test_start_requires_order(self):
        with pytest.raises(InvalidRotationOrderError):
            _machine(order=()).start(NOT_STARTED, {})

    def test_start_lottery_draws_first_selector(self):
        transition = _machine(model=LotteryModel()).start(NOT_STARTED, {})
        assert transition.after.active_group_id in ORDER
        assert len(transition.draws) == 1
        assert transition.draws[0].nonce == "nonce-0"
        assert transition.after.activated == (transition.after.active_group_id,)

    def test_start_non_turn_based_opens_phase_without_selector(self):
        transition = _machine(model=FirstComeFirstServeModel()).start(NOT_STARTED, {})
        assert transition.after.phase == TurnPhase.PRIMARY_ACTIVE
        assert transition.after.active_group_id is None
        assert transition.new_selector is None


class TestClaim:
    def test_happy_path(self):
        machine = _machine()
        state = machine.start(NOT_STARTED, {}).after
        usage = {}

        first = machine.claim(state, usage, "A", PeriodRequest(periods=1))
        assert first.usage_delta.group_id == "A"
        assert first.usage_delta.field == UsageField.PRIMARY
        assert first.usage_delta.delta == 1
        assert first.after.active_group_id == "A"
        assert not first.active_group_changed

        usage = {"A": UsageCounts(primary=1)}
        second = machine.claim(first.after, usage, "A", PeriodRequest(periods=1))
        assert second.after.active_group_id == "B"
        assert second.after.rotation_index == 1
        assert second.usage_delta.delta == 1
        assert second.after.version == first.after.version + 1

    def test_claim_by_other_group(self):
        with pytest.raises(NotYourTurnError):
            _machine().claim(_active("A", 0), {}, "B", PeriodRequest(periods=1))

    def test_claim_over_quota(self):
        with pytest.raises(QuotaExceededError):
            _machine().claim(
                _active("A", 0), {"A": UsageCounts(primary=1)}, "A", PeriodRequest(periods=2)
            )

    def test_claim_requires_positive_periods(self):
        with pytest.raises(ValueError):
            _machine().claim(_active("A", 0), {}, "A", PeriodRequest(periods=0))

    def test_claim_before_start(self):
        with pytest.raises(NotStartedError):
            _machine().claim(NOT_STARTED, {}, "A", PeriodRequest(periods=1))

    def test_claim_after_completion(self):
        completed = TurnSnapshot(
            phase=TurnPhase.COMPLETED, active_group_id=None, rotation_index=2, version=9
        )
        with pytest.raises(SelectionCompletedError):
            _machine().claim(completed, {}, "A", PeriodRequest(periods=1))

    def test_manual_claim_needs_approval(self):
        machine = _machine(model=ManualModel())
        state = machine.start(NOT_STARTED, {}).after
        with pytest.raises(ApprovalRequiredError):
            machine.claim(state, {}, "B", PeriodRequest(periods=1))
        approved = machine.claim(state, {}, "B", PeriodRequest(periods=1, admin_approved=True))
        assert approved.after.active_group_id is None
        assert approved.usage_delta.group_id == "B"

    def test_first_come_first_serve_never_moves_turn(self):
        machine = _machine(model=FirstComeFirstServeModel())
        state = machine.start(NOT_STARTED, {}).after
        transition = machine.claim(state, {}, "C", PeriodRequest(periods=2))
        assert transition.after.phase == TurnPhase.PRIMARY_ACTIVE
        assert transition.after.active_group_id is None
        assert transition.after.version == state.version + 1


class TestAdvance:
    def test_skip_on_exhausted_quota(self):
        usage = {"A": UsageCounts(primary=2), "B": UsageCounts(primary=2), "C": UsageCounts()}
        transition = _machine().advance(_active("A", 0), usage)
        assert transition.after.active_group_id == "C"
        assert transition.after.rotation_index == 2

    def test_forced_skip_moves_to_next_group(self):
        transition = _machine().advance(_active("A", 0), {})
        assert transition.after.active_group_id == "B"
        assert transition.usage_delta is None

    def test_primary_completes_without_secondary_pass(self):
        transition = _machine().advance(_active("C", 2), {})
        assert transition.after.phase == TurnPhase.COMPLETED
        assert transition.after.active_group_id is None

    def test_primary_opens_secondary_pass(self):
        transition = _machine(secondary=True).advance(_active("C", 2), {})
        after = transition.after
        assert after.phase == TurnPhase.SECONDARY_ACTIVE
        assert after.active_group_id == "A"
        assert after.rotation_index == 0
        assert after.activated == ("A",)

    def test_secondary_pass_in_reverse_order(self):
        transition = _machine(secondary=True, reverse=True).advance(_active("C", 2), {})
        assert transition.after.phase == TurnPhase.SECONDARY_ACTIVE
        assert transition.after.active_group_id == "C"
        assert transition.new_selector == "C"

    def test_single_group_keeps_turn_into_secondary_pass(self):
        machine = _machine(order=("A",), secondary=True)
        state = machine.start(NOT_STARTED, {}).after
        transition = machine.advance(state, {})
        assert transition.after.phase == TurnPhase.SECONDARY_ACTIVE
        assert transition.after.active_group_id == "A"
        assert transition.new_selector == "A"

    def test_secondary_exhausts_to_completed(self):
        machine = _machine(secondary=True)
        state = _active("B", 1, phase=TurnPhase.SECONDARY_ACTIVE, activated=("A", "B"))
        usage = {"C": UsageCounts(primary=2, secondary=1)}
        transition = machine.advance(state, usage)
        assert transition.after.phase == TurnPhase.COMPLETED

    def test_non_turn_based_advance_closes_phase(self):
        machine = _machine(model=FirstComeFirstServeModel(), secondary=True)
        state = machine.start(NOT_STARTED, {}).after
        secondary = machine.advance(state, {}).after
        assert secondary.phase == TurnPhase.SECONDARY_ACTIVE
        assert secondary.active_group_id is None
        assert machine.advance(secondary, {}).after.phase == TurnPhase.COMPLETED

    def test_rotation_fairness_one_activation_per_group(self):
        machine = _machine()
        state = machine.start(NOT_STARTED, {}).after
        activations = [state.active_group_id]
        while True:
            transition = machine.advance(state, {})
            state = transition.after
            if state.phase != TurnPhase.PRIMARY_ACTIVE:
                break
            activations.append(state.active_group_id)
        assert activations == list(ORDER)

    def test_lottery_activates_every_group_once_per_phase(self):
        machine = _machine(model=LotteryModel())
        state = machine.start(NOT_STARTED, {}).after
        activations = [state.active_group_id]
        while True:
            state = machine.advance(state, {}).after
            if state.phase != TurnPhase.PRIMARY_ACTIVE:
                break
            activations.append(state.active_group_id)
        assert sorted(activations) == sorted(ORDER)

    def test_version_strictly_increases(self):
        machine = _machine(secondary=True)
        state = machine.start(NOT_STARTED, {}).after
        versions = [state.version]
        while state.phase != TurnPhase.COMPLETED:
            state = machine.advance(state, {}).after
            versions.append(state.version)
        assert versions == sorted(set(versions))


class TestAssign:
    def test_assign_hands_turn_to_group(self):
        transition = _machine().assign(_active("A", 0), "C")
        assert transition.after.active_group_id == "C"
        assert transition.after.rotation_index == 2
        assert "C" in transition.after.activated
        assert transition.new_selector == "C"

    def test_assign_unknown_group(self):
        with pytest.raises(FamilyGroupNotFoundError):
            _machine().assign(_active("A", 0), "Z")

    def test_assign_requires_active_phase(self):
        with pytest.raises(NotStartedError):
            _machine().assign(NOT_STARTED, "A")

    def test_forward_assign_does_not_skip_passed_over_group(self):
        machine = _machine()
        state = machine.start(NOT_STARTED, {}).after
        state = machine.assign(state, "C").after
        activations = ["A", "C"]
        while True:
            state = machine.advance(state, {}).after
            if state.phase != TurnPhase.PRIMARY_ACTIVE:
                break
            activations.append(state.active_group_id)
        assert sorted(activations) == sorted(ORDER)
        assert state.phase == TurnPhase.COMPLETED

    def test_completion_has_no_new_selector(self):
        transition = _machine().advance(_active("C", 2), {})
        assert transition.phase_changed
        assert transition.new_selector is None
