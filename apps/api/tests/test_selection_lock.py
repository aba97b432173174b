"""Tests for the per-rotation-year selection lock."""

import threading
import time
import uuid

import pytest

from cabin_rotation.core.selection_lock import SelectionLockRegistry, advisory_lock_id
from cabin_rotation.services.selection_errors import SelectionLockTimeoutError


def test_advisory_lock_id_is_stable_and_keyed():
    org_id = uuid.uuid4()
    assert advisory_lock_id(org_id, 2026) == advisory_lock_id(org_id, 2026)
    assert advisory_lock_id(org_id, 2026) != advisory_lock_id(org_id, 2027)
    assert -(2**63) <= advisory_lock_id(org_id, 2026) < 2**63


def test_same_key_is_exclusive(db):
    registry = SelectionLockRegistry()
    org_id = uuid.uuid4()
    inside = []
    overlaps = []

    def worker():
        with registry.hold(db, org_id, 2026):
            inside.append(1)
            if len(inside) > 1:
                overlaps.append(True)
            time.sleep(0.05)
            inside.pop()

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    assert overlaps == []
    assert registry.active_keys() == set()


def test_different_keys_do_not_block(db):
    registry = SelectionLockRegistry()
    org_id = uuid.uuid4()
    with registry.hold(db, org_id, 2026):
        with registry.hold(db, org_id, 2027, timeout=0.1):
            assert registry.active_keys() == {(org_id, 2026), (org_id, 2027)}


def test_busy_key_times_out(db):
    registry = SelectionLockRegistry()
    org_id = uuid.uuid4()
    errors = []

    def contender():
        try:
            with registry.hold(db, org_id, 2026, timeout=0.05):
                pass
        except SelectionLockTimeoutError as exc:
            errors.append(exc)

    with registry.hold(db, org_id, 2026):
        thread = threading.Thread(target=contender)
        thread.start()
        thread.join(timeout=5)

    assert len(errors) == 1
    assert errors[0].retryable
    assert registry.active_keys() == set()


def test_lock_released_on_error(db):
    registry = SelectionLockRegistry()
    org_id = uuid.uuid4()
    with pytest.raises(RuntimeError):
        with registry.hold(db, org_id, 2026):
            raise RuntimeError("boom")
    with registry.hold(db, org_id, 2026, timeout=0.05):
        pass
