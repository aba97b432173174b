"""Tests for turn change notifications and the jobs outbox."""

import uuid

from sqlalchemy import select

from cabin_rotation.db.enums import JobStatus, JobType, TurnPhase
from cabin_rotation.db.models import Job
from cabin_rotation.services import notification_trigger as trigger_module
from cabin_rotation.services import (
    org_service,
    rotation_order_service,
    selection_service,
)
from cabin_rotation.services.notification_trigger import (
    NotificationTrigger,
    TurnChangedEvent,
    enqueue_turn_notification,
    notification_trigger,
)

YEAR = 2026


def _jobs(db, org_id):
    return list(
        db.execute(
            select(Job)
            .where(
                Job.organization_id == org_id,
                Job.job_type == JobType.SELECTION_TURN_NOTIFICATION.value,
            )
            .order_by(Job.created_at.desc())
        ).scalars()
    )


def test_turn_change_queues_outbox_job(db, test_org, rotation_order):
    state = selection_service.start_rotation_year(db, test_org.id, YEAR, rotation_order)
    rotation_year = rotation_order_service.require_rotation_year(db, test_org.id, YEAR)

    jobs = _jobs(db, test_org.id)
    assert len(jobs) == 1
    job = jobs[0]
    assert job.job_type == JobType.SELECTION_TURN_NOTIFICATION.value
    assert job.status == JobStatus.PENDING.value
    assert job.idempotency_key == f"selection_turn:{rotation_year.id}:{state.version}"
    assert job.payload["family_group_id"] == str(rotation_order[0])
    assert job.payload["phase"] == TurnPhase.PRIMARY_ACTIVE.value


def test_claim_without_handover_queues_nothing(db, test_org, rotation_order):
    state = selection_service.start_rotation_year(db, test_org.id, YEAR, rotation_order)
    selection_service.claim_turn(
        db, test_org.id, YEAR, rotation_order[0], 1, "claim-1", state.version
    )
    assert len(_jobs(db, test_org.id)) == 1


def test_same_event_is_queued_once(db, test_org, rotation_order):
    event = TurnChangedEvent(
        organization_id=test_org.id,
        rotation_year=YEAR,
        new_active_group_id=rotation_order[0],
        phase=TurnPhase.PRIMARY_ACTIVE,
        version=1,
        rotation_year_id=uuid.uuid4(),
    )
    enqueue_turn_notification(db, event)
    enqueue_turn_notification(db, event)
    assert len(_jobs(db, test_org.id)) == 1


def test_dedupe_key_without_rotation_year_id(test_org):
    event = TurnChangedEvent(
        organization_id=test_org.id,
        rotation_year=YEAR,
        new_active_group_id=uuid.uuid4(),
        phase=TurnPhase.SECONDARY_ACTIVE,
        version=7,
    )
    assert event.dedupe_key == f"selection_turn:{test_org.id}:{YEAR}:7"
    assert event.to_payload()["rotation_year_id"] is None


def test_disabled_notifications_queue_nothing(db, test_org, rotation_order, turn_events):
    org_service.update_selection_settings(db, test_org, turn_notifications_enabled=False)
    db.commit()

    selection_service.start_rotation_year(db, test_org.id, YEAR, rotation_order)
    assert _jobs(db, test_org.id) == []
    # Listeners still observe the change
    assert len(turn_events) == 1


def test_failing_listener_does_not_undo_transition(db, test_org, rotation_order, monkeypatch):
    captured = []
    monkeypatch.setattr(trigger_module.sentry_sdk, "capture_exception", captured.append)

    def broken(db, event):
        raise RuntimeError("mail relay down")

    notification_trigger.subscribe(broken)
    try:
        state = selection_service.start_rotation_year(db, test_org.id, YEAR, rotation_order)
    finally:
        notification_trigger.unsubscribe(broken)

    assert state.active_group_id == rotation_order[0]
    assert selection_service.get_turn_state(db, test_org.id, YEAR).version == state.version
    assert len(captured) == 1
    assert isinstance(captured[0], RuntimeError)


def test_fire_counts_successful_listeners(db, monkeypatch):
    monkeypatch.setattr(trigger_module.sentry_sdk, "capture_exception", lambda exc: None)
    trigger = NotificationTrigger()
    seen = []

    def broken(db, event):
        raise RuntimeError("boom")

    trigger.subscribe(broken)
    trigger.subscribe(lambda db, event: seen.append(event))
    event = TurnChangedEvent(
        organization_id=uuid.uuid4(),
        rotation_year=YEAR,
        new_active_group_id=uuid.uuid4(),
        phase=TurnPhase.PRIMARY_ACTIVE,
        version=1,
    )
    assert trigger.fire(db, event) == 1
    assert seen == [event]
