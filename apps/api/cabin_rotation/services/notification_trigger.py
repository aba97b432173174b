"""Selection turn notification trigger.

Observes committed turn transitions and emits one TurnChangedEvent each time
the turn is handed to a (different) family group. Delivery (email, SMS, push)
belongs to the notification service, which consumes the `jobs` outbox.

Listeners run after the selection lock is released and after the transition
is committed. A failing listener is logged and reported, never raised: the
turn has already advanced and must not be rolled back.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable
from uuid import UUID

import sentry_sdk
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from cabin_rotation.core.structured_logging import build_log_context
from cabin_rotation.db.enums import JobType, TurnPhase
from cabin_rotation.db.models import Organization
from cabin_rotation.services import job_service

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TurnChangedEvent:
    """'It is now family group G's turn' for one rotation year."""

    organization_id: UUID
    rotation_year: int
    new_active_group_id: UUID
    phase: TurnPhase
    version: int
    rotation_year_id: UUID | None = None

    @property
    def dedupe_key(self) -> str:
        # version is unique per transition of a rotation year
        if self.rotation_year_id is not None:
            return f"selection_turn:{self.rotation_year_id}:{self.version}"
        return f"selection_turn:{self.organization_id}:{self.rotation_year}:{self.version}"

    def to_payload(self) -> dict:
        return {
            "organization_id": str(self.organization_id),
            "rotation_year": self.rotation_year,
            "family_group_id": str(self.new_active_group_id),
            "phase": self.phase.value,
            "version": self.version,
            "rotation_year_id": str(self.rotation_year_id) if self.rotation_year_id else None,
        }


TurnListener = Callable[[Session, TurnChangedEvent], None]


class NotificationTrigger:
    """Fan-out of turn change events to registered listeners."""

    def __init__(self):
        self._listeners: list[TurnListener] = []

    def subscribe(self, listener: TurnListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: TurnListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def fire(self, db: Session, event: TurnChangedEvent) -> int:
        """Deliver `event` to every listener; returns how many succeeded."""
        delivered = 0
        for listener in list(self._listeners):
            try:
                listener(db, event)
                delivered += 1
            except Exception as exc:
                db.rollback()
                logger.exception(
                    "Turn notification listener failed",
                    extra=build_log_context(
                        org_id=event.organization_id,
                        rotation_year=event.rotation_year,
                        family_group_id=event.new_active_group_id,
                    ),
                )
                sentry_sdk.capture_exception(exc)
        return delivered


def enqueue_turn_notification(db: Session, event: TurnChangedEvent) -> None:
    """Default listener: write the outbox job the delivery service consumes."""
    org = db.get(Organization, event.organization_id)
    if org is None or not org.turn_notifications_enabled:
        logger.info("Turn notifications disabled for org %s", event.organization_id)
        return

    if job_service.get_job_by_idempotency_key(db, event.dedupe_key):
        logger.info("Turn notification already queued: %s", event.dedupe_key)
        return

    try:
        job_service.schedule_job(
            db=db,
            org_id=event.organization_id,
            job_type=JobType.SELECTION_TURN_NOTIFICATION,
            payload=event.to_payload(),
            idempotency_key=event.dedupe_key,
        )
    except IntegrityError:
        # Concurrent writer queued the same event first
        db.rollback()
        logger.info("Turn notification already queued: %s", event.dedupe_key)


notification_trigger = NotificationTrigger()
notification_trigger.subscribe(enqueue_turn_notification)
