"""Outbox jobs - rows handed to external workers (notification delivery)."""

from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from cabin_rotation.db.enums import JobStatus, JobType
from cabin_rotation.db.models import Job


def schedule_job(
    db: Session,
    org_id: UUID,
    job_type: JobType,
    payload: dict,
    run_at: datetime | None = None,
    idempotency_key: str | None = None,
) -> Job:
    """
    Write one pending outbox row and commit it.

    Runs in its own transaction, after the transition that produced it has
    committed. A second row with the same idempotency_key fails with
    IntegrityError; callers treat that as "already queued".
    """
    job = Job(
        organization_id=org_id,
        job_type=job_type.value,
        payload=payload,
        run_at=run_at or datetime.now(timezone.utc),
        status=JobStatus.PENDING.value,
        idempotency_key=idempotency_key,
    )
    db.add(job)
    db.commit()
    db.refresh(job)
    return job


def get_job_by_idempotency_key(db: Session, idempotency_key: str) -> Job | None:
    return db.execute(
        select(Job).where(Job.idempotency_key == idempotency_key)
    ).scalar_one_or_none()
