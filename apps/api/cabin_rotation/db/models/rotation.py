"""SQLAlchemy ORM models."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

import uuid
from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    TIMESTAMP,
    UniqueConstraint,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cabin_rotation.db.base import Base
from cabin_rotation.db.enums import TurnPhase
from cabin_rotation.db.types import JSONType

if TYPE_CHECKING:
    from cabin_rotation.db.models import FamilyGroup, Organization


_PHASE_VALUES = ", ".join(f"'{phase.value}'" for phase in TurnPhase)


class RotationYear(Base):
    """
    One annual selection cycle of an organization.

    Holds the rotation order (written once, never reshuffled mid-cycle) and
    the turn state cursor. Every mutation of the cursor is a compare-and-set
    on `version`.
    """

    __tablename__ = "rotation_years"
    __table_args__ = (
        UniqueConstraint("organization_id", "year", name="uq_rotation_year"),
        CheckConstraint(f"phase IN ({_PHASE_VALUES})", name="ck_rotation_years_phase"),
        CheckConstraint("version >= 0", name="ck_rotation_years_version"),
        Index("idx_rotation_years_org_phase", "organization_id", "phase"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    # Snapshot of the organization's model when the cycle started
    allocation_model: Mapped[str] = mapped_column(String(40), nullable=False)
    rotation_order: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)

    # Turn state
    phase: Mapped[str] = mapped_column(
        String(30),
        default=TurnPhase.NOT_STARTED.value,
        server_default=text(f"'{TurnPhase.NOT_STARTED.value}'"),
        nullable=False,
    )
    active_group_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("family_groups.id", ondelete="RESTRICT"),
        nullable=True,
    )
    rotation_index: Mapped[int] = mapped_column(
        Integer, default=0, server_default=text("0"), nullable=False
    )
    version: Mapped[int] = mapped_column(
        Integer, default=0, server_default=text("0"), nullable=False
    )
    # Groups already activated in the current phase (ids as strings)
    activated_group_ids: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    turn_started_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )

    started_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )

    # Relationships
    organization: Mapped["Organization"] = relationship()
    active_group: Mapped[Optional["FamilyGroup"]] = relationship()
    usage_rows: Mapped[list["TimePeriodUsage"]] = relationship(
        back_populates="rotation_year",
        cascade="all, delete-orphan",
    )


class TimePeriodUsage(Base):
    """
    Usage ledger row per (rotation year, family group).

    Rows are keyed per group so concurrent increments for different groups
    never touch the same row. Counters only move up, except for an explicit
    admin reset.
    """

    __tablename__ = "time_period_usage"
    __table_args__ = (
        UniqueConstraint("rotation_year_id", "family_group_id", name="uq_time_period_usage"),
        CheckConstraint("primary_periods_used >= 0", name="ck_usage_primary_non_negative"),
        CheckConstraint("secondary_periods_used >= 0", name="ck_usage_secondary_non_negative"),
        Index("idx_time_period_usage_org", "organization_id", "family_group_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    rotation_year_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("rotation_years.id", ondelete="CASCADE"),
        nullable=False,
    )
    family_group_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("family_groups.id", ondelete="RESTRICT"),
        nullable=False,
    )
    primary_periods_used: Mapped[int] = mapped_column(
        Integer, default=0, server_default=text("0"), nullable=False
    )
    secondary_periods_used: Mapped[int] = mapped_column(
        Integer, default=0, server_default=text("0"), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )

    rotation_year: Mapped["RotationYear"] = relationship(back_populates="usage_rows")


class SelectionClaim(Base):
    """
    Idempotency record of a successful turn claim.

    A retried request with the same token replays `result` instead of
    incrementing the ledger again.
    """

    __tablename__ = "selection_claims"
    __table_args__ = (
        UniqueConstraint(
            "rotation_year_id", "idempotency_token", name="uq_selection_claim_token"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    rotation_year_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("rotation_years.id", ondelete="CASCADE"),
        nullable=False,
    )
    idempotency_token: Mapped[str] = mapped_column(String(255), nullable=False)
    family_group_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("family_groups.id", ondelete="RESTRICT"),
        nullable=False,
    )
    requested_periods: Mapped[int] = mapped_column(Integer, nullable=False)
    phase: Mapped[str] = mapped_column(String(30), nullable=False)
    result: Mapped[dict] = mapped_column(JSONType, nullable=False)
    claimed_by_user_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)


class LotteryDraw(Base):
    """Audit record of one lottery draw; replaying the seed reproduces it."""

    __tablename__ = "lottery_draws"
    __table_args__ = (
        Index("idx_lottery_draws_rotation_year", "rotation_year_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    rotation_year_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("rotation_years.id", ondelete="CASCADE"),
        nullable=False,
    )
    phase: Mapped[str] = mapped_column(String(30), nullable=False)
    nonce: Mapped[str] = mapped_column(String(64), nullable=False)
    # [{"family_group_id": str, "weight": float}, ...] in draw order
    candidates: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    selected_group_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("family_groups.id", ondelete="RESTRICT"),
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
