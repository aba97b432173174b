"""SQLAlchemy ORM models."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    TIMESTAMP,
    Text,
    UniqueConstraint,
    Uuid,
    false,
    func,
    text,
    true,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cabin_rotation.db.base import Base
from cabin_rotation.db.enums import AllocationModelName, RotationShift


class Organization(Base):
    """
    A tenant sharing one property among its family groups.

    All selection entities belong to an organization and must be scoped by
    organization_id in all queries. Selection configuration (quotas, secondary
    pass, turn windows) is organization-level and admin-controlled.
    """

    __tablename__ = "organizations"
    __table_args__ = (
        CheckConstraint("primary_quota >= 0", name="ck_organizations_primary_quota"),
        CheckConstraint("secondary_quota >= 0", name="ck_organizations_secondary_quota"),
        Index("ix_organizations_deleted_at", "deleted_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    allocation_model: Mapped[str] = mapped_column(
        String(40),
        default=AllocationModelName.ROTATING_SELECTION.value,
        server_default=text(f"'{AllocationModelName.ROTATING_SELECTION.value}'"),
        nullable=False,
    )

    # Selection configuration
    primary_quota: Mapped[int] = mapped_column(
        Integer, default=2, server_default=text("2"), nullable=False
    )
    secondary_quota: Mapped[int] = mapped_column(
        Integer, default=1, server_default=text("1"), nullable=False
    )
    secondary_pass_enabled: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=false(), nullable=False
    )
    # Bonus round runs last-to-first when set
    reverse_secondary_order: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=false(), nullable=False
    )
    rotation_shift: Mapped[str] = mapped_column(
        String(10),
        default=RotationShift.FIRST.value,
        server_default=text(f"'{RotationShift.FIRST.value}'"),
        nullable=False,
    )
    selection_days: Mapped[int] = mapped_column(
        Integer, default=14, server_default=text("14"), nullable=False
    )
    secondary_selection_days: Mapped[int] = mapped_column(
        Integer, default=7, server_default=text("7"), nullable=False
    )
    turn_notifications_enabled: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default=true(), nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )
    deleted_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)

    # Relationships
    family_groups: Mapped[list["FamilyGroup"]] = relationship(
        back_populates="organization",
        order_by="FamilyGroup.created_at",
    )


class FamilyGroup(Base):
    """
    A member unit of an organization; the element of a rotation order.

    Removal is a soft delete so usage history stays attributable.
    """

    __tablename__ = "family_groups"
    __table_args__ = (
        UniqueConstraint("organization_id", "name", name="uq_family_group_name"),
        Index("idx_family_groups_org_active", "organization_id", "deleted_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    color: Mapped[str | None] = mapped_column(String(7), nullable=True)  # Hex e.g. '#0066cc'
    lead_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    deleted_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)

    organization: Mapped["Organization"] = relationship(back_populates="family_groups")

    @property
    def is_active(self) -> bool:
        return self.deleted_at is None


class AllocationModelAudit(Base):
    """Append-only history of allocation model changes per organization."""

    __tablename__ = "allocation_model_audit"
    __table_args__ = (
        Index("idx_allocation_model_audit_org", "organization_id", "changed_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    old_model: Mapped[str | None] = mapped_column(String(40), nullable=True)
    new_model: Mapped[str] = mapped_column(String(40), nullable=False)
    # Users live in the auth service; keep the id only
    changed_by_user_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    changed_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    change_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
