"""Baseline migration - organizations, family groups and the selection engine

Revision ID: 0001_selection_engine
Revises:
Create Date: 2026-10-19

Creates the tenant tables, rotation years with their turn state, the usage
ledger, claim idempotency records, lottery draw audit, allocation model
audit and the jobs outbox.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '0001_selection_engine'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")
TIMESTAMPTZ = sa.DateTime(timezone=True)
PHASES = "'not_started', 'primary_active', 'secondary_active', 'completed'"


def upgrade() -> None:
    """Create selection engine tables."""

    # ==========================================================================
    # Organizations
    # ==========================================================================
    op.create_table(
        'organizations',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('slug', sa.String(100), nullable=False, unique=True),
        sa.Column('allocation_model', sa.String(40), nullable=False,
                  server_default=sa.text("'rotating_selection'")),
        sa.Column('primary_quota', sa.Integer(), nullable=False, server_default=sa.text('2')),
        sa.Column('secondary_quota', sa.Integer(), nullable=False, server_default=sa.text('1')),
        sa.Column('secondary_pass_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('reverse_secondary_order', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('rotation_shift', sa.String(10), nullable=False, server_default=sa.text("'first'")),
        sa.Column('selection_days', sa.Integer(), nullable=False, server_default=sa.text('14')),
        sa.Column('secondary_selection_days', sa.Integer(), nullable=False,
                  server_default=sa.text('7')),
        sa.Column('turn_notifications_enabled', sa.Boolean(), nullable=False,
                  server_default=sa.true()),
        sa.Column('created_at', TIMESTAMPTZ, nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', TIMESTAMPTZ, nullable=False, server_default=sa.func.now()),
        sa.Column('deleted_at', TIMESTAMPTZ, nullable=True),
        sa.CheckConstraint('primary_quota >= 0', name='ck_organizations_primary_quota'),
        sa.CheckConstraint('secondary_quota >= 0', name='ck_organizations_secondary_quota'),
    )
    op.create_index('ix_organizations_deleted_at', 'organizations', ['deleted_at'])

    # ==========================================================================
    # Family groups
    # ==========================================================================
    op.create_table(
        'family_groups',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('organization_id', sa.Uuid(),
                  sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('color', sa.String(7), nullable=True),
        sa.Column('lead_email', sa.String(255), nullable=True),
        sa.Column('created_at', TIMESTAMPTZ, nullable=False, server_default=sa.func.now()),
        sa.Column('deleted_at', TIMESTAMPTZ, nullable=True),
        sa.UniqueConstraint('organization_id', 'name', name='uq_family_group_name'),
    )
    op.create_index('idx_family_groups_org_active', 'family_groups',
                    ['organization_id', 'deleted_at'])

    op.create_table(
        'allocation_model_audit',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('organization_id', sa.Uuid(),
                  sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('old_model', sa.String(40), nullable=True),
        sa.Column('new_model', sa.String(40), nullable=False),
        sa.Column('changed_by_user_id', sa.Uuid(), nullable=True),
        sa.Column('changed_at', TIMESTAMPTZ, nullable=False, server_default=sa.func.now()),
        sa.Column('change_reason', sa.Text(), nullable=True),
    )
    op.create_index('idx_allocation_model_audit_org', 'allocation_model_audit',
                    ['organization_id', 'changed_at'])

    # ==========================================================================
    # Rotation years (order + turn state)
    # ==========================================================================
    op.create_table(
        'rotation_years',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('organization_id', sa.Uuid(),
                  sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('allocation_model', sa.String(40), nullable=False),
        sa.Column('rotation_order', JSON, nullable=False),
        sa.Column('phase', sa.String(30), nullable=False,
                  server_default=sa.text("'not_started'")),
        sa.Column('active_group_id', sa.Uuid(),
                  sa.ForeignKey('family_groups.id', ondelete='RESTRICT'), nullable=True),
        sa.Column('rotation_index', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('version', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('activated_group_ids', JSON, nullable=False),
        sa.Column('turn_started_at', TIMESTAMPTZ, nullable=True),
        sa.Column('started_at', TIMESTAMPTZ, nullable=True),
        sa.Column('completed_at', TIMESTAMPTZ, nullable=True),
        sa.Column('created_at', TIMESTAMPTZ, nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', TIMESTAMPTZ, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('organization_id', 'year', name='uq_rotation_year'),
        sa.CheckConstraint(f'phase IN ({PHASES})', name='ck_rotation_years_phase'),
        sa.CheckConstraint('version >= 0', name='ck_rotation_years_version'),
    )
    op.create_index('idx_rotation_years_org_phase', 'rotation_years',
                    ['organization_id', 'phase'])

    # ==========================================================================
    # Usage ledger
    # ==========================================================================
    op.create_table(
        'time_period_usage',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('organization_id', sa.Uuid(),
                  sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('rotation_year_id', sa.Uuid(),
                  sa.ForeignKey('rotation_years.id', ondelete='CASCADE'), nullable=False),
        sa.Column('family_group_id', sa.Uuid(),
                  sa.ForeignKey('family_groups.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('primary_periods_used', sa.Integer(), nullable=False,
                  server_default=sa.text('0')),
        sa.Column('secondary_periods_used', sa.Integer(), nullable=False,
                  server_default=sa.text('0')),
        sa.Column('updated_at', TIMESTAMPTZ, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('rotation_year_id', 'family_group_id', name='uq_time_period_usage'),
        sa.CheckConstraint('primary_periods_used >= 0', name='ck_usage_primary_non_negative'),
        sa.CheckConstraint('secondary_periods_used >= 0', name='ck_usage_secondary_non_negative'),
    )
    op.create_index('idx_time_period_usage_org', 'time_period_usage',
                    ['organization_id', 'family_group_id'])

    op.create_table(
        'selection_claims',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('rotation_year_id', sa.Uuid(),
                  sa.ForeignKey('rotation_years.id', ondelete='CASCADE'), nullable=False),
        sa.Column('idempotency_token', sa.String(255), nullable=False),
        sa.Column('family_group_id', sa.Uuid(),
                  sa.ForeignKey('family_groups.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('requested_periods', sa.Integer(), nullable=False),
        sa.Column('phase', sa.String(30), nullable=False),
        sa.Column('result', JSON, nullable=False),
        sa.Column('claimed_by_user_id', sa.Uuid(), nullable=True),
        sa.Column('created_at', TIMESTAMPTZ, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('rotation_year_id', 'idempotency_token',
                            name='uq_selection_claim_token'),
    )

    op.create_table(
        'lottery_draws',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('rotation_year_id', sa.Uuid(),
                  sa.ForeignKey('rotation_years.id', ondelete='CASCADE'), nullable=False),
        sa.Column('phase', sa.String(30), nullable=False),
        sa.Column('nonce', sa.String(64), nullable=False),
        sa.Column('candidates', JSON, nullable=False),
        sa.Column('selected_group_id', sa.Uuid(),
                  sa.ForeignKey('family_groups.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('created_at', TIMESTAMPTZ, nullable=False, server_default=sa.func.now()),
    )
    op.create_index('idx_lottery_draws_rotation_year', 'lottery_draws',
                    ['rotation_year_id', 'created_at'])

    # ==========================================================================
    # Jobs outbox
    # ==========================================================================
    op.create_table(
        'jobs',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('organization_id', sa.Uuid(),
                  sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('job_type', sa.String(50), nullable=False),
        sa.Column('payload', JSON, nullable=False),
        sa.Column('run_at', TIMESTAMPTZ, nullable=False, server_default=sa.func.now()),
        sa.Column('status', sa.String(20), nullable=False, server_default=sa.text("'pending'")),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('max_attempts', sa.Integer(), nullable=False, server_default=sa.text('3')),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('created_at', TIMESTAMPTZ, nullable=False, server_default=sa.func.now()),
        sa.Column('completed_at', TIMESTAMPTZ, nullable=True),
        sa.Column('idempotency_key', sa.String(255), nullable=True),
    )
    op.create_index('idx_jobs_pending', 'jobs', ['status', 'run_at'],
                    postgresql_where=sa.text("status = 'pending'"))
    op.create_index('idx_jobs_org', 'jobs', ['organization_id', 'created_at'])
    op.create_index('uq_job_idempotency', 'jobs', ['idempotency_key'], unique=True,
                    postgresql_where=sa.text('idempotency_key IS NOT NULL'))


def downgrade() -> None:
    """Drop selection engine tables."""
    for table in (
        'jobs',
        'lottery_draws',
        'selection_claims',
        'time_period_usage',
        'rotation_years',
        'allocation_model_audit',
        'family_groups',
        'organizations',
    ):
        op.drop_table(table)
