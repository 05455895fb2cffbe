"""create_reconciliation_tables

Revision ID: 7c1e0b5a9d42
Revises:
Create Date: 2026-10-19 10:12:44.518203

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
import sqlmodel
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '7c1e0b5a9d42'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table('subscriptions',
    sa.Column('id', sa.Uuid(), server_default=sa.text('gen_random_uuid()'), nullable=False),
    sa.Column('customer_id', sqlmodel.sql.sqltypes.AutoString(length=255), nullable=False),
    sa.Column('user_id', sqlmodel.sql.sqltypes.AutoString(length=255), nullable=True),
    sa.Column('external_subscription_id', sqlmodel.sql.sqltypes.AutoString(length=255), nullable=False),
    sa.Column('status', sa.String(length=20), server_default='active', nullable=False),
    sa.Column('cancel_at_period_end', sa.Boolean(), server_default=sa.text('false'), nullable=False),
    sa.Column('current_period_start', sa.DateTime(timezone=True), nullable=True),
    sa.Column('current_period_end', sa.DateTime(timezone=True), nullable=True),
    sa.Column('plan_id', sqlmodel.sql.sqltypes.AutoString(length=50), nullable=True),
    sa.Column('price_id', sqlmodel.sql.sqltypes.AutoString(length=255), nullable=True),
    sa.Column('superseded_by', postgresql.UUID(as_uuid=True), nullable=True),
    sa.Column('replacement_reason', sqlmodel.sql.sqltypes.AutoString(length=100), nullable=True, comment='Why this subscription was superseded'),
    sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    sa.CheckConstraint('superseded_by IS NULL OR superseded_by <> id', name='ck_subscriptions_not_self_superseded'),
    sa.ForeignKeyConstraint(['superseded_by'], ['subscriptions.id'], ondelete='SET NULL', deferrable=True, initially='DEFERRED'),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('external_subscription_id', name='uq_subscriptions_external_subscription_id')
    )
    op.create_index(op.f('ix_subscriptions_customer_id'), 'subscriptions', ['customer_id'], unique=False)
    op.create_index(op.f('ix_subscriptions_user_id'), 'subscriptions', ['user_id'], unique=False)
    op.create_index('ix_subscriptions_customer_created', 'subscriptions', ['customer_id', 'created_at'], unique=False)
    # At most one active, non-cancelling, non-superseded row per customer
    op.create_index(
        'uq_subscriptions_one_active_per_customer',
        'subscriptions',
        ['customer_id'],
        unique=True,
        postgresql_where=sa.text("status = 'active' AND cancel_at_period_end = false AND superseded_by IS NULL"),
    )

    op.create_table('processed_events',
    sa.Column('event_id', sa.String(length=255), nullable=False),
    sa.Column('event_type', sa.String(length=100), nullable=False),
    sa.Column('subscription_id', sqlmodel.sql.sqltypes.AutoString(length=255), nullable=True),
    sa.Column('metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column('processed_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    sa.PrimaryKeyConstraint('event_id')
    )
    op.create_index(op.f('ix_processed_events_event_type'), 'processed_events', ['event_type'], unique=False)
    op.create_index(op.f('ix_processed_events_subscription_id'), 'processed_events', ['subscription_id'], unique=False)

    op.create_table('pending_correlations',
    sa.Column('external_subscription_id', sa.String(length=255), nullable=False),
    sa.Column('customer_id', sqlmodel.sql.sqltypes.AutoString(length=255), nullable=False),
    sa.Column('user_id', sqlmodel.sql.sqltypes.AutoString(length=255), nullable=True),
    sa.Column('source', sqlmodel.sql.sqltypes.AutoString(length=30), nullable=False),
    sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
    sa.PrimaryKeyConstraint('external_subscription_id')
    )
    op.create_index('ix_pending_correlations_expires_at', 'pending_correlations', ['expires_at'], unique=False)

    op.create_table('provider_cancellations',
    sa.Column('id', sa.Uuid(), server_default=sa.text('gen_random_uuid()'), nullable=False),
    sa.Column('external_subscription_id', sqlmodel.sql.sqltypes.AutoString(length=255), nullable=False),
    sa.Column('reason', sqlmodel.sql.sqltypes.AutoString(length=30), nullable=False),
    sa.Column('attempts', sa.Integer(), server_default=sa.text('0'), nullable=False),
    sa.Column('last_error', sqlmodel.sql.sqltypes.AutoString(length=500), nullable=True),
    sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_provider_cancellations_external_subscription_id'), 'provider_cancellations', ['external_subscription_id'], unique=True)
    op.create_index(
        'ix_provider_cancellations_pending',
        'provider_cancellations',
        ['created_at'],
        unique=False,
        postgresql_where=sa.text('completed_at IS NULL'),
    )


def downgrade() -> None:
    op.drop_index('ix_provider_cancellations_pending', table_name='provider_cancellations')
    op.drop_index(op.f('ix_provider_cancellations_external_subscription_id'), table_name='provider_cancellations')
    op.drop_table('provider_cancellations')
    op.drop_index('ix_pending_correlations_expires_at', table_name='pending_correlations')
    op.drop_table('pending_correlations')
    op.drop_index(op.f('ix_processed_events_subscription_id'), table_name='processed_events')
    op.drop_index(op.f('ix_processed_events_event_type'), table_name='processed_events')
    op.drop_table('processed_events')
    op.drop_index('uq_subscriptions_one_active_per_customer', table_name='subscriptions')
    op.drop_index('ix_subscriptions_customer_created', table_name='subscriptions')
    op.drop_index(op.f('ix_subscriptions_user_id'), table_name='subscriptions')
    op.drop_index(op.f('ix_subscriptions_customer_id'), table_name='subscriptions')
    op.drop_table('subscriptions')
