"""create users and notifications_outbox tables

Revision ID: 3c9e2f1a7b40
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = '3c9e2f1a7b40'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('email', sa.Text(), nullable=False),
        sa.Column('name', sa.Text(), nullable=True),
        sa.Column('role', sa.Text(), server_default='USER', nullable=False),
        sa.Column('stripe_customer_id', sa.Text(), nullable=True),
        sa.Column('stripe_subscription_id', sa.Text(), nullable=True),
        sa.Column('subscription_plan', sa.Text(), server_default='free', nullable=False),
        sa.Column('subscription_status', sa.Text(), server_default='inactive', nullable=False),
        sa.Column('subscription_current_period_end', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_stripe_subscription_id', 'users', ['stripe_subscription_id'])

    op.create_table(
        'notifications_outbox',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('next_attempt_at', sa.DateTime(timezone=True), nullable=True, server_default=sa.func.now()),
        sa.Column('last_error', sa.Text(), nullable=True),

        sa.Column('kind', sa.String(length=40), nullable=False),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=True),

        sa.Column('channel', sa.String(length=20), nullable=False, server_default='log'),
        sa.Column('to_email', sa.Text(), nullable=False),
        sa.Column('subject', sa.Text(), nullable=False),
        sa.Column('body_text', sa.Text(), nullable=False),

        # Enforce allowed status values at the DB level
        sa.CheckConstraint(
            "status IN ('pending','sending','sent','dead')",
            name='outbox_status_valid_values',
        ),
    )
    op.create_index('ix_notifications_outbox_status_next', 'notifications_outbox', ['status', 'next_attempt_at'])


def downgrade() -> None:
    op.drop_index('ix_notifications_outbox_status_next', table_name='notifications_outbox')
    op.drop_table('notifications_outbox')
    op.drop_index('ix_users_stripe_subscription_id', table_name='users')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_table('users')
