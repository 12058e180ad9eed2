"""Initial schema

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18

Tables:
- users: student profiles (first_free_class entitlement)
- cal_stripe_relations: booking uid -> Stripe PaymentIntent
- refund_retries: refund retry outbox drained by the booking poller
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create all database tables."""
    op.create_table(
        'users',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('name', sa.String(200), nullable=True),
        sa.Column('role', sa.String(30), default='student'),
        sa.Column('first_free_class', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'cal_stripe_relations',
        sa.Column('booking_uid', sa.String(255), primary_key=True),
        sa.Column('stripe_id', sa.String(255), nullable=False),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
    )

    op.create_table(
        'refund_retries',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('booking_uid', sa.String(255), nullable=False),
        sa.Column('open_booking_uid', sa.String(255), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('attempts', sa.Integer, nullable=False, server_default='0'),
        sa.Column('max_attempts', sa.Integer, nullable=False, server_default='5'),
        sa.Column('next_attempt_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('last_error', sa.Text, nullable=True),
        sa.Column('refund_id', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('completed_at', sa.DateTime, nullable=True),
        sa.UniqueConstraint('open_booking_uid', name='uq_refund_retry_open_booking'),
    )
    op.create_index('ix_refund_retry_booking', 'refund_retries', ['booking_uid', 'status'])
    op.create_index('ix_refund_retry_due', 'refund_retries', ['status', 'next_attempt_at'])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_index('ix_refund_retry_due', table_name='refund_retries')
    op.drop_index('ix_refund_retry_booking', table_name='refund_retries')
    op.drop_table('refund_retries')
    op.drop_table('cal_stripe_relations')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_table('users')
