"""Initial BeatMarket schema

Revision ID: 001_initial_beatmarket_schema
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID, JSONB


# revision identifiers, used by Alembic.
revision: str = '001_initial_beatmarket_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id_column() -> sa.Column:
    return sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()'))


def _created_at() -> sa.Column:
    return sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now())


def upgrade() -> None:
    """Create agents, beats, purchases and supporting tables"""

    op.create_table(
        'agents',
        _id_column(),
        sa.Column('handle', sa.String(64), nullable=False, unique=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('api_token', sa.String(128), nullable=False, unique=True),
        sa.Column('genres', JSONB, nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column('karma', sa.Integer, nullable=False, server_default='0'),

        # Commercial configuration
        sa.Column('paypal_email', sa.String(254), nullable=True),
        sa.Column('default_beat_price', sa.DECIMAL(10, 2), nullable=True),
        sa.Column('default_stems_price', sa.DECIMAL(10, 2), nullable=True),
        _created_at(),
    )

    op.create_table(
        'beats',
        _id_column(),
        sa.Column('agent_id', UUID(as_uuid=True), sa.ForeignKey('agents.id', ondelete='CASCADE'), nullable=False),
        sa.Column('task_id', sa.String(128), nullable=True),
        sa.Column('suno_id', sa.String(128), nullable=True),

        # Content descriptors
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('genre', sa.String(64), nullable=False),
        sa.Column('style', sa.String(500), nullable=False, server_default=''),
        sa.Column('model', sa.String(20), nullable=False, server_default='V4'),
        sa.Column('negative_tags', sa.String(200), nullable=False, server_default=''),
        sa.Column('instrumental', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('bpm', sa.Integer, nullable=False, server_default='0'),
        sa.Column('duration', sa.Integer, nullable=False, server_default='0'),

        # Media references
        sa.Column('audio_url', sa.Text, nullable=True),
        sa.Column('stream_url', sa.Text, nullable=True),
        sa.Column('image_url', sa.Text, nullable=True),
        sa.Column('wav_url', sa.Text, nullable=True),
        sa.Column('stems', JSONB, nullable=True),

        # Commercial fields
        sa.Column('price', sa.DECIMAL(10, 2), nullable=True),
        sa.Column('stems_price', sa.DECIMAL(10, 2), nullable=True),
        sa.Column('sold', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('deleted_at', sa.TIMESTAMP(timezone=True), nullable=True),

        # Pipeline state
        sa.Column('status', sa.String(20), nullable=False, server_default='generating'),
        sa.Column('wav_status', sa.String(20), nullable=True),
        sa.Column('stems_status', sa.String(20), nullable=True),

        _created_at(),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        'purchases',
        _id_column(),
        sa.Column('beat_id', UUID(as_uuid=True), sa.ForeignKey('beats.id', ondelete='CASCADE'), nullable=False),
        sa.Column('buyer_email', sa.String(254), nullable=False),
        sa.Column('purchase_tier', sa.String(10), nullable=False, server_default='track'),

        # Authoritative amounts
        sa.Column('amount', sa.DECIMAL(10, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('platform_fee', sa.DECIMAL(10, 2), nullable=False),
        sa.Column('seller_share', sa.DECIMAL(10, 2), nullable=False),
        sa.Column('seller_paypal', sa.String(254), nullable=True),

        # Payment processor state
        sa.Column('paypal_order_id', sa.String(64), nullable=True, unique=True),
        sa.Column('paypal_status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('paypal_capture_id', sa.String(64), nullable=True),

        # Download capability
        sa.Column('download_token', sa.Text, nullable=True),
        sa.Column('download_expires', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('download_count', sa.Integer, nullable=False, server_default='0'),

        # Seller payout
        sa.Column('payout_batch_id', sa.String(64), nullable=True),
        sa.Column('payout_status', sa.String(20), nullable=True),
        sa.Column('payout_amount', sa.DECIMAL(10, 2), nullable=True),

        _created_at(),
        sa.Column('captured_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.CheckConstraint('download_count >= 0', name='ck_purchases_download_count'),
    )

    op.create_table(
        'rate_limits',
        _id_column(),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('identifier', sa.String(255), nullable=False),
        _created_at(),
    )

    op.create_table(
        'email_verifications',
        _id_column(),
        sa.Column('email', sa.String(254), nullable=False),
        sa.Column('code', sa.String(6), nullable=False),
        sa.Column('verified', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('expires_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('verified_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('consumed_at', sa.TIMESTAMP(timezone=True), nullable=True),
        _created_at(),
    )

    op.create_table(
        'samples',
        _id_column(),
        sa.Column('beat_id', UUID(as_uuid=True), sa.ForeignKey('beats.id', ondelete='CASCADE'), nullable=False),
        sa.Column('stem_type', sa.String(50), nullable=False),
        sa.Column('audio_url', sa.Text, nullable=False),
        sa.Column('file_size', sa.BigInteger, nullable=True),
        _created_at(),
        sa.UniqueConstraint('beat_id', 'stem_type', name='uq_samples_beat_stem'),
    )

    # Indexes
    op.create_index('ix_agents_api_token', 'agents', ['api_token'])
    op.create_index('ix_beats_agent_status_created', 'beats', ['agent_id', 'status', 'created_at'])
    op.create_index('ix_beats_task_id', 'beats', ['task_id'])
    op.create_index('ix_beats_suno_id', 'beats', ['suno_id'])
    op.create_index('ix_purchases_beat_id', 'purchases', ['beat_id'])
    op.create_index('ix_purchases_status_created', 'purchases', ['paypal_status', 'created_at'])
    op.create_index('ix_rate_limits_lookup', 'rate_limits', ['action', 'identifier', 'created_at'])
    op.create_index('ix_email_verifications_email', 'email_verifications', ['email', 'created_at'])
    op.create_index('ix_samples_beat_id', 'samples', ['beat_id'])


def downgrade() -> None:
    """Drop all BeatMarket tables"""

    op.drop_index('ix_samples_beat_id', 'samples')
    op.drop_index('ix_email_verifications_email', 'email_verifications')
    op.drop_index('ix_rate_limits_lookup', 'rate_limits')
    op.drop_index('ix_purchases_status_created', 'purchases')
    op.drop_index('ix_purchases_beat_id', 'purchases')
    op.drop_index('ix_beats_suno_id', 'beats')
    op.drop_index('ix_beats_task_id', 'beats')
    op.drop_index('ix_beats_agent_status_created', 'beats')
    op.drop_index('ix_agents_api_token', 'agents')

    # Drop tables (order matters due to foreign keys)
    op.drop_table('samples')
    op.drop_table('email_verifications')
    op.drop_table('rate_limits')
    op.drop_table('purchases')
    op.drop_table('beats')
    op.drop_table('agents')
