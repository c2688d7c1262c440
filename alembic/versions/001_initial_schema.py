"""initial schema - create all tables

Revision ID: 001
Revises: 
Create Date: 2026-10-17 09:00:00.000000

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    ]


def upgrade() -> None:
    # Webhook subscriptions and the per-attempt delivery log
    op.create_table(
        'webhook_subscriptions',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('owner_id', sa.String(36), nullable=False, index=True),
        sa.Column('url', sa.Text(), nullable=False),
        sa.Column('encrypted_secret', sa.Text(), nullable=False),
        sa.Column('events', sa.JSON(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('custom_headers', sa.JSON(), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        'webhook_deliveries',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('subscription_id', sa.String(36), sa.ForeignKey('webhook_subscriptions.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('event', sa.String(100), nullable=False, index=True),
        sa.Column('event_id', sa.String(36), nullable=True, index=True),
        sa.Column('payload', sa.Text(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('response_status', sa.Integer(), nullable=True),
        sa.Column('response_body', sa.Text(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('last_attempt_at', sa.DateTime(timezone=True), nullable=True),
    )

    # Contacts and what hangs off them
    op.create_table(
        'contacts',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('owner_id', sa.String(36), nullable=False, index=True),
        sa.Column('manychat_id', sa.String(64), nullable=True, index=True),
        sa.Column('ig_username', sa.String(255), nullable=True),
        sa.Column('first_name', sa.String(255), nullable=True),
        sa.Column('last_name', sa.String(255), nullable=True),
        sa.Column('profile_pic_url', sa.Text(), nullable=True),
        sa.Column('follower_count', sa.Integer(), nullable=True),
        sa.Column('is_subscribed', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('last_interaction', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        'tags',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('owner_id', sa.String(36), nullable=False, index=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('manychat_id', sa.String(64), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        'contact_tags',
        sa.Column('contact_id', sa.String(36), sa.ForeignKey('contacts.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('tag_id', sa.String(36), sa.ForeignKey('tags.id', ondelete='CASCADE'), primary_key=True),
    )

    op.create_table(
        'custom_fields',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('owner_id', sa.String(36), nullable=False, index=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('field_type', sa.String(20), nullable=False, server_default='text'),
        *_timestamps(),
    )

    op.create_table(
        'contact_field_values',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('contact_id', sa.String(36), sa.ForeignKey('contacts.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('field_id', sa.String(36), sa.ForeignKey('custom_fields.id', ondelete='CASCADE'), nullable=False),
        sa.Column('value', sa.Text(), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        'tools',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('owner_id', sa.String(36), nullable=False, index=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('tool_type', sa.String(50), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        'bookings',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('owner_id', sa.String(36), nullable=False, index=True),
        sa.Column('contact_id', sa.String(36), sa.ForeignKey('contacts.id', ondelete='CASCADE'), nullable=False),
        sa.Column('tool_id', sa.String(36), sa.ForeignKey('tools.id', ondelete='CASCADE'), nullable=False),
        sa.Column('booking_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('start_time', sa.String(5), nullable=False),
        sa.Column('end_time', sa.String(5), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('helper_name', sa.String(255), nullable=True),
        sa.Column('service_type', sa.String(255), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        'qr_codes',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('owner_id', sa.String(36), nullable=False, index=True),
        sa.Column('tool_id', sa.String(36), sa.ForeignKey('tools.id', ondelete='CASCADE'), nullable=False),
        sa.Column('contact_id', sa.String(36), sa.ForeignKey('contacts.id', ondelete='SET NULL'), nullable=True),
        sa.Column('code', sa.String(64), nullable=False, unique=True),
        sa.Column('qr_type', sa.String(50), nullable=False),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('scan_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('validation_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('scanned_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('validated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        'manychat_connections',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('owner_id', sa.String(36), nullable=False, unique=True, index=True),
        sa.Column('encrypted_api_token', sa.Text(), nullable=False),
        sa.Column('page_id', sa.String(64), nullable=True),
        sa.Column('page_name', sa.String(255), nullable=True),
        sa.Column('is_connected', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('last_sync_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )

    # Dynamic gallery
    op.create_table(
        'gallery_configs',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('owner_id', sa.String(36), nullable=False, index=True),
        sa.Column('name', sa.String(255), nullable=False, server_default='Default Gallery'),
        sa.Column('auto_sync_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('last_synced_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_webhook_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_sync_status', sa.String(20), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        'gallery_snapshots',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('config_id', sa.String(36), sa.ForeignKey('gallery_configs.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('card_count', sa.Integer(), nullable=False),
        sa.Column('cards', sa.JSON(), nullable=False),
        sa.Column('hash', sa.String(64), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.UniqueConstraint('config_id', 'version', name='uq_gallery_snapshot_version'),
    )

    op.create_table(
        'gallery_secrets',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('config_id', sa.String(36), sa.ForeignKey('gallery_configs.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('label', sa.String(255), nullable=False),
        sa.Column('encrypted_secret', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('last_used_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        'gallery_sync_logs',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('config_id', sa.String(36), sa.ForeignKey('gallery_configs.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('trigger_type', sa.String(20), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('card_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('contacts_impacted', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('duration_ms', sa.Integer(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    )

    # Social data cache tier and actor configuration
    op.create_table(
        'social_media_cache',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('platform', sa.String(20), nullable=False, index=True),
        sa.Column('identifier', sa.String(255), nullable=False),
        sa.Column('data_type', sa.String(20), nullable=False),
        sa.Column('cached_data', sa.JSON(), nullable=False),
        sa.Column('last_fetched', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False, index=True),
        sa.Column('fetch_duration', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('platform', 'identifier', 'data_type', name='uq_social_media_cache_key'),
    )

    op.create_table(
        'apify_data_sources',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('platform', sa.String(20), nullable=False, unique=True),
        sa.Column('actor_id', sa.String(255), nullable=False),
        sa.Column('default_input', sa.JSON(), nullable=True),
        sa.Column('cache_duration_hours', sa.Integer(), nullable=False, server_default='24'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )


def downgrade() -> None:
    op.drop_table('apify_data_sources')
    op.drop_table('social_media_cache')
    op.drop_table('gallery_sync_logs')
    op.drop_table('gallery_secrets')
    op.drop_table('gallery_snapshots')
    op.drop_table('gallery_configs')
    op.drop_table('manychat_connections')
    op.drop_table('qr_codes')
    op.drop_table('bookings')
    op.drop_table('tools')
    op.drop_table('contact_field_values')
    op.drop_table('custom_fields')
    op.drop_table('contact_tags')
    op.drop_table('tags')
    op.drop_table('contacts')
    op.drop_table('webhook_deliveries')
    op.drop_table('webhook_subscriptions')
