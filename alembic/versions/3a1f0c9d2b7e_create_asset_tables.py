"""create_asset_tables

Revision ID: 3a1f0c9d2b7e
Revises:
Create Date: 2026-10-19

Initial schema:
- organizations / projects / users: directory tables (read-only here)
- assets: asset records with lifecycle status and optimistic row_version
- asset_versions: append-only version ledger
- asset_renditions: derived thumbnails / previews, one row per name
- processing_jobs: durable processing queue
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '3a1f0c9d2b7e'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # === DIRECTORY TABLES ===
    op.create_table(
        'organizations',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('is_active', sa.Boolean, server_default='true'),
        sa.Column('created_at', sa.DateTime, server_default=sa.text('NOW()')),
    )
    op.create_table(
        'projects',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('organization_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('is_active', sa.Boolean, server_default='true'),
        sa.Column('created_at', sa.DateTime, server_default=sa.text('NOW()')),
    )
    op.create_table(
        'users',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('is_active', sa.Boolean, server_default='true'),
        sa.Column('created_at', sa.DateTime, server_default=sa.text('NOW()')),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    # === ASSETS TABLE ===
    op.create_table(
        'assets',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('organization_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('organizations.id'), nullable=False),
        sa.Column('project_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('projects.id'), nullable=False),
        sa.Column('uploaded_by', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('original_filename', sa.String(255), nullable=False),
        sa.Column('mime_type', sa.String(255), nullable=False),
        sa.Column('asset_type', sa.String(20), nullable=False),
        sa.Column('file_size_bytes', sa.BigInteger, nullable=False),
        sa.Column('checksum', sa.String(200), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='uploading'),
        sa.Column('processing_error', sa.Text, nullable=True),
        sa.Column('processing_lineage', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('upload_expires_at', sa.DateTime, nullable=True),
        sa.Column('storage_provider', sa.String(20), nullable=False),
        sa.Column('storage_key', sa.String(1024), nullable=False),
        sa.Column('latest_version', sa.Integer, nullable=False, server_default='1'),
        sa.Column('tags', postgresql.JSONB, nullable=False, server_default='[]'),
        sa.Column('metadata', postgresql.JSONB, nullable=True),
        sa.Column('custom_metadata', postgresql.JSONB, nullable=False, server_default='{}'),
        sa.Column('access', sa.String(20), nullable=False, server_default='private'),
        sa.Column('view_count', sa.BigInteger, nullable=False, server_default='0'),
        sa.Column('download_count', sa.BigInteger, nullable=False, server_default='0'),
        sa.Column('deleted_at', sa.DateTime, nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
        sa.Column('row_version', sa.Integer, nullable=False),
    )
    # One live asset per (organization, checksum)
    op.create_index(
        'uq_assets_org_checksum_live',
        'assets',
        ['organization_id', 'checksum'],
        unique=True,
        postgresql_where=sa.text('deleted_at IS NULL'),
    )
    op.create_index('ix_assets_org_project_status', 'assets', ['organization_id', 'project_id', 'status', 'updated_at'])
    op.create_index('ix_assets_org_type', 'assets', ['organization_id', 'asset_type', 'updated_at'])
    op.create_index('ix_assets_status_updated', 'assets', ['status', 'updated_at'])

    # === VERSION LEDGER ===
    op.create_table(
        'asset_versions',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('asset_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('assets.id', ondelete='CASCADE'), nullable=False),
        sa.Column('version_number', sa.Integer, nullable=False),
        sa.Column('storage_key', sa.String(1024), nullable=False),
        sa.Column('file_size_bytes', sa.BigInteger, nullable=False),
        sa.Column('created_by', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
        sa.UniqueConstraint('asset_id', 'version_number', name='uq_asset_version_number'),
    )

    # === RENDITIONS ===
    op.create_table(
        'asset_renditions',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('asset_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('assets.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(50), nullable=False),
        sa.Column('storage_key', sa.String(1024), nullable=False),
        sa.Column('content_type', sa.String(100), nullable=True),
        sa.Column('width', sa.Integer, nullable=True),
        sa.Column('height', sa.Integer, nullable=True),
        sa.Column('file_size_bytes', sa.BigInteger, nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
        sa.UniqueConstraint('asset_id', 'name', name='uq_asset_rendition_name'),
    )

    # === PROCESSING JOBS ===
    op.create_table(
        'processing_jobs',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('kind', sa.String(50), nullable=False),
        sa.Column('queue_name', sa.String(50), nullable=False),
        sa.Column('asset_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('assets.id'), nullable=False),
        sa.Column('organization_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('lineage_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='queued'),
        sa.Column('priority', sa.Integer, nullable=False, server_default='0'),
        sa.Column('attempts', sa.Integer, nullable=False, server_default='0'),
        sa.Column('max_attempts', sa.Integer, nullable=False, server_default='1'),
        sa.Column('available_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
        sa.Column('payload', postgresql.JSONB, nullable=False, server_default='{}'),
        sa.Column('result', postgresql.JSONB, nullable=True),
        sa.Column('worker_id', sa.String(100), nullable=True),
        sa.Column('logs', postgresql.JSONB, nullable=False, server_default='[]'),
        sa.Column('error_name', sa.String(200), nullable=True),
        sa.Column('error_message', sa.Text, nullable=True),
        sa.Column('error_stack', sa.Text, nullable=True),
        sa.Column('queued_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
        sa.Column('started_at', sa.DateTime, nullable=True),
        sa.Column('heartbeat_at', sa.DateTime, nullable=True),
        sa.Column('completed_at', sa.DateTime, nullable=True),
        sa.Column('duration_ms', sa.Integer, nullable=True),
    )
    op.create_index('ix_jobs_claim', 'processing_jobs', ['status', 'priority', 'available_at'])
    op.create_index('ix_jobs_asset', 'processing_jobs', ['asset_id'])
    op.create_index('ix_jobs_queue_status', 'processing_jobs', ['queue_name', 'status'])


def downgrade() -> None:
    op.drop_table('processing_jobs')
    op.drop_table('asset_renditions')
    op.drop_table('asset_versions')
    op.drop_index('uq_assets_org_checksum_live', table_name='assets')
    op.drop_table('assets')
    op.drop_table('users')
    op.drop_table('projects')
    op.drop_table('organizations')
