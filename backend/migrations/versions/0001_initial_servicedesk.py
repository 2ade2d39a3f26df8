"""initial servicedesk tables

Revision ID: 0001_initial_servicedesk
Revises:
Create Date: 2025-10-02
"""
from __future__ import annotations
from alembic import op
import sqlalchemy as sa

revision = '0001_initial_servicedesk'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('users',
        sa.Column('id', sa.String(length=64), primary_key=True),
        sa.Column('email', sa.String(length=128), nullable=False, server_default=''),
        sa.Column('full_name', sa.String(length=128), nullable=False),
        sa.Column('role', sa.String(length=16), nullable=False, server_default='client'),
        sa.Column('phone', sa.String(length=32), nullable=False, server_default=''),
        sa.Column('password_hash', sa.String(length=255), nullable=True),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        sa.Column('has_account', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('assignment_seq', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_by', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_users_email', 'users', ['email'])
    op.create_index('ix_users_role', 'users', ['role'])

    op.create_table('devices',
        sa.Column('id', sa.String(length=32), primary_key=True),
        sa.Column('brand', sa.String(length=80), nullable=False),
        sa.Column('model', sa.String(length=80), nullable=False),
        sa.Column('serial_number', sa.String(length=80), nullable=False, server_default=''),
        sa.Column('year_production', sa.Integer(), nullable=True),
        sa.Column('owner_id', sa.String(length=64), nullable=True),
        sa.Column('warranty_status', sa.String(length=32), nullable=False, server_default='unknown'),
        sa.Column('warranty_expire_date', sa.Date(), nullable=True),
        sa.Column('asset_tag', sa.String(length=64), nullable=False, server_default=''),
        sa.Column('photos', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_devices_serial_number', 'devices', ['serial_number'])
    op.create_index('ix_devices_owner_id', 'devices', ['owner_id'])
    op.create_index('ix_devices_created_at', 'devices', ['created_at'])

    op.create_table('tickets',
        sa.Column('id', sa.String(length=32), primary_key=True),
        sa.Column('ticket_number', sa.String(length=40), nullable=False),
        sa.Column('client_id', sa.String(length=64), nullable=True),
        sa.Column('device_id', sa.String(length=32), nullable=True),
        sa.Column('technician_id', sa.String(length=64), nullable=True),
        sa.Column('created_by', sa.String(length=64), nullable=True),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('preferred_delivery_date', sa.Date(), nullable=True),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='Registered'),
        sa.Column('device', sa.JSON(), nullable=True),
        sa.Column('assigned_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('assigned_by', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
    )
    op.create_index('ix_tickets_ticket_number', 'tickets', ['ticket_number'], unique=True)
    for col in ('client_id', 'device_id', 'technician_id', 'status', 'created_at'):
        op.create_index(f'ix_tickets_{col}', 'tickets', [col])

    op.create_table('ticket_status_history',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('ticket_id', sa.String(length=32), sa.ForeignKey('tickets.id', ondelete='CASCADE'), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('changed_by', sa.String(length=64), nullable=False),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_table('ticket_reassignments',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('ticket_id', sa.String(length=32), sa.ForeignKey('tickets.id', ondelete='CASCADE'), nullable=False),
        sa.Column('old_technician_id', sa.String(length=64), nullable=True),
        sa.Column('new_technician_id', sa.String(length=64), nullable=False),
        sa.Column('reassigned_by', sa.String(length=64), nullable=False),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_table('ticket_notes',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('ticket_id', sa.String(length=32), sa.ForeignKey('tickets.id', ondelete='CASCADE'), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('author', sa.String(length=128), nullable=False),
        sa.Column('author_id', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_table('ticket_parts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('ticket_id', sa.String(length=32), sa.ForeignKey('tickets.id', ondelete='CASCADE'), nullable=False),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=False, server_default=''),
        sa.Column('manufacturer', sa.String(length=80), nullable=False, server_default=''),
        sa.Column('unit_price', sa.Float(), nullable=False, server_default='0'),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='ordered'),
        sa.Column('added_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_table('ticket_images',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('ticket_id', sa.String(length=32), sa.ForeignKey('tickets.id', ondelete='CASCADE'), nullable=False),
        sa.Column('url', sa.String(length=512), nullable=False),
        sa.Column('path', sa.String(length=255), nullable=False),
        sa.Column('filename', sa.String(length=255), nullable=False),
        sa.Column('uploaded_at', sa.DateTime(timezone=True), nullable=False),
    )
    for table in ('ticket_status_history', 'ticket_reassignments', 'ticket_notes', 'ticket_parts', 'ticket_images'):
        op.create_index(f'ix_{table}_ticket_id', table, ['ticket_id'])

    op.create_table('audit_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('actor_user_id', sa.String(length=64), nullable=False),
        sa.Column('action', sa.String(length=64), nullable=False),
        sa.Column('entity', sa.String(length=64), nullable=True),
        sa.Column('entity_id', sa.String(length=64), nullable=True),
        sa.Column('role_snapshot', sa.JSON(), nullable=True),
        sa.Column('meta', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_audit_logs_actor_user_id', 'audit_logs', ['actor_user_id'])
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_entity', 'audit_logs', ['entity', 'entity_id'])


def downgrade():
    op.drop_table('audit_logs')
    for table in ('ticket_images', 'ticket_parts', 'ticket_notes', 'ticket_reassignments', 'ticket_status_history'):
        op.drop_table(table)
    op.drop_table('tickets')
    op.drop_table('devices')
    op.drop_table('users')
