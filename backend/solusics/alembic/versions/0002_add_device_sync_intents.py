"""add device sync intents table

Revision ID: 0002
Revises: 0001
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0002'
down_revision = '0001'
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'device_sync_intents',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('action', sa.String(length=32), nullable=False),
        sa.Column('whatsapp_number', sa.String(length=32), nullable=True),
        sa.Column('state', sa.String(length=20), nullable=False, server_default='pending_sync'),
        sa.Column('error_message', sa.String(length=500), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
    )
    op.create_index(op.f('ix_device_sync_intents_id'), 'device_sync_intents', ['id'], unique=False)
    op.create_index(op.f('ix_device_sync_intents_user_id'), 'device_sync_intents', ['user_id'], unique=False)
    op.create_index('idx_device_sync_intents_state_created', 'device_sync_intents', ['state', 'created_at'], unique=False)


def downgrade():
    op.drop_index('idx_device_sync_intents_state_created', table_name='device_sync_intents')
    op.drop_index(op.f('ix_device_sync_intents_user_id'), table_name='device_sync_intents')
    op.drop_index(op.f('ix_device_sync_intents_id'), table_name='device_sync_intents')
    op.drop_table('device_sync_intents')
