"""create users and business profiles

Revision ID: 0001
Revises:
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(length=64), nullable=False),
        sa.Column('hashed_password', sa.String(length=256), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_users_id'), 'users', ['id'], unique=False)
    op.create_index(op.f('ix_users_username'), 'users', ['username'], unique=True)

    op.create_table(
        'user_business_profiles',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('business_name', sa.String(length=255), nullable=True),
        sa.Column('whatsapp_number', sa.String(length=32), nullable=True),
        sa.Column('fonnte_device_id', sa.String(length=64), nullable=True),
        sa.Column('fonnte_status', sa.String(length=20), nullable=False, server_default='disconnected'),
        sa.Column('fonnte_qr_code_url', sa.Text(), nullable=True),
        sa.Column('fonnte_qr_generated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('fonnte_connected_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('fonnte_device_token', sa.String(length=255), nullable=True),
        sa.Column('fonnte_synced_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
    )
    op.create_index(op.f('ix_user_business_profiles_id'), 'user_business_profiles', ['id'], unique=False)
    op.create_index(op.f('ix_user_business_profiles_user_id'), 'user_business_profiles', ['user_id'], unique=True)
    op.create_index('idx_user_business_profiles_fonnte_status', 'user_business_profiles', ['fonnte_status'], unique=False)


def downgrade():
    op.drop_index('idx_user_business_profiles_fonnte_status', table_name='user_business_profiles')
    op.drop_index(op.f('ix_user_business_profiles_user_id'), table_name='user_business_profiles')
    op.drop_index(op.f('ix_user_business_profiles_id'), table_name='user_business_profiles')
    op.drop_table('user_business_profiles')
    op.drop_index(op.f('ix_users_username'), table_name='users')
    op.drop_index(op.f('ix_users_id'), table_name='users')
    op.drop_table('users')
