"""Identity schema: users, otp challenges and device sessions

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


ONBOARDING_STEPS = (
    'PHONE_VERIFICATION',
    'PROFILE_SETUP',
    'INTERESTS_SELECTION',
    'COMMUNITY_RECOMMENDATIONS',
    'COMPLETED',
)


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('phone_number', sa.String(length=20), nullable=True),
        sa.Column('country_code', sa.String(length=5), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('external_id', sa.String(length=255), nullable=True),
        sa.Column('name', sa.String(length=100), nullable=True),
        sa.Column('bio', sa.Text(), nullable=True),
        sa.Column('profile_image_url', sa.Text(), nullable=True),
        sa.Column('is_phone_verified', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_email_verified', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_suspended', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('suspension_reason', sa.Text(), nullable=True),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('deletion_reason', sa.String(length=300), nullable=True),
        sa.Column(
            'onboarding_step',
            sa.Enum(*ONBOARDING_STEPS, name='onboarding_step'),
            nullable=False,
            server_default='PHONE_VERIFICATION',
        ),
        sa.Column('onboarding_completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            'role',
            sa.Enum('USER', 'ADMIN', 'MODERATOR', name='user_role'),
            nullable=False,
            server_default='USER',
        ),
        sa.Column('pending_email', sa.String(length=255), nullable=True),
        sa.Column('pending_phone_number', sa.String(length=20), nullable=True),
        sa.Column('pending_country_code', sa.String(length=5), nullable=True),
        sa.Column('last_active_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('phone_number', 'country_code', name='uq_users_phone'),
    )
    op.create_index(op.f('ix_users_email'), 'users', ['email'], unique=True)
    op.create_index(op.f('ix_users_external_id'), 'users', ['external_id'], unique=True)

    op.create_table(
        'otp_challenges',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(length=36), nullable=True),
        sa.Column('phone_number', sa.String(length=20), nullable=True),
        sa.Column('country_code', sa.String(length=5), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column(
            'challenge_type',
            sa.Enum('PHONE_AUTH', 'POST_FEDERATION_PHONE_VERIFY', 'EMAIL_VERIFY', name='challenge_type'),
            nullable=False,
        ),
        sa.Column('provider', sa.Enum('KALEYRA', 'LOCAL', name='challenge_provider'), nullable=False),
        sa.Column('provider_ref', sa.String(length=255), nullable=True),
        sa.Column('code_hash', sa.Text(), nullable=True),
        sa.Column('is_verified', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('verified_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_attempts', sa.Integer(), nullable=False, server_default='5'),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('provider_status', sa.String(length=50), nullable=True),
        sa.Column('provider_metadata', sa.JSON(), nullable=True),
        sa.Column('ip_address', sa.String(length=64), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_otp_challenges_user_id'), 'otp_challenges', ['user_id'])
    op.create_index(
        'ix_otp_challenges_phone',
        'otp_challenges',
        ['phone_number', 'country_code', 'challenge_type', 'created_at'],
    )
    op.create_index('ix_otp_challenges_email', 'otp_challenges', ['email', 'challenge_type', 'created_at'])

    op.create_table(
        'auth_sessions',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(length=36), nullable=False),
        sa.Column('device_id', sa.String(length=255), nullable=False),
        sa.Column('device_type', sa.Enum('IOS', 'ANDROID', 'WEB', name='device_type'), nullable=False),
        sa.Column('device_name', sa.String(length=255), nullable=True),
        sa.Column('app_version', sa.String(length=50), nullable=True),
        sa.Column('os_version', sa.String(length=50), nullable=True),
        sa.Column('access_token_hash', sa.String(length=64), nullable=False),
        sa.Column('refresh_token_hash', sa.String(length=64), nullable=False),
        sa.Column('access_expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('refresh_expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('push_token', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('last_used_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('ip_address', sa.String(length=64), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'device_id', name='uq_auth_sessions_user_device'),
    )
    op.create_index(op.f('ix_auth_sessions_user_id'), 'auth_sessions', ['user_id'])
    op.create_index(op.f('ix_auth_sessions_access_token_hash'), 'auth_sessions', ['access_token_hash'], unique=True)
    op.create_index(op.f('ix_auth_sessions_refresh_token_hash'), 'auth_sessions', ['refresh_token_hash'], unique=True)


def downgrade() -> None:
    op.drop_table('auth_sessions')
    op.drop_table('otp_challenges')
    op.drop_index(op.f('ix_users_external_id'), table_name='users')
    op.drop_index(op.f('ix_users_email'), table_name='users')
    op.drop_table('users')

    for enum_name in ('device_type', 'challenge_provider', 'challenge_type', 'user_role', 'onboarding_step'):
        sa.Enum(name=enum_name).drop(op.get_bind(), checkfirst=True)
