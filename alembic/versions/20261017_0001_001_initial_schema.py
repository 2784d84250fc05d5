"""Initial schema - users, pending records and chat sessions

Revision ID: 001_initial
Revises: 
Create Date: 2026-10-17
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
    # Users table
    op.create_table(
        'users',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('hashed_password', sa.String(255), nullable=True),
        sa.Column('first_name', sa.String(255), nullable=True),
        sa.Column('last_name', sa.String(255), nullable=True),
        sa.Column('profile_image', sa.String(1024), nullable=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('is_active', sa.Boolean, default=True),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    # Pending signups, reset secrets and OTPs
    op.create_table(
        'pending_records',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('kind', sa.String(20), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('user_id', sa.String(36), nullable=True),
        sa.Column('password_hash', sa.String(255), nullable=True),
        sa.Column('secret', sa.String(64), nullable=True),
        sa.Column('manual', sa.Boolean, default=True),
        sa.Column('failed_attempts', sa.Integer, nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('expires_at', sa.DateTime, nullable=False),
        sa.UniqueConstraint('kind', 'email', name='uq_pending_kind_email'),
    )
    op.create_index('ix_pending_records_expires_at', 'pending_records', ['expires_at'])

    # Chat sessions
    op.create_table(
        'chat_sessions',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('mode', sa.String(20), nullable=False, server_default='freeform'),
        sa.Column('assistant_id', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index('ix_chat_sessions_user_id', 'chat_sessions', ['user_id'])

    # Raw provider turns
    op.create_table(
        'chat_turns',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('session_id', sa.String(36), sa.ForeignKey('chat_sessions.id', ondelete='CASCADE'), nullable=False),
        sa.Column('role', sa.String(20), nullable=False),
        sa.Column('content', sa.Text, nullable=False),
    )
    op.create_index('ix_chat_turns_session', 'chat_turns', ['session_id', 'id'])

    # Display exchanges
    op.create_table(
        'chat_exchanges',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('session_id', sa.String(36), sa.ForeignKey('chat_sessions.id', ondelete='CASCADE'), nullable=False),
        sa.Column('prompt', sa.Text, nullable=False),
        sa.Column('response', sa.Text, nullable=False),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index('ix_chat_exchanges_session', 'chat_exchanges', ['session_id', 'id'])

    # Files bound to a session's assistant
    op.create_table(
        'chat_files',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('session_id', sa.String(36), sa.ForeignKey('chat_sessions.id', ondelete='CASCADE'), nullable=False),
        sa.Column('file_id', sa.String(255), nullable=False),
        sa.Column('file_name', sa.String(1024), nullable=False),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.UniqueConstraint('session_id', 'file_name', name='uq_chat_files_session_name'),
    )


def downgrade() -> None:
    op.drop_table('chat_files')
    op.drop_index('ix_chat_exchanges_session', table_name='chat_exchanges')
    op.drop_table('chat_exchanges')
    op.drop_index('ix_chat_turns_session', table_name='chat_turns')
    op.drop_table('chat_turns')
    op.drop_index('ix_chat_sessions_user_id', table_name='chat_sessions')
    op.drop_table('chat_sessions')
    op.drop_index('ix_pending_records_expires_at', table_name='pending_records')
    op.drop_table('pending_records')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_table('users')
