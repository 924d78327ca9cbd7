"""create_core_tables

Revision ID: create_core_tables
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'create_core_tables'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('username', sa.String(30), nullable=False, unique=True),
        sa.Column('email', sa.String(255), nullable=False, unique=True),
        sa.Column('first_name', sa.String(50), nullable=False),
        sa.Column('last_name', sa.String(50), nullable=False),
        sa.Column('role', sa.String(20), nullable=True, server_default='user'),
        sa.Column('status', sa.String(20), nullable=True, server_default='active'),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('sponsor_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('membership_expiry', sa.DateTime(), nullable=True),
        sa.Column('total_earnings', sa.DECIMAL(12, 2), nullable=True, server_default='0'),
    )
    op.create_index('ix_users_sponsor_id', 'users', ['sponsor_id'])
    op.create_index('ix_users_membership_expiry', 'users', ['membership_expiry'])

    op.create_table(
        'payments',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('amount', sa.DECIMAL(12, 2), nullable=False),
        sa.Column('currency', sa.String(10), nullable=False),
        sa.Column('transaction_hash', sa.String(200), nullable=False, unique=True),
        sa.Column('status', sa.String(20), nullable=True, server_default='pending'),
        sa.Column('membership_extension', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('commissions_distributed_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_payments_user_id', 'payments', ['user_id'])
    op.create_index('ix_payments_user_status', 'payments', ['user_id', 'status'])

    op.create_table(
        'mlm_commissions',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('from_user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('to_user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('level', sa.Integer(), nullable=False),
        sa.Column('amount', sa.DECIMAL(12, 2), nullable=False),
        sa.Column('payment_id', sa.Integer(), sa.ForeignKey('payments.id'), nullable=False),
        sa.Column('status', sa.String(20), nullable=True, server_default='pending'),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('payment_id', 'level', name='uq_mlm_commissions_payment_level'),
    )
    op.create_index('ix_mlm_commissions_to_user', 'mlm_commissions', ['to_user_id'])
    op.create_index('ix_mlm_commissions_to_user_level', 'mlm_commissions', ['to_user_id', 'level'])
    op.create_index('ix_mlm_commissions_from_user', 'mlm_commissions', ['from_user_id'])

    op.create_table(
        'rooms',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('topic', sa.String(100), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('creator_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('max_participants', sa.Integer(), nullable=True, server_default='10'),
        sa.Column('requires_membership', sa.Boolean(), nullable=True, server_default=sa.true()),
        sa.Column('is_active', sa.Boolean(), nullable=True, server_default=sa.true()),
        sa.Column('current_participants', sa.Integer(), nullable=True, server_default='0'),
        sa.Column('total_votings', sa.Integer(), nullable=True, server_default='0'),
        sa.Column('total_expulsions', sa.Integer(), nullable=True, server_default='0'),
        sa.Column('last_activity', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_rooms_is_active', 'rooms', ['is_active'])
    op.create_index('ix_rooms_creator_id', 'rooms', ['creator_id'])

    op.create_table(
        'room_members',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('room_id', sa.Integer(), sa.ForeignKey('rooms.id'), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('joined_at', sa.DateTime(), nullable=True),
        sa.Column('left_at', sa.DateTime(), nullable=True),
    )
    op.create_index(
        'uq_room_members_open', 'room_members', ['room_id', 'user_id'],
        unique=True, postgresql_where=sa.text('left_at IS NULL'),
    )
    op.create_index('ix_room_members_user_id', 'room_members', ['user_id'])

    op.create_table(
        'votings',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('room_id', sa.Integer(), sa.ForeignKey('rooms.id'), nullable=False),
        sa.Column('initiator_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('target_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('required_votes', sa.Integer(), nullable=False),
        sa.Column('total_participants', sa.Integer(), nullable=False),
        sa.Column('is_completed', sa.Boolean(), nullable=True, server_default=sa.false()),
        sa.Column('result', sa.String(20), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
    )
    op.create_index(
        'uq_votings_open_target', 'votings', ['room_id', 'target_id'],
        unique=True, postgresql_where=sa.text('is_completed = false'),
    )
    op.create_index('ix_votings_open_created', 'votings', ['is_completed', 'created_at'])
    op.create_index('ix_votings_initiator_created', 'votings', ['initiator_id', 'created_at'])

    op.create_table(
        'votes',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('voting_id', sa.Integer(), sa.ForeignKey('votings.id'), nullable=False),
        sa.Column('voter_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('voting_id', 'voter_id', name='uq_votes_voting_voter'),
    )

    op.create_table(
        'expulsions',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('voting_id', sa.Integer(), sa.ForeignKey('votings.id'), nullable=False, unique=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('room_id', sa.Integer(), sa.ForeignKey('rooms.id'), nullable=False),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('expelled_by', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_expulsions_user_room', 'expulsions', ['user_id', 'room_id'])

    op.create_table(
        'moderation_logs',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('type', sa.String(50), nullable=False),
        sa.Column('room_id', sa.Integer(), sa.ForeignKey('rooms.id'), nullable=True),
        sa.Column('initiator_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('target_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('details', sa.Text(), nullable=False),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_moderation_logs_room_created', 'moderation_logs', ['room_id', 'created_at'])
    op.create_index('ix_moderation_logs_type', 'moderation_logs', ['type'])


def downgrade() -> None:
    op.drop_table('moderation_logs')
    op.drop_table('expulsions')
    op.drop_table('votes')
    op.drop_table('votings')
    op.drop_table('room_members')
    op.drop_table('rooms')
    op.drop_table('mlm_commissions')
    op.drop_table('payments')
    op.drop_table('users')
