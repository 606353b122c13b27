"""create mining tables

Revision ID: 4f1c2a9d7e10
Revises:
Create Date: 2026-10-17 10:12:41.220415

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '4f1c2a9d7e10'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'users',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('username', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('username')
    )
    op.create_table(
        'mining_settings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('public_mining_enabled', sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_table(
        'user_points',
        sa.Column('user_id', sa.String(length=36), nullable=False),
        sa.Column('total_points', sa.Integer(), nullable=False),
        sa.Column('mining_points', sa.Integer(), nullable=False),
        sa.Column('referral_bonus_percentage', sa.Float(), nullable=False),
        sa.Column('x_post_boost_percentage', sa.Float(), nullable=False),
        sa.Column('daily_streak', sa.Integer(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('user_id')
    )
    op.create_table(
        'x_profiles',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(length=36), nullable=False),
        sa.Column('username', sa.String(length=64), nullable=True),
        sa.Column('boost_percentage', sa.Float(), nullable=False),
        sa.Column('scanned_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id')
    )
    for table in ('arena_boosts', 'nexus_boosts'):
        columns = [
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('user_id', sa.String(length=36), nullable=False),
            sa.Column('boost_percentage', sa.Float(), nullable=False),
            sa.Column('expires_at', sa.DateTime(), nullable=False),
            sa.Column('created_at', sa.DateTime(), nullable=True),
        ]
        if table == 'nexus_boosts':
            columns.append(sa.Column('claimed', sa.Boolean(), nullable=False))
        op.create_table(
            table,
            *columns,
            sa.ForeignKeyConstraint(['user_id'], ['users.id']),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index(op.f(f'ix_{table}_user_id'), table, ['user_id'], unique=False)

    op.create_table(
        'mining_sessions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(length=36), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('ended_at', sa.DateTime(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('recorded_points', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_mining_sessions_user_id'), 'mining_sessions', ['user_id'], unique=False)
    op.create_index(op.f('ix_mining_sessions_is_active'), 'mining_sessions', ['is_active'], unique=False)

    op.create_table(
        'points_history',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(length=36), nullable=False),
        sa.Column('change_type', sa.String(length=60), nullable=False),
        sa.Column('change_amount', sa.Integer(), nullable=False),
        sa.Column('session_id', sa.Integer(), nullable=True),
        sa.Column('window_started_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.ForeignKeyConstraint(['session_id'], ['mining_sessions.id']),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        # 同一挖矿窗口只能入账一次
        sa.UniqueConstraint('session_id', 'window_started_at', name='uix_session_window')
    )
    op.create_index(op.f('ix_points_history_user_id'), 'points_history', ['user_id'], unique=False)


def downgrade():
    op.drop_index(op.f('ix_points_history_user_id'), table_name='points_history')
    op.drop_table('points_history')
    op.drop_index(op.f('ix_mining_sessions_is_active'), table_name='mining_sessions')
    op.drop_index(op.f('ix_mining_sessions_user_id'), table_name='mining_sessions')
    op.drop_table('mining_sessions')
    for table in ('nexus_boosts', 'arena_boosts'):
        op.drop_index(op.f(f'ix_{table}_user_id'), table_name=table)
        op.drop_table(table)
    op.drop_table('x_profiles')
    op.drop_table('user_points')
    op.drop_table('mining_settings')
    op.drop_table('users')
