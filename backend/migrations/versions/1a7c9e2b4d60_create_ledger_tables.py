"""create round, player stats, daily challenge, leaderboard and ledger tables

Revision ID: 1a7c9e2b4d60
Revises:
Create Date: 2025-10-09 12:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '1a7c9e2b4d60'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'round',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('player', sa.String(length=128), nullable=False),
        sa.Column('round_type', sa.String(length=32), nullable=False),
        sa.Column('level', sa.Integer(), nullable=False),
        sa.Column('grid_size', sa.Integer(), nullable=False),
        sa.Column('total_steps', sa.Integer(), nullable=False),
        sa.Column('correct_steps', sa.Integer(), nullable=False),
        sa.Column('score', sa.BigInteger(), nullable=False),
        sa.Column('elapsed_ms', sa.BigInteger(), nullable=False),
        sa.Column('time_limit_ms', sa.BigInteger(), nullable=False),
        sa.Column('reward', sa.BigInteger(), nullable=False),
        sa.Column('verified', sa.Boolean(), nullable=False),
        sa.Column('failure_reason', sa.String(length=32), nullable=False),
        sa.Column('challenge_date', sa.Integer(), nullable=True),
        sa.Column('settled_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_round_player', 'round', ['player'])

    op.create_table(
        'player_stats',
        sa.Column('player', sa.String(length=128), nullable=False),
        sa.Column('total_rounds', sa.Integer(), nullable=False),
        sa.Column('total_score', sa.BigInteger(), nullable=False),
        sa.Column('total_rewards', sa.BigInteger(), nullable=False),
        sa.Column('best_score', sa.BigInteger(), nullable=False),
        sa.Column('current_streak', sa.Integer(), nullable=False),
        sa.Column('current_level', sa.Integer(), nullable=False),
        sa.Column('timeouts_count', sa.Integer(), nullable=False),
        sa.Column('perfect_rounds_count', sa.Integer(), nullable=False),
        sa.Column('last_daily_challenge_date', sa.Integer(), nullable=True),
        sa.PrimaryKeyConstraint('player'),
    )

    op.create_table(
        'pending_reward',
        sa.Column('player', sa.String(length=128), nullable=False),
        sa.Column('amount', sa.BigInteger(), nullable=False),
        sa.PrimaryKeyConstraint('player'),
    )

    op.create_table(
        'daily_challenge',
        sa.Column('date', sa.Integer(), nullable=False),
        sa.Column('grid_size', sa.Integer(), nullable=False),
        sa.Column('steps', sa.Integer(), nullable=False),
        sa.Column('show_duration', sa.Integer(), nullable=False),
        sa.Column('interval_between', sa.Integer(), nullable=False),
        sa.Column('time_limit', sa.Integer(), nullable=False),
        sa.Column('max_tries', sa.Integer(), nullable=False),
        sa.Column('reward_pool', sa.BigInteger(), nullable=False),
        sa.Column('rewards_credited', sa.BigInteger(), nullable=False),
        sa.PrimaryKeyConstraint('date'),
    )

    op.create_table(
        'daily_challenge_entry',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('date', sa.Integer(), nullable=False),
        sa.Column('player', sa.String(length=128), nullable=False),
        sa.Column('tries_used', sa.Integer(), nullable=False),
        sa.Column('completed', sa.Boolean(), nullable=False),
        sa.ForeignKeyConstraint(['date'], ['daily_challenge.date']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('date', 'player', name='uq_daily_entry_date_player'),
    )
    op.create_index('ix_daily_challenge_entry_player', 'daily_challenge_entry', ['player'])

    op.create_table(
        'leaderboard_entry',
        sa.Column('rank', sa.Integer(), nullable=False),
        sa.Column('player', sa.String(length=128), nullable=False),
        sa.Column('score', sa.BigInteger(), nullable=False),
        sa.Column('level', sa.Integer(), nullable=False),
        sa.Column('reward', sa.BigInteger(), nullable=False),
        sa.PrimaryKeyConstraint('rank'),
    )

    op.create_table(
        'ledger_state',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('escrow_balance', sa.BigInteger(), nullable=False),
        sa.Column('base_reward_per_step', sa.BigInteger(), nullable=False),
        sa.Column('time_bonus_multiplier', sa.Integer(), nullable=False),
        sa.Column('daily_reward_per_completion', sa.BigInteger(), nullable=False),
        sa.Column('leaderboard_pool', sa.BigInteger(), nullable=False),
        sa.Column('last_payout_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'withdrawal',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('player', sa.String(length=128), nullable=False),
        sa.Column('amount', sa.BigInteger(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_withdrawal_player', 'withdrawal', ['player'])

    op.create_table(
        'ledger_event',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('kind', sa.String(length=64), nullable=False),
        sa.Column('player', sa.String(length=128), nullable=True),
        sa.Column('payload', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_ledger_event_kind', 'ledger_event', ['kind'])
    op.create_index('ix_ledger_event_player', 'ledger_event', ['player'])


def downgrade():
    op.drop_index('ix_ledger_event_player', table_name='ledger_event')
    op.drop_index('ix_ledger_event_kind', table_name='ledger_event')
    op.drop_table('ledger_event')
    op.drop_index('ix_withdrawal_player', table_name='withdrawal')
    op.drop_table('withdrawal')
    op.drop_table('ledger_state')
    op.drop_table('leaderboard_entry')
    op.drop_index('ix_daily_challenge_entry_player', table_name='daily_challenge_entry')
    op.drop_table('daily_challenge_entry')
    op.drop_table('daily_challenge')
    op.drop_table('pending_reward')
    op.drop_table('player_stats')
    op.drop_index('ix_round_player', table_name='round')
    op.drop_table('round')
