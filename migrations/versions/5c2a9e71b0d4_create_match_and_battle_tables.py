"""create match, async game and battle voting tables

Revision ID: 5c2a9e71b0d4
Revises:
Create Date: 2026-10-18 00:00:00
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '5c2a9e71b0d4'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'game_session',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('spot_id', sa.String(length=255), nullable=False),
        sa.Column('creator_id', sa.String(length=255), nullable=False),
        sa.Column('players', sa.JSON(), nullable=False),
        sa.Column('max_players', sa.Integer(), nullable=False),
        sa.Column('current_turn_index', sa.Integer(), nullable=False),
        sa.Column('current_action', sa.String(length=20), nullable=False),
        sa.Column('current_trick', sa.Text(), nullable=True),
        sa.Column('setter_id', sa.String(length=255), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('winner_id', sa.String(length=255), nullable=True),
        sa.Column('end_reason', sa.String(length=32), nullable=True),
        sa.Column('turn_deadline_at', sa.Float(), nullable=True),
        sa.Column('paused_at', sa.Float(), nullable=True),
        sa.Column('processed_event_ids', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.Float(), nullable=False),
        sa.Column('updated_at', sa.Float(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_game_session_creator_id', 'game_session', ['creator_id'])
    op.create_index('ix_game_session_status', 'game_session', ['status'])
    op.create_index('ix_game_session_status_deadline', 'game_session', ['status', 'turn_deadline_at'])

    op.create_table(
        'async_game',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('player1_id', sa.String(length=255), nullable=False),
        sa.Column('player2_id', sa.String(length=255), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('current_turn', sa.String(length=255), nullable=True),
        sa.Column('player1_letters', sa.String(length=5), nullable=True),
        sa.Column('player2_letters', sa.String(length=5), nullable=True),
        sa.Column('winner_id', sa.String(length=255), nullable=True),
        sa.Column('deadline_at', sa.Float(), nullable=True),
        sa.Column('processed_event_ids', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.Float(), nullable=False),
        sa.Column('updated_at', sa.Float(), nullable=False),
        sa.Column('completed_at', sa.Float(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_async_game_status', 'async_game', ['status'])

    op.create_table(
        'battle',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('creator_id', sa.String(length=255), nullable=False),
        sa.Column('opponent_id', sa.String(length=255), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('winner_id', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.Float(), nullable=False),
        sa.Column('updated_at', sa.Float(), nullable=False),
        sa.Column('completed_at', sa.Float(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'battle_vote',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('battle_id', sa.String(length=32), nullable=False),
        sa.Column('player_id', sa.String(length=255), nullable=False),
        sa.Column('vote', sa.String(length=20), nullable=False),
        sa.Column('created_at', sa.Float(), nullable=False),
        sa.ForeignKeyConstraint(['battle_id'], ['battle.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('battle_id', 'player_id', name='uq_battle_vote_player'),
    )

    op.create_table(
        'battle_vote_state',
        sa.Column('battle_id', sa.String(length=32), nullable=False),
        sa.Column('creator_id', sa.String(length=255), nullable=False),
        sa.Column('opponent_id', sa.String(length=255), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('votes', sa.JSON(), nullable=False),
        sa.Column('voting_started_at', sa.Float(), nullable=True),
        sa.Column('vote_deadline_at', sa.Float(), nullable=True),
        sa.Column('winner_id', sa.String(length=255), nullable=True),
        sa.Column('processed_event_ids', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.Float(), nullable=False),
        sa.Column('updated_at', sa.Float(), nullable=False),
        sa.PrimaryKeyConstraint('battle_id'),
    )
    op.create_index('ix_battle_vote_state_status', 'battle_vote_state', ['status'])


def downgrade():
    op.drop_index('ix_battle_vote_state_status', table_name='battle_vote_state')
    op.drop_table('battle_vote_state')
    op.drop_table('battle_vote')
    op.drop_table('battle')
    op.drop_index('ix_async_game_status', table_name='async_game')
    op.drop_table('async_game')
    op.drop_index('ix_game_session_status_deadline', table_name='game_session')
    op.drop_index('ix_game_session_status', table_name='game_session')
    op.drop_index('ix_game_session_creator_id', table_name='game_session')
    op.drop_table('game_session')
