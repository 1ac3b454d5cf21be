"""create probe schema: user, game, player, turn, game_result

Revision ID: 4c2a9e7b1f03
Revises:
Create Date: 2026-10-18 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '4c2a9e7b1f03'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'user',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_user_username', 'user', ['username'], unique=True)

    op.create_table(
        'game',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('room_code', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('host_id', sa.Integer(), nullable=True),
        sa.Column('max_players', sa.Integer(), nullable=False),
        sa.Column('turn_timer_seconds', sa.Integer(), nullable=False),
        sa.Column('round_number', sa.Integer(), nullable=False),
        sa.Column('current_turn_player_id', sa.String(length=80), nullable=True),
        sa.Column('current_turn_started_at', sa.Float(), nullable=True),
        sa.Column('current_turn_card', sa.String(length=32), nullable=True),
        sa.Column('turn_card_multiplier', sa.Integer(), nullable=False),
        sa.Column('turn_card_used', sa.Boolean(), nullable=False),
        sa.Column('pending_expose_player_id', sa.String(length=80), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['host_id'], ['user.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_game_room_code', 'game', ['room_code'], unique=True)
    op.create_index('ix_game_status', 'game', ['status'], unique=False)
    op.create_index('ix_game_created_at', 'game', ['created_at'], unique=False)

    op.create_table(
        'player',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('game_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('bot_id', sa.String(length=64), nullable=True),
        sa.Column('is_bot', sa.Boolean(), nullable=False),
        sa.Column('bot_display_name', sa.String(length=64), nullable=True),
        sa.Column('bot_config', sa.Text(), nullable=True),
        sa.Column('turn_order', sa.Integer(), nullable=False),
        sa.Column('secret_word', sa.String(length=32), nullable=True),
        sa.Column('secret_word_hash', sa.String(length=64), nullable=True),
        sa.Column('padded_word', sa.String(length=32), nullable=True),
        sa.Column('front_padding', sa.Integer(), nullable=False),
        sa.Column('back_padding', sa.Integer(), nullable=False),
        sa.Column('revealed_positions', sa.Text(), nullable=False),
        sa.Column('missed_letters', sa.Text(), nullable=False),
        sa.Column('total_score', sa.Integer(), nullable=False),
        sa.Column('is_eliminated', sa.Boolean(), nullable=False),
        sa.ForeignKeyConstraint(['game_id'], ['game.id']),
        sa.ForeignKeyConstraint(['user_id'], ['user.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('game_id', 'user_id', name='uq_player_game_user'),
        sa.UniqueConstraint('game_id', 'bot_id', name='uq_player_game_bot'),
    )
    op.create_index('ix_player_game_id', 'player', ['game_id'], unique=False)

    op.create_table(
        'turn',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('game_id', sa.Integer(), nullable=False),
        sa.Column('player_id', sa.String(length=80), nullable=False),
        sa.Column('target_player_id', sa.String(length=80), nullable=False),
        sa.Column('guessed_letter', sa.String(length=64), nullable=False),
        sa.Column('is_correct', sa.Boolean(), nullable=False),
        sa.Column('positions_revealed', sa.Text(), nullable=False),
        sa.Column('points_scored', sa.Integer(), nullable=False),
        sa.Column('turn_number', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['game_id'], ['game.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_turn_game_id', 'turn', ['game_id'], unique=False)

    op.create_table(
        'game_result',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('game_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('final_score', sa.Integer(), nullable=False),
        sa.Column('placement', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['game_id'], ['game.id']),
        sa.ForeignKeyConstraint(['user_id'], ['user.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_game_result_game_id', 'game_result', ['game_id'], unique=False)


def downgrade():
    op.drop_index('ix_game_result_game_id', table_name='game_result')
    op.drop_table('game_result')
    op.drop_index('ix_turn_game_id', table_name='turn')
    op.drop_table('turn')
    op.drop_index('ix_player_game_id', table_name='player')
    op.drop_table('player')
    op.drop_index('ix_game_created_at', table_name='game')
    op.drop_index('ix_game_status', table_name='game')
    op.drop_index('ix_game_room_code', table_name='game')
    op.drop_table('game')
    op.drop_index('ix_user_username', table_name='user')
    op.drop_table('user')
