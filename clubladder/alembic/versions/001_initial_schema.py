"""001_initial_schema

Revision ID: 001
Revises:
Create Date: 2026-10-17 09:00:00.000000

Initial schema for the club ladder and open-match system:
- Accounts: users, players (with skill_level / reliability rating record)
- Ladder: ladder_teams, ladder_challenges, ladder_history
- Open matches: matches, match_players
- notifications
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql
from sqlalchemy import text

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _table_exists(conn, table_name: str) -> bool:
    """Check if a table exists."""
    result = conn.execute(text(
        "SELECT EXISTS (SELECT FROM information_schema.tables WHERE table_name = :table_name)"
    ), {"table_name": table_name})
    return result.scalar()


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
    ]


def upgrade() -> None:
    conn = op.get_bind()

    if not _table_exists(conn, 'users'):
        op.create_table(
            'users',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('phone_number', sa.String(), nullable=False),
            sa.Column('password_hash', sa.String(), nullable=False),
            sa.Column('email', sa.String(), nullable=True),
            sa.Column('is_verified', sa.Boolean(), nullable=False, server_default=sa.text('true')),
            *_timestamps(),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('phone_number'),
        )
        op.create_index('idx_users_phone', 'users', ['phone_number'])

    if not _table_exists(conn, 'players'):
        op.create_table(
            'players',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('full_name', sa.String(), nullable=False),
            sa.Column('user_id', sa.Integer(), nullable=True),
            sa.Column('avatar', sa.String(), nullable=True),
            sa.Column('skill_level', sa.Float(), nullable=False, server_default='2.5'),
            sa.Column('matches_played', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('matches_won', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('reliability_percentage', sa.Integer(), nullable=False, server_default='0'),
            *_timestamps(),
            sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
            sa.PrimaryKeyConstraint('id'),
            sa.CheckConstraint('skill_level >= 1.0 AND skill_level <= 7.0', name='ck_players_skill_level'),
            sa.CheckConstraint(
                'reliability_percentage >= 0 AND reliability_percentage <= 100',
                name='ck_players_reliability',
            ),
        )
        op.create_index('idx_players_name', 'players', ['full_name'])
        op.create_index('idx_players_user', 'players', ['user_id'])

    if not _table_exists(conn, 'ladder_teams'):
        op.create_table(
            'ladder_teams',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('club_id', sa.String(length=50), nullable=False),
            sa.Column('tier', sa.String(length=50), nullable=False),
            sa.Column('rank', sa.Integer(), nullable=False),
            sa.Column('points', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('status', sa.String(length=20), nullable=False, server_default='active'),
            sa.Column('matches_played', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('matches_won', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('player1_id', sa.Integer(), nullable=False),
            sa.Column('player2_id', sa.Integer(), nullable=False),
            sa.Column('team_name', sa.String(), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(['player1_id'], ['players.id'], ),
            sa.ForeignKeyConstraint(['player2_id'], ['players.id'], ),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('club_id', 'tier', 'rank', name='uq_ladder_teams_pool_rank'),
            sa.CheckConstraint('player1_id <> player2_id', name='ck_ladder_teams_distinct_players'),
        )
        op.create_index('idx_ladder_teams_pool', 'ladder_teams', ['club_id', 'tier'])
        op.create_index('idx_ladder_teams_player1', 'ladder_teams', ['player1_id'])
        op.create_index('idx_ladder_teams_player2', 'ladder_teams', ['player2_id'])

    if not _table_exists(conn, 'ladder_challenges'):
        op.create_table(
            'ladder_challenges',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('challenger_team_id', sa.Integer(), nullable=False),
            sa.Column('defender_team_id', sa.Integer(), nullable=False),
            sa.Column('club_id', sa.String(length=50), nullable=False),
            sa.Column('tier', sa.String(length=50), nullable=False),
            sa.Column('challenger_rank', sa.Integer(), nullable=False),
            sa.Column('defender_rank', sa.Integer(), nullable=False),
            sa.Column('status', sa.String(length=30), nullable=False, server_default='pending'),
            sa.Column('result', sa.String(length=20), nullable=True),
            sa.Column('scores', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
            sa.Column('scheduled_date', sa.String(), nullable=True),
            sa.Column('scheduled_time', sa.String(), nullable=True),
            sa.Column('venue', sa.String(), nullable=True),
            sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('submitted_by', sa.Integer(), nullable=True),
            sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(['challenger_team_id'], ['ladder_teams.id'], ),
            sa.ForeignKeyConstraint(['defender_team_id'], ['ladder_teams.id'], ),
            sa.ForeignKeyConstraint(['submitted_by'], ['players.id'], ),
            sa.PrimaryKeyConstraint('id'),
            sa.CheckConstraint(
                'challenger_team_id <> defender_team_id', name='ck_ladder_challenges_distinct_teams'
            ),
        )
        op.create_index(
            'idx_ladder_challenges_challenger', 'ladder_challenges', ['challenger_team_id', 'status']
        )
        op.create_index(
            'idx_ladder_challenges_defender', 'ladder_challenges', ['defender_team_id', 'status']
        )
        op.create_index('idx_ladder_challenges_pool', 'ladder_challenges', ['club_id', 'tier'])

    if not _table_exists(conn, 'ladder_history'):
        op.create_table(
            'ladder_history',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('challenge_id', sa.Integer(), nullable=False),
            sa.Column('challenger_team_id', sa.Integer(), nullable=False),
            sa.Column('defender_team_id', sa.Integer(), nullable=False),
            sa.Column('result', sa.String(length=20), nullable=False),
            sa.Column('old_challenger_rank', sa.Integer(), nullable=False),
            sa.Column('new_challenger_rank', sa.Integer(), nullable=False),
            sa.Column('old_defender_rank', sa.Integer(), nullable=False),
            sa.Column('new_defender_rank', sa.Integer(), nullable=False),
            sa.Column('scores', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
            sa.Column('club_id', sa.String(length=50), nullable=False),
            sa.Column('tier', sa.String(length=50), nullable=False),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
            sa.ForeignKeyConstraint(['challenge_id'], ['ladder_challenges.id'], ),
            sa.ForeignKeyConstraint(['challenger_team_id'], ['ladder_teams.id'], ),
            sa.ForeignKeyConstraint(['defender_team_id'], ['ladder_teams.id'], ),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('challenge_id'),
        )
        op.create_index(
            'idx_ladder_history_pool', 'ladder_history', ['club_id', 'tier', 'created_at']
        )

    if not _table_exists(conn, 'matches'):
        op.create_table(
            'matches',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('creator_player_id', sa.Integer(), nullable=False),
            sa.Column('max_players', sa.Integer(), nullable=False, server_default='4'),
            sa.Column('current_players', sa.Integer(), nullable=False, server_default='1'),
            sa.Column('skill_min', sa.Float(), nullable=True),
            sa.Column('skill_max', sa.Float(), nullable=True),
            sa.Column('match_date', sa.String(), nullable=True),
            sa.Column('match_time', sa.String(), nullable=True),
            sa.Column('venue', sa.String(), nullable=True),
            sa.Column('status', sa.String(length=20), nullable=False, server_default='open'),
            sa.Column('result_status', sa.String(length=30), nullable=True),
            sa.Column('scores', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
            sa.Column('score_submitted_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('verified_by', sa.Integer(), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(['creator_player_id'], ['players.id'], ),
            sa.ForeignKeyConstraint(['verified_by'], ['players.id'], ),
            sa.PrimaryKeyConstraint('id'),
        )
        op.create_index('idx_matches_status', 'matches', ['status'])
        op.create_index(
            'idx_matches_result_status', 'matches', ['result_status', 'score_submitted_at']
        )
        op.create_index('idx_matches_creator', 'matches', ['creator_player_id'])

    if not _table_exists(conn, 'match_players'):
        op.create_table(
            'match_players',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('match_id', sa.Integer(), nullable=False),
            sa.Column('player_id', sa.Integer(), nullable=False),
            sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
            sa.Column('team', sa.String(length=1), nullable=True),
            sa.Column('result_confirmed', sa.Boolean(), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
            sa.ForeignKeyConstraint(['match_id'], ['matches.id'], ondelete='CASCADE'),
            sa.ForeignKeyConstraint(['player_id'], ['players.id'], ),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('match_id', 'player_id', name='uq_match_players_match_player'),
        )
        op.create_index('idx_match_players_player', 'match_players', ['player_id'])

    if not _table_exists(conn, 'notifications'):
        op.create_table(
            'notifications',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('user_id', sa.Integer(), nullable=False),
            sa.Column('type', sa.String(), nullable=False),
            sa.Column('title', sa.String(length=255), nullable=False),
            sa.Column('message', sa.Text(), nullable=False),
            sa.Column('data', sa.Text(), nullable=True),
            sa.Column('is_read', sa.Boolean(), nullable=False, server_default=sa.text('false')),
            sa.Column('read_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('link_url', sa.String(length=500), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
            sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
            sa.PrimaryKeyConstraint('id'),
        )
        op.create_index(
            'idx_notifications_user_unread', 'notifications', ['user_id', 'is_read', 'created_at']
        )
        op.create_index(
            'idx_notifications_user_created', 'notifications', ['user_id', 'created_at']
        )


def downgrade() -> None:
    """Drop all tables in reverse dependency order."""
    for table_name in (
        'notifications',
        'match_players',
        'matches',
        'ladder_history',
        'ladder_challenges',
        'ladder_teams',
        'players',
        'users',
    ):
        op.drop_table(table_name)
