"""
SQLAlchemy ORM models for the club ladder and open-match rating system.
"""

import enum
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    Boolean,
    Float,
    DateTime,
    JSON,
    ForeignKey,
    UniqueConstraint,
    CheckConstraint,
    Index,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from clubladder.database.db import Base
from clubladder.utils.constants import DEFAULT_SKILL_LEVEL, DEFAULT_MAX_PLAYERS

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite test databases)
ScoresType = JSON().with_variant(JSONB(), "postgresql")


class TeamStatus(str, enum.Enum):
    """Ladder team status enum."""

    ACTIVE = "active"
    CHALLENGING = "challenging"
    DEFENDING = "defending"


class ChallengeStatus(str, enum.Enum):
    """Ladder challenge lifecycle."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    PENDING_VERIFICATION = "pending_verification"
    COMPLETED = "completed"
    DISPUTED = "disputed"
    DECLINED = "declined"


class ChallengeResult(str, enum.Enum):
    """Outcome of a ladder challenge."""

    CHALLENGER_WON = "challenger_won"
    DEFENDER_WON = "defender_won"


class MatchStatus(str, enum.Enum):
    """Open match membership status."""

    OPEN = "open"
    FULL = "full"
    COMPLETED = "completed"


class ResultStatus(str, enum.Enum):
    """Open match result verification status."""

    PENDING_VERIFICATION = "pending_verification"
    VERIFIED = "verified"
    DISPUTED = "disputed"


class ParticipantStatus(str, enum.Enum):
    """Open match participant status."""

    PENDING = "pending"
    ACCEPTED = "accepted"


class MatchTeam(str, enum.Enum):
    """Side of an open match."""

    A = "A"
    B = "B"


class NotificationType(str, enum.Enum):
    """Notification type enum."""

    CHALLENGE_RECEIVED = "challenge_received"
    CHALLENGE_ACCEPTED = "challenge_accepted"
    CHALLENGE_DECLINED = "challenge_declined"
    CHALLENGE_RESCINDED = "challenge_rescinded"
    CHALLENGE_FORFEITED = "challenge_forfeited"
    CHALLENGE_EXPIRED = "challenge_expired"
    LADDER_SCORE_SUBMITTED = "ladder_score_submitted"
    LADDER_SCORE_CONFIRMED = "ladder_score_confirmed"
    LADDER_SCORE_DISPUTED = "ladder_score_disputed"
    MATCH_JOIN_REQUEST = "match_join_request"
    MATCH_JOIN_ACCEPTED = "match_join_accepted"
    MATCH_SCORE_SUBMITTED = "match_score_submitted"
    MATCH_SCORE_VERIFIED = "match_score_verified"
    MATCH_SCORE_DISPUTED = "match_score_disputed"


class User(Base):
    """User accounts with phone-based authentication."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    phone_number = Column(String, nullable=False, unique=True)
    password_hash = Column(String, nullable=False)
    email = Column(String, nullable=True)
    is_verified = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    players = relationship("Player", back_populates="user")

    __table_args__ = (Index("idx_users_phone", "phone_number"),)


class Player(Base):
    """Player profiles, including the open-match rating record."""

    __tablename__ = "players"

    id = Column(Integer, primary_key=True, autoincrement=True)
    full_name = Column(String, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    avatar = Column(String, nullable=True)  # Initials (e.g., "JD") or image URL
    skill_level = Column(Float, default=DEFAULT_SKILL_LEVEL, nullable=False)  # 1.0 - 7.0
    matches_played = Column(Integer, default=0, nullable=False)
    matches_won = Column(Integer, default=0, nullable=False)
    reliability_percentage = Column(Integer, default=0, nullable=False)  # 0 - 100
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    user = relationship("User", back_populates="players")

    __table_args__ = (
        CheckConstraint("skill_level >= 1.0 AND skill_level <= 7.0", name="ck_players_skill_level"),
        CheckConstraint(
            "reliability_percentage >= 0 AND reliability_percentage <= 100",
            name="ck_players_reliability",
        ),
        Index("idx_players_name", "full_name"),
        Index("idx_players_user", "user_id"),
    )


class LadderTeam(Base):
    """Two-player team holding a rank within a (club, tier) pool."""

    __tablename__ = "ladder_teams"

    id = Column(Integer, primary_key=True, autoincrement=True)
    club_id = Column(String(50), nullable=False)
    tier = Column(String(50), nullable=False)
    rank = Column(Integer, nullable=False)  # 1 = best, unique within the pool
    points = Column(Integer, default=0, nullable=False)
    status = Column(String(20), default=TeamStatus.ACTIVE.value, nullable=False)
    matches_played = Column(Integer, default=0, nullable=False)
    matches_won = Column(Integer, default=0, nullable=False)
    player1_id = Column(Integer, ForeignKey("players.id"), nullable=False)
    player2_id = Column(Integer, ForeignKey("players.id"), nullable=False)
    team_name = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    player1 = relationship("Player", foreign_keys=[player1_id])
    player2 = relationship("Player", foreign_keys=[player2_id])

    __table_args__ = (
        UniqueConstraint("club_id", "tier", "rank", name="uq_ladder_teams_pool_rank"),
        CheckConstraint("player1_id <> player2_id", name="ck_ladder_teams_distinct_players"),
        Index("idx_ladder_teams_pool", "club_id", "tier"),
        Index("idx_ladder_teams_player1", "player1_id"),
        Index("idx_ladder_teams_player2", "player2_id"),
    )


class LadderChallenge(Base):
    """A lower-ranked team's challenge against a team up to three places above it."""

    __tablename__ = "ladder_challenges"

    id = Column(Integer, primary_key=True, autoincrement=True)
    challenger_team_id = Column(Integer, ForeignKey("ladder_teams.id"), nullable=False)
    defender_team_id = Column(Integer, ForeignKey("ladder_teams.id"), nullable=False)
    club_id = Column(String(50), nullable=False)
    tier = Column(String(50), nullable=False)
    challenger_rank = Column(Integer, nullable=False)  # Snapshot at creation
    defender_rank = Column(Integer, nullable=False)  # Snapshot at creation
    status = Column(String(30), default=ChallengeStatus.PENDING.value, nullable=False)
    result = Column(String(20), nullable=True)  # ChallengeResult value
    scores = Column(ScoresType, nullable=True)  # [{"team_a": 6, "team_b": 3}, ...], team_a = challenger
    scheduled_date = Column(String, nullable=True)
    scheduled_time = Column(String, nullable=True)
    venue = Column(String, nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    submitted_by = Column(Integer, ForeignKey("players.id"), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    challenger_team = relationship("LadderTeam", foreign_keys=[challenger_team_id])
    defender_team = relationship("LadderTeam", foreign_keys=[defender_team_id])

    __table_args__ = (
        CheckConstraint(
            "challenger_team_id <> defender_team_id", name="ck_ladder_challenges_distinct_teams"
        ),
        Index("idx_ladder_challenges_challenger", "challenger_team_id", "status"),
        Index("idx_ladder_challenges_defender", "defender_team_id", "status"),
        Index("idx_ladder_challenges_pool", "club_id", "tier"),
    )


class LadderHistory(Base):
    """Append-only record of completed challenges with before/after ranks."""

    __tablename__ = "ladder_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    challenge_id = Column(Integer, ForeignKey("ladder_challenges.id"), nullable=False, unique=True)
    challenger_team_id = Column(Integer, ForeignKey("ladder_teams.id"), nullable=False)
    defender_team_id = Column(Integer, ForeignKey("ladder_teams.id"), nullable=False)
    result = Column(String(20), nullable=False)
    old_challenger_rank = Column(Integer, nullable=False)
    new_challenger_rank = Column(Integer, nullable=False)
    old_defender_rank = Column(Integer, nullable=False)
    new_defender_rank = Column(Integer, nullable=False)
    scores = Column(ScoresType, nullable=True)
    club_id = Column(String(50), nullable=False)
    tier = Column(String(50), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (Index("idx_ladder_history_pool", "club_id", "tier", "created_at"),)


class OpenMatch(Base):
    """Ad-hoc 2v2 match hosted by a player."""

    __tablename__ = "matches"

    id = Column(Integer, primary_key=True, autoincrement=True)
    creator_player_id = Column(Integer, ForeignKey("players.id"), nullable=False)  # Host
    max_players = Column(Integer, default=DEFAULT_MAX_PLAYERS, nullable=False)
    current_players = Column(Integer, default=1, nullable=False)
    skill_min = Column(Float, nullable=True)
    skill_max = Column(Float, nullable=True)
    match_date = Column(String, nullable=True)
    match_time = Column(String, nullable=True)
    venue = Column(String, nullable=True)
    status = Column(String(20), default=MatchStatus.OPEN.value, nullable=False)
    result_status = Column(String(30), nullable=True)  # ResultStatus value
    scores = Column(ScoresType, nullable=True)  # team_a = side "A"
    score_submitted_at = Column(DateTime(timezone=True), nullable=True)
    verified_by = Column(Integer, ForeignKey("players.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    host = relationship("Player", foreign_keys=[creator_player_id])
    participants = relationship(
        "MatchParticipant", back_populates="match", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("idx_matches_status", "status"),
        Index("idx_matches_result_status", "result_status", "score_submitted_at"),
        Index("idx_matches_creator", "creator_player_id"),
    )


class MatchParticipant(Base):
    """Join table (OpenMatch ↔ Player) with team letter and result response."""

    __tablename__ = "match_players"

    id = Column(Integer, primary_key=True, autoincrement=True)
    match_id = Column(Integer, ForeignKey("matches.id", ondelete="CASCADE"), nullable=False)
    player_id = Column(Integer, ForeignKey("players.id"), nullable=False)
    status = Column(String(20), default=ParticipantStatus.PENDING.value, nullable=False)
    team = Column(String(1), nullable=True)  # "A" / "B" once the score is submitted
    result_confirmed = Column(Boolean, nullable=True)  # None until the player responds
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    match = relationship("OpenMatch", back_populates="participants")
    player = relationship("Player")

    __table_args__ = (
        UniqueConstraint("match_id", "player_id", name="uq_match_players_match_player"),
        Index("idx_match_players_player", "player_id"),
    )


class Notification(Base):
    """User notifications for in-app messaging."""

    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    type = Column(String, nullable=False)  # NotificationType enum value
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    data = Column(
        Text, nullable=True
    )  # JSON string for flexible metadata (challenge_id, match_id, etc.)
    is_read = Column(Boolean, default=False, nullable=False)
    read_at = Column(DateTime(timezone=True), nullable=True)
    link_url = Column(String(500), nullable=True)  # Navigation target
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    user = relationship("User", backref="notifications")

    __table_args__ = (
        Index("idx_notifications_user_unread", "user_id", "is_read", "created_at"),
        Index("idx_notifications_user_created", "user_id", "created_at"),
    )
