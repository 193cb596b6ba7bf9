"""
Pydantic models for API request/response validation.
"""

from typing import Optional, List, Dict
from pydantic import BaseModel, Field, StrictInt, model_validator

from clubladder.services.ladder_service import ChallengeAction, VerifyAction
from clubladder.services.match_service import MatchVerifyAction


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class SignupRequest(BaseModel):
    """Account signup with an initial player profile."""

    phone_number: str
    password: str
    full_name: str
    email: Optional[str] = None
    skill_level: Optional[float] = Field(default=None, ge=1.0, le=7.0)


class LoginRequest(BaseModel):
    """Login with phone number and password."""

    phone_number: str
    password: str


class AuthResponse(BaseModel):
    """Issued access token."""

    access_token: str
    token_type: str = "bearer"
    user_id: int
    player_id: Optional[int] = None


# ---------------------------------------------------------------------------
# Players
# ---------------------------------------------------------------------------


class PlayerResponse(BaseModel):
    """Player directory entry."""

    id: int
    name: str
    rating: Optional[float] = None
    avatar: Optional[str] = None
    matches_played: int = 0
    matches_won: int = 0
    reliability_percentage: int = 0


class PlayerBatchRequest(BaseModel):
    """Lookup of several players by id."""

    player_ids: List[int] = Field(..., max_length=100)


# ---------------------------------------------------------------------------
# Scores
# ---------------------------------------------------------------------------


class SetScore(BaseModel):
    """
    One set. Values must be JSON integers: booleans, numeric strings and
    floats are rejected rather than coerced. Range checks happen in the score
    grammar so that rejections carry the rule that was broken.
    """

    team_a: StrictInt
    team_b: StrictInt


# ---------------------------------------------------------------------------
# Ladder
# ---------------------------------------------------------------------------


class RegisterTeamRequest(BaseModel):
    """Register the caller and a partner as a ladder team."""

    partner_id: int
    club_id: str
    tier: str
    team_name: Optional[str] = None


class TeamResponse(BaseModel):
    """Ladder team."""

    id: int
    club_id: str
    tier: str
    rank: int
    points: int
    status: str
    matches_played: int
    matches_won: int
    player1_id: int
    player2_id: int
    team_name: Optional[str] = None


class ChallengeCreate(BaseModel):
    """Challenge a team up to three places above."""

    defender_team_id: int
    scheduled_date: Optional[str] = None
    scheduled_time: Optional[str] = None
    venue: Optional[str] = None


class ChallengeRespondRequest(BaseModel):
    """Rescind or forfeit an accepted challenge."""

    action: ChallengeAction


class ChallengeScoreRequest(BaseModel):
    """Sets played, challenger first."""

    scores: List[SetScore]


class ChallengeVerifyRequest(BaseModel):
    """Confirm or dispute a submitted ladder score."""

    action: VerifyAction


class ChallengeResponse(BaseModel):
    """Ladder challenge."""

    id: int
    challenger_team_id: int
    defender_team_id: int
    club_id: str
    tier: str
    challenger_rank: int
    defender_rank: int
    status: str
    result: Optional[str] = None
    scores: Optional[List[SetScore]] = None
    scheduled_date: Optional[str] = None
    scheduled_time: Optional[str] = None
    venue: Optional[str] = None
    expires_at: Optional[str] = None
    submitted_by: Optional[int] = None
    completed_at: Optional[str] = None
    new_ranks: Optional[Dict[str, int]] = None
    rank_penalty_applied: Optional[bool] = None


class LadderHistoryResponse(BaseModel):
    """Completed challenge with before/after ranks."""

    id: int
    challenge_id: int
    challenger_team_id: int
    defender_team_id: int
    result: str
    old_challenger_rank: int
    new_challenger_rank: int
    old_defender_rank: int
    new_defender_rank: int
    scores: Optional[List[SetScore]] = None
    club_id: str
    tier: str
    created_at: Optional[str] = None


# ---------------------------------------------------------------------------
# Open matches
# ---------------------------------------------------------------------------


class MatchCreate(BaseModel):
    """Host a new open match."""

    max_players: int = 4
    skill_min: Optional[float] = None
    skill_max: Optional[float] = None
    match_date: Optional[str] = None
    match_time: Optional[str] = None
    venue: Optional[str] = None


class JoinRequestResponse(BaseModel):
    """Host decision on a join request."""

    accept: bool


class MatchScoreRequest(BaseModel):
    """Host-submitted result: sets (side A first) and the team split."""

    scores: List[SetScore]
    teams: Dict[str, List[int]]

    @model_validator(mode="after")
    def validate_team_keys(self):
        """Teams must be keyed exactly "A" and "B"."""
        if set(self.teams.keys()) != {"A", "B"}:
            raise ValueError('teams must contain exactly the keys "A" and "B"')
        return self


class MatchVerifyRequest(BaseModel):
    """Confirm, dispute or auto-verify a submitted open match score."""

    action: MatchVerifyAction


class MatchPlayerResponse(BaseModel):
    """Participant of an open match."""

    player_id: int
    status: str
    team: Optional[str] = None
    result_confirmed: Optional[bool] = None


class RatingUpdateResponse(BaseModel):
    """Applied rating change for one player."""

    player_id: int
    new_rating: float
    rating_change: float
    won: bool
    matches_played: int
    matches_won: int
    reliability_percentage: int


class MatchResponse(BaseModel):
    """Open match."""

    id: int
    creator_player_id: int
    max_players: int
    current_players: int
    skill_min: Optional[float] = None
    skill_max: Optional[float] = None
    match_date: Optional[str] = None
    match_time: Optional[str] = None
    venue: Optional[str] = None
    status: str
    result_status: Optional[str] = None
    scores: Optional[List[SetScore]] = None
    score_submitted_at: Optional[str] = None
    verified_by: Optional[int] = None
    players: Optional[List[MatchPlayerResponse]] = None
    ratings: Optional[List[RatingUpdateResponse]] = None


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


class NotificationResponse(BaseModel):
    """In-app notification."""

    id: int
    user_id: int
    type: str
    title: str
    message: str
    data: Optional[Dict] = None
    is_read: bool
    read_at: Optional[str] = None
    link_url: Optional[str] = None
    created_at: Optional[str] = None


class NotificationListResponse(BaseModel):
    """Paginated notifications."""

    notifications: List[NotificationResponse]
    total_count: int
    has_more: bool
