"""
Ladder service: team registration and the challenge state machine.

Challenge lifecycle::

    pending --accept--> accepted --submit_score--> pending_verification
       |                   |                            |
    decline/expire      rescind -> declined          confirm -> completed
       v                forfeit -> completed         dispute -> disputed
    declined

Every transition locks the challenge row first, then the pool's rank range
spanning both teams (plus the team below the challenger) in rank order, the
same order rank rotation uses, and checks the current status under the lock.
A transition attempted
from any other status raises InvalidStateError naming that status, so a
retried request never applies points or rank moves twice.
"""

import enum
import logging
from datetime import timedelta
from typing import Callable, Dict, List, Optional

from sqlalchemy import select, or_, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from clubladder.database.models import (
    LadderTeam,
    LadderChallenge,
    LadderHistory,
    Player,
    TeamStatus,
    ChallengeStatus,
    ChallengeResult,
    NotificationType,
)
from clubladder.services import notification_service, player_service, rank_rotation
from clubladder.services.exceptions import (
    AuthorizationError,
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from clubladder.services.score_validation import validate_ladder_scores, team_a_won
from clubladder.utils.constants import (
    LADDER_CLUBS,
    MAX_CHALLENGE_RANK_GAP,
    CHALLENGE_EXPIRY_DAYS,
    CHALLENGER_WIN_POINTS,
    DEFENDER_WIN_POINTS,
    FORFEIT_SET_GAMES,
)
from clubladder.utils.datetime_utils import utcnow, ensure_utc, isoformat_or_none

logger = logging.getLogger(__name__)

# Challenge statuses that keep both teams busy
OPEN_CHALLENGE_STATUSES = (
    ChallengeStatus.PENDING.value,
    ChallengeStatus.ACCEPTED.value,
    ChallengeStatus.PENDING_VERIFICATION.value,
)


class DefenderAnswer(str, enum.Enum):
    """Defender's answer to a pending challenge."""

    ACCEPT = "accept"
    DECLINE = "decline"


class ChallengeAction(str, enum.Enum):
    """Ways out of an accepted challenge before a score is played."""

    RESCIND = "rescind"
    FORFEIT = "forfeit"


class VerifyAction(str, enum.Enum):
    """Response to a submitted ladder score."""

    CONFIRM = "confirm"
    DISPUTE = "dispute"


class ChallengeSide(str, enum.Enum):
    CHALLENGER = "challenger"
    DEFENDER = "defender"


class ChallengeContext:
    """A challenge with both teams locked, plus the caller's side."""

    def __init__(
        self,
        challenge: LadderChallenge,
        challenger: LadderTeam,
        defender: LadderTeam,
        player_id: Optional[int],
        side: Optional[ChallengeSide],
    ):
        self.challenge = challenge
        self.challenger = challenger
        self.defender = defender
        self.player_id = player_id
        self.side = side

    def opponent_player_ids(self) -> List[int]:
        team = self.defender if self.side == ChallengeSide.CHALLENGER else self.challenger
        return team_player_ids(team)

    def all_player_ids(self) -> List[int]:
        return team_player_ids(self.challenger) + team_player_ids(self.defender)


# ============================================================================
# Serialization
# ============================================================================

def team_player_ids(team: LadderTeam) -> List[int]:
    return [team.player1_id, team.player2_id]


def team_to_dict(team: LadderTeam) -> Dict:
    return {
        "id": team.id,
        "club_id": team.club_id,
        "tier": team.tier,
        "rank": team.rank,
        "points": team.points,
        "status": team.status,
        "matches_played": team.matches_played,
        "matches_won": team.matches_won,
        "player1_id": team.player1_id,
        "player2_id": team.player2_id,
        "team_name": team.team_name,
    }


def challenge_to_dict(challenge: LadderChallenge) -> Dict:
    return {
        "id": challenge.id,
        "challenger_team_id": challenge.challenger_team_id,
        "defender_team_id": challenge.defender_team_id,
        "club_id": challenge.club_id,
        "tier": challenge.tier,
        "challenger_rank": challenge.challenger_rank,
        "defender_rank": challenge.defender_rank,
        "status": challenge.status,
        "result": challenge.result,
        "scores": challenge.scores,
        "scheduled_date": challenge.scheduled_date,
        "scheduled_time": challenge.scheduled_time,
        "venue": challenge.venue,
        "expires_at": isoformat_or_none(ensure_utc(challenge.expires_at)),
        "submitted_by": challenge.submitted_by,
        "completed_at": isoformat_or_none(ensure_utc(challenge.completed_at)),
    }


def history_to_dict(entry: LadderHistory) -> Dict:
    return {
        "id": entry.id,
        "challenge_id": entry.challenge_id,
        "challenger_team_id": entry.challenger_team_id,
        "defender_team_id": entry.defender_team_id,
        "result": entry.result,
        "old_challenger_rank": entry.old_challenger_rank,
        "new_challenger_rank": entry.new_challenger_rank,
        "old_defender_rank": entry.old_defender_rank,
        "new_defender_rank": entry.new_defender_rank,
        "scores": entry.scores,
        "club_id": entry.club_id,
        "tier": entry.tier,
        "created_at": isoformat_or_none(ensure_utc(entry.created_at)),
    }


# ============================================================================
# Lookups and locking
# ============================================================================

def validate_pool(club_id: str, tier: str) -> None:
    """Raise NotFoundError unless (club_id, tier) is a configured ladder pool."""
    club = LADDER_CLUBS.get(club_id)
    if club is None:
        raise NotFoundError(f"Club '{club_id}' does not run a ladder")
    if tier not in club["tiers"]:
        raise NotFoundError(f"Tier '{tier}' not found for club '{club_id}'")


async def get_team_for_player(
    session: AsyncSession, player_id: int, club_id: str, tier: str
) -> Optional[LadderTeam]:
    """Get the team a player belongs to within a pool."""
    result = await session.execute(
        select(LadderTeam).where(
            LadderTeam.club_id == club_id,
            LadderTeam.tier == tier,
            or_(LadderTeam.player1_id == player_id, LadderTeam.player2_id == player_id),
        )
    )
    return result.scalar_one_or_none()


async def _lock_challenge(session: AsyncSession, challenge_id: int) -> LadderChallenge:
    result = await rank_rotation.execute_for_update(
        session,
        select(LadderChallenge)
        .where(LadderChallenge.id == challenge_id)
        .with_for_update()
        .execution_options(populate_existing=True),
    )
    challenge = result.scalar_one_or_none()
    if challenge is None:
        raise NotFoundError("Challenge not found")
    return challenge


async def _load_context(
    session: AsyncSession, challenge_id: int, player_id: Optional[int]
) -> ChallengeContext:
    """
    Lock a challenge and its two teams and work out which side the caller is on.

    A ``player_id`` of None is a system caller (expiry sweep) and skips the
    participant check.

    Raises:
        NotFoundError: If the challenge does not exist
        AuthorizationError: If the caller is on neither team
    """
    challenge = await _lock_challenge(session, challenge_id)
    teams = await rank_rotation.lock_pool_teams(
        session,
        challenge.club_id,
        challenge.tier,
        challenge.challenger_team_id,
        challenge.defender_team_id,
    )
    challenger = teams[challenge.challenger_team_id]
    defender = teams[challenge.defender_team_id]

    side = None
    if player_id is not None:
        if player_id in team_player_ids(challenger):
            side = ChallengeSide.CHALLENGER
        elif player_id in team_player_ids(defender):
            side = ChallengeSide.DEFENDER
        else:
            raise AuthorizationError("You are not a participant in this challenge")

    return ChallengeContext(challenge, challenger, defender, player_id, side)


def _require_status(challenge: LadderChallenge, expected: ChallengeStatus, message: str) -> None:
    if challenge.status != expected.value:
        raise InvalidStateError(message, current_state=challenge.status)


def _release_teams(ctx: ChallengeContext) -> None:
    ctx.challenger.status = TeamStatus.ACTIVE.value
    ctx.defender.status = TeamStatus.ACTIVE.value


async def _has_open_challenge(session: AsyncSession, team_id: int) -> bool:
    result = await session.execute(
        select(LadderChallenge.id)
        .where(
            or_(
                LadderChallenge.challenger_team_id == team_id,
                LadderChallenge.defender_team_id == team_id,
            ),
            LadderChallenge.status.in_(OPEN_CHALLENGE_STATUSES),
        )
        .limit(1)
    )
    return result.scalar_one_or_none() is not None


async def _last_completed_opponent(session: AsyncSession, team_id: int) -> Optional[int]:
    """Opponent of the team's most recent completed challenge."""
    result = await session.execute(
        select(LadderChallenge)
        .where(
            or_(
                LadderChallenge.challenger_team_id == team_id,
                LadderChallenge.defender_team_id == team_id,
            ),
            LadderChallenge.status == ChallengeStatus.COMPLETED.value,
        )
        .order_by(LadderChallenge.completed_at.desc(), LadderChallenge.id.desc())
        .limit(1)
    )
    last = result.scalar_one_or_none()
    if last is None:
        return None
    if last.challenger_team_id == team_id:
        return last.defender_team_id
    return last.challenger_team_id


# ============================================================================
# Teams and standings
# ============================================================================

async def register_team(
    session: AsyncSession,
    player_id: int,
    partner_id: int,
    club_id: str,
    tier: str,
    team_name: Optional[str] = None,
) -> Dict:
    """
    Register a two-player team at the bottom of a ladder pool.

    Args:
        session: Database session
        player_id: Registering player
        partner_id: Partner player
        club_id: Club running the ladder
        tier: Tier within the club
        team_name: Optional display name; defaults to "<first> & <first>"

    Returns:
        Dict with the new team

    Raises:
        NotFoundError: Unknown pool or player
        ValidationError: Player tried to partner with themselves
        ConflictError: Either player is already on a team in this pool
    """
    validate_pool(club_id, tier)
    if player_id == partner_id:
        raise ValidationError("You cannot partner with yourself")

    player = await session.get(Player, player_id)
    partner = await session.get(Player, partner_id)
    if player is None:
        raise NotFoundError("Player not found")
    if partner is None:
        raise NotFoundError("Partner not found")

    for member in (player, partner):
        if await get_team_for_player(session, member.id, club_id, tier) is not None:
            raise ConflictError(f"{member.full_name} is already on a team in this ladder")

    team = LadderTeam(
        club_id=club_id,
        tier=tier,
        rank=await rank_rotation.next_rank(session, club_id, tier),
        points=0,
        status=TeamStatus.ACTIVE.value,
        matches_played=0,
        matches_won=0,
        player1_id=player.id,
        player2_id=partner.id,
        team_name=team_name or f"{player_service.first_name(player)} & {player_service.first_name(partner)}",
    )
    session.add(team)
    try:
        await session.flush()
    except IntegrityError as e:
        logger.warning(f"Concurrent registration in {club_id}/{tier}: {e}")
        raise ConflictError("Another team registered at the same time; please retry")

    logger.info(f"Registered team {team.id} at rank {team.rank} in {club_id}/{tier}")
    return team_to_dict(team)


async def get_standings(session: AsyncSession, club_id: str, tier: str) -> List[Dict]:
    """Teams of a pool ordered by rank."""
    validate_pool(club_id, tier)
    result = await session.execute(
        select(LadderTeam)
        .where(LadderTeam.club_id == club_id, LadderTeam.tier == tier)
        .order_by(LadderTeam.rank)
    )
    return [team_to_dict(t) for t in result.scalars().all()]


async def get_challenge(session: AsyncSession, challenge_id: int) -> Dict:
    challenge = await session.get(LadderChallenge, challenge_id)
    if challenge is None:
        raise NotFoundError("Challenge not found")
    return challenge_to_dict(challenge)


async def get_history(
    session: AsyncSession, club_id: str, tier: str, limit: int = 50, offset: int = 0
) -> List[Dict]:
    """Completed challenges of a pool, newest first."""
    validate_pool(club_id, tier)
    result = await session.execute(
        select(LadderHistory)
        .where(LadderHistory.club_id == club_id, LadderHistory.tier == tier)
        .order_by(LadderHistory.created_at.desc(), LadderHistory.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return [history_to_dict(h) for h in result.scalars().all()]


# ============================================================================
# Creation
# ============================================================================

async def create_challenge(
    session: AsyncSession,
    player_id: int,
    defender_team_id: int,
    scheduled_date: Optional[str] = None,
    scheduled_time: Optional[str] = None,
    venue: Optional[str] = None,
) -> Dict:
    """
    Issue a challenge from the caller's team to a team 1-3 places above it.

    Both team rows are locked before their statuses are checked, so two
    concurrent challenges can never claim the same team.

    Raises:
        NotFoundError: Defender missing, or caller has no team in its pool
        InvalidStateError: Either team is already in a challenge
        ValidationError: Rank gap outside [1, 3], or a rematch of the last challenge
    """
    defender = await session.get(LadderTeam, defender_team_id)
    if defender is None:
        raise NotFoundError("Defending team not found")

    challenger = await get_team_for_player(session, player_id, defender.club_id, defender.tier)
    if challenger is None:
        raise NotFoundError("You do not have a team in this ladder")
    if challenger.id == defender.id:
        raise ValidationError("A team cannot challenge itself")

    teams = await rank_rotation.lock_pool_teams(
        session, defender.club_id, defender.tier, challenger.id, defender.id
    )
    challenger = teams[challenger.id]
    defender = teams[defender.id]

    if challenger.status != TeamStatus.ACTIVE.value or await _has_open_challenge(session, challenger.id):
        raise InvalidStateError("Your team is already in a challenge", current_state=challenger.status)
    if defender.status != TeamStatus.ACTIVE.value or await _has_open_challenge(session, defender.id):
        raise InvalidStateError("Defending team is already in a challenge", current_state=defender.status)

    gap = challenger.rank - defender.rank
    if gap < 1 or gap > MAX_CHALLENGE_RANK_GAP:
        raise ValidationError(
            f"You can only challenge teams ranked 1-{MAX_CHALLENGE_RANK_GAP} places above you"
        )

    if await _last_completed_opponent(session, challenger.id) == defender.id:
        raise ValidationError("You cannot challenge the same team twice in a row")

    challenge = LadderChallenge(
        challenger_team_id=challenger.id,
        defender_team_id=defender.id,
        club_id=challenger.club_id,
        tier=challenger.tier,
        challenger_rank=challenger.rank,
        defender_rank=defender.rank,
        status=ChallengeStatus.PENDING.value,
        scheduled_date=scheduled_date,
        scheduled_time=scheduled_time,
        venue=venue,
        expires_at=utcnow() + timedelta(days=CHALLENGE_EXPIRY_DAYS),
    )
    session.add(challenge)
    challenger.status = TeamStatus.CHALLENGING.value
    defender.status = TeamStatus.DEFENDING.value
    await session.flush()

    logger.info(
        f"Challenge {challenge.id}: team {challenger.id} (#{challenger.rank}) -> "
        f"team {defender.id} (#{defender.rank}) in {challenge.club_id}/{challenge.tier}"
    )

    await notification_service.notify_players(
        session,
        team_player_ids(defender),
        NotificationType.CHALLENGE_RECEIVED.value,
        "New ladder challenge",
        f"{challenger.team_name} (#{challenger.rank}) challenged your team",
        data={"challenge_id": challenge.id},
    )

    return challenge_to_dict(challenge)


# ============================================================================
# Defender response (pending -> accepted / declined)
# ============================================================================

async def _accept(session: AsyncSession, ctx: ChallengeContext) -> Dict:
    ctx.challenge.status = ChallengeStatus.ACCEPTED.value
    await session.flush()
    logger.info(f"Challenge {ctx.challenge.id} accepted")
    await notification_service.notify_players(
        session,
        team_player_ids(ctx.challenger),
        NotificationType.CHALLENGE_ACCEPTED.value,
        "Challenge accepted",
        f"{ctx.defender.team_name} accepted your challenge",
        data={"challenge_id": ctx.challenge.id},
    )
    return challenge_to_dict(ctx.challenge)


async def _decline(session: AsyncSession, ctx: ChallengeContext) -> Dict:
    ctx.challenge.status = ChallengeStatus.DECLINED.value
    _release_teams(ctx)
    await session.flush()
    logger.info(f"Challenge {ctx.challenge.id} declined")
    await notification_service.notify_players(
        session,
        team_player_ids(ctx.challenger),
        NotificationType.CHALLENGE_DECLINED.value,
        "Challenge declined",
        f"{ctx.defender.team_name} declined your challenge",
        data={"challenge_id": ctx.challenge.id},
    )
    return challenge_to_dict(ctx.challenge)


ANSWER_HANDLERS: Dict[DefenderAnswer, Callable] = {
    DefenderAnswer.ACCEPT: _accept,
    DefenderAnswer.DECLINE: _decline,
}


async def answer_challenge(
    session: AsyncSession, challenge_id: int, player_id: int, answer: DefenderAnswer
) -> Dict:
    """
    Defender accepts or declines a pending challenge.

    Raises:
        NotFoundError, AuthorizationError (not the defending team),
        InvalidStateError (not pending, or expired)
    """
    ctx = await _load_context(session, challenge_id, player_id)
    if ctx.side != ChallengeSide.DEFENDER:
        raise AuthorizationError("Only the defending team can respond")
    _require_status(ctx.challenge, ChallengeStatus.PENDING, "Challenge is no longer pending")

    expires_at = ensure_utc(ctx.challenge.expires_at)
    if expires_at is not None and expires_at <= utcnow():
        raise InvalidStateError("Challenge has expired", current_state=ctx.challenge.status)

    return await ANSWER_HANDLERS[DefenderAnswer(answer)](session, ctx)


async def accept_challenge(session: AsyncSession, challenge_id: int, player_id: int) -> Dict:
    return await answer_challenge(session, challenge_id, player_id, DefenderAnswer.ACCEPT)


async def decline_challenge(session: AsyncSession, challenge_id: int, player_id: int) -> Dict:
    return await answer_challenge(session, challenge_id, player_id, DefenderAnswer.DECLINE)


# ============================================================================
# Completion (shared by confirm and forfeit)
# ============================================================================

async def _complete_challenge(
    session: AsyncSession, ctx: ChallengeContext, result: ChallengeResult, scores: List[Dict]
) -> Dict:
    """
    Apply a final result: rotation or defender points, counters, history.

    Challenger win: full rank rotation and ``points += 5``.
    Defender win: ranks unchanged and defender ``points += 3``.
    """
    challenge, challenger, defender = ctx.challenge, ctx.challenger, ctx.defender
    old_challenger_rank = challenger.rank
    old_defender_rank = defender.rank

    if result == ChallengeResult.CHALLENGER_WON:
        await rank_rotation.rotate_ranks(session, challenger, defender)
        challenger.points = (challenger.points or 0) + CHALLENGER_WIN_POINTS
        challenger.matches_won = (challenger.matches_won or 0) + 1
    else:
        defender.points = (defender.points or 0) + DEFENDER_WIN_POINTS
        defender.matches_won = (defender.matches_won or 0) + 1

    challenger.matches_played = (challenger.matches_played or 0) + 1
    defender.matches_played = (defender.matches_played or 0) + 1
    _release_teams(ctx)

    challenge.status = ChallengeStatus.COMPLETED.value
    challenge.result = result.value
    challenge.scores = scores
    challenge.completed_at = utcnow()

    session.add(
        LadderHistory(
            challenge_id=challenge.id,
            challenger_team_id=challenger.id,
            defender_team_id=defender.id,
            result=result.value,
            old_challenger_rank=old_challenger_rank,
            new_challenger_rank=challenger.rank,
            old_defender_rank=old_defender_rank,
            new_defender_rank=defender.rank,
            scores=scores,
            club_id=challenge.club_id,
            tier=challenge.tier,
        )
    )
    try:
        await session.flush()
    except IntegrityError as e:
        logger.warning(f"Challenge {challenge.id} completed concurrently: {e}")
        raise ConflictError("Challenge was completed by another request")

    logger.info(
        f"Challenge {challenge.id} completed: {result.value}, "
        f"challenger #{old_challenger_rank}->#{challenger.rank}, "
        f"defender #{old_defender_rank}->#{defender.rank}"
    )

    return {
        **challenge_to_dict(challenge),
        "new_ranks": {
            "challenger": challenger.rank,
            "defender": defender.rank,
        },
    }


# ============================================================================
# Rescind / forfeit (accepted)
# ============================================================================

async def _rescind(session: AsyncSession, ctx: ChallengeContext) -> Dict:
    if ctx.side != ChallengeSide.CHALLENGER:
        raise AuthorizationError("Only the challenging team can rescind a challenge")

    moves = await rank_rotation.apply_rescind_penalty(session, ctx.challenger)
    ctx.challenge.status = ChallengeStatus.DECLINED.value
    _release_teams(ctx)
    await session.flush()
    logger.info(f"Challenge {ctx.challenge.id} rescinded by team {ctx.challenger.id}")

    await notification_service.notify_players(
        session,
        team_player_ids(ctx.defender),
        NotificationType.CHALLENGE_RESCINDED.value,
        "Challenge rescinded",
        f"{ctx.challenger.team_name} rescinded their challenge",
        data={"challenge_id": ctx.challenge.id},
    )
    return {
        **challenge_to_dict(ctx.challenge),
        "new_ranks": {
            "challenger": ctx.challenger.rank,
            "defender": ctx.defender.rank,
        },
        "rank_penalty_applied": moves is not None,
    }


async def _forfeit(session: AsyncSession, ctx: ChallengeContext) -> Dict:
    if ctx.side == ChallengeSide.CHALLENGER:
        result = ChallengeResult.DEFENDER_WON
        scores = [{"team_a": 0, "team_b": FORFEIT_SET_GAMES} for _ in range(2)]
    else:
        result = ChallengeResult.CHALLENGER_WON
        scores = [{"team_a": FORFEIT_SET_GAMES, "team_b": 0} for _ in range(2)]

    ctx.challenge.submitted_by = ctx.player_id
    completed = await _complete_challenge(session, ctx, result, scores)

    await notification_service.notify_players(
        session,
        ctx.opponent_player_ids(),
        NotificationType.CHALLENGE_FORFEITED.value,
        "Challenge forfeited",
        "Your opponents forfeited; the win has been recorded",
        data={"challenge_id": ctx.challenge.id},
    )
    return completed


ACTION_HANDLERS: Dict[ChallengeAction, Callable] = {
    ChallengeAction.RESCIND: _rescind,
    ChallengeAction.FORFEIT: _forfeit,
}


async def respond_challenge(
    session: AsyncSession, challenge_id: int, player_id: int, action: ChallengeAction
) -> Dict:
    """
    Rescind (challenger only) or forfeit (either side) an accepted challenge.

    Rescind drops the challenger one place and declines the challenge.
    Forfeit records a 6-0 6-0 win for the other side and completes it.

    Raises:
        NotFoundError, AuthorizationError, InvalidStateError (not accepted)
    """
    ctx = await _load_context(session, challenge_id, player_id)
    _require_status(ctx.challenge, ChallengeStatus.ACCEPTED, "Challenge must be accepted")
    return await ACTION_HANDLERS[ChallengeAction(action)](session, ctx)


# ============================================================================
# Score submission and verification
# ============================================================================

async def submit_score(
    session: AsyncSession, challenge_id: int, player_id: int, scores: List[Dict]
) -> Dict:
    """
    Record a played result; ranks stay untouched until the score is confirmed.

    Args:
        scores: Sets as ``{"team_a": int, "team_b": int}``, team_a = challenger

    Raises:
        NotFoundError, AuthorizationError, InvalidStateError (not accepted),
        ValidationError (KG rules)
    """
    ctx = await _load_context(session, challenge_id, player_id)
    _require_status(
        ctx.challenge, ChallengeStatus.ACCEPTED, "Challenge must be accepted before submitting scores"
    )

    error = validate_ladder_scores(scores)
    if error:
        raise ValidationError(error)

    result = ChallengeResult.CHALLENGER_WON if team_a_won(scores) else ChallengeResult.DEFENDER_WON
    ctx.challenge.scores = [{"team_a": s["team_a"], "team_b": s["team_b"]} for s in scores]
    ctx.challenge.result = result.value
    ctx.challenge.submitted_by = player_id
    ctx.challenge.status = ChallengeStatus.PENDING_VERIFICATION.value
    await session.flush()
    logger.info(f"Score submitted for challenge {challenge_id} by player {player_id}: {result.value}")

    await notification_service.notify_players(
        session,
        ctx.opponent_player_ids(),
        NotificationType.LADDER_SCORE_SUBMITTED.value,
        "Score submitted",
        "A score was submitted for your challenge; please confirm or dispute it",
        data={"challenge_id": challenge_id},
    )
    return challenge_to_dict(ctx.challenge)


async def _confirm(session: AsyncSession, ctx: ChallengeContext) -> Dict:
    completed = await _complete_challenge(
        session, ctx, ChallengeResult(ctx.challenge.result), ctx.challenge.scores
    )
    await notification_service.notify_players(
        session,
        ctx.all_player_ids(),
        NotificationType.LADDER_SCORE_CONFIRMED.value,
        "Result confirmed",
        "The ladder result has been confirmed and standings updated",
        data={"challenge_id": ctx.challenge.id},
    )
    return completed


async def _dispute(session: AsyncSession, ctx: ChallengeContext) -> Dict:
    ctx.challenge.status = ChallengeStatus.DISPUTED.value
    _release_teams(ctx)
    await session.flush()
    logger.info(f"Challenge {ctx.challenge.id} disputed by player {ctx.player_id}")
    await notification_service.notify_players(
        session,
        ctx.all_player_ids(),
        NotificationType.LADDER_SCORE_DISPUTED.value,
        "Result disputed",
        "The submitted ladder result was disputed",
        data={"challenge_id": ctx.challenge.id},
    )
    return challenge_to_dict(ctx.challenge)


VERIFY_HANDLERS: Dict[VerifyAction, Callable] = {
    VerifyAction.CONFIRM: _confirm,
    VerifyAction.DISPUTE: _dispute,
}


async def verify_score(
    session: AsyncSession, challenge_id: int, player_id: int, action: VerifyAction
) -> Dict:
    """
    Confirm or dispute a submitted ladder score.

    Any participant may respond. Confirm completes the challenge (rotation or
    defender points, history entry); dispute releases both teams and changes
    nothing else.

    Raises:
        NotFoundError, AuthorizationError, InvalidStateError (not pending_verification)
    """
    ctx = await _load_context(session, challenge_id, player_id)
    _require_status(
        ctx.challenge, ChallengeStatus.PENDING_VERIFICATION, "Challenge is not pending verification"
    )
    return await VERIFY_HANDLERS[VerifyAction(action)](session, ctx)


# ============================================================================
# Expiry (background sweep)
# ============================================================================

async def expire_pending_challenges(session: AsyncSession) -> int:
    """
    Decline pending challenges whose ``expires_at`` has passed.

    Returns:
        Number of challenges expired
    """
    now = utcnow()
    result = await session.execute(
        select(LadderChallenge.id).where(
            and_(
                LadderChallenge.status == ChallengeStatus.PENDING.value,
                LadderChallenge.expires_at.is_not(None),
                LadderChallenge.expires_at <= now,
            )
        )
    )
    expired = 0
    for challenge_id in result.scalars().all():
        ctx = await _load_context(session, challenge_id, None)
        # Re-check under the lock; the defender may have answered meanwhile
        if ctx.challenge.status != ChallengeStatus.PENDING.value:
            continue
        ctx.challenge.status = ChallengeStatus.DECLINED.value
        _release_teams(ctx)
        await session.flush()
        expired += 1
        logger.info(f"Challenge {challenge_id} expired without a response")
        await notification_service.notify_players(
            session,
            ctx.all_player_ids(),
            NotificationType.CHALLENGE_EXPIRED.value,
            "Challenge expired",
            "A ladder challenge expired without a response",
            data={"challenge_id": challenge_id},
        )
    return expired
