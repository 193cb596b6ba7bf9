"""
Open match service: hosting, joining and result verification.

Result workflow::

    None --host submits--> pending_verification --confirm / auto_verify--> verified
                                                 --dispute--> disputed

A single confirm from any accepted non-host player finalizes the result and
applies rating updates to all four players. There is no quorum, and a later
dispute cannot undo an applied confirmation. ``auto_verify`` is the same
confirm path, run by the background sweep once the score is 24 hours old; it
records no ``verified_by``.
"""

import enum
import logging
from datetime import timedelta
from typing import Callable, Dict, List, Optional

from sqlalchemy import select, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from clubladder.database.models import (
    OpenMatch,
    MatchParticipant,
    Player,
    MatchStatus,
    MatchTeam,
    ResultStatus,
    ParticipantStatus,
    NotificationType,
)
from clubladder.services import notification_service, rating_service
from clubladder.services.exceptions import (
    AuthorizationError,
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from clubladder.services.score_validation import validate_open_match_scores
from clubladder.utils.constants import (
    AUTO_VERIFY_HOURS,
    DEFAULT_MAX_PLAYERS,
    DEFAULT_SKILL_LEVEL,
    MIN_SKILL_LEVEL,
    MAX_SKILL_LEVEL,
)
from clubladder.utils.datetime_utils import utcnow, ensure_utc, isoformat_or_none

logger = logging.getLogger(__name__)


class MatchVerifyAction(str, enum.Enum):
    """Response to a submitted open match score."""

    CONFIRM = "confirm"
    DISPUTE = "dispute"
    AUTO_VERIFY = "auto_verify"


def participant_to_dict(participant: MatchParticipant) -> Dict:
    return {
        "player_id": participant.player_id,
        "status": participant.status,
        "team": participant.team,
        "result_confirmed": participant.result_confirmed,
    }


def match_to_dict(match: OpenMatch, participants: Optional[List[MatchParticipant]] = None) -> Dict:
    data = {
        "id": match.id,
        "creator_player_id": match.creator_player_id,
        "max_players": match.max_players,
        "current_players": match.current_players,
        "skill_min": match.skill_min,
        "skill_max": match.skill_max,
        "match_date": match.match_date,
        "match_time": match.match_time,
        "venue": match.venue,
        "status": match.status,
        "result_status": match.result_status,
        "scores": match.scores,
        "score_submitted_at": isoformat_or_none(ensure_utc(match.score_submitted_at)),
        "verified_by": match.verified_by,
    }
    if participants is not None:
        data["players"] = [participant_to_dict(p) for p in participants]
    return data


async def _lock_match(session: AsyncSession, match_id: int) -> OpenMatch:
    result = await session.execute(
        select(OpenMatch)
        .where(OpenMatch.id == match_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    match = result.scalar_one_or_none()
    if match is None:
        raise NotFoundError("Match not found")
    return match


async def _get_participants(
    session: AsyncSession, match_id: int, status: Optional[ParticipantStatus] = None, lock: bool = False
) -> List[MatchParticipant]:
    query = select(MatchParticipant).where(MatchParticipant.match_id == match_id)
    if status is not None:
        query = query.where(MatchParticipant.status == status.value)
    query = query.order_by(MatchParticipant.player_id)
    if lock:
        query = query.with_for_update().execution_options(populate_existing=True)
    result = await session.execute(query)
    return list(result.scalars().all())


async def _lock_participant(
    session: AsyncSession, match_id: int, player_id: int
) -> Optional[MatchParticipant]:
    result = await session.execute(
        select(MatchParticipant)
        .where(
            and_(
                MatchParticipant.match_id == match_id,
                MatchParticipant.player_id == player_id,
            )
        )
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


def _other_player_ids(participants: List[MatchParticipant], player_id: int) -> List[int]:
    return [p.player_id for p in participants if p.player_id != player_id]


# ============================================================================
# Hosting and joining
# ============================================================================

async def create_match(
    session: AsyncSession,
    host_player_id: int,
    max_players: int = DEFAULT_MAX_PLAYERS,
    skill_min: Optional[float] = None,
    skill_max: Optional[float] = None,
    match_date: Optional[str] = None,
    match_time: Optional[str] = None,
    venue: Optional[str] = None,
) -> Dict:
    """
    Host a new open match. The host is its first accepted player.

    Raises:
        NotFoundError: Host player does not exist
        ValidationError: Fewer than 4 slots or an inverted skill band
    """
    if max_players < DEFAULT_MAX_PLAYERS:
        raise ValidationError(f"Matches need at least {DEFAULT_MAX_PLAYERS} players")
    for bound in (skill_min, skill_max):
        if bound is not None and not (MIN_SKILL_LEVEL <= bound <= MAX_SKILL_LEVEL):
            raise ValidationError(
                f"Skill range must be between {MIN_SKILL_LEVEL} and {MAX_SKILL_LEVEL}"
            )
    if skill_min is not None and skill_max is not None and skill_min > skill_max:
        raise ValidationError("Minimum skill cannot be above maximum skill")

    if await session.get(Player, host_player_id) is None:
        raise NotFoundError("Player not found")

    match = OpenMatch(
        creator_player_id=host_player_id,
        max_players=max_players,
        current_players=1,
        skill_min=skill_min,
        skill_max=skill_max,
        match_date=match_date,
        match_time=match_time,
        venue=venue,
        status=MatchStatus.OPEN.value,
    )
    session.add(match)
    await session.flush()

    host_entry = MatchParticipant(
        match_id=match.id,
        player_id=host_player_id,
        status=ParticipantStatus.ACCEPTED.value,
    )
    session.add(host_entry)
    await session.flush()

    logger.info(f"Match {match.id} created by player {host_player_id}")
    return match_to_dict(match, [host_entry])


async def get_match(session: AsyncSession, match_id: int) -> Dict:
    match = await session.get(OpenMatch, match_id)
    if match is None:
        raise NotFoundError("Match not found")
    participants = await _get_participants(session, match_id)
    return match_to_dict(match, participants)


async def join_match(session: AsyncSession, match_id: int, player_id: int) -> Dict:
    """
    Request a spot in an open match. The host accepts or rejects the request.

    Raises:
        NotFoundError: Match or player missing
        InvalidStateError: Match is not open
        AuthorizationError: Player's skill is outside the match's band
        ConflictError: Player already requested or joined
    """
    match = await _lock_match(session, match_id)
    if match.status != MatchStatus.OPEN.value:
        raise InvalidStateError("Match is not open", current_state=match.status)

    player = await session.get(Player, player_id)
    if player is None:
        raise NotFoundError("Player not found")

    skill = player.skill_level if player.skill_level is not None else DEFAULT_SKILL_LEVEL
    below = match.skill_min is not None and skill < match.skill_min
    above = match.skill_max is not None and skill > match.skill_max
    if below or above:
        raise AuthorizationError(
            f"Your skill level ({skill:.1f}) is outside this match's bracket "
            f"({match.skill_min}–{match.skill_max})"
        )

    if await _lock_participant(session, match_id, player_id) is not None:
        raise ConflictError("Already requested")

    entry = MatchParticipant(
        match_id=match_id, player_id=player_id, status=ParticipantStatus.PENDING.value
    )
    session.add(entry)
    try:
        await session.flush()
    except IntegrityError:
        raise ConflictError("Already requested")

    logger.info(f"Player {player_id} requested to join match {match_id}")
    await notification_service.notify_players(
        session,
        [match.creator_player_id],
        NotificationType.MATCH_JOIN_REQUEST.value,
        "New join request",
        f"{player.full_name} wants to join your match",
        data={"match_id": match_id, "player_id": player_id},
    )
    return participant_to_dict(entry)


async def respond_join_request(
    session: AsyncSession, match_id: int, host_player_id: int, player_id: int, accept: bool
) -> Dict:
    """
    Host accepts or rejects a pending join request.

    Accepting fills a slot; the match becomes ``full`` when every slot is taken.
    Rejecting removes the request so the player may ask again.
    """
    match = await _lock_match(session, match_id)
    if match.creator_player_id != host_player_id:
        raise AuthorizationError("Only the host can respond to join requests")

    entry = await _lock_participant(session, match_id, player_id)
    if entry is None or entry.status != ParticipantStatus.PENDING.value:
        raise NotFoundError("Join request not found")

    if not accept:
        await session.delete(entry)
        await session.flush()
        logger.info(f"Host {host_player_id} rejected player {player_id} for match {match_id}")
        return match_to_dict(match, await _get_participants(session, match_id))

    if match.status != MatchStatus.OPEN.value:
        raise InvalidStateError("Match is not open", current_state=match.status)

    entry.status = ParticipantStatus.ACCEPTED.value
    match.current_players = (match.current_players or 0) + 1
    if match.current_players >= match.max_players:
        match.status = MatchStatus.FULL.value
    await session.flush()

    logger.info(
        f"Player {player_id} joined match {match_id} ({match.current_players}/{match.max_players})"
    )
    await notification_service.notify_players(
        session,
        [player_id],
        NotificationType.MATCH_JOIN_ACCEPTED.value,
        "You're in",
        "The host accepted your request to join the match",
        data={"match_id": match_id},
    )
    return match_to_dict(match, await _get_participants(session, match_id))


# ============================================================================
# Score submission
# ============================================================================

async def submit_match_score(
    session: AsyncSession,
    match_id: int,
    player_id: int,
    scores: List[Dict],
    teams: Dict[str, List[int]],
) -> Dict:
    """
    Host submits the result and the team split.

    Args:
        scores: Sets as ``{"team_a": int, "team_b": int}``, team_a = side "A"
        teams: ``{"A": [id, id], "B": [id, id]}``, all accepted participants

    Raises:
        NotFoundError, AuthorizationError (not the host),
        InvalidStateError (not full / already submitted), ValidationError
    """
    match = await _lock_match(session, match_id)
    if match.creator_player_id != player_id:
        raise AuthorizationError("Only the host can submit scores")
    if match.status != MatchStatus.FULL.value:
        raise InvalidStateError("Match must be full to submit scores", current_state=match.status)
    if match.result_status is not None:
        raise InvalidStateError("Score already submitted", current_state=match.result_status)

    error = validate_open_match_scores(scores)
    if error:
        raise ValidationError(error)

    team_a = list(teams.get(MatchTeam.A.value) or [])
    team_b = list(teams.get(MatchTeam.B.value) or [])
    if len(team_a) != 2 or len(team_b) != 2:
        raise ValidationError("Each team must have exactly 2 players")
    if len(set(team_a + team_b)) != 4:
        raise ValidationError("All 4 players must be unique")

    participants = await _get_participants(session, match_id, lock=True)
    accepted = {
        p.player_id: p for p in participants if p.status == ParticipantStatus.ACCEPTED.value
    }
    for pid in team_a + team_b:
        if pid not in accepted:
            raise ValidationError(f"Player {pid} is not an accepted player")

    for pid, participant in accepted.items():
        if pid in team_a:
            participant.team = MatchTeam.A.value
        elif pid in team_b:
            participant.team = MatchTeam.B.value
        else:
            participant.team = None
        participant.result_confirmed = None

    match.scores = [{"team_a": s["team_a"], "team_b": s["team_b"]} for s in scores]
    match.score_submitted_at = utcnow()
    match.result_status = ResultStatus.PENDING_VERIFICATION.value
    await session.flush()

    logger.info(f"Score submitted for match {match_id} by host {player_id}")
    await notification_service.notify_players(
        session,
        _other_player_ids(list(accepted.values()), player_id),
        NotificationType.MATCH_SCORE_SUBMITTED.value,
        "Confirm the match score",
        "The host submitted a score; please confirm or dispute it",
        data={"match_id": match_id},
    )
    return match_to_dict(match, list(accepted.values()))


# ============================================================================
# Verification
# ============================================================================

async def _finalize(session: AsyncSession, match: OpenMatch, verified_by: Optional[int]) -> Dict:
    """Run the rating engine for all four players and mark the match verified."""
    participants = await _get_participants(session, match.id, ParticipantStatus.ACCEPTED)
    team_a_ids = [p.player_id for p in participants if p.team == MatchTeam.A.value]
    team_b_ids = [p.player_id for p in participants if p.team == MatchTeam.B.value]
    if len(team_a_ids) != 2 or len(team_b_ids) != 2:
        logger.error(f"Match {match.id} has invalid team assignments: A={team_a_ids} B={team_b_ids}")
        raise InvalidStateError("Invalid team assignments", current_state=match.result_status)

    result = await session.execute(
        select(Player)
        .where(Player.id.in_(team_a_ids + team_b_ids))
        .order_by(Player.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    players = list(result.scalars().all())
    skills = {p.id: p.skill_level for p in players}

    updates = rating_service.compute_rating_updates(
        [{"player_id": pid, "skill_level": skills.get(pid)} for pid in team_a_ids],
        [{"player_id": pid, "skill_level": skills.get(pid)} for pid in team_b_ids],
        match.scores,
    )
    ratings = rating_service.apply_rating_updates(players, updates)

    match.result_status = ResultStatus.VERIFIED.value
    match.status = MatchStatus.COMPLETED.value
    match.verified_by = verified_by
    await session.flush()

    logger.info(
        f"Match {match.id} verified ({'auto' if verified_by is None else f'by player {verified_by}'}); "
        f"ratings updated for {len(ratings)} players"
    )
    await notification_service.notify_players(
        session,
        [p.player_id for p in participants],
        NotificationType.MATCH_SCORE_VERIFIED.value,
        "Match result verified",
        "The match result is final and ratings have been updated",
        data={"match_id": match.id},
    )
    return {**match_to_dict(match, participants), "ratings": ratings}


async def _record_response(
    session: AsyncSession, match: OpenMatch, player_id: Optional[int], confirmed: bool
) -> MatchParticipant:
    """Check the caller may respond and store their answer."""
    if player_id is None:
        raise AuthorizationError("You are not a participant in this match")
    if match.creator_player_id == player_id:
        raise AuthorizationError("Host cannot verify their own score")

    entry = await _lock_participant(session, match.id, player_id)
    if entry is None or entry.status != ParticipantStatus.ACCEPTED.value:
        raise AuthorizationError("You are not a participant in this match")
    if entry.result_confirmed is not None:
        raise ConflictError("You have already responded")

    entry.result_confirmed = confirmed
    return entry


async def _confirm(session: AsyncSession, match: OpenMatch, player_id: Optional[int]) -> Dict:
    await _record_response(session, match, player_id, True)
    return await _finalize(session, match, verified_by=player_id)


async def _dispute(session: AsyncSession, match: OpenMatch, player_id: Optional[int]) -> Dict:
    await _record_response(session, match, player_id, False)
    match.result_status = ResultStatus.DISPUTED.value
    await session.flush()

    logger.info(f"Match {match.id} score disputed by player {player_id}")
    participants = await _get_participants(session, match.id, ParticipantStatus.ACCEPTED)
    await notification_service.notify_players(
        session,
        [p.player_id for p in participants],
        NotificationType.MATCH_SCORE_DISPUTED.value,
        "Match result disputed",
        "A player disputed the submitted match score",
        data={"match_id": match.id},
    )
    return match_to_dict(match, participants)


async def _auto_verify(session: AsyncSession, match: OpenMatch, player_id: Optional[int]) -> Dict:
    submitted_at = ensure_utc(match.score_submitted_at)
    if submitted_at is None or utcnow() - submitted_at < timedelta(hours=AUTO_VERIFY_HOURS):
        raise InvalidStateError("24 hours have not passed yet", current_state=match.result_status)
    return await _finalize(session, match, verified_by=None)


VERIFY_HANDLERS: Dict[MatchVerifyAction, Callable] = {
    MatchVerifyAction.CONFIRM: _confirm,
    MatchVerifyAction.DISPUTE: _dispute,
    MatchVerifyAction.AUTO_VERIFY: _auto_verify,
}


async def verify_match_score(
    session: AsyncSession,
    match_id: int,
    player_id: Optional[int],
    action: MatchVerifyAction,
) -> Dict:
    """
    Confirm, dispute or auto-verify a submitted open match score.

    Args:
        session: Database session
        match_id: Match to verify
        player_id: Responding player; None for the background sweep
        action: MatchVerifyAction

    Returns:
        Match dict; confirm/auto_verify also include ``ratings``

    Raises:
        NotFoundError, InvalidStateError (not pending verification / too early),
        AuthorizationError (host or non-participant), ConflictError (already responded)
    """
    match = await _lock_match(session, match_id)
    if match.result_status != ResultStatus.PENDING_VERIFICATION.value:
        raise InvalidStateError(
            "Match is not pending verification", current_state=match.result_status or "none"
        )
    return await VERIFY_HANDLERS[MatchVerifyAction(action)](session, match, player_id)


async def get_matches_due_for_auto_verify(session: AsyncSession) -> List[int]:
    """Ids of matches whose score has been pending for at least 24 hours."""
    cutoff = utcnow() - timedelta(hours=AUTO_VERIFY_HOURS)
    result = await session.execute(
        select(OpenMatch.id)
        .where(
            and_(
                OpenMatch.result_status == ResultStatus.PENDING_VERIFICATION.value,
                OpenMatch.score_submitted_at <= cutoff,
            )
        )
        .order_by(OpenMatch.score_submitted_at)
    )
    return list(result.scalars().all())
