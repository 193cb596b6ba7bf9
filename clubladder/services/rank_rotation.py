"""
Rank reassignment within a single (club_id, tier) ladder pool.

Ranks are unique per pool (``uq_ladder_teams_pool_rank``). Every procedure
here runs inside the caller's transaction, locks the rows it touches with
``SELECT ... FOR UPDATE`` and flushes each step separately so the unique
constraint never sees two teams on the same rank. A team is parked on a
negative placeholder rank (``-team.id``) while its slot is being vacated;
the placeholder never survives past the end of the procedure.

Team rows of a pool are only ever locked in rank order, through
``lock_pool_range``. A deadlock or serialization failure reported by the
database still becomes a ConflictError so the caller can retry.
"""

import logging
from typing import Dict, List, Optional

from sqlalchemy import select, func
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from clubladder.database.models import LadderTeam
from clubladder.services.exceptions import ConflictError

logger = logging.getLogger(__name__)

RANK_CONFLICT_MESSAGE = "Ladder ranks changed while this request was running; please retry"

# PostgreSQL deadlock_detected, serialization_failure
LOCK_CONFLICT_SQLSTATES = ("40P01", "40001")


def _placeholder_rank(team: LadderTeam) -> int:
    return -team.id


def is_lock_conflict(error: DBAPIError) -> bool:
    """True if the database aborted the statement to break a lock conflict."""
    code = getattr(error.orig, "pgcode", None) or getattr(error.orig, "sqlstate", None)
    return code in LOCK_CONFLICT_SQLSTATES


async def execute_for_update(session: AsyncSession, statement):
    """Run a locking SELECT, turning a lock conflict into ConflictError."""
    try:
        return await session.execute(statement)
    except DBAPIError as e:
        if not is_lock_conflict(e):
            raise
        logger.warning(f"Lock conflict while locking ladder rows: {e}")
        raise ConflictError(RANK_CONFLICT_MESSAGE)


async def _flush(session: AsyncSession) -> None:
    try:
        await session.flush()
    except IntegrityError as e:
        logger.warning(f"Rank uniqueness violation during rotation: {e}")
        raise ConflictError(RANK_CONFLICT_MESSAGE)
    except DBAPIError as e:
        if not is_lock_conflict(e):
            raise
        logger.warning(f"Lock conflict during rotation: {e}")
        raise ConflictError(RANK_CONFLICT_MESSAGE)


async def lock_pool_range(
    session: AsyncSession, club_id: str, tier: str, top_rank: int, bottom_rank: int
) -> List[LadderTeam]:
    """
    Lock and load every team of a pool ranked in [top_rank, bottom_rank].

    Rows are locked in rank order and reloaded from the database so ranks
    reflect the locked state.
    """
    result = await execute_for_update(
        session,
        select(LadderTeam)
        .where(
            LadderTeam.club_id == club_id,
            LadderTeam.tier == tier,
            LadderTeam.rank >= top_rank,
            LadderTeam.rank <= bottom_rank,
        )
        .order_by(LadderTeam.rank)
        .with_for_update()
        .execution_options(populate_existing=True),
    )
    return list(result.scalars().all())


async def lock_pool_teams(
    session: AsyncSession, club_id: str, tier: str, *team_ids: int
) -> Dict[int, LadderTeam]:
    """
    Lock teams of one pool together with every team ranked between them and
    the team directly below the lowest of them.

    Ranks are read without a lock first, then the whole range is locked in
    rank order and re-read. A team that moved out of the range in between
    raises ConflictError.
    """
    result = await session.execute(
        select(LadderTeam.rank).where(
            LadderTeam.id.in_(team_ids),
            LadderTeam.club_id == club_id,
            LadderTeam.tier == tier,
        )
    )
    ranks = list(result.scalars().all())
    if len(ranks) != len(set(team_ids)):
        raise ConflictError("Teams are not in the same ladder pool")

    block = await lock_pool_range(session, club_id, tier, min(ranks), max(ranks) + 1)
    teams = {team.id: team for team in block if team.id in team_ids}
    if len(teams) != len(set(team_ids)):
        logger.warning(f"Teams {sorted(team_ids)} moved in {club_id}/{tier} before they were locked")
        raise ConflictError(RANK_CONFLICT_MESSAGE)
    return teams


async def next_rank(session: AsyncSession, club_id: str, tier: str) -> int:
    """Rank a newly registered team enters the pool at (bottom of the ladder)."""
    result = await session.execute(
        select(func.max(LadderTeam.rank)).where(
            LadderTeam.club_id == club_id, LadderTeam.tier == tier
        )
    )
    return (result.scalar() or 0) + 1


async def rotate_ranks(
    session: AsyncSession, challenger: LadderTeam, defender: LadderTeam
) -> Dict[int, Dict[str, int]]:
    """
    Move a winning challenger into the defender's slot.

    With challenger rank R_c and defender rank R_d (R_c > R_d), the block
    [R_d, R_c] rotates by one: the challenger takes R_d, the defender and
    every team strictly between them slide down one place.

    Args:
        session: Database session (caller owns the transaction)
        challenger: Challenging team (already locked by the caller)
        defender: Defending team (already locked by the caller)

    Returns:
        ``{team_id: {"old_rank": int, "new_rank": int}}`` for every team that moved

    Raises:
        ConflictError: If the teams are no longer in rotation order or a
            concurrent writer broke rank uniqueness
    """
    if (challenger.club_id, challenger.tier) != (defender.club_id, defender.tier):
        raise ConflictError("Teams are not in the same ladder pool")

    # Persist pending attribute changes before reloading the locked rows
    await _flush(session)

    club_id, tier = challenger.club_id, challenger.tier
    challenger_rank = challenger.rank
    defender_rank = defender.rank
    if challenger_rank <= defender_rank:
        raise ConflictError(
            f"Challenger rank {challenger_rank} is no longer below defender rank {defender_rank}"
        )

    block = await lock_pool_range(session, club_id, tier, defender_rank, challenger_rank)
    between = [t for t in block if defender_rank < t.rank < challenger_rank]
    expected_size = challenger_rank - defender_rank + 1
    if len(block) != expected_size:
        logger.error(
            f"Pool {club_id}/{tier} has a gap in ranks {defender_rank}-{challenger_rank}: "
            f"found {len(block)} teams, expected {expected_size}"
        )
        raise ConflictError(RANK_CONFLICT_MESSAGE)

    moves = {team.id: {"old_rank": team.rank} for team in block}

    challenger.rank = _placeholder_rank(challenger)
    await _flush(session)

    # Bottom of the range first so each slot below is already free
    for team in sorted(between, key=lambda t: t.rank, reverse=True):
        team.rank = team.rank + 1
        await _flush(session)

    defender.rank = defender_rank + 1
    await _flush(session)

    challenger.rank = defender_rank
    await _flush(session)

    for team in block:
        moves[team.id]["new_rank"] = team.rank

    logger.info(
        f"Rotated {club_id}/{tier}: team {challenger.id} {challenger_rank}->{defender_rank}, "
        f"{len(between) + 1} team(s) moved down one place"
    )
    return moves


async def apply_rescind_penalty(
    session: AsyncSession, team: LadderTeam
) -> Optional[Dict[int, Dict[str, int]]]:
    """
    Drop a team one place by swapping it with the team directly below.

    The bottom team of a pool has nobody to swap with and keeps its rank.

    Returns:
        Rank moves for both teams, or None if the team is already last
    """
    await _flush(session)

    old_rank = team.rank
    rows = await lock_pool_range(session, team.club_id, team.tier, old_rank, old_rank + 1)
    below = next((t for t in rows if t.rank == old_rank + 1), None)
    if below is None:
        logger.info(
            f"Team {team.id} is last in {team.club_id}/{team.tier}; rescind leaves rank {old_rank}"
        )
        return None

    team.rank = _placeholder_rank(team)
    await _flush(session)

    below.rank = old_rank
    await _flush(session)

    team.rank = old_rank + 1
    await _flush(session)

    logger.info(
        f"Rescind penalty in {team.club_id}/{team.tier}: team {team.id} {old_rank}->{old_rank + 1}, "
        f"team {below.id} {old_rank + 1}->{old_rank}"
    )
    return {
        team.id: {"old_rank": old_rank, "new_rank": old_rank + 1},
        below.id: {"old_rank": old_rank + 1, "new_rank": old_rank},
    }
