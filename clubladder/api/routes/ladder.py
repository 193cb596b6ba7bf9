"""Ladder route handlers: teams, standings and the challenge workflow."""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from clubladder.database.db import get_db_session
from clubladder.services import ladder_service
from clubladder.services.exceptions import LadderError
from clubladder.api.auth_dependencies import get_current_user, require_player
from clubladder.models.schemas import (
    RegisterTeamRequest,
    TeamResponse,
    ChallengeCreate,
    ChallengeRespondRequest,
    ChallengeScoreRequest,
    ChallengeVerifyRequest,
    ChallengeResponse,
    LadderHistoryResponse,
)

logger = logging.getLogger(__name__)
router = APIRouter()


# ---------------------------------------------------------------------------
# Teams and standings
# ---------------------------------------------------------------------------


@router.post("/api/ladder/teams", response_model=TeamResponse)
async def register_team(
    payload: RegisterTeamRequest,
    user: dict = Depends(require_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Register the caller and a partner at the bottom of a ladder pool."""
    try:
        return await ladder_service.register_team(
            session,
            user["player_id"],
            payload.partner_id,
            payload.club_id,
            payload.tier,
            team_name=payload.team_name,
        )
    except LadderError:
        raise
    except Exception as e:
        logger.error(f"Error registering ladder team: {e}")
        raise HTTPException(status_code=500, detail="Error registering team")


@router.get("/api/ladder/challenges/{challenge_id}", response_model=ChallengeResponse)
async def get_challenge(
    challenge_id: int,
    user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Get a single challenge."""
    try:
        return await ladder_service.get_challenge(session, challenge_id)
    except LadderError:
        raise
    except Exception as e:
        logger.error(f"Error fetching challenge {challenge_id}: {e}")
        raise HTTPException(status_code=500, detail="Error fetching challenge")


@router.get("/api/ladder/{club_id}/{tier}", response_model=List[TeamResponse])
async def get_standings(
    club_id: str,
    tier: str,
    user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Teams of a pool ordered by rank."""
    try:
        return await ladder_service.get_standings(session, club_id, tier)
    except LadderError:
        raise
    except Exception as e:
        logger.error(f"Error fetching standings for {club_id}/{tier}: {e}")
        raise HTTPException(status_code=500, detail="Error fetching standings")


@router.get("/api/ladder/{club_id}/{tier}/history", response_model=List[LadderHistoryResponse])
async def get_history(
    club_id: str,
    tier: str,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Completed challenges of a pool, newest first."""
    try:
        return await ladder_service.get_history(session, club_id, tier, limit=limit, offset=offset)
    except LadderError:
        raise
    except Exception as e:
        logger.error(f"Error fetching history for {club_id}/{tier}: {e}")
        raise HTTPException(status_code=500, detail="Error fetching ladder history")


# ---------------------------------------------------------------------------
# Challenge workflow
# ---------------------------------------------------------------------------


@router.post("/api/ladder/challenges", response_model=ChallengeResponse)
async def create_challenge(
    payload: ChallengeCreate,
    user: dict = Depends(require_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Challenge a team ranked 1-3 places above the caller's team."""
    try:
        return await ladder_service.create_challenge(
            session,
            user["player_id"],
            payload.defender_team_id,
            scheduled_date=payload.scheduled_date,
            scheduled_time=payload.scheduled_time,
            venue=payload.venue,
        )
    except LadderError:
        raise
    except Exception as e:
        logger.error(f"Error creating challenge: {e}")
        raise HTTPException(status_code=500, detail="Error creating challenge")


@router.post("/api/ladder/challenges/{challenge_id}/accept", response_model=ChallengeResponse)
async def accept_challenge(
    challenge_id: int,
    user: dict = Depends(require_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Defending team accepts a pending challenge."""
    try:
        return await ladder_service.accept_challenge(session, challenge_id, user["player_id"])
    except LadderError:
        raise
    except Exception as e:
        logger.error(f"Error accepting challenge {challenge_id}: {e}")
        raise HTTPException(status_code=500, detail="Error accepting challenge")


@router.post("/api/ladder/challenges/{challenge_id}/decline", response_model=ChallengeResponse)
async def decline_challenge(
    challenge_id: int,
    user: dict = Depends(require_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Defending team declines a pending challenge."""
    try:
        return await ladder_service.decline_challenge(session, challenge_id, user["player_id"])
    except LadderError:
        raise
    except Exception as e:
        logger.error(f"Error declining challenge {challenge_id}: {e}")
        raise HTTPException(status_code=500, detail="Error declining challenge")


@router.post("/api/ladder/challenges/{challenge_id}/respond", response_model=ChallengeResponse)
async def respond_challenge(
    challenge_id: int,
    payload: ChallengeRespondRequest,
    user: dict = Depends(require_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Rescind (challenger) or forfeit (either side) an accepted challenge."""
    try:
        return await ladder_service.respond_challenge(
            session, challenge_id, user["player_id"], payload.action
        )
    except LadderError:
        raise
    except Exception as e:
        logger.error(f"Error responding to challenge {challenge_id}: {e}")
        raise HTTPException(status_code=500, detail="Error responding to challenge")


@router.post("/api/ladder/challenges/{challenge_id}/score", response_model=ChallengeResponse)
async def submit_score(
    challenge_id: int,
    payload: ChallengeScoreRequest,
    user: dict = Depends(require_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Submit the played sets, challenger first. Ranks move only once confirmed."""
    try:
        scores = [s.model_dump() for s in payload.scores]
        return await ladder_service.submit_score(session, challenge_id, user["player_id"], scores)
    except LadderError:
        raise
    except Exception as e:
        logger.error(f"Error submitting score for challenge {challenge_id}: {e}")
        raise HTTPException(status_code=500, detail="Error submitting score")


@router.post("/api/ladder/challenges/{challenge_id}/verify", response_model=ChallengeResponse)
async def verify_score(
    challenge_id: int,
    payload: ChallengeVerifyRequest,
    user: dict = Depends(require_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Confirm or dispute a submitted ladder score."""
    try:
        return await ladder_service.verify_score(
            session, challenge_id, user["player_id"], payload.action
        )
    except LadderError:
        raise
    except Exception as e:
        logger.error(f"Error verifying challenge {challenge_id}: {e}")
        raise HTTPException(status_code=500, detail="Error verifying score")
