"""Open match route handlers: hosting, joining and result verification."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from clubladder.database.db import get_db_session
from clubladder.services import match_service
from clubladder.services.exceptions import LadderError
from clubladder.api.auth_dependencies import get_current_user, require_player
from clubladder.models.schemas import (
    MatchCreate,
    MatchResponse,
    MatchPlayerResponse,
    JoinRequestResponse,
    MatchScoreRequest,
    MatchVerifyRequest,
)

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/api/matches", response_model=MatchResponse)
async def create_match(
    payload: MatchCreate,
    user: dict = Depends(require_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Host a new open match."""
    try:
        return await match_service.create_match(
            session,
            user["player_id"],
            max_players=payload.max_players,
            skill_min=payload.skill_min,
            skill_max=payload.skill_max,
            match_date=payload.match_date,
            match_time=payload.match_time,
            venue=payload.venue,
        )
    except LadderError:
        raise
    except Exception as e:
        logger.error(f"Error creating match: {e}")
        raise HTTPException(status_code=500, detail="Error creating match")


@router.get("/api/matches/{match_id}", response_model=MatchResponse)
async def get_match(
    match_id: int,
    user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Get a match with its players."""
    try:
        return await match_service.get_match(session, match_id)
    except LadderError:
        raise
    except Exception as e:
        logger.error(f"Error fetching match {match_id}: {e}")
        raise HTTPException(status_code=500, detail="Error fetching match")


@router.post("/api/matches/{match_id}/join", response_model=MatchPlayerResponse)
async def join_match(
    match_id: int,
    user: dict = Depends(require_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Ask the host for a spot in an open match."""
    try:
        return await match_service.join_match(session, match_id, user["player_id"])
    except LadderError:
        raise
    except Exception as e:
        logger.error(f"Error joining match {match_id}: {e}")
        raise HTTPException(status_code=500, detail="Error joining match")


@router.post("/api/matches/{match_id}/requests/{player_id}", response_model=MatchResponse)
async def respond_join_request(
    match_id: int,
    player_id: int,
    payload: JoinRequestResponse,
    user: dict = Depends(require_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Host accepts or rejects a pending join request."""
    try:
        return await match_service.respond_join_request(
            session, match_id, user["player_id"], player_id, payload.accept
        )
    except LadderError:
        raise
    except Exception as e:
        logger.error(f"Error answering join request for match {match_id}: {e}")
        raise HTTPException(status_code=500, detail="Error answering join request")


@router.post("/api/matches/{match_id}/score", response_model=MatchResponse)
async def submit_match_score(
    match_id: int,
    payload: MatchScoreRequest,
    user: dict = Depends(require_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Host submits the sets and the A/B team split."""
    try:
        scores = [s.model_dump() for s in payload.scores]
        return await match_service.submit_match_score(
            session, match_id, user["player_id"], scores, payload.teams
        )
    except LadderError:
        raise
    except Exception as e:
        logger.error(f"Error submitting score for match {match_id}: {e}")
        raise HTTPException(status_code=500, detail="Error submitting match score")


@router.post("/api/matches/{match_id}/verify", response_model=MatchResponse)
async def verify_match_score(
    match_id: int,
    payload: MatchVerifyRequest,
    user: dict = Depends(require_player),
    session: AsyncSession = Depends(get_db_session),
):
    """
    Confirm, dispute or auto-verify a submitted score.

    ``auto_verify`` succeeds for any caller once the score is 24 hours old;
    the background sweep normally gets there first.
    """
    try:
        return await match_service.verify_match_score(
            session, match_id, user["player_id"], payload.action
        )
    except LadderError:
        raise
    except Exception as e:
        logger.error(f"Error verifying match {match_id}: {e}")
        raise HTTPException(status_code=500, detail="Error verifying match score")
