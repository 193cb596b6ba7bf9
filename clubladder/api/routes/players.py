"""Player directory route handlers."""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from clubladder.database.db import get_db_session
from clubladder.services import player_service
from clubladder.services.exceptions import LadderError
from clubladder.api.auth_dependencies import get_current_user
from clubladder.models.schemas import PlayerResponse, PlayerBatchRequest

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/api/players/{player_id}", response_model=PlayerResponse)
async def get_player(
    player_id: int,
    user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Get a player's profile and rating record."""
    try:
        return await player_service.get_player(session, player_id)
    except LadderError:
        raise
    except Exception as e:
        logger.error(f"Error fetching player {player_id}: {e}")
        raise HTTPException(status_code=500, detail="Error fetching player")


@router.post("/api/players/batch", response_model=List[PlayerResponse])
async def get_players_batch(
    payload: PlayerBatchRequest,
    user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Look up several players at once. Unknown ids are skipped."""
    try:
        return await player_service.get_players_batch(session, payload.player_ids)
    except Exception as e:
        logger.error(f"Error fetching players batch: {e}")
        raise HTTPException(status_code=500, detail="Error fetching players")
