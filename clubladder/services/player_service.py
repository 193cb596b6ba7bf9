"""
Player directory lookups used by the ladder and match workflows.
"""

from typing import Dict, List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from clubladder.database.models import Player
from clubladder.services.exceptions import NotFoundError


def player_to_dict(player: Player) -> Dict:
    return {
        "id": player.id,
        "name": player.full_name,
        "rating": player.skill_level,
        "avatar": player.avatar,
        "matches_played": player.matches_played,
        "matches_won": player.matches_won,
        "reliability_percentage": player.reliability_percentage,
    }


def first_name(player: Player) -> str:
    """First word of a player's name, used for default team names."""
    parts = (player.full_name or "").split()
    return parts[0] if parts else f"Player {player.id}"


async def get_player_for_user(session: AsyncSession, user_id: int) -> Optional[Player]:
    """Get the player profile linked to a user account."""
    result = await session.execute(
        select(Player).where(Player.user_id == user_id).order_by(Player.id).limit(1)
    )
    return result.scalar_one_or_none()


async def get_player(session: AsyncSession, player_id: int) -> Dict:
    """
    Look up a single player.

    Raises:
        NotFoundError: If no player has this id
    """
    player = await session.get(Player, player_id)
    if player is None:
        raise NotFoundError(f"Player {player_id} not found")
    return player_to_dict(player)


async def get_players_batch(session: AsyncSession, player_ids: List[int]) -> List[Dict]:
    """Look up many players at once; unknown ids are skipped. Ordered by id."""
    if not player_ids:
        return []
    result = await session.execute(
        select(Player).where(Player.id.in_(set(player_ids))).order_by(Player.id)
    )
    return [player_to_dict(p) for p in result.scalars().all()]
