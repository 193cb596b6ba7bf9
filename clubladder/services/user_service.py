"""
User service layer for account database operations.
"""

from typing import Optional, Dict
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from clubladder.database.models import User, Player
from clubladder.utils.constants import DEFAULT_SKILL_LEVEL
import logging

logger = logging.getLogger(__name__)


async def create_user(
    session: AsyncSession, phone_number: str, password_hash: str, email: Optional[str] = None
) -> int:
    """
    Create a new user account.

    Args:
        session: Database session
        phone_number: Normalized phone number
        password_hash: Required hashed password
        email: Optional user email

    Returns:
        User ID of the created user

    Raises:
        ValueError: If a user with this phone number already exists
    """
    if await check_phone_exists(session, phone_number):
        raise ValueError(f"Phone number {phone_number} is already registered")

    new_user = User(
        phone_number=phone_number, password_hash=password_hash, email=email, is_verified=True
    )
    session.add(new_user)
    await session.flush()
    return new_user.id


async def create_user_with_player(
    session: AsyncSession,
    phone_number: str,
    password_hash: str,
    full_name: str,
    email: Optional[str] = None,
    skill_level: Optional[float] = None,
) -> Dict:
    """
    Create an account together with its player profile.

    Returns:
        Dict with ``user_id`` and ``player_id``
    """
    user_id = await create_user(session, phone_number, password_hash, email=email)
    initials = "".join(part[0] for part in full_name.split()[:2]).upper() or None
    player = Player(
        full_name=full_name,
        user_id=user_id,
        avatar=initials,
        skill_level=skill_level if skill_level is not None else DEFAULT_SKILL_LEVEL,
        matches_played=0,
        matches_won=0,
        reliability_percentage=0,
    )
    session.add(player)
    await session.flush()
    logger.info(f"Created user {user_id} with player {player.id}")
    return {"user_id": user_id, "player_id": player.id}


async def get_user_by_phone(session: AsyncSession, phone_number: str) -> Optional[Dict]:
    """
    Get user by phone number.

    Returns:
        User dictionary or None if not found
    """
    result = await session.execute(select(User).where(User.phone_number == phone_number).limit(1))
    user = result.scalar_one_or_none()
    return _user_to_dict(user) if user else None


async def get_user_by_id(session: AsyncSession, user_id: int) -> Optional[Dict]:
    """
    Get user by ID.

    Returns:
        User dictionary or None if not found
    """
    result = await session.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    return _user_to_dict(user) if user else None


def _user_to_dict(user: User) -> Dict:
    """Convert a User ORM instance to a dictionary."""
    return {
        "id": user.id,
        "phone_number": user.phone_number,
        "password_hash": user.password_hash,
        "email": user.email,
        "is_verified": user.is_verified,
        "created_at": user.created_at.isoformat() if user.created_at else None,
        "updated_at": user.updated_at.isoformat() if user.updated_at else None,
    }


async def check_phone_exists(session: AsyncSession, phone_number: str) -> bool:
    """Check if a phone number is already registered."""
    user = await get_user_by_phone(session, phone_number)
    return user is not None
