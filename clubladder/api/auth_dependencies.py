"""
Authentication dependencies for FastAPI routes.
"""

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from clubladder.services import auth_service, user_service, player_service
from clubladder.services.exceptions import AuthenticationError, AuthorizationError
from clubladder.database.db import get_db_session

security = HTTPBearer(auto_error=False)


async def get_current_user(
    session: AsyncSession = Depends(get_db_session),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> dict:
    """
    Dependency to get the current authenticated user from JWT token.

    Returns:
        User dictionary

    Raises:
        AuthenticationError: If the token is missing or invalid, or the user is gone
    """
    if credentials is None:
        raise AuthenticationError("Missing authorization token")

    payload = auth_service.verify_token(credentials.credentials)
    if payload is None:
        raise AuthenticationError("Invalid authentication token")

    user_id = payload.get("user_id")
    if user_id is None:
        raise AuthenticationError("Invalid token payload")

    user = await user_service.get_user_by_id(session, user_id)
    if user is None:
        raise AuthenticationError("User not found")

    return user


async def require_player(
    user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
) -> dict:
    """
    Require an authenticated user with a player profile.

    Returns a dict with both user fields and player_id.
    """
    player = await player_service.get_player_for_user(session, user["id"])
    if player is None:
        raise AuthorizationError("Player profile required")

    return {**user, "player_id": player.id}
