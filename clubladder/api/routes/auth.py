"""Authentication route handlers."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from clubladder.api.routes import limiter, INVALID_CREDENTIALS_RESPONSE
from clubladder.database.db import get_db_session
from clubladder.services import auth_service, user_service, player_service
from clubladder.models.schemas import SignupRequest, LoginRequest, AuthResponse

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/api/auth/signup", response_model=AuthResponse)
@limiter.limit("10/minute")
async def signup(
    request: Request, payload: SignupRequest, session: AsyncSession = Depends(get_db_session)
):
    """Create an account with its player profile and return an access token."""
    try:
        phone_number = auth_service.normalize_phone_number(payload.phone_number)
        if await user_service.check_phone_exists(session, phone_number):
            raise HTTPException(status_code=400, detail="Phone number is already registered")
        if len(payload.password) < 8:
            raise HTTPException(status_code=400, detail="Password must be at least 8 characters long")
        if not any(char.isdigit() for char in payload.password):
            raise HTTPException(status_code=400, detail="Password must include at least one number")
        if not payload.full_name or not payload.full_name.strip():
            raise HTTPException(status_code=400, detail="Full name is required")

        created = await user_service.create_user_with_player(
            session,
            phone_number=phone_number,
            password_hash=auth_service.hash_password(payload.password),
            full_name=payload.full_name.strip(),
            email=payload.email,
            skill_level=payload.skill_level,
        )
        access_token = auth_service.create_access_token(
            data={"user_id": created["user_id"], "phone_number": phone_number}
        )
        return AuthResponse(
            access_token=access_token,
            user_id=created["user_id"],
            player_id=created["player_id"],
        )
    except HTTPException:
        raise
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Error during signup: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error during signup")


@router.post("/api/auth/login", response_model=AuthResponse)
@limiter.limit("10/minute")
async def login(
    request: Request, payload: LoginRequest, session: AsyncSession = Depends(get_db_session)
):
    """Login with phone number and password."""
    try:
        phone_number = auth_service.normalize_phone_number(payload.phone_number)
        user = await user_service.get_user_by_phone(session, phone_number)
        if not user or not auth_service.verify_password(payload.password, user["password_hash"]):
            raise INVALID_CREDENTIALS_RESPONSE

        player = await player_service.get_player_for_user(session, user["id"])
        access_token = auth_service.create_access_token(
            data={"user_id": user["id"], "phone_number": user["phone_number"]}
        )
        return AuthResponse(
            access_token=access_token,
            user_id=user["id"],
            player_id=player.id if player else None,
        )
    except HTTPException:
        raise
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Error during login: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error during login")
