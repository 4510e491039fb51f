"""Authentication endpoints and access dependencies.

Paths:
  /api/v1/auth/login, /logout, /me
"""

import uuid
from datetime import datetime, timezone as tz
from typing import Annotated, Any

from fastapi import APIRouter, Cookie, Depends, HTTPException, Response, status
from pydantic import BaseModel, EmailStr
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from liftcoach.core.config import get_settings
from liftcoach.core.database import get_db
from liftcoach.core.security import verify_password
from liftcoach.core.session import create_session, delete_session, get_session
from liftcoach.models.user import User

settings = get_settings()
router = APIRouter()

SESSION_COOKIE_NAME = "session_id"


# -------------------------------------------------------------------------
# Request/Response Models
# -------------------------------------------------------------------------


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class LoginResponse(BaseModel):
    success: bool
    message: str
    user: dict[str, Any]


class UserResponse(BaseModel):
    id: uuid.UUID
    email: str
    display_name: str | None
    is_admin: bool
    last_login_at: str | None


# -------------------------------------------------------------------------
# Dependencies
# -------------------------------------------------------------------------


async def get_current_user(
    session_id: Annotated[str | None, Cookie(alias=SESSION_COOKIE_NAME)] = None,
    db: AsyncSession = Depends(get_db),
) -> User:
    """Resolve the logged-in user from the session cookie.

    Raises:
        HTTPException: 401 if there is no valid session.
    """
    if not session_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )

    session_data = await get_session(session_id)
    if not session_data:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session expired or invalid",
        )

    try:
        user_id = uuid.UUID(str(session_data.get("user_id")))
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid session data",
        )

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )
    return user


def ensure_self_or_admin(user_id: uuid.UUID, current_user: User) -> None:
    """Users act on their own data; admins act on anyone's."""
    if current_user.id != user_id and not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not allowed to access another user's data",
        )


def ensure_admin(current_user: User) -> None:
    if not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required",
        )


# -------------------------------------------------------------------------
# Endpoints
# -------------------------------------------------------------------------


@router.post("/login", response_model=LoginResponse)
async def login(
    request: LoginRequest,
    response: Response,
    db: AsyncSession = Depends(get_db),
) -> LoginResponse:
    """Login with email and password; sets the session cookie."""
    result = await db.execute(select(User).where(User.email == request.email))
    user = result.scalar_one_or_none()

    if not user or not verify_password(request.password, user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
        )

    user.last_login_at = datetime.now(tz.utc)
    await db.commit()

    session_id = await create_session(
        user_id=str(user.id),
        user_data={"email": user.email, "is_admin": user.is_admin},
    )

    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=session_id,
        httponly=True,
        secure=settings.cookie_secure,
        samesite=settings.cookie_samesite,
        max_age=settings.session_ttl_seconds,
    )

    return LoginResponse(
        success=True,
        message="Login successful",
        user={
            "id": str(user.id),
            "email": user.email,
            "display_name": user.display_name,
            "is_admin": user.is_admin,
        },
    )


@router.post("/logout")
async def logout(
    response: Response,
    session_id: Annotated[str | None, Cookie(alias=SESSION_COOKIE_NAME)] = None,
) -> dict[str, str]:
    """Logout and invalidate session."""
    if session_id:
        await delete_session(session_id)

    response.delete_cookie(
        key=SESSION_COOKIE_NAME,
        httponly=True,
        secure=settings.cookie_secure,
        samesite=settings.cookie_samesite,
    )
    return {"message": "Logged out successfully"}


@router.get("/me", response_model=UserResponse)
async def get_me(
    current_user: Annotated[User, Depends(get_current_user)],
) -> UserResponse:
    return UserResponse(
        id=current_user.id,
        email=current_user.email,
        display_name=current_user.display_name,
        is_admin=current_user.is_admin,
        last_login_at=current_user.last_login_at.isoformat() if current_user.last_login_at else None,
    )
