"""
Authentication endpoints.

- Email/Password login returning a Bearer session JWT
- Logout (session revocation)
- Current user
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

import structlog
from fastapi import APIRouter, Depends
from pydantic import BaseModel, EmailStr
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.auth import (
    AuthenticatedUser,
    create_jwt,
    decode_jwt,
    get_authenticated_user,
    verify_password,
    bearer_token,
    authorization_header,
)
from app.core.config import get_settings
from app.core.database import get_session
from app.core.errors import Unauthorized
from app.core.redis import revoke_session
from app.models.user import User

log = structlog.get_logger()
settings = get_settings()
router = APIRouter()


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user_id: str
    role: str


class MeResponse(BaseModel):
    user_id: str
    email: str
    name: str
    role: str
    gmc_number: Optional[str] = None


@router.post("/login", response_model=TokenResponse)
async def login(
    body: LoginRequest,
    session: AsyncSession = Depends(get_session),
):
    """Authenticate with email/password and receive a session JWT."""
    result = await session.execute(select(User).where(User.email == body.email))
    user = result.scalar_one_or_none()

    if not user or not user.password_hash:
        raise Unauthorized("unknown user")

    if not verify_password(body.password, user.password_hash):
        log.warning("auth.login_failure", email=body.email, reason="bad_password")
        raise Unauthorized("bad password")

    token, _jti = create_jwt(user.id, user.role)
    log.info("auth.login_success", user_id=str(user.id))
    return TokenResponse(
        access_token=token,
        expires_in=settings.jwt_expire_minutes * 60,
        user_id=str(user.id),
        role=user.role,
    )


@router.post("/logout")
async def logout(
    authorization: Optional[str] = Depends(authorization_header),
    auth: AuthenticatedUser = Depends(get_authenticated_user),
):
    """Revoke the current session until it would have expired anyway."""
    payload = decode_jwt(bearer_token(authorization) or "")
    remaining = int(payload["exp"] - datetime.now(timezone.utc).timestamp())
    if auth.jti and remaining > 0:
        await revoke_session(auth.jti, ttl_seconds=remaining)
    log.info("auth.logout", user_id=str(auth.user_id))
    return {"success": True}


@router.get("/me", response_model=MeResponse)
async def me(auth: AuthenticatedUser = Depends(get_authenticated_user)):
    return MeResponse(
        user_id=str(auth.user_id),
        email=auth.user.email,
        name=auth.user.name,
        role=auth.role,
        gmc_number=auth.user.gmc_number,
    )
