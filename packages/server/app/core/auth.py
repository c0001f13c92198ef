"""
Authentication for the in-app (session) path.

Supports:
- Email/Password login with bcrypt hashes
- JWT session tokens presented as ``Authorization: Bearer <jwt>``
- Session revocation list in Redis
- Role dependencies (trainee, supervisor)

Magic-link recipients never pass through here: their token is checked by the
link validator, not by this module.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
import jwt
import structlog
from fastapi import Depends
from fastapi.security import APIKeyHeader
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.database import get_session
from app.core.errors import Unauthorized
from app.core.redis import is_session_revoked
from app.models.user import User
from portfolio_shared.schemas.common import UserRole

log = structlog.get_logger()
settings = get_settings()

authorization_header = APIKeyHeader(name="Authorization", auto_error=False)

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------

def hash_password(password: str) -> str:
    """Hash a password using bcrypt with cost factor 12."""
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=12)).decode()


def verify_password(password: str, hashed: str) -> bool:
    """Verify a password against a bcrypt hash."""
    return bcrypt.checkpw(password.encode(), hashed.encode())


# ---------------------------------------------------------------------------
# JWT
# ---------------------------------------------------------------------------

def create_jwt(
    user_id: uuid.UUID,
    role: str,
    *,
    expires_delta: timedelta | None = None,
) -> tuple[str, str]:
    """Create a signed session JWT. Returns (token, jti)."""
    jti = str(uuid.uuid4())
    now = datetime.now(timezone.utc)
    exp = now + (expires_delta or timedelta(minutes=settings.jwt_expire_minutes))
    payload = {
        "sub": str(user_id),
        "role": role,
        "iat": now,
        "exp": exp,
        "jti": jti,
    }
    token = jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)
    return token, jti


def decode_jwt(token: str) -> dict:
    """Decode and verify a JWT. Raises jwt.PyJWTError on failure."""
    return jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if authorization and authorization.startswith("Bearer "):
        return authorization[7:].strip() or None
    return None


# ---------------------------------------------------------------------------
# Authentication dependencies
# ---------------------------------------------------------------------------

class AuthenticatedUser:
    """Container for an authenticated user and the session that proved it."""

    def __init__(self, user: User, jti: Optional[str] = None):
        self.user = user
        self.user_id = user.id
        self.role = user.role
        self.jti = jti


async def get_authenticated_user(
    authorization: Optional[str] = Depends(authorization_header),
    session: AsyncSession = Depends(get_session),
) -> AuthenticatedUser:
    """Main authentication dependency: a Bearer session JWT is required."""
    token = bearer_token(authorization)
    if not token:
        raise Unauthorized("missing bearer session")

    try:
        payload = decode_jwt(token)
    except jwt.PyJWTError:
        raise Unauthorized("invalid or expired session")

    jti = payload.get("jti")
    if jti and await is_session_revoked(jti):
        raise Unauthorized("session revoked")

    try:
        user_id = uuid.UUID(payload["sub"])
    except (KeyError, ValueError):
        raise Unauthorized("malformed session subject")

    user = await session.get(User, user_id)
    if not user:
        raise Unauthorized("user not found")

    return AuthenticatedUser(user=user, jti=jti)


async def require_trainee(
    auth: AuthenticatedUser = Depends(get_authenticated_user),
) -> AuthenticatedUser:
    """Requires the trainee role (evidence owners)."""
    if auth.role != UserRole.TRAINEE.value:
        log.warning("auth.role_denied", user_id=str(auth.user_id), role=auth.role, required="trainee")
        raise Unauthorized("trainee role required")
    return auth


async def require_supervisor(
    auth: AuthenticatedUser = Depends(get_authenticated_user),
) -> AuthenticatedUser:
    """Requires a supervisor account with a GMC number on file."""
    if auth.role != UserRole.SUPERVISOR.value or not auth.user.gmc_number:
        log.warning("auth.role_denied", user_id=str(auth.user_id), role=auth.role, required="supervisor")
        raise Unauthorized("supervisor role required")
    return auth
