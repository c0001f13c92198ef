"""Token store: magic-link rows. Links are only ever inserted and marked used."""

from __future__ import annotations

import secrets
import uuid
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.config import get_settings
from app.models.base import utcnow
from app.models.magic_link import MagicLink

TOKEN_BYTES = 32


def generate_token() -> str:
    """256 bits from the OS CSPRNG, hex encoded (64 chars)."""
    return secrets.token_hex(TOKEN_BYTES)


async def create_link(
    session: AsyncSession,
    *,
    evidence_id: uuid.UUID,
    recipient_email: str,
    form_type: str,
    created_by: uuid.UUID,
    recipient_gmc: Optional[str] = None,
    now: Optional[datetime] = None,
    ttl: Optional[timedelta] = None,
) -> MagicLink:
    created_at = now or utcnow()
    ttl = ttl or timedelta(hours=get_settings().magic_link_ttl_hours)
    link = MagicLink(
        token=generate_token(),
        evidence_id=evidence_id,
        recipient_email=recipient_email,
        recipient_gmc=recipient_gmc,
        form_type=form_type,
        created_by=created_by,
        created_at=created_at,
        expires_at=created_at + ttl,
    )
    session.add(link)
    await session.flush()
    return link


async def get_link(session: AsyncSession, token: str) -> Optional[MagicLink]:
    result = await session.execute(
        select(MagicLink)
        .where(MagicLink.token == token)
        .execution_options(populate_existing=True)
    )
    return result.scalars().first()


async def consume(session: AsyncSession, token: str, now: datetime) -> bool:
    """Mark a link used if it is still unused and unexpired. Returns False if another caller won."""
    result = await session.execute(
        update(MagicLink)
        .where(
            MagicLink.token == token,
            MagicLink.used_at.is_(None),
            MagicLink.expires_at > now,
        )
        .values(used_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1
