"""
Evidence audit trail.

Every state change on an evidence record appends one EvidenceEvent in the same
transaction as the change, so the trail can never disagree with the record.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.models.base import utcnow
from app.models.evidence_event import EvidenceEvent

log = structlog.get_logger()

ACTOR_USER = "user"
ACTOR_MAGIC_LINK = "magic_link"
ACTOR_SYSTEM = "system"


async def record_event(
    session: AsyncSession,
    evidence_id: UUID,
    event_type: str,
    payload: dict[str, Any] | None = None,
    actor_id: UUID | None = None,
    actor_type: str = ACTOR_SYSTEM,
    timestamp: Optional[datetime] = None,
) -> EvidenceEvent:
    """Append an audit event. Flushes but never commits; the caller owns the transaction."""
    event = EvidenceEvent(
        evidence_id=evidence_id,
        type=event_type,
        actor_id=actor_id,
        actor_type=actor_type,
        payload=payload or {},
        timestamp=timestamp or utcnow(),
    )
    session.add(event)
    await session.flush()

    log.info(
        event_type,
        evidence_id=str(evidence_id),
        actor_type=actor_type,
        actor_id=str(actor_id) if actor_id else None,
    )
    return event


async def list_events(session: AsyncSession, evidence_id: UUID) -> list[EvidenceEvent]:
    result = await session.execute(
        select(EvidenceEvent)
        .where(EvidenceEvent.evidence_id == evidence_id)
        .order_by(EvidenceEvent.timestamp)
    )
    return list(result.scalars().all())
