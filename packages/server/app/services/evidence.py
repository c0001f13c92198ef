"""
In-app evidence operations (session-authenticated path).

Handles:
- Visibility (owner, or supervisor of record)
- Save, submit, sign-off and decline through the sign-off state machine
- Conversion of ORM rows to API read models
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import RecordNotFound, Unauthorized
from app.core.events import ACTOR_USER, record_event
from app.models.base import as_utc
from app.models.evidence import EvidenceRecord
from app.models.evidence_event import EvidenceEvent
from app.models.user import User
from app.services import evidence_store
from app.services.signoff import (
    Action,
    Actor,
    Role,
    SupervisorIdentity,
    plan_transition,
    roles_of,
)
from portfolio_shared.schemas.evidence import (
    EvidenceEventRead,
    EvidenceRead,
    SupervisorIdentity as SupervisorIdentityRead,
)


def to_read(record: EvidenceRecord) -> EvidenceRead:
    return EvidenceRead(
        id=record.id,
        owner_id=record.owner_id,
        kind=record.kind,
        title=record.title,
        status=record.status,
        data=record.data or {},
        version=record.version,
        supervisor=SupervisorIdentityRead(
            name=record.supervisor_name,
            email=record.supervisor_email,
            gmc=record.supervisor_gmc,
        ),
        supervisor_confirmed=record.supervisor_confirmed,
        unlocked_fields=record.unlocked_fields or [],
        submitted_at=as_utc(record.submitted_at),
        signed_off_at=as_utc(record.signed_off_at),
        last_signed_off_at=as_utc(record.last_signed_off_at),
        signed_off_by=record.signed_off_by,
        created_at=as_utc(record.created_at),
        updated_at=as_utc(record.updated_at),
    )


def event_to_read(event: EvidenceEvent) -> EvidenceEventRead:
    return EvidenceEventRead(
        id=event.id,
        evidence_id=event.evidence_id,
        type=event.type,
        actor_type=event.actor_type,
        actor_id=event.actor_id,
        payload=event.payload or {},
        timestamp=as_utc(event.timestamp),
    )


async def get_visible(session: AsyncSession, record_id: uuid.UUID, user: User) -> EvidenceRecord:
    """Owner or supervisor of record; anyone else gets a 404 so ids are not probeable."""
    record = await evidence_store.get_evidence_or_404(session, record_id)
    if not roles_of(record, Actor.for_user(user)):
        raise RecordNotFound(f"evidence {record_id}")
    return record


async def get_owned(session: AsyncSession, record_id: uuid.UUID, user: User) -> EvidenceRecord:
    record = await get_visible(session, record_id, user)
    if record.owner_id != user.id:
        raise Unauthorized("only the owner may do that")
    return record


async def _transition(
    session: AsyncSession,
    record: EvidenceRecord,
    user: User,
    action: Action,
    event_type: str,
    *,
    patch: Optional[dict[str, Any]] = None,
    identity: Optional[SupervisorIdentity] = None,
    event_payload: Optional[dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> EvidenceRecord:
    actor = Actor.for_user(user)
    updated = await evidence_store.compare_and_set(
        session,
        record.id,
        lambda fresh: plan_transition(fresh, actor, action, patch=patch, identity=identity, now=now),
    )
    await record_event(
        session,
        record.id,
        event_type,
        event_payload or {},
        actor_id=user.id,
        actor_type=ACTOR_USER,
    )
    return updated


async def save(
    session: AsyncSession, record: EvidenceRecord, user: User, updates: dict[str, Any]
) -> EvidenceRecord:
    return await _transition(
        session, record, user, Action.SAVE, "evidence.saved",
        patch=updates, event_payload={"keys": sorted(updates)},
    )


async def submit_for_signoff(
    session: AsyncSession,
    record: EvidenceRecord,
    user: User,
    identity: SupervisorIdentity,
    updates: Optional[dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> EvidenceRecord:
    return await _transition(
        session, record, user, Action.SUBMIT, "evidence.submitted",
        patch=updates, identity=identity, now=now,
        event_payload={"supervisor_email": identity.email, "supervisor_gmc": identity.gmc},
    )


async def sign_off(
    session: AsyncSession,
    record: EvidenceRecord,
    user: User,
    updates: Optional[dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> EvidenceRecord:
    identity = SupervisorIdentity(name=user.name, email=user.email, gmc=user.gmc_number)
    return await _transition(
        session, record, user, Action.SIGN_OFF, "evidence.signed_off",
        patch=updates, identity=identity, now=now,
        event_payload={"supervisor_email": user.email, "supervisor_gmc": user.gmc_number},
    )


async def decline(
    session: AsyncSession, record: EvidenceRecord, user: User, reason: Optional[str] = None
) -> EvidenceRecord:
    return await _transition(
        session, record, user, Action.DECLINE, "evidence.declined",
        event_payload={"reason": reason} if reason else None,
    )


def is_supervisor_of(record: EvidenceRecord, user: User) -> bool:
    return Role.SUPERVISOR in roles_of(record, Actor.for_user(user))
