"""
Submission gateway: the only write path for magic-link holders.

Every call re-validates the token against the database; an earlier page-load
validation is never trusted. A terminal submission consumes the token and
signs the record off in one transaction: either both happen or neither does.

MSF respondent links never sign anything off. Their answers go under the
respondent's own entry of the MSF record and completing burns only that link.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

import structlog
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import (
    AlreadySignedOff,
    InvalidKind,
    InvalidRequest,
    RecordMismatch,
    TokenInvalid,
    TransientStorageError,
)
from app.core.events import ACTOR_MAGIC_LINK, record_event
from app.core.logging import token_hint
from app.models.base import utcnow
from app.models.evidence import EvidenceRecord
from app.models.magic_link import MagicLink
from app.services import evidence_store, token_store
from app.services.signoff import (
    Action,
    Actor,
    SupervisorIdentity,
    plan_msf_response,
    plan_transition,
)
from app.services.validator import authorize_token
from portfolio_shared.schemas.common import MSF_RESPONSE, EvidenceStatus, TokenInvalidReason

log = structlog.get_logger()

# Record-level keys a form client must never set through the payload.
RESERVED_KEYS = frozenset(
    {
        "id",
        "ownerId",
        "owner_id",
        "kind",
        "status",
        "version",
        "submittedAt",
        "signedOffAt",
        "signed_off_at",
        "lastSignedOffAt",
        "signedOffBy",
        "supervisorEmail",
        "supervisorConfirmed",
        "unlockedFields",
        "msfResponses",
        "createdAt",
        "updatedAt",
        "deletedAt",
    }
)

IDENTITY_KEYS = {"supervisorName": "name", "supervisorGmc": "gmc"}


@dataclass
class SubmissionResult:
    record: EvidenceRecord
    consumed: bool = False
    stripped: list[str] = field(default_factory=list)

    @property
    def status(self) -> str:
        return self.record.status


def split_updates(updates: dict[str, Any]) -> tuple[dict[str, Any], dict[str, str], list[str]]:
    """Separate a client patch into (payload, identity fields, stripped reserved keys)."""
    payload: dict[str, Any] = {}
    identity: dict[str, str] = {}
    stripped: list[str] = []
    for key, value in (updates or {}).items():
        if key in IDENTITY_KEYS:
            if isinstance(value, str) and value.strip():
                identity[IDENTITY_KEYS[key]] = value.strip()
        elif key in RESERVED_KEYS:
            stripped.append(key)
        else:
            payload[key] = value
    return payload, identity, sorted(stripped)


async def submit(
    session: AsyncSession,
    token: str,
    record_id: uuid.UUID,
    updates: dict[str, Any],
    *,
    terminal: bool,
    form_type: Optional[str] = None,
    now: Optional[datetime] = None,
) -> SubmissionResult:
    """Apply a token holder's patch, and on ``terminal`` sign the record off.

    Owns the transaction: commits on success and rolls back on any failure.
    Storage faults surface as TransientStorageError, the one retryable error.
    """
    try:
        result = await _submit(session, token, record_id, updates, terminal, form_type, now or utcnow())
        await session.commit()
    except OperationalError as exc:
        await session.rollback()
        log.error("gateway.storage_error", token=token_hint(token), error=str(exc.orig))
        raise TransientStorageError(str(exc.orig)) from exc
    except Exception:
        await session.rollback()
        raise
    return result


async def _submit(
    session: AsyncSession,
    token: str,
    record_id: uuid.UUID,
    updates: dict[str, Any],
    terminal: bool,
    form_type: Optional[str],
    now: datetime,
) -> SubmissionResult:
    link, record = await authorize_token(session, token, now)
    if record_id != link.evidence_id:
        log.warning(
            "gateway.record_mismatch",
            token=token_hint(token),
            claimed=str(record_id),
            target=str(link.evidence_id),
        )
        raise RecordMismatch(f"token is for {link.evidence_id}")
    if form_type and form_type != link.form_type:
        raise InvalidKind(f"form type {form_type!r} does not match link")

    payload, identity_fields, stripped = split_updates(updates)
    if stripped:
        log.warning("gateway.reserved_keys_stripped", token=token_hint(token), keys=stripped)

    if link.form_type == MSF_RESPONSE:
        saved = await _record_msf_response(session, link, record, payload, terminal, now)
        return SubmissionResult(record=saved, consumed=terminal, stripped=stripped)

    identity = SupervisorIdentity(
        name=identity_fields.get("name"),
        email=link.recipient_email,
        gmc=identity_fields.get("gmc") or link.recipient_gmc,
    )
    actor = Actor.for_link(link, credential_id=identity.gmc)

    if terminal:
        signed = await _sign_off(session, link, record, actor, payload, identity, now)
        return SubmissionResult(record=signed, consumed=True, stripped=stripped)

    saved = await evidence_store.compare_and_set(
        session,
        record.id,
        lambda fresh: plan_transition(fresh, actor, Action.SAVE, patch=payload, now=now),
    )
    await record_event(
        session,
        record.id,
        "evidence.saved",
        {"keys": sorted(payload), "link_id": str(link.id)},
        actor_type=ACTOR_MAGIC_LINK,
        timestamp=now,
    )
    return SubmissionResult(record=saved, stripped=stripped)


async def _sign_off(
    session: AsyncSession,
    link: MagicLink,
    record: EvidenceRecord,
    actor: Actor,
    payload: dict[str, Any],
    identity: SupervisorIdentity,
    now: datetime,
) -> EvidenceRecord:
    if not identity.gmc:
        raise InvalidRequest("Please enter your GMC number to sign off.")

    if not await token_store.consume(session, link.token, now):
        log.info("gateway.consume_lost", token=token_hint(link.token))
        raise AlreadySignedOff("token consumed by a concurrent submission")

    def build(fresh: EvidenceRecord) -> dict[str, Any]:
        if fresh.status == EvidenceStatus.SIGNED_OFF.value:
            raise AlreadySignedOff("record signed off by a concurrent submission")
        return plan_transition(
            fresh, actor, Action.SIGN_OFF, patch=payload, identity=identity, now=now
        )

    signed = await evidence_store.compare_and_set(session, record.id, build)
    await record_event(
        session,
        record.id,
        "evidence.signed_off",
        {
            "link_id": str(link.id),
            "form_type": link.form_type,
            "supervisor_email": identity.email,
            "supervisor_gmc": signed.supervisor_gmc,
        },
        actor_type=ACTOR_MAGIC_LINK,
        timestamp=now,
    )
    return signed


async def _record_msf_response(
    session: AsyncSession,
    link: MagicLink,
    record: EvidenceRecord,
    payload: dict[str, Any],
    terminal: bool,
    now: datetime,
) -> EvidenceRecord:
    """Store one respondent's answers; completing burns only their link."""
    if terminal and not await token_store.consume(session, link.token, now):
        log.info("gateway.consume_lost", token=token_hint(link.token))
        raise TokenInvalid(TokenInvalidReason.USED, "consumed by a concurrent submission")

    saved = await evidence_store.compare_and_set(
        session,
        record.id,
        lambda fresh: plan_msf_response(
            fresh, link.recipient_email, payload, complete=terminal, now=now
        ),
    )
    await record_event(
        session,
        record.id,
        "msf.response_completed" if terminal else "msf.response_saved",
        {
            "link_id": str(link.id),
            "respondent_email": link.recipient_email,
            "keys": sorted(payload),
        },
        actor_type=ACTOR_MAGIC_LINK,
        timestamp=now,
    )
    return saved
