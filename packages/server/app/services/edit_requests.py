"""
Edit requests: the only way back into a signed-off record.

A trainee asks for named fields to be re-opened; the supervisor of record
approves (optionally naming different fields) or denies. Approval returns the
record to Draft with ``unlocked_fields`` set; only those keys are writable until
the next sign-off clears the list. ``signed_off_at`` is never rewritten.
"""

from __future__ import annotations

import uuid
from typing import Optional

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.errors import IllegalTransition, InvalidRequest, RecordNotFound, Unauthorized
from app.core.events import ACTOR_USER, record_event
from app.models.base import utcnow
from app.models.edit_request import EditRequest
from app.models.evidence import EvidenceRecord
from app.models.user import User
from app.services import evidence_store
from app.services.evidence import is_supervisor_of
from app.services.signoff import plan_amendment
from portfolio_shared.schemas.common import EditRequestStatus, EvidenceStatus

log = structlog.get_logger()


async def get_request_or_404(session: AsyncSession, request_id: uuid.UUID) -> EditRequest:
    edit_request = await session.get(EditRequest, request_id)
    if edit_request is None:
        raise RecordNotFound(f"edit request {request_id}")
    return edit_request


async def pending_for(session: AsyncSession, evidence_id: uuid.UUID) -> Optional[EditRequest]:
    result = await session.execute(
        select(EditRequest).where(
            EditRequest.evidence_id == evidence_id,
            EditRequest.status == EditRequestStatus.PENDING.value,
        )
    )
    return result.scalars().first()


async def request_edit(
    session: AsyncSession,
    record: EvidenceRecord,
    owner: User,
    reason: str,
    fields: list[str],
) -> EditRequest:
    if record.owner_id != owner.id:
        raise Unauthorized("only the owner may request an edit")
    if record.status != EvidenceStatus.SIGNED_OFF.value:
        raise IllegalTransition("edit requests are only for signed-off records")
    if not reason.strip():
        raise InvalidRequest("Please give a reason for the edit request.")
    if await pending_for(session, record.id) is not None:
        raise InvalidRequest("An edit request for this form is already pending.")

    edit_request = EditRequest(
        evidence_id=record.id,
        trainee_id=owner.id,
        reason=reason.strip(),
        requested_fields=sorted(set(fields)),
    )
    evidence_id = record.id
    session.add(edit_request)
    try:
        await session.flush()
    except IntegrityError:
        await session.rollback()
        log.info("edit_request.duplicate_pending", evidence_id=str(evidence_id))
        raise InvalidRequest("An edit request for this form is already pending.")

    await record_event(
        session,
        record.id,
        "edit_request.created",
        {"edit_request_id": str(edit_request.id), "fields": edit_request.requested_fields},
        actor_id=owner.id,
        actor_type=ACTOR_USER,
    )
    return edit_request


async def _resolvable(
    session: AsyncSession, edit_request: EditRequest, approver: User
) -> EvidenceRecord:
    if edit_request.status != EditRequestStatus.PENDING.value:
        raise IllegalTransition(f"edit request already {edit_request.status}")
    record = await evidence_store.get_evidence_or_404(session, edit_request.evidence_id)
    if not is_supervisor_of(record, approver):
        log.warning(
            "edit_request.resolve_denied",
            edit_request_id=str(edit_request.id),
            user_id=str(approver.id),
        )
        raise Unauthorized("only the supervisor of record may resolve edit requests")
    return record


async def approve_edit_request(
    session: AsyncSession,
    edit_request: EditRequest,
    approver: User,
    fields: Optional[list[str]] = None,
) -> tuple[EditRequest, EvidenceRecord]:
    record = await _resolvable(session, edit_request, approver)
    unlocked = sorted(set(fields if fields is not None else edit_request.requested_fields))
    if not unlocked:
        raise InvalidRequest("Name at least one field to unlock.")

    amended = await evidence_store.compare_and_set(
        session, record.id, lambda fresh: plan_amendment(fresh, unlocked)
    )

    edit_request.status = EditRequestStatus.APPROVED.value
    edit_request.unlocked_fields = unlocked
    edit_request.resolved_at = utcnow()
    edit_request.resolved_by = approver.id
    session.add(edit_request)
    await session.flush()

    await record_event(
        session,
        record.id,
        "edit_request.approved",
        {"edit_request_id": str(edit_request.id), "unlocked_fields": unlocked},
        actor_id=approver.id,
        actor_type=ACTOR_USER,
    )
    return edit_request, amended


async def deny_edit_request(
    session: AsyncSession, edit_request: EditRequest, approver: User
) -> EditRequest:
    record = await _resolvable(session, edit_request, approver)

    edit_request.status = EditRequestStatus.DENIED.value
    edit_request.resolved_at = utcnow()
    edit_request.resolved_by = approver.id
    session.add(edit_request)
    await session.flush()

    await record_event(
        session,
        record.id,
        "edit_request.denied",
        {"edit_request_id": str(edit_request.id)},
        actor_id=approver.id,
        actor_type=ACTOR_USER,
    )
    return edit_request
