"""
Evidence endpoints (session-authenticated).

Status flow: Draft -> Submitted -> COMPLETE
- Owner saves and submits while Draft; submitting issues a magic link to the supervisor.
- Supervisor of record saves, signs off or declines while Submitted.
- Signed-off records only re-open through an approved edit request.
"""

from __future__ import annotations

import uuid
from typing import List

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import AuthenticatedUser, get_authenticated_user, require_supervisor, require_trainee
from app.core.database import get_session
from app.core.email import ResendEmailSender, get_email_sender
from app.core.events import list_events
from app.models.base import as_utc
from app.services import evidence as evidence_service
from app.services import evidence_store
from app.services.edit_requests import request_edit
from app.services.links import build_url, prepare_link, send_link_email
from app.services.signoff import SupervisorIdentity
from app.api.v1.edit_requests import to_read as edit_request_to_read
from portfolio_shared.schemas.evidence import (
    DeclineBody,
    EditRequestCreate,
    EditRequestRead,
    EvidenceCreate,
    EvidenceEventRead,
    EvidenceRead,
    EvidenceUpdate,
    SignOffBody,
    SubmitForSignOff,
    SubmitForSignOffResponse,
)

router = APIRouter()


@router.post("/", response_model=EvidenceRead, status_code=201)
async def create_evidence_endpoint(
    body: EvidenceCreate,
    auth: AuthenticatedUser = Depends(require_trainee),
    session: AsyncSession = Depends(get_session),
):
    """Create a Draft record owned by the caller."""
    record = await evidence_store.create_evidence(
        session, auth.user_id, body.kind.value, body.title, body.data
    )
    return evidence_service.to_read(record)


@router.get("/{evidenceId}", response_model=EvidenceRead)
async def get_evidence_endpoint(
    evidenceId: uuid.UUID,
    auth: AuthenticatedUser = Depends(get_authenticated_user),
    session: AsyncSession = Depends(get_session),
):
    record = await evidence_service.get_visible(session, evidenceId, auth.user)
    return evidence_service.to_read(record)


@router.patch("/{evidenceId}", response_model=EvidenceRead)
async def update_evidence_endpoint(
    evidenceId: uuid.UUID,
    body: EvidenceUpdate,
    auth: AuthenticatedUser = Depends(get_authenticated_user),
    session: AsyncSession = Depends(get_session),
):
    """Merge ``updates`` into the payload. Who may write depends on the status."""
    record = await evidence_service.get_visible(session, evidenceId, auth.user)
    record = await evidence_service.save(session, record, auth.user, body.updates)
    return evidence_service.to_read(record)


@router.delete("/{evidenceId}", status_code=204)
async def delete_evidence_endpoint(
    evidenceId: uuid.UUID,
    auth: AuthenticatedUser = Depends(require_trainee),
    session: AsyncSession = Depends(get_session),
):
    """Logical delete by the owner. Rows are never physically removed."""
    record = await evidence_service.get_owned(session, evidenceId, auth.user)
    await evidence_store.soft_delete(session, record, auth.user_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


@router.post("/{evidenceId}/submit", response_model=SubmitForSignOffResponse)
async def submit_for_signoff_endpoint(
    evidenceId: uuid.UUID,
    body: SubmitForSignOff,
    auth: AuthenticatedUser = Depends(require_trainee),
    session: AsyncSession = Depends(get_session),
    sender: ResendEmailSender = Depends(get_email_sender),
):
    """Draft -> Submitted, and issue the supervisor's magic link in the same transaction."""
    record = await evidence_service.get_owned(session, evidenceId, auth.user)
    identity = SupervisorIdentity(
        name=body.supervisor_name,
        email=str(body.supervisor_email),
        gmc=body.supervisor_gmc,
    )
    record = await evidence_service.submit_for_signoff(
        session, record, auth.user, identity, body.updates or None
    )
    link = await prepare_link(
        session,
        evidence_id=record.id,
        recipient_email=identity.email,
        recipient_gmc=identity.gmc,
        form_type=record.kind,
        issuer=auth.user,
    )
    await session.commit()

    url = build_url(link.token)
    warning = await send_link_email(session, link, url, sender)
    return SubmitForSignOffResponse(
        evidence=evidence_service.to_read(record),
        magic_link=url,
        expires_at=as_utc(link.expires_at),
        warning=warning,
    )


@router.post("/{evidenceId}/sign-off", response_model=EvidenceRead)
async def sign_off_endpoint(
    evidenceId: uuid.UUID,
    body: SignOffBody,
    auth: AuthenticatedUser = Depends(require_supervisor),
    session: AsyncSession = Depends(get_session),
):
    record = await evidence_service.get_visible(session, evidenceId, auth.user)
    record = await evidence_service.sign_off(session, record, auth.user, body.updates or None)
    return evidence_service.to_read(record)


@router.post("/{evidenceId}/decline", response_model=EvidenceRead)
async def decline_endpoint(
    evidenceId: uuid.UUID,
    body: DeclineBody,
    auth: AuthenticatedUser = Depends(require_supervisor),
    session: AsyncSession = Depends(get_session),
):
    """Send the record back to the trainee as Draft."""
    record = await evidence_service.get_visible(session, evidenceId, auth.user)
    record = await evidence_service.decline(session, record, auth.user, body.reason)
    return evidence_service.to_read(record)


# ---------------------------------------------------------------------------
# Audit trail and edit requests
# ---------------------------------------------------------------------------


@router.get("/{evidenceId}/events", response_model=List[EvidenceEventRead])
async def list_events_endpoint(
    evidenceId: uuid.UUID,
    auth: AuthenticatedUser = Depends(get_authenticated_user),
    session: AsyncSession = Depends(get_session),
):
    record = await evidence_service.get_visible(session, evidenceId, auth.user)
    events = await list_events(session, record.id)
    return [evidence_service.event_to_read(e) for e in events]


@router.post("/{evidenceId}/edit-requests", response_model=EditRequestRead, status_code=201)
async def create_edit_request_endpoint(
    evidenceId: uuid.UUID,
    body: EditRequestCreate,
    auth: AuthenticatedUser = Depends(require_trainee),
    session: AsyncSession = Depends(get_session),
):
    """Ask the supervisor of record to re-open named fields of a signed-off record."""
    record = await evidence_service.get_owned(session, evidenceId, auth.user)
    edit_request = await request_edit(session, record, auth.user, body.reason, body.fields)
    return edit_request_to_read(edit_request)
