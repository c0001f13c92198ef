"""Edit request resolution endpoints (supervisor of record only)."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import AuthenticatedUser, require_supervisor
from app.core.database import get_session
from app.models.base import as_utc
from app.models.edit_request import EditRequest
from app.services.edit_requests import (
    approve_edit_request,
    deny_edit_request,
    get_request_or_404,
)
from portfolio_shared.schemas.evidence import EditRequestApprove, EditRequestRead

router = APIRouter()


def to_read(edit_request: EditRequest) -> EditRequestRead:
    return EditRequestRead(
        id=edit_request.id,
        evidence_id=edit_request.evidence_id,
        trainee_id=edit_request.trainee_id,
        reason=edit_request.reason,
        requested_fields=edit_request.requested_fields or [],
        unlocked_fields=edit_request.unlocked_fields or [],
        status=edit_request.status,
        created_at=as_utc(edit_request.created_at),
        resolved_at=as_utc(edit_request.resolved_at),
        resolved_by=edit_request.resolved_by,
    )


@router.post("/{requestId}/approve", response_model=EditRequestRead)
async def approve_endpoint(
    requestId: uuid.UUID,
    body: EditRequestApprove,
    auth: AuthenticatedUser = Depends(require_supervisor),
    session: AsyncSession = Depends(get_session),
):
    """Unlock the named (or requested) fields and return the record to Draft."""
    edit_request = await get_request_or_404(session, requestId)
    edit_request, _record = await approve_edit_request(session, edit_request, auth.user, body.fields)
    return to_read(edit_request)


@router.post("/{requestId}/deny", response_model=EditRequestRead)
async def deny_endpoint(
    requestId: uuid.UUID,
    auth: AuthenticatedUser = Depends(require_supervisor),
    session: AsyncSession = Depends(get_session),
):
    edit_request = await get_request_or_404(session, requestId)
    edit_request = await deny_edit_request(session, edit_request, auth.user)
    return to_read(edit_request)
