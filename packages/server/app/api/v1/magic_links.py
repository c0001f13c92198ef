"""
Magic-link endpoints, mounted at the application root.

- POST /create-magic-link       issuer (session Bearer JWT) creates a link
- POST /validate-magic-link     recipient opens a link (token only, read-only)
- POST /submit-magic-link-form  recipient saves or completes the form (token only)

Only /create-magic-link takes a session; for the other two the token in the
body is the credential.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import AuthenticatedUser, get_authenticated_user
from app.core.config import get_settings
from app.core.database import get_session
from app.core.email import ResendEmailSender, get_email_sender
from app.core.errors import TOKEN_MESSAGES, TransientStorageError
from app.core.logging import token_hint
from app.models.base import as_utc
from app.services import gateway
from app.services.evidence import to_read
from app.services.links import issue_link
from app.services.validator import validate_link
from portfolio_shared.schemas.common import TokenInvalidReason
from portfolio_shared.schemas.magic_links import (
    CreateMagicLinkRequest,
    CreateMagicLinkResponse,
    SubmitMagicLinkFormRequest,
    SubmitMagicLinkFormResponse,
    ValidateMagicLinkRequest,
    ValidateMagicLinkResponse,
)

log = structlog.get_logger()
router = APIRouter()


@router.post("/create-magic-link", response_model=CreateMagicLinkResponse)
async def create_magic_link(
    body: CreateMagicLinkRequest,
    auth: AuthenticatedUser = Depends(get_authenticated_user),
    session: AsyncSession = Depends(get_session),
    sender: ResendEmailSender = Depends(get_email_sender),
):
    """Issue a single-use link for one evidence record and email it to the recipient."""
    issued = await issue_link(
        session,
        evidence_id=body.evidence_id,
        recipient_email=str(body.recipient_email),
        recipient_gmc=body.recipient_gmc,
        form_type=body.form_type,
        issuer=auth.user,
        sender=sender,
    )
    return CreateMagicLinkResponse(
        magic_link=issued.url,
        token=issued.token,
        expires_at=as_utc(issued.link.expires_at),
        warning=issued.warning,
    )


@router.post("/validate-magic-link", response_model=ValidateMagicLinkResponse)
async def validate_magic_link(
    body: ValidateMagicLinkRequest,
    session: AsyncSession = Depends(get_session),
):
    """Check a link and return the scoped view: the target record and its declared links."""
    result = await validate_link(session, body.token)
    if not result.valid:
        status_code = 404 if result.reason == TokenInvalidReason.NOT_FOUND else 410
        content = ValidateMagicLinkResponse(
            valid=False,
            reason=result.reason,
            error=TOKEN_MESSAGES[result.reason],
        )
        return JSONResponse(status_code=status_code, content=content.model_dump(mode="json", exclude_none=True))

    view = result.view
    return ValidateMagicLinkResponse(
        valid=True,
        evidence=to_read(view.record).model_copy(update={"data": view.payload}),
        linked_evidence=[to_read(r) for r in view.linked],
        form_type=view.link.form_type,
        recipient_email=view.link.recipient_email,
        trainee_name=view.trainee_name or "Unknown",
        requires_gmc=view.requires_credential,
        expires_at=as_utc(view.link.expires_at),
    )


@router.post("/submit-magic-link-form", response_model=SubmitMagicLinkFormResponse)
async def submit_magic_link_form(
    body: SubmitMagicLinkFormRequest,
    session: AsyncSession = Depends(get_session),
):
    """Save partial progress (complete=false) or sign off and burn the link (complete=true).

    Typed refusals are never retried. Storage faults are retried a bounded
    number of times; every attempt re-validates the token from scratch.
    """
    attempts = max(1, get_settings().storage_max_attempts)
    for attempt in range(attempts):
        try:
            result = await gateway.submit(
                session,
                body.token,
                body.evidenceId,
                body.updates,
                terminal=body.complete,
                form_type=body.formType,
            )
        except TransientStorageError:
            if attempt + 1 >= attempts:
                raise
            log.warning("gateway.retry", token=token_hint(body.token), attempt=attempt + 1)
            continue
        return SubmitMagicLinkFormResponse(status=result.status)
