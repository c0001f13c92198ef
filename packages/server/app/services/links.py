"""
Link issuer.

Creates a magic link for one evidence record and one recipient, commits it,
then asks the email collaborator to deliver the URL. A failed send never
fails issuance; the caller gets the URL back with a warning.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from urllib.parse import urlencode

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.email import EmailDeliveryError, ResendEmailSender, render_link_email
from app.core.errors import InvalidKind, Unauthorized
from app.core.events import ACTOR_USER, record_event
from app.core.logging import token_hint
from app.models.evidence import EvidenceRecord
from app.models.magic_link import MagicLink
from app.models.user import User
from app.services import evidence_store, token_store
from app.services.signoff import Actor, Role, roles_of, same_email
from app.services.validator import form_type_matches
from portfolio_shared.schemas.common import MSF_RESPONSE, EvidenceStatus

log = structlog.get_logger()

EMAIL_WARNING = "The link was created but the email could not be sent. Share the link with the recipient directly."


@dataclass
class IssuedLink:
    link: MagicLink
    url: str
    warning: Optional[str] = None

    @property
    def token(self) -> str:
        return self.link.token


def build_url(token: str) -> str:
    return f"{get_settings().app_url}?{urlencode({'token': token})}"


def can_issue(record: EvidenceRecord, issuer: User, form_type: str, recipient_email: str) -> bool:
    """Who may send a link to whom.

    MSF respondent links are the owner's to hand out while the MSF is collecting.
    Any other link on a Submitted record may only go to the supervisor named at
    submission, so a new link can never substitute a different signer.
    """
    roles = roles_of(record, Actor.for_user(issuer))
    status = record.status
    if form_type == MSF_RESPONSE:
        return Role.OWNER in roles and status in (
            EvidenceStatus.DRAFT.value,
            EvidenceStatus.SUBMITTED.value,
        )
    if status == EvidenceStatus.DRAFT.value:
        return Role.OWNER in roles
    if status == EvidenceStatus.SUBMITTED.value:
        return bool(roles) and same_email(recipient_email, record.supervisor_email)
    return False


async def prepare_link(
    session: AsyncSession,
    *,
    evidence_id: uuid.UUID,
    recipient_email: str,
    form_type: str,
    issuer: User,
    recipient_gmc: Optional[str] = None,
    now: Optional[datetime] = None,
) -> MagicLink:
    """Check access and persist a new link. Flushes; the caller commits."""
    record = await evidence_store.get_evidence_or_404(session, evidence_id)
    if not form_type_matches(form_type, record.kind):
        raise InvalidKind(f"form type {form_type!r} does not match kind {record.kind!r}")
    if not can_issue(record, issuer, form_type, recipient_email):
        log.warning("magic_link.issue_denied", evidence_id=str(evidence_id), user_id=str(issuer.id))
        raise Unauthorized("issuer has no write access to this record")

    link = await token_store.create_link(
        session,
        evidence_id=record.id,
        recipient_email=recipient_email,
        recipient_gmc=recipient_gmc,
        form_type=form_type,
        created_by=issuer.id,
        now=now,
    )
    await record_event(
        session,
        record.id,
        "magic_link.issued",
        {"link_id": str(link.id), "recipient_email": recipient_email, "form_type": form_type},
        actor_id=issuer.id,
        actor_type=ACTOR_USER,
        timestamp=link.created_at,
    )
    return link


async def send_link_email(
    session: AsyncSession, link: MagicLink, url: str, sender: ResendEmailSender
) -> Optional[str]:
    """Deliver the link. Returns a warning for the issuer instead of raising."""
    record = await evidence_store.get_evidence_or_404(session, link.evidence_id)
    owner = await session.get(User, record.owner_id)
    subject, html = render_link_email(
        form_type=link.form_type,
        kind=record.kind,
        title=record.title,
        trainee_name=owner.name if owner else "a trainee",
        url=url,
    )
    try:
        await sender.send(link.recipient_email, subject, html)
    except EmailDeliveryError as exc:
        log.warning(
            "magic_link.email_failed",
            token=token_hint(link.token),
            evidence_id=str(link.evidence_id),
            error=str(exc),
        )
        return EMAIL_WARNING
    return None


async def issue_link(
    session: AsyncSession,
    *,
    evidence_id: uuid.UUID,
    recipient_email: str,
    form_type: str,
    issuer: User,
    sender: ResendEmailSender,
    recipient_gmc: Optional[str] = None,
    now: Optional[datetime] = None,
) -> IssuedLink:
    link = await prepare_link(
        session,
        evidence_id=evidence_id,
        recipient_email=recipient_email,
        form_type=form_type,
        issuer=issuer,
        recipient_gmc=recipient_gmc,
        now=now,
    )
    await session.commit()

    url = build_url(link.token)
    warning = await send_link_email(session, link, url, sender)
    return IssuedLink(link=link, url=url, warning=warning)
