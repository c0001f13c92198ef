"""
Link validator.

Answers "does this token authorize access right now?" and, if it does, returns
the scoped view the recipient may see: the target record and its declared
read-only links, never anything else the owner holds. Validation only reads;
opening a link never consumes it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import TokenInvalid
from app.core.logging import token_hint
from app.models.base import as_utc, utcnow
from app.models.evidence import EvidenceRecord
from app.models.magic_link import MagicLink
from app.models.user import User
from app.services import evidence_store, token_store
from portfolio_shared.schemas.common import (
    FORM_TYPE_KINDS,
    MSF_RESPONSE,
    EvidenceStatus,
    TokenInvalidReason,
)

log = structlog.get_logger()


@dataclass
class ScopedView:
    record: EvidenceRecord
    link: MagicLink
    linked: list[EvidenceRecord] = field(default_factory=list)
    trainee_name: Optional[str] = None

    @property
    def requires_credential(self) -> bool:
        return self.link.form_type != MSF_RESPONSE

    @property
    def payload(self) -> dict:
        """Record payload as this recipient may see it.

        An MSF respondent sees only their own response, never the others'.
        """
        data = dict(self.record.data or {})
        if self.link.form_type != MSF_RESPONSE:
            return data
        responses = data.pop(evidence_store.MSF_RESPONSES_KEY, None)
        own = (responses or {}).get(self.link.recipient_email)
        if own is not None:
            data[evidence_store.MSF_RESPONSES_KEY] = {self.link.recipient_email: own}
        return data


@dataclass
class ValidationResult:
    valid: bool
    reason: Optional[TokenInvalidReason] = None
    view: Optional[ScopedView] = None


def form_type_matches(form_type: str, kind: str) -> bool:
    expected = FORM_TYPE_KINDS.get(form_type)
    return expected is not None and expected.value == kind


async def authorize_token(
    session: AsyncSession, token: str, now: Optional[datetime] = None
) -> tuple[MagicLink, EvidenceRecord]:
    """Apply the validity checks in order: not_found, used, expired, target_signed_off."""
    now = now or utcnow()

    link = await token_store.get_link(session, token)
    if link is None:
        raise TokenInvalid(TokenInvalidReason.NOT_FOUND)
    if link.used_at is not None:
        raise TokenInvalid(TokenInvalidReason.USED)
    if now >= as_utc(link.expires_at):
        raise TokenInvalid(TokenInvalidReason.EXPIRED)

    record = await evidence_store.get_evidence(session, link.evidence_id)
    if record is None or not form_type_matches(link.form_type, record.kind):
        raise TokenInvalid(TokenInvalidReason.NOT_FOUND, "target missing or kind changed")
    if record.status == EvidenceStatus.SIGNED_OFF.value:
        raise TokenInvalid(TokenInvalidReason.TARGET_SIGNED_OFF)

    return link, record


async def validate_link(
    session: AsyncSession, token: str, now: Optional[datetime] = None
) -> ValidationResult:
    try:
        link, record = await authorize_token(session, token, now)
    except TokenInvalid as exc:
        log.info("magic_link.rejected", token=token_hint(token), reason=exc.reason.value)
        return ValidationResult(valid=False, reason=exc.reason)

    owner = await session.get(User, record.owner_id)
    view = ScopedView(
        record=record,
        link=link,
        linked=await evidence_store.list_linked(session, record),
        trainee_name=owner.name if owner else None,
    )
    log.info("magic_link.validated", token=token_hint(token), evidence_id=str(record.id))
    return ValidationResult(valid=True, view=view)
