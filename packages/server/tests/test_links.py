"""
Tests for the link issuer.

Covers:
- Token entropy/format, absolute expiry and URL shape
- Access rules (owner while Draft/Submitted, supervisor of record while Submitted)
- While Submitted, links only go to the supervisor named at submission
- Form type / kind matching, including MSF responses
- Email failure surfaces as a warning, never as a failed issuance
"""

from __future__ import annotations

import re
import uuid
from datetime import timedelta

import pytest

from app.core.errors import InvalidKind, RecordNotFound, Unauthorized
from app.core.events import list_events
from app.models.base import as_utc
from app.services import evidence as evidence_service
from app.services import evidence_store, token_store
from app.services.links import EMAIL_WARNING, issue_link
from app.services.signoff import SupervisorIdentity
from portfolio_shared.schemas.common import MSF_RESPONSE

from conftest import SUPERVISOR_EMAIL, T0, fetch_record


async def test_issue_persists_link_and_sends_email(session, submitted_record, issue, sender):
    issued = await issue(submitted_record, now=T0)

    assert re.fullmatch(r"[0-9a-f]{64}", issued.token)
    assert issued.url == f"https://eyeportfolio.com?token={issued.token}"
    assert issued.warning is None

    link = await token_store.get_link(session, issued.token)
    assert link.evidence_id == submitted_record.id
    assert link.recipient_email == SUPERVISOR_EMAIL
    assert link.used_at is None
    assert as_utc(link.created_at) == T0
    assert as_utc(link.expires_at) == T0 + timedelta(hours=24)

    assert len(sender.sent) == 1
    assert sender.sent[0]["to"] == SUPERVISOR_EMAIL
    assert sender.sent[0]["subject"] == "Complete DOPs: Phaco DOPS"
    assert issued.token in sender.sent[0]["html"]


async def test_tokens_are_unique(submitted_record, issue):
    tokens = {(await issue(submitted_record)).token for _ in range(5)}
    assert len(tokens) == 5


async def test_issue_records_audit_event(session, submitted_record, issue):
    await issue(submitted_record)
    events = await list_events(session, submitted_record.id)
    assert events[-1].type == "magic_link.issued"
    assert events[-1].payload["recipient_email"] == SUPERVISOR_EMAIL


async def test_email_failure_is_a_warning(session_factory, submitted_record, issue, sender):
    sender.fail = True
    issued = await issue(submitted_record)

    assert issued.warning == EMAIL_WARNING
    assert issued.url.endswith(issued.token)
    # Committed before the send was attempted.
    async with session_factory() as s:
        assert await token_store.get_link(s, issued.token) is not None


async def test_owner_may_issue_while_draft(draft_record, issue):
    issued = await issue(draft_record)
    assert issued.link.evidence_id == draft_record.id


async def test_supervisor_of_record_may_issue_while_submitted(session, submitted_record, supervisor, sender):
    issued = await issue_link(
        session,
        evidence_id=submitted_record.id,
        recipient_email=SUPERVISOR_EMAIL,
        form_type=submitted_record.kind,
        issuer=supervisor,
        sender=sender,
    )
    assert issued.link.created_by == supervisor.id


async def test_owner_cannot_redirect_submitted_record(session_factory, submitted_record, issue, sender):
    rid = submitted_record.id
    with pytest.raises(Unauthorized):
        await issue(submitted_record, recipient_email="friend@example.org")
    assert sender.sent == []

    record = await fetch_record(session_factory, rid)
    assert record.supervisor_email == SUPERVISOR_EMAIL


async def test_supervisor_address_match_ignores_case(submitted_record, issue):
    issued = await issue(submitted_record, recipient_email=SUPERVISOR_EMAIL.upper())
    assert issued.link.evidence_id == submitted_record.id


async def test_owner_may_issue_msf_response_while_submitted(session, trainee, issue):
    msf = await evidence_store.create_evidence(session, trainee.id, "MSF", "MSF round 1")
    msf = await evidence_service.submit_for_signoff(
        session, msf, trainee, SupervisorIdentity(email=SUPERVISOR_EMAIL)
    )
    await session.commit()

    issued = await issue(msf, form_type=MSF_RESPONSE, recipient_email="nurse@example.org")
    assert issued.link.recipient_email == "nurse@example.org"


async def test_stranger_cannot_issue(session, submitted_record, other_trainee, sender):
    with pytest.raises(Unauthorized):
        await issue_link(
            session,
            evidence_id=submitted_record.id,
            recipient_email="x@example.org",
            form_type=submitted_record.kind,
            issuer=other_trainee,
            sender=sender,
        )
    assert sender.sent == []


async def test_supervisor_cannot_issue_for_draft(session, draft_record, supervisor, sender):
    with pytest.raises(Unauthorized):
        await issue_link(
            session,
            evidence_id=draft_record.id,
            recipient_email="x@example.org",
            form_type=draft_record.kind,
            issuer=supervisor,
            sender=sender,
        )


async def test_missing_record(session, trainee, sender):
    with pytest.raises(RecordNotFound):
        await issue_link(
            session,
            evidence_id=uuid.uuid4(),
            recipient_email="x@example.org",
            form_type="DOPs",
            issuer=trainee,
            sender=sender,
        )


async def test_kind_mismatch(submitted_record, issue):
    with pytest.raises(InvalidKind):
        await issue(submitted_record, form_type="CbD")


async def test_msf_response_targets_msf_record(session, trainee, issue, sender):
    msf = await evidence_store.create_evidence(session, trainee.id, "MSF", "MSF round 1")
    await session.commit()

    issued = await issue(msf, form_type=MSF_RESPONSE, recipient_email="nurse@example.org")
    assert issued.link.form_type == MSF_RESPONSE
    assert sender.sent[-1]["subject"] == "Multi-Source Feedback Request for Tess Trainee"

    with pytest.raises(InvalidKind):
        await issue(msf, form_type="DOPs")
