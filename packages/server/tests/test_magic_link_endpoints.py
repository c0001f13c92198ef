"""
HTTP tests for /create-magic-link, /validate-magic-link and /submit-magic-link-form.
"""

from __future__ import annotations

import uuid

import pytest

from app.core.errors import TransientStorageError
from app.models.base import utcnow
from app.services import evidence as evidence_service
from app.services import evidence_store, gateway, token_store
from app.services.signoff import SupervisorIdentity
from portfolio_shared.schemas.common import MSF_RESPONSE

from conftest import SUPERVISOR_EMAIL, SUPERVISOR_GMC, bearer, fetch_record

SIGN = {"supervisorName": "Dr Sam Supervisor", "supervisorGmc": SUPERVISOR_GMC}


@pytest.fixture
async def link(submitted_record, issue):
    issued = await issue(submitted_record)
    return issued.token, str(submitted_record.id)


# ---------------------------------------------------------------------------
# /create-magic-link
# ---------------------------------------------------------------------------


class TestCreate:
    async def test_owner_creates_link(self, client, trainee, submitted_record, sender):
        resp = await client.post(
            "/create-magic-link",
            json={
                "evidence_id": str(submitted_record.id),
                "recipient_email": SUPERVISOR_EMAIL,
                "form_type": "DOPs",
            },
            headers=bearer(trainee),
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["magic_link"] == f"https://eyeportfolio.com?token={data['token']}"
        assert "warning" not in data or data["warning"] is None
        assert len(sender.sent) == 1

    async def test_email_failure_still_returns_link(self, client, trainee, submitted_record, sender):
        sender.fail = True
        resp = await client.post(
            "/create-magic-link",
            json={
                "evidence_id": str(submitted_record.id),
                "recipient_email": SUPERVISOR_EMAIL,
                "form_type": "DOPs",
            },
            headers=bearer(trainee),
        )
        assert resp.status_code == 200
        assert resp.json()["warning"]

    async def test_requires_session(self, client, submitted_record):
        resp = await client.post(
            "/create-magic-link",
            json={
                "evidence_id": str(submitted_record.id),
                "recipient_email": SUPERVISOR_EMAIL,
                "form_type": "DOPs",
            },
        )
        assert resp.status_code == 401
        assert resp.json()["code"] == "unauthorized"

    async def test_stranger_is_refused(self, client, other_trainee, submitted_record, sender):
        resp = await client.post(
            "/create-magic-link",
            json={
                "evidence_id": str(submitted_record.id),
                "recipient_email": SUPERVISOR_EMAIL,
                "form_type": "DOPs",
            },
            headers=bearer(other_trainee),
        )
        assert resp.status_code == 401
        assert sender.sent == []

    async def test_submitted_record_only_links_to_its_supervisor(self, client, trainee, submitted_record, sender):
        resp = await client.post(
            "/create-magic-link",
            json={
                "evidence_id": str(submitted_record.id),
                "recipient_email": "friend@example.org",
                "form_type": "DOPs",
            },
            headers=bearer(trainee),
        )
        assert resp.status_code == 401
        assert resp.json()["code"] == "unauthorized"
        assert sender.sent == []

    async def test_kind_mismatch(self, client, trainee, submitted_record):
        resp = await client.post(
            "/create-magic-link",
            json={
                "evidence_id": str(submitted_record.id),
                "recipient_email": SUPERVISOR_EMAIL,
                "form_type": "CbD",
            },
            headers=bearer(trainee),
        )
        assert resp.status_code == 400
        assert resp.json()["code"] == "invalid_kind"

    async def test_missing_record(self, client, trainee):
        resp = await client.post(
            "/create-magic-link",
            json={
                "evidence_id": str(uuid.uuid4()),
                "recipient_email": SUPERVISOR_EMAIL,
                "form_type": "DOPs",
            },
            headers=bearer(trainee),
        )
        assert resp.status_code == 404

    async def test_missing_fields(self, client, trainee):
        resp = await client.post("/create-magic-link", json={"form_type": "DOPs"}, headers=bearer(trainee))
        assert resp.status_code == 400
        assert resp.json()["code"] == "invalid_request"


# ---------------------------------------------------------------------------
# /validate-magic-link
# ---------------------------------------------------------------------------


class TestValidate:
    async def test_valid_link(self, client, link):
        token, rid = link
        resp = await client.post("/validate-magic-link", json={"token": token})
        assert resp.status_code == 200
        data = resp.json()
        assert data["valid"] is True
        assert data["evidence"]["id"] == rid
        assert data["evidence"]["status"] == "Submitted"
        assert data["linked_evidence"] == []
        assert data["form_type"] == "DOPs"
        assert data["recipient_email"] == SUPERVISOR_EMAIL
        assert data["trainee_name"] == "Tess Trainee"
        assert data["requires_gmc"] is True

    async def test_unknown_token_is_404(self, client):
        resp = await client.post("/validate-magic-link", json={"token": "0" * 64})
        assert resp.status_code == 404
        assert resp.json() == {
            "valid": False,
            "reason": "not_found",
            "error": "This link is not valid.",
            "linked_evidence": [],
        }

    async def test_used_token_is_410(self, client, session, link):
        token, _ = link
        assert await token_store.consume(session, token, utcnow())
        await session.commit()

        resp = await client.post("/validate-magic-link", json={"token": token})
        assert resp.status_code == 410
        assert resp.json()["reason"] == "used"

    async def test_empty_token_is_400(self, client):
        resp = await client.post("/validate-magic-link", json={"token": ""})
        assert resp.status_code == 400


# ---------------------------------------------------------------------------
# /submit-magic-link-form
# ---------------------------------------------------------------------------


class TestSubmit:
    async def test_partial_save_then_complete(self, client, session_factory, link):
        token, rid = link

        resp = await client.post(
            "/submit-magic-link-form",
            json={"token": token, "evidenceId": rid, "updates": {"comments": "Good"}, "complete": False},
        )
        assert resp.status_code == 200
        assert resp.json() == {"success": True, "status": "Submitted"}

        resp = await client.post(
            "/submit-magic-link-form",
            json={"token": token, "evidenceId": rid, "updates": {"score": 4, **SIGN}, "complete": True},
        )
        assert resp.status_code == 200
        assert resp.json() == {"success": True, "status": "COMPLETE"}

        stored = await fetch_record(session_factory, uuid.UUID(rid))
        assert stored.data == {"procedure": "phaco", "comments": "Good", "score": 4}
        assert stored.signed_off_by == "Dr Sam Supervisor"
        assert stored.supervisor_gmc == SUPERVISOR_GMC

    async def test_second_complete_is_refused(self, client, link):
        token, rid = link
        body = {"token": token, "evidenceId": rid, "updates": SIGN, "complete": True}
        assert (await client.post("/submit-magic-link-form", json=body)).status_code == 200

        resp = await client.post("/submit-magic-link-form", json=body)
        assert resp.status_code == 401
        data = resp.json()
        assert data["code"] == "token_invalid"
        assert data["reason"] == "used"
        assert data["error"] == "This link has already been used."

        resp = await client.post("/validate-magic-link", json={"token": token})
        assert resp.status_code == 410

    async def test_record_mismatch(self, client, link):
        token, _ = link
        resp = await client.post(
            "/submit-magic-link-form",
            json={"token": token, "evidenceId": str(uuid.uuid4()), "updates": {}, "complete": False},
        )
        assert resp.status_code == 401
        assert resp.json()["code"] == "record_mismatch"

    async def test_gmc_required(self, client, session_factory, link):
        token, rid = link
        resp = await client.post(
            "/submit-magic-link-form",
            json={"token": token, "evidenceId": rid, "updates": {"supervisorName": "Dr S"}, "complete": True},
        )
        assert resp.status_code == 400
        assert resp.json()["code"] == "invalid_request"
        assert (await fetch_record(session_factory, uuid.UUID(rid))).status == "Submitted"

    async def test_msf_respondents_complete_independently(self, client, session, session_factory, trainee, issue):
        msf = await evidence_store.create_evidence(session, trainee.id, "MSF", "MSF round 1")
        msf = await evidence_service.submit_for_signoff(
            session, msf, trainee, SupervisorIdentity(email=SUPERVISOR_EMAIL, gmc=SUPERVISOR_GMC)
        )
        await session.commit()
        rid = str(msf.id)
        nurse = (await issue(msf, form_type=MSF_RESPONSE, recipient_email="nurse@example.org")).token
        porter = (await issue(msf, form_type=MSF_RESPONSE, recipient_email="porter@example.org")).token

        resp = await client.post("/validate-magic-link", json={"token": nurse})
        assert resp.json()["requires_gmc"] is False

        for token, score in ((nurse, 5), (porter, 4)):
            resp = await client.post(
                "/submit-magic-link-form",
                json={
                    "token": token,
                    "evidenceId": rid,
                    "updates": {"teamwork": score},
                    "complete": True,
                    "formType": MSF_RESPONSE,
                },
            )
            assert resp.status_code == 200
            assert resp.json() == {"success": True, "status": "Submitted"}

        resp = await client.post("/validate-magic-link", json={"token": nurse})
        assert resp.status_code == 410
        assert resp.json()["reason"] == "used"

        stored = await fetch_record(session_factory, uuid.UUID(rid))
        assert stored.status == "Submitted"
        assert stored.signed_off_at is None
        assert stored.data["msfResponses"]["nurse@example.org"]["teamwork"] == 5
        assert stored.data["msfResponses"]["porter@example.org"]["teamwork"] == 4

    async def test_msf_respondent_view_hides_other_responses(self, client, session, trainee, issue):
        msf = await evidence_store.create_evidence(session, trainee.id, "MSF", "MSF round 1")
        await session.commit()
        rid = str(msf.id)
        nurse = (await issue(msf, form_type=MSF_RESPONSE, recipient_email="nurse@example.org")).token
        porter = (await issue(msf, form_type=MSF_RESPONSE, recipient_email="porter@example.org")).token

        resp = await client.post(
            "/submit-magic-link-form",
            json={"token": nurse, "evidenceId": rid, "updates": {"comments": "Kind"}, "complete": True},
        )
        assert resp.json() == {"success": True, "status": "Draft"}

        resp = await client.post("/validate-magic-link", json={"token": porter})
        assert resp.status_code == 200
        assert "msfResponses" not in resp.json()["evidence"]["data"]

    async def test_malformed_body(self, client):
        resp = await client.post("/submit-magic-link-form", json={"token": "abc", "complete": True})
        assert resp.status_code == 400
        data = resp.json()
        assert data["code"] == "invalid_request"
        assert "evidenceId" in data["error"]
        assert "updates" in data["error"]

    async def test_transient_fault_is_retried(self, client, monkeypatch, link):
        token, rid = link
        real_submit = gateway.submit
        calls = []

        async def flaky_submit(*args, **kwargs):
            calls.append(1)
            if len(calls) == 1:
                raise TransientStorageError("database is locked")
            return await real_submit(*args, **kwargs)

        monkeypatch.setattr(gateway, "submit", flaky_submit)
        resp = await client.post(
            "/submit-magic-link-form",
            json={"token": token, "evidenceId": rid, "updates": SIGN, "complete": True},
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "COMPLETE"
        assert len(calls) == 2

    async def test_persistent_fault_is_a_generic_500(self, client, monkeypatch, link):
        token, rid = link

        async def broken_submit(*args, **kwargs):
            raise TransientStorageError("disk I/O error")

        monkeypatch.setattr(gateway, "submit", broken_submit)
        resp = await client.post(
            "/submit-magic-link-form",
            json={"token": token, "evidenceId": rid, "updates": SIGN, "complete": True},
        )
        assert resp.status_code == 500
        data = resp.json()
        assert data["code"] == "storage_unavailable"
        assert "disk" not in data["error"]
