"""
Shared fixtures: a throwaway SQLite database per test, seeded users, an
email double, and an httpx client wired to the app with dependency overrides.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional
from unittest.mock import AsyncMock, patch

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import SQLModel

import app.models  # noqa: F401
from app.core.auth import create_jwt
from app.core.database import build_engine, get_session
from app.core.email import EmailDeliveryError, get_email_sender
from app.models.evidence import EvidenceRecord
from app.models.user import User
from app.services import evidence as evidence_service
from app.services import evidence_store
from app.services.links import IssuedLink, issue_link
from app.services.signoff import SupervisorIdentity
from portfolio_shared.schemas.common import EvidenceKind, UserRole

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

SUPERVISOR_EMAIL = "sup@example.org"
SUPERVISOR_GMC = "7654321"


class RecordingSender:
    """Email double: records every message, or fails on demand."""

    def __init__(self):
        self.sent: list[dict] = []
        self.fail = False

    async def send(self, to: str, subject: str, html: str) -> None:
        if self.fail:
            raise EmailDeliveryError("HTTP 503: upstream unavailable")
        self.sent.append({"to": to, "subject": subject, "html": html})


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'signoff.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


# ---------------------------------------------------------------------------
# Seed data
# ---------------------------------------------------------------------------


@pytest.fixture
async def trainee(session) -> User:
    user = User(email="trainee@example.org", name="Tess Trainee", role=UserRole.TRAINEE.value)
    session.add(user)
    await session.commit()
    return user


@pytest.fixture
async def other_trainee(session) -> User:
    user = User(email="other@example.org", name="Olly Other", role=UserRole.TRAINEE.value)
    session.add(user)
    await session.commit()
    return user


@pytest.fixture
async def supervisor(session) -> User:
    user = User(
        email=SUPERVISOR_EMAIL,
        name="Sam Supervisor",
        role=UserRole.SUPERVISOR.value,
        gmc_number=SUPERVISOR_GMC,
    )
    session.add(user)
    await session.commit()
    return user


@pytest.fixture
async def draft_record(session, trainee) -> EvidenceRecord:
    record = await evidence_store.create_evidence(
        session, trainee.id, EvidenceKind.DOPS.value, "Phaco DOPS", {"procedure": "phaco"}
    )
    await session.commit()
    return record


@pytest.fixture
async def submitted_record(session, trainee, draft_record) -> EvidenceRecord:
    record = await evidence_service.submit_for_signoff(
        session,
        draft_record,
        trainee,
        SupervisorIdentity(name="Sam Supervisor", email=SUPERVISOR_EMAIL, gmc=SUPERVISOR_GMC),
    )
    await session.commit()
    return record


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture
def issue(session, trainee, sender):
    """Issue a link for a record as its owner. ``now`` pins the creation time."""

    async def _issue(
        record: EvidenceRecord,
        *,
        form_type: Optional[str] = None,
        recipient_email: str = SUPERVISOR_EMAIL,
        now: Optional[datetime] = None,
    ) -> IssuedLink:
        return await issue_link(
            session,
            evidence_id=record.id,
            recipient_email=recipient_email,
            form_type=form_type or record.kind,
            issuer=trainee,
            sender=sender,
            now=now,
        )

    return _issue


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


def bearer(user: User) -> dict[str, str]:
    token, _ = create_jwt(user.id, user.role)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def client(session_factory, sender):
    from app.main import app

    async def override_session():
        async with session_factory() as s:
            try:
                yield s
                await s.commit()
            except Exception:
                await s.rollback()
                raise

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_email_sender] = lambda: sender
    with patch("app.core.auth.is_session_revoked", AsyncMock(return_value=False)):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac
    app.dependency_overrides.clear()


async def fetch_record(session_factory, record_id) -> EvidenceRecord:
    """Read a record through a fresh session, bypassing any test-side cache."""
    async with session_factory() as s:
        return await evidence_store.load_fresh(s, record_id)
