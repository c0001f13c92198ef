"""
Evidence store: durable access to evidence records.

Handles:
- Creation (always Draft) and logical delete
- Scoped reads (a record plus its declared read-only links)
- Recursive merge-patching of the JSON payload
- Compare-and-set writes keyed on (version, status)
"""

from __future__ import annotations

import uuid
from typing import Any, Callable, Iterable, Optional

import structlog
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.errors import InvalidKind, RecordNotFound, TransientStorageError
from app.core.events import ACTOR_USER, record_event
from app.models.base import utcnow
from app.models.evidence import EvidenceRecord
from portfolio_shared.schemas.common import EvidenceKind, EvidenceStatus

log = structlog.get_logger()

CAS_ATTEMPTS = 3

LINKED_EVIDENCE_KEY = "linkedEvidence"
MSF_RESPONSES_KEY = "msfResponses"


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def get_evidence(
    session: AsyncSession,
    record_id: uuid.UUID,
    *,
    include_deleted: bool = False,
) -> Optional[EvidenceRecord]:
    record = await load_fresh(session, record_id)
    if record is None or (record.deleted_at is not None and not include_deleted):
        return None
    return record


async def get_evidence_or_404(session: AsyncSession, record_id: uuid.UUID) -> EvidenceRecord:
    record = await get_evidence(session, record_id)
    if record is None:
        raise RecordNotFound(f"evidence {record_id}")
    return record


async def load_fresh(session: AsyncSession, record_id: uuid.UUID) -> Optional[EvidenceRecord]:
    """Read a record from the database, replacing whatever the session has cached."""
    result = await session.execute(
        select(EvidenceRecord)
        .where(EvidenceRecord.id == record_id)
        .execution_options(populate_existing=True)
    )
    return result.scalars().first()


def linked_ids(record: EvidenceRecord) -> list[uuid.UUID]:
    """Ids declared under ``data["linkedEvidence"]`` (a mapping of field -> ids, or a flat list)."""
    declared = (record.data or {}).get(LINKED_EVIDENCE_KEY) or {}
    if isinstance(declared, dict):
        raw: Iterable[Any] = (i for ids in declared.values() for i in (ids or []))
    elif isinstance(declared, list):
        raw = declared
    else:
        return []

    ids: list[uuid.UUID] = []
    for value in raw:
        try:
            linked = uuid.UUID(str(value))
        except ValueError:
            continue
        if linked != record.id and linked not in ids:
            ids.append(linked)
    return ids


async def list_linked(session: AsyncSession, record: EvidenceRecord) -> list[EvidenceRecord]:
    """Declared read-only links that belong to the same owner and are not deleted."""
    ids = linked_ids(record)
    if not ids:
        return []
    result = await session.execute(
        select(EvidenceRecord).where(
            EvidenceRecord.id.in_(ids),
            EvidenceRecord.owner_id == record.owner_id,
            EvidenceRecord.deleted_at.is_(None),
        )
    )
    by_id = {r.id: r for r in result.scalars().all()}
    return [by_id[i] for i in ids if i in by_id]


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


def merge_payload(base: dict, patch: dict) -> dict:
    """Recursive merge. Nested objects are merged key by key; everything else is replaced."""
    merged = dict(base or {})
    for key, value in (patch or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_payload(merged[key], value)
        else:
            merged[key] = value
    return merged


async def create_evidence(
    session: AsyncSession,
    owner_id: uuid.UUID,
    kind: str,
    title: str,
    data: dict | None = None,
) -> EvidenceRecord:
    if kind not in {k.value for k in EvidenceKind}:
        raise InvalidKind(f"unknown kind {kind!r}")

    record = EvidenceRecord(
        owner_id=owner_id,
        kind=kind,
        title=title,
        status=EvidenceStatus.DRAFT.value,
        data=data or {},
    )
    session.add(record)
    await session.flush()

    await record_event(
        session,
        record.id,
        "evidence.created",
        {"kind": kind},
        actor_id=owner_id,
        actor_type=ACTOR_USER,
    )
    return record


async def compare_and_set(
    session: AsyncSession,
    record_id: uuid.UUID,
    build: Callable[[EvidenceRecord], dict[str, Any]],
    *,
    attempts: int = CAS_ATTEMPTS,
) -> EvidenceRecord:
    """Apply ``build(fresh_record)`` as a conditional UPDATE on (version, status).

    ``build`` is re-run against a fresh read whenever another writer got there
    first, so it must be a pure function of the record it is given. It may raise
    to refuse the write. Exhausting ``attempts`` raises TransientStorageError.
    """
    for attempt in range(attempts):
        record = await load_fresh(session, record_id)
        if record is None or record.deleted_at is not None:
            raise RecordNotFound(f"evidence {record_id}")

        values = build(record)
        expected_version = record.version
        result = await session.execute(
            update(EvidenceRecord)
            .where(
                EvidenceRecord.id == record_id,
                EvidenceRecord.version == expected_version,
                EvidenceRecord.status == record.status,
            )
            .values(**values, version=expected_version + 1, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            fresh = await load_fresh(session, record_id)
            assert fresh is not None
            return fresh

        log.info("evidence.cas_conflict", evidence_id=str(record_id), attempt=attempt + 1)

    raise TransientStorageError(f"evidence {record_id} kept changing under compare-and-set")


async def soft_delete(session: AsyncSession, record: EvidenceRecord, actor_id: uuid.UUID) -> EvidenceRecord:
    deleted = await compare_and_set(session, record.id, lambda _: {"deleted_at": utcnow()})
    await record_event(
        session,
        record.id,
        "evidence.deleted",
        actor_id=actor_id,
        actor_type=ACTOR_USER,
    )
    return deleted
