"""Evidence audit event model (append-only)."""

from datetime import datetime
from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import JSONType, utcnow


class EvidenceEvent(SQLModel, table=True):
    __tablename__ = "evidence_events"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    evidence_id: uuid.UUID = Field(foreign_key="evidence.id", nullable=False, index=True)
    type: str = Field(nullable=False)  # e.g., evidence.signed_off, magic_link.issued
    actor_id: Optional[uuid.UUID] = Field(default=None, foreign_key="users.id")
    actor_type: str = Field(nullable=False)  # user | magic_link | system
    payload: dict = Field(default_factory=dict, sa_type=JSONType, nullable=False)
    timestamp: datetime = Field(
        default_factory=utcnow,
        nullable=False,
        sa_type=sa.DateTime(timezone=True),
    )
