"""Edit request model: a trainee asking to re-open fields of a signed-off record."""

from datetime import datetime
from typing import List, Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import JSONType, UUIDMixin, utcnow


class EditRequest(UUIDMixin, SQLModel, table=True):
    __tablename__ = "edit_requests"
    __table_args__ = (
        sa.Index(
            "idx_edit_requests_one_pending",
            "evidence_id",
            unique=True,
            postgresql_where=sa.text("status = 'pending'"),
            sqlite_where=sa.text("status = 'pending'"),
        ),
    )

    evidence_id: uuid.UUID = Field(foreign_key="evidence.id", nullable=False, index=True)
    trainee_id: uuid.UUID = Field(foreign_key="users.id", nullable=False)
    reason: str = Field(nullable=False)
    requested_fields: List[str] = Field(default_factory=list, sa_type=JSONType, nullable=False)
    unlocked_fields: List[str] = Field(default_factory=list, sa_type=JSONType, nullable=False)
    status: str = Field(default="pending", nullable=False, index=True)  # pending | approved | denied
    created_at: datetime = Field(
        default_factory=utcnow,
        nullable=False,
        sa_type=sa.DateTime(timezone=True),
    )
    resolved_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime(timezone=True))
    resolved_by: Optional[uuid.UUID] = Field(default=None, foreign_key="users.id")
