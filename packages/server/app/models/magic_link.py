"""Magic link model. Rows are never deleted; used/expired links stay for audit."""

from datetime import datetime
from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import utcnow


class MagicLink(SQLModel, table=True):
    __tablename__ = "magic_links"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    token: str = Field(unique=True, index=True, nullable=False)
    evidence_id: uuid.UUID = Field(foreign_key="evidence.id", nullable=False, index=True)
    recipient_email: str = Field(nullable=False)
    recipient_gmc: Optional[str] = None
    form_type: str = Field(nullable=False)
    created_by: uuid.UUID = Field(foreign_key="users.id", nullable=False)
    created_at: datetime = Field(
        default_factory=utcnow,
        nullable=False,
        sa_type=sa.DateTime(timezone=True),
    )
    expires_at: datetime = Field(nullable=False, sa_type=sa.DateTime(timezone=True))
    used_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime(timezone=True))
