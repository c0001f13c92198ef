"""Evidence record model. One row per trainee assessment, payload kept as JSON."""

from datetime import datetime
from typing import List, Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import JSONType, TimestampMixin, UUIDMixin


class EvidenceRecord(UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "evidence"

    owner_id: uuid.UUID = Field(foreign_key="users.id", nullable=False, index=True)
    kind: str = Field(nullable=False)  # EPA | CbD | DOPs | OSATs | CRS | MAR | GSAT | MSF | ...
    title: str = Field(nullable=False)
    status: str = Field(nullable=False, default="Draft", index=True)  # Draft | Submitted | COMPLETE
    data: dict = Field(default_factory=dict, sa_type=JSONType, nullable=False)
    version: int = Field(default=1, nullable=False)

    supervisor_name: Optional[str] = None
    supervisor_email: Optional[str] = None
    supervisor_gmc: Optional[str] = Field(default=None, index=True)
    supervisor_confirmed: bool = Field(default=False, nullable=False)

    submitted_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime(timezone=True))
    signed_off_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime(timezone=True))
    last_signed_off_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime(timezone=True))
    signed_off_by: Optional[str] = None

    unlocked_fields: List[str] = Field(default_factory=list, sa_type=JSONType, nullable=False)
    deleted_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime(timezone=True))
