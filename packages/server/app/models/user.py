"""User model (trainees, supervisors, panel members)."""

from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import UUIDMixin, utcnow


class User(UUIDMixin, SQLModel, table=True):
    __tablename__ = "users"

    email: str = Field(unique=True, index=True, nullable=False)
    name: str = Field(nullable=False)
    role: str = Field(nullable=False, default="Trainee")  # Trainee | EducationalSupervisor | ARCPPanelMember
    gmc_number: Optional[str] = Field(default=None, index=True)  # supervisor credential id
    password_hash: Optional[str] = Field(default=None)  # bcrypt hash
    created_at: datetime = Field(
        default_factory=utcnow,
        nullable=False,
        sa_column_kwargs={"server_default": sa.text("CURRENT_TIMESTAMP")},
        sa_type=sa.DateTime(timezone=True),
    )
