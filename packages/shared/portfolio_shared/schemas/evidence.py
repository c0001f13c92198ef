"""Evidence-related Pydantic schemas for shared use across server and frontend codegen."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, EmailStr, Field
from pydantic import UUID4

from .common import EditRequestStatus, EvidenceKind, EvidenceStatus


# ---------------------------------------------------------------------------
# Evidence CRUD
# ---------------------------------------------------------------------------

class EvidenceCreate(BaseModel):
    kind: EvidenceKind
    title: str
    data: Dict[str, Any] = Field(default_factory=dict)


class EvidenceUpdate(BaseModel):
    """Request body for PATCH /evidence/{evidenceId}. Keys are merged into the payload."""
    updates: Dict[str, Any]


class SupervisorIdentity(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    gmc: Optional[str] = None


class EvidenceRead(BaseModel):
    id: UUID4
    owner_id: UUID4
    kind: str
    title: str
    status: EvidenceStatus
    data: Dict[str, Any] = Field(default_factory=dict)
    version: int
    supervisor: SupervisorIdentity
    supervisor_confirmed: bool = False
    unlocked_fields: List[str] = Field(default_factory=list)
    submitted_at: Optional[datetime] = None
    signed_off_at: Optional[datetime] = None
    last_signed_off_at: Optional[datetime] = None
    signed_off_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------

class SubmitForSignOff(BaseModel):
    """Request body for POST /evidence/{evidenceId}/submit."""
    supervisor_name: str
    supervisor_email: EmailStr
    supervisor_gmc: Optional[str] = None
    updates: Dict[str, Any] = Field(default_factory=dict)


class SignOffBody(BaseModel):
    """Request body for POST /evidence/{evidenceId}/sign-off."""
    updates: Dict[str, Any] = Field(default_factory=dict)


class DeclineBody(BaseModel):
    """Request body for POST /evidence/{evidenceId}/decline."""
    reason: Optional[str] = None


class SubmitForSignOffResponse(BaseModel):
    evidence: EvidenceRead
    magic_link: str
    expires_at: datetime
    warning: Optional[str] = None


# ---------------------------------------------------------------------------
# Edit requests
# ---------------------------------------------------------------------------

class EditRequestCreate(BaseModel):
    reason: str
    fields: List[str] = Field(default_factory=list)


class EditRequestApprove(BaseModel):
    """Approver may narrow or replace the requested fields."""
    fields: Optional[List[str]] = None


class EditRequestRead(BaseModel):
    id: UUID4
    evidence_id: UUID4
    trainee_id: UUID4
    reason: str
    requested_fields: List[str] = Field(default_factory=list)
    unlocked_fields: List[str] = Field(default_factory=list)
    status: EditRequestStatus
    created_at: datetime
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[UUID4] = None


class EvidenceEventRead(BaseModel):
    id: UUID4
    evidence_id: UUID4
    type: str
    actor_type: str
    actor_id: Optional[UUID4] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime
