"""Wire schemas for the magic-link endpoints (no session: the token is the credential)."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, EmailStr, Field
from pydantic import UUID4

from .common import TokenInvalidReason
from .evidence import EvidenceRead


class CreateMagicLinkRequest(BaseModel):
    """Request body for POST /create-magic-link."""
    evidence_id: UUID4
    recipient_email: EmailStr
    recipient_gmc: Optional[str] = None
    form_type: str


class CreateMagicLinkResponse(BaseModel):
    success: bool = True
    magic_link: str
    token: str
    expires_at: datetime
    warning: Optional[str] = None


class ValidateMagicLinkRequest(BaseModel):
    token: str = Field(min_length=1)


class ValidateMagicLinkResponse(BaseModel):
    valid: bool
    reason: Optional[TokenInvalidReason] = None
    error: Optional[str] = None
    evidence: Optional[EvidenceRead] = None
    linked_evidence: List[EvidenceRead] = Field(default_factory=list)
    form_type: Optional[str] = None
    recipient_email: Optional[str] = None
    trainee_name: Optional[str] = None
    requires_gmc: Optional[bool] = None
    expires_at: Optional[datetime] = None


class SubmitMagicLinkFormRequest(BaseModel):
    """Request body for POST /submit-magic-link-form. Field names follow the form client."""
    token: str = Field(min_length=1)
    evidenceId: UUID4
    updates: Dict[str, Any]
    complete: bool = False
    formType: Optional[str] = None


class SubmitMagicLinkFormResponse(BaseModel):
    success: bool = True
    status: str
