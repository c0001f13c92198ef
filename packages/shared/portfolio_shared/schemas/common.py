from enum import Enum
from typing import Optional

from pydantic import BaseModel


class EvidenceStatus(str, Enum):
    DRAFT = "Draft"
    SUBMITTED = "Submitted"
    SIGNED_OFF = "COMPLETE"


class EvidenceKind(str, Enum):
    EPA = "EPA"
    EPA_OPERATING_LIST = "EPA Operating List"
    CBD = "CbD"
    DOPS = "DOPs"
    OSATS = "OSATs"
    CRS = "CRS"
    MAR = "MAR"
    GSAT = "GSAT"
    MSF = "MSF"


# Magic-link form types. Every kind is also a form type; MSF responses are
# collected against the MSF record itself.
MSF_RESPONSE = "MSF_RESPONSE"

FORM_TYPE_KINDS: dict[str, EvidenceKind] = {
    **{kind.value: kind for kind in EvidenceKind},
    MSF_RESPONSE: EvidenceKind.MSF,
}


class UserRole(str, Enum):
    TRAINEE = "Trainee"
    SUPERVISOR = "EducationalSupervisor"
    ARCP_PANEL = "ARCPPanelMember"


class TokenInvalidReason(str, Enum):
    NOT_FOUND = "not_found"
    USED = "used"
    EXPIRED = "expired"
    TARGET_SIGNED_OFF = "target_signed_off"


class EditRequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    code: str
    reason: Optional[str] = None
