"""
Review override schemas.

An override never replaces the automated assessment; it is appended
next to it so the full decision history can be reconstructed.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, field_validator

from kycguard.fusion.schemas import Disposition


class OverrideDecisionType(str, Enum):
    """Decisions a reviewer can take on an assessed session."""
    APPROVE = "approve"
    FLAG = "flag"
    REJECT = "reject"

    @property
    def disposition(self) -> Disposition:
        """Effective status the decision puts the session in."""
        return _DECISION_TO_DISPOSITION[self]


_DECISION_TO_DISPOSITION = {
    OverrideDecisionType.APPROVE: Disposition.VERIFIED,
    OverrideDecisionType.FLAG: Disposition.SUSPICIOUS,
    OverrideDecisionType.REJECT: Disposition.REJECTED,
}


class OverrideRequest(BaseModel):
    """
    Request to override an assessed session.

    MUST include a meaningful reason for the audit trail.
    """
    session_id: str
    reviewer_id: str = Field(min_length=1)
    expected_version: int = Field(ge=1)
    decision: OverrideDecisionType
    reason: str = Field(
        min_length=10,
        description="Explanation for the audit trail (minimum 10 characters)",
    )

    @field_validator("reason")
    @classmethod
    def validate_reason(cls, v: str) -> str:
        """Ensure the reason is more than padding."""
        if len(v.strip()) < 10:
            raise ValueError("Reason must be at least 10 characters")
        return v.strip()


class OverrideDecision(BaseModel):
    """Recorded override. Immutable."""

    model_config = {"frozen": True}

    override_id: str
    session_id: str
    reviewer_id: str
    decision: OverrideDecisionType
    reason: str
    timestamp: datetime
    based_on_version: int = Field(description="Session version the reviewer observed")
    previous_status: Disposition
    new_status: Disposition
    audit_entry_id: str
