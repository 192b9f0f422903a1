"""
Verification session schemas.

The session aggregate is immutable from the outside: every mutation
produces a new snapshot with ``version`` incremented, and repositories
only accept a snapshot whose predecessor version matches what they hold.

CRITICAL: a recorded StageResult is never replaced.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, computed_field

from kycguard.fusion.schemas import Disposition, RiskAssessment
from kycguard.providers.schemas import ProviderResponse, ProviderVariant
from kycguard.review.schemas import OverrideDecision


# ============================================================================
# ENUMS
# ============================================================================


class StageKind(str, Enum):
    """Evidence stages, in required order."""
    PERSONAL_INFO = "personal_info"
    DOCUMENTS = "documents"
    SELFIE = "selfie"
    LIVENESS = "liveness"
    VOICE = "voice"


class SessionState(str, Enum):
    """Position of a session in the stage sequence."""
    CREATED = "created"
    PERSONAL_INFO_COLLECTED = "personal_info_collected"
    DOCUMENTS_SUBMITTED = "documents_submitted"
    SELFIE_CAPTURED = "selfie_captured"
    LIVENESS_VERIFIED = "liveness_verified"
    VOICE_VERIFIED = "voice_verified"
    ASSESSED = "assessed"


class SessionStatus(str, Enum):
    """Effective status of a session."""
    IN_PROGRESS = "in_progress"
    VERIFIED = "verified"
    SUSPICIOUS = "suspicious"
    REJECTED = "rejected"

    @classmethod
    def from_disposition(cls, disposition: Disposition) -> "SessionStatus":
        return cls(disposition.value)


class StageOutcome(str, Enum):
    """How a stage result came to be."""
    RECORDED = "recorded"    # Every sub-check answered
    DEGRADED = "degraded"    # At least one sub-check timed out or was unavailable
    SKIPPED = "skipped"      # Optional stage explicitly skipped


class SubCheckStatus(str, Enum):
    OK = "ok"
    TIMEOUT = "timeout"
    UNAVAILABLE = "unavailable"


# ============================================================================
# STAGE RESULTS
# ============================================================================


class SubCheckResult(BaseModel):
    """One provider invocation within a stage, stored verbatim."""

    model_config = {"frozen": True}

    variant: ProviderVariant
    status: SubCheckStatus
    response: Optional[ProviderResponse] = None
    error: Optional[str] = None
    duration_ms: int = Field(default=0, ge=0)

    @property
    def is_usable(self) -> bool:
        return self.status == SubCheckStatus.OK and self.response is not None


class StageResult(BaseModel):
    """Immutable record of one completed (or skipped) stage."""

    model_config = {"frozen": True}

    stage_kind: StageKind
    outcome: StageOutcome
    raw_provider_output: dict[str, SubCheckResult] = Field(
        default_factory=dict,
        description="Sub-check name -> provider answer, kept for audit replay",
    )
    derived_flags: dict[str, bool] = Field(default_factory=dict)
    evidence_digest: Optional[str] = Field(
        default=None,
        description="SHA-256 of the canonical evidence; None for skipped stages",
    )
    skip_reason: Optional[str] = None
    recorded_at: datetime

    @computed_field
    @property
    def degraded_checks(self) -> list[str]:
        """Sub-checks that produced no usable score."""
        return [
            name for name, sub in self.raw_provider_output.items()
            if not sub.is_usable
        ]


# ============================================================================
# SESSION AGGREGATE
# ============================================================================


class VerificationSession(BaseModel):
    """
    Durable record of one subject's verification.

    Returned to callers as a read-only snapshot.
    """

    model_config = {"frozen": True}

    # Identity
    session_id: str
    subject_ref: str
    idempotency_key: Optional[str] = None

    # Progress
    state: SessionState = SessionState.CREATED
    status: SessionStatus = SessionStatus.IN_PROGRESS
    version: int = Field(default=1, ge=1)
    stage_results: dict[StageKind, StageResult] = Field(
        default_factory=dict,
        description="Completion-ordered stage results",
    )

    # Decision
    assessment: Optional[RiskAssessment] = None
    automated_disposition: Optional[Disposition] = None
    overrides: list[OverrideDecision] = Field(default_factory=list)

    # Timestamps
    created_at: datetime
    updated_at: datetime

    @computed_field
    @property
    def is_terminal(self) -> bool:
        return self.status != SessionStatus.IN_PROGRESS

    @computed_field
    @property
    def is_overridden(self) -> bool:
        return len(self.overrides) > 0


class SessionSummary(BaseModel):
    """Counts per effective status, for the review dashboard."""

    total: int = 0
    in_progress: int = 0
    verified: int = 0
    suspicious: int = 0
    rejected: int = 0
    awaiting_review: int = 0
