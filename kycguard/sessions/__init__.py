"""
KYCGuard Verification Sessions.

Schemas, evidence models and the stage state machine. The orchestrating
``VerificationService`` and the repositories are imported from their own
modules.
"""

from kycguard.sessions.schemas import (
    SessionState,
    SessionStatus,
    SessionSummary,
    StageKind,
    StageOutcome,
    StageResult,
    SubCheckResult,
    SubCheckStatus,
    VerificationSession,
)
from kycguard.sessions.evidence import (
    DocumentRef,
    DocumentsEvidence,
    LivenessChallenge,
    LivenessEvidence,
    PersonalInfoEvidence,
    SelfieEvidence,
    StageEvidence,
    VoiceEvidence,
)
from kycguard.sessions.machine import (
    NEXT_STAGE,
    STAGE_SPECS,
    next_stage,
    parse_evidence,
    plan_sub_checks,
)

__all__ = [
    # Schemas
    "SessionState",
    "SessionStatus",
    "SessionSummary",
    "StageKind",
    "StageOutcome",
    "StageResult",
    "SubCheckResult",
    "SubCheckStatus",
    "VerificationSession",
    # Evidence
    "DocumentRef",
    "DocumentsEvidence",
    "LivenessChallenge",
    "LivenessEvidence",
    "PersonalInfoEvidence",
    "SelfieEvidence",
    "StageEvidence",
    "VoiceEvidence",
    # State machine
    "NEXT_STAGE",
    "STAGE_SPECS",
    "next_stage",
    "parse_evidence",
    "plan_sub_checks",
]
