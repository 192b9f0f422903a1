"""
Risk fusion schemas.

A RiskAssessment is the automated, explainable outcome of one session:
which flags were raised, how many points each contributed, and whether
any evidence was missing or degraded.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, computed_field


class Disposition(str, Enum):
    """Final categorical outcome of a session."""
    VERIFIED = "verified"
    SUSPICIOUS = "suspicious"
    REJECTED = "rejected"


class RiskTier(str, Enum):
    """Coarse bucket derived from risk points."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RiskFlag(str, Enum):
    """Flags consumed by fusion, in weight order."""
    DEEPFAKE = "deepfake_flag"
    GAN = "gan_flag"
    SPOOF = "spoof_flag"
    VOICE_CLONE = "voice_clone_flag"
    LIP_SYNC_MISMATCH = "lip_sync_mismatch_flag"


class RiskAssessment(BaseModel):
    """Output of the risk fusion engine. Immutable."""

    model_config = {"frozen": True}

    session_id: str
    risk_points: int = Field(ge=0, le=100)
    risk_tier: RiskTier
    confidence_score: int = Field(ge=10, le=100)
    disposition: Disposition
    computed_at: datetime

    flags: dict[RiskFlag, bool] = Field(
        default_factory=dict,
        description="Every fused flag and whether it was raised",
    )
    contributions: dict[RiskFlag, int] = Field(
        default_factory=dict,
        description="Points contributed by each raised flag",
    )
    incomplete_checks: list[str] = Field(
        default_factory=list,
        description="Sub-checks that were degraded, skipped or missing",
    )
    reasons: list[str] = Field(default_factory=list)

    @computed_field
    @property
    def evidence_complete(self) -> bool:
        """True when every sub-check produced a usable score."""
        return not self.incomplete_checks
