"""
Capability Provider schemas.

Every detector variant answers with the same response shape, so the
session state machine never has to know which model sits behind it.
``score`` is always the probability of the anomaly the variant looks for:
forgery for documents, manipulation for faces, presentation attack for
spoof/liveness, synthesis for voice and mismatch for lip-sync.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_serializer


class ProviderVariant(str, Enum):
    """Detector variants a stage can dispatch to."""

    DOCUMENT_AUTHENTICITY = "document_authenticity"
    DEEPFAKE_FACE = "deepfake_face"
    GAN_FACE = "gan_face"
    SPOOF_LIVENESS = "spoof_liveness"
    VOICE_CLONE = "voice_clone"
    LIP_SYNC = "lip_sync"


class ProviderRequest(BaseModel):
    """
    Request sent to a capability provider.

    Carries media references and stage context only; raw biometric media
    never passes through this service.
    """

    model_config = {"frozen": True}

    variant: ProviderVariant
    session_id: str
    stage_kind: str
    evidence_ref: str = Field(description="Reference to the captured media")
    context: dict = Field(
        default_factory=dict,
        description="Stage-specific hints (document type, phrase, challenges)",
    )


class ProviderResponse(BaseModel):
    """Uniform detector response."""

    model_config = {"frozen": True}

    score: float = Field(ge=0.0, le=1.0)
    label: Optional[str] = None
    artifacts: frozenset[str] = Field(default_factory=frozenset)
    confidence: float = Field(ge=0.0, le=1.0)

    @field_serializer("artifacts")
    def _serialize_artifacts(self, artifacts: frozenset[str]) -> list[str]:
        return sorted(artifacts)
