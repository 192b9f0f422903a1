"""
Session state machine.

The stage order is data: each state has at most one legal next stage,
and each stage declares its evidence schema and the detector sub-checks
it dispatches. Out-of-order submissions are rejected before anything
is touched.

    created
      --personal_info--> personal_info_collected
      --documents------> documents_submitted
      --selfie---------> selfie_captured
      --liveness-------> liveness_verified
      --voice----------> voice_verified
      --complete-------> assessed
"""

from dataclasses import dataclass
from typing import Any, Callable, Optional

from pydantic import ValidationError

from kycguard.common.exceptions import MalformedEvidenceError
from kycguard.providers.schemas import ProviderRequest, ProviderVariant
from kycguard.sessions.evidence import (
    DocumentsEvidence,
    LivenessEvidence,
    PersonalInfoEvidence,
    SelfieEvidence,
    VoiceEvidence,
    StageEvidence,
)
from kycguard.sessions.schemas import SessionState, StageKind

SubCheckPlan = list[tuple[str, ProviderRequest]]


# ============================================================================
# SUB-CHECK PLANNERS
# ============================================================================


def _request(
    variant: ProviderVariant,
    session_id: str,
    stage_kind: StageKind,
    evidence_ref: str,
    context: Optional[dict] = None,
) -> ProviderRequest:
    return ProviderRequest(
        variant=variant,
        session_id=session_id,
        stage_kind=stage_kind.value,
        evidence_ref=evidence_ref,
        context=context or {},
    )


def _plan_personal_info(session_id: str, evidence: PersonalInfoEvidence) -> SubCheckPlan:
    return []


def _plan_documents(session_id: str, evidence: DocumentsEvidence) -> SubCheckPlan:
    variant = ProviderVariant.DOCUMENT_AUTHENTICITY
    return [
        (
            f"{variant.value}[{i}]",
            _request(
                variant,
                session_id,
                StageKind.DOCUMENTS,
                doc.media_ref,
                {
                    "name": doc.name,
                    "content_type": doc.content_type,
                    "doc_type": doc.doc_type,
                },
            ),
        )
        for i, doc in enumerate(evidence.documents)
    ]


def _plan_selfie(session_id: str, evidence: SelfieEvidence) -> SubCheckPlan:
    # All three face detectors score the same captured frame.
    return [
        (variant.value, _request(variant, session_id, StageKind.SELFIE, evidence.frame_ref))
        for variant in (
            ProviderVariant.DEEPFAKE_FACE,
            ProviderVariant.GAN_FACE,
            ProviderVariant.SPOOF_LIVENESS,
        )
    ]


def _plan_liveness(session_id: str, evidence: LivenessEvidence) -> SubCheckPlan:
    variant = ProviderVariant.SPOOF_LIVENESS
    return [
        (
            variant.value,
            _request(
                variant,
                session_id,
                StageKind.LIVENESS,
                evidence.recording_ref,
                {"challenges": [c.value for c in evidence.challenges]},
            ),
        )
    ]


def _plan_voice(session_id: str, evidence: VoiceEvidence) -> SubCheckPlan:
    context = {"phrase": evidence.phrase, "duration_ms": evidence.duration_ms}
    return [
        (variant.value, _request(variant, session_id, StageKind.VOICE, evidence.recording_ref, context))
        for variant in (ProviderVariant.VOICE_CLONE, ProviderVariant.LIP_SYNC)
    ]


# ============================================================================
# TRANSITION TABLE
# ============================================================================


@dataclass(frozen=True)
class StageSpec:
    """Everything the state machine knows about one stage."""
    kind: StageKind
    from_state: SessionState
    to_state: SessionState
    evidence_model: type[StageEvidence]
    planner: Callable[[str, Any], SubCheckPlan]


STAGE_SPECS: dict[StageKind, StageSpec] = {
    spec.kind: spec
    for spec in (
        StageSpec(
            StageKind.PERSONAL_INFO,
            SessionState.CREATED,
            SessionState.PERSONAL_INFO_COLLECTED,
            PersonalInfoEvidence,
            _plan_personal_info,
        ),
        StageSpec(
            StageKind.DOCUMENTS,
            SessionState.PERSONAL_INFO_COLLECTED,
            SessionState.DOCUMENTS_SUBMITTED,
            DocumentsEvidence,
            _plan_documents,
        ),
        StageSpec(
            StageKind.SELFIE,
            SessionState.DOCUMENTS_SUBMITTED,
            SessionState.SELFIE_CAPTURED,
            SelfieEvidence,
            _plan_selfie,
        ),
        StageSpec(
            StageKind.LIVENESS,
            SessionState.SELFIE_CAPTURED,
            SessionState.LIVENESS_VERIFIED,
            LivenessEvidence,
            _plan_liveness,
        ),
        StageSpec(
            StageKind.VOICE,
            SessionState.LIVENESS_VERIFIED,
            SessionState.VOICE_VERIFIED,
            VoiceEvidence,
            _plan_voice,
        ),
    )
}

NEXT_STAGE: dict[SessionState, StageKind] = {
    spec.from_state: spec.kind for spec in STAGE_SPECS.values()
}

READY_FOR_ASSESSMENT = SessionState.VOICE_VERIFIED


def next_stage(state: SessionState) -> Optional[StageKind]:
    """The single legal next stage, or None once all stages are in."""
    return NEXT_STAGE.get(state)


def parse_evidence(stage_kind: StageKind, evidence: Any) -> StageEvidence:
    """Validate raw evidence against the stage schema."""
    model = STAGE_SPECS[stage_kind].evidence_model
    if isinstance(evidence, model):
        return evidence
    try:
        return model.model_validate(evidence)
    except ValidationError as e:
        raise MalformedEvidenceError(
            stage_kind.value,
            e.errors(include_url=False, include_context=False),
        ) from e


def plan_sub_checks(stage_kind: StageKind, session_id: str, evidence: StageEvidence) -> SubCheckPlan:
    """Provider requests a stage fans out to, keyed by sub-check name."""
    return STAGE_SPECS[stage_kind].planner(session_id, evidence)
