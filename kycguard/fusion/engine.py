"""
Risk Fusion Engine.

Combines the per-stage flags of a finished session into one risk
assessment using a fixed weight table:

    deepfake            +40
    GAN face            +30
    spoof / liveness    +25
    voice clone         +20
    lip-sync mismatch   +15

    points = min(100, Σ weights of raised flags)
    0       -> low,    verified
    1..29   -> medium, suspicious
    30..100 -> high,   rejected
    confidence = max(10, 100 - points)

Missing, skipped or degraded sub-checks raise their flag AND cap the
disposition at suspicious: a session is never auto-verified on
incomplete evidence. An inauthentic document carries no points but
applies the same cap.

The engine is pure. Given the same stage results, session id and
timestamp it always returns an identical assessment.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Mapping, Optional

import structlog

from kycguard.fusion.schemas import Disposition, RiskAssessment, RiskFlag, RiskTier
from kycguard.providers.schemas import ProviderVariant
from kycguard.sessions.schemas import StageKind, StageOutcome, StageResult, SubCheckResult

logger = structlog.get_logger(__name__)


# ── Configuration ─────────────────────────────────────────────────────────

RISK_WEIGHTS: dict[RiskFlag, int] = {
    RiskFlag.DEEPFAKE: 40,
    RiskFlag.GAN: 30,
    RiskFlag.SPOOF: 25,
    RiskFlag.VOICE_CLONE: 20,
    RiskFlag.LIP_SYNC_MISMATCH: 15,
}

MEDIUM_THRESHOLD = 1
HIGH_THRESHOLD = 30
MIN_CONFIDENCE = 10
DEFAULT_FLAG_THRESHOLD = 0.5

# Derived flag that caps the disposition without adding points.
DOCUMENT_FLAG = "document_flag"
EVIDENCE_DEGRADED = "evidence_degraded"

VARIANT_FLAGS: dict[ProviderVariant, str] = {
    ProviderVariant.DEEPFAKE_FACE: RiskFlag.DEEPFAKE.value,
    ProviderVariant.GAN_FACE: RiskFlag.GAN.value,
    ProviderVariant.SPOOF_LIVENESS: RiskFlag.SPOOF.value,
    ProviderVariant.VOICE_CLONE: RiskFlag.VOICE_CLONE.value,
    ProviderVariant.LIP_SYNC: RiskFlag.LIP_SYNC_MISMATCH.value,
    ProviderVariant.DOCUMENT_AUTHENTICITY: DOCUMENT_FLAG,
}

# Flags each stage is responsible for; raised wholesale when the stage is
# skipped or missing.
STAGE_FLAGS: dict[StageKind, tuple[str, ...]] = {
    StageKind.PERSONAL_INFO: (),
    StageKind.DOCUMENTS: (DOCUMENT_FLAG,),
    StageKind.SELFIE: (RiskFlag.DEEPFAKE.value, RiskFlag.GAN.value, RiskFlag.SPOOF.value),
    StageKind.LIVENESS: (RiskFlag.SPOOF.value,),
    StageKind.VOICE: (RiskFlag.VOICE_CLONE.value, RiskFlag.LIP_SYNC_MISMATCH.value),
}


# ── Flag derivation ───────────────────────────────────────────────────────


def derive_stage_flags(
    stage_kind: StageKind,
    sub_checks: Mapping[str, SubCheckResult],
    threshold: float = DEFAULT_FLAG_THRESHOLD,
    evidence_flags: Optional[Mapping[str, bool]] = None,
) -> dict[str, bool]:
    """
    Booleans a recorded stage contributes to fusion.

    A sub-check raises its flag when ``score > threshold`` or when it
    produced no usable score at all.
    """
    flags = {name: False for name in STAGE_FLAGS[stage_kind]}
    degraded = False

    for sub in sub_checks.values():
        flag = VARIANT_FLAGS[sub.variant]
        if not sub.is_usable:
            degraded = True
            flags[flag] = True
        elif sub.response.score > threshold:
            flags[flag] = True
        else:
            flags.setdefault(flag, False)

    for name, raised in (evidence_flags or {}).items():
        flags[name] = flags.get(name, False) or raised

    flags[EVIDENCE_DEGRADED] = degraded
    return flags


def skipped_stage_flags(stage_kind: StageKind) -> dict[str, bool]:
    """A skipped stage is treated as if every one of its checks failed."""
    flags = {name: True for name in STAGE_FLAGS[stage_kind]}
    flags[EVIDENCE_DEGRADED] = True
    return flags


# ── Fusion ────────────────────────────────────────────────────────────────


@dataclass
class _Accumulator:
    flags: dict[RiskFlag, bool] = field(
        default_factory=lambda: {flag: False for flag in RiskFlag}
    )
    incomplete: list[str] = field(default_factory=list)
    document_flag: bool = False
    reasons: list[str] = field(default_factory=list)


def tier_for_points(risk_points: int) -> tuple[RiskTier, Disposition]:
    """Exhaustive mapping from points to tier and disposition."""
    if risk_points < MEDIUM_THRESHOLD:
        return RiskTier.LOW, Disposition.VERIFIED
    if risk_points < HIGH_THRESHOLD:
        return RiskTier.MEDIUM, Disposition.SUSPICIOUS
    return RiskTier.HIGH, Disposition.REJECTED


def confidence_for_points(risk_points: int) -> int:
    return max(MIN_CONFIDENCE, 100 - risk_points)


class RiskFusionEngine:
    """
    Deterministic multi-signal fusion.

    Weights are fixed by default; a custom table may be passed for
    experiments but must cover every RiskFlag.
    """

    def __init__(self, weights: Optional[Mapping[RiskFlag, int]] = None):
        self.weights = dict(weights or RISK_WEIGHTS)
        missing = set(RiskFlag) - set(self.weights)
        if missing:
            raise ValueError(f"Missing weights for {sorted(f.value for f in missing)}")

    def fuse(
        self,
        stage_results: Mapping[StageKind, StageResult],
        *,
        session_id: str,
        computed_at: datetime,
    ) -> RiskAssessment:
        """Fuse stage results into a RiskAssessment."""
        acc = _Accumulator()

        for stage_kind in StageKind:
            result = stage_results.get(stage_kind)
            if result is None:
                self._absorb(acc, stage_kind, skipped_stage_flags(stage_kind))
                acc.incomplete.append(f"{stage_kind.value}:missing")
                acc.reasons.append(f"{stage_kind.value} stage has no result")
                continue

            self._absorb(acc, stage_kind, result.derived_flags)
            if result.outcome == StageOutcome.SKIPPED:
                acc.incomplete.append(f"{stage_kind.value}:skipped")
                acc.reasons.append(f"{stage_kind.value} stage was skipped")
            for name in result.degraded_checks:
                acc.incomplete.append(f"{stage_kind.value}:{name}")
                acc.reasons.append(f"{stage_kind.value} sub-check {name} was degraded")

        contributions = {
            flag: self.weights[flag] for flag, raised in acc.flags.items() if raised
        }
        risk_points = min(100, max(0, sum(contributions.values())))
        tier, disposition = tier_for_points(risk_points)

        for flag, points in contributions.items():
            acc.reasons.append(f"{flag.value} raised (+{points})")

        capped = bool(acc.incomplete) or acc.document_flag
        if capped and disposition == Disposition.VERIFIED:
            tier, disposition = RiskTier.MEDIUM, Disposition.SUSPICIOUS
            acc.reasons.append("evidence incomplete or document unverified; capped at suspicious")
        elif acc.document_flag:
            acc.reasons.append("document authenticity not established")

        assessment = RiskAssessment(
            session_id=session_id,
            risk_points=risk_points,
            risk_tier=tier,
            confidence_score=confidence_for_points(risk_points),
            disposition=disposition,
            computed_at=computed_at,
            flags=acc.flags,
            contributions=contributions,
            incomplete_checks=acc.incomplete,
            reasons=acc.reasons,
        )

        logger.debug(
            "risk_fused",
            session_id=session_id,
            risk_points=risk_points,
            disposition=disposition.value,
            capped=capped,
        )

        return assessment

    @staticmethod
    def _absorb(acc: _Accumulator, stage_kind: StageKind, derived: Mapping[str, bool]) -> None:
        for flag in RiskFlag:
            if derived.get(flag.value):
                acc.flags[flag] = True
        if derived.get(DOCUMENT_FLAG):
            acc.document_flag = True
