"""
Risk Fusion Engine Tests.

Covers the weight table, tier boundaries, the incomplete-evidence cap
and determinism.
"""

from datetime import datetime, timezone

import pytest
from hypothesis import given, settings as hyp_settings
from hypothesis import strategies as st

from kycguard.fusion.engine import (
    DOCUMENT_FLAG,
    EVIDENCE_DEGRADED,
    RISK_WEIGHTS,
    RiskFusionEngine,
    confidence_for_points,
    derive_stage_flags,
    skipped_stage_flags,
    tier_for_points,
)
from kycguard.fusion.schemas import Disposition, RiskFlag, RiskTier
from kycguard.providers.schemas import ProviderResponse, ProviderVariant
from kycguard.sessions.schemas import (
    StageKind,
    StageOutcome,
    StageResult,
    SubCheckResult,
    SubCheckStatus,
)

COMPUTED_AT = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

STAGE_VARIANTS = {
    StageKind.PERSONAL_INFO: {},
    StageKind.DOCUMENTS: {"document_authenticity[0]": ProviderVariant.DOCUMENT_AUTHENTICITY},
    StageKind.SELFIE: {
        "deepfake_face": ProviderVariant.DEEPFAKE_FACE,
        "gan_face": ProviderVariant.GAN_FACE,
        "spoof_liveness": ProviderVariant.SPOOF_LIVENESS,
    },
    StageKind.LIVENESS: {"spoof_liveness": ProviderVariant.SPOOF_LIVENESS},
    StageKind.VOICE: {
        "voice_clone": ProviderVariant.VOICE_CLONE,
        "lip_sync": ProviderVariant.LIP_SYNC,
    },
}


# ============================================================================
# HELPERS
# ============================================================================


def ok(variant: ProviderVariant, score: float) -> SubCheckResult:
    return SubCheckResult(
        variant=variant,
        status=SubCheckStatus.OK,
        response=ProviderResponse(score=score, confidence=0.9),
    )


def timed_out(variant: ProviderVariant) -> SubCheckResult:
    return SubCheckResult(variant=variant, status=SubCheckStatus.TIMEOUT, error="no answer")


def stage(stage_kind: StageKind, scores=None, failed=()) -> StageResult:
    """Build a stage result; ``scores`` maps sub-check names to scores (default 0)."""
    scores = scores or {}
    sub_checks = {}
    for name, variant in STAGE_VARIANTS[stage_kind].items():
        if name in failed:
            sub_checks[name] = timed_out(variant)
        else:
            sub_checks[name] = ok(variant, scores.get(name, 0.0))
    degraded = bool(failed)
    return StageResult(
        stage_kind=stage_kind,
        outcome=StageOutcome.DEGRADED if degraded else StageOutcome.RECORDED,
        raw_provider_output=sub_checks,
        derived_flags=derive_stage_flags(stage_kind, sub_checks),
        evidence_digest="digest",
        recorded_at=COMPUTED_AT,
    )


def skipped(stage_kind: StageKind) -> StageResult:
    return StageResult(
        stage_kind=stage_kind,
        outcome=StageOutcome.SKIPPED,
        derived_flags=skipped_stage_flags(stage_kind),
        skip_reason="camera unavailable",
        recorded_at=COMPUTED_AT,
    )


def all_stages() -> dict:
    return {kind: stage(kind) for kind in StageKind}


# ============================================================================
# SCENARIOS
# ============================================================================


class TestFusionScenarios:
    """End-to-end fusion of full stage sets."""

    def setup_method(self):
        self.engine = RiskFusionEngine()

    def fuse(self, results):
        return self.engine.fuse(results, session_id="kyc_test", computed_at=COMPUTED_AT)

    def test_deepfake_and_gan_reject(self):
        """deepfake 0.6 + GAN flag → 70 points, high, rejected, confidence 30."""
        results = all_stages()
        results[StageKind.SELFIE] = stage(
            StageKind.SELFIE, {"deepfake_face": 0.6, "gan_face": 0.9}
        )

        assessment = self.fuse(results)

        assert assessment.risk_points == 70
        assert assessment.risk_tier == RiskTier.HIGH
        assert assessment.disposition == Disposition.REJECTED
        assert assessment.confidence_score == 30
        assert assessment.contributions == {RiskFlag.DEEPFAKE: 40, RiskFlag.GAN: 30}

    def test_all_clean_verifies(self):
        assessment = self.fuse(all_stages())

        assert assessment.risk_points == 0
        assert assessment.risk_tier == RiskTier.LOW
        assert assessment.disposition == Disposition.VERIFIED
        assert assessment.confidence_score == 100
        assert assessment.evidence_complete
        assert assessment.incomplete_checks == []
        assert not any(assessment.flags.values())

    def test_spoof_only_is_suspicious(self):
        results = all_stages()
        results[StageKind.LIVENESS] = stage(StageKind.LIVENESS, {"spoof_liveness": 0.8})

        assessment = self.fuse(results)

        assert assessment.risk_points == 25
        assert assessment.risk_tier == RiskTier.MEDIUM
        assert assessment.disposition == Disposition.SUSPICIOUS
        assert assessment.confidence_score == 75

    def test_spoof_raised_by_two_stages_counts_once(self):
        results = all_stages()
        results[StageKind.SELFIE] = stage(StageKind.SELFIE, {"spoof_liveness": 0.9})
        results[StageKind.LIVENESS] = stage(StageKind.LIVENESS, {"spoof_liveness": 0.9})

        assert self.fuse(results).risk_points == 25

    def test_points_capped_at_100(self):
        results = all_stages()
        results[StageKind.SELFIE] = stage(
            StageKind.SELFIE, {"deepfake_face": 1.0, "gan_face": 1.0, "spoof_liveness": 1.0}
        )
        results[StageKind.VOICE] = stage(
            StageKind.VOICE, {"voice_clone": 1.0, "lip_sync": 1.0}
        )

        assessment = self.fuse(results)

        assert assessment.risk_points == 100
        assert assessment.confidence_score == 10
        assert sum(assessment.contributions.values()) == 130

    def test_score_equal_to_threshold_does_not_flag(self):
        results = all_stages()
        results[StageKind.VOICE] = stage(StageKind.VOICE, {"voice_clone": 0.5})

        assessment = self.fuse(results)

        assert assessment.flags[RiskFlag.VOICE_CLONE] is False
        assert assessment.disposition == Disposition.VERIFIED


class TestIncompleteEvidenceCap:
    """Degraded, skipped or missing evidence never auto-verifies."""

    def setup_method(self):
        self.engine = RiskFusionEngine()

    def fuse(self, results):
        return self.engine.fuse(results, session_id="kyc_test", computed_at=COMPUTED_AT)

    def test_degraded_voice_caps_at_suspicious(self):
        """A timed-out lip-sync check with nothing else raised → suspicious."""
        results = all_stages()
        results[StageKind.VOICE] = stage(StageKind.VOICE, failed=("lip_sync",))

        assessment = self.fuse(results)

        assert assessment.disposition == Disposition.SUSPICIOUS
        assert assessment.risk_tier == RiskTier.MEDIUM
        assert "voice:lip_sync" in assessment.incomplete_checks
        assert not assessment.evidence_complete
        # The failed check raises its own flag
        assert assessment.flags[RiskFlag.LIP_SYNC_MISMATCH] is True
        assert assessment.risk_points == 15

    def test_skipped_stage_raises_all_its_flags(self):
        results = all_stages()
        results[StageKind.VOICE] = skipped(StageKind.VOICE)

        assessment = self.fuse(results)

        assert assessment.risk_points == 35
        assert assessment.disposition == Disposition.REJECTED
        assert "voice:skipped" in assessment.incomplete_checks

    def test_missing_stage_is_treated_as_skipped(self):
        results = all_stages()
        del results[StageKind.LIVENESS]

        assessment = self.fuse(results)

        assert assessment.flags[RiskFlag.SPOOF] is True
        assert "liveness:missing" in assessment.incomplete_checks
        assert assessment.disposition == Disposition.SUSPICIOUS

    def test_failed_document_caps_without_points(self):
        results = all_stages()
        results[StageKind.DOCUMENTS] = stage(
            StageKind.DOCUMENTS, {"document_authenticity[0]": 0.95}
        )

        assessment = self.fuse(results)

        assert assessment.risk_points == 0
        assert assessment.risk_tier == RiskTier.MEDIUM
        assert assessment.disposition == Disposition.SUSPICIOUS
        assert assessment.confidence_score == 100
        assert any("capped at suspicious" in r for r in assessment.reasons)

    def test_cap_never_lowers_a_rejection(self):
        results = all_stages()
        results[StageKind.SELFIE] = stage(
            StageKind.SELFIE, {"deepfake_face": 0.9}, failed=("gan_face",)
        )

        assessment = self.fuse(results)

        assert assessment.risk_points == 70
        assert assessment.disposition == Disposition.REJECTED


class TestStageFlags:
    """Per-stage flag derivation."""

    def test_degraded_sub_check_sets_flag_and_marker(self):
        sub_checks = {
            "voice_clone": ok(ProviderVariant.VOICE_CLONE, 0.1),
            "lip_sync": timed_out(ProviderVariant.LIP_SYNC),
        }

        flags = derive_stage_flags(StageKind.VOICE, sub_checks)

        assert flags == {
            "voice_clone_flag": False,
            "lip_sync_mismatch_flag": True,
            EVIDENCE_DEGRADED: True,
        }

    def test_custom_threshold(self):
        sub_checks = {"spoof_liveness": ok(ProviderVariant.SPOOF_LIVENESS, 0.3)}

        assert derive_stage_flags(StageKind.LIVENESS, sub_checks, threshold=0.2)["spoof_flag"]
        assert not derive_stage_flags(StageKind.LIVENESS, sub_checks, threshold=0.5)["spoof_flag"]

    def test_evidence_flags_are_merged(self):
        sub_checks = {"spoof_liveness": ok(ProviderVariant.SPOOF_LIVENESS, 0.0)}

        flags = derive_stage_flags(
            StageKind.LIVENESS,
            sub_checks,
            evidence_flags={"challenge_incomplete": True, "spoof_flag": True},
        )

        assert flags["spoof_flag"] is True
        assert flags["challenge_incomplete"] is True
        assert flags[EVIDENCE_DEGRADED] is False

    def test_personal_info_has_no_flags(self):
        assert derive_stage_flags(StageKind.PERSONAL_INFO, {}) == {EVIDENCE_DEGRADED: False}

    def test_skipped_documents(self):
        assert skipped_stage_flags(StageKind.DOCUMENTS) == {
            DOCUMENT_FLAG: True,
            EVIDENCE_DEGRADED: True,
        }


class TestTierMapping:
    @pytest.mark.parametrize(
        "points,tier,disposition",
        [
            (0, RiskTier.LOW, Disposition.VERIFIED),
            (1, RiskTier.MEDIUM, Disposition.SUSPICIOUS),
            (29, RiskTier.MEDIUM, Disposition.SUSPICIOUS),
            (30, RiskTier.HIGH, Disposition.REJECTED),
            (100, RiskTier.HIGH, Disposition.REJECTED),
        ],
    )
    def test_boundaries(self, points, tier, disposition):
        assert tier_for_points(points) == (tier, disposition)

    def test_confidence_floor(self):
        assert confidence_for_points(0) == 100
        assert confidence_for_points(95) == 10

    def test_weights_must_cover_every_flag(self):
        with pytest.raises(ValueError):
            RiskFusionEngine(weights={RiskFlag.DEEPFAKE: 40})


# ============================================================================
# PROPERTY-BASED TESTS
# ============================================================================


face_scores = st.fixed_dictionaries({
    "deepfake_face": st.floats(min_value=0.0, max_value=1.0),
    "gan_face": st.floats(min_value=0.0, max_value=1.0),
    "spoof_liveness": st.floats(min_value=0.0, max_value=1.0),
})
voice_scores = st.fixed_dictionaries({
    "voice_clone": st.floats(min_value=0.0, max_value=1.0),
    "lip_sync": st.floats(min_value=0.0, max_value=1.0),
})


class TestFusionProperties:

    @given(selfie=face_scores, voice=voice_scores)
    @hyp_settings(max_examples=100)
    def test_points_and_confidence_bounds(self, selfie, voice):
        results = all_stages()
        results[StageKind.SELFIE] = stage(StageKind.SELFIE, selfie)
        results[StageKind.VOICE] = stage(StageKind.VOICE, voice)

        assessment = RiskFusionEngine().fuse(
            results, session_id="kyc_prop", computed_at=COMPUTED_AT
        )

        assert 0 <= assessment.risk_points <= 100
        assert 10 <= assessment.confidence_score <= 100
        expected = min(100, sum(
            RISK_WEIGHTS[flag] for flag, raised in assessment.flags.items() if raised
        ))
        assert assessment.risk_points == expected

    @given(selfie=face_scores, voice=voice_scores)
    @hyp_settings(max_examples=50)
    def test_fusion_is_deterministic(self, selfie, voice):
        results = all_stages()
        results[StageKind.SELFIE] = stage(StageKind.SELFIE, selfie)
        results[StageKind.VOICE] = stage(StageKind.VOICE, voice)

        first = RiskFusionEngine().fuse(results, session_id="kyc_prop", computed_at=COMPUTED_AT)
        second = RiskFusionEngine().fuse(results, session_id="kyc_prop", computed_at=COMPUTED_AT)

        assert first.model_dump() == second.model_dump()

    @given(failed=st.sets(st.sampled_from(["voice_clone", "lip_sync"]), min_size=1))
    def test_degraded_never_verifies(self, failed):
        results = all_stages()
        results[StageKind.VOICE] = stage(StageKind.VOICE, failed=tuple(failed))

        assessment = RiskFusionEngine().fuse(
            results, session_id="kyc_prop", computed_at=COMPUTED_AT
        )

        assert assessment.disposition != Disposition.VERIFIED
