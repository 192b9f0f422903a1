"""
KYCGuard Review Override Gate.

Reviewers may override an assessed session; the override is appended
next to the automated assessment, never in place of it. The gate itself
lives in ``kycguard.review.service``.
"""

from kycguard.review.schemas import OverrideDecision, OverrideDecisionType, OverrideRequest

__all__ = [
    "OverrideDecision",
    "OverrideDecisionType",
    "OverrideRequest",
]
