"""
KYCGuard Risk Fusion.

The engine lives in ``kycguard.fusion.engine``; only the schemas are
re-exported here because session schemas depend on them.
"""

from kycguard.fusion.schemas import Disposition, RiskAssessment, RiskFlag, RiskTier

__all__ = [
    "Disposition",
    "RiskAssessment",
    "RiskFlag",
    "RiskTier",
]
