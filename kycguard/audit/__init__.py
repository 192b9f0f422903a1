"""
KYCGuard Audit Ledger.

Hash-chained, append-only record of session starts, stage results,
automated assessments and reviewer overrides. The ledger service lives in
``kycguard.audit.service``.
"""

from kycguard.audit.schemas import (
    GENESIS_HASH,
    AuditChainVerification,
    AuditEntry,
    AuditEventType,
    hash_detail,
)
from kycguard.audit.repository import (
    AuditRepository,
    InMemoryAuditRepository,
    SqlAlchemyAuditRepository,
)

__all__ = [
    # Schemas
    "GENESIS_HASH",
    "AuditChainVerification",
    "AuditEntry",
    "AuditEventType",
    "hash_detail",
    # Repositories
    "AuditRepository",
    "InMemoryAuditRepository",
    "SqlAlchemyAuditRepository",
]
