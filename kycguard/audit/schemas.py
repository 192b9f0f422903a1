"""
Audit Ledger Schemas.

Every accepted mutation of a verification session is recorded here:
session start, each stage, the automated assessment and every reviewer
override. Entries are chained per session:

    entry_n.previous_hash = entry_(n-1).entry_hash

which detects tampered entries (hash mismatch), deleted entries (chain
broken) and inserted entries (sequence gap).

CRITICAL: Audit entries are IMMUTABLE once created.
"""

import hashlib
import json
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, computed_field

GENESIS_HASH = "genesis"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def hash_detail(detail: dict[str, Any]) -> str:
    """Deterministic SHA-256 of a detail payload (sorted keys)."""
    json_str = json.dumps(detail, sort_keys=True, default=str)
    return hashlib.sha256(json_str.encode()).hexdigest()


# ============================================================================
# EVENT TYPES
# ============================================================================


class AuditEventType(str, Enum):
    """Types of auditable events."""

    SESSION_STARTED = "session.started"
    STAGE_RECORDED = "stage.recorded"
    STAGE_SKIPPED = "stage.skipped"
    SESSION_ASSESSED = "session.assessed"
    REVIEW_OVERRIDE = "review.override"


# ============================================================================
# AUDIT ENTRY
# ============================================================================


class AuditEntry(BaseModel):
    """
    Single immutable ledger entry with a per-session hash chain.

    Build with ``AuditEntry.create(...)``, which fills in both hashes.
    """

    model_config = {"frozen": True}

    # Identity
    entry_id: str = Field(
        default_factory=lambda: f"aud_{uuid.uuid4().hex}",
        description="Unique audit entry ID",
    )
    session_id: str
    event_type: AuditEventType
    actor: str = Field(description="system, or a reviewer id")
    timestamp: datetime = Field(default_factory=_now)

    # Event payload
    detail: dict[str, Any] = Field(default_factory=dict)
    detail_hash: str = ""

    # Chain integrity fields
    sequence_number: int = Field(ge=1, description="Contiguous per session, from 1")
    previous_hash: str = GENESIS_HASH
    entry_hash: str = ""

    @classmethod
    def create(
        cls,
        *,
        session_id: str,
        event_type: AuditEventType,
        actor: str,
        detail: dict[str, Any],
        sequence_number: int,
        previous_hash: str,
        timestamp: Optional[datetime] = None,
        entry_id: Optional[str] = None,
    ) -> "AuditEntry":
        """Build an entry and seal it with its hashes."""
        fields: dict[str, Any] = {
            "session_id": session_id,
            "event_type": event_type,
            "actor": actor,
            "detail": detail,
            "detail_hash": hash_detail(detail),
            "sequence_number": sequence_number,
            "previous_hash": previous_hash,
        }
        if timestamp is not None:
            fields["timestamp"] = timestamp
        if entry_id is not None:
            fields["entry_id"] = entry_id
        unsealed = cls(**fields)
        return unsealed.model_copy(update={"entry_hash": unsealed.compute_hash()})

    def compute_hash(self) -> str:
        """
        SHA-256 of this entry.

        Excludes entry_hash to avoid a circular dependency.
        """
        data = self.model_dump(mode="json", exclude={"entry_hash"})
        json_str = json.dumps(data, sort_keys=True, default=str)
        return hashlib.sha256(json_str.encode()).hexdigest()

    def verify_integrity(self) -> bool:
        """Verify that this entry has not been tampered with."""
        if hash_detail(self.detail) != self.detail_hash:
            return False
        return self.compute_hash() == self.entry_hash


# ============================================================================
# CHAIN VERIFICATION RESULT
# ============================================================================


class AuditChainVerification(BaseModel):
    """Result of verifying one session's audit chain."""

    session_id: str
    is_valid: bool
    entries_checked: int = Field(ge=0)
    first_invalid_sequence: Optional[int] = None
    error_type: Optional[str] = Field(
        default=None,
        description="chain_broken, entry_tampered or sequence_gap",
    )
    error_message: Optional[str] = None
    verified_at: datetime = Field(default_factory=_now)

    @computed_field
    @property
    def summary(self) -> str:
        if self.is_valid:
            return f"Chain integrity verified: {self.entries_checked} entries checked"
        return f"Chain integrity FAILED at sequence {self.first_invalid_sequence}: {self.error_type}"
