"""
Audit Ledger - append-only record of every accepted session mutation.

Usage:
    ledger = AuditLedger(InMemoryAuditRepository())

    entry = await ledger.append(session_id, AuditEventType.SESSION_STARTED, "system", {...})
    entries = await ledger.query(session_id)
    verification = await ledger.verify_chain(session_id)
    csv_text = await ledger.export(ExportFormat.CSV)

Chains are per session, so appends for different sessions never wait on
each other. Appends for one session are serialized by a per-session
asyncio lock; the chain head is re-read from storage on every append so a
restarted process continues an existing chain.
"""

from datetime import datetime, timezone
from typing import Any, Callable, Optional

import structlog

from kycguard.audit.repository import AuditRepository
from kycguard.audit.schemas import (
    GENESIS_HASH,
    AuditChainVerification,
    AuditEntry,
    AuditEventType,
)
from kycguard.common.locks import KeyedLocks
from kycguard.db.unit_of_work import Transaction
from kycguard.export.exporter import ExportFormat, LedgerExporter

logger = structlog.get_logger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AuditLedger:
    """
    Central service for audit operations.

    ``append`` is the only mutator. Entries are never updated or deleted.
    """

    def __init__(
        self,
        repository: AuditRepository,
        clock: Callable[[], datetime] = utc_now,
        exporter: Optional[LedgerExporter] = None,
    ):
        self._repo = repository
        self._clock = clock
        self._exporter = exporter or LedgerExporter()
        self._locks = KeyedLocks()

    # =========================================================================
    # APPEND
    # =========================================================================

    async def append(
        self,
        session_id: str,
        event_type: AuditEventType,
        actor: str,
        detail: dict[str, Any],
        *,
        entry_id: Optional[str] = None,
        tx: Optional[Transaction] = None,
    ) -> AuditEntry:
        """
        Record an event at the head of the session's chain.

        ``detail`` must be JSON-serializable; callers pass
        ``model_dump(mode="json")`` output. With ``tx`` the entry commits
        together with the caller's other writes.
        """
        async with self._locks(session_id):
            last = await self._repo.get_last_entry(session_id, tx=tx)
            timestamp = self._clock()
            if timestamp.tzinfo is None:
                timestamp = timestamp.replace(tzinfo=timezone.utc)

            entry = AuditEntry.create(
                session_id=session_id,
                event_type=event_type,
                actor=actor,
                detail=detail,
                sequence_number=last.sequence_number + 1 if last else 1,
                previous_hash=last.entry_hash if last else GENESIS_HASH,
                timestamp=timestamp.astimezone(timezone.utc),
                entry_id=entry_id,
            )
            await self._repo.store_entry(entry, tx=tx)

        logger.debug(
            "audit_event_recorded",
            event_type=event_type.value,
            session_id=session_id,
            sequence=entry.sequence_number,
        )
        return entry

    # =========================================================================
    # RETRIEVAL
    # =========================================================================

    async def query(self, session_id: str) -> list[AuditEntry]:
        """All entries for a session, in sequence order."""
        return await self._repo.get_entries(session_id)

    async def entries(self, limit: Optional[int] = None) -> list[AuditEntry]:
        """The whole ledger, ordered by time then session sequence."""
        return await self._repo.get_entries(limit=limit)

    async def count(
        self,
        session_id: Optional[str] = None,
        event_type: Optional[AuditEventType] = None,
    ) -> int:
        return await self._repo.count_entries(session_id, event_type)

    async def export(self, fmt: ExportFormat, session_id: Optional[str] = None) -> str:
        """Export one session (or the whole ledger) as JSON Lines or CSV."""
        if session_id is not None:
            entries = await self.query(session_id)
        else:
            entries = await self.entries()
        return self._exporter.export(entries, fmt)

    # =========================================================================
    # CHAIN VERIFICATION
    # =========================================================================

    async def verify_chain(self, session_id: str) -> AuditChainVerification:
        """
        Verify cryptographic integrity of a session's chain.

        Checks:
        1. Sequence numbers are contiguous from 1
        2. Each entry links to the previous via previous_hash
        3. Each entry's hashes match its contents
        """
        entries = await self.query(session_id)
        return verify_entries(session_id, entries, verified_at=self._clock())


def verify_entries(
    session_id: str,
    entries: list[AuditEntry],
    verified_at: Optional[datetime] = None,
) -> AuditChainVerification:
    """Verify an ordered list of one session's entries."""
    stamp = {"verified_at": verified_at} if verified_at is not None else {}
    expected_hash = GENESIS_HASH
    expected_sequence = 1

    for i, entry in enumerate(entries):
        if entry.sequence_number != expected_sequence:
            return AuditChainVerification(
                session_id=session_id,
                is_valid=False,
                entries_checked=i,
                first_invalid_sequence=entry.sequence_number,
                error_type="sequence_gap",
                error_message=f"Expected sequence {expected_sequence}, got {entry.sequence_number}",
                **stamp,
            )

        if entry.previous_hash != expected_hash:
            return AuditChainVerification(
                session_id=session_id,
                is_valid=False,
                entries_checked=i,
                first_invalid_sequence=entry.sequence_number,
                error_type="chain_broken",
                error_message=(
                    f"Chain broken at sequence {entry.sequence_number}: expected previous_hash "
                    f"{expected_hash[:16]}..., got {entry.previous_hash[:16]}..."
                ),
                **stamp,
            )

        if not entry.verify_integrity():
            return AuditChainVerification(
                session_id=session_id,
                is_valid=False,
                entries_checked=i,
                first_invalid_sequence=entry.sequence_number,
                error_type="entry_tampered",
                error_message=f"Entry tampered at sequence {entry.sequence_number}",
                **stamp,
            )

        expected_hash = entry.entry_hash
        expected_sequence += 1

    if entries:
        logger.info(
            "chain_verification_complete",
            session_id=session_id,
            entries_checked=len(entries),
            is_valid=True,
        )

    return AuditChainVerification(
        session_id=session_id,
        is_valid=True,
        entries_checked=len(entries),
        **stamp,
    )
