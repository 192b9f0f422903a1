"""
Tests for the Audit Ledger.

Covers the per-session hash chain, tamper detection and the SQL-backed
repository.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import IntegrityError

from kycguard.audit.repository import InMemoryAuditRepository
from kycguard.audit.schemas import GENESIS_HASH, AuditEntry, AuditEventType, hash_detail
from kycguard.audit.service import AuditLedger, verify_entries

START = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


class TickingClock:
    """Each call returns one second later than the previous one."""

    def __init__(self):
        self.calls = 0

    def __call__(self) -> datetime:
        self.calls += 1
        return START + timedelta(seconds=self.calls)


async def fill(ledger: AuditLedger, session_id: str, count: int) -> list[AuditEntry]:
    entries = [
        await ledger.append(session_id, AuditEventType.SESSION_STARTED, "system", {"version": 1})
    ]
    for i in range(2, count + 1):
        entries.append(
            await ledger.append(
                session_id, AuditEventType.STAGE_RECORDED, "system", {"version": i, "score": 0.25}
            )
        )
    return entries


# ============================================================================
# ENTRIES
# ============================================================================


class TestAuditEntry:

    def test_create_seals_hashes(self):
        entry = AuditEntry.create(
            session_id="kyc_1",
            event_type=AuditEventType.SESSION_STARTED,
            actor="system",
            detail={"subject_ref": "subject-1"},
            sequence_number=1,
            previous_hash=GENESIS_HASH,
            timestamp=START,
        )

        assert entry.entry_id.startswith("aud_")
        assert entry.detail_hash == hash_detail({"subject_ref": "subject-1"})
        assert entry.entry_hash == entry.compute_hash()
        assert entry.verify_integrity()

    def test_explicit_entry_id_is_kept(self):
        entry = AuditEntry.create(
            session_id="kyc_1",
            event_type=AuditEventType.REVIEW_OVERRIDE,
            actor="reviewer-7",
            detail={},
            sequence_number=8,
            previous_hash="abc",
            entry_id="aud_fixed",
        )
        assert entry.entry_id == "aud_fixed"

    def test_detail_hash_ignores_key_order(self):
        assert hash_detail({"a": 1, "b": 2}) == hash_detail({"b": 2, "a": 1})

    def test_modified_detail_fails_integrity(self):
        entry = AuditEntry.create(
            session_id="kyc_1",
            event_type=AuditEventType.SESSION_ASSESSED,
            actor="system",
            detail={"disposition": "rejected"},
            sequence_number=1,
            previous_hash=GENESIS_HASH,
        )

        forged = entry.model_copy(update={"detail": {"disposition": "verified"}})

        assert not forged.verify_integrity()

    def test_entries_are_immutable(self):
        entry = AuditEntry.create(
            session_id="kyc_1",
            event_type=AuditEventType.SESSION_STARTED,
            actor="system",
            detail={},
            sequence_number=1,
            previous_hash=GENESIS_HASH,
        )
        with pytest.raises(ValueError):
            entry.actor = "mallory"


# ============================================================================
# LEDGER
# ============================================================================


class TestAuditLedger:

    def setup_method(self):
        self.ledger = AuditLedger(InMemoryAuditRepository(), clock=TickingClock())

    @pytest.mark.asyncio
    async def test_chain_links_per_session(self):
        entries = await fill(self.ledger, "kyc_1", 3)

        assert [e.sequence_number for e in entries] == [1, 2, 3]
        assert entries[0].previous_hash == GENESIS_HASH
        assert entries[1].previous_hash == entries[0].entry_hash
        assert entries[2].previous_hash == entries[1].entry_hash

    @pytest.mark.asyncio
    async def test_sessions_have_independent_chains(self):
        await fill(self.ledger, "kyc_1", 2)
        other = await fill(self.ledger, "kyc_2", 1)

        assert other[0].sequence_number == 1
        assert other[0].previous_hash == GENESIS_HASH

    @pytest.mark.asyncio
    async def test_concurrent_appends_stay_contiguous(self):
        await asyncio.gather(*(
            self.ledger.append("kyc_1", AuditEventType.STAGE_RECORDED, "system", {"n": n})
            for n in range(20)
        ))

        entries = await self.ledger.query("kyc_1")

        assert [e.sequence_number for e in entries] == list(range(1, 21))
        assert (await self.ledger.verify_chain("kyc_1")).is_valid

    @pytest.mark.asyncio
    async def test_naive_clock_is_treated_as_utc(self):
        ledger = AuditLedger(InMemoryAuditRepository(), clock=lambda: datetime(2026, 3, 1, 9, 0))

        entry = await ledger.append("kyc_1", AuditEventType.SESSION_STARTED, "system", {})

        assert entry.timestamp.tzinfo is not None
        assert entry.timestamp == START

    @pytest.mark.asyncio
    async def test_whole_ledger_is_time_ordered(self):
        await fill(self.ledger, "kyc_1", 2)
        await fill(self.ledger, "kyc_2", 2)
        await self.ledger.append("kyc_1", AuditEventType.SESSION_ASSESSED, "system", {})

        entries = await self.ledger.entries()

        assert [(e.session_id, e.sequence_number) for e in entries] == [
            ("kyc_1", 1), ("kyc_1", 2), ("kyc_2", 1), ("kyc_2", 2), ("kyc_1", 3),
        ]
        assert len(await self.ledger.entries(limit=2)) == 2

    @pytest.mark.asyncio
    async def test_count_by_event_type(self):
        await fill(self.ledger, "kyc_1", 3)
        await fill(self.ledger, "kyc_2", 1)

        assert await self.ledger.count() == 4
        assert await self.ledger.count("kyc_1") == 3
        assert await self.ledger.count(event_type=AuditEventType.SESSION_STARTED) == 2
        assert await self.ledger.count("kyc_1", AuditEventType.STAGE_RECORDED) == 2


# ============================================================================
# CHAIN VERIFICATION
# ============================================================================


class TestChainVerification:

    def setup_method(self):
        self.ledger = AuditLedger(InMemoryAuditRepository(), clock=TickingClock())

    @pytest.mark.asyncio
    async def test_valid_chain(self):
        await fill(self.ledger, "kyc_1", 4)

        result = await self.ledger.verify_chain("kyc_1")

        assert result.is_valid
        assert result.entries_checked == 4
        assert "4 entries" in result.summary

    @pytest.mark.asyncio
    async def test_empty_chain_is_valid(self):
        result = await self.ledger.verify_chain("kyc_none")
        assert result.is_valid
        assert result.entries_checked == 0

    @pytest.mark.asyncio
    async def test_tampered_entry_detected(self):
        entries = await fill(self.ledger, "kyc_1", 3)
        entries[1] = entries[1].model_copy(update={"detail": {"version": 2, "score": 0.99}})

        result = verify_entries("kyc_1", entries)

        assert not result.is_valid
        assert result.error_type == "entry_tampered"
        assert result.first_invalid_sequence == 2
        assert result.entries_checked == 1

    @pytest.mark.asyncio
    async def test_rehashed_entry_breaks_the_next_link(self):
        entries = await fill(self.ledger, "kyc_1", 3)
        forged = AuditEntry.create(
            session_id="kyc_1",
            event_type=AuditEventType.STAGE_RECORDED,
            actor="system",
            detail={"version": 2, "score": 0.0},
            sequence_number=2,
            previous_hash=entries[0].entry_hash,
            timestamp=entries[1].timestamp,
            entry_id=entries[1].entry_id,
        )
        entries[1] = forged

        result = verify_entries("kyc_1", entries)

        assert result.error_type == "chain_broken"
        assert result.first_invalid_sequence == 3

    @pytest.mark.asyncio
    async def test_deleted_entry_detected(self):
        entries = await fill(self.ledger, "kyc_1", 3)

        result = verify_entries("kyc_1", [entries[0], entries[2]])

        assert result.error_type == "sequence_gap"
        assert result.first_invalid_sequence == 3

    @pytest.mark.asyncio
    async def test_verified_at_uses_ledger_clock(self):
        await fill(self.ledger, "kyc_1", 1)

        result = await self.ledger.verify_chain("kyc_1")

        assert result.verified_at == START + timedelta(seconds=2)


# ============================================================================
# SQL REPOSITORY
# ============================================================================


class TestSqlAuditRepository:

    @pytest.mark.asyncio
    async def test_round_trip_preserves_hashes(self, sql_audit_repo):
        ledger = AuditLedger(sql_audit_repo, clock=TickingClock())
        written = await fill(ledger, "kyc_1", 3)

        loaded = await ledger.query("kyc_1")

        assert [e.entry_hash for e in loaded] == [e.entry_hash for e in written]
        assert all(e.timestamp.tzinfo is not None for e in loaded)
        assert all(e.verify_integrity() for e in loaded)
        assert (await ledger.verify_chain("kyc_1")).is_valid

    @pytest.mark.asyncio
    async def test_last_entry_and_counts(self, sql_audit_repo):
        ledger = AuditLedger(sql_audit_repo, clock=TickingClock())
        await fill(ledger, "kyc_1", 3)
        await fill(ledger, "kyc_2", 1)

        last = await sql_audit_repo.get_last_entry("kyc_1")

        assert last.sequence_number == 3
        assert await sql_audit_repo.get_last_entry("kyc_none") is None
        assert await ledger.count() == 4
        assert await ledger.count(event_type=AuditEventType.STAGE_RECORDED) == 2
        assert [e.session_id for e in await ledger.entries()] == ["kyc_1"] * 3 + ["kyc_2"]

    @pytest.mark.asyncio
    async def test_duplicate_position_rejected(self, sql_audit_repo):
        ledger = AuditLedger(sql_audit_repo, clock=TickingClock())
        first = (await fill(ledger, "kyc_1", 1))[0]
        clash = AuditEntry.create(
            session_id="kyc_1",
            event_type=AuditEventType.SESSION_STARTED,
            actor="system",
            detail={},
            sequence_number=1,
            previous_hash=GENESIS_HASH,
        )

        with pytest.raises(IntegrityError):
            await sql_audit_repo.store_entry(clash)

        assert [e.entry_id for e in await ledger.query("kyc_1")] == [first.entry_id]
