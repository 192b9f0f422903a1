"""
Audit Repository - Storage for Audit Entries.

Two implementations share one duck-typed contract:
- ``SqlAlchemyAuditRepository`` for durable, ACID storage
- ``InMemoryAuditRepository`` for tests and single-process runs

Audit entries are append-only: no updates or deletes are performed.
"""

from datetime import timezone
from typing import Optional, Protocol

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from kycguard.audit.schemas import AuditEntry, AuditEventType
from kycguard.db.models import AuditEntryModel
from kycguard.db.unit_of_work import Transaction, joined_scope

logger = structlog.get_logger(__name__)


class AuditRepository(Protocol):
    """Protocol for audit entry storage."""

    async def store_entry(self, entry: AuditEntry, tx: Optional[Transaction] = None) -> None: ...

    async def get_last_entry(
        self, session_id: str, tx: Optional[Transaction] = None
    ) -> Optional[AuditEntry]: ...

    async def get_entries(
        self,
        session_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[AuditEntry]: ...

    async def count_entries(
        self,
        session_id: Optional[str] = None,
        event_type: Optional[AuditEventType] = None,
    ) -> int: ...


def _ledger_order(entry: AuditEntry) -> tuple:
    return (entry.timestamp, entry.session_id, entry.sequence_number)


class InMemoryAuditRepository:
    """
    In-memory audit repository.

    NOT FOR MULTI-PROCESS USE - data is lost on restart.
    """

    def __init__(self):
        self._entries: dict[str, list[AuditEntry]] = {}

    async def store_entry(self, entry: AuditEntry, tx: Optional[Transaction] = None) -> None:
        # The ledger entry is the last write of a transaction; deferred
        # session writes are applied only after it lands
        self._entries.setdefault(entry.session_id, []).append(entry)

    async def get_last_entry(
        self, session_id: str, tx: Optional[Transaction] = None
    ) -> Optional[AuditEntry]:
        chain = self._entries.get(session_id)
        if chain:
            return max(chain, key=lambda e: e.sequence_number)
        return None

    async def get_entries(
        self,
        session_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[AuditEntry]:
        if session_id is not None:
            entries = sorted(self._entries.get(session_id, []), key=lambda e: e.sequence_number)
        else:
            entries = sorted(
                (e for chain in self._entries.values() for e in chain),
                key=_ledger_order,
            )
        return entries[:limit] if limit is not None else entries

    async def count_entries(
        self,
        session_id: Optional[str] = None,
        event_type: Optional[AuditEventType] = None,
    ) -> int:
        entries = await self.get_entries(session_id)
        if event_type is not None:
            entries = [e for e in entries if e.event_type == event_type]
        return len(entries)


class SqlAlchemyAuditRepository:
    """
    SQL-backed audit repository (insert-only).

    The unique (session_id, sequence_number) constraint makes two writers
    that raced for the same position fail instead of forking a chain.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def store_entry(self, entry: AuditEntry, tx: Optional[Transaction] = None) -> None:
        model = AuditEntryModel(
            entry_id=entry.entry_id,
            session_id=entry.session_id,
            event_type=entry.event_type.value,
            actor=entry.actor,
            timestamp=entry.timestamp,
            detail=entry.detail,
            detail_hash=entry.detail_hash,
            sequence_number=entry.sequence_number,
            previous_hash=entry.previous_hash,
            entry_hash=entry.entry_hash,
        )
        async with joined_scope(self._session_factory, tx) as db:
            db.add(model)
            await db.flush()

        logger.debug(
            "audit_entry_stored",
            entry_id=entry.entry_id,
            session_id=entry.session_id,
            sequence=entry.sequence_number,
        )

    async def get_last_entry(
        self, session_id: str, tx: Optional[Transaction] = None
    ) -> Optional[AuditEntry]:
        query = (
            select(AuditEntryModel)
            .where(AuditEntryModel.session_id == session_id)
            .order_by(AuditEntryModel.sequence_number.desc())
            .limit(1)
        )
        if tx is not None and tx.db is not None:
            model = (await tx.db.execute(query)).scalar_one_or_none()
        else:
            async with self._session_factory() as db:
                model = (await db.execute(query)).scalar_one_or_none()
        return self._model_to_entry(model) if model else None

    async def get_entries(
        self,
        session_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[AuditEntry]:
        query = select(AuditEntryModel)
        if session_id is not None:
            query = query.where(AuditEntryModel.session_id == session_id).order_by(
                AuditEntryModel.sequence_number
            )
        else:
            query = query.order_by(
                AuditEntryModel.timestamp,
                AuditEntryModel.session_id,
                AuditEntryModel.sequence_number,
            )
        if limit is not None:
            query = query.limit(limit)

        async with self._session_factory() as db:
            result = await db.execute(query)
            models = result.scalars().all()
        return [self._model_to_entry(m) for m in models]

    async def count_entries(
        self,
        session_id: Optional[str] = None,
        event_type: Optional[AuditEventType] = None,
    ) -> int:
        query = select(func.count()).select_from(AuditEntryModel)
        if session_id is not None:
            query = query.where(AuditEntryModel.session_id == session_id)
        if event_type is not None:
            query = query.where(AuditEntryModel.event_type == event_type.value)
        async with self._session_factory() as db:
            result = await db.execute(query)
            return result.scalar_one()

    @staticmethod
    def _model_to_entry(model: AuditEntryModel) -> AuditEntry:
        """Convert database model to AuditEntry."""
        timestamp = model.timestamp
        if timestamp.tzinfo is None:
            # SQLite drops the offset; entries are always written in UTC
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        return AuditEntry(
            entry_id=model.entry_id,
            session_id=model.session_id,
            event_type=AuditEventType(model.event_type),
            actor=model.actor,
            timestamp=timestamp,
            detail=model.detail or {},
            detail_hash=model.detail_hash,
            sequence_number=model.sequence_number,
            previous_hash=model.previous_hash,
            entry_hash=model.entry_hash,
        )
