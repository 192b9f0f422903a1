"""
Session Repository - storage for VerificationSession snapshots.

Both implementations enforce optimistic concurrency on ``save``: the
stored version must equal ``expected_version`` or StaleVersionError is
raised and nothing is written.

Writes accept an optional ``Transaction`` from ``transaction()`` so the
service can commit a session change together with its ledger entry.
"""

from typing import AsyncContextManager, Optional, Protocol

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from kycguard.common.exceptions import StaleVersionError
from kycguard.db.models import SessionModel
from kycguard.db.unit_of_work import Transaction, joined_scope, memory_transaction, sql_transaction
from kycguard.sessions.schemas import SessionStatus, VerificationSession

logger = structlog.get_logger(__name__)


class SessionRepository(Protocol):
    """Protocol for session storage."""

    def transaction(self) -> AsyncContextManager[Transaction]: ...

    async def add(self, session: VerificationSession, tx: Optional[Transaction] = None) -> None: ...

    async def get(self, session_id: str) -> Optional[VerificationSession]: ...

    async def save(
        self,
        session: VerificationSession,
        expected_version: int,
        tx: Optional[Transaction] = None,
    ) -> None: ...

    async def find_by_subject(self, subject_ref: str) -> list[VerificationSession]: ...

    async def list_sessions(
        self,
        status: Optional[SessionStatus] = None,
        limit: Optional[int] = None,
    ) -> list[VerificationSession]: ...


def _newest_first(sessions: list[VerificationSession]) -> list[VerificationSession]:
    return sorted(sessions, key=lambda s: (s.created_at, s.session_id), reverse=True)


class InMemorySessionRepository:
    """
    In-memory session repository.

    Stores and returns deep copies so no caller shares state with the store.
    """

    def __init__(self):
        self._sessions: dict[str, VerificationSession] = {}

    def transaction(self) -> AsyncContextManager[Transaction]:
        return memory_transaction()

    async def add(self, session: VerificationSession, tx: Optional[Transaction] = None) -> None:
        if session.session_id in self._sessions:
            raise ValueError(f"Session {session.session_id} already exists")
        self._write(session, tx)

    async def get(self, session_id: str) -> Optional[VerificationSession]:
        stored = self._sessions.get(session_id)
        return stored.model_copy(deep=True) if stored else None

    async def save(
        self,
        session: VerificationSession,
        expected_version: int,
        tx: Optional[Transaction] = None,
    ) -> None:
        current = self._sessions.get(session.session_id)
        if current is None or current.version != expected_version:
            raise StaleVersionError(
                session.session_id,
                expected_version,
                current.version if current else 0,
            )
        self._write(session, tx)

    def _write(self, session: VerificationSession, tx: Optional[Transaction]) -> None:
        stored = session.model_copy(deep=True)

        def write() -> None:
            self._sessions[stored.session_id] = stored

        if tx is not None:
            tx.defer(write)
        else:
            write()

    async def find_by_subject(self, subject_ref: str) -> list[VerificationSession]:
        return _newest_first([
            s.model_copy(deep=True)
            for s in self._sessions.values()
            if s.subject_ref == subject_ref
        ])

    async def list_sessions(
        self,
        status: Optional[SessionStatus] = None,
        limit: Optional[int] = None,
    ) -> list[VerificationSession]:
        sessions = _newest_first([
            s for s in self._sessions.values()
            if status is None or s.status == status
        ])
        if limit is not None:
            sessions = sessions[:limit]
        return [s.model_copy(deep=True) for s in sessions]


class SqlAlchemySessionRepository:
    """
    SQL-backed session repository.

    ``save`` is a conditional UPDATE on the version column, so two
    processes cannot both commit on top of the same snapshot.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    def transaction(self) -> AsyncContextManager[Transaction]:
        return sql_transaction(self._session_factory)

    async def add(self, session: VerificationSession, tx: Optional[Transaction] = None) -> None:
        async with joined_scope(self._session_factory, tx) as db:
            db.add(SessionModel(**self._columns(session)))
            await db.flush()

    async def get(self, session_id: str) -> Optional[VerificationSession]:
        async with self._session_factory() as db:
            model = await db.get(SessionModel, session_id)
        return self._model_to_session(model) if model else None

    async def save(
        self,
        session: VerificationSession,
        expected_version: int,
        tx: Optional[Transaction] = None,
    ) -> None:
        async with joined_scope(self._session_factory, tx) as db:
            result = await db.execute(
                update(SessionModel)
                .where(
                    SessionModel.session_id == session.session_id,
                    SessionModel.version == expected_version,
                )
                .values(**self._columns(session))
            )
            if result.rowcount == 0:
                current = await db.get(SessionModel, session.session_id)
                logger.warning(
                    "session_save_conflict",
                    session_id=session.session_id,
                    expected_version=expected_version,
                )
                raise StaleVersionError(
                    session.session_id,
                    expected_version,
                    current.version if current else 0,
                )

    async def find_by_subject(self, subject_ref: str) -> list[VerificationSession]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(SessionModel)
                .where(SessionModel.subject_ref == subject_ref)
                .order_by(SessionModel.created_at.desc(), SessionModel.session_id.desc())
            )
            models = result.scalars().all()
        return [self._model_to_session(m) for m in models]

    async def list_sessions(
        self,
        status: Optional[SessionStatus] = None,
        limit: Optional[int] = None,
    ) -> list[VerificationSession]:
        query = select(SessionModel).order_by(
            SessionModel.created_at.desc(), SessionModel.session_id.desc()
        )
        if status is not None:
            query = query.where(SessionModel.status == status.value)
        if limit is not None:
            query = query.limit(limit)
        async with self._session_factory() as db:
            result = await db.execute(query)
            models = result.scalars().all()
        return [self._model_to_session(m) for m in models]

    @staticmethod
    def _columns(session: VerificationSession) -> dict:
        return {
            "session_id": session.session_id,
            "subject_ref": session.subject_ref,
            "idempotency_key": session.idempotency_key,
            "status": session.status.value,
            "version": session.version,
            "payload": session.model_dump(mode="json"),
            "created_at": session.created_at,
            "updated_at": session.updated_at,
        }

    @staticmethod
    def _model_to_session(model: SessionModel) -> VerificationSession:
        """Rebuild the aggregate from its JSON payload."""
        return VerificationSession.model_validate(model.payload)
