"""
Unit of work shared by the session repository and the audit ledger.

A session mutation and its ledger entry commit together or not at all:
- SQL repositories write through one ``AsyncSession`` and one commit
- in-memory repositories defer their writes until the block succeeds

Usage:
    async with session_repo.transaction() as tx:
        await session_repo.save(after, expected_version, tx=tx)
        await ledger.append(session_id, event_type, actor, detail, tx=tx)
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from kycguard.db.engine import session_scope


class Transaction:
    """Writes belonging to one atomic commit."""

    def __init__(self, db: Optional[AsyncSession] = None):
        self.db = db
        self._deferred: list[Callable[[], None]] = []

    def defer(self, write: Callable[[], None]) -> None:
        """Run ``write`` only once the whole block has succeeded."""
        self._deferred.append(write)

    def apply(self) -> None:
        for write in self._deferred:
            write()
        self._deferred.clear()


@asynccontextmanager
async def memory_transaction() -> AsyncGenerator[Transaction, None]:
    tx = Transaction()
    yield tx
    tx.apply()


@asynccontextmanager
async def sql_transaction(
    factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[Transaction, None]:
    async with session_scope(factory) as db:
        yield Transaction(db)


@asynccontextmanager
async def joined_scope(
    factory: async_sessionmaker[AsyncSession],
    tx: Optional[Transaction] = None,
) -> AsyncGenerator[AsyncSession, None]:
    """Use the transaction's session when there is one, else a committing scope of our own."""
    if tx is not None and tx.db is not None:
        yield tx.db
    else:
        async with session_scope(factory) as db:
            yield db
