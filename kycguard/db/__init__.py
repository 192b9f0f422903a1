"""
Persistence layer: async SQLAlchemy engine and ORM models.
"""

from kycguard.db.engine import (
    Base,
    close_db,
    create_engine,
    create_engine_from_settings,
    create_session_factory,
    init_db,
    session_scope,
)
from kycguard.db.models import AuditEntryModel, SessionModel
from kycguard.db.unit_of_work import Transaction, joined_scope

__all__ = [
    "Base",
    "close_db",
    "create_engine",
    "create_engine_from_settings",
    "create_session_factory",
    "init_db",
    "session_scope",
    "AuditEntryModel",
    "SessionModel",
    "Transaction",
    "joined_scope",
]
