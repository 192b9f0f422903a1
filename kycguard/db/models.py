"""
KYCGuard SQLAlchemy Models.

Sessions are stored as a full JSON snapshot next to the columns used for
lookups and optimistic concurrency. Audit entries are insert-only.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, Index, Integer, String, UniqueConstraint
from sqlalchemy.dialects import postgresql
from sqlalchemy.orm import Mapped, mapped_column

from kycguard.db.engine import Base

# JSONB on PostgreSQL, JSON elsewhere
JSONType = JSON().with_variant(postgresql.JSONB(), "postgresql")


class SessionModel(Base):
    """Verification session snapshot, versioned for conditional updates."""

    __tablename__ = "kyc_sessions"
    __table_args__ = (
        Index("ix_kyc_sessions_subject_ref", "subject_ref"),
        Index("ix_kyc_sessions_status", "status"),
    )

    session_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    subject_ref: Mapped[str] = mapped_column(String(255), nullable=False)
    idempotency_key: Mapped[Optional[str]] = mapped_column(String(255))
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    payload: Mapped[dict] = mapped_column(JSONType, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class AuditEntryModel(Base):
    """
    Append-only audit ledger.

    CRITICAL: NO UPDATE, NO DELETE on this table.
    The unique (session_id, sequence_number) pair rejects forked chains.
    """

    __tablename__ = "kyc_audit_entries"
    __table_args__ = (
        UniqueConstraint("session_id", "sequence_number", name="uq_audit_session_sequence"),
        Index("ix_kyc_audit_session", "session_id"),
        Index("ix_kyc_audit_timestamp", "timestamp"),
    )

    entry_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    session_id: Mapped[str] = mapped_column(String(64), nullable=False)
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    actor: Mapped[str] = mapped_column(String(255), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    detail: Mapped[dict] = mapped_column(JSONType, nullable=False)
    detail_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    sequence_number: Mapped[int] = mapped_column(Integer, nullable=False)
    previous_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    entry_hash: Mapped[str] = mapped_column(String(64), nullable=False)
