"""
Pytest Configuration and Fixtures.

Provides reusable fixtures for testing KYCGuard components:
- A controllable clock
- Static capability providers standing in for detectors
- In-memory and SQLite-backed repositories
- The verification service, review gate and an HTTP test client
"""

from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Callable, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine

from kycguard.audit.repository import InMemoryAuditRepository, SqlAlchemyAuditRepository
from kycguard.audit.service import AuditLedger
from kycguard.core.config import Settings
from kycguard.db.engine import close_db, create_engine, create_session_factory, init_db
from kycguard.main import create_app
from kycguard.providers.base import CapabilityProvider
from kycguard.providers.registry import ProviderRegistry
from kycguard.providers.schemas import ProviderVariant
from kycguard.providers.static import StaticCapabilityProvider
from kycguard.review.service import ReviewOverrideGate
from kycguard.sessions.repository import InMemorySessionRepository, SqlAlchemySessionRepository
from kycguard.sessions.schemas import StageKind
from kycguard.sessions.service import VerificationService

TEST_DB_URL = "sqlite+aiosqlite:///{path}"


# ============================================================================
# EVIDENCE SAMPLES
# ============================================================================


PERSONAL_INFO = {"first_name": "Ada", "last_name": "Lovelace", "date_of_birth": "1990-12-10"}
DOCUMENTS = {
    "documents": [
        {
            "name": "id-front.jpg",
            "media_ref": "media/doc-front",
            "content_type": "image/jpeg",
            "size_bytes": 240_000,
            "doc_type": "national_id",
        },
        {
            "name": "tax-card.pdf",
            "media_ref": "media/doc-tax",
            "content_type": "application/pdf",
            "size_bytes": 80_000,
            "doc_type": "tax_card",
        },
    ]
}
SELFIE = {"frame_ref": "media/selfie-1"}
LIVENESS = {
    "challenges": ["blink", "smile", "turn_left"],
    "completed": ["blink", "smile", "turn_left"],
    "recording_ref": "media/liveness-1",
}
VOICE = {
    "recording_ref": "media/voice-1",
    "phrase": "My voice confirms my identity",
    "duration_ms": 4200,
}

STAGE_EVIDENCE = {
    StageKind.PERSONAL_INFO: PERSONAL_INFO,
    StageKind.DOCUMENTS: DOCUMENTS,
    StageKind.SELFIE: SELFIE,
    StageKind.LIVENESS: LIVENESS,
    StageKind.VOICE: VOICE,
}


# ============================================================================
# CLOCK
# ============================================================================


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ============================================================================
# SETTINGS & PROVIDERS
# ============================================================================


@pytest.fixture
def settings() -> Settings:
    """Settings independent of the process environment."""
    return Settings(
        _env_file=None,
        environment="testing",
        log_format="console",
        database_url="",
        provider_base_url=None,
        provider_timeout_seconds=0.2,
        flag_threshold=0.5,
        optional_stages=[],
        duplicate_session_window_seconds=3600,
        authorized_reviewers=[],
    )


@pytest.fixture
def make_registry() -> Callable[..., ProviderRegistry]:
    """
    Build a registry with a static provider for every variant.

    Keyword arguments map variant values to a score or a ready provider.
    """

    def _make(**overrides) -> ProviderRegistry:
        providers = {}
        for variant in ProviderVariant:
            override = overrides.get(variant.value, 0.0)
            if isinstance(override, CapabilityProvider):
                providers[variant] = override
            else:
                providers[variant] = StaticCapabilityProvider.scoring(variant, override)
        return ProviderRegistry(providers)

    return _make


@pytest.fixture
def registry(make_registry) -> ProviderRegistry:
    """All detectors answer 'clean'."""
    return make_registry()


# ============================================================================
# SERVICES (IN-MEMORY)
# ============================================================================


@pytest.fixture
def ledger(clock) -> AuditLedger:
    return AuditLedger(InMemoryAuditRepository(), clock=clock)


@pytest.fixture
def make_service(settings, clock, ledger) -> Callable[..., VerificationService]:
    def _make(
        registry: ProviderRegistry,
        settings_override: Optional[Settings] = None,
    ) -> VerificationService:
        return VerificationService(
            InMemorySessionRepository(),
            ledger,
            registry,
            settings_override or settings,
            clock=clock,
        )

    return _make


@pytest.fixture
def service(make_service, registry) -> VerificationService:
    return make_service(registry)


@pytest.fixture
def gate(service) -> ReviewOverrideGate:
    return ReviewOverrideGate(service)


@pytest.fixture
def run_stages():
    """Submit stages in order, starting from the session's current version."""

    async def _run(
        service: VerificationService,
        session_id: str,
        stages=tuple(StageKind),
        evidence: Optional[dict] = None,
    ):
        results = {}
        for stage_kind in stages:
            session = await service.get_session(session_id)
            payload = (evidence or {}).get(stage_kind, STAGE_EVIDENCE[stage_kind])
            results[stage_kind] = await service.submit_stage(
                session_id, session.version, stage_kind, payload
            )
        return results

    return _run


@pytest.fixture
def assessed_session(service, run_stages):
    """Create a session, run every stage and complete it."""

    async def _assessed(subject_ref: str = "subject-1"):
        session_id = await service.start_session(subject_ref)
        await run_stages(service, session_id)
        assessment = await service.complete_session(session_id)
        return session_id, assessment

    return _assessed


# ============================================================================
# DATABASE FIXTURES
# ============================================================================


@pytest_asyncio.fixture
async def db_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite engine with all tables, one database per test."""
    engine = create_engine(TEST_DB_URL.format(path=tmp_path / "kycguard.db"))
    await init_db(engine)
    yield engine
    await close_db(engine)


@pytest.fixture
def db_session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest.fixture
def sql_session_repo(db_session_factory) -> SqlAlchemySessionRepository:
    return SqlAlchemySessionRepository(db_session_factory)


@pytest.fixture
def sql_audit_repo(db_session_factory) -> SqlAlchemyAuditRepository:
    return SqlAlchemyAuditRepository(db_session_factory)


# ============================================================================
# HTTP CLIENT
# ============================================================================


@pytest.fixture
def app(settings, registry, clock):
    return create_app(settings, registry=registry, clock=clock)


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the ASGI app (no network)."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
