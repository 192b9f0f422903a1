"""
Verification Service - orchestrates a session through its stages.

Usage:
    service = VerificationService(repository, ledger, providers, settings)

    session_id = await service.start_session("subject-42")
    result = await service.submit_stage(session_id, 1, StageKind.PERSONAL_INFO, {...})
    ...
    assessment = await service.complete_session(session_id)

Concurrency:
- One asyncio lock per session serializes every mutation of that session;
  different sessions proceed in parallel.
- Sub-checks within a stage run concurrently, each bounded by
  ``provider_timeout_seconds``. A timeout or unavailable provider is
  recorded as a degraded sub-check, never as an error.
- The commit (session save plus ledger append, in one repository
  transaction) is shielded from cancellation: a cancelled caller leaves
  either the full result or nothing, and a failed ledger write leaves
  the session unchanged.
"""

import asyncio
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Callable, Optional, Union

import structlog

from kycguard.audit.schemas import AuditEntry, AuditEventType
from kycguard.audit.service import AuditLedger
from kycguard.common.exceptions import (
    DuplicateSessionError,
    InvalidTransitionError,
    MalformedEvidenceError,
    ProviderTimeoutError,
    ProviderUnavailableError,
    SessionNotFoundError,
    SessionTerminalError,
    StaleVersionError,
)
from kycguard.common.locks import KeyedLocks
from kycguard.common.metrics import (
    SESSIONS_STARTED,
    record_disposition,
    record_provider_call,
    record_stage,
)
from kycguard.core.config import Settings
from kycguard.fusion.engine import RiskFusionEngine, derive_stage_flags, skipped_stage_flags
from kycguard.fusion.schemas import Disposition, RiskAssessment
from kycguard.providers.registry import ProviderRegistry
from kycguard.providers.schemas import ProviderRequest
from kycguard.sessions.evidence import StageEvidence
from kycguard.sessions.machine import (
    READY_FOR_ASSESSMENT,
    STAGE_SPECS,
    next_stage,
    parse_evidence,
    plan_sub_checks,
)
from kycguard.sessions.repository import SessionRepository
from kycguard.sessions.schemas import (
    SessionState,
    SessionStatus,
    SessionSummary,
    StageKind,
    StageOutcome,
    StageResult,
    SubCheckResult,
    SubCheckStatus,
    VerificationSession,
)

logger = structlog.get_logger(__name__)

SYSTEM_ACTOR = "system"
REVIEWABLE_STATUSES = (SessionStatus.SUSPICIOUS, SessionStatus.REJECTED)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_session_id() -> str:
    return f"kyc_{uuid.uuid4().hex}"


class VerificationService:
    """
    Session state machine plus provider dispatch.

    Every accepted mutation bumps ``version`` by exactly one and appends
    exactly one ledger entry. Rejected requests change nothing.
    """

    def __init__(
        self,
        repository: SessionRepository,
        ledger: AuditLedger,
        providers: ProviderRegistry,
        settings: Settings,
        fusion: Optional[RiskFusionEngine] = None,
        clock: Callable[[], datetime] = utc_now,
        id_factory: Callable[[], str] = new_session_id,
    ):
        self._repo = repository
        self._ledger = ledger
        self._providers = providers
        self._settings = settings
        self._fusion = fusion or RiskFusionEngine()
        self._clock = clock
        self._id_factory = id_factory
        self._session_locks = KeyedLocks()
        self._subject_locks = KeyedLocks()

    @property
    def ledger(self) -> AuditLedger:
        return self._ledger

    @property
    def settings(self) -> Settings:
        return self._settings

    def now(self) -> datetime:
        return self._clock()

    # =========================================================================
    # SESSION LIFECYCLE
    # =========================================================================

    async def start_session(
        self,
        subject_ref: str,
        idempotency_key: Optional[str] = None,
    ) -> str:
        """
        Create a session in ``created`` at version 1.

        Raises:
            DuplicateSessionError: the subject started another session
                within the duplicate window (and the idempotency key, if
                any, does not match it)
        """
        async with self._subject_locks(subject_ref):
            now = self._clock()
            existing = await self._repo.find_by_subject(subject_ref)

            if idempotency_key is not None:
                for session in existing:
                    if session.idempotency_key == idempotency_key:
                        logger.info(
                            "session_start_replayed",
                            session_id=session.session_id,
                            subject_ref=subject_ref,
                        )
                        return session.session_id

            window = timedelta(seconds=self._settings.duplicate_session_window_seconds)
            for session in existing:
                if now - session.created_at < window:
                    raise DuplicateSessionError(subject_ref, session.session_id)

            session = VerificationSession(
                session_id=self._id_factory(),
                subject_ref=subject_ref,
                idempotency_key=idempotency_key,
                created_at=now,
                updated_at=now,
            )
            detail = {
                "subject_ref": subject_ref,
                "idempotency_key": idempotency_key,
                "version": session.version,
            }
            await self._shielded(self._persist_new(session, detail))

        SESSIONS_STARTED.inc()
        logger.info("session_started", session_id=session.session_id, subject_ref=subject_ref)
        return session.session_id

    async def submit_stage(
        self,
        session_id: str,
        expected_version: int,
        stage_kind: Union[StageKind, str],
        evidence: Any,
    ) -> StageResult:
        """
        Record one stage.

        Checks, in order: session exists, not terminal, replay, legal next
        stage, version, evidence schema. Replaying a recorded stage with
        identical evidence returns the stored result without a version
        change or audit entry.
        """
        stage_kind = StageKind(stage_kind)

        async with self.locked(session_id) as session:
            self._ensure_open(session)

            recorded = session.stage_results.get(stage_kind)
            if recorded is not None:
                return self._replay(session, recorded, evidence)

            self._ensure_next(session, stage_kind)
            self._ensure_version(session, expected_version)
            parsed = parse_evidence(stage_kind, evidence)

            sub_checks = await self._run_sub_checks(stage_kind, session_id, parsed)
            degraded = any(not sub.is_usable for sub in sub_checks.values())
            result = StageResult(
                stage_kind=stage_kind,
                outcome=StageOutcome.DEGRADED if degraded else StageOutcome.RECORDED,
                raw_provider_output=sub_checks,
                derived_flags=derive_stage_flags(
                    stage_kind,
                    sub_checks,
                    self._settings.flag_threshold,
                    parsed.evidence_flags(),
                ),
                evidence_digest=parsed.digest(),
                recorded_at=self._clock(),
            )
            updated = self._advance(session, result)
            await self.commit(
                session,
                updated,
                AuditEventType.STAGE_RECORDED,
                SYSTEM_ACTOR,
                self._stage_detail(updated, result),
            )

        record_stage(stage_kind.value, result.outcome.value)
        log = logger.warning if degraded else logger.info
        log(
            "stage_recorded",
            session_id=session_id,
            stage=stage_kind.value,
            outcome=result.outcome.value,
            version=updated.version,
            degraded_checks=result.degraded_checks,
        )
        return result

    async def skip_stage(
        self,
        session_id: str,
        expected_version: int,
        stage_kind: Union[StageKind, str],
        reason: str,
    ) -> StageResult:
        """
        Record an explicit skip of an optional stage.

        A skipped stage counts as failed evidence in fusion, so the
        session can at best end up suspicious.
        """
        stage_kind = StageKind(stage_kind)

        async with self.locked(session_id) as session:
            self._ensure_open(session)

            recorded = session.stage_results.get(stage_kind)
            if recorded is not None:
                if recorded.outcome == StageOutcome.SKIPPED:
                    return recorded
                raise InvalidTransitionError(
                    session_id,
                    f"Stage {stage_kind.value} was already recorded and cannot be skipped",
                    {"stage_kind": stage_kind.value},
                )

            if stage_kind.value not in self._settings.optional_stages:
                raise InvalidTransitionError(
                    session_id,
                    f"Stage {stage_kind.value} is not optional",
                    {"stage_kind": stage_kind.value, "optional_stages": self._settings.optional_stages},
                )
            self._ensure_next(session, stage_kind)
            self._ensure_version(session, expected_version)
            if not reason or not reason.strip():
                raise InvalidTransitionError(
                    session_id,
                    "A reason is required to skip a stage",
                    {"stage_kind": stage_kind.value},
                )

            result = StageResult(
                stage_kind=stage_kind,
                outcome=StageOutcome.SKIPPED,
                derived_flags=skipped_stage_flags(stage_kind),
                skip_reason=reason.strip(),
                recorded_at=self._clock(),
            )
            updated = self._advance(session, result)
            await self.commit(
                session,
                updated,
                AuditEventType.STAGE_SKIPPED,
                SYSTEM_ACTOR,
                self._stage_detail(updated, result),
            )

        record_stage(stage_kind.value, result.outcome.value)
        logger.warning(
            "stage_skipped",
            session_id=session_id,
            stage=stage_kind.value,
            reason=result.skip_reason,
            version=updated.version,
        )
        return result

    async def complete_session(self, session_id: str) -> RiskAssessment:
        """
        Fuse all stage results and lock the session with its disposition.

        Raises:
            SessionTerminalError: already assessed
            InvalidTransitionError: stages still outstanding
        """
        async with self.locked(session_id) as session:
            self._ensure_open(session)
            if session.state != READY_FOR_ASSESSMENT:
                pending = next_stage(session.state)
                raise InvalidTransitionError(
                    session_id,
                    f"Session cannot be completed in state {session.state.value}",
                    {
                        "state": session.state.value,
                        "next_stage": pending.value if pending else None,
                    },
                )

            now = self._clock()
            assessment = self._fusion.fuse(
                session.stage_results,
                session_id=session_id,
                computed_at=now,
            )
            updated = session.model_copy(
                update={
                    "state": SessionState.ASSESSED,
                    "status": SessionStatus.from_disposition(assessment.disposition),
                    "assessment": assessment,
                    "automated_disposition": assessment.disposition,
                    "version": session.version + 1,
                    "updated_at": now,
                }
            )
            await self.commit(
                session,
                updated,
                AuditEventType.SESSION_ASSESSED,
                SYSTEM_ACTOR,
                {
                    "version": updated.version,
                    "assessment": assessment.model_dump(mode="json"),
                },
            )

        record_disposition(assessment.disposition.value, assessment.risk_tier.value)
        log = logger.warning if assessment.disposition == Disposition.REJECTED else logger.info
        log(
            "session_assessed",
            session_id=session_id,
            risk_points=assessment.risk_points,
            risk_tier=assessment.risk_tier.value,
            disposition=assessment.disposition.value,
            confidence=assessment.confidence_score,
            incomplete_checks=assessment.incomplete_checks,
        )
        return assessment

    # =========================================================================
    # READS
    # =========================================================================

    async def get_session(self, session_id: str) -> VerificationSession:
        """Read-only snapshot. Never calls a provider."""
        session = await self._repo.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    async def list_sessions(
        self,
        status: Optional[SessionStatus] = None,
        limit: int = 100,
    ) -> list[VerificationSession]:
        return await self._repo.list_sessions(status=status, limit=limit)

    async def review_queue(self) -> list[VerificationSession]:
        """Assessed sessions that are suspicious or rejected and not yet reviewed, oldest first."""
        queue = [
            session
            for status in REVIEWABLE_STATUSES
            for session in await self._repo.list_sessions(status=status)
            if session.is_terminal and not session.is_overridden
        ]
        return sorted(queue, key=lambda s: (s.updated_at, s.session_id))

    async def summarize(self) -> SessionSummary:
        """Counts per effective status plus the review backlog."""
        sessions = await self._repo.list_sessions()
        counts = {status: 0 for status in SessionStatus}
        awaiting_review = 0
        for session in sessions:
            counts[session.status] += 1
            if session.status in REVIEWABLE_STATUSES and not session.is_overridden:
                awaiting_review += 1

        return SessionSummary(
            total=len(sessions),
            in_progress=counts[SessionStatus.IN_PROGRESS],
            verified=counts[SessionStatus.VERIFIED],
            suspicious=counts[SessionStatus.SUSPICIOUS],
            rejected=counts[SessionStatus.REJECTED],
            awaiting_review=awaiting_review,
        )

    # =========================================================================
    # MUTATION PRIMITIVES (shared with the review gate)
    # =========================================================================

    @asynccontextmanager
    async def locked(self, session_id: str) -> AsyncIterator[VerificationSession]:
        """Hold the session's lock and yield its current snapshot."""
        async with self._session_locks(session_id):
            session = await self._repo.get(session_id)
            if session is None:
                raise SessionNotFoundError(session_id)
            yield session

    async def commit(
        self,
        before: VerificationSession,
        after: VerificationSession,
        event_type: AuditEventType,
        actor: str,
        detail: dict[str, Any],
        *,
        entry_id: Optional[str] = None,
    ) -> AuditEntry:
        """
        Save ``after`` over ``before`` and append its ledger entry.

        Must be called while holding ``locked(before.session_id)``.
        """
        return await self._shielded(
            self._persist(before, after, event_type, actor, detail, entry_id)
        )

    async def _persist(
        self,
        before: VerificationSession,
        after: VerificationSession,
        event_type: AuditEventType,
        actor: str,
        detail: dict[str, Any],
        entry_id: Optional[str],
    ) -> AuditEntry:
        async with self._repo.transaction() as tx:
            await self._repo.save(after, expected_version=before.version, tx=tx)
            return await self._ledger.append(
                after.session_id, event_type, actor, detail, entry_id=entry_id, tx=tx
            )

    async def _persist_new(self, session: VerificationSession, detail: dict[str, Any]) -> AuditEntry:
        async with self._repo.transaction() as tx:
            await self._repo.add(session, tx=tx)
            return await self._ledger.append(
                session.session_id, AuditEventType.SESSION_STARTED, SYSTEM_ACTOR, detail, tx=tx
            )

    @staticmethod
    async def _shielded(coro):
        task = asyncio.ensure_future(coro)
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            # Let the commit land before propagating the cancellation
            await task
            raise

    # =========================================================================
    # CHECKS
    # =========================================================================

    @staticmethod
    def _ensure_open(session: VerificationSession) -> None:
        if session.is_terminal:
            raise SessionTerminalError(session.session_id, session.status.value)

    @staticmethod
    def _ensure_next(session: VerificationSession, stage_kind: StageKind) -> None:
        expected = next_stage(session.state)
        if expected != stage_kind:
            raise InvalidTransitionError(
                session.session_id,
                f"Stage {stage_kind.value} is not allowed in state {session.state.value}",
                {
                    "stage_kind": stage_kind.value,
                    "state": session.state.value,
                    "next_stage": expected.value if expected else None,
                },
            )

    @staticmethod
    def _ensure_version(session: VerificationSession, expected_version: int) -> None:
        if session.version != expected_version:
            raise StaleVersionError(session.session_id, expected_version, session.version)

    @staticmethod
    def _replay(
        session: VerificationSession,
        recorded: StageResult,
        evidence: Any,
    ) -> StageResult:
        stage_kind = recorded.stage_kind
        if recorded.outcome != StageOutcome.SKIPPED:
            try:
                digest = parse_evidence(stage_kind, evidence).digest()
            except MalformedEvidenceError:
                digest = None
            if digest == recorded.evidence_digest:
                logger.info(
                    "stage_replayed",
                    session_id=session.session_id,
                    stage=stage_kind.value,
                    version=session.version,
                )
                return recorded

        raise InvalidTransitionError(
            session.session_id,
            f"Stage {stage_kind.value} was already recorded with different evidence",
            {"stage_kind": stage_kind.value, "outcome": recorded.outcome.value},
        )

    # =========================================================================
    # PROVIDER DISPATCH
    # =========================================================================

    async def _run_sub_checks(
        self,
        stage_kind: StageKind,
        session_id: str,
        evidence: StageEvidence,
    ) -> dict[str, SubCheckResult]:
        plan = plan_sub_checks(stage_kind, session_id, evidence)
        if not plan:
            return {}
        results = await asyncio.gather(*(self._call_provider(request) for _, request in plan))
        return {name: result for (name, _), result in zip(plan, results)}

    async def _call_provider(self, request: ProviderRequest) -> SubCheckResult:
        provider = self._providers.get(request.variant)
        timeout = self._settings.provider_timeout_seconds
        response = None
        error = None
        started = time.perf_counter()

        try:
            response = await asyncio.wait_for(provider.analyze(request), timeout=timeout)
            status = SubCheckStatus.OK
        except (asyncio.TimeoutError, ProviderTimeoutError):
            status = SubCheckStatus.TIMEOUT
            error = f"no answer within {timeout}s"
        except ProviderUnavailableError as e:
            status = SubCheckStatus.UNAVAILABLE
            error = e.reason
        except Exception as e:
            # A crashing detector degrades its own sub-check, never the stage
            logger.exception(
                "provider_crashed",
                session_id=request.session_id,
                variant=request.variant.value,
            )
            status = SubCheckStatus.UNAVAILABLE
            error = f"{type(e).__name__}: {e}"

        duration = time.perf_counter() - started
        record_provider_call(request.variant.value, status.value, duration)

        if status != SubCheckStatus.OK:
            logger.warning(
                "provider_degraded",
                session_id=request.session_id,
                variant=request.variant.value,
                status=status.value,
                error=error,
            )

        return SubCheckResult(
            variant=request.variant,
            status=status,
            response=response,
            error=error,
            duration_ms=int(duration * 1000),
        )

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _advance(self, session: VerificationSession, result: StageResult) -> VerificationSession:
        return session.model_copy(
            update={
                "stage_results": {**session.stage_results, result.stage_kind: result},
                "state": STAGE_SPECS[result.stage_kind].to_state,
                "version": session.version + 1,
                "updated_at": result.recorded_at,
            }
        )

    @staticmethod
    def _stage_detail(session: VerificationSession, result: StageResult) -> dict[str, Any]:
        return {
            "version": session.version,
            "state": session.state.value,
            "stage_result": result.model_dump(mode="json"),
        }
