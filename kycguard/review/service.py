"""
Review Override Gate.

Lets a reviewer replace the effective status of an assessed session with
human judgment. The override creates an immutable ledger entry showing:
- What the system decided
- What the reviewer decided instead
- Why the override was made

The ``session.assessed`` entry and the stored assessment are never
touched; overrides are appended after them and may be repeated.
"""

import uuid
from typing import Union

import structlog
from pydantic import ValidationError

from kycguard.audit.schemas import AuditEventType
from kycguard.common.exceptions import (
    ConflictError,
    InvalidOverrideError,
    InvalidTransitionError,
    ReviewerNotAuthorizedError,
)
from kycguard.common.metrics import record_override
from kycguard.fusion.schemas import Disposition
from kycguard.review.schemas import OverrideDecision, OverrideDecisionType, OverrideRequest
from kycguard.sessions.schemas import SessionStatus
from kycguard.sessions.service import VerificationService

logger = structlog.get_logger(__name__)


class ReviewOverrideGate:
    """
    Applies reviewer overrides to assessed sessions.

    Shares the session lock and commit path of the VerificationService, so
    an override serializes with any other mutation of the same session.
    """

    def __init__(self, sessions: VerificationService):
        self._sessions = sessions

    async def override(
        self,
        session_id: str,
        reviewer_id: str,
        expected_version: int,
        decision: Union[OverrideDecisionType, str],
        reason: str,
    ) -> OverrideDecision:
        """
        Override the effective status of an assessed session.

        Raises:
            ReviewerNotAuthorizedError: reviewer not on the allow-list
            InvalidOverrideError: decision or reason fails validation
            InvalidTransitionError: session is not assessed yet
            ConflictError: ``expected_version`` is stale
        """
        authorized = self._sessions.settings.authorized_reviewers
        if authorized and reviewer_id not in authorized:
            logger.warning("override_rejected_unauthorized", session_id=session_id, reviewer_id=reviewer_id)
            raise ReviewerNotAuthorizedError(reviewer_id)

        try:
            request = OverrideRequest(
                session_id=session_id,
                reviewer_id=reviewer_id,
                expected_version=expected_version,
                decision=decision,
                reason=reason,
            )
        except ValidationError as e:
            raise InvalidOverrideError(
                session_id, e.errors(include_url=False, include_context=False)
            ) from e

        async with self._sessions.locked(session_id) as session:
            if not session.is_terminal:
                raise InvalidTransitionError(
                    session_id,
                    "Only assessed sessions can be overridden",
                    {"state": session.state.value, "status": session.status.value},
                )
            if session.version != request.expected_version:
                raise ConflictError(session_id, request.expected_version, session.version)

            now = self._sessions.now()
            previous_status = Disposition(session.status.value)
            audit_entry_id = f"aud_{uuid.uuid4().hex}"
            override = OverrideDecision(
                override_id=f"ovr_{uuid.uuid4().hex[:16]}",
                session_id=session_id,
                reviewer_id=request.reviewer_id,
                decision=request.decision,
                reason=request.reason,
                timestamp=now,
                based_on_version=session.version,
                previous_status=previous_status,
                new_status=request.decision.disposition,
                audit_entry_id=audit_entry_id,
            )
            updated = session.model_copy(
                update={
                    "status": SessionStatus.from_disposition(override.new_status),
                    "overrides": [*session.overrides, override],
                    "version": session.version + 1,
                    "updated_at": now,
                }
            )
            await self._sessions.commit(
                session,
                updated,
                AuditEventType.REVIEW_OVERRIDE,
                request.reviewer_id,
                {
                    "version": updated.version,
                    "automated_disposition": (
                        session.automated_disposition.value
                        if session.automated_disposition else None
                    ),
                    "override": override.model_dump(mode="json"),
                },
                entry_id=audit_entry_id,
            )

        record_override(override.decision.value)
        logger.warning(
            "session_overridden",
            session_id=session_id,
            reviewer_id=override.reviewer_id,
            previous_status=override.previous_status.value,
            new_status=override.new_status.value,
            decision=override.decision.value,
            version=updated.version,
        )
        return override
