"""Verification Session API Endpoints.

Endpoints for driving a subject through the verification stages:
- Start a session
- Submit or skip a stage
- Complete (fuse) a session
- Override an assessed session
- Read sessions, their audit trail and the status summary
"""

from typing import Any, List, Literal, Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import PlainTextResponse, Response
from pydantic import BaseModel, Field, TypeAdapter

from kycguard.api.deps import get_ledger, get_review_gate, get_verification_service
from kycguard.audit.schemas import AuditEntry
from kycguard.audit.service import AuditLedger
from kycguard.export.exporter import ExportFormat
from kycguard.fusion.schemas import RiskAssessment
from kycguard.review.schemas import OverrideDecision, OverrideDecisionType
from kycguard.review.service import ReviewOverrideGate
from kycguard.sessions.schemas import (
    SessionStatus,
    SessionSummary,
    StageKind,
    StageResult,
    VerificationSession,
)
from kycguard.sessions.service import VerificationService

router = APIRouter()

ENTRY_LIST = TypeAdapter(List[AuditEntry])

EXPORT_MEDIA_TYPES = {
    ExportFormat.JSONL: "application/x-ndjson",
    ExportFormat.CSV: "text/csv",
}


# ============================================================================
# REQUEST/RESPONSE SCHEMAS
# ============================================================================


class StartSessionRequest(BaseModel):
    """Request to start a verification session."""

    subject_ref: str = Field(min_length=1, max_length=255, description="Opaque subject reference")
    idempotency_key: Optional[str] = Field(
        default=None,
        max_length=255,
        description="Repeat to get the same session back instead of a duplicate error",
    )


class StartSessionResponse(BaseModel):
    session_id: str


class StageSubmitRequest(BaseModel):
    """Evidence for one stage, tied to the session version the caller observed."""

    version: int = Field(ge=1)
    evidence: dict[str, Any]


class StageSkipRequest(BaseModel):
    version: int = Field(ge=1)
    reason: str = Field(min_length=1, max_length=500)


class OverrideSubmitRequest(BaseModel):
    """Request to override an assessed session."""

    reviewer_id: str = Field(min_length=1)
    version: int = Field(ge=1)
    decision: OverrideDecisionType
    reason: str = Field(description="Explanation for the audit trail (minimum 10 characters)")


# ============================================================================
# SESSIONS
# ============================================================================


@router.post(
    "",
    response_model=StartSessionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start a verification session",
)
async def start_session(
    body: StartSessionRequest,
    service: VerificationService = Depends(get_verification_service),
) -> StartSessionResponse:
    session_id = await service.start_session(body.subject_ref, body.idempotency_key)
    return StartSessionResponse(session_id=session_id)


@router.get("", response_model=List[VerificationSession], summary="List sessions")
async def list_sessions(
    status_filter: Optional[SessionStatus] = Query(default=None, alias="status"),
    limit: int = Query(default=100, ge=1, le=1000),
    service: VerificationService = Depends(get_verification_service),
):
    return await service.list_sessions(status=status_filter, limit=limit)


@router.get("/summary", response_model=SessionSummary, summary="Counts per status")
async def summarize_sessions(
    service: VerificationService = Depends(get_verification_service),
):
    return await service.summarize()


@router.get("/{session_id}", response_model=VerificationSession, summary="Get a session snapshot")
async def get_session(
    session_id: str,
    service: VerificationService = Depends(get_verification_service),
):
    return await service.get_session(session_id)


# ============================================================================
# STAGES
# ============================================================================


@router.post(
    "/{session_id}/stages/{stage_kind}",
    response_model=StageResult,
    summary="Submit evidence for a stage",
    description=(
        "Runs the stage's detector sub-checks and records the result. "
        "Replaying identical evidence returns the stored result."
    ),
)
async def submit_stage(
    session_id: str,
    stage_kind: StageKind,
    body: StageSubmitRequest,
    service: VerificationService = Depends(get_verification_service),
):
    return await service.submit_stage(session_id, body.version, stage_kind, body.evidence)


@router.post(
    "/{session_id}/stages/{stage_kind}/skip",
    response_model=StageResult,
    summary="Skip an optional stage",
)
async def skip_stage(
    session_id: str,
    stage_kind: StageKind,
    body: StageSkipRequest,
    service: VerificationService = Depends(get_verification_service),
):
    return await service.skip_stage(session_id, body.version, stage_kind, body.reason)


@router.post(
    "/{session_id}/complete",
    response_model=RiskAssessment,
    summary="Fuse stage results into the final assessment",
)
async def complete_session(
    session_id: str,
    service: VerificationService = Depends(get_verification_service),
):
    return await service.complete_session(session_id)


# ============================================================================
# REVIEW
# ============================================================================


@router.post(
    "/{session_id}/override",
    response_model=OverrideDecision,
    summary="Override an assessed session",
)
async def override_session(
    session_id: str,
    body: OverrideSubmitRequest,
    gate: ReviewOverrideGate = Depends(get_review_gate),
):
    return await gate.override(
        session_id,
        body.reviewer_id,
        body.version,
        body.decision,
        body.reason,
    )


# ============================================================================
# AUDIT
# ============================================================================


@router.get(
    "/{session_id}/audit",
    response_model=None,
    summary="Ordered audit trail of a session",
)
async def session_audit(
    session_id: str,
    export_format: Literal["json", "jsonl", "csv"] = Query(default="json", alias="format"),
    service: VerificationService = Depends(get_verification_service),
    ledger: AuditLedger = Depends(get_ledger),
) -> Response:
    await service.get_session(session_id)
    return await render_entries(ledger, export_format, session_id)


async def render_entries(
    ledger: AuditLedger,
    export_format: str,
    session_id: Optional[str] = None,
) -> Response:
    """Shared by the per-session and whole-ledger export endpoints."""
    if export_format == "json":
        entries = (
            await ledger.query(session_id) if session_id is not None else await ledger.entries()
        )
        return Response(
            content=ENTRY_LIST.dump_json(entries),
            media_type="application/json",
        )
    fmt = ExportFormat(export_format)
    return PlainTextResponse(
        content=await ledger.export(fmt, session_id),
        media_type=EXPORT_MEDIA_TYPES[fmt],
    )
