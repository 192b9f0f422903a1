"""Audit Ledger API Endpoints.

- Export the whole ledger (JSON, JSON Lines or CSV)
- Verify the hash chain of one session
"""

from typing import Literal

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response

from kycguard.api.deps import get_ledger, get_verification_service
from kycguard.api.routes.sessions import render_entries
from kycguard.audit.schemas import AuditChainVerification
from kycguard.audit.service import AuditLedger
from kycguard.sessions.service import VerificationService

router = APIRouter()


@router.get("/export", response_model=None, summary="Export the whole audit ledger")
async def export_ledger(
    export_format: Literal["json", "jsonl", "csv"] = Query(default="jsonl", alias="format"),
    ledger: AuditLedger = Depends(get_ledger),
) -> Response:
    return await render_entries(ledger, export_format)


@router.get(
    "/{session_id}/verify",
    response_model=AuditChainVerification,
    summary="Verify a session's audit chain",
    description="Detects sequence gaps, broken links and tampered entries.",
)
async def verify_chain(
    session_id: str,
    service: VerificationService = Depends(get_verification_service),
    ledger: AuditLedger = Depends(get_ledger),
):
    await service.get_session(session_id)
    return await ledger.verify_chain(session_id)
