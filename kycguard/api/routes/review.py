"""Review Queue API Endpoints."""

from typing import List

from fastapi import APIRouter, Depends

from kycguard.api.deps import get_verification_service
from kycguard.sessions.schemas import VerificationSession
from kycguard.sessions.service import VerificationService

router = APIRouter()


@router.get(
    "/queue",
    response_model=List[VerificationSession],
    summary="Sessions awaiting review",
    description="Assessed sessions that are suspicious or rejected and have no override yet, oldest first.",
)
async def review_queue(
    service: VerificationService = Depends(get_verification_service),
):
    return await service.review_queue()
