"""Metrics Endpoint.

Exposes Prometheus metrics for scraping. Mounted only when
``metrics_enabled`` is set.
"""

from fastapi import APIRouter
from fastapi.responses import Response

from kycguard.common.metrics import get_metrics, get_metrics_content_type

router = APIRouter()


@router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Returns application metrics in Prometheus format",
    response_class=Response,
)
async def metrics():
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type(),
    )
