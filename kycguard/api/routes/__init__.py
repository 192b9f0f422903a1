"""API Routes.

Aggregates all API routers. The Prometheus router is exported separately
so the app can leave it out when metrics are disabled.
"""

from fastapi import APIRouter

from kycguard.api.routes.health import router as health_router
from kycguard.api.routes.metrics import router as metrics_router
from kycguard.api.routes.sessions import router as sessions_router
from kycguard.api.routes.audit import router as audit_router
from kycguard.api.routes.review import router as review_router

router = APIRouter()

router.include_router(health_router, tags=["Health"])
router.include_router(sessions_router, prefix="/sessions", tags=["Sessions"])
router.include_router(audit_router, prefix="/audit", tags=["Audit Ledger"])
router.include_router(review_router, prefix="/review", tags=["Review"])

__all__ = ["router", "metrics_router"]
