"""Dependency providers for route handlers.

Services are built once per application in ``create_app`` and live on
``app.state``.
"""

from fastapi import Request

from kycguard.audit.service import AuditLedger
from kycguard.core.config import Settings
from kycguard.review.service import ReviewOverrideGate
from kycguard.sessions.service import VerificationService


def get_verification_service(request: Request) -> VerificationService:
    return request.app.state.verification


def get_review_gate(request: Request) -> ReviewOverrideGate:
    return request.app.state.review_gate


def get_ledger(request: Request) -> AuditLedger:
    return request.app.state.verification.ledger


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings
