"""
Application Exceptions Module.

Centralized exception definitions with:
- Structured error responses
- HTTP status code mapping
- Error codes for client handling

Only InvalidTransition, MalformedEvidence, Conflict/StaleVersion and
DuplicateSession are expected to reach callers during normal operation.
Provider failures are absorbed by the stage dispatcher and recorded as
degraded sub-checks; they never abort a session.
"""

from datetime import datetime, timezone
from typing import Optional, Dict, Any
from enum import Enum

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
import structlog

logger = structlog.get_logger(__name__)


# ============================================================================
# ERROR CODES
# ============================================================================


class ErrorCode(str, Enum):
    """Application error codes."""

    # General errors (1xxx)
    INTERNAL_ERROR = "E1000"
    VALIDATION_ERROR = "E1001"
    NOT_FOUND = "E1002"
    CONFLICT = "E1003"

    # Authorization errors (2xxx)
    REVIEWER_NOT_AUTHORIZED = "E2003"

    # Session errors (4xxx)
    SESSION_NOT_FOUND = "E4000"
    INVALID_TRANSITION = "E4001"
    MALFORMED_EVIDENCE = "E4002"
    DUPLICATE_SESSION = "E4003"
    SESSION_TERMINAL = "E4004"

    # Capability provider errors (5xxx)
    PROVIDER_UNAVAILABLE = "E5000"
    PROVIDER_TIMEOUT = "E5002"


# ============================================================================
# ERROR RESPONSE MODEL
# ============================================================================


class ErrorDetail(BaseModel):
    """Detailed error information."""

    code: str
    message: str
    details: Optional[Dict[str, Any]] = None


class ErrorResponse(BaseModel):
    """
    Standard error response.

    All API errors return this unified format for consistency.
    """

    error: ErrorDetail
    request_id: Optional[str] = None
    timestamp: Optional[str] = None


# ============================================================================
# BASE EXCEPTION
# ============================================================================


class KYCGuardError(Exception):
    """Base exception for the KYCGuard application."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)

    def to_response(self, request_id: Optional[str] = None) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            error=ErrorDetail(
                code=self.code.value,
                message=self.message,
                details=self.details,
            ),
            request_id=request_id,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )


# ============================================================================
# SESSION EXCEPTIONS
# ============================================================================


class SessionNotFoundError(KYCGuardError):
    """Verification session not found."""

    def __init__(self, session_id: str):
        super().__init__(
            message=f"Session not found: {session_id}",
            code=ErrorCode.SESSION_NOT_FOUND,
            status_code=404,
            details={"session_id": session_id},
        )


class InvalidTransitionError(KYCGuardError):
    """Stage submitted out of order. Nothing was mutated."""

    def __init__(
        self,
        session_id: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            code=ErrorCode.INVALID_TRANSITION,
            status_code=400,
            details={"session_id": session_id, **(details or {})},
        )


class ConflictError(KYCGuardError):
    """Optimistic concurrency violation; the caller must refetch and reapply."""

    def __init__(self, session_id: str, expected_version: int, current_version: int):
        super().__init__(
            message=(
                f"Session {session_id} is at version {current_version}, "
                f"caller expected {expected_version}"
            ),
            code=ErrorCode.CONFLICT,
            status_code=409,
            details={
                "session_id": session_id,
                "expected_version": expected_version,
                "current_version": current_version,
            },
        )
        self.expected_version = expected_version
        self.current_version = current_version


class StaleVersionError(ConflictError):
    """Stage submission carried an outdated session version."""


class MalformedEvidenceError(KYCGuardError):
    """Evidence does not match the stage schema. No mutation, no audit entry."""

    def __init__(self, stage_kind: str, errors: list):
        super().__init__(
            message=f"Malformed evidence for stage {stage_kind}",
            code=ErrorCode.MALFORMED_EVIDENCE,
            status_code=422,
            details={"stage_kind": stage_kind, "errors": errors},
        )


class DuplicateSessionError(KYCGuardError):
    """A session for this subject was already started within the window."""

    def __init__(self, subject_ref: str, existing_session_id: str):
        super().__init__(
            message=f"A verification session already exists for subject {subject_ref}",
            code=ErrorCode.DUPLICATE_SESSION,
            status_code=409,
            details={
                "subject_ref": subject_ref,
                "existing_session_id": existing_session_id,
            },
        )


class SessionTerminalError(KYCGuardError):
    """Mutation attempted on an assessed session."""

    def __init__(self, session_id: str, status: str):
        super().__init__(
            message=f"Session {session_id} is already {status}",
            code=ErrorCode.SESSION_TERMINAL,
            status_code=409,
            details={"session_id": session_id, "status": status},
        )


class InvalidOverrideError(KYCGuardError):
    """Override request failed validation (e.g. reason too short)."""

    def __init__(self, session_id: str, errors: list):
        super().__init__(
            message=f"Invalid override for session {session_id}",
            code=ErrorCode.VALIDATION_ERROR,
            status_code=422,
            details={"session_id": session_id, "errors": errors},
        )


class ReviewerNotAuthorizedError(KYCGuardError):
    """Reviewer is not on the configured allow-list."""

    def __init__(self, reviewer_id: str):
        super().__init__(
            message=f"Reviewer {reviewer_id} may not override decisions",
            code=ErrorCode.REVIEWER_NOT_AUTHORIZED,
            status_code=403,
            details={"reviewer_id": reviewer_id},
        )


# ============================================================================
# PROVIDER EXCEPTIONS
# ============================================================================


class ProviderError(KYCGuardError):
    """Base class for capability provider failures."""


class ProviderUnavailableError(ProviderError):
    """Provider could not produce a response."""

    def __init__(self, variant: str, reason: str = "unavailable"):
        super().__init__(
            message=f"Capability provider {variant} unavailable: {reason}",
            code=ErrorCode.PROVIDER_UNAVAILABLE,
            status_code=503,
            details={"variant": variant, "reason": reason},
        )
        self.variant = variant
        self.reason = reason


class ProviderTimeoutError(ProviderError):
    """Provider did not answer within its timeout."""

    def __init__(self, variant: str, timeout_seconds: float):
        super().__init__(
            message=f"Capability provider {variant} timed out after {timeout_seconds}s",
            code=ErrorCode.PROVIDER_TIMEOUT,
            status_code=504,
            details={"variant": variant, "timeout_seconds": timeout_seconds},
        )
        self.variant = variant
        self.timeout_seconds = timeout_seconds


# ============================================================================
# EXCEPTION HANDLERS
# ============================================================================


async def kycguard_exception_handler(
    request: Request,
    exc: KYCGuardError,
) -> JSONResponse:
    """Handle KYCGuardError exceptions."""
    request_id = request.headers.get("x-request-id")

    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "kycguard_error",
        error_code=exc.code.value,
        message=exc.message,
        status_code=exc.status_code,
        request_id=request_id,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_response(request_id).model_dump(mode="json"),
    )


async def request_validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """Wrap FastAPI request validation failures in the standard envelope."""
    request_id = request.headers.get("x-request-id")

    error = KYCGuardError(
        message="Request validation failed",
        code=ErrorCode.VALIDATION_ERROR,
        status_code=422,
        details={"errors": jsonable_errors(exc.errors())},
    )

    logger.warning(
        "request_validation_failed",
        path=request.url.path,
        request_id=request_id,
    )

    return JSONResponse(
        status_code=422,
        content=error.to_response(request_id).model_dump(mode="json"),
    )


def jsonable_errors(errors) -> list:
    """Drop the non-serializable ``ctx``/``url`` parts of pydantic errors."""
    return [
        {k: v for k, v in err.items() if k not in ("ctx", "url")}
        for err in errors
    ]


async def generic_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """Handle generic exceptions."""
    request_id = request.headers.get("x-request-id")

    logger.exception(
        "unhandled_exception",
        error=str(exc),
        request_id=request_id,
    )

    # Don't expose internal errors in production
    if request.app.state.settings.is_production:
        message = "An internal error occurred"
        details = {}
    else:
        message = str(exc) or "An internal error occurred"
        details = {"type": type(exc).__name__}

    error = KYCGuardError(
        message=message,
        code=ErrorCode.INTERNAL_ERROR,
        status_code=500,
        details=details,
    )

    return JSONResponse(
        status_code=500,
        content=error.to_response(request_id).model_dump(mode="json"),
    )


def register_exception_handlers(app):
    """Register exception handlers with FastAPI app."""
    app.add_exception_handler(KYCGuardError, kycguard_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
