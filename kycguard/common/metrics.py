"""
Prometheus Metrics.

Metrics Categories:
1. Business Metrics - Sessions, stages, dispositions, overrides
2. Capability Provider Metrics - Calls and latency per variant
3. System Metrics - HTTP requests

All metrics follow Prometheus naming conventions:
- snake_case names
- Suffixes: _total (counters), _seconds (durations)
- Labels for dimensions
"""

from prometheus_client import (
    Counter,
    Histogram,
    Info,
    REGISTRY,
    generate_latest,
    CONTENT_TYPE_LATEST,
)

# ============================================================================
# SERVICE INFO
# ============================================================================

SERVICE_INFO = Info(
    "kycguard_service",
    "KYCGuard service information",
)

# ============================================================================
# BUSINESS METRICS
# ============================================================================

SESSIONS_STARTED = Counter(
    "kycguard_sessions_started_total",
    "Total verification sessions started",
)

STAGES_RECORDED = Counter(
    "kycguard_stages_recorded_total",
    "Total stage results recorded",
    ["stage", "outcome"],  # outcome: recorded/degraded/skipped
)

DISPOSITIONS = Counter(
    "kycguard_dispositions_total",
    "Automated dispositions produced by risk fusion",
    ["disposition", "tier"],
)

OVERRIDES = Counter(
    "kycguard_overrides_total",
    "Reviewer overrides applied",
    ["decision"],
)

# ============================================================================
# CAPABILITY PROVIDER METRICS
# ============================================================================

PROVIDER_CALLS = Counter(
    "kycguard_provider_calls_total",
    "Capability provider invocations",
    ["variant", "status"],  # status: ok/timeout/unavailable
)

PROVIDER_DURATION = Histogram(
    "kycguard_provider_duration_seconds",
    "Capability provider call duration",
    ["variant"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

# ============================================================================
# SYSTEM METRICS
# ============================================================================

HTTP_REQUESTS = Counter(
    "kycguard_http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

HTTP_REQUEST_DURATION = Histogram(
    "kycguard_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

# ============================================================================
# HELPER FUNCTIONS
# ============================================================================


def record_provider_call(variant: str, status: str, duration: float):
    """Record a single capability provider call."""
    PROVIDER_CALLS.labels(variant=variant, status=status).inc()
    PROVIDER_DURATION.labels(variant=variant).observe(duration)


def record_stage(stage: str, outcome: str):
    """Record a stored stage result."""
    STAGES_RECORDED.labels(stage=stage, outcome=outcome).inc()


def record_disposition(disposition: str, tier: str):
    """Record the automated disposition of a completed session."""
    DISPOSITIONS.labels(disposition=disposition, tier=tier).inc()


def record_override(decision: str):
    """Record a reviewer override."""
    OVERRIDES.labels(decision=decision).inc()


def record_http_request(
    method: str,
    endpoint: str,
    status_code: int,
    duration: float,
):
    """Record HTTP request metrics."""
    HTTP_REQUESTS.labels(
        method=method,
        endpoint=endpoint,
        status_code=str(status_code),
    ).inc()

    HTTP_REQUEST_DURATION.labels(
        method=method,
        endpoint=endpoint,
    ).observe(duration)


def set_service_info(version: str, environment: str):
    """Set service info metric."""
    SERVICE_INFO.info({
        "version": version,
        "environment": environment,
        "service": "kycguard",
    })


def get_metrics() -> bytes:
    """Get all metrics in Prometheus format."""
    return generate_latest(REGISTRY)


def get_metrics_content_type() -> str:
    """Get content type for metrics."""
    return CONTENT_TYPE_LATEST
