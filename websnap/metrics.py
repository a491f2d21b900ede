"""Prometheus instruments for capture outcomes, probes, and browser churn."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

CAPTURES_TOTAL = Counter(
    "websnap_captures_total",
    "Capture requests by final outcome category",
    labelnames=("outcome",),
)
CAPTURE_SECONDS = Histogram(
    "websnap_capture_seconds",
    "Wall-clock duration of capture requests",
    labelnames=("tier",),
    buckets=(1, 2.5, 5, 10, 15, 20, 30, 45, 60),
)
READINESS_STAGE_TOTAL = Counter(
    "websnap_readiness_stage_total",
    "Readiness probe outcomes by stage",
    labelnames=("stage", "status"),
)
BLOCKED_REQUESTS_TOTAL = Counter(
    "websnap_blocked_requests_total",
    "Sub-resource requests aborted by the resource gate",
    labelnames=("reason",),
)
BROWSER_LAUNCH_ATTEMPTS_TOTAL = Counter(
    "websnap_browser_launch_attempts_total",
    "Browser launch attempts by result",
    labelnames=("result",),
)


def record_capture(outcome: str, *, tier: str, seconds: float) -> None:
    CAPTURES_TOTAL.labels(outcome=outcome).inc()
    CAPTURE_SECONDS.labels(tier=tier).observe(max(0.0, seconds))


def record_stage(stage: str, status: str) -> None:
    READINESS_STAGE_TOTAL.labels(stage=stage, status=status).inc()


def record_blocked_request(reason: str) -> None:
    # Collapse per-type reasons so label cardinality stays bounded.
    BLOCKED_REQUESTS_TOTAL.labels(reason=reason.split(":", 1)[0]).inc()


def record_launch_attempt(result: str) -> None:
    BROWSER_LAUNCH_ATTEMPTS_TOTAL.labels(result=result).inc()
