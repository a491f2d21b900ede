from __future__ import annotations

from prometheus_client import REGISTRY

from websnap import metrics


def _sample(name: str, labels: dict[str, str]) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0.0


def test_record_blocked_request_collapses_type_reasons() -> None:
    before = _sample("websnap_blocked_requests_total", {"reason": "type"})
    metrics.record_blocked_request("type:font")
    metrics.record_blocked_request("type:media")
    assert _sample("websnap_blocked_requests_total", {"reason": "type"}) == before + 2


def test_record_capture_counts_outcome_and_duration() -> None:
    before = _sample("websnap_captures_total", {"outcome": "NavigationTimeout"})
    count_before = _sample("websnap_capture_seconds_count", {"tier": "high"})

    metrics.record_capture("NavigationTimeout", tier="high", seconds=12.5)

    assert _sample("websnap_captures_total", {"outcome": "NavigationTimeout"}) == before + 1
    assert _sample("websnap_capture_seconds_count", {"tier": "high"}) == count_before + 1


def test_record_stage_and_launch_attempts() -> None:
    stage_before = _sample("websnap_readiness_stage_total", {"stage": "dom_settled", "status": "timeout"})
    launch_before = _sample("websnap_browser_launch_attempts_total", {"result": "error"})

    metrics.record_stage("dom_settled", "timeout")
    metrics.record_launch_attempt("error")

    assert _sample("websnap_readiness_stage_total", {"stage": "dom_settled", "status": "timeout"}) == stage_before + 1
    assert _sample("websnap_browser_launch_attempts_total", {"result": "error"}) == launch_before + 1
