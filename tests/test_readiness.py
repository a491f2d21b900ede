from __future__ import annotations

import asyncio
from typing import Any, cast

import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

import websnap.readiness as readiness_module
from websnap.profiler import build_profile_policy, classify_url
from websnap.readiness import (
    DEFAULT_STAGES,
    ProbeContext,
    ReadinessState,
    ReadinessTracker,
    ReadinessWaiter,
    Stage,
    StageStatus,
    probe_lazy_content,
)


class _FakePage:
    """Page stand-in answering the readiness scripts."""

    def __init__(self, *, scroll_height: int = 3000, viewport_height: int = 900, framework: str | None = None) -> None:
        self.scroll_height = scroll_height
        self.viewport_height = viewport_height
        self.framework = framework
        self.scroll_calls: list[int] = []
        self.hang_wait_for_function = False
        self.wait_calls: list[dict[str, Any]] = []

    async def evaluate(self, script: str, *args: Any) -> Any:
        if script == readiness_module._VIEWPORT_HEIGHT_SCRIPT:
            return self.viewport_height
        if script == readiness_module._SCROLL_HEIGHT_SCRIPT:
            return self.scroll_height
        if script == readiness_module._SCROLL_TO_SCRIPT:
            self.scroll_calls.append(int(args[0]))
            return None
        if script == readiness_module._FRAMEWORK_DETECT_SCRIPT:
            return self.framework
        if script == "document.readyState":
            return "complete"
        return None

    async def wait_for_function(self, script: str, **kwargs: Any) -> None:
        self.wait_calls.append(kwargs)
        if self.hang_wait_for_function:
            await asyncio.sleep(3600)

    async def wait_for_timeout(self, timeout_ms: int) -> None:  # noqa: ARG002
        return None


def _profile(make_settings, **overrides: Any):
    settings = make_settings(**overrides)
    return classify_url("https://example.com/", build_profile_policy(settings)), settings


def test_tracker_only_moves_forward() -> None:
    tracker = ReadinessTracker()
    tracker.advance(ReadinessState.DOM_SETTLED)
    tracker.advance(ReadinessState.LAZY_CONTENT_TRIGGERED)

    with pytest.raises(ValueError):
        tracker.advance(ReadinessState.FRAMEWORK_HYDRATED)
    with pytest.raises(ValueError):
        tracker.advance(ReadinessState.LAZY_CONTENT_TRIGGERED)

    assert tracker.state is ReadinessState.LAZY_CONTENT_TRIGGERED
    assert tracker.history == (
        ReadinessState.NAVIGATED,
        ReadinessState.DOM_SETTLED,
        ReadinessState.LAZY_CONTENT_TRIGGERED,
    )


@pytest.mark.asyncio()
async def test_waiter_reaches_ready_with_default_probes(make_settings) -> None:
    profile, settings = _profile(make_settings)
    page = _FakePage(framework="next")

    report = await ReadinessWaiter(profile=profile, settings=settings.readiness).run(cast(Any, page))

    assert report.final_state is ReadinessState.READY_FOR_CAPTURE
    assert report.history == tuple(ReadinessState)
    assert report.degraded_stages == []
    assert report.framework == "next"
    assert report.loading_strategy == "framework-aware"
    assert [o.state for o in report.outcomes] == [stage.state for stage in DEFAULT_STAGES]
    assert page.wait_calls[0]["arg"] == ["complete"]
    assert page.scroll_calls[-1] == 0


@pytest.mark.asyncio()
async def test_waiter_advances_past_stalled_probes(make_settings) -> None:
    profile, settings = _profile(make_settings, stage_ms=50)
    page = _FakePage()
    page.hang_wait_for_function = True

    report = await ReadinessWaiter(profile=profile, settings=settings.readiness).run(cast(Any, page))

    assert report.final_state is ReadinessState.READY_FOR_CAPTURE
    statuses = {o.state: o.status for o in report.outcomes}
    assert statuses[ReadinessState.DOM_SETTLED] is StageStatus.TIMEOUT
    assert statuses[ReadinessState.FRAMEWORK_HYDRATED] is StageStatus.COMPLETED
    assert statuses[ReadinessState.LAZY_CONTENT_TRIGGERED] is StageStatus.COMPLETED
    assert statuses[ReadinessState.ASSETS_SETTLED] is StageStatus.TIMEOUT
    assert statuses[ReadinessState.ANIMATIONS_SETTLED] is StageStatus.TIMEOUT
    assert report.loading_strategy == "standard"
    assert "dom_settled" in report.degraded_stages


@pytest.mark.asyncio()
async def test_waiter_records_probe_errors_and_continues(make_settings) -> None:
    profile, settings = _profile(make_settings)

    async def _playwright_failure(page, budget_ms, ctx):  # noqa: ARG001
        raise PlaywrightError("Execution context was destroyed\nmore detail")

    async def _playwright_timeout(page, budget_ms, ctx):  # noqa: ARG001
        raise PlaywrightTimeoutError("Timeout 50ms exceeded.")

    async def _script_bug(page, budget_ms, ctx):  # noqa: ARG001
        raise KeyError("missing")

    async def _ok(page, budget_ms, ctx):  # noqa: ARG001
        return "fine"

    stages = (
        Stage(ReadinessState.DOM_SETTLED, "dom_settled_ms", _playwright_failure),
        Stage(ReadinessState.LAZY_CONTENT_TRIGGERED, "lazy_content_ms", _playwright_timeout),
        Stage(ReadinessState.ASSETS_SETTLED, "assets_settled_ms", _script_bug),
        Stage(ReadinessState.ANIMATIONS_SETTLED, "animations_settled_ms", _ok),
    )
    waiter = ReadinessWaiter(profile=profile, settings=settings.readiness, stages=stages)
    report = await waiter.run(cast(Any, _FakePage()))

    outcomes = report.outcomes
    assert outcomes[0].status is StageStatus.ERROR
    assert outcomes[0].detail == "Execution context was destroyed"
    assert outcomes[1].status is StageStatus.TIMEOUT
    assert outcomes[2].status is StageStatus.ERROR
    assert outcomes[2].detail.startswith("KeyError")
    assert outcomes[3].status is StageStatus.COMPLETED
    assert outcomes[3].detail == "fine"
    assert report.final_state is ReadinessState.READY_FOR_CAPTURE
    assert outcomes[0].to_dict()["stage"] == "dom_settled"


@pytest.mark.asyncio()
async def test_lazy_probe_sweeps_in_viewport_steps(make_settings) -> None:
    profile, settings = _profile(make_settings)
    page = _FakePage(scroll_height=3000, viewport_height=900)
    ctx = ProbeContext(profile=profile, poll_interval_ms=10, scroll_step_delay_ms=0)

    detail = await probe_lazy_content(cast(Any, page), 1_000, ctx)

    assert page.scroll_calls == [900, 1800, 2700, 0]
    assert detail == "3 scroll steps"


@pytest.mark.asyncio()
async def test_lazy_probe_respects_step_cap(make_settings) -> None:
    profile, settings = _profile(make_settings)
    page = _FakePage(scroll_height=1_000_000, viewport_height=0)
    ctx = ProbeContext(profile=profile, poll_interval_ms=10, scroll_step_delay_ms=0)

    detail = await probe_lazy_content(cast(Any, page), 5_000, ctx)

    assert detail == f"{profile.lazy_scroll_max_steps} scroll steps"
    # A zero viewport height falls back to an 800px step.
    assert page.scroll_calls[:2] == [800, 1600]
