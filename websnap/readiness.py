"""Best-effort readiness state machine run between navigation and capture.

Every stage is a probe with its own ceiling. A probe that times out or errors
is logged and the machine advances anyway, so a single stalled sub-resource
(a tracking pixel that never loads, an infinite animation) cannot hold the
capture hostage. Only the outer request deadline is terminal.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Awaitable, Callable, List, Optional, Sequence

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from websnap import metrics
from websnap.deadline import Deadline
from websnap.profiler import ComplexityProfile
from websnap.settings import ReadinessSettings

LOGGER = logging.getLogger(__name__)


class ReadinessState(IntEnum):
    """Ordered, monotonically advancing readiness states."""

    NAVIGATED = 0
    DOM_SETTLED = 1
    FRAMEWORK_HYDRATED = 2
    LAZY_CONTENT_TRIGGERED = 3
    ASSETS_SETTLED = 4
    ANIMATIONS_SETTLED = 5
    READY_FOR_CAPTURE = 6


class StageStatus(str, Enum):
    COMPLETED = "completed"
    TIMEOUT = "timeout"
    ERROR = "error"


@dataclass(slots=True, frozen=True)
class StageOutcome:
    """Result of one probe; timeouts and errors are outcomes, not failures."""

    state: ReadinessState
    status: StageStatus
    elapsed_ms: int
    budget_ms: int
    detail: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "stage": self.state.name.lower(),
            "status": self.status.value,
            "elapsed_ms": self.elapsed_ms,
            "budget_ms": self.budget_ms,
            "detail": self.detail,
        }


class ReadinessTracker:
    """Latch that only moves forward."""

    def __init__(self) -> None:
        self._state = ReadinessState.NAVIGATED
        self._history: List[ReadinessState] = [ReadinessState.NAVIGATED]

    @property
    def state(self) -> ReadinessState:
        return self._state

    @property
    def history(self) -> tuple[ReadinessState, ...]:
        return tuple(self._history)

    def advance(self, target: ReadinessState) -> None:
        if target <= self._state:
            msg = f"Readiness cannot move from {self._state.name} to {target.name}"
            raise ValueError(msg)
        self._state = target
        self._history.append(target)


@dataclass(slots=True)
class ReadinessReport:
    """Everything the waiter learned about the page."""

    outcomes: List[StageOutcome]
    final_state: ReadinessState
    history: tuple[ReadinessState, ...]
    framework: str | None
    elapsed_ms: int

    @property
    def degraded_stages(self) -> list[str]:
        return [o.state.name.lower() for o in self.outcomes if o.status is not StageStatus.COMPLETED]

    @property
    def loading_strategy(self) -> str:
        return "framework-aware" if self.framework else "standard"


@dataclass(slots=True)
class ProbeContext:
    """Inputs shared by probes during one run; probes may record findings."""

    profile: ComplexityProfile
    poll_interval_ms: int
    scroll_step_delay_ms: int
    framework: str | None = None


Probe = Callable[[Page, int, ProbeContext], Awaitable[Optional[str]]]


@dataclass(slots=True, frozen=True)
class Stage:
    state: ReadinessState
    budget_field: str
    probe: Probe


_FRAMEWORK_DETECT_SCRIPT = """
() => {
    const w = window;
    if (w.__NEXT_DATA__ || document.getElementById('__next')) return 'next';
    if (w.__NUXT__ || document.getElementById('__nuxt')) return 'nuxt';
    if (document.getElementById('___gatsby')) return 'gatsby';
    if (document.querySelector('[ng-version]')) return 'angular';
    if (w.__sveltekit_dev || document.querySelector('[data-sveltekit-hydrate], [data-svelte-h]')) return 'svelte';
    if (w.Vue || document.querySelector('[data-v-app], [data-server-rendered]')) return 'vue';
    if (w.React || document.querySelector('[data-reactroot], #root')) return 'react';
    return null;
}
"""

_HYDRATED_SCRIPT = """
() => {
    const roots = ['#__next', '#__nuxt', '#___gatsby', '#root', '#app', '[data-reactroot]', '[ng-version]', '[data-v-app]'];
    const root = roots.map((s) => document.querySelector(s)).find(Boolean);
    if (root && root.children.length === 0) return false;
    const busy = document.querySelectorAll(
        '[aria-busy="true"], [data-loading="true"], .loading, .spinner, .skeleton, [class*="skeleton"], [class*="spinner"]'
    );
    for (const el of busy) {
        const rect = el.getBoundingClientRect();
        const style = window.getComputedStyle(el);
        if (rect.width > 0 && rect.height > 0 && style.display !== 'none'
            && style.visibility !== 'hidden' && style.opacity !== '0') {
            return false;
        }
    }
    return true;
}
"""

_SCROLL_HEIGHT_SCRIPT = "document.scrollingElement ? document.scrollingElement.scrollHeight : document.body.scrollHeight"

_VIEWPORT_HEIGHT_SCRIPT = "window.innerHeight"

_SCROLL_TO_SCRIPT = """
(y) => {
    window.scrollTo(0, y);
    window.dispatchEvent(new Event('scroll'));
    window.dispatchEvent(new Event('resize'));
}
"""

_ASSETS_SETTLED_SCRIPT = """
() => {
    const limit = window.innerHeight * 2;
    for (const img of document.images) {
        if (!img.currentSrc && !img.src) continue;
        const rect = img.getBoundingClientRect();
        if (rect.top > limit || rect.bottom < 0) continue;
        if (!img.complete) return false;
    }
    return !document.fonts || document.fonts.status === 'loaded';
}
"""

_ANIMATIONS_SETTLED_SCRIPT = """
() => {
    if (!document.getAnimations) return true;
    return document.getAnimations().every((a) => a.playState !== 'running');
}
"""


async def probe_dom_settled(page: Page, budget_ms: int, ctx: ProbeContext) -> str | None:
    """Wait for ``document.readyState`` to reach an accepted state."""

    await page.wait_for_function(
        "(states) => states.includes(document.readyState)",
        arg=list(ctx.profile.dom_ready_states),
        timeout=budget_ms,
        polling=ctx.poll_interval_ms,
    )
    return await page.evaluate("document.readyState")


async def probe_framework_hydrated(page: Page, budget_ms: int, ctx: ProbeContext) -> str | None:
    """Detect a client-rendering framework and wait until its root is populated."""

    ctx.framework = await page.evaluate(_FRAMEWORK_DETECT_SCRIPT)
    if not ctx.framework:
        return "no framework markers"
    await page.wait_for_function(_HYDRATED_SCRIPT, timeout=budget_ms, polling=ctx.poll_interval_ms)
    return ctx.framework


async def probe_lazy_content(page: Page, budget_ms: int, ctx: ProbeContext) -> str | None:
    """Scroll top to bottom in viewport steps, then return to the top.

    A bounded loop: it stops at the step cap or shortly before its wall-time
    budget, whichever comes first.
    """

    started = time.monotonic()
    stop_at = started + (budget_ms * 0.9) / 1000
    step_px = int(await page.evaluate(_VIEWPORT_HEIGHT_SCRIPT) or 0) or 800
    offset = 0
    steps = 0
    while steps < ctx.profile.lazy_scroll_max_steps and time.monotonic() < stop_at:
        scroll_height = int(await page.evaluate(_SCROLL_HEIGHT_SCRIPT) or 0)
        if offset + step_px >= scroll_height:
            break
        offset += step_px
        await page.evaluate(_SCROLL_TO_SCRIPT, offset)
        await page.wait_for_timeout(ctx.scroll_step_delay_ms)
        steps += 1
    await page.evaluate(_SCROLL_TO_SCRIPT, 0)
    return f"{steps} scroll steps"


async def probe_assets_settled(page: Page, budget_ms: int, ctx: ProbeContext) -> str | None:
    """Wait until near-viewport images are complete and fonts are ready."""

    await page.wait_for_function(_ASSETS_SETTLED_SCRIPT, timeout=budget_ms, polling=ctx.poll_interval_ms)
    return None


async def probe_animations_settled(page: Page, budget_ms: int, ctx: ProbeContext) -> str | None:
    """Wait until no CSS animation or transition is running."""

    await page.wait_for_function(_ANIMATIONS_SETTLED_SCRIPT, timeout=budget_ms, polling=ctx.poll_interval_ms)
    return None


DEFAULT_STAGES: tuple[Stage, ...] = (
    Stage(ReadinessState.DOM_SETTLED, "dom_settled_ms", probe_dom_settled),
    Stage(ReadinessState.FRAMEWORK_HYDRATED, "framework_hydrated_ms", probe_framework_hydrated),
    Stage(ReadinessState.LAZY_CONTENT_TRIGGERED, "lazy_content_ms", probe_lazy_content),
    Stage(ReadinessState.ASSETS_SETTLED, "assets_settled_ms", probe_assets_settled),
    Stage(ReadinessState.ANIMATIONS_SETTLED, "animations_settled_ms", probe_animations_settled),
)


@dataclass(slots=True)
class ReadinessWaiter:
    """Drive a page from ``NAVIGATED`` to ``READY_FOR_CAPTURE``."""

    profile: ComplexityProfile
    settings: ReadinessSettings
    deadline: Deadline | None = None
    request_id: str = ""
    stages: Sequence[Stage] = field(default=DEFAULT_STAGES)

    async def run(self, page: Page) -> ReadinessReport:
        started = time.perf_counter()
        tracker = ReadinessTracker()
        ctx = ProbeContext(
            profile=self.profile,
            poll_interval_ms=self.settings.poll_interval_ms,
            scroll_step_delay_ms=self.settings.scroll_step_delay_ms,
        )
        outcomes: List[StageOutcome] = []
        for stage in self.stages:
            budget_ms = getattr(self.profile.stage_budgets, stage.budget_field)
            if self.deadline is not None:
                self.deadline.stage = f"readiness:{stage.state.name.lower()}"
                budget_ms = self.deadline.bound(budget_ms)
            outcome = await self._run_stage(stage, page, budget_ms, ctx)
            outcomes.append(outcome)
            metrics.record_stage(stage.state.name.lower(), outcome.status.value)
            tracker.advance(stage.state)
        tracker.advance(ReadinessState.READY_FOR_CAPTURE)

        return ReadinessReport(
            outcomes=outcomes,
            final_state=tracker.state,
            history=tracker.history,
            framework=ctx.framework,
            elapsed_ms=int((time.perf_counter() - started) * 1000),
        )

    async def _run_stage(self, stage: Stage, page: Page, budget_ms: int, ctx: ProbeContext) -> StageOutcome:
        started = time.perf_counter()
        status = StageStatus.COMPLETED
        detail: str | None
        try:
            detail = await asyncio.wait_for(stage.probe(page, budget_ms, ctx), timeout=budget_ms / 1000)
        except (asyncio.TimeoutError, PlaywrightTimeoutError):
            status, detail = StageStatus.TIMEOUT, f"exceeded {budget_ms}ms"
        except PlaywrightError as exc:
            status, detail = StageStatus.ERROR, _first_line(exc)
        except Exception as exc:  # noqa: BLE001 - probes are best-effort by contract
            status, detail = StageStatus.ERROR, f"{type(exc).__name__}: {exc}"

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        if status is StageStatus.COMPLETED:
            LOGGER.debug(
                "Readiness stage %s completed in %sms",
                stage.state.name,
                elapsed_ms,
                extra={"request_id": self.request_id},
            )
        else:
            LOGGER.warning(
                "Readiness stage %s %s (%s); continuing",
                stage.state.name,
                status.value,
                detail,
                extra={"request_id": self.request_id},
            )
        return StageOutcome(
            state=stage.state,
            status=status,
            elapsed_ms=elapsed_ms,
            budget_ms=budget_ms,
            detail=detail,
        )


def _first_line(exc: BaseException) -> str:
    text = str(exc).strip()
    return text.splitlines()[0] if text else type(exc).__name__
