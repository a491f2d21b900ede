from __future__ import annotations

from typing import Callable

import pytest

from websnap.settings import (
    BrowserSettings,
    CaptureSettings,
    DeadlineSettings,
    MemorySettings,
    NavigationSettings,
    ProfilerSettings,
    ReadinessSettings,
    Settings,
    StageBudgets,
    get_settings,
)


def _budgets(ms: int) -> StageBudgets:
    return StageBudgets(ms, ms, ms, ms, ms)


@pytest.fixture()
def make_settings() -> Callable[..., Settings]:
    """Factory for fast, fully explicit settings (no env or .env involved)."""

    def _factory(
        *,
        stage_ms: int = 200,
        request_budget_ms: int = 5_000,
        response_margin_ms: int = 500,
        grace_ms: int = 500,
        launch_attempts: int = 2,
        launch_backoff_ms: int = 1,
        heavy_hosts: tuple[str, ...] = (),
        max_height_px: int = 32_767,
        high_ceiling: int = 70,
    ) -> Settings:
        return Settings(
            env_path="<test>",
            browser=BrowserSettings(
                executable_path=None,
                channel=None,
                headless=True,
                no_sandbox=True,
                single_process=False,
                js_heap_mb=256,
                launch_attempts=launch_attempts,
                launch_backoff_ms=launch_backoff_ms,
                launch_timeout_ms=1_000,
                close_timeout_ms=200,
                reduced_motion=False,
                extra_args=(),
            ),
            deadline=DeadlineSettings(
                request_budget_ms=request_budget_ms,
                response_margin_ms=response_margin_ms,
                grace_ms=grace_ms,
            ),
            navigation=NavigationSettings(
                wait_until="domcontentloaded",
                timeout_ms_low=1_000,
                timeout_ms_medium=1_000,
                timeout_ms_high=1_000,
            ),
            readiness=ReadinessSettings(
                low=_budgets(stage_ms),
                medium=_budgets(stage_ms),
                high=_budgets(stage_ms),
                scroll_step_delay_ms=0,
                scroll_max_steps=10,
                scroll_max_steps_high=5,
                poll_interval_ms=10,
            ),
            capture=CaptureSettings(
                max_height_px=max_height_px,
                resize_settle_ms=0,
                high_tier_quality_ceiling=high_ceiling,
            ),
            profiler=ProfilerSettings(
                heavy_hosts=heavy_hosts,
                long_query_threshold=100,
                policy_path=None,
            ),
            memory=MemorySettings(pressure_percent=90.0, min_available_mb=256),
        )

    return _factory


@pytest.fixture()
def clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
