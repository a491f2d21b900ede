"""Typed configuration objects backed by python-decouple settings."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from decouple import Config as DecoupleConfig, RepositoryEmpty, RepositoryEnv

__all__ = [
    "BrowserSettings",
    "DeadlineSettings",
    "NavigationSettings",
    "StageBudgets",
    "ReadinessSettings",
    "CaptureSettings",
    "ProfilerSettings",
    "MemorySettings",
    "Settings",
    "load_config",
    "get_settings",
]

_WAIT_UNTIL_CHOICES = ("commit", "domcontentloaded", "load", "networkidle")


@dataclass(frozen=True, slots=True)
class BrowserSettings:
    """Launch knobs for the per-request Chromium process."""

    executable_path: str | None
    channel: str | None
    headless: bool
    no_sandbox: bool
    single_process: bool
    js_heap_mb: int
    launch_attempts: int
    launch_backoff_ms: int
    launch_timeout_ms: int
    close_timeout_ms: int
    reduced_motion: bool
    extra_args: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class DeadlineSettings:
    """Wall-clock budget for a whole capture request."""

    request_budget_ms: int
    response_margin_ms: int
    grace_ms: int

    @property
    def effective_budget_ms(self) -> int:
        return max(1, self.request_budget_ms - self.response_margin_ms)


@dataclass(frozen=True, slots=True)
class NavigationSettings:
    """Initial navigation wait condition and per-tier navigation timeouts."""

    wait_until: str
    timeout_ms_low: int
    timeout_ms_medium: int
    timeout_ms_high: int


@dataclass(frozen=True, slots=True)
class StageBudgets:
    """Per-probe ceilings (milliseconds) for one complexity tier."""

    dom_settled_ms: int
    framework_hydrated_ms: int
    lazy_content_ms: int
    assets_settled_ms: int
    animations_settled_ms: int

    @property
    def total_ms(self) -> int:
        return (
            self.dom_settled_ms
            + self.framework_hydrated_ms
            + self.lazy_content_ms
            + self.assets_settled_ms
            + self.animations_settled_ms
        )


@dataclass(frozen=True, slots=True)
class ReadinessSettings:
    """Probe budgets per tier plus lazy-load sweep pacing."""

    low: StageBudgets
    medium: StageBudgets
    high: StageBudgets
    scroll_step_delay_ms: int
    scroll_max_steps: int
    scroll_max_steps_high: int
    poll_interval_ms: int


@dataclass(frozen=True, slots=True)
class CaptureSettings:
    """Final screenshot geometry and encoding limits."""

    max_height_px: int
    resize_settle_ms: int
    high_tier_quality_ceiling: int


@dataclass(frozen=True, slots=True)
class ProfilerSettings:
    """Inputs for the site complexity classifier."""

    heavy_hosts: tuple[str, ...]
    long_query_threshold: int
    policy_path: Path | None


@dataclass(frozen=True, slots=True)
class MemorySettings:
    """Host memory thresholds used when classifying crashes."""

    pressure_percent: float
    min_available_mb: int


@dataclass(frozen=True, slots=True)
class Settings:
    """Top-level immutable configuration container."""

    env_path: str
    browser: BrowserSettings
    deadline: DeadlineSettings
    navigation: NavigationSettings
    readiness: ReadinessSettings
    capture: CaptureSettings
    profiler: ProfilerSettings
    memory: MemorySettings


def load_config(env_path: str = ".env") -> DecoupleConfig:
    """Return a python-decouple config anchored to the given .env file.

    Environment variables always take precedence; a missing file simply means
    every value comes from the environment or the defaults.
    """

    if Path(env_path).is_file():
        return DecoupleConfig(RepositoryEnv(env_path))
    return DecoupleConfig(RepositoryEmpty())


def _int(cfg: DecoupleConfig, key: str, *, default: int) -> int:
    return cfg(key, cast=int, default=default)


def _bool(cfg: DecoupleConfig, key: str, *, default: bool) -> bool:
    return cfg(key, cast=bool, default=default)


def _optional_str(cfg: DecoupleConfig, key: str) -> str | None:
    raw = cfg(key, default="")
    raw = raw.strip() if isinstance(raw, str) else raw
    return raw or None


def _csv_tuple(cfg: DecoupleConfig, key: str) -> tuple[str, ...]:
    raw = cfg(key, default="")
    if not raw:
        return tuple()
    return tuple(part.strip() for part in raw.split(",") if part.strip())


def _stage_budgets(cfg: DecoupleConfig, tier: str, defaults: StageBudgets) -> StageBudgets:
    prefix = f"READINESS_{tier.upper()}"
    return StageBudgets(
        dom_settled_ms=_int(cfg, f"{prefix}_DOM_MS", default=defaults.dom_settled_ms),
        framework_hydrated_ms=_int(cfg, f"{prefix}_HYDRATION_MS", default=defaults.framework_hydrated_ms),
        lazy_content_ms=_int(cfg, f"{prefix}_LAZY_MS", default=defaults.lazy_content_ms),
        assets_settled_ms=_int(cfg, f"{prefix}_ASSETS_MS", default=defaults.assets_settled_ms),
        animations_settled_ms=_int(cfg, f"{prefix}_ANIMATIONS_MS", default=defaults.animations_settled_ms),
    )


_LOW_DEFAULTS = StageBudgets(10_000, 25_000, 15_000, 20_000, 15_000)
_MEDIUM_DEFAULTS = StageBudgets(8_000, 15_000, 12_000, 12_000, 10_000)
_HIGH_DEFAULTS = StageBudgets(5_000, 8_000, 8_000, 8_000, 8_000)


@lru_cache(maxsize=1)
def get_settings(env_path: str = ".env") -> Settings:
    """Load and memoize structured settings for the current process."""

    cfg = load_config(env_path)

    browser = BrowserSettings(
        executable_path=_optional_str(cfg, "BROWSER_EXECUTABLE_PATH"),
        channel=_optional_str(cfg, "PLAYWRIGHT_CHANNEL"),
        headless=_bool(cfg, "BROWSER_HEADLESS", default=True),
        no_sandbox=_bool(cfg, "BROWSER_NO_SANDBOX", default=True),
        single_process=_bool(cfg, "BROWSER_SINGLE_PROCESS", default=False),
        js_heap_mb=_int(cfg, "BROWSER_JS_HEAP_MB", default=512),
        launch_attempts=_int(cfg, "BROWSER_LAUNCH_ATTEMPTS", default=3),
        launch_backoff_ms=_int(cfg, "BROWSER_LAUNCH_BACKOFF_MS", default=1000),
        launch_timeout_ms=_int(cfg, "BROWSER_LAUNCH_TIMEOUT_MS", default=30_000),
        close_timeout_ms=_int(cfg, "BROWSER_CLOSE_TIMEOUT_MS", default=5_000),
        reduced_motion=_bool(cfg, "CAPTURE_REDUCED_MOTION", default=False),
        extra_args=_csv_tuple(cfg, "BROWSER_EXTRA_ARGS"),
    )
    if browser.launch_attempts < 1:
        msg = "BROWSER_LAUNCH_ATTEMPTS must be >= 1"
        raise ValueError(msg)

    deadline = DeadlineSettings(
        request_budget_ms=_int(cfg, "REQUEST_BUDGET_MS", default=55_000),
        response_margin_ms=_int(cfg, "RESPONSE_MARGIN_MS", default=5_000),
        grace_ms=_int(cfg, "DEADLINE_GRACE_MS", default=2_000),
    )
    if deadline.response_margin_ms >= deadline.request_budget_ms:
        msg = "RESPONSE_MARGIN_MS must be smaller than REQUEST_BUDGET_MS"
        raise ValueError(msg)

    navigation = NavigationSettings(
        wait_until=cfg("NAVIGATION_WAIT_UNTIL", default="domcontentloaded"),
        timeout_ms_low=_int(cfg, "NAVIGATION_TIMEOUT_LOW_MS", default=15_000),
        timeout_ms_medium=_int(cfg, "NAVIGATION_TIMEOUT_MEDIUM_MS", default=15_000),
        timeout_ms_high=_int(cfg, "NAVIGATION_TIMEOUT_HIGH_MS", default=20_000),
    )
    if navigation.wait_until not in _WAIT_UNTIL_CHOICES:
        msg = f"NAVIGATION_WAIT_UNTIL must be one of {', '.join(_WAIT_UNTIL_CHOICES)}"
        raise ValueError(msg)

    readiness = ReadinessSettings(
        low=_stage_budgets(cfg, "low", _LOW_DEFAULTS),
        medium=_stage_budgets(cfg, "medium", _MEDIUM_DEFAULTS),
        high=_stage_budgets(cfg, "high", _HIGH_DEFAULTS),
        scroll_step_delay_ms=_int(cfg, "LAZY_SCROLL_STEP_DELAY_MS", default=100),
        scroll_max_steps=_int(cfg, "LAZY_SCROLL_MAX_STEPS", default=40),
        scroll_max_steps_high=_int(cfg, "LAZY_SCROLL_MAX_STEPS_HIGH", default=20),
        poll_interval_ms=_int(cfg, "READINESS_POLL_INTERVAL_MS", default=250),
    )

    capture = CaptureSettings(
        max_height_px=_int(cfg, "CAPTURE_MAX_HEIGHT_PX", default=32_767),
        resize_settle_ms=_int(cfg, "CAPTURE_RESIZE_SETTLE_MS", default=500),
        high_tier_quality_ceiling=_int(cfg, "HIGH_TIER_QUALITY_CEILING", default=70),
    )
    if not 1 <= capture.high_tier_quality_ceiling <= 100:
        msg = "HIGH_TIER_QUALITY_CEILING must be between 1 and 100"
        raise ValueError(msg)

    policy_raw = _optional_str(cfg, "PROFILE_POLICY_PATH")
    profiler = ProfilerSettings(
        heavy_hosts=_csv_tuple(cfg, "HEAVY_HOSTS"),
        long_query_threshold=_int(cfg, "LONG_QUERY_THRESHOLD", default=100),
        policy_path=Path(policy_raw) if policy_raw else None,
    )

    memory = MemorySettings(
        pressure_percent=cfg("MEMORY_PRESSURE_PERCENT", cast=float, default=90.0),
        min_available_mb=_int(cfg, "MEMORY_MIN_AVAILABLE_MB", default=256),
    )

    return Settings(
        env_path=env_path,
        browser=browser,
        deadline=deadline,
        navigation=navigation,
        readiness=readiness,
        capture=capture,
        profiler=profiler,
        memory=memory,
    )
