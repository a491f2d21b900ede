"""Capture orchestration: validate, profile, launch, navigate, wait, capture."""

from __future__ import annotations

import logging
from importlib import metadata
from typing import Callable, Mapping, Sequence

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from pydantic import ValidationError

from websnap import __version__, metrics
from websnap.capture import CaptureResult, capture_page, effective_quality
from websnap.deadline import Deadline
from websnap.errors import (
    CaptureFailed,
    ErrorCategory,
    ErrorOutcome,
    InvalidInputError,
    NavigationFailedError,
    NavigationTimeoutError,
    classify_error,
    crash_error,
    is_crash_signal,
)
from websnap.gate import install_resource_gate
from websnap.memory import host_under_pressure, sample_host_memory
from websnap.profiler import ComplexityProfile, ProfilePolicy, build_profile_policy, classify_url
from websnap.readiness import ReadinessWaiter, Stage
from websnap.request import DEVICE_PROFILES, QUALITY_LEVELS, CaptureRequest, build_capture_request
from websnap.schemas import CaptureRequestPayload, CaptureResponse, ErrorResponse, ServiceDescription
from websnap.session import BrowserLauncher, PlaywrightLauncher, RenderSession
from websnap.settings import Settings, get_settings

LOGGER = logging.getLogger(__name__)

LauncherFactory = Callable[[], BrowserLauncher]
MemoryProbe = Callable[[], bool]

try:
    PLAYWRIGHT_VERSION: str | None = metadata.version("playwright")
except metadata.PackageNotFoundError:  # pragma: no cover - dev fallback
    PLAYWRIGHT_VERSION = None


class CaptureService:
    """Entry point for one-shot captures; every call gets its own browser."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        policy: ProfilePolicy | None = None,
        launcher_factory: LauncherFactory = PlaywrightLauncher,
        memory_probe: MemoryProbe | None = None,
        stages: Sequence[Stage] | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.policy = policy or build_profile_policy(self.settings)
        self._launcher_factory = launcher_factory
        self._memory_probe = memory_probe or (lambda: host_under_pressure(self.settings.memory))
        self._stages = stages

    async def capture_url(
        self,
        url: object,
        device: object = "desktop",
        quality: object = "medium",
    ) -> CaptureResult:
        """Validate raw inputs, then capture. Invalid input never launches a browser."""

        try:
            request = build_capture_request(url, device, quality)
        except InvalidInputError as exc:
            outcome = classify_error(exc)
            metrics.record_capture(outcome.category.value, tier="none", seconds=0.0)
            raise CaptureFailed(outcome) from exc
        return await self.capture(request)

    async def capture(self, request: CaptureRequest) -> CaptureResult:
        """Capture ``request`` or raise ``CaptureFailed`` with a classified outcome."""

        profile = classify_url(request.url, self.policy)
        deadline = Deadline.start(self.settings.deadline)
        session = RenderSession(
            request_id=request.request_id,
            device=request.device_profile,
            settings=self.settings.browser,
            deadline=deadline,
            launcher=self._launcher_factory(),
        )
        LOGGER.info(
            "Capture started: %s (device=%s quality=%s tier=%s budget=%sms)",
            request.url,
            request.device.value,
            request.quality.value,
            profile.tier.value,
            deadline.budget_ms,
            extra={"request_id": request.request_id},
        )

        try:
            async with session:
                result = await deadline.run(
                    lambda: self._pipeline(request, profile, session, deadline),
                    on_expire=session.close,
                )
        except Exception as exc:
            outcome = self._classify(exc, session)
            elapsed_ms = deadline.elapsed_ms()
            metrics.record_capture(outcome.category.value, tier=profile.tier.value, seconds=elapsed_ms / 1000)
            LOGGER.error(
                "Capture failed after %sms: %s (%s)",
                elapsed_ms,
                outcome.category.value,
                outcome.detail,
                extra={"request_id": request.request_id},
            )
            raise CaptureFailed(outcome) from exc

        metrics.record_capture("success", tier=profile.tier.value, seconds=result.elapsed_ms / 1000)
        LOGGER.info(
            "Capture completed in %sms (%sx%s, %sKB, degraded=%s)",
            result.elapsed_ms,
            result.width,
            result.height,
            result.size_kb,
            result.readiness.degraded_stages,
            extra={"request_id": request.request_id},
        )
        return result

    async def _pipeline(
        self,
        request: CaptureRequest,
        profile: ComplexityProfile,
        session: RenderSession,
        deadline: Deadline,
    ) -> CaptureResult:
        await session.launch()

        deadline.enter("open_page")
        page = await session.open_page()
        gate_stats = await install_resource_gate(page, profile.resource_policy)

        deadline.enter("navigation")
        await self._navigate(page, request.url, profile, session, deadline)

        waiter_kwargs = {} if self._stages is None else {"stages": self._stages}
        waiter = ReadinessWaiter(
            profile=profile,
            settings=self.settings.readiness,
            deadline=deadline,
            request_id=request.request_id,
            **waiter_kwargs,
        )
        report = await waiter.run(page)

        deadline.enter("capture")
        quality = effective_quality(request.jpeg_quality, profile.quality_ceiling)
        image = await capture_page(
            page,
            device=request.device_profile,
            quality=quality,
            max_height=self.settings.capture.max_height_px,
            settle_ms=self.settings.capture.resize_settle_ms,
            timeout_ms=deadline.bound(deadline.remaining_ms()),
        )

        return CaptureResult(
            image_bytes=image.image_bytes,
            width=image.width,
            height=image.height,
            encoding_quality_used=image.quality,
            elapsed_ms=deadline.elapsed_ms(),
            complexity_tier=profile.tier.value,
            url=request.url,
            device=request.device.value,
            quality=request.quality.value,
            request_id=request.request_id,
            document_height=image.document_height,
            height_clamped=image.height_clamped,
            readiness=report,
            blocked_requests=dict(gate_stats.blocked),
        )

    async def _navigate(
        self,
        page: Page,
        url: str,
        profile: ComplexityProfile,
        session: RenderSession,
        deadline: Deadline,
    ) -> None:
        timeout_ms = deadline.bound(profile.navigation_timeout_ms)
        try:
            response = await page.goto(
                url,
                wait_until=self.settings.navigation.wait_until,
                timeout=timeout_ms,
            )
        except PlaywrightTimeoutError as exc:
            raise NavigationTimeoutError(f"Navigation to {url} timed out after {timeout_ms}ms") from exc
        except PlaywrightError as exc:
            if session.crashed or is_crash_signal(exc):
                raise crash_error(f"Browser lost during navigation: {exc}", exc) from exc
            raise NavigationFailedError(f"Navigation to {url} failed: {exc}") from exc

        if response is not None and response.status >= 400:
            raise NavigationFailedError(f"Page returned HTTP status {response.status}")
        LOGGER.info(
            "Navigation completed with status %s",
            response.status if response is not None else "n/a",
            extra={"request_id": session.request_id},
        )

    def _classify(self, exc: BaseException, session: RenderSession) -> ErrorOutcome:
        outcome = classify_error(exc, session_crashed=session.crashed)
        if outcome.category is ErrorCategory.BROWSER_CRASHED and self._memory_probe():
            outcome = classify_error(exc, session_crashed=session.crashed, memory_pressure=True)
        return outcome


async def capture(request: CaptureRequest, *, service: CaptureService | None = None) -> CaptureResult:
    """Capture with a default-configured service; raises ``CaptureFailed``."""

    return await (service or CaptureService()).capture(request)


async def handle_capture(
    payload: Mapping[str, object],
    service: CaptureService | None = None,
) -> CaptureResponse | ErrorResponse:
    """Request/response contract for HTTP layers: never raises for capture failures."""

    try:
        body = CaptureRequestPayload.model_validate(payload)
        request = build_capture_request(body.url, body.device, body.quality)
    except (ValidationError, InvalidInputError) as exc:
        error = exc if isinstance(exc, InvalidInputError) else InvalidInputError(str(exc))
        return ErrorResponse.from_outcome(classify_error(error))

    service = service or CaptureService()
    try:
        result = await service.capture(request)
    except CaptureFailed as failure:
        return ErrorResponse.from_outcome(failure.outcome, request_id=request.request_id)
    return CaptureResponse.from_result(result)


def describe_service(settings: Settings | None = None) -> ServiceDescription:
    """Health and capability payload for monitoring endpoints."""

    settings = settings or get_settings()
    snapshot = sample_host_memory()
    under_pressure = host_under_pressure(settings.memory, snapshot)
    return ServiceDescription(
        status="degraded" if under_pressure else "healthy",
        version=__version__,
        engine="playwright-chromium",
        playwright_version=PLAYWRIGHT_VERSION,
        devices=[device.value for device in DEVICE_PROFILES],
        qualities={quality.value: level for quality, level in QUALITY_LEVELS.items()},
        request_budget_ms=settings.deadline.request_budget_ms,
        memory=snapshot.to_dict() if snapshot is not None else None,
    )
