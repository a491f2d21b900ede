from __future__ import annotations

import base64
from typing import Any, cast

import pytest
from playwright.async_api import Error as PlaywrightError

from websnap import capture as capture_module
from websnap.capture import CaptureResult, capture_page, clamp_height, measure_document
from websnap.errors import BrowserCrashedError, MemoryPressureError
from websnap.readiness import ReadinessReport, ReadinessState
from websnap.request import DEVICE_PROFILES, Device


class _FakePage:
    def __init__(self, *, height: int, width: int = 1440, screenshot_error: Exception | None = None) -> None:
        self.height = height
        self.width = width
        self.closed = False
        self.screenshot_error = screenshot_error
        self.viewports: list[dict[str, int]] = []
        self.screenshot_kwargs: dict[str, Any] = {}
        self.events: list[str] = []

    def is_closed(self) -> bool:
        return self.closed

    async def evaluate(self, script: str, *args: Any) -> Any:  # noqa: ARG002
        if script == capture_module._SCROLL_TOP_SCRIPT:
            self.events.append("scroll_top")
            return None
        return {"height": self.height, "width": self.width}

    async def set_viewport_size(self, size: dict[str, int]) -> None:
        self.viewports.append(size)

    async def wait_for_timeout(self, timeout_ms: int) -> None:  # noqa: ARG002
        return None

    async def screenshot(self, **kwargs: Any) -> bytes:
        if self.screenshot_error is not None:
            raise self.screenshot_error
        self.events.append("screenshot")
        self.screenshot_kwargs = kwargs
        return b"\xff\xd8\xff\xe0fake-jpeg"


@pytest.mark.parametrize(
    ("document_height", "expected"),
    [(2400, 2400), (300, 900), (50_000, 32_767), (0, 900)],
)
def test_clamp_height(document_height: int, expected: int) -> None:
    assert clamp_height(document_height, viewport_height=900, max_height=32_767) == expected


@pytest.mark.asyncio()
async def test_measure_document_reads_largest_metrics() -> None:
    metrics = await measure_document(cast(Any, _FakePage(height=4321, width=1500)))
    assert (metrics.height, metrics.width) == (4321, 1500)


@pytest.mark.asyncio()
async def test_capture_page_resizes_viewport_to_document() -> None:
    page = _FakePage(height=2400)
    image = await capture_page(
        cast(Any, page),
        device=DEVICE_PROFILES[Device.DESKTOP],
        quality=80,
        max_height=32_767,
        settle_ms=0,
        timeout_ms=5_000,
    )

    assert page.viewports == [{"width": 1440, "height": 2400}]
    assert page.screenshot_kwargs["type"] == "jpeg"
    assert page.screenshot_kwargs["quality"] == 80
    assert page.screenshot_kwargs["full_page"] is True
    assert page.screenshot_kwargs["timeout"] == 5_000
    assert (image.width, image.height) == (1440, 2400)
    assert not image.height_clamped
    assert image.image_bytes.startswith(b"\xff\xd8")


@pytest.mark.asyncio()
async def test_capture_page_clamps_tall_documents() -> None:
    page = _FakePage(height=100_000)
    image = await capture_page(
        cast(Any, page),
        device=DEVICE_PROFILES[Device.MOBILE],
        quality=60,
        max_height=10_000,
        settle_ms=0,
    )

    assert image.height == 10_000
    assert image.document_height == 100_000
    assert image.height_clamped
    assert page.screenshot_kwargs["full_page"] is False
    assert page.viewports == [{"width": 375, "height": 10_000}]
    assert page.events == ["scroll_top", "screenshot"]


@pytest.mark.asyncio()
async def test_capture_page_refuses_closed_page() -> None:
    page = _FakePage(height=1000)
    page.closed = True
    with pytest.raises(BrowserCrashedError):
        await capture_page(cast(Any, page), device=DEVICE_PROFILES[Device.DESKTOP], quality=80, max_height=32_767, settle_ms=0)


@pytest.mark.asyncio()
async def test_capture_page_maps_crash_errors() -> None:
    page = _FakePage(height=1000, screenshot_error=PlaywrightError("Target crashed"))
    with pytest.raises(BrowserCrashedError):
        await capture_page(cast(Any, page), device=DEVICE_PROFILES[Device.DESKTOP], quality=80, max_height=32_767, settle_ms=0)

    page = _FakePage(height=1000, screenshot_error=PlaywrightError("Unable to capture screenshot"))
    with pytest.raises(PlaywrightError) as excinfo:
        await capture_page(cast(Any, page), device=DEVICE_PROFILES[Device.DESKTOP], quality=80, max_height=32_767, settle_ms=0)
    assert not isinstance(excinfo.value, BrowserCrashedError)


@pytest.mark.asyncio()
async def test_capture_page_keeps_out_of_memory_crashes_distinct() -> None:
    page = _FakePage(height=1000, screenshot_error=PlaywrightError("Target crashed: Out of memory"))
    with pytest.raises(MemoryPressureError):
        await capture_page(cast(Any, page), device=DEVICE_PROFILES[Device.DESKTOP], quality=80, max_height=32_767, settle_ms=0)


def test_capture_result_data_uri() -> None:
    report = ReadinessReport(
        outcomes=[],
        final_state=ReadinessState.READY_FOR_CAPTURE,
        history=(ReadinessState.NAVIGATED, ReadinessState.READY_FOR_CAPTURE),
        framework=None,
        elapsed_ms=10,
    )
    result = CaptureResult(
        image_bytes=b"\xff\xd8" * 1024,
        width=1440,
        height=900,
        encoding_quality_used=80,
        elapsed_ms=1234,
        complexity_tier="low",
        url="https://example.com/",
        device="desktop",
        quality="medium",
        request_id="abc",
        document_height=900,
        height_clamped=False,
        readiness=report,
    )

    uri = result.to_data_uri()
    assert uri.startswith("data:image/jpeg;base64,")
    assert base64.b64decode(uri.split(",", 1)[1]) == result.image_bytes
    assert result.size_kb == 2
    assert result.framework is None
