"""Final capture geometry and JPEG encoding."""

from __future__ import annotations

import base64
import logging
import time
from dataclasses import dataclass, field

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

from websnap.errors import BrowserCrashedError, crash_error, is_crash_signal
from websnap.readiness import ReadinessReport
from websnap.request import DeviceProfile

LOGGER = logging.getLogger(__name__)

_SCROLL_TOP_SCRIPT = "() => window.scrollTo(0, 0)"

_DOCUMENT_METRICS_SCRIPT = """
() => {
    const body = document.body || document.documentElement;
    const html = document.documentElement;
    return {
        height: Math.max(
            body.scrollHeight, body.offsetHeight, body.clientHeight,
            html.scrollHeight, html.offsetHeight, html.clientHeight
        ),
        width: Math.max(
            body.scrollWidth, body.offsetWidth, body.clientWidth,
            html.scrollWidth, html.offsetWidth, html.clientWidth
        ),
    };
}
"""


@dataclass(slots=True, frozen=True)
class DocumentMetrics:
    """Rendered document size as reported by the DOM."""

    height: int
    width: int


@dataclass(slots=True, frozen=True)
class EncodedImage:
    """JPEG bytes plus the geometry used to produce them."""

    image_bytes: bytes
    width: int
    height: int
    quality: int
    document_height: int
    height_clamped: bool
    encode_ms: int


async def measure_document(page: Page) -> DocumentMetrics:
    """Return the largest of several DOM size metrics to avoid undercounting."""

    result = await page.evaluate(_DOCUMENT_METRICS_SCRIPT)
    return DocumentMetrics(
        height=int(result.get("height", 0) or 0),
        width=int(result.get("width", 0) or 0),
    )


def clamp_height(document_height: int, *, viewport_height: int, max_height: int) -> int:
    """Bound the capture height to ``[viewport_height, max_height]``."""

    return max(min(viewport_height, max_height), min(document_height, max_height))


def effective_quality(requested: int, ceiling: int) -> int:
    return max(1, min(requested, ceiling, 100))


async def capture_page(
    page: Page,
    *,
    device: DeviceProfile,
    quality: int,
    max_height: int,
    settle_ms: int,
    timeout_ms: int | None = None,
) -> EncodedImage:
    """Resize the viewport to the document, settle, and encode a full-page JPEG."""

    if page.is_closed():
        raise BrowserCrashedError("Page was closed before capture")

    try:
        # A cut-short lazy-load sweep can leave the page mid-document.
        await page.evaluate(_SCROLL_TOP_SCRIPT)
        metrics = await measure_document(page)
        height = clamp_height(metrics.height, viewport_height=device.height, max_height=max_height)
        clamped = height < metrics.height
        if clamped:
            LOGGER.info("Clamping capture height from %spx to %spx", metrics.height, height)
        await page.set_viewport_size({"width": device.width, "height": height})
        await page.wait_for_timeout(settle_ms)

        started = time.perf_counter()
        image_bytes = await page.screenshot(
            type="jpeg",
            quality=quality,
            # A clamped capture is exactly the resized viewport.
            full_page=not clamped,
            caret="hide",
            timeout=timeout_ms,
        )
    except PlaywrightError as exc:
        if page.is_closed() or is_crash_signal(exc):
            raise crash_error(f"Page closed during capture: {exc}", exc) from exc
        raise

    return EncodedImage(
        image_bytes=image_bytes,
        width=device.width,
        height=height,
        quality=quality,
        document_height=metrics.height,
        height_clamped=clamped,
        encode_ms=int((time.perf_counter() - started) * 1000),
    )


@dataclass(slots=True)
class CaptureResult:
    """Encoded capture plus the metadata reported to callers."""

    image_bytes: bytes
    width: int
    height: int
    encoding_quality_used: int
    elapsed_ms: int
    complexity_tier: str
    url: str
    device: str
    quality: str
    request_id: str
    document_height: int
    height_clamped: bool
    readiness: ReadinessReport
    blocked_requests: dict[str, int] = field(default_factory=dict)

    @property
    def framework(self) -> str | None:
        return self.readiness.framework

    @property
    def size_kb(self) -> int:
        return round(len(self.image_bytes) / 1024)

    def to_data_uri(self) -> str:
        encoded = base64.b64encode(self.image_bytes).decode("ascii")
        return f"data:image/jpeg;base64,{encoded}"
