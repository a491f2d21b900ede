"""One isolated Chromium process plus one page, scoped to a single request."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Protocol

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError

from websnap import metrics
from websnap.deadline import Deadline
from websnap.errors import BrowserCrashedError, LaunchFailedError, crash_error
from websnap.request import DeviceProfile
from websnap.settings import BrowserSettings

LOGGER = logging.getLogger(__name__)

CHROMIUM_BASE_ARGS: tuple[str, ...] = (
    "--disable-gpu",
    "--disable-software-rasterizer",
    "--disable-dev-shm-usage",
    "--disable-extensions",
    "--disable-plugins",
    "--disable-background-networking",
    "--disable-background-timer-throttling",
    "--disable-backgrounding-occluded-windows",
    "--disable-renderer-backgrounding",
    "--disable-ipc-flooding-protection",
    "--disable-hang-monitor",
    "--disable-features=TranslateUI,AudioServiceOutOfProcess",
    "--disable-sync",
    "--disable-default-apps",
    "--disable-popup-blocking",
    "--disable-client-side-phishing-detection",
    "--disable-domain-reliability",
    "--no-first-run",
    "--no-default-browser-check",
    "--mute-audio",
    "--run-all-compositor-stages-before-draw",
)

_HARDENING_SCRIPT = """
Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
try {
    Object.defineProperty(window, 'ethereum', {
        get: () => undefined,
        set: () => {},
        configurable: false,
    });
} catch (err) {}
"""

Sleep = Callable[[float], Awaitable[None]]


class BrowserLauncher(Protocol):
    """Starts browser processes; the binary location is injected, never discovered."""

    async def launch(self, **options: Any) -> Browser: ...

    async def stop(self) -> None: ...


class PlaywrightLauncher:
    """Default launcher driving Playwright's bundled or configured Chromium."""

    def __init__(self) -> None:
        self._playwright: Playwright | None = None

    async def launch(self, **options: Any) -> Browser:
        if self._playwright is None:
            self._playwright = await async_playwright().start()
        return await self._playwright.chromium.launch(**options)

    async def stop(self) -> None:
        playwright, self._playwright = self._playwright, None
        if playwright is not None:
            await playwright.stop()


def chromium_args(settings: BrowserSettings) -> list[str]:
    """Return the deterministic Chromium flag set for constrained hosts."""

    args = list(CHROMIUM_BASE_ARGS)
    if settings.no_sandbox:
        args.extend(["--no-sandbox", "--disable-setuid-sandbox"])
    if settings.single_process:
        args.extend(["--single-process", "--no-zygote"])
    args.append(f"--js-flags=--max-old-space-size={settings.js_heap_mb}")
    args.extend(settings.extra_args)
    # Preserve order while deduplicating
    return list(dict.fromkeys(args))


class RenderSession:
    """Own a browser process and its page for exactly one capture.

    ``close()`` is idempotent and never raises, so it can be called from the
    deadline's forced-cleanup path and again from the normal exit path.
    """

    def __init__(
        self,
        *,
        request_id: str,
        device: DeviceProfile,
        settings: BrowserSettings,
        deadline: Deadline | None = None,
        launcher: BrowserLauncher | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.request_id = request_id
        self.device = device
        self.settings = settings
        self.deadline = deadline
        self.started_at = time.monotonic()
        self.launch_attempts = 0
        self._launcher = launcher or PlaywrightLauncher()
        self._sleep = sleep
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None
        self._page: Page | None = None
        self._crashed = False
        self._closed = False
        self._close_task: asyncio.Task[None] | None = None

    @property
    def browser(self) -> Browser | None:
        return self._browser

    @property
    def page(self) -> Page | None:
        return self._page

    @property
    def crashed(self) -> bool:
        return self._crashed

    @property
    def closed(self) -> bool:
        return self._closed

    async def __aenter__(self) -> "RenderSession":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def launch(self) -> "RenderSession":
        """Start the browser, retrying with linear backoff before giving up."""

        attempts = self.settings.launch_attempts
        last_error: BaseException | None = None
        for attempt in range(1, attempts + 1):
            if self.deadline is not None:
                self.deadline.enter("launch")
            if self._closed:
                raise LaunchFailedError("Session closed before the browser started")
            self.launch_attempts = attempt
            try:
                browser = await self._launcher.launch(**self._launch_options())
            except (PlaywrightError, OSError) as exc:
                last_error = exc
                metrics.record_launch_attempt("error")
                LOGGER.warning(
                    "Browser launch attempt %s/%s failed: %s",
                    attempt,
                    attempts,
                    exc,
                    extra={"request_id": self.request_id},
                )
                if attempt < attempts:
                    await self._backoff(attempt)
                continue

            metrics.record_launch_attempt("ok")
            if self._closed:
                # Forced cleanup ran while the process was spawning.
                await _quietly(browser.close(), self.settings.close_timeout_ms, "late browser")
                raise LaunchFailedError("Session closed while the browser was starting")
            self._browser = browser
            browser.on("disconnected", self._on_disconnected)
            LOGGER.info(
                "Browser launched on attempt %s",
                attempt,
                extra={"request_id": self.request_id},
            )
            return self

        raise LaunchFailedError(f"Browser launch failed after {attempts} attempts: {last_error}") from last_error

    async def open_page(self) -> Page:
        """Create the device-shaped context and page."""

        if self._browser is None or self._closed:
            raise BrowserCrashedError("Browser is not running")
        try:
            self._context = await self._browser.new_context(
                viewport={"width": self.device.width, "height": self.device.height},
                user_agent=self.device.user_agent,
                device_scale_factor=1,
                is_mobile=self.device.is_mobile,
                has_touch=self.device.has_touch,
                ignore_https_errors=True,
                locale="en-US",
                reduced_motion="reduce" if self.settings.reduced_motion else "no-preference",
            )
            page = await self._context.new_page()
            await page.add_init_script(_HARDENING_SCRIPT)
        except PlaywrightError as exc:
            raise crash_error(f"Could not open page: {exc}", exc) from exc

        page.on("crash", self._on_crash)
        page.on("pageerror", self._on_page_error)
        self._page = page
        return page

    async def close(self) -> None:
        """Terminate the browser process; safe to call any number of times.

        The shutdown runs as its own task. A caller that stops waiting (the
        deadline's grace period, a cancelled request) does not abort it, and
        later calls wait for the same shutdown to finish.
        """

        if self._close_task is None:
            self._closed = True
            self._close_task = asyncio.ensure_future(self._shutdown())
        await asyncio.shield(self._close_task)

    async def _shutdown(self) -> None:
        timeout_ms = self.settings.close_timeout_ms
        browser, self._browser = self._browser, None
        self._context = None
        self._page = None
        try:
            if browser is not None:
                await _quietly(browser.close(), timeout_ms, "browser")
        finally:
            await _quietly(self._launcher.stop(), timeout_ms, "playwright driver")
        LOGGER.info(
            "Render session closed after %.0fms",
            (time.monotonic() - self.started_at) * 1000,
            extra={"request_id": self.request_id},
        )

    def _launch_options(self) -> dict[str, Any]:
        timeout_ms = self.settings.launch_timeout_ms
        if self.deadline is not None:
            timeout_ms = self.deadline.bound(timeout_ms)
        options: dict[str, Any] = {
            "headless": self.settings.headless,
            "args": chromium_args(self.settings),
            "timeout": timeout_ms,
        }
        if self.settings.executable_path:
            options["executable_path"] = self.settings.executable_path
        elif self.settings.channel:
            options["channel"] = self.settings.channel
        return options

    async def _backoff(self, attempt: int) -> None:
        delay_ms = self.settings.launch_backoff_ms * attempt
        if self.deadline is not None:
            delay_ms = min(delay_ms, self.deadline.remaining_ms())
        await self._sleep(delay_ms / 1000)

    def _on_disconnected(self, *_: object) -> None:
        if not self._closed:
            self._crashed = True
            LOGGER.warning("Browser disconnected unexpectedly", extra={"request_id": self.request_id})

    def _on_crash(self, *_: object) -> None:
        self._crashed = True
        LOGGER.warning("Page crashed", extra={"request_id": self.request_id})

    def _on_page_error(self, error: object) -> None:
        LOGGER.debug("Page script error: %s", error, extra={"request_id": self.request_id})


async def _quietly(awaitable: Awaitable[object], timeout_ms: int, label: str) -> None:
    # Cleanup must never mask the pipeline failure or block the response.
    try:
        await asyncio.wait_for(awaitable, timeout=timeout_ms / 1000)
    except asyncio.TimeoutError:
        LOGGER.warning("Closing %s timed out after %sms", label, timeout_ms)
    except Exception as exc:  # noqa: BLE001 - cleanup failures are logged, not raised
        LOGGER.warning("Closing %s failed: %s", label, exc)
