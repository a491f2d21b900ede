"""Per-request sub-resource filtering installed before navigation."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from urllib.parse import urlsplit

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page, Route

from websnap import metrics

LOGGER = logging.getLogger(__name__)

# Types the page cannot render without; never aborted regardless of tier.
PROTECTED_RESOURCE_TYPES: frozenset[str] = frozenset({"document", "stylesheet", "script"})

MEDIA_EXTENSIONS: tuple[str, ...] = (
    ".mp4",
    ".webm",
    ".m4v",
    ".mov",
    ".avi",
    ".mkv",
    ".m3u8",
    ".mp3",
    ".wav",
    ".ogg",
    ".flac",
    ".aac",
)

TRACKING_MARKERS: tuple[str, ...] = (
    "google-analytics.com",
    "analytics.google.com",
    "googletagmanager.com",
    "doubleclick.net",
    "facebook.net",
    "connect.facebook.com",
    "hotjar.com",
    "segment.io",
    "mixpanel.com",
    "/analytics",
    "/tracking",
    "/collect?",
    "/beacon",
)


@dataclass(frozen=True, slots=True)
class ResourcePolicy:
    """Blocklist applied to every sub-request of one capture."""

    name: str
    blocked_types: frozenset[str] = frozenset({"media"})
    blocked_extensions: tuple[str, ...] = MEDIA_EXTENSIONS
    blocked_markers: tuple[str, ...] = ()


LOW_POLICY = ResourcePolicy(name="minimal")
MEDIUM_POLICY = ResourcePolicy(name="partial", blocked_markers=TRACKING_MARKERS)
HIGH_POLICY = ResourcePolicy(
    name="aggressive",
    blocked_types=frozenset({"media", "font", "other"}),
    blocked_markers=TRACKING_MARKERS,
)


@dataclass(slots=True)
class GateStats:
    """Counters collected while the gate is installed."""

    allowed: int = 0
    blocked: dict[str, int] = field(default_factory=dict)

    @property
    def blocked_total(self) -> int:
        return sum(self.blocked.values())

    def record(self, reason: str | None) -> None:
        if reason is None:
            self.allowed += 1
            return
        self.blocked[reason] = self.blocked.get(reason, 0) + 1


def block_reason(
    resource_type: str,
    url: str,
    *,
    is_navigation: bool,
    policy: ResourcePolicy,
) -> str | None:
    """Return why a request should be aborted, or ``None`` to let it through."""

    if is_navigation or resource_type in PROTECTED_RESOURCE_TYPES:
        return None
    if resource_type in policy.blocked_types:
        return f"type:{resource_type}"

    lowered = url.lower()
    path = urlsplit(lowered).path
    if path.endswith(policy.blocked_extensions):
        return "media-file"
    for marker in policy.blocked_markers:
        if marker in lowered:
            return "tracking"
    return None


def should_block(resource_type: str, url: str, *, is_navigation: bool, policy: ResourcePolicy) -> bool:
    return block_reason(resource_type, url, is_navigation=is_navigation, policy=policy) is not None


async def install_resource_gate(page: Page, policy: ResourcePolicy) -> GateStats:
    """Route every request of ``page`` through the policy; return live counters."""

    stats = GateStats()

    async def _handle(route: Route) -> None:
        request = route.request
        reason = block_reason(
            request.resource_type,
            request.url,
            is_navigation=request.is_navigation_request(),
            policy=policy,
        )
        stats.record(reason)
        try:
            if reason is None:
                await route.continue_()
            else:
                metrics.record_blocked_request(reason)
                await route.abort()
        except PlaywrightError as exc:
            # The page may already be gone when a late request settles.
            LOGGER.debug("Route for %s not settled: %s", request.url[:120], exc)

    await page.route("**/*", _handle)
    LOGGER.debug("Resource gate installed", extra={"policy": policy.name})
    return stats
