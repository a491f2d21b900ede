"""Failure taxonomy and classification for capture requests."""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Pattern

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

__all__ = [
    "ErrorCategory",
    "ErrorOutcome",
    "CaptureError",
    "InvalidInputError",
    "NavigationTimeoutError",
    "DeadlineExceededError",
    "NavigationFailedError",
    "BrowserCrashedError",
    "MemoryPressureError",
    "LaunchFailedError",
    "CaptureFailed",
    "classify_error",
    "crash_error",
    "is_crash_signal",
]


class ErrorCategory(str, Enum):
    """Closed set of failure categories surfaced to callers."""

    INVALID_INPUT = "InvalidInput"
    NAVIGATION_TIMEOUT = "NavigationTimeout"
    NAVIGATION_FAILED = "NavigationFailed"
    BROWSER_CRASHED = "BrowserCrashed"
    MEMORY_PRESSURE = "MemoryPressure"
    LAUNCH_FAILED = "LaunchFailed"
    UNKNOWN = "Unknown"


@dataclass(frozen=True, slots=True)
class _CategoryPolicy:
    user_message: str
    retryable: bool
    status_code: int


_POLICIES: Mapping[ErrorCategory, _CategoryPolicy] = {
    ErrorCategory.INVALID_INPUT: _CategoryPolicy(
        "Invalid request. Provide a valid URL (e.g. https://example.com) and a supported device and quality.",
        retryable=False,
        status_code=400,
    ),
    ErrorCategory.NAVIGATION_TIMEOUT: _CategoryPolicy(
        "The page took too long to load. Try again or capture a simpler page.",
        retryable=True,
        status_code=504,
    ),
    ErrorCategory.NAVIGATION_FAILED: _CategoryPolicy(
        "The page could not be reached. Verify the URL is correct and the site is accessible.",
        retryable=False,
        status_code=502,
    ),
    ErrorCategory.BROWSER_CRASHED: _CategoryPolicy(
        "The browser connection was lost while rendering. Please try again.",
        retryable=True,
        status_code=503,
    ),
    ErrorCategory.MEMORY_PRESSURE: _CategoryPolicy(
        "The page exhausted the renderer's memory budget. Retry later or capture a lighter page.",
        retryable=True,
        status_code=503,
    ),
    ErrorCategory.LAUNCH_FAILED: _CategoryPolicy(
        "The browser could not be started. This is a server configuration issue.",
        retryable=False,
        status_code=503,
    ),
    ErrorCategory.UNKNOWN: _CategoryPolicy(
        "Screenshot generation failed unexpectedly.",
        retryable=False,
        status_code=500,
    ),
}


@dataclass(frozen=True, slots=True)
class ErrorOutcome:
    """Fully populated failure description returned to callers."""

    category: ErrorCategory
    user_message: str
    retryable: bool
    detail: str
    status_code: int

    @classmethod
    def for_category(cls, category: ErrorCategory, detail: str = "") -> "ErrorOutcome":
        policy = _POLICIES[category]
        return cls(
            category=category,
            user_message=policy.user_message,
            retryable=policy.retryable,
            detail=detail or category.value,
            status_code=policy.status_code,
        )


class CaptureError(Exception):
    """Base class for failures raised by the capture pipeline."""

    category: ErrorCategory = ErrorCategory.UNKNOWN


class InvalidInputError(CaptureError, ValueError):
    category = ErrorCategory.INVALID_INPUT


class NavigationTimeoutError(CaptureError):
    category = ErrorCategory.NAVIGATION_TIMEOUT


class DeadlineExceededError(NavigationTimeoutError):
    """The overall request budget expired, whichever stage was running."""


class NavigationFailedError(CaptureError):
    category = ErrorCategory.NAVIGATION_FAILED


class BrowserCrashedError(CaptureError):
    category = ErrorCategory.BROWSER_CRASHED


class MemoryPressureError(BrowserCrashedError):
    category = ErrorCategory.MEMORY_PRESSURE


class LaunchFailedError(CaptureError):
    category = ErrorCategory.LAUNCH_FAILED


class CaptureFailed(Exception):
    """Raised by the service once a failure has been classified."""

    def __init__(self, outcome: ErrorOutcome) -> None:
        super().__init__(f"{outcome.category.value}: {outcome.detail}")
        self.outcome = outcome


# Signature families, checked in order. The more specific memory family wins
# over the generic crash family.
_SIGNATURES: tuple[tuple[ErrorCategory, Pattern[str]], ...] = (
    (
        ErrorCategory.MEMORY_PRESSURE,
        re.compile(r"out of memory|\boom\b|enomem|heap limit|allocation failed|aw, snap", re.IGNORECASE),
    ),
    (
        ErrorCategory.LAUNCH_FAILED,
        re.compile(
            r"executable doesn't exist|failed to launch|browser launch|chrome executable|browsertype\.launch",
            re.IGNORECASE,
        ),
    ),
    (
        ErrorCategory.BROWSER_CRASHED,
        re.compile(
            r"target (page, context or browser )?(has been )?closed|target crashed|page crashed"
            r"|protocol error|browser has been closed|connection closed|browser closed|websocket",
            re.IGNORECASE,
        ),
    ),
    (
        ErrorCategory.NAVIGATION_FAILED,
        re.compile(
            r"net::err_|ns_error_|name not resolved|could not resolve|connection refused"
            r"|ssl_protocol|cert_|navigation failed|failed to load",
            re.IGNORECASE,
        ),
    ),
    (
        ErrorCategory.NAVIGATION_TIMEOUT,
        re.compile(r"timeout .*exceeded|timed out", re.IGNORECASE),
    ),
)


def is_crash_signal(exc: BaseException) -> bool:
    """Return True when the error indicates the browser or page went away."""

    if isinstance(exc, BrowserCrashedError):
        return True
    if not isinstance(exc, PlaywrightError):
        return False
    return _match_signature(str(exc)) in (ErrorCategory.BROWSER_CRASHED, ErrorCategory.MEMORY_PRESSURE)


def crash_error(message: str, exc: BaseException) -> BrowserCrashedError:
    """Wrap a lost-browser failure, keeping the memory family when the message shows it."""

    if isinstance(exc, MemoryPressureError) or _match_signature(str(exc)) is ErrorCategory.MEMORY_PRESSURE:
        return MemoryPressureError(message)
    return BrowserCrashedError(message)


def classify_error(
    exc: BaseException,
    *,
    session_crashed: bool = False,
    memory_pressure: bool = False,
) -> ErrorOutcome:
    """Map any pipeline failure onto the closed taxonomy.

    Typed pipeline errors keep their category. Library errors are matched by
    signature family. Crash conditions are promoted to ``MemoryPressure`` when
    the host reported memory pressure at the time of the failure.
    """

    detail = str(exc) or type(exc).__name__
    category = _category_for(exc)
    if category is ErrorCategory.UNKNOWN and session_crashed:
        category = ErrorCategory.BROWSER_CRASHED
    if category is ErrorCategory.BROWSER_CRASHED and memory_pressure:
        category = ErrorCategory.MEMORY_PRESSURE
    return ErrorOutcome.for_category(category, detail)


def _category_for(exc: BaseException) -> ErrorCategory:
    if isinstance(exc, CaptureError):
        return exc.category
    if isinstance(exc, (PlaywrightTimeoutError, asyncio.TimeoutError)):
        return ErrorCategory.NAVIGATION_TIMEOUT
    if isinstance(exc, PlaywrightError):
        return _match_signature(str(exc))
    if isinstance(exc, MemoryError):
        return ErrorCategory.MEMORY_PRESSURE
    if isinstance(exc, (ConnectionError, EOFError)):
        return ErrorCategory.BROWSER_CRASHED
    return ErrorCategory.UNKNOWN


def _match_signature(message: str) -> ErrorCategory:
    for category, pattern in _SIGNATURES:
        if pattern.search(message):
            return category
    return ErrorCategory.UNKNOWN
