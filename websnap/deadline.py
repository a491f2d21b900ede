"""Single absolute wall-clock budget wrapped around a capture pipeline."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, TypeVar

from websnap.errors import DeadlineExceededError
from websnap.settings import DeadlineSettings

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")
Clock = Callable[[], float]


class Deadline:
    """Absolute deadline shared by every await of one request.

    Inner waits clamp their own timeouts with :meth:`bound`; only the outer
    deadline firing inside :meth:`run` is terminal.
    """

    def __init__(self, budget_ms: int, *, grace_ms: int = 2_000, clock: Clock = time.monotonic) -> None:
        if budget_ms <= 0:
            raise ValueError("budget_ms must be positive")
        self._clock = clock
        self.budget_ms = budget_ms
        self.grace_ms = grace_ms
        self.started_at = clock()
        self.deadline_at = self.started_at + budget_ms / 1000
        self.stage = "starting"
        self._fired = False

    @classmethod
    def start(cls, settings: DeadlineSettings, *, clock: Clock = time.monotonic) -> "Deadline":
        return cls(settings.effective_budget_ms, grace_ms=settings.grace_ms, clock=clock)

    @property
    def fired(self) -> bool:
        return self._fired

    @property
    def expired(self) -> bool:
        return self._fired or self._clock() >= self.deadline_at

    def elapsed_ms(self) -> int:
        return int((self._clock() - self.started_at) * 1000)

    def remaining_ms(self) -> int:
        return max(0, int((self.deadline_at - self._clock()) * 1000))

    def bound(self, timeout_ms: int) -> int:
        """Clamp an inner timeout to the remaining budget (never 0, which means "forever")."""

        return max(1, min(timeout_ms, self.remaining_ms()))

    def enter(self, stage: str) -> None:
        """Record the active stage and refuse to start work after expiry."""

        self.stage = stage
        if self.expired:
            raise DeadlineExceededError(self._describe())

    async def run(
        self,
        factory: Callable[[], Awaitable[T]],
        *,
        on_expire: Callable[[], Awaitable[object]],
    ) -> T:
        """Run ``factory()`` under the deadline.

        On expiry ``on_expire`` runs first (it must force-terminate whatever the
        pipeline is blocked on), then the pipeline task is cancelled and given
        ``grace_ms`` to unwind before ``DeadlineExceededError`` is raised.
        """

        task: asyncio.Future[T] = asyncio.ensure_future(factory())
        try:
            done, _ = await asyncio.wait({task}, timeout=self.remaining_ms() / 1000)
        except asyncio.CancelledError:
            task.cancel()
            raise
        if task in done:
            return task.result()

        self._fired = True
        LOGGER.error("Overall deadline of %sms exceeded during %s", self.budget_ms, self.stage)
        grace_s = self.grace_ms / 1000
        try:
            await asyncio.wait_for(on_expire(), timeout=grace_s)
        except asyncio.TimeoutError:
            LOGGER.warning("Forced cleanup did not finish within %sms", self.grace_ms)

        task.cancel()
        await asyncio.wait({task}, timeout=grace_s)
        if not task.done():
            LOGGER.warning("Pipeline did not unwind within %sms after cancellation", self.grace_ms)
        elif not task.cancelled() and task.exception() is not None:
            LOGGER.debug("Pipeline failed after deadline: %s", task.exception())
        raise DeadlineExceededError(self._describe())

    def _describe(self) -> str:
        return f"Overall deadline of {self.budget_ms}ms exceeded during {self.stage}"
