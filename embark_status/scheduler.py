"""
Retry scheduler: drive reconciliation on a fixed interval until it succeeds.

At most one attempt is outstanding at any time: a tick that fires while the
previous attempt is still running is skipped. The first successful attempt
stops the loop for good and fires ``on_success`` exactly once.

Depends on: config, models, utils
"""

import asyncio
import inspect
from typing import Awaitable, Callable, Optional

from embark_status.config import CONNECT_INTERVAL
from embark_status.models import ReconciliationAttempt
from embark_status.utils import Logger, default_log

AttemptFn = Callable[[], Awaitable[ReconciliationAttempt]]
SuccessFn = Callable[[ReconciliationAttempt], Optional[Awaitable[None]]]


class RetryScheduler:
    """Fixed-period retry loop with skip-if-in-flight."""

    def __init__(self, attempt_fn: AttemptFn, interval: float = CONNECT_INTERVAL,
                 on_success: Optional[SuccessFn] = None,
                 logger: Optional[Logger] = None):
        self._attempt_fn = attempt_fn
        self.interval = interval
        self._on_success = on_success
        self._log = logger or default_log
        self._loop_task: Optional[asyncio.Task] = None
        self._inflight: Optional[asyncio.Task] = None
        self._done = asyncio.Event()
        self._notified = False
        self.attempts = 0
        self.skipped_ticks = 0
        self.last_attempt: Optional[ReconciliationAttempt] = None

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def done(self) -> bool:
        """True once an attempt has succeeded. Never reset."""
        return self._done.is_set()

    @property
    def in_flight(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    def start(self) -> None:
        """Start the loop. No-op if already started or already succeeded."""
        if self._loop_task is not None or self.done:
            return
        self._loop_task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Cancel the loop. An attempt already in flight is left to finish."""
        if self._loop_task is not None and not self._loop_task.done():
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass

    async def wait(self, timeout: Optional[float] = None) -> bool:
        """Wait until an attempt succeeds. Returns False on timeout."""
        try:
            await asyncio.wait_for(self._done.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True

    def tick(self) -> bool:
        """Start an attempt unless one is outstanding. Returns True if started."""
        if self.done:
            return False
        if self.in_flight:
            self.skipped_ticks += 1
            self._log("Previous connection attempt still in flight, skipping this tick.", "trace")
            return False
        self.attempts += 1
        self._inflight = asyncio.create_task(self._attempt())
        return True

    async def _run(self) -> None:
        while not self.done:
            await asyncio.sleep(self.interval)
            self.tick()

    async def _attempt(self) -> None:
        try:
            attempt = await self._attempt_fn()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._log(f"Connection attempt crashed: {e!r}", "error")
            return

        self.last_attempt = attempt
        if not attempt.succeeded:
            self._log(attempt.diagnostic or "Connection attempt failed.", "error")
            return

        self._done.set()
        if self._loop_task is not None and self._loop_task is not asyncio.current_task():
            self._loop_task.cancel()
        await self._notify(attempt)

    async def _notify(self, attempt: ReconciliationAttempt) -> None:
        if self._notified or self._on_success is None:
            self._notified = True
            return
        self._notified = True
        try:
            result = self._on_success(attempt)
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._log(f"Post-connection handler failed: {e!r}", "error")
