"""Serialized access to the browser automation session.

All work that touches the browser goes through ``AutomationChannel.submit``.
A single worker drains a FIFO queue so exactly one task runs against the
session at a time. Failed tasks escalate through three tiers:

    tier 0  first attempt
    tier 1  immediate retry
    tier 2  session torn down, paused, restarted and re-authenticated,
            then two final attempts

After the last attempt the error propagates to the submitter and the
worker moves on to the next task.
"""

import asyncio
import contextvars
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Generic, TypeVar

from spotbot.exceptions import is_retryable
from spotbot.logging_config import get_logger, log_with_context
from spotbot.protocols import AutomationSessionProtocol

logger = get_logger(__name__)

T = TypeVar("T")

AutomationTask = Callable[[AutomationSessionProtocol], Awaitable[T]]
Reinitializer = Callable[[], Awaitable[Any]]

DEFAULT_RESET_DELAY = 2.0  # seconds
FINAL_TIER_ATTEMPTS = 2

# Set inside the worker so nested submissions run inline instead of deadlocking
_active_channel: contextvars.ContextVar["AutomationChannel | None"] = contextvars.ContextVar(
    "active_automation_channel", default=None
)


class RetryTier(IntEnum):
    """Escalation level of the task currently being executed."""

    FIRST_ATTEMPT = 0
    IMMEDIATE_RETRY = 1
    AFTER_RESET = 2


@dataclass
class _Submission(Generic[T]):
    task: AutomationTask[T]
    name: str
    future: asyncio.Future = field(repr=False)


class AutomationChannel:
    """Owns the automation session and runs tasks against it one at a time."""

    def __init__(
        self,
        session: AutomationSessionProtocol,
        reinitialize: Reinitializer | None = None,
        reset_delay: float = DEFAULT_RESET_DELAY,
    ):
        self._session = session
        self._reinitialize = reinitialize
        self._reset_delay = reset_delay
        self._queue: asyncio.Queue[_Submission[Any]] = asyncio.Queue()
        self._worker: asyncio.Task[None] | None = None
        self.resets = 0

    def set_reinitializer(self, reinitialize: Reinitializer) -> None:
        """Install the end-to-end credential reinitialization used by tier 2."""
        self._reinitialize = reinitialize

    @property
    def pending(self) -> int:
        """Tasks waiting behind the one currently executing."""
        return self._queue.qsize()

    @property
    def session_started(self) -> bool:
        return self._session.is_started

    async def submit(self, task: AutomationTask[T], name: str = "automation task") -> T:
        """Queue a task and wait for its result.

        Args:
            task: Coroutine function receiving the live session
            name: Name for logging

        Returns:
            Whatever the task returns

        Raises:
            The error of the task's last attempt.
        """
        if _active_channel.get() is self:
            # Already running on the worker; the session is ours.
            return await task(self._session)

        self._ensure_worker()
        future: asyncio.Future[T] = asyncio.get_running_loop().create_future()
        await self._queue.put(_Submission(task=task, name=name, future=future))
        return await future

    async def close(self) -> None:
        """Stop the worker and tear the session down."""
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None

        while not self._queue.empty():
            submission = self._queue.get_nowait()
            if not submission.future.done():
                submission.future.cancel()

        await self._session.quit()

    def _ensure_worker(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run_worker(), name="automation-channel")

    async def _run_worker(self) -> None:
        _active_channel.set(self)
        while True:
            submission = await self._queue.get()
            try:
                if submission.future.cancelled():
                    continue
                try:
                    result = await self._execute(submission)
                except asyncio.CancelledError:
                    if not submission.future.done():
                        submission.future.cancel()
                    raise
                except Exception as e:
                    if not submission.future.done():
                        submission.future.set_exception(e)
                else:
                    if not submission.future.done():
                        submission.future.set_result(result)
            finally:
                self._queue.task_done()

    async def _execute(self, submission: _Submission[T]) -> T:
        tier = RetryTier.FIRST_ATTEMPT
        final_attempts_left = FINAL_TIER_ATTEMPTS

        while True:
            try:
                if not self._session.is_started:
                    await self._session.start()
                return await submission.task(self._session)
            except Exception as e:
                if not is_retryable(e):
                    raise

                if tier is RetryTier.FIRST_ATTEMPT:
                    log_with_context(
                        logger,
                        "warning",
                        f"{submission.name} failed, retrying immediately",
                        error=str(e),
                        error_type=type(e).__name__,
                        event_type="automation_retry",
                    )
                    tier = RetryTier.IMMEDIATE_RETRY
                    continue

                if tier is RetryTier.IMMEDIATE_RETRY:
                    log_with_context(
                        logger,
                        "error",
                        f"{submission.name} failed twice, reinitializing automation session",
                        error=str(e),
                        error_type=type(e).__name__,
                        event_type="automation_reset",
                    )
                    await self._reset_session()
                    tier = RetryTier.AFTER_RESET
                    continue

                final_attempts_left -= 1
                if final_attempts_left <= 0:
                    log_with_context(
                        logger,
                        "error",
                        f"{submission.name} failed after session reset, giving up",
                        error=str(e),
                        error_type=type(e).__name__,
                        event_type="automation_exhausted",
                    )
                    raise
                log_with_context(
                    logger,
                    "warning",
                    f"{submission.name} failed after session reset, last attempt",
                    error=str(e),
                    event_type="automation_retry",
                )

    async def _reset_session(self) -> None:
        """Tear down, pause, restart and re-authenticate the session."""
        self.resets += 1
        await self._session.quit()
        await asyncio.sleep(self._reset_delay)

        try:
            await self._session.start()
            if self._reinitialize is not None:
                await self._reinitialize()
        except Exception as e:
            if not is_retryable(e):
                raise
            # The final attempts will surface the problem if it persists
            log_with_context(
                logger,
                "error",
                "Automation session reinitialization failed",
                error=str(e),
                error_type=type(e).__name__,
                event_type="automation_reinit_failed",
            )
