"""Bounded retry for individual remote calls.

Every official-API and web-player call goes through ``with_retry``. An
``UnauthorizedError`` triggers re-authentication of the credential kind it
names before the next attempt; non-retryable errors propagate immediately;
on exhaustion the last underlying error is re-raised unchanged.
"""

import asyncio
import functools
from collections.abc import Awaitable, Callable
from typing import Any, ParamSpec, TypeVar

from spotbot.exceptions import UnauthorizedError, is_retryable
from spotbot.logging_config import get_logger, log_with_context
from spotbot.models import CredentialKind

logger = get_logger(__name__)

DEFAULT_RETRIES = 5
INITIAL_BACKOFF = 0.25  # seconds
MAX_BACKOFF = 5.0  # seconds

T = TypeVar("T")
P = ParamSpec("P")

Reauthenticate = Callable[[CredentialKind], Awaitable[Any]]


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    operation_name: str,
    retries: int = DEFAULT_RETRIES,
    reauthenticate: Reauthenticate | None = None,
    initial_backoff: float = INITIAL_BACKOFF,
) -> T:
    """Run an async operation, retrying up to ``retries`` more times.

    Args:
        operation: Zero-argument coroutine function performing one remote call
        operation_name: Name for logging
        retries: Attempts remaining after the first one
        reauthenticate: Repair action run on UnauthorizedError
        initial_backoff: Delay before the first retry, doubled per attempt

    Returns:
        Result of operation

    Raises:
        The final underlying error once attempts are exhausted, or any
        non-retryable error straight away.
    """
    remaining = retries
    backoff = initial_backoff

    while True:
        try:
            return await operation()
        except Exception as e:
            if not is_retryable(e):
                raise

            if remaining <= 0:
                log_with_context(
                    logger,
                    "error",
                    f"{operation_name} failed, giving up",
                    attempts=retries + 1,
                    error=str(e),
                    error_type=type(e).__name__,
                    event_type="retry_exhausted",
                )
                raise

            log_with_context(
                logger,
                "warning",
                f"{operation_name} failed, retrying",
                remaining=remaining,
                error=str(e),
                error_type=type(e).__name__,
                event_type="retry_attempt",
            )

            if isinstance(e, UnauthorizedError) and reauthenticate is not None:
                await reauthenticate(CredentialKind(e.credential_kind))

            remaining -= 1
            if backoff > 0:
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, MAX_BACKOFF)


def retrying(operation_name: str) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Decorate a client coroutine method with ``with_retry``.

    The instance must expose ``credentials`` (a CredentialLifecycle) and
    ``retries``; the lifecycle's ``reauthenticate`` is the repair action.
    """

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            client = args[0]
            return await with_retry(
                lambda: func(*args, **kwargs),
                operation_name,
                retries=getattr(client, "retries", DEFAULT_RETRIES),
                reauthenticate=client.credentials.reauthenticate,  # type: ignore[attr-defined]
                initial_backoff=getattr(client, "retry_backoff", INITIAL_BACKOFF),
            )

        return wrapper

    return decorator
