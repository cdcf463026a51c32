# graphmode/retry.py
import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, Union

from tenacity import AsyncRetrying, RetryCallState, RetryError, retry_if_exception_type, stop_after_attempt

from .errors import ConfigurationError, RetryExhausted

logger = logging.getLogger(__name__)

Operation = Callable[[], Union[Any, Awaitable[Any]]]


class RetryPolicy:
    """Bounded retry with superlinear backoff.

    After failed attempt ``n`` the policy waits ``base_delay * (n + 1) ** 2``
    seconds, so with the default one second base the waits are 4s, 9s, 16s...
    Every exception is retried; there is no transient/fatal classification.
    """

    def __init__(self, max_attempts: int = 3, base_delay: float = 1.0,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        if max_attempts < 1:
            raise ConfigurationError(f"max_attempts must be >= 1, got {max_attempts}")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.sleep = sleep

    def backoff(self, attempt: int) -> float:
        return self.base_delay * (attempt + 1) ** 2

    def _wait(self, retry_state: RetryCallState) -> float:
        return self.backoff(retry_state.attempt_number)

    def _log_retry(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0
        logger.warning("attempt %d/%d failed (%s); retrying in %.2fs",
                       retry_state.attempt_number, self.max_attempts, exc, delay)

    async def call(self, operation: Operation, node_type: Optional[str] = None) -> Any:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self._wait,
            retry=retry_if_exception_type(Exception),
            sleep=self.sleep,
            before_sleep=self._log_retry,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    result = operation()
                    if inspect.isawaitable(result):
                        result = await result
                    return result
        except RetryError as err:
            last = err.last_attempt.exception()
            message = str(last) or last.__class__.__name__
            raise RetryExhausted(message, attempts=self.max_attempts, last_error=last,
                                 node_type=node_type) from last


async def retry(operation: Operation, max_attempts: int = 3) -> Any:
    return await RetryPolicy(max_attempts=max_attempts).call(operation)
