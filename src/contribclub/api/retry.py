import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
    wait_fixed,
)
from tenacity.wait import wait_base

logger = logging.getLogger(__name__)

T = TypeVar("T")


# --- Tenacity Callbacks ---
def log_retry(retry_state: RetryCallState):
    """Log retry attempts."""
    attempt = retry_state.attempt_number
    exception = retry_state.outcome.exception()
    wait_time = retry_state.next_action.sleep
    reason = f"exception {exception}" if exception else "pending result"
    logger.warning(
        f"Retrying attempt {attempt} after {reason}. Waiting {wait_time:.2f}s."
    )


def _last_outcome(retry_state: RetryCallState):
    # Re-raises the final exception, or hands back the final (still pending) result.
    return retry_state.outcome.result()


def _never(_: Any) -> bool:
    return False


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry for calls against an eventually-consistent upstream.

    ``retry_on`` lists exception types worth another attempt; ``retry_if`` is
    a predicate on the result that means "not ready yet, ask again". When the
    attempts run out the last result is returned or the last exception raised.
    """

    attempts: int
    wait: wait_base
    retry_on: tuple[type[BaseException], ...] = ()
    retry_if: Callable[[Any], bool] = field(default=_never)

    @classmethod
    def fixed(cls, attempts: int, delay: float, **kwargs) -> "RetryPolicy":
        return cls(attempts=attempts, wait=wait_fixed(delay), **kwargs)

    @classmethod
    def exponential(
        cls, attempts: int, *, minimum: float = 2, maximum: float = 10, **kwargs
    ) -> "RetryPolicy":
        return cls(
            attempts=attempts,
            wait=wait_exponential(multiplier=1, min=minimum, max=maximum),
            **kwargs,
        )

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(max(1, self.attempts)),
            wait=self.wait,
            retry=retry_if_exception_type(self.retry_on) | retry_if_result(self.retry_if),
            before_sleep=log_retry,
            retry_error_callback=_last_outcome,
        )

    async def call(self, fn: Callable[..., Awaitable[T]], *args, **kwargs) -> T:
        return await self._retrying()(fn, *args, **kwargs)
