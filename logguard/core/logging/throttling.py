"""Rate limiting and retry policies used by appenders."""

import time
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any, Generic, TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_fixed,
)

from .config import RetryConfig, ThrottlingConfig

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class RateLimiter(Generic[T]):
    """
    Fixed one-second window rate limiter.

    Items over the limit are either dropped or deferred to a later
    window, depending on the overflow policy. Deferred items are always
    released before newer ones so call order is preserved.
    """

    def __init__(
        self,
        max_per_second: int,
        overflow_policy: str = "drop",
        max_queue_size: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_per_second = max_per_second
        self.overflow_policy = overflow_policy
        self.max_queue_size = max_queue_size
        self._clock = clock
        self._window_start = clock()
        self._count = 0
        self._deferred: deque[T] = deque()
        self.dropped = 0

    @classmethod
    def from_config(cls, config: ThrottlingConfig | None) -> "RateLimiter | None":
        if config is None or config.max_per_second is None:
            return None
        return cls(
            max_per_second=config.max_per_second,
            overflow_policy=config.overflow_policy,
            max_queue_size=config.max_queue_size,
        )

    @property
    def pending(self) -> int:
        return len(self._deferred)

    def seconds_until_next_window(self) -> float:
        return max(0.0, 1.0 - (self._clock() - self._window_start))

    def _roll_window(self) -> None:
        now = self._clock()
        if now - self._window_start >= 1.0:
            self._window_start = now
            self._count = 0

    def _has_capacity(self) -> bool:
        return self._count < self.max_per_second

    def release(self) -> list[T]:
        """Release deferred items that fit in the current window."""
        self._roll_window()
        released = []
        while self._deferred and self._has_capacity():
            released.append(self._deferred.popleft())
            self._count += 1
        return released

    def offer(self, item: T) -> list[T]:
        """
        Submit an item and get back everything that may be emitted now.

        The returned list holds previously deferred items first, then
        ``item`` itself if it fits in the current window.
        """
        released = self.release()
        if not self._deferred and self._has_capacity():
            self._count += 1
            released.append(item)
            return released

        if self.overflow_policy == "queue" and len(self._deferred) < self.max_queue_size:
            self._deferred.append(item)
        else:
            self.dropped += 1
        return released

    def drain(self) -> list[T]:
        """Release every deferred item regardless of the limit."""
        items = list(self._deferred)
        self._deferred.clear()
        return items


def _log_retry(retry_state: RetryCallState) -> None:
    exception = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "Delivery attempt failed, retrying",
        attempt=retry_state.attempt_number,
        error=str(exception) if exception else None,
        next_delay=retry_state.next_action.sleep if retry_state.next_action else None,
    )


class RetryPolicy:
    """
    Bounded retry with fixed or exponential backoff, capped by ``max_delay``.

    Wraps tenacity so appenders can retry a coroutine without decorating
    it statically.
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        retry_on: tuple[type[BaseException], ...] = (Exception,),
    ):
        self.config = config or RetryConfig()
        self.retry_on = retry_on

    @classmethod
    def single_attempt(cls, retry_on: tuple[type[BaseException], ...] = (Exception,)) -> "RetryPolicy":
        return cls(RetryConfig(max_attempts=1), retry_on=retry_on)

    def _wait(self):
        if self.config.exponential:
            return wait_exponential(
                multiplier=self.config.initial_delay,
                exp_base=self.config.backoff_multiplier,
                max=self.config.max_delay,
            )
        return wait_fixed(min(self.config.initial_delay, self.config.max_delay))

    def delays(self) -> list[float]:
        """Backoff delays between consecutive attempts."""
        result = []
        delay = self.config.initial_delay
        for _ in range(self.config.max_attempts - 1):
            result.append(min(delay, self.config.max_delay))
            if self.config.exponential:
                delay *= self.config.backoff_multiplier
        return result

    def retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.config.max_attempts),
            wait=self._wait(),
            retry=retry_if_exception_type(self.retry_on),
            before_sleep=_log_retry,
            reraise=True,
        )

    async def call(self, fn: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> Any:
        """Await ``fn(*args, **kwargs)``, retrying on the configured exceptions."""
        async for attempt in self.retrying():
            with attempt:
                return await fn(*args, **kwargs)

