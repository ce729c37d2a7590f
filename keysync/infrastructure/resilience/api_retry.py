"""Service for executing remote calls with automatic retries.

Retries only rate-limit rejections (429), waiting for the cooldown the
service suggests or, failing that, an exponential backoff. Every other
failure propagates on the first attempt. Waits honor an optional deadline
and an optional cancellation event.
"""

import logging
import asyncio
import time
from typing import Any, Awaitable, Callable, Coroutine, Optional

from keysync.domain.errors import (
    MaxRetryError,
    OperationCancelledError,
    OperationTimedOutError,
    RateLimitedError,
)
from keysync.domain.events.api_events import (
    ApiCallCancelled,
    ApiCallFailed,
    ApiCallInitiated,
    ApiCallSucceeded,
    DomainEvent,
    RetryScheduled,
)
from keysync.domain.models.common import BackoffPolicy

logger = logging.getLogger(__name__)

EventSink = Callable[[DomainEvent], None]
Sleeper = Callable[[float], Awaitable[None]]


def log_event(event: DomainEvent) -> None:
    """Default event sink: events only show up in debug logs."""
    logger.debug(f"EVENT: {event}")


# --- Retry Service ---

class ApiRetryService:
    """Handles remote call execution with rate-limit retries and cancellation."""

    def __init__(
        self,
        max_retries: int = 5,
        initial_backoff_s: float = 1.0,
        backoff_factor: float = 2.0,
        max_backoff_s: float = 60.0,
        max_elapsed_s: Optional[float] = None,
        event_sink: Optional[EventSink] = None,
        sleep: Optional[Sleeper] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        """Initializes the ApiRetryService.

        Args:
            max_retries: Maximum number of retry attempts after the first call.
            initial_backoff_s: Delay for the first retry when the service gives no hint.
            backoff_factor: Multiplier for the unhinted delay (e.g., 2 for exponential).
            max_backoff_s: Upper bound for the unhinted exponential wait. Service hints
                are honored as given; the deadline still bounds them.
            max_elapsed_s: Overall time budget per call, None for no limit.
            event_sink: Receives domain events; defaults to debug logging.
            sleep: Coroutine used to wait; defaults to asyncio.sleep. Only used when
                no cancel_event is passed to execute_with_retry.
            clock: Monotonic clock; defaults to time.monotonic.
        """
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self.max_retries = max_retries
        self.initial_backoff_s = initial_backoff_s
        self.backoff_factor = backoff_factor
        self.max_backoff_s = max_backoff_s
        self.max_elapsed_s = max_elapsed_s
        self.event_sink = event_sink or log_event
        self._sleep = sleep or asyncio.sleep
        self._clock = clock or time.monotonic

        logger.info(
            f"ApiRetryService initialized: max_retries={max_retries}, "
            f"initial_backoff={initial_backoff_s}s, factor={backoff_factor}, "
            f"max_backoff={max_backoff_s}s, max_elapsed={max_elapsed_s}"
        )

    @classmethod
    def from_policy(cls, policy: BackoffPolicy, **kwargs: Any) -> "ApiRetryService":
        """Builds a service from a BackoffPolicy value object."""
        return cls(
            max_retries=policy["max_retries"],
            initial_backoff_s=policy["initial_delay"],
            backoff_factor=policy["factor"],
            max_backoff_s=policy["max_delay"],
            max_elapsed_s=policy["max_elapsed"],
            **kwargs,
        )

    def compute_delay(self, error: RateLimitedError, retry_index: int) -> float:
        """Returns how long to wait before retry number retry_index (0-based)."""
        if error.retry_after is not None and error.retry_after >= 0:
            return error.retry_after
        delay = self.initial_backoff_s * (self.backoff_factor ** retry_index)
        return min(delay, self.max_backoff_s)

    async def execute_with_retry(
        self,
        func: Callable[..., Coroutine[Any, Any, Any]],
        *args: Any,
        endpoint_name: Optional[str] = None,
        timeout_s: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None,
        **kwargs: Any
    ) -> Any:
        """Executes an async function, retrying while it is rate limited.

        Args:
            func: The async function (remote call) to execute.
            *args: Positional arguments for the function.
            endpoint_name: Name used in logs and events (defaults to func.__name__).
            timeout_s: Deadline for this call, tightened by max_elapsed_s.
            cancel_event: When set during a backoff wait, the wait is abandoned.
            **kwargs: Keyword arguments for the function.

        Returns:
            The result of the function call.

        Raises:
            MaxRetryError: If the call is still rate limited after max_retries.
            OperationTimedOutError: If the deadline is reached.
            OperationCancelledError: If cancel_event is set while waiting.
            Exception: Any non rate-limit error, on its first occurrence.
        """
        effective_endpoint = endpoint_name or getattr(func, "__name__", "call")
        deadline = self._deadline(timeout_s)
        last_exception: Optional[RateLimitedError] = None
        total_attempts = self.max_retries + 1

        for attempt in range(total_attempts):
            if cancel_event is not None and cancel_event.is_set():
                self._abandon(effective_endpoint, "cancelled", attempt)
                raise OperationCancelledError(
                    f"{effective_endpoint} cancelled before attempt {attempt + 1}", last_exception
                )

            self.event_sink(ApiCallInitiated(endpoint=effective_endpoint, attempt_number=attempt + 1))
            start_time = time.perf_counter()
            try:
                result = await self._invoke(func, args, kwargs, deadline, effective_endpoint, attempt, last_exception)
            except RateLimitedError as e:
                last_exception = e
            except asyncio.CancelledError:
                logger.warning(f"{effective_endpoint} task cancelled on attempt {attempt + 1}")
                self._abandon(effective_endpoint, "cancelled", attempt + 1)
                raise
            except OperationCancelledError:
                raise
            except Exception as e:
                logger.error(f"Non-retryable error calling {effective_endpoint} on attempt {attempt + 1}: {e}")
                self.event_sink(ApiCallFailed(
                    endpoint=effective_endpoint, error_type=type(e).__name__,
                    error_message=str(e), attempts=attempt + 1,
                ))
                raise
            else:
                latency_ms = (time.perf_counter() - start_time) * 1000
                self.event_sink(ApiCallSucceeded(endpoint=effective_endpoint, latency_ms=latency_ms, attempts=attempt + 1))
                if attempt:
                    logger.info(f"{effective_endpoint} succeeded after {attempt + 1} attempts")
                return result

            if attempt >= self.max_retries:
                break

            delay = self.compute_delay(last_exception, attempt)
            if deadline is not None and self._clock() + delay > deadline:
                logger.error(
                    f"{effective_endpoint} rate limited and a {delay:.2f}s wait would pass the deadline. Giving up."
                )
                self._abandon(effective_endpoint, "deadline", attempt + 1)
                raise OperationTimedOutError(
                    f"{effective_endpoint} timed out after {attempt + 1} attempts", last_exception
                ) from last_exception

            logger.warning(
                f"Rate limited calling {effective_endpoint} on attempt {attempt + 1}/{total_attempts}. "
                f"Waiting {delay:.2f}s..."
            )
            self.event_sink(RetryScheduled(
                endpoint=effective_endpoint, attempt_number=attempt + 1,
                delay_seconds=delay, hinted=last_exception.retry_after is not None,
            ))
            await self._wait(delay, cancel_event, effective_endpoint, attempt + 1, last_exception)

        logger.error(f"Max retries ({self.max_retries}) reached for {effective_endpoint}. Last error: {last_exception}")
        self.event_sink(ApiCallFailed(
            endpoint=effective_endpoint, error_type=type(last_exception).__name__,
            error_message=str(last_exception), attempts=total_attempts,
        ))
        raise MaxRetryError(last_exception, total_attempts) from last_exception

    def _deadline(self, timeout_s: Optional[float]) -> Optional[float]:
        budgets = [b for b in (timeout_s, self.max_elapsed_s) if b is not None]
        if not budgets:
            return None
        return self._clock() + min(budgets)

    async def _invoke(self, func, args, kwargs, deadline, endpoint, attempt, last_exception):
        if deadline is None:
            return await func(*args, **kwargs)
        remaining = deadline - self._clock()
        if remaining <= 0:
            self._abandon(endpoint, "deadline", attempt)
            raise OperationTimedOutError(f"{endpoint} deadline passed before attempt {attempt + 1}", last_exception)
        try:
            return await asyncio.wait_for(func(*args, **kwargs), timeout=remaining)
        except asyncio.TimeoutError as e:
            logger.error(f"{endpoint} did not complete before the deadline on attempt {attempt + 1}")
            self._abandon(endpoint, "deadline", attempt + 1)
            raise OperationTimedOutError(f"{endpoint} timed out on attempt {attempt + 1}", last_exception) from e

    async def _wait(
        self,
        delay: float,
        cancel_event: Optional[asyncio.Event],
        endpoint: str,
        attempts: int,
        last_exception: RateLimitedError,
    ) -> None:
        """Sleeps for delay, returning early with an error if cancel_event is set.

        With a cancel_event the wait runs on asyncio.wait_for against the event,
        so the injected sleep is bypassed.
        """
        if cancel_event is None:
            await self._sleep(delay)
            return
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
        logger.warning(f"Retry of {endpoint} cancelled during backoff wait")
        self._abandon(endpoint, "cancelled", attempts)
        raise OperationCancelledError(f"{endpoint} cancelled after {attempts} attempts", last_exception)

    def _abandon(self, endpoint: str, reason: str, attempts: int) -> None:
        self.event_sink(ApiCallCancelled(endpoint=endpoint, reason=reason, attempts=attempts))
