"""
Retry utilities for calls into the orchestration platform.

Two layers of backoff:
- in-call: a single collaborator call is bounded by a timeout and retried a
  few times with exponential backoff and jitter (tenacity)
- requeue: a pass that ended with PlatformUnavailable is not retried
  immediately; the worker waits an exponentially growing, jittered delay per
  cluster before the next pass

Both layers share one wait policy, backoff_wait.
"""
import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

import aiohttp
from kubernetes_asyncio.client import ApiException
from pydantic import BaseModel, Field
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from ovn_operator.config.logging import get_logger
from ovn_operator.config.settings import settings
from ovn_operator.exceptions import KubernetesError, PlatformUnavailableError

logger = get_logger(__name__)

T = TypeVar("T")

# HTTP status codes that indicate a transient API server problem
RETRYABLE_STATUS_CODES = {
    408,  # Request Timeout
    429,  # Too Many Requests (rate limiting)
    500,  # Internal Server Error
    502,  # Bad Gateway
    503,  # Service Unavailable
    504,  # Gateway Timeout
}


def is_retryable_k8s_error(exception: Exception) -> bool:
    """
    Determine if a Kubernetes API exception is transient.

    Args:
        exception: The exception to check

    Returns:
        True if the exception is retryable, False otherwise
    """
    if isinstance(exception, (aiohttp.ClientError, ConnectionError)):
        return True
    if not isinstance(exception, ApiException):
        return False
    return exception.status in RETRYABLE_STATUS_CODES


def translate_k8s_error(operation: str, exception: Exception) -> Exception:
    """Map a Kubernetes client failure onto the operator error taxonomy."""
    if is_retryable_k8s_error(exception):
        return PlatformUnavailableError(operation, str(exception))
    status_code = getattr(exception, "status", None)
    return KubernetesError(
        f"{operation} failed: {exception}",
        details={"operation": operation, "status_code": status_code},
    )


class CallPolicy(BaseModel):
    """Timeout and in-call retry budget for one collaborator call."""

    timeout: float = Field(default=10.0, gt=0)
    attempts: int = Field(default=3, ge=1)
    initial_delay: float = Field(default=0.5, ge=0)
    max_delay: float = Field(default=5.0, ge=0)

    @classmethod
    def from_settings(cls) -> "CallPolicy":
        return cls(
            timeout=settings.platform_call_timeout,
            attempts=settings.platform_retry_attempts,
            initial_delay=settings.platform_retry_initial_delay,
            max_delay=settings.platform_retry_max_delay,
        )


def backoff_wait(initial_delay: float, max_delay: float) -> Callable[[RetryCallState], float]:
    """
    Exponential wait starting at initial_delay, plus up to half of
    initial_delay of jitter, never above max_delay.
    """
    strategy = wait_exponential(multiplier=initial_delay, max=max_delay) + wait_random(
        0, initial_delay / 2
    )

    def wait(retry_state: RetryCallState) -> float:
        return min(strategy(retry_state), max_delay)

    return wait


def _log_retry(operation: str) -> Callable[[RetryCallState], None]:
    def before_sleep(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "platform_call_failed_retrying",
            operation=operation,
            attempt=retry_state.attempt_number,
            delay_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
            error=str(error),
        )

    return before_sleep


async def call_platform(
    operation: str,
    func: Callable[..., Awaitable[T]],
    *args: Any,
    policy: CallPolicy,
    **kwargs: Any,
) -> T:
    """
    Call a collaborator with a timeout and jittered exponential retries.

    A timeout counts as PlatformUnavailable. Only PlatformUnavailable is
    retried; every other exception propagates on the first attempt.

    Raises:
        PlatformUnavailableError: If every attempt failed or timed out
    """
    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(policy.attempts),
        wait=backoff_wait(policy.initial_delay, policy.max_delay),
        retry=retry_if_exception_type(PlatformUnavailableError),
        before_sleep=_log_retry(operation),
        reraise=True,
    ):
        with attempt:
            try:
                return await asyncio.wait_for(func(*args, **kwargs), timeout=policy.timeout)
            except asyncio.TimeoutError:
                raise PlatformUnavailableError(
                    operation, f"timed out after {policy.timeout}s"
                )
    raise AssertionError("unreachable")  # pragma: no cover


class RequeueBackoff:
    """
    Per-cluster requeue schedule with exponential backoff and jitter.

    Example:
        backoff = RequeueBackoff(initial_delay=5, max_delay=300)
        delay = backoff.record_failure("openstack/ovndbcluster-nb")
        ...
        if backoff.is_due("openstack/ovndbcluster-nb"):
            ...
    """

    def __init__(
        self,
        initial_delay: float,
        max_delay: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self._clock = clock
        self._wait = backoff_wait(initial_delay, max_delay)
        self._failures: Dict[str, int] = {}
        self._not_before: Dict[str, float] = {}

    def record_failure(self, key: str) -> float:
        """Push the next pass for key back; returns the delay in seconds."""
        failures = self._failures.get(key, 0) + 1
        self._failures[key] = failures
        retry_state = RetryCallState(retry_object=None, fn=None, args=(), kwargs={})
        retry_state.attempt_number = failures
        delay = self._wait(retry_state)
        self._not_before[key] = self._clock() + delay
        return delay

    def reset(self, key: str) -> None:
        self._failures.pop(key, None)
        self._not_before.pop(key, None)

    def is_due(self, key: str) -> bool:
        return self._clock() >= self._not_before.get(key, 0.0)

    def failures(self, key: str) -> int:
        return self._failures.get(key, 0)

    def delay_remaining(self, key: str) -> Optional[float]:
        not_before = self._not_before.get(key)
        if not_before is None:
            return None
        return max(0.0, not_before - self._clock())
