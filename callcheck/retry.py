import logging
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from typing import Callable, Optional, TypeVar

from pydantic import BaseModel, Field

from .config import Settings
from .errors import ProviderCallError, ProviderRequestError, ProviderTimeoutError, ProviderUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy(BaseModel):
    """Bounded retry with exponential backoff for provider calls"""

    max_attempts: int = Field(3, ge=1)
    base_delay: float = Field(0.5, ge=0, description="Delay before the second attempt, in seconds")
    timeout: Optional[float] = Field(30.0, description="Per-attempt timeout in seconds, None disables it")

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.provider_max_attempts,
            base_delay=settings.provider_backoff_base,
            timeout=settings.provider_timeout,
        )

    def delay_for(self, attempt: int) -> float:
        return self.base_delay * (2 ** (attempt - 1))


def call_with_timeout(operation: Callable[[], T], timeout: Optional[float]) -> T:
    """Run operation, giving up after timeout seconds.

    The worker thread is abandoned on timeout; provider calls are stateless so a
    late result is simply discarded.
    """
    if timeout is None:
        return operation()

    executor = ThreadPoolExecutor(max_workers=1)
    future = executor.submit(operation)
    try:
        return future.result(timeout=timeout)
    except FutureTimeoutError:
        future.cancel()
        raise ProviderTimeoutError(f"Provider call exceeded {timeout:g}s")
    finally:
        executor.shutdown(wait=False)


def call_with_retry(
    operation: Callable[[], T],
    policy: RetryPolicy,
    description: str = "provider call",
    on_attempt: Optional[Callable[[int], None]] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call operation until it succeeds, fails permanently, or attempts run out.

    Timeouts, connection errors, 429 and 5xx are retried. Any other
    ProviderCallError fails immediately as ProviderRequestError. Exceptions that
    are not provider call errors (configuration, programming errors) propagate
    untouched.
    """
    last_error = None

    for attempt in range(1, policy.max_attempts + 1):
        if on_attempt:
            on_attempt(attempt)
        try:
            return call_with_timeout(operation, policy.timeout)
        except ProviderCallError as e:
            last_error = e
            if not e.retryable:
                logger.warning(f"{description} rejected (status {e.status_code}): {e}")
                raise ProviderRequestError(f"LLM provider rejected the request: {e}", upstream_status=e.status_code) from e

            if attempt < policy.max_attempts:
                delay = policy.delay_for(attempt)
                logger.warning(
                    f"{description} failed (attempt {attempt}/{policy.max_attempts}, "
                    f"status {e.status_code}): {e}. Retrying in {delay:.2f}s"
                )
                sleep(delay)
            else:
                logger.error(f"{description} failed after {attempt} attempts: {e}")

    raise ProviderUnavailableError(
        f"LLM provider unavailable after {policy.max_attempts} attempts: {last_error}",
        attempts=policy.max_attempts,
    )
