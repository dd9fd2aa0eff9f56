"""
Bounded exponential backoff for record store calls.
"""
import time
from dataclasses import dataclass
from typing import Callable, TypeVar

from marketplace_ops.core.config import settings
from marketplace_ops.core.errors import TransientStoreError
from marketplace_ops.core.logging import logger

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 1.0
    retry_on: tuple[type[BaseException], ...] = (TransientStoreError,)

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_attempts=settings.RETRY_MAX_ATTEMPTS,
            base_delay=settings.RETRY_BASE_DELAY_SECONDS,
        )

    def delay_for(self, attempt: int) -> float:
        """Delay after the given zero-based failed attempt."""
        return self.base_delay * (2 ** attempt)


def retry_with_backoff(
    fn: Callable[[], T],
    policy: RetryPolicy | None = None,
    sleep: Callable[[float], None] | None = None,
) -> T:
    """
    Call ``fn`` until it succeeds or ``policy.max_attempts`` is reached.

    Only exceptions in ``policy.retry_on`` are retried; the last one is
    re-raised once attempts run out.
    """
    policy = policy or RetryPolicy.from_settings()
    sleep = sleep or time.sleep

    attempt = 0
    while True:
        try:
            return fn()
        except policy.retry_on as e:
            attempt += 1
            if attempt >= policy.max_attempts:
                logger.error(
                    {
                        "event_type": "retry",
                        "event_name": "retries_exhausted",
                        "attempts": policy.max_attempts,
                        "error": str(e),
                    }
                )
                raise
            delay = policy.delay_for(attempt - 1)
            logger.warning(
                {
                    "event_type": "retry",
                    "event_name": "transient_failure",
                    "attempt": attempt,
                    "delay_seconds": delay,
                    "error": str(e),
                }
            )
            sleep(delay)
