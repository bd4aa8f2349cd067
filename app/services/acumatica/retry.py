"""Bounded retry with exponential backoff, configured per call site."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TypeVar

from app.config import settings
from app.services.acumatica.client import is_retryable_login_error

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _never(_exc: Exception) -> bool:
    return False


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 1
    base_delay: float = 1.0
    max_delay: float = 30.0
    retry_on: Callable[[Exception], bool] = field(default=_never)

    def delay_for(self, attempt: int) -> float:
        """Delay after the given 1-based failed attempt."""
        return min(self.base_delay * (2 ** max(attempt - 1, 0)), self.max_delay)


LOGIN_POLICY = RetryPolicy(
    max_attempts=settings.acumatica_login_max_attempts,
    base_delay=settings.acumatica_login_retry_delay,
    retry_on=is_retryable_login_error,
)


def retry_call(
    fn: Callable[[], T],
    policy: RetryPolicy,
    *,
    label: str = "call",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    attempt = 0
    while True:
        attempt += 1
        try:
            return fn()
        except Exception as exc:
            if attempt >= policy.max_attempts or not policy.retry_on(exc):
                raise
            delay = policy.delay_for(attempt)
            logger.warning(
                "retrying label=%s attempt=%d max_attempts=%d delay=%.2f error=%s",
                label,
                attempt,
                policy.max_attempts,
                delay,
                exc,
            )
            sleep(delay)
