"""Retry with backoff for unreliable backend calls."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeVar

from .errors import is_retryable

logger = logging.getLogger("postwire")

T = TypeVar("T")


class Backoff(str, Enum):
    EXPONENTIAL = "exponential"
    FIXED = "fixed"
    NONE = "none"


# Jitter is at most this fraction of the base delay, always added
JITTER_RATIO = 0.1


@dataclass(frozen=True)
class RetryConfig:
    """Retry settings. Delays are in milliseconds.

    ``attempts`` counts total tries, so ``attempts=1`` means no retry.
    """
    attempts: int = 3
    backoff: Backoff = Backoff.EXPONENTIAL
    initial_delay: float = 1000
    max_delay: float = 30000

    def __post_init__(self):
        if self.attempts < 1:
            raise ValueError(f"attempts must be at least 1, got {self.attempts}")
        if not isinstance(self.backoff, Backoff):
            # Accept the plain string form used in config files
            object.__setattr__(self, "backoff", Backoff(self.backoff))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RetryConfig:
        """Fill unspecified fields from the defaults."""
        defaults = cls()
        return cls(
            attempts=data.get("attempts", defaults.attempts),
            backoff=data.get("backoff", defaults.backoff),
            initial_delay=data.get("initial_delay", defaults.initial_delay),
            max_delay=data.get("max_delay", defaults.max_delay),
        )


def compute_delay(
    attempt: int,
    config: RetryConfig,
    rand: Callable[[], float] = random.random,
) -> float:
    """Delay in ms to wait after the 0-based ``attempt`` failed."""
    if config.backoff is Backoff.NONE:
        return 0.0
    if config.backoff is Backoff.FIXED:
        return float(config.initial_delay)

    delay = min(config.initial_delay * (2 ** attempt), config.max_delay)
    return delay + delay * JITTER_RATIO * rand()


def _retry_after(exc: BaseException) -> float | None:
    value = getattr(exc, "retry_after", None)
    return float(value) if isinstance(value, (int, float)) else None


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    config: RetryConfig | None,
) -> T:
    """Run ``operation`` until it succeeds or retries are exhausted.

    With ``config=None`` the operation runs exactly once. Errors flagged
    ``retryable=False`` propagate immediately; otherwise the last error is
    re-raised once ``config.attempts`` tries have failed. Attempts never
    overlap.
    """
    if config is None:
        return await operation()

    for attempt in range(config.attempts):
        try:
            return await operation()
        except Exception as e:
            if not is_retryable(e) or attempt >= config.attempts - 1:
                raise

            delay = compute_delay(attempt, config)
            retry_after = _retry_after(e)
            if retry_after is not None:
                delay = max(delay, min(retry_after, config.max_delay))

            logger.warning(
                f"Attempt {attempt + 1}/{config.attempts} failed: {e}; "
                f"retrying in {delay:.0f}ms"
            )
            await asyncio.sleep(delay / 1000)

    raise AssertionError("unreachable: attempts >= 1")


class RetryPolicy:
    """A retry configuration bound into a callable, or disabled."""

    def __init__(self, config: RetryConfig | None = None):
        self.config = config

    @property
    def enabled(self) -> bool:
        return self.config is not None

    async def __call__(self, operation: Callable[[], Awaitable[T]]) -> T:
        return await with_retry(operation, self.config)

    def __repr__(self) -> str:
        return f"RetryPolicy({self.config!r})"
