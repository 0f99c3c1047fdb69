"""Retrying an operation with exponential backoff."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class RetryStrategy:
    """Try an operation up to ``attempts`` times, growing the pause by ``backoff``."""

    attempts: int = 3
    delay: timedelta = timedelta(milliseconds=100)
    backoff: float = 2.0
    sleep: Callable[[float], Any] = field(default=time.sleep, repr=False, compare=False)

    def call(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Call ``func`` until it succeeds; re-raise its last error when all attempts fail."""
        attempts = max(1, self.attempts)
        pause = self.delay.total_seconds()
        for attempt in range(1, attempts + 1):
            try:
                return func(*args, **kwargs)
            except Exception:
                if attempt == attempts:
                    raise
            self.sleep(pause)
            pause *= self.backoff
        raise AssertionError("unreachable")