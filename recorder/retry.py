from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

T = TypeVar("T")

logger = logging.getLogger("vant_recorder.retry")


class RetryAborted(RuntimeError):
    """Raised when a retry loop is abandoned (stop requested or attempts exhausted)."""


class RetryExhausted(RetryAborted):
    """Raised when `max_attempts` failed attempts were made."""


@dataclass(frozen=True)
class RetryPolicy:
    """Fixed-backoff retry.

    max_attempts=None retries forever; only a successful call (or an abort
    through `should_continue`) leaves the loop.
    """

    backoff_s: float = 1.0
    max_attempts: Optional[int] = None

    def call(
        self,
        operation: Callable[[], T],
        *,
        description: str = "operation",
        should_continue: Callable[[], bool] = lambda: True,
        wait: Callable[[float], object] | None = None,
    ) -> T:
        wait_fn = wait or _sleep
        attempt = 0
        while True:
            attempt += 1
            try:
                return operation()
            except Exception as exc:
                logger.error("Failed to %s (attempt %s): %s", description, attempt, exc, exc_info=True)
                if self.max_attempts is not None and attempt >= self.max_attempts:
                    raise RetryExhausted(f"giving up on {description} after {attempt} attempts") from exc
                if not should_continue():
                    raise RetryAborted(f"{description} abandoned") from exc
                logger.info("Retrying...")
                wait_fn(self.backoff_s)
                if not should_continue():
                    raise RetryAborted(f"{description} abandoned") from exc


def _sleep(seconds: float) -> None:
    time.sleep(max(0.0, float(seconds)))
