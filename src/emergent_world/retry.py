from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, replace


def is_retryable_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_backoff_seconds: float = 0.2
    retryable: Callable[[int], bool] = is_retryable_status

    def __post_init__(self) -> None:
        object.__setattr__(self, "max_attempts", max(1, int(self.max_attempts)))
        object.__setattr__(self, "base_backoff_seconds", max(0.0, float(self.base_backoff_seconds)))

    def should_retry_status(self, status_code: int, attempt: int) -> bool:
        return self.retryable(status_code) and self.has_attempts_left(attempt)

    def has_attempts_left(self, attempt: int) -> bool:
        # attempt: 1-based number of the attempt that just failed
        return attempt < self.max_attempts

    def backoff_for(self, attempt: int, *, retry_after_seconds: float | None = None) -> float:
        delay = attempt * self.base_backoff_seconds
        if retry_after_seconds is not None:
            delay = max(delay, float(retry_after_seconds))
        return delay

    def with_overrides(self, *, max_attempts: int | None = None, base_backoff_seconds: float | None = None) -> "RetryPolicy":
        return replace(
            self,
            max_attempts=max_attempts if max_attempts and max_attempts > 0 else self.max_attempts,
            base_backoff_seconds=(
                base_backoff_seconds
                if base_backoff_seconds is not None and base_backoff_seconds > 0
                else self.base_backoff_seconds
            ),
        )
