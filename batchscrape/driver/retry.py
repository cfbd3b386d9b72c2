"""Retry policy for the batch driver.

The delay before retry ``n`` (1-indexed) is ``base_delay_ms * n``. With the
defaults that is 1 s before the first retry and 2 s before the second.
Backoff is linear, never exponential.

Failure kinds are not distinguished: timeouts, HTTP statuses and network
errors all consume retries in the same way.
"""

from dataclasses import dataclass

from batchscrape.common.exceptions import BatchValidationError


@dataclass(frozen=True)
class RetryPolicy:
    """Decide whether a failed attempt is retried and how long to wait.

    Attributes:
        max_retries: Retries allowed after the first attempt. A target is
            executed at most ``max_retries + 1`` times.
        base_delay_ms: Base of the linear backoff, in milliseconds.
    """

    max_retries: int = 2
    base_delay_ms: int = 1000

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise BatchValidationError(
                f"must be >= 0, got {self.max_retries}", field="max_retries"
            )
        if self.base_delay_ms < 0:
            raise BatchValidationError(
                f"must be >= 0, got {self.base_delay_ms}",
                field="retry_base_delay_ms",
            )

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def should_retry(self, retries_so_far: int) -> bool:
        """Return True if another attempt is allowed.

        Args:
            retries_so_far: Number of retries already performed (0 after the
                first failed attempt).
        """
        return retries_so_far < self.max_retries

    def backoff_delay(self, retry_number: int) -> float:
        """Seconds to wait before the given retry.

        Args:
            retry_number: 1-indexed retry about to be made.

        Returns:
            ``base_delay_ms * retry_number`` converted to seconds.
        """
        return self.base_delay_ms * retry_number / 1000

    @staticmethod
    def pacing_delay(index: int, delay_ms: int) -> float:
        """Seconds to wait before a target's first attempt.

        The target submitted first (index 0) starts immediately; every other
        target waits ``delay_ms``. This is pacing, not correctness, and it
        is applied while the target already holds its slot.

        Args:
            index: Submission index of the target.
            delay_ms: Configured inter-target delay.
        """
        if index == 0 or delay_ms <= 0:
            return 0.0
        return delay_ms / 1000
