"""Reconnect attempt tracking with exponential backoff."""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


class ReconnectBackoff:
    """
    Counts consecutive reconnect attempts and computes the delay before each.

    Delay doubles per attempt starting at base_delay, capped at max_delay.
    Attempts beyond max_retries are reported as exceeded; the caller decides
    what that means (the state machine moves to FAILED).

    Example:
        backoff = ReconnectBackoff(max_retries=3, base_delay=1.0)
        attempts, exceeded = backoff.record_attempt()   # (1, False)
        delay = backoff.delay_for(attempts)             # 1.0
    """

    def __init__(
        self,
        max_retries: int = 10,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
    ):
        self._max_retries = max_retries
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._attempts = 0

    @property
    def max_retries(self) -> int:
        return self._max_retries

    @property
    def attempts(self) -> int:
        return self._attempts

    def record_attempt(self) -> tuple[int, bool]:
        """
        Record a failed attempt.

        Returns:
            Tuple of (attempt_count, exceeded_max)
        """
        self._attempts += 1
        exceeded = self._attempts > self._max_retries
        if exceeded:
            logger.warning(
                f"Reconnect attempts exhausted ({self._attempts - 1}/{self._max_retries})"
            )
        return self._attempts, exceeded

    def delay_for(self, attempt: int) -> float:
        """Delay in seconds before the given (1-based) attempt."""
        if attempt <= 0 or self._base_delay <= 0:
            return 0.0
        return min(self._base_delay * (2 ** (attempt - 1)), self._max_delay)

    def reset(self) -> None:
        self._attempts = 0
