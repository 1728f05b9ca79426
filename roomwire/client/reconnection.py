"""
Reconnection backoff bookkeeping.

Delays follow delay_{n+1} = min(delay_n * multiplier, max_delay), starting at
initial_delay and resetting to it after every successful connection.
"""

from collections.abc import Iterator

from ..config.models import ReconnectionPolicy
from ..structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)


def backoff_schedule(policy: ReconnectionPolicy) -> Iterator[float]:
    """
    Yield the delay sequence a policy produces, ignoring its attempt budget.

    With initial_delay=1, backoff_multiplier=2, max_delay=5 this yields
    1, 2, 4, 5, 5, ...
    """
    delay = policy.initial_delay
    while True:
        yield delay
        delay = min(delay * policy.backoff_multiplier, policy.max_delay)


class ReconnectionManager:
    """Tracks attempts and the next delay for one client."""

    def __init__(self, policy: ReconnectionPolicy) -> None:
        self.policy = policy
        self.attempts = 0
        self.current_delay = policy.initial_delay

    @property
    def exhausted(self) -> bool:
        """True once a bounded attempt budget has been used up."""
        return self.policy.max_attempts > 0 and self.attempts >= self.policy.max_attempts

    def should_retry(self) -> bool:
        return self.policy.enabled and not self.exhausted

    def next_attempt(self) -> float:
        """
        Consume one attempt and return the delay to wait before it.

        Raises:
            RuntimeError: If reconnection is disabled or the budget is exhausted
        """
        if not self.should_retry():
            raise RuntimeError("No reconnection attempts remaining")
        self.attempts += 1
        delay = self.current_delay
        self.current_delay = min(self.current_delay * self.policy.backoff_multiplier, self.policy.max_delay)
        logger.debug(
            "Reconnection attempt scheduled",
            attempt=self.attempts,
            max_attempts=self.policy.max_attempts,
            delay=delay,
        )
        return delay

    def reset(self) -> None:
        """Forget previous attempts; the next delay becomes initial_delay again."""
        self.attempts = 0
        self.current_delay = self.policy.initial_delay

    def get_stats(self) -> dict[str, float | int | bool]:
        return {
            "attempts": self.attempts,
            "max_attempts": self.policy.max_attempts,
            "next_delay": self.current_delay,
            "exhausted": self.exhausted,
        }
