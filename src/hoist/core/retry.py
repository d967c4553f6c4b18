"""Bounded exponential backoff for transient network failures."""
import threading
from typing import Callable, Optional, TypeVar

from attrs import define

from hoist.core.config import RetryConfig
from hoist.core.errors import FailureReason, PublishCancelled, PublishFailure
from hoist.utils import log

ResultT = TypeVar("ResultT")


@define(frozen=True, kw_only=True)
class RetryPolicy:
    """Retries operations failing with `NETWORK_ERROR`.

    Any other error is propagated immediately.

    Arguments:
        attempts: maximum number of attempts, including the first one.
        base_delay: seconds to wait before the first retry.
        max_delay: upper bound for the wait between two attempts.
        multiplier: growth factor of the wait after each failed attempt.
    """

    attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    multiplier: float = 2.0

    @classmethod
    def from_config(cls, config: RetryConfig) -> "RetryPolicy":
        """Creates the policy from its configuration."""
        return cls(
            attempts=config.attempts,
            base_delay=config.base_delay,
            max_delay=config.max_delay,
            multiplier=config.multiplier,
        )

    def delay(self, attempt: int) -> float:
        """Returns the seconds to wait after the given failed attempt (starting from 1)."""
        return min(self.base_delay * self.multiplier ** (attempt - 1), self.max_delay)

    def call(
        self,
        func: Callable[[], ResultT],
        cancel: Optional[threading.Event] = None,
        description: str = "operation",
    ) -> ResultT:
        """Calls `func` until it succeeds or the attempts are exhausted.

        Arguments:
            func: the operation to perform.
            cancel: when set, no further attempt is started and waits are interrupted.
            description: used when logging retries.

        Returns:
            The value returned by `func`.

        Raises:
            PublishFailure: the last network error once all attempts failed, or
                any other failure straight away.
            PublishCancelled: if `cancel` was set.
        """
        cancel = cancel or threading.Event()

        attempt = 1
        while True:
            if cancel.is_set():
                raise PublishCancelled(f"{description} cancelled")

            try:
                return func()

            except PublishFailure as exc:
                if exc.reason is not FailureReason.NETWORK_ERROR or attempt >= self.attempts:
                    raise

                delay = self.delay(attempt)
                log(f"{description} failed attempt={attempt} retrying in {delay:.1f}s: {exc}")

            if cancel.wait(delay):
                raise PublishCancelled(f"{description} cancelled")

            attempt += 1
