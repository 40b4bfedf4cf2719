"""Retry scheduling for transiently failed messages."""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Mapping

# Processing count -> delay before redelivery. Counts outside the table use the fallback.
DEFAULT_RETRY_DELAYS: Mapping[int, timedelta] = {
    1: timedelta(seconds=5),
    2: timedelta(seconds=25),
    3: timedelta(seconds=125),
}

DEFAULT_FALLBACK_DELAY = timedelta(seconds=5)

MAX_PROCESSING_ATTEMPTS = 3


@dataclass(frozen=True)
class RetryPolicy:
    """
    Decides whether a transient failure is rescheduled or dead-lettered.

    Attributes:
        max_attempts: Highest processing count that may still be rescheduled
        delays: Processing count to reschedule delay
        fallback_delay: Delay for counts missing from the table
    """

    max_attempts: int = MAX_PROCESSING_ATTEMPTS
    delays: Mapping[int, timedelta] = field(default_factory=lambda: dict(DEFAULT_RETRY_DELAYS))
    fallback_delay: timedelta = DEFAULT_FALLBACK_DELAY

    def exhausted(self, processing_count: int) -> bool:
        """True once the message has used up its retries."""
        return processing_count > self.max_attempts

    def delay_for(self, processing_count: int) -> timedelta:
        return self.delays.get(processing_count, self.fallback_delay)

    def next_available_at(self, processing_count: int, now: datetime) -> datetime:
        """
        Compute when a rescheduled message becomes visible again.

        Args:
            processing_count: Delivery count of the failed message
            now: Current UTC time

        Returns:
            datetime: now + delay for this processing count
        """
        return now + self.delay_for(processing_count)
