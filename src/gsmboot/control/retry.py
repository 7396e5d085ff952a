import time
from dataclasses import dataclass


@dataclass(frozen=True)
class RetryPolicy:
    """A fixed-delay, bounded attempt budget."""

    attempts: int
    delay: float
    retry_on: tuple[type[BaseException], ...] = (Exception,)

    def call(self, fn, on_retry=None):
        """Call ``fn`` until it returns; re-raise the last error once the budget is spent."""
        for attempt in range(self.attempts):
            try:
                return fn()
            except self.retry_on as e:
                if on_retry:
                    on_retry(attempt + 1, e)
                if attempt == self.attempts - 1:
                    raise
                time.sleep(self.delay)

    def poll(self, check):
        """Return the first truthy result of ``check``, or None when the budget is spent."""
        for attempt in range(self.attempts):
            result = check()
            if result:
                return result
            if attempt < self.attempts - 1:
                time.sleep(self.delay)
        return None


ATTACH_RETRY = RetryPolicy(attempts=24, delay=5)
DEVICE_RETRY = RetryPolicy(attempts=5, delay=1)
