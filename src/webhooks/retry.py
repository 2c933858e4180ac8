class RetryManager:
    """Retry decisions and backoff offsets for webhook delivery.

    Offsets are measured from the first failed attempt, not from the previous
    retry: with the default schedule the retries fire 1, 5 and 30 minutes after
    the initial failure.
    """

    DEFAULT_SCHEDULE = [60, 300, 1800]  # 1m, 5m, 30m

    def __init__(self, schedule: list[float] | None = None, max_retries: int | None = None):
        self.schedule = schedule or self.DEFAULT_SCHEDULE
        self.max_retries = max_retries if max_retries is not None else len(self.schedule)

    def should_retry(self, status_code: int | None) -> bool:
        """Any transport failure (None) or non-2xx response is retried."""
        if status_code is None:
            return True
        return not 200 <= status_code < 300

    def offset(self, retry: int) -> float:
        """Seconds after the first failure at which retry ``retry`` (0-indexed) runs."""
        if retry >= len(self.schedule):
            return float(self.schedule[-1])
        return float(self.schedule[retry])

    def has_attempts_remaining(self, retries_made: int) -> bool:
        return retries_made < self.max_retries
