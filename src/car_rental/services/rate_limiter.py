from datetime import datetime, timedelta
from typing import Callable

from car_rental.repository.rate_limit_repo import RateLimitRepository
from car_rental.utils.custom_exceptions import RateLimited
from car_rental.utils.datetime_normaliser import utc_now


class RateLimiter:
    """Fixed-window attempt counter backed by DynamoDB atomic counters."""

    def __init__(
        self,
        repo: RateLimitRepository,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repo = repo
        self.clock = clock

    def hit(self, scope: str, key: str, limit: int, window: timedelta):
        now = self.clock()
        window_seconds = int(window.total_seconds())
        window_start = datetime.fromtimestamp(
            int(now.timestamp()) // window_seconds * window_seconds, tz=now.tzinfo
        )
        attempts = self.repo.increment(scope, key, window_start, window_start + window)
        if attempts > limit:
            raise RateLimited("Too many attempts, please try again later")
