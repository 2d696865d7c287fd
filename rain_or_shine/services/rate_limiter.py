import asyncio
import json
import logging
import os
import time
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)

class StravaRateLimiter:
    """
    Request scheduler for the Strava API.
    Queues requests instead of bursting, so webhook traffic never eats the quota.

    Strava Limits:
    - 100 requests every 15 minutes
    - 1000 requests every day (resets at midnight UTC)

    Our Safety Limits (80% capacity by default):
    - 80 requests every 15 minutes
    - 800 requests every day

    One request is in flight at a time; callers wait in FIFO order.
    A 429 from Strava is retried here with exponential backoff.
    """

    WINDOW_15M_SECONDS = 900

    def __init__(
        self,
        limit_15m: int = 80,
        limit_daily: int = 800,
        min_interval: float = 0.2,
        max_retries: int = 3,
        backoff_seconds: float = 1.0,
        state_file: Optional[str] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.limit_15m = limit_15m
        self.limit_daily = limit_daily
        self.min_interval = min_interval
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self.state_file = state_file
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._last_request_at: Optional[float] = None
        self.requests_15m: List[float] = []
        self.requests_daily: List[float] = []
        self._load_state()

    def _load_state(self):
        """Load request timestamps from disk."""
        if self.state_file and os.path.exists(self.state_file):
            try:
                with open(self.state_file, 'r') as f:
                    data = json.load(f)
                    self.requests_15m = data.get('15m', [])
                    self.requests_daily = data.get('daily', [])
                self._cleanup()
            except (OSError, ValueError) as e:
                logger.error(f"Failed to load rate limit state: {e}")

    def _save_state(self):
        """Save request timestamps to disk."""
        if not self.state_file:
            return
        try:
            with open(self.state_file, 'w') as f:
                json.dump({
                    '15m': self.requests_15m,
                    'daily': self.requests_daily
                }, f)
        except OSError as e:
            logger.error(f"Failed to save rate limit state: {e}")

    def _cleanup(self):
        """Remove timestamps older than the windows."""
        now = self._clock()
        # 15 minutes = 900 seconds (sliding window is fine for 15m safety)
        self.requests_15m = [t for t in self.requests_15m if now - t < self.WINDOW_15M_SECONDS]

        # Daily Limit: Strava resets at midnight UTC.
        # We only keep timestamps from the CURRENT UTC day.
        today_utc = datetime.fromtimestamp(now, timezone.utc).date()
        self.requests_daily = [
            t for t in self.requests_daily
            if datetime.fromtimestamp(t, timezone.utc).date() == today_utc
        ]

    def _seconds_until_allowed(self) -> float:
        self._cleanup()
        now = self._clock()
        wait = 0.0
        if len(self.requests_15m) >= self.limit_15m:
            oldest = min(self.requests_15m)
            wait = max(wait, oldest + self.WINDOW_15M_SECONDS - now)
            logger.warning(f"Rate Limit Hit (15m): {len(self.requests_15m)}/{self.limit_15m}, waiting {wait:.1f}s")
        if len(self.requests_daily) >= self.limit_daily:
            today_utc = datetime.fromtimestamp(now, timezone.utc).date()
            midnight = datetime(today_utc.year, today_utc.month, today_utc.day, tzinfo=timezone.utc).timestamp() + 86400
            wait = max(wait, midnight - now)
            logger.warning(f"Rate Limit Hit (Daily): {len(self.requests_daily)}/{self.limit_daily}, waiting {wait:.0f}s")
        if self._last_request_at is not None:
            wait = max(wait, self._last_request_at + self.min_interval - now)
        return wait

    def record_attempt(self):
        """Record a request ATTEMPT (call this BEFORE the HTTP request)."""
        now = self._clock()
        self._last_request_at = now
        self.requests_15m.append(now)
        self.requests_daily.append(now)
        self._save_state()

    def get_stats(self) -> Dict[str, int]:
        self._cleanup()
        return {
            "15m_used": len(self.requests_15m),
            "15m_limit": self.limit_15m,
            "daily_used": len(self.requests_daily),
            "daily_limit": self.limit_daily
        }

    async def _run_one(self, send: Callable[[], Awaitable[httpx.Response]]) -> httpx.Response:
        async with self._lock:
            wait = self._seconds_until_allowed()
            while wait > 0:
                await self._sleep(wait)
                wait = self._seconds_until_allowed()
            self.record_attempt()
            return await send()

    async def schedule(self, send: Callable[[], Awaitable[httpx.Response]]) -> httpx.Response:
        """
        Run `send` when the quota allows it.
        Returns the response; a 429 is only returned once retries are exhausted.
        """
        retry = 0
        while True:
            response = await self._run_one(send)
            if response.status_code != 429 or retry >= self.max_retries:
                return response
            delay = self.backoff_seconds * (2 ** retry)
            logger.warning(f"Strava returned 429. Backing off {delay:.1f}s (retry {retry + 1}/{self.max_retries})")
            await self._sleep(delay)  # lock is not held here
            retry += 1
