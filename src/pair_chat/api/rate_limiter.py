"""Per-client sliding-window rate limiting."""

import asyncio
import time
from typing import Dict, List, Optional

from fastapi import Request
from structlog import get_logger

logger = get_logger()


class RateLimitExceeded(Exception):
    """Exception raised when rate limit is exceeded."""

    def __init__(self, message: str, retry_after: int) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class RateLimiter:
    """Sliding-window limiter keyed by client and path."""

    def __init__(self, rate_limit: int = 50, time_window: int = 60):
        self.rate_limit = rate_limit
        self.time_window = time_window  # in seconds
        self.requests: Dict[str, List[float]] = {}
        self._lock = asyncio.Lock()
        self._cleanup_task: Optional[asyncio.Task] = None
        logger.info(
            "rate_limiter_initialized",
            rate_limit=rate_limit,
            time_window=time_window
        )

    async def start(self):
        """Start the periodic cleanup task."""
        if self._cleanup_task is None:
            self._cleanup_task = asyncio.create_task(self._periodic_cleanup())

    async def stop(self):
        """Stop the periodic cleanup task."""
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None

    def _prune(self, key: str, now: float) -> List[float]:
        cutoff = now - self.time_window
        recent = [ts for ts in self.requests.get(key, []) if ts > cutoff]
        if recent:
            self.requests[key] = recent
        else:
            self.requests.pop(key, None)
        return recent

    async def _periodic_cleanup(self):
        """Drop keys whose timestamps all fell out of the window."""
        while True:
            try:
                await asyncio.sleep(self.time_window)
                async with self._lock:
                    now = time.time()
                    for key in list(self.requests):
                        self._prune(key, now)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("rate_limiter_cleanup_error", error=str(e))

    async def check_rate_limit(self, key: str) -> int:
        """Record a request for ``key`` and return the remaining allowance."""
        now = time.time()
        async with self._lock:
            recent = self._prune(key, now)
            if len(recent) >= self.rate_limit:
                logger.warning(
                    "rate_limit_exceeded",
                    key=key,
                    current_requests=len(recent),
                    rate_limit=self.rate_limit
                )
                retry_after = max(1, int(recent[0] + self.time_window - now))
                raise RateLimitExceeded(
                    f"Rate limit of {self.rate_limit} requests per {self.time_window} seconds exceeded",
                    retry_after=retry_after,
                )
            recent.append(now)
            self.requests[key] = recent
            return self.rate_limit - len(recent)


async def rate_limit_middleware(
    request: Request,
    rate_limiter: Optional[RateLimiter] = None
) -> Optional[int]:
    """Apply the limiter to a request; ``None`` means limiting is disabled."""
    if rate_limiter is None:
        return None

    client_ip = request.client.host if request.client else "unknown"
    key = f"{client_ip}:{request.url.path}"
    return await rate_limiter.check_rate_limit(key)
