"""
Hybrid in-memory + Redis rate limiting

A RateLimiter instance is built at startup and injected wherever booking
operations are invoked. The in-memory counters are authoritative; Redis, when
configured, only mirrors them so several workers see roughly the same counts.
Redis is never touched on the request path: a background loop merges the
counters in a worker thread.
"""

import asyncio
import logging
import time
from threading import Lock
from typing import Callable, Optional

import redis
from fastapi import Request

from .config import (
    RATE_LIMIT_CANCEL,
    RATE_LIMIT_CHECK_AVAILABILITY,
    RATE_LIMIT_CLEANUP_INTERVAL_SECONDS,
    RATE_LIMIT_CREATE,
    RATE_LIMIT_RESCHEDULE,
    RATE_LIMIT_STALE_AFTER_SECONDS,
    RATE_LIMIT_UPDATE,
    RATE_LIMIT_WINDOW_SECONDS,
    REDIS_URL,
)
from .domain.scheduling.errors import RateLimitExceededError

logger = logging.getLogger(__name__)

DEFAULT_LIMITS = {
    "createAppointment": RATE_LIMIT_CREATE,
    "checkAvailability": RATE_LIMIT_CHECK_AVAILABILITY,
    "updateAppointment": RATE_LIMIT_UPDATE,
    "cancelAppointment": RATE_LIMIT_CANCEL,
    "rescheduleAppointment": RATE_LIMIT_RESCHEDULE,
}

# Seconds between background rounds against Redis
REDIS_SYNC_INTERVAL = 10


def get_redis_client() -> Optional[redis.Redis]:
    """Redis client for the counter mirror, None when REDIS_URL is not set"""
    if not REDIS_URL:
        return None
    client = redis.from_url(
        REDIS_URL,
        decode_responses=True,
        socket_connect_timeout=5,
        socket_timeout=5,
        retry_on_timeout=True,
        health_check_interval=30,
    )
    client.ping()
    logger.info("✅ Redis connected for rate limiting")
    return client


class RateLimiter:
    """
    Fixed-window counters keyed by "<salon>:<operation>"

    Lifecycle: start() launches the janitor that prunes stale keys and, with a
    Redis client, the mirror loop. stop() cancels both, reset() clears every
    counter (tests).
    """

    def __init__(
        self,
        limits: Optional[dict[str, int]] = None,
        window_seconds: int = RATE_LIMIT_WINDOW_SECONDS,
        cleanup_interval_seconds: int = RATE_LIMIT_CLEANUP_INTERVAL_SECONDS,
        stale_after_seconds: int = RATE_LIMIT_STALE_AFTER_SECONDS,
        redis_client: Optional[redis.Redis] = None,
        redis_sync_interval_seconds: float = REDIS_SYNC_INTERVAL,
        clock: Callable[[], float] = time.time,
    ):
        self.limits = dict(DEFAULT_LIMITS if limits is None else limits)
        self.window_seconds = window_seconds
        self.cleanup_interval_seconds = cleanup_interval_seconds
        self.stale_after_seconds = stale_after_seconds
        self.redis_client = redis_client
        self.redis_sync_interval_seconds = redis_sync_interval_seconds
        self.clock = clock
        # {key: {"count": int, "reset_time": float, "last_seen": float, "loaded": bool, "dirty": bool}}
        self._entries: dict[str, dict] = {}
        self._lock = Lock()
        self._janitor: Optional[asyncio.Task] = None
        self._redis_sync: Optional[asyncio.Task] = None

    @staticmethod
    def build_key(salon_id: str, operation: str) -> str:
        return f"rate_limit:{salon_id}:{operation}"

    def check(self, key: str, limit: int) -> tuple[bool, int, int]:
        """
        Count one request against key, in memory only

        Returns:
            Tuple of (is_allowed, current_count, retry_after_seconds)
        """
        now = self.clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = {
                    "count": 0,
                    "reset_time": now + self.window_seconds,
                    "last_seen": now,
                    "loaded": False,
                    "dirty": False,
                }

            if now >= entry["reset_time"]:
                entry["count"] = 0
                entry["reset_time"] = now + self.window_seconds

            entry["last_seen"] = now
            is_allowed = entry["count"] < limit
            if is_allowed:
                entry["count"] += 1
                entry["dirty"] = True

            retry_after = max(0, int(entry["reset_time"] - now))
            return is_allowed, entry["count"], retry_after

    def hit(self, salon_id: str, operation: str):
        """
        Raises:
            RateLimitExceededError: when the salon exhausted the operation's window
        """
        limit = self.limits.get(operation)
        if limit is None:
            return
        key = self.build_key(salon_id, operation)
        is_allowed, count, retry_after = self.check(key, limit)
        if not is_allowed:
            logger.warning(f"🚫 Rate limit EXCEEDED for {key} - {count}/{limit} requests used")
            raise RateLimitExceededError(key, limit, self.window_seconds, retry_after)

    def cleanup(self) -> int:
        """Drop keys not seen for stale_after_seconds"""
        cutoff = self.clock() - self.stale_after_seconds
        with self._lock:
            stale = [key for key, entry in self._entries.items() if entry["last_seen"] < cutoff]
            for key in stale:
                del self._entries[key]
        if stale:
            logger.debug(f"🧹 Cleaned up {len(stale)} stale rate limit entries")
        return len(stale)

    def reset(self):
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    # ========================================================================
    # REDIS MIRROR
    # ========================================================================

    def sync_with_redis(self) -> int:
        """
        Merge counters with Redis: pull counts for keys seen for the first
        time, push counts that changed since the last round

        Blocking I/O; the background loop runs it in a worker thread.

        Returns:
            Number of keys pushed to Redis
        """
        if self.redis_client is None:
            return 0

        with self._lock:
            snapshot = [(key, dict(entry)) for key, entry in self._entries.items()]

        pushed = 0
        try:
            for key, seen in snapshot:
                if not seen["loaded"]:
                    redis_count = self.redis_client.get(key)
                    redis_ttl = self.redis_client.ttl(key)
                    self._merge_remote(key, int(redis_count) if redis_count else 0, redis_ttl)

                now = self.clock()
                with self._lock:
                    entry = self._entries.get(key)
                    if entry is None or not entry["dirty"] or now >= entry["reset_time"]:
                        continue
                    count, ttl = entry["count"], max(1, int(entry["reset_time"] - now))
                    entry["dirty"] = False

                self.redis_client.set(key, count, ex=ttl)
                pushed += 1
        except redis.RedisError as e:
            logger.warning(f"⚠️ Failed to sync with Redis, using memory only: {e}")
        return pushed

    def _merge_remote(self, key: str, redis_count: int, redis_ttl: int):
        now = self.clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return
            entry["loaded"] = True
            # Another worker counted more in the same window
            if redis_ttl > 0 and redis_count > entry["count"]:
                entry["count"] = redis_count
                entry["reset_time"] = now + redis_ttl

    # ========================================================================
    # BACKGROUND TASKS
    # ========================================================================

    async def _janitor_loop(self):
        while True:
            await asyncio.sleep(self.cleanup_interval_seconds)
            self.cleanup()

    async def _redis_sync_loop(self):
        while True:
            await asyncio.sleep(self.redis_sync_interval_seconds)
            await asyncio.to_thread(self.sync_with_redis)

    def start(self):
        loop = asyncio.get_running_loop()
        if self._janitor is None or self._janitor.done():
            self._janitor = loop.create_task(self._janitor_loop())
            logger.info(f"🧹 Rate limit janitor started (every {self.cleanup_interval_seconds}s)")
        if self.redis_client is not None and (self._redis_sync is None or self._redis_sync.done()):
            self._redis_sync = loop.create_task(self._redis_sync_loop())
            logger.info(f"🔄 Rate limit Redis sync started (every {self.redis_sync_interval_seconds}s)")

    async def stop(self):
        for task in (self._janitor, self._redis_sync):
            if task is None:
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._janitor = None
        self._redis_sync = None


def get_rate_limiter(request: Request) -> RateLimiter:
    """FastAPI dependency: the limiter built in the app lifespan"""
    return request.app.state.rate_limiter


def create_rate_limiter(operation: str):
    """
    Create a per-salon rate limit dependency for an operation

    Example usage:
        @router.post("/appointments", dependencies=[Depends(create_rate_limiter("createAppointment"))])
    """

    async def rate_limiter(salon_id: str, request: Request):
        get_rate_limiter(request).hit(salon_id, operation)

    return rate_limiter
