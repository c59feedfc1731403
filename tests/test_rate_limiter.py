import asyncio

import pytest
import redis

from salon_booking.domain.scheduling.errors import RateLimitExceededError
from salon_booking.rate_limiter import RateLimiter


class ManualClock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class InMemoryRedis:
    """Just enough of redis.Redis for the counter mirror"""

    def __init__(self, fail: bool = False):
        self.values = {}
        self.ttls = {}
        self.fail = fail
        self.calls = 0

    def get(self, key):
        self.calls += 1
        if self.fail:
            raise redis.ConnectionError("down")
        return self.values.get(key)

    def ttl(self, key):
        self.calls += 1
        return self.ttls.get(key, -2)

    def set(self, key, value, ex=None):
        self.calls += 1
        if self.fail:
            raise redis.ConnectionError("down")
        self.values[key] = str(value)
        self.ttls[key] = ex


@pytest.fixture
def manual_clock():
    return ManualClock()


@pytest.fixture
def limiter(manual_clock):
    return RateLimiter(
        limits={"createAppointment": 3, "checkAvailability": 5},
        window_seconds=60,
        stale_after_seconds=600,
        clock=manual_clock,
    )


def test_allows_up_to_the_limit_then_rejects(limiter):
    for _ in range(3):
        limiter.hit("salon-a", "createAppointment")

    with pytest.raises(RateLimitExceededError) as exc_info:
        limiter.hit("salon-a", "createAppointment")

    error = exc_info.value
    assert error.code == "RATE_LIMITED"
    assert error.status_code == 429
    assert error.retry_after == 60


def test_limits_are_per_salon_and_per_operation(limiter):
    for _ in range(3):
        limiter.hit("salon-a", "createAppointment")

    limiter.hit("salon-b", "createAppointment")
    limiter.hit("salon-a", "checkAvailability")


def test_window_resets(limiter, manual_clock):
    for _ in range(3):
        limiter.hit("salon-a", "createAppointment")

    manual_clock.now += 61

    limiter.hit("salon-a", "createAppointment")


def test_retry_after_counts_down(limiter, manual_clock):
    for _ in range(3):
        limiter.hit("salon-a", "createAppointment")
    manual_clock.now += 45

    with pytest.raises(RateLimitExceededError) as exc_info:
        limiter.hit("salon-a", "createAppointment")

    assert exc_info.value.retry_after == 15


def test_operations_without_a_limit_are_not_counted(limiter):
    for _ in range(50):
        limiter.hit("salon-a", "listUpcomingAppointments")

    assert len(limiter) == 0


def test_cleanup_drops_stale_keys_only(limiter, manual_clock):
    limiter.hit("salon-a", "createAppointment")
    manual_clock.now += 500
    limiter.hit("salon-b", "createAppointment")
    manual_clock.now += 200

    assert limiter.cleanup() == 1
    assert len(limiter) == 1


def test_reset_clears_every_counter(limiter):
    for _ in range(3):
        limiter.hit("salon-a", "createAppointment")

    limiter.reset()

    limiter.hit("salon-a", "createAppointment")


def test_hits_never_touch_redis(manual_clock):
    client = InMemoryRedis()
    limiter = RateLimiter(limits={"createAppointment": 5}, redis_client=client, clock=manual_clock)

    for _ in range(3):
        limiter.hit("salon-a", "createAppointment")

    assert client.calls == 0


def test_counts_are_loaded_from_redis(manual_clock):
    client = InMemoryRedis()
    client.set("rate_limit:salon-a:createAppointment", 3, ex=30)
    limiter = RateLimiter(limits={"createAppointment": 3}, redis_client=client, clock=manual_clock)
    limiter.hit("salon-a", "createAppointment")

    limiter.sync_with_redis()

    with pytest.raises(RateLimitExceededError) as exc_info:
        limiter.hit("salon-a", "createAppointment")
    assert exc_info.value.retry_after == 30


def test_counts_are_mirrored_to_redis(manual_clock):
    client = InMemoryRedis()
    limiter = RateLimiter(limits={"createAppointment": 5}, redis_client=client, clock=manual_clock)
    limiter.hit("salon-a", "createAppointment")
    limiter.hit("salon-a", "createAppointment")

    assert limiter.sync_with_redis() == 1
    assert client.values["rate_limit:salon-a:createAppointment"] == "2"
    assert client.ttls["rate_limit:salon-a:createAppointment"] == 60

    # Nothing changed since the last round
    assert limiter.sync_with_redis() == 0


def test_redis_failure_falls_back_to_memory(manual_clock):
    limiter = RateLimiter(
        limits={"createAppointment": 1}, redis_client=InMemoryRedis(fail=True), clock=manual_clock
    )

    limiter.hit("salon-a", "createAppointment")
    assert limiter.sync_with_redis() == 0
    with pytest.raises(RateLimitExceededError):
        limiter.hit("salon-a", "createAppointment")


async def test_redis_sync_runs_in_the_background(manual_clock):
    client = InMemoryRedis()
    limiter = RateLimiter(
        limits={"createAppointment": 5},
        redis_client=client,
        redis_sync_interval_seconds=0,
        clock=manual_clock,
    )
    limiter.hit("salon-a", "createAppointment")

    limiter.start()
    for _ in range(50):
        if "rate_limit:salon-a:createAppointment" in client.values:
            break
        await asyncio.sleep(0.01)
    await limiter.stop()

    assert client.values["rate_limit:salon-a:createAppointment"] == "1"
    assert limiter._redis_sync is None


async def test_janitor_runs_cleanup_until_stopped(manual_clock):
    limiter = RateLimiter(
        limits={"createAppointment": 1},
        cleanup_interval_seconds=0,
        stale_after_seconds=10,
        clock=manual_clock,
    )
    limiter.hit("salon-a", "createAppointment")
    manual_clock.now += 11

    limiter.start()
    await asyncio.sleep(0.01)
    await limiter.stop()

    assert len(limiter) == 0
    assert limiter._janitor is None
