import pytest

from trendscout.collectors.errors import RetryExhausted
from trendscout.collectors.rate_governor import DEFAULT_LIMITS, RateGovernor, RateLimit


class Clock:
    def __init__(self):
        self.t = 0.0

    def __call__(self):
        return self.t


def make_governor(clock, limit=3, window=60, **kwargs):
    return RateGovernor({"reddit": RateLimit(limit, window)}, clock=clock, **kwargs)


def test_remaining_decrements_per_request():
    clock = Clock()
    gov = make_governor(clock)
    assert gov.remaining("reddit") == 3
    for expected in (2, 1, 0):
        gov.record("reddit")
        assert gov.remaining("reddit") == expected


def test_window_resets_after_duration():
    clock = Clock()
    gov = make_governor(clock)
    for _ in range(3):
        assert gov.try_acquire("reddit")
    assert not gov.try_acquire("reddit")
    assert not gov.check("reddit")

    clock.t = 59.9
    assert gov.remaining("reddit") == 0
    clock.t = 60
    assert gov.remaining("reddit") == 3
    assert gov.try_acquire("reddit")
    assert gov.remaining("reddit") == 2


def test_check_does_not_consume_budget():
    gov = make_governor(Clock())
    for _ in range(10):
        assert gov.check("reddit")
    assert gov.remaining("reddit") == 3


def test_unconfigured_source_is_ungoverned():
    gov = make_governor(Clock())
    assert gov.check("mastodon")
    assert gov.try_acquire("mastodon")
    assert gov.remaining("mastodon") == 0


def test_default_limits_cover_all_sources():
    gov = RateGovernor()
    assert gov.limits == DEFAULT_LIMITS
    assert gov.remaining("twitter") == 300
    assert gov.status()["github"]["request_limit"] == 5000


@pytest.mark.asyncio
async def test_acquire_waits_for_window_reset():
    clock = Clock()
    sleeps = []

    async def sleep(seconds):
        sleeps.append(seconds)
        clock.t += seconds

    gov = make_governor(clock, limit=1, window=10, sleep=sleep)
    await gov.acquire("reddit")
    assert sleeps == []
    await gov.acquire("reddit")
    assert sleeps == [10]
    assert gov.remaining("reddit") == 0


@pytest.mark.asyncio
async def test_backoff_delay_within_bounds(fake_sleep):
    for jitter in (0.0, 0.5, 0.999):
        gov = RateGovernor(base_delay=1.0, jitter_max=1.0, sleep=fake_sleep, rng=lambda j=jitter: j)
        for attempt in range(3):
            delay = await gov.backoff(attempt, 3)
            assert 2**attempt <= delay <= 2**attempt + 1.0
    assert len(fake_sleep.calls) == 9


@pytest.mark.asyncio
async def test_backoff_raises_past_max_attempts(fake_sleep):
    gov = RateGovernor(sleep=fake_sleep, rng=lambda: 0.0)
    with pytest.raises(RetryExhausted) as exc_info:
        await gov.backoff(3, 3)
    assert exc_info.value.max_attempts == 3
    assert fake_sleep.calls == []


@pytest.mark.asyncio
async def test_backoff_respects_cap_and_retry_after_floor(fake_sleep):
    gov = RateGovernor(base_delay=1.0, max_delay=30.0, sleep=fake_sleep, rng=lambda: 0.0)
    assert await gov.backoff(10, 20) == 30.0
    assert await gov.backoff(0, 3, floor=7.5) == 7.5
    assert await gov.backoff(0, 3, floor=120) == 30.0
    assert fake_sleep.calls == [30.0, 7.5, 30.0]


def test_reset_clears_window():
    gov = make_governor(Clock())
    gov.record("reddit")
    gov.reset("reddit")
    assert gov.remaining("reddit") == 3
