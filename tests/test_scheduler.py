import asyncio

import pytest

from anvesha.crawler.errors import FailureKind, SchedulerDenied
from anvesha.crawler.scheduler import CrawlScheduler


class TestPoliteness:
    @pytest.mark.asyncio
    async def test_same_domain_grants_are_spaced_by_delay(self):
        scheduler = CrawlScheduler(concurrent_requests=5, request_delay_ms=50)
        grants = []

        async def fetch_once():
            async with scheduler.acquire("example.com") as permit:
                grants.append(permit.granted_at)

        await asyncio.gather(*[fetch_once() for _ in range(4)])

        grants.sort()
        gaps = [later - earlier for earlier, later in zip(grants, grants[1:])]
        assert len(gaps) == 3
        assert all(gap >= 0.05 for gap in gaps)

    @pytest.mark.asyncio
    async def test_other_domains_are_not_delayed(self):
        scheduler = CrawlScheduler(concurrent_requests=5, request_delay_ms=500)
        loop = asyncio.get_running_loop()
        started = loop.time()

        async def fetch_once(domain):
            async with scheduler.acquire(domain):
                pass

        await asyncio.gather(*[fetch_once(f"site{i}.com") for i in range(5)])
        assert loop.time() - started < 0.4

    @pytest.mark.asyncio
    async def test_domain_policy_overrides_default_delay(self):
        scheduler = CrawlScheduler(request_delay_ms=1000)
        scheduler.set_domain_policy("fast.com", crawl_delay_ms=0)
        assert scheduler.domain_delay("fast.com") == 0
        assert scheduler.domain_delay("other.com") == 1.0
        assert scheduler.has_domain_policy("fast.com")
        assert not scheduler.has_domain_policy("other.com")

    def test_negative_crawl_delay_rejected(self):
        scheduler = CrawlScheduler()
        with pytest.raises(ValueError):
            scheduler.set_domain_policy("example.com", crawl_delay_ms=-1)


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_global_bound_is_never_exceeded(self):
        scheduler = CrawlScheduler(concurrent_requests=2, request_delay_ms=0)
        current = 0
        peak = 0

        async def fetch_once(domain):
            nonlocal current, peak
            async with scheduler.acquire(domain):
                current += 1
                peak = max(peak, current)
                await asyncio.sleep(0.02)
                current -= 1

        await asyncio.gather(*[fetch_once(f"site{i}.com") for i in range(8)])

        assert peak == 2
        assert scheduler.in_flight == 0
        assert scheduler.get_stats()['available_permits'] == 2
        assert scheduler.stats['permits_granted'] == 8

    @pytest.mark.asyncio
    async def test_permit_released_on_error(self):
        scheduler = CrawlScheduler(concurrent_requests=1, request_delay_ms=0)

        with pytest.raises(RuntimeError):
            async with scheduler.acquire("example.com"):
                raise RuntimeError("fetch blew up")

        assert scheduler.in_flight == 0
        async with scheduler.acquire("example.com"):
            assert scheduler.in_flight == 1

    @pytest.mark.asyncio
    async def test_denied_domain_consumes_no_slot(self):
        scheduler = CrawlScheduler(concurrent_requests=1, request_delay_ms=0)
        scheduler.set_domain_policy("blocked.com", crawl_allowed=False)

        assert not scheduler.is_allowed("blocked.com")
        with pytest.raises(SchedulerDenied):
            async with scheduler.acquire("blocked.com"):
                pass

        assert scheduler.get_stats()['available_permits'] == 1
        assert scheduler.stats['permits_granted'] == 0

    def test_invalid_arguments(self):
        with pytest.raises(ValueError):
            CrawlScheduler(concurrent_requests=0)
        with pytest.raises(ValueError):
            CrawlScheduler(request_delay_ms=-5)


class TestRetryPolicy:
    def test_transient_failures_retry_until_attempts_spent(self):
        scheduler = CrawlScheduler(max_retries=3, retry_base_delay_ms=1000)
        url = "https://example.com/flaky"

        first = scheduler.record_failure("example.com", url, FailureKind.TRANSIENT)
        second = scheduler.record_failure("example.com", url, FailureKind.TRANSIENT)
        third = scheduler.record_failure("example.com", url, FailureKind.TRANSIENT)

        assert (first.retry, first.delay, first.attempt) == (True, 1.0, 1)
        assert (second.retry, second.delay, second.attempt) == (True, 2.0, 2)
        assert (third.retry, third.attempt) == (False, 3)
        assert scheduler.get_stats()['pending_retries'] == 0
        assert scheduler.stats['retries_scheduled'] == 2
        assert scheduler.stats['permanent_failures'] == 1

    def test_permanent_failure_never_retries(self):
        scheduler = CrawlScheduler(max_retries=5)
        decision = scheduler.record_failure("example.com", "https://example.com/gone",
                                            FailureKind.PERMANENT)
        assert not decision.retry
        assert decision.attempt == 1

    def test_single_attempt_when_max_retries_is_one(self):
        scheduler = CrawlScheduler(max_retries=1)
        decision = scheduler.record_failure("example.com", "https://example.com/",
                                            FailureKind.TRANSIENT)
        assert not decision.retry

    def test_success_resets_attempts(self):
        scheduler = CrawlScheduler(max_retries=2)
        url = "https://example.com/"
        assert scheduler.record_failure("example.com", url, FailureKind.TRANSIENT).retry

        outcome = scheduler.record_outcome("example.com", url)
        assert not outcome.retry
        assert scheduler.get_stats()['pending_retries'] == 0

        # A fresh failure starts counting again
        assert scheduler.record_failure("example.com", url, FailureKind.TRANSIENT).retry

    def test_backoff_is_capped(self):
        scheduler = CrawlScheduler(retry_base_delay_ms=1000, retry_max_delay_ms=5000)
        assert scheduler.backoff_delay(1) == 1.0
        assert scheduler.backoff_delay(3) == 4.0
        assert scheduler.backoff_delay(4) == 5.0
        assert scheduler.backoff_delay(10) == 5.0
