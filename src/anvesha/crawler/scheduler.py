"""
Crawl scheduler: per-domain politeness, global concurrency admission and retry policy.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable, Dict, Optional

from .errors import FailureKind, SchedulerDenied


@dataclass
class Permit:
    """Scope-bound authorization to perform one fetch against a domain."""
    domain: str
    granted_at: float


@dataclass(frozen=True)
class RetryDecision:
    """What to do after a failed attempt."""
    retry: bool
    delay: float = 0.0
    attempt: int = 0


@dataclass
class DomainState:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    last_grant: Optional[float] = None
    crawl_delay_ms: Optional[int] = None
    crawl_allowed: bool = True
    successes: int = 0
    failures: int = 0


class CrawlScheduler:
    """
    Gatekeeper between the frontier and the network.

    Delay is per domain and concurrency is global, so many domains can be
    crawled in parallel while each one is throttled independently. A worker
    waiting out one domain's delay holds that domain's lock, never a global
    slot.
    """

    def __init__(self, concurrent_requests: int = 10, request_delay_ms: int = 1000,
                 max_retries: int = 3, retry_base_delay_ms: int = 1000,
                 retry_max_delay_ms: int = 30000,
                 clock: Callable[[], float] = time.monotonic):
        if concurrent_requests < 1:
            raise ValueError("concurrent_requests must be at least 1")
        if request_delay_ms < 0:
            raise ValueError("request_delay_ms must be non-negative")

        self.concurrent_requests = concurrent_requests
        self.request_delay_ms = request_delay_ms
        self.max_retries = max_retries
        self.retry_base_delay_ms = retry_base_delay_ms
        self.retry_max_delay_ms = retry_max_delay_ms
        self.logger = logging.getLogger(__name__)

        self._clock = clock
        self._semaphore = asyncio.Semaphore(concurrent_requests)
        self._domains: Dict[str, DomainState] = {}
        self._attempts: Dict[str, int] = {}
        self._in_flight = 0

        self.stats = {
            'permits_granted': 0,
            'retries_scheduled': 0,
            'permanent_failures': 0,
        }

    def _domain_state(self, domain: str) -> DomainState:
        state = self._domains.get(domain)
        if state is None:
            state = DomainState()
            self._domains[domain] = state
        return state

    def set_domain_policy(self, domain: str, crawl_delay_ms: Optional[int] = None,
                          crawl_allowed: bool = True):
        """Register the stored Domain settings (crawl delay, crawl_allowed)."""
        if crawl_delay_ms is not None and crawl_delay_ms < 0:
            raise ValueError("crawl_delay must be non-negative")
        state = self._domain_state(domain)
        state.crawl_delay_ms = crawl_delay_ms
        state.crawl_allowed = crawl_allowed

    def has_domain_policy(self, domain: str) -> bool:
        return domain in self._domains

    def is_allowed(self, domain: str) -> bool:
        state = self._domains.get(domain)
        return state is None or state.crawl_allowed

    def domain_delay(self, domain: str) -> float:
        """Minimum gap between two grants for a domain, in seconds."""
        state = self._domains.get(domain)
        if state is not None and state.crawl_delay_ms is not None:
            return state.crawl_delay_ms / 1000.0
        return self.request_delay_ms / 1000.0

    @asynccontextmanager
    async def acquire(self, domain: str) -> AsyncIterator[Permit]:
        """
        Wait for a global slot and the domain's delay, then yield a Permit.

        Leaving the context frees the global slot.

        Raises:
            SchedulerDenied: if the domain is marked crawl_allowed=false
        """
        permit = await self._grant(domain)
        try:
            yield permit
        finally:
            self._release(permit)

    async def _grant(self, domain: str) -> Permit:
        state = self._domain_state(domain)

        async with state.lock:
            if not state.crawl_allowed:
                raise SchedulerDenied(f"Crawling disallowed for domain: {domain}")

            delay = self.domain_delay(domain)
            if state.last_grant is not None:
                remaining = state.last_grant + delay - self._clock()
                while remaining > 0:
                    self.logger.debug(f"Delay {remaining * 1000:.0f}ms for domain: {domain}")
                    await asyncio.sleep(remaining)
                    remaining = state.last_grant + delay - self._clock()

            await self._semaphore.acquire()
            granted_at = self._clock()
            state.last_grant = granted_at

        self._in_flight += 1
        self.stats['permits_granted'] += 1
        return Permit(domain=domain, granted_at=granted_at)

    def _release(self, permit: Permit):
        self._in_flight -= 1
        self._semaphore.release()

    def backoff_delay(self, attempt: int) -> float:
        """Exponential backoff in seconds for the given retry attempt (1-based)."""
        delay_ms = self.retry_base_delay_ms * (2 ** max(attempt - 1, 0))
        return min(delay_ms, self.retry_max_delay_ms) / 1000.0

    def record_success(self, domain: str, url: str):
        self._domain_state(domain).successes += 1
        self._attempts.pop(url, None)

    def record_failure(self, domain: str, url: str, kind: FailureKind) -> RetryDecision:
        """
        Account a failed attempt and decide whether to retry.

        A URL gets at most `max_retries` attempts in total (at least one):
        transient failures are retried with exponential backoff until the
        attempts are spent; permanent ones are never retried.
        """
        self._domain_state(domain).failures += 1

        if kind is FailureKind.PERMANENT:
            attempts = self._attempts.pop(url, 0) + 1
            self.stats['permanent_failures'] += 1
            return RetryDecision(retry=False, attempt=attempts)

        attempts = self._attempts.get(url, 0) + 1
        if attempts >= self.max_retries:
            self._attempts.pop(url, None)
            self.stats['permanent_failures'] += 1
            self.logger.warning(f"URL failed permanently after {attempts} attempts: {url}")
            return RetryDecision(retry=False, attempt=attempts)

        self._attempts[url] = attempts
        self.stats['retries_scheduled'] += 1
        delay = self.backoff_delay(attempts)
        self.logger.info(f"Retrying URL (attempt {attempts}/{self.max_retries}) in {delay:.2f}s: {url}")
        return RetryDecision(retry=True, delay=delay, attempt=attempts)

    def record_outcome(self, domain: str, url: str,
                       failure: Optional[FailureKind] = None) -> RetryDecision:
        """Record a success (failure=None) or a failure of the given kind."""
        if failure is None:
            self.record_success(domain, url)
            return RetryDecision(retry=False)
        return self.record_failure(domain, url, failure)

    @property
    def in_flight(self) -> int:
        return self._in_flight

    def get_stats(self) -> Dict[str, int]:
        """Get current scheduler stats."""
        return {
            'available_permits': self.concurrent_requests - self._in_flight,
            'active_domains': len(self._domains),
            'pending_retries': len(self._attempts),
            **self.stats,
        }
