"""
Crawl orchestrator: the worker pool tying frontier, scheduler, fetcher,
page processor and storage together.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import redis.asyncio as redis
from redis.exceptions import RedisError

from .checkpoint import FrontierCheckpoint
from .errors import CrawlError, FetchError, FrontierRejected, SchedulerDenied
from .fetcher import FetchResult, PageFetcher, WebFetcher
from .parser import PageProcessor, ProcessedPage
from .robots import RobotsChecker, RobotsPolicy
from .scheduler import CrawlScheduler
from .url_frontier import AddStatus, FrontierEntry, URLFrontier
from .urls import extract_domain
from ..storage.database import DatabaseError, DatabaseManager
from ..storage.models import Domain, Link, Page, SessionStatus, utcnow
from ..utils.config import Config
from ..utils.logger import CrawlerLogAdapter, get_crawler_logger
from ..utils.monitoring import CrawlerMonitor, MetricsCollector


@dataclass
class CrawlStats:
    """Statistics for crawl operations, shared by every worker."""
    start_time: float = field(default_factory=time.time)
    pages_crawled: int = 0
    pages_failed: int = 0
    pages_denied: int = 0
    retries: int = 0
    links_discovered: int = 0
    links_enqueued: int = 0
    frontier_rejected: int = 0
    total_bytes_downloaded: int = 0
    average_response_time: float = 0.0
    frontier_size: int = 0

    @property
    def elapsed_time(self) -> float:
        return time.time() - self.start_time

    @property
    def pages_per_minute(self) -> float:
        elapsed_minutes = self.elapsed_time / 60
        return self.pages_crawled / elapsed_minutes if elapsed_minutes > 0 else 0

    def record_response_time(self, response_time: float):
        fetched = self.pages_crawled + 1
        self.average_response_time += (response_time - self.average_response_time) / fetched


class CrawlOrchestrator:
    """
    Runs a fixed pool of asyncio workers over one frontier and one scheduler.

    The crawl ends when the frontier is empty with no URL in progress, when
    `max_pages` pages have been stored, or when `shutdown()` is called.
    Collaborators may be injected; missing ones are built from the config
    by `initialize()`.
    """

    def __init__(self, config: Config, storage=None,
                 fetcher: Optional[PageFetcher] = None,
                 robots: Optional[RobotsPolicy] = None,
                 monitor: Optional[CrawlerMonitor] = None):
        self.config = config
        self.logger = logging.getLogger(__name__)

        self.storage = storage
        self.fetcher = fetcher
        self.robots = robots
        self.monitor = monitor
        self.redis_client: Optional[redis.Redis] = None
        self.frontier: Optional[URLFrontier] = None
        self.scheduler: Optional[CrawlScheduler] = None
        self.processor: Optional[PageProcessor] = None

        self._owns_storage = storage is None
        self._owns_fetcher = fetcher is None

        self.stats = CrawlStats()
        self.session_id: Optional[int] = None
        self.workers: List[asyncio.Task] = []
        self._stop = asyncio.Event()
        self._stop_reason = ""
        self._active = 0
        self._domain_locks: Dict[str, asyncio.Lock] = {}

    async def initialize(self):
        """Build every collaborator that was not injected."""
        crawler = self.config.crawler

        if self.storage is None:
            manager = DatabaseManager(self.config.database)
            await manager.initialize()
            self.storage = manager

        if self.fetcher is None:
            self.fetcher = WebFetcher(
                user_agent=crawler.user_agent,
                request_timeout=crawler.request_timeout,
                max_concurrent_requests=crawler.concurrent_requests,
                max_content_size=crawler.max_content_size,
            )
            await self.fetcher.start()

        if self.robots is None and crawler.respect_robots_txt:
            self.robots = RobotsChecker(self.fetcher, crawler.user_agent)

        checkpoint = None
        if self.config.redis.enabled:
            self.redis_client = redis.Redis(
                host=self.config.redis.host,
                port=self.config.redis.port,
                db=self.config.redis.db,
                password=self.config.redis.password,
                decode_responses=False
            )
            await self.redis_client.ping()
            self.logger.info("Redis connection established")

            checkpoint = FrontierCheckpoint(self.redis_client, self.config.redis.key_prefix)
            if not crawler.resume:
                await checkpoint.clear()

        self.frontier = URLFrontier(max_admitted=crawler.max_admitted, checkpoint=checkpoint)
        await self.frontier.initialize()

        self.scheduler = CrawlScheduler(
            concurrent_requests=crawler.concurrent_requests,
            request_delay_ms=crawler.request_delay_ms,
            max_retries=crawler.max_retries,
            retry_base_delay_ms=crawler.retry_base_delay_ms,
            retry_max_delay_ms=crawler.retry_max_delay_ms,
        )

        self.processor = PageProcessor(
            max_links_per_page=crawler.max_links_per_page,
            allowed_domains=crawler.allowed_domains,
            blocked_domains=crawler.blocked_domains,
        )

        if self.monitor is None:
            collector = MetricsCollector(self.config.monitoring.metrics_enabled,
                                         self.config.monitoring.prometheus_port)
            collector.start_server()
            self.monitor = CrawlerMonitor(collector)

        self.logger.info("Crawl orchestrator initialized")

    def shutdown(self, reason: str = "shutdown requested"):
        """Ask every worker to stop; idle workers notice within one poll interval."""
        if not self._stop.is_set():
            self._stop_reason = reason
            self.logger.info(f"Stopping crawl: {reason}")
            self._stop.set()

    @property
    def is_running(self) -> bool:
        return bool(self.workers) and not self._stop.is_set()

    async def run(self) -> CrawlStats:
        """
        Crawl from the configured seeds until done.

        Returns:
            Final CrawlStats

        Raises:
            FrontierRejected: if no seed URL could be admitted
            DatabaseError: if the crawl session cannot be recorded
        """
        if self.frontier is None:
            await self.initialize()

        crawler = self.config.crawler
        self.stats = CrawlStats()
        self._stop.clear()
        self.session_id = await self.storage.create_session(crawler.seed_urls,
                                                             self.config.to_snapshot())
        status = SessionStatus.FAILED

        try:
            await self._add_seed_urls()

            self.workers = [
                asyncio.create_task(self._worker(f"worker-{i}"))
                for i in range(crawler.concurrent_requests)
            ]
            stats_task = asyncio.create_task(self._stats_reporter())

            self.logger.info(f"Started crawling with {len(self.workers)} workers")
            try:
                await asyncio.gather(*self.workers)
            finally:
                stats_task.cancel()
                await asyncio.gather(stats_task, return_exceptions=True)

            status = SessionStatus.COMPLETED

        except asyncio.CancelledError:
            self.shutdown("cancelled")
            status = SessionStatus.COMPLETED
            raise

        finally:
            await self._cleanup_workers()
            self.stats.frontier_size = len(self.frontier)
            try:
                await self.storage.close_session(self.session_id, status,
                                                 self.stats.pages_crawled,
                                                 self.stats.pages_failed)
            except DatabaseError as e:
                self.logger.error(f"Failed to close crawl session {self.session_id}: {e}")
            self._log_final_stats()

        return self.stats

    async def _add_seed_urls(self):
        """Add seed URLs to the frontier at depth 0."""
        added = 0
        for url in self.config.crawler.seed_urls:
            result = await self.frontier.add(url, depth=0)
            if result.status is AddStatus.REJECTED:
                self.logger.warning(f"Rejected seed URL {url}: {result.reason}")
                self.stats.frontier_rejected += 1
            elif result.added:
                added += 1

        self.logger.info(f"Added {added} seed URLs to frontier")
        if self.frontier.is_empty() and added == 0 and self.stats.frontier_rejected:
            raise FrontierRejected("No valid seed URLs")

    async def _worker(self, worker_id: str):
        """Worker coroutine that processes URLs from the frontier."""
        log = get_crawler_logger(__name__, worker_id=worker_id)
        log.debug(f"Worker {worker_id} started")
        max_pages = self.config.crawler.max_pages

        while not self._stop.is_set():
            # URLs in progress count against the page cap so it is never exceeded
            if self.stats.pages_crawled + self._active >= max_pages:
                if self.stats.pages_crawled >= max_pages:
                    self.shutdown(f"reached max pages limit: {max_pages}")
                    break
                await self._idle_wait()
                continue

            entry = await self.frontier.next()
            if entry is None:
                if self._active == 0 and self.frontier.is_empty():
                    self.shutdown("frontier exhausted")
                    break
                await self._idle_wait()
                continue

            self._active += 1
            self.monitor.update_active_workers(self._active)
            try:
                await self._crawl_entry(entry, log)
            except DatabaseError as e:
                log.error(f"Storage error for {entry.url}: {e}")
                await self._record_failure(entry, "storage")
            except Exception as e:
                # A single URL must never take the worker down
                log.error(f"Unexpected error processing {entry.url}: {e}", exc_info=True)
                await self._record_failure(entry, "internal")
            finally:
                self._active -= 1
                self.monitor.update_active_workers(self._active)

        log.debug(f"Worker {worker_id} finished")

    async def _idle_wait(self, timeout: Optional[float] = None) -> bool:
        """Wait up to `timeout` (default poll_interval) for the stop signal. True if stopped."""
        try:
            await asyncio.wait_for(self._stop.wait(),
                                   timeout=timeout if timeout is not None
                                   else self.config.crawler.poll_interval)
        except asyncio.TimeoutError:
            return False
        return True

    async def _crawl_entry(self, entry: FrontierEntry, log: CrawlerLogAdapter):
        """Fetch, process and store one URL, retrying transient failures."""
        url = entry.url
        domain = extract_domain(url)

        while True:
            try:
                result, processed = await self._fetch_and_process(entry, domain)
                break
            except CrawlError as e:
                decision = self.scheduler.record_failure(domain, url, e.kind)
                if not decision.retry:
                    log.log_url_event(logging.WARNING, url, f"Giving up on {url}: {e}")
                    label = 'denied' if isinstance(e, SchedulerDenied) else e.kind.value
                    await self._record_failure(entry, label)
                    return

                self.stats.retries += 1
                self.monitor.record_retry()
                log.debug(f"Attempt {decision.attempt} failed for {url}: {e}; "
                          f"retrying in {decision.delay:.2f}s")
                if await self._idle_wait(decision.delay):
                    # Left pending in the checkpoint so a resumed crawl retries it
                    log.info(f"Abandoning retry of {url} on shutdown")
                    return

        await self._store_page(entry, domain, result, processed)
        self.scheduler.record_success(domain, url)

        self.stats.record_response_time(result.fetch_time)
        self.stats.pages_crawled += 1
        self.stats.total_bytes_downloaded += len(result.body)
        self.monitor.record_page_crawled(result.status_code, result.fetch_time, len(result.body))
        log.debug(f"Crawled {url} ({processed.word_count} words, {len(processed.links)} links)")

        await self._update_checkpoint(self.frontier.mark_crawled, url)
        await self._queue_new_urls(processed, entry.depth + 1)

        if self.stats.pages_crawled >= self.config.crawler.max_pages:
            self.shutdown(f"reached max pages limit: {self.config.crawler.max_pages}")

    async def _fetch_and_process(self, entry: FrontierEntry,
                                 domain: str) -> Tuple[FetchResult, ProcessedPage]:
        await self._ensure_domain_policy(domain, entry.url)

        if self.robots and not await self.robots.is_allowed(domain, entry.url):
            raise SchedulerDenied(f"Disallowed by robots.txt: {entry.url}", entry.url)

        async with self.scheduler.acquire(domain):
            try:
                result = await asyncio.wait_for(
                    self.fetcher.fetch(entry.url, timeout=self.config.crawler.request_timeout),
                    timeout=self.config.crawler.fetch_deadline,
                )
            except asyncio.TimeoutError as e:
                raise FetchError.transient("Fetch deadline exceeded", entry.url) from e

        processed = self.processor.process(entry.url, entry.depth, result.body,
                                           result.content_type)
        return result, processed

    async def _ensure_domain_policy(self, domain: str, url: str):
        """Load or create the Domain row and register it with the scheduler once per run."""
        if self.scheduler.has_domain_policy(domain):
            return

        lock = self._domain_locks.setdefault(domain, asyncio.Lock())
        async with lock:
            if self.scheduler.has_domain_policy(domain):
                return

            record = await self.storage.get_domain(domain)
            if record is None:
                record = Domain(domain=domain, crawl_delay=self.config.crawler.request_delay_ms)

            if self.robots:
                delay = await self.robots.crawl_delay(domain, url)
                if delay is not None:
                    record.crawl_delay = int(delay * 1000)
                record.robots_txt = self.robots.robots_txt(domain)
                record.robots_fetched_at = utcnow()

            await self.storage.upsert_domain(record)
            self.scheduler.set_domain_policy(domain, record.crawl_delay, record.crawl_allowed)
            self.logger.debug(f"Domain policy for {domain}: delay={record.crawl_delay}ms, "
                              f"allowed={record.crawl_allowed}")

    async def _store_page(self, entry: FrontierEntry, domain: str,
                          result: FetchResult, processed: ProcessedPage):
        page = Page.from_processed(processed, domain, result.status_code, result.last_modified)
        page_id = await self.storage.save_page(page)

        links = [
            Link(source_page_id=page_id, target_url=link.url,
                 anchor_text=link.anchor_text, link_position=link.position)
            for link in processed.links
        ]
        await self.storage.save_links(page_id, links)

    async def _queue_new_urls(self, processed: ProcessedPage, depth: int):
        """Queue new URLs found on a page."""
        self.stats.links_discovered += len(processed.links)

        added = rejected = 0
        if depth <= self.config.crawler.max_depth:
            for url in processed.links_to_enqueue:
                try:
                    result = await self.frontier.add(url, depth)
                except RedisError as e:
                    # The page itself is stored; only its remaining links are lost
                    self.logger.error(f"Frontier checkpoint unavailable, dropped links of "
                                      f"{processed.url} from {url} on: {e}")
                    break
                if result.added:
                    added += 1
                elif result.status is AddStatus.REJECTED:
                    rejected += 1

        self.stats.links_enqueued += added
        self.stats.frontier_rejected += rejected
        self.monitor.record_links(len(processed.links), rejected)
        if added:
            self.logger.debug(f"Queued {added} new URLs from {processed.url}")

    async def _record_failure(self, entry: FrontierEntry, kind: str):
        self.stats.pages_failed += 1
        if kind == 'denied':
            self.stats.pages_denied += 1
        self.monitor.record_failure(kind)
        await self._update_checkpoint(self.frontier.mark_failed, entry.url)

    async def _update_checkpoint(self, mark, url: str):
        """Run a frontier bookkeeping call; checkpoint errors never change the URL's outcome."""
        try:
            await mark(url)
        except RedisError as e:
            self.logger.error(f"Frontier checkpoint update failed for {url}: {e}")

    async def _stats_reporter(self):
        """Periodically log crawl statistics and flush session counters."""
        while not self._stop.is_set():
            await self._idle_wait(self.config.crawler.stats_interval)
            self._log_current_stats()
            try:
                await self.storage.update_session(self.session_id, self.stats.pages_crawled,
                                                  self.stats.pages_failed)
            except DatabaseError as e:
                self.logger.error(f"Failed to update crawl session: {e}")

    def _log_current_stats(self):
        """Log current crawl statistics."""
        self.stats.frontier_size = len(self.frontier)
        self.monitor.update_frontier_size(self.stats.frontier_size)

        self.logger.info(
            f"Crawl Progress: "
            f"Crawled={self.stats.pages_crawled}, "
            f"Failed={self.stats.pages_failed}, "
            f"Queued={self.stats.frontier_size}, "
            f"InFlight={self._active}, "
            f"Retries={self.stats.retries}, "
            f"Rate={self.stats.pages_per_minute:.1f} pages/min, "
            f"AvgTime={self.stats.average_response_time:.2f}s"
        )

    def _log_final_stats(self):
        """Log the end-of-run summary."""
        self.logger.info("=== CRAWL COMPLETED ===")
        if self._stop_reason:
            self.logger.info(f"Stop reason: {self._stop_reason}")
        self.logger.info(f"Pages crawled: {self.stats.pages_crawled}")
        self.logger.info(f"Pages failed: {self.stats.pages_failed}")
        self.logger.info(f"Final frontier size: {self.stats.frontier_size}")
        self.logger.info(f"Links discovered: {self.stats.links_discovered}")
        self.logger.info(f"Total time: {self.stats.elapsed_time:.2f} seconds")
        self.logger.info(f"Average rate: {self.stats.pages_per_minute:.1f} pages/min")
        self.logger.info(f"Data downloaded: {self.stats.total_bytes_downloaded / 1024 / 1024:.1f} MB")
        self.logger.info(f"Frontier stats: {self.frontier.get_stats()}")
        self.logger.info(f"Scheduler stats: {self.scheduler.get_stats()}")

    def get_stats(self) -> Dict:
        """Live statistics from every component."""
        return {
            'pages_crawled': self.stats.pages_crawled,
            'pages_failed': self.stats.pages_failed,
            'pages_denied': self.stats.pages_denied,
            'retries': self.stats.retries,
            'links_discovered': self.stats.links_discovered,
            'frontier_rejected': self.stats.frontier_rejected,
            'in_flight': self._active,
            'elapsed_time': self.stats.elapsed_time,
            'pages_per_minute': self.stats.pages_per_minute,
            'frontier': self.frontier.get_stats() if self.frontier else {},
            'scheduler': self.scheduler.get_stats() if self.scheduler else {},
        }

    async def _cleanup_workers(self):
        """Cancel and cleanup worker tasks."""
        self._stop.set()
        if self.workers:
            for worker in self.workers:
                if not worker.done():
                    worker.cancel()
            await asyncio.gather(*self.workers, return_exceptions=True)
            self.workers.clear()

    async def close(self):
        """Close all owned connections."""
        if self.fetcher and self._owns_fetcher:
            await self.fetcher.close()

        if self.storage and self._owns_storage:
            await self.storage.close()

        if self.redis_client:
            await self.redis_client.aclose()

        self.logger.info("Crawl orchestrator closed")
