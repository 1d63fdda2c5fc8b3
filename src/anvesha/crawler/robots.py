"""
robots.txt policy support.
"""

import logging
import time
from dataclasses import dataclass
from typing import Dict, Optional
from urllib.robotparser import RobotFileParser

from .errors import FetchError
from .fetcher import PageFetcher


class RobotsPolicy:
    """
    Interface consulted by the orchestrator before crawling a domain.

    Implementations raise a transient FetchError when the policy cannot be
    determined right now; the URL is then retried like a failed fetch.
    """

    async def is_allowed(self, domain: str, url: str) -> bool:
        raise NotImplementedError

    async def crawl_delay(self, domain: str, url: Optional[str] = None) -> Optional[float]:
        """Crawl delay in seconds requested by the domain, if any."""
        raise NotImplementedError

    def robots_txt(self, domain: str) -> Optional[str]:
        return None


@dataclass
class RobotsEntry:
    parser: RobotFileParser
    text: Optional[str]
    fetched_at: float


class RobotsChecker(RobotsPolicy):
    """Fetches, caches and evaluates robots.txt per domain."""

    def __init__(self, fetcher: PageFetcher, user_agent: str,
                 cache_ttl: int = 3600, timeout: float = 10):
        self.fetcher = fetcher
        self.user_agent = user_agent
        self.cache_ttl = cache_ttl
        self.timeout = timeout
        self.robots_cache: Dict[str, RobotsEntry] = {}
        self.logger = logging.getLogger(__name__)

    async def _get_entry(self, domain: str, scheme: str = 'https') -> RobotsEntry:
        entry = self.robots_cache.get(domain)
        current_time = time.time()
        if entry and current_time - entry.fetched_at < self.cache_ttl:
            return entry

        robots_url = f"{scheme}://{domain}/robots.txt"
        text: Optional[str] = None
        try:
            result = await self.fetcher.fetch(robots_url, timeout=self.timeout)
            text = result.body.decode('utf-8', errors='replace')
        except FetchError as e:
            if e.is_transient:
                # Server error or timeout: nothing is cached, the caller retries later
                self.logger.warning(f"robots.txt for {domain} temporarily unavailable: {e}")
                raise
            # A missing robots.txt allows everything
            self.logger.info(f"No robots.txt for {domain}: {e}")

        parser = RobotFileParser()
        parser.set_url(robots_url)
        parser.parse((text or "").splitlines())

        entry = RobotsEntry(parser=parser, text=text, fetched_at=current_time)
        self.robots_cache[domain] = entry
        return entry

    @staticmethod
    def _scheme(url: Optional[str]) -> str:
        if url and url.startswith('http://'):
            return 'http'
        return 'https'

    async def is_allowed(self, domain: str, url: str) -> bool:
        entry = await self._get_entry(domain, self._scheme(url))
        return entry.parser.can_fetch(self.user_agent, url)

    async def crawl_delay(self, domain: str, url: Optional[str] = None) -> Optional[float]:
        entry = await self._get_entry(domain, self._scheme(url))
        delay = entry.parser.crawl_delay(self.user_agent)
        return float(delay) if delay is not None else None

    def robots_txt(self, domain: str) -> Optional[str]:
        entry = self.robots_cache.get(domain)
        return entry.text if entry else None
