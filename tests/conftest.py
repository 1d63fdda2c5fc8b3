import asyncio
from typing import Dict, List, Optional

import pytest
import pytest_asyncio

from anvesha.crawler.errors import FetchError
from anvesha.crawler.fetcher import FetchResult, PageFetcher
from anvesha.storage.database import SQLiteStorageBackend
from anvesha.utils.config import Config, CrawlerConfig, LoggingConfig


class FakeFetcher(PageFetcher):
    """In-memory fetcher: serves HTML by URL, fails with fixed status codes."""

    def __init__(self, pages: Optional[Dict[str, str]] = None,
                 failures: Optional[Dict[str, int]] = None,
                 delay: float = 0.0, content_type: str = 'text/html; charset=utf-8'):
        self.pages = pages or {}
        self.failures = failures or {}
        self.delay = delay
        self.content_type = content_type
        self.calls: List[str] = []

    async def fetch(self, url, timeout=None):
        self.calls.append(url)
        if self.delay:
            await asyncio.sleep(self.delay)

        status = self.failures.get(url)
        if status is not None:
            if status >= 500 or status == 429:
                raise FetchError.transient(f"HTTP {status}", url, status)
            raise FetchError.permanent(f"HTTP {status}", url, status)

        if url not in self.pages:
            raise FetchError.permanent("HTTP 404", url, 404)

        body = self.pages[url].encode('utf-8')
        return FetchResult(
            url=url,
            status_code=200,
            body=body,
            headers={'Content-Type': self.content_type},
            content_type=self.content_type,
            fetch_time=0.001,
        )

    def call_count(self, url: str) -> int:
        return self.calls.count(url)


def html_page(title: str, links: List[str] = (), body: str = "") -> str:
    anchors = "".join(f'<a href="{href}">link to {href}</a> ' for href in links)
    return (f"<html><head><title>{title}</title></head>"
            f"<body><p>{body or title + ' page content for testing'}</p>{anchors}</body></html>")


@pytest.fixture
def crawl_config():
    """Config tuned for fast in-process crawls."""
    return Config(
        crawler=CrawlerConfig(
            seed_urls=["https://example.com"],
            max_pages=100,
            max_depth=5,
            concurrent_requests=4,
            request_delay_ms=0,
            max_retries=3,
            request_timeout=1,
            fetch_deadline=2,
            poll_interval=0.01,
            retry_base_delay_ms=1,
            retry_max_delay_ms=5,
            respect_robots_txt=False,
            stats_interval=0.05,
        ),
        logging=LoggingConfig(file=None),
    )


@pytest_asyncio.fixture
async def storage(tmp_path):
    backend = SQLiteStorageBackend(str(tmp_path / "crawl.db"))
    await backend.initialize()
    yield backend
    await backend.close()
