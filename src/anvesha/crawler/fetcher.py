"""
Web page fetcher built on aiohttp.

Failures are raised as FetchError with a closed FailureKind so the retry
policy can switch on them exhaustively.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from email.utils import parsedate_to_datetime
from typing import Dict, Optional

import aiohttp
from aiohttp import ClientSession, ClientTimeout, ClientError

from .errors import FetchError


@dataclass
class FetchResult:
    """Result of a successful fetch operation."""
    url: str
    status_code: int
    body: bytes
    headers: Dict[str, str] = field(default_factory=dict)
    content_type: str = ""
    fetch_time: float = 0.0
    final_url: Optional[str] = None

    @property
    def last_modified(self) -> Optional[datetime]:
        value = self.headers.get('Last-Modified') or self.headers.get('last-modified')
        if not value:
            return None
        try:
            return parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return None


class PageFetcher:
    """Interface the crawler uses to retrieve pages."""

    async def fetch(self, url: str, timeout: Optional[float] = None) -> FetchResult:
        """Fetch a URL or raise FetchError."""
        raise NotImplementedError

    async def close(self):
        """Release transport resources."""


class WebFetcher(PageFetcher):
    """
    Fetches web pages with size limits and error classification.

    5xx, 429, timeouts and connection errors are transient; other 4xx
    responses, redirect loops, invalid URLs and oversize bodies are permanent.
    """

    def __init__(self, user_agent: str, request_timeout: float = 30,
                 max_concurrent_requests: int = 10, max_content_size: int = 10 * 1024 * 1024):
        self.user_agent = user_agent
        self.request_timeout = request_timeout
        self.max_concurrent_requests = max_concurrent_requests
        self.max_content_size = max_content_size

        self.logger = logging.getLogger(__name__)
        self.session: Optional[ClientSession] = None

        self.stats = {
            'total_requests': 0,
            'successful_requests': 0,
            'failed_requests': 0,
            'total_bytes_downloaded': 0,
        }

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def start(self):
        """Initialize the fetcher session."""
        if self.session is None:
            timeout = ClientTimeout(total=self.request_timeout)
            headers = {'User-Agent': self.user_agent}

            self.session = aiohttp.ClientSession(
                timeout=timeout,
                headers=headers,
                connector=aiohttp.TCPConnector(
                    limit=self.max_concurrent_requests * 2,
                    limit_per_host=10,
                    ttl_dns_cache=300,
                    use_dns_cache=True
                )
            )
            self.logger.info("WebFetcher session started")

    async def close(self):
        """Close the fetcher session."""
        if self.session:
            await self.session.close()
            self.session = None
            self.logger.info("WebFetcher session closed")

    async def fetch(self, url: str, timeout: Optional[float] = None) -> FetchResult:
        """
        Fetch a single URL.

        Args:
            url: The URL to fetch
            timeout: Per-request timeout in seconds (defaults to request_timeout)

        Returns:
            FetchResult with status, headers and raw body

        Raises:
            FetchError: classified as TRANSIENT or PERMANENT
        """
        if self.session is None:
            await self.start()

        start_time = time.time()
        request_timeout = ClientTimeout(total=timeout or self.request_timeout)
        self.stats['total_requests'] += 1

        try:
            async with self.session.get(url, timeout=request_timeout) as response:
                status = response.status
                if status >= 500 or status == 429:
                    raise FetchError.transient(f"HTTP {status}", url, status)
                if status >= 400:
                    raise FetchError.permanent(f"HTTP {status}", url, status)

                body = await self._read_content_safely(response, url)
                self.stats['successful_requests'] += 1
                self.stats['total_bytes_downloaded'] += len(body)

                result = FetchResult(
                    url=url,
                    status_code=status,
                    body=body,
                    headers=dict(response.headers),
                    content_type=response.headers.get('Content-Type', ''),
                    fetch_time=time.time() - start_time,
                    final_url=str(response.url),
                )
                self.logger.debug(f"Fetched {url}: {status} ({len(body)} bytes)")
                return result

        except FetchError:
            self.stats['failed_requests'] += 1
            raise

        except asyncio.TimeoutError as e:
            self.stats['failed_requests'] += 1
            self.logger.warning(f"Timeout fetching {url}")
            raise FetchError.transient("Request timeout", url) from e

        except (aiohttp.InvalidURL, aiohttp.TooManyRedirects) as e:
            self.stats['failed_requests'] += 1
            self.logger.warning(f"Permanent client error fetching {url}: {e}")
            raise FetchError.permanent(f"Client error: {e}", url) from e

        except ClientError as e:
            self.stats['failed_requests'] += 1
            self.logger.warning(f"Client error fetching {url}: {e}")
            raise FetchError.transient(f"Client error: {e}", url) from e

    async def _read_content_safely(self, response: aiohttp.ClientResponse, url: str) -> bytes:
        """Read the body in chunks, enforcing the size limit."""
        content_length = response.headers.get('Content-Length')
        if content_length and content_length.isdigit() and int(content_length) > self.max_content_size:
            raise FetchError.permanent(f"Content too large ({content_length} bytes)", url)

        chunks = []
        size = 0
        async for chunk in response.content.iter_chunked(8192):
            size += len(chunk)
            if size > self.max_content_size:
                raise FetchError.permanent("Content exceeded size limit during reading", url)
            chunks.append(chunk)
        return b''.join(chunks)

    def get_stats(self) -> Dict[str, int]:
        """Get fetcher statistics."""
        return self.stats.copy()
