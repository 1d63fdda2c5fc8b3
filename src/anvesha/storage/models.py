"""
Persisted record types.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from ..crawler.parser import ProcessedPage
from ..crawler.urls import url_hash


DEFAULT_CRAWL_DELAY_MS = 1000


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionStatus(Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class Domain:
    domain: str
    robots_txt: Optional[str] = None
    robots_fetched_at: Optional[datetime] = None
    crawl_delay: int = DEFAULT_CRAWL_DELAY_MS
    page_count: int = 0
    avg_quality_score: Optional[float] = None
    last_crawled: Optional[datetime] = None
    crawl_allowed: bool = True

    def __post_init__(self):
        if self.crawl_delay < 0:
            raise ValueError(f"crawl_delay must be non-negative for {self.domain}")


@dataclass
class Page:
    url: str
    domain: str
    url_hash: str = ""
    title: Optional[str] = None
    description: Optional[str] = None
    content: Optional[str] = None
    content_hash: Optional[str] = None
    quality_score: float = 0.0
    word_count: int = 0
    language: str = "en"
    crawl_depth: int = 0
    crawled_at: datetime = field(default_factory=utcnow)
    last_modified: Optional[datetime] = None
    status_code: Optional[int] = None
    content_type: Optional[str] = None
    content_length: Optional[int] = None
    pagerank: float = 0.0
    id: Optional[int] = None

    def __post_init__(self):
        # url_hash is always derived from url
        self.url_hash = url_hash(self.url)

    @classmethod
    def from_processed(cls, processed: ProcessedPage, domain: str, status_code: int,
                       last_modified: Optional[datetime] = None) -> 'Page':
        return cls(
            url=processed.url,
            domain=domain,
            title=processed.title,
            description=processed.description,
            content=processed.content,
            content_hash=processed.content_hash,
            quality_score=processed.quality_score,
            word_count=processed.word_count,
            language=processed.language,
            crawl_depth=processed.depth,
            last_modified=last_modified,
            status_code=status_code,
            content_type=processed.content_type,
            content_length=processed.content_length,
        )


@dataclass
class Link:
    source_page_id: int
    target_url: str
    anchor_text: Optional[str] = None
    link_position: int = 0
    target_page_id: Optional[int] = None
    created_at: datetime = field(default_factory=utcnow)
    id: Optional[int] = None


@dataclass
class CrawlSession:
    id: int
    started_at: datetime
    ended_at: Optional[datetime] = None
    pages_crawled: int = 0
    pages_failed: int = 0
    seed_urls: List[str] = field(default_factory=list)
    config_snapshot: Dict[str, Any] = field(default_factory=dict)
    status: SessionStatus = SessionStatus.RUNNING


@dataclass
class PageFilter:
    """Selection of stored pages for export and search; unset fields match everything."""
    domain: Optional[str] = None
    min_quality: Optional[float] = None
    max_quality: Optional[float] = None
    status_code: Optional[int] = None
    limit: Optional[int] = None
