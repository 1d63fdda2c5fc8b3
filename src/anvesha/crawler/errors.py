"""
Error taxonomy shared by the crawler components.
"""

from enum import Enum
from typing import Optional


class FailureKind(Enum):
    """Closed set of failure kinds the retry policy switches on."""
    TRANSIENT = "transient"
    PERMANENT = "permanent"


class CrawlError(Exception):
    """Base class for per-URL crawl failures."""

    kind = FailureKind.PERMANENT

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


class InvalidURLError(CrawlError):
    """URL cannot be normalized (malformed or not http/https)."""


class FrontierRejected(CrawlError):
    """URL refused by the frontier (malformed or admission cap reached)."""


class SchedulerDenied(CrawlError):
    """Domain or path disallowed for crawling."""


class FetchError(CrawlError):
    """Fetch failed; `kind` decides whether it is retried."""

    def __init__(self, message: str, kind: FailureKind, url: Optional[str] = None,
                 status_code: Optional[int] = None):
        super().__init__(message, url)
        self.kind = kind
        self.status_code = status_code

    @property
    def is_transient(self) -> bool:
        return self.kind is FailureKind.TRANSIENT

    @classmethod
    def transient(cls, message: str, url: Optional[str] = None,
                  status_code: Optional[int] = None) -> 'FetchError':
        return cls(message, FailureKind.TRANSIENT, url, status_code)

    @classmethod
    def permanent(cls, message: str, url: Optional[str] = None,
                  status_code: Optional[int] = None) -> 'FetchError':
        return cls(message, FailureKind.PERMANENT, url, status_code)


class ParseError(CrawlError):
    """Content cannot be decoded or has an unsupported content type."""
