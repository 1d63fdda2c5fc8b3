"""
Crawler core components.
"""

from .errors import FailureKind, CrawlError, FetchError, ParseError, SchedulerDenied
from .url_frontier import URLFrontier, FrontierEntry, AddResult, AddStatus
from .scheduler import CrawlScheduler, Permit, RetryDecision
from .fetcher import PageFetcher, WebFetcher, FetchResult
from .parser import PageProcessor, ProcessedPage, ExtractedLink

__all__ = [
    'FailureKind', 'CrawlError', 'FetchError', 'ParseError', 'SchedulerDenied',
    'URLFrontier', 'FrontierEntry', 'AddResult', 'AddStatus',
    'CrawlScheduler', 'Permit', 'RetryDecision',
    'PageFetcher', 'WebFetcher', 'FetchResult',
    'PageProcessor', 'ProcessedPage', 'ExtractedLink',
]
