"""
Storage layer for pages, links, domains and crawl sessions.
"""

from .database import (
    DatabaseManager, DatabaseError, StorageBackend,
    SQLiteStorageBackend, PostgreSQLStorageBackend,
)
from .export import DataExporter
from .models import CrawlSession, Domain, Link, Page, PageFilter, SessionStatus

__all__ = [
    'DatabaseManager', 'DatabaseError', 'StorageBackend',
    'SQLiteStorageBackend', 'PostgreSQLStorageBackend', 'DataExporter',
    'CrawlSession', 'Domain', 'Link', 'Page', 'PageFilter', 'SessionStatus',
]
