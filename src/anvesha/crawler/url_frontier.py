"""
URL Frontier implementation for managing URLs to crawl.
Implements breadth-first priority ordering and at-most-once admission.
"""

import asyncio
import heapq
import itertools
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Set, Tuple

from .checkpoint import FrontierCheckpoint
from .errors import InvalidURLError
from .urls import normalize_url, try_normalize_url, url_hash


@dataclass
class FrontierEntry:
    """Represents a URL waiting to be crawled."""
    url: str
    priority: float
    depth: int
    discovered_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            'url': self.url,
            'priority': self.priority,
            'depth': self.depth,
            'discovered_at': self.discovered_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'FrontierEntry':
        """Create FrontierEntry from dictionary."""
        return cls(
            url=data['url'],
            priority=data['priority'],
            depth=data['depth'],
            discovered_at=data.get('discovered_at', time.time()),
        )


class AddStatus(Enum):
    ADDED = "added"
    ALREADY_SEEN = "already_seen"
    REJECTED = "rejected"


@dataclass(frozen=True)
class AddResult:
    """Outcome of `URLFrontier.add`."""
    status: AddStatus
    url: Optional[str] = None
    reason: Optional[str] = None

    @property
    def added(self) -> bool:
        return self.status is AddStatus.ADDED


class URLFrontier:
    """
    Priority queue of pending URLs with deduplication.

    Entries are ordered by (priority, depth, insertion sequence); the default
    priority is the crawl depth, which yields breadth-first expansion.

    The heap and the seen-set are guarded by one lock so the check-seen,
    then-insert step is atomic: two workers adding the same URL can never
    both be told ADDED.
    """

    def __init__(self, max_admitted: Optional[int] = None,
                 checkpoint: Optional[FrontierCheckpoint] = None):
        self.max_admitted = max_admitted
        self.checkpoint = checkpoint
        self.logger = logging.getLogger(__name__)

        self._heap: List[Tuple[float, int, int, FrontierEntry]] = []
        self._seen: Set[str] = set()
        self._crawled: Set[str] = set()
        self._failed: Set[str] = set()
        self._sequence = itertools.count()
        self._lock = asyncio.Lock()

        self.counters = {
            'added': 0,
            'already_seen': 0,
            'rejected': 0,
        }

    async def initialize(self):
        """Restore state from the checkpoint, if one is configured."""
        if not self.checkpoint:
            return

        seen, entries = await self.checkpoint.load()
        async with self._lock:
            self._seen.update(seen)
            for entry in entries:
                self._push(entry)

        self.logger.info(f"Restored frontier with {len(self._heap)} pending URLs")

    def _push(self, entry: FrontierEntry):
        heapq.heappush(self._heap, (entry.priority, entry.depth, next(self._sequence), entry))

    async def add(self, url: str, depth: int, priority_hint: Optional[float] = None) -> AddResult:
        """
        Offer a URL to the frontier.

        Returns ADDED for the first admission of a normalized URL,
        ALREADY_SEEN for every later one (even while the first is still
        queued), or REJECTED with a reason.
        """
        try:
            normalized = normalize_url(url)
        except InvalidURLError as e:
            self.counters['rejected'] += 1
            return AddResult(AddStatus.REJECTED, url, str(e))

        if depth < 0:
            self.counters['rejected'] += 1
            return AddResult(AddStatus.REJECTED, normalized, "Negative depth")

        key = url_hash(normalized)
        priority = float(depth) if priority_hint is None else float(priority_hint)

        async with self._lock:
            if key in self._seen:
                self.counters['already_seen'] += 1
                return AddResult(AddStatus.ALREADY_SEEN, normalized)

            if self.max_admitted is not None and len(self._seen) >= self.max_admitted:
                self.counters['rejected'] += 1
                return AddResult(AddStatus.REJECTED, normalized, "Admission cap reached")

            entry = FrontierEntry(url=normalized, priority=priority, depth=depth)
            # Persist first: a failed write must leave the in-memory state untouched
            if self.checkpoint:
                await self.checkpoint.record_added(key, entry)

            self._seen.add(key)
            self._push(entry)
            self.counters['added'] += 1

        self.logger.debug(f"Added URL to frontier: {normalized} (depth={depth})")
        return AddResult(AddStatus.ADDED, normalized)

    async def add_many(self, urls: Iterable[str], depth: int) -> int:
        """Add several URLs at the same depth. Returns count of added URLs."""
        added_count = 0
        for url in urls:
            result = await self.add(url, depth)
            if result.added:
                added_count += 1
        return added_count

    async def next(self) -> Optional[FrontierEntry]:
        """
        Pop the best pending entry, or None if nothing is queued right now.

        An empty frontier does not mean the crawl is finished: other workers
        may still be fetching pages whose links have not been added yet.
        """
        async with self._lock:
            if not self._heap:
                return None
            _, _, _, entry = heapq.heappop(self._heap)

        self.logger.debug(f"Retrieved URL from frontier: {entry.url}")
        return entry

    async def mark_crawled(self, url: str):
        """
        Record a completed crawl. Deduplication already happened at add time.

        Only now is the entry dropped from the checkpoint's pending set, so a
        URL popped by `next()` but never finished is crawled again on resume.
        """
        key = self._key(url)
        self._crawled.add(key)
        if self.checkpoint:
            await self.checkpoint.record_finished(key)

    async def mark_failed(self, url: str):
        """Record a URL that failed permanently."""
        key = self._key(url)
        self._failed.add(key)
        if self.checkpoint:
            await self.checkpoint.record_finished(key)

    def is_crawled(self, url: str) -> bool:
        return self._key(url) in self._crawled

    @staticmethod
    def _key(url: str) -> str:
        return url_hash(try_normalize_url(url) or url)

    def is_empty(self) -> bool:
        return not self._heap

    def __len__(self) -> int:
        return len(self._heap)

    def get_stats(self) -> Dict[str, int]:
        """Get frontier statistics."""
        return {
            'queue_size': len(self._heap),
            'seen_count': len(self._seen),
            'crawled_count': len(self._crawled),
            'failed_count': len(self._failed),
            **self.counters,
        }
