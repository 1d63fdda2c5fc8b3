"""
Database storage layer for pages, links, domains and crawl sessions.
Supports SQLite (aiosqlite) and PostgreSQL (asyncpg) backends.
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Sequence, Tuple

import aiosqlite
import asyncpg

from ..utils.config import DatabaseConfig
from .models import CrawlSession, Domain, Link, Page, PageFilter, SessionStatus, utcnow
from .schema import schema_statements


class DatabaseError(Exception):
    """Custom exception for database operations."""
    pass


PAGE_COLUMNS = (
    "id, url, url_hash, domain, title, description, content, content_hash, "
    "quality_score, word_count, language, crawl_depth, crawled_at, last_modified, "
    "status_code, content_type, content_length, pagerank"
)

LINK_COLUMNS = "id, source_page_id, target_page_id, target_url, anchor_text, link_position, created_at"

DOMAIN_COLUMNS = (
    "domain, robots_txt, robots_fetched_at, crawl_delay, page_count, "
    "avg_quality_score, last_crawled, crawl_allowed"
)

SESSION_COLUMNS = "id, started_at, ended_at, pages_crawled, pages_failed, seed_urls, config_snapshot, status"


class Executor:
    """Dialect-neutral statement runner bound to one connection/transaction."""

    async def execute(self, query: str, *args) -> None:
        raise NotImplementedError

    async def executemany(self, query: str, args_list: Sequence[Tuple]) -> None:
        raise NotImplementedError

    async def fetchone(self, query: str, *args) -> Optional[Any]:
        raise NotImplementedError

    async def fetchall(self, query: str, *args) -> List[Any]:
        raise NotImplementedError


class SQLiteExecutor(Executor):

    def __init__(self, conn: aiosqlite.Connection):
        self.conn = conn

    async def execute(self, query: str, *args) -> None:
        await self.conn.execute(query, args)

    async def executemany(self, query: str, args_list: Sequence[Tuple]) -> None:
        await self.conn.executemany(query, args_list)

    async def fetchone(self, query: str, *args) -> Optional[aiosqlite.Row]:
        async with self.conn.execute(query, args) as cursor:
            return await cursor.fetchone()

    async def fetchall(self, query: str, *args) -> List[aiosqlite.Row]:
        async with self.conn.execute(query, args) as cursor:
            return list(await cursor.fetchall())


class PostgresExecutor(Executor):
    """Rewrites `?` placeholders into asyncpg's `$n` form."""

    def __init__(self, conn: asyncpg.Connection):
        self.conn = conn

    @staticmethod
    def _convert(query: str) -> str:
        parts = query.split('?')
        converted = parts[0]
        for index, part in enumerate(parts[1:], start=1):
            converted += f"${index}{part}"
        return converted

    async def execute(self, query: str, *args) -> None:
        await self.conn.execute(self._convert(query), *args)

    async def executemany(self, query: str, args_list: Sequence[Tuple]) -> None:
        await self.conn.executemany(self._convert(query), args_list)

    async def fetchone(self, query: str, *args) -> Optional[asyncpg.Record]:
        return await self.conn.fetchrow(self._convert(query), *args)

    async def fetchall(self, query: str, *args) -> List[asyncpg.Record]:
        return list(await self.conn.fetch(self._convert(query), *args))


class StorageBackend:
    """
    Abstract base class for relational storage backends.

    Subclasses provide `_transaction()` plus timestamp/boolean conversion;
    every query below is written once with `?` placeholders.
    """

    dialect = ""

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self.stats = {
            'pages_saved': 0,
            'links_saved': 0,
            'storage_errors': 0,
        }

    async def initialize(self):
        """Connect and create the schema."""
        raise NotImplementedError

    async def close(self):
        """Close storage connections."""
        raise NotImplementedError

    def _transaction(self):
        """Async context manager yielding an Executor inside one transaction."""
        raise NotImplementedError

    def _to_db_time(self, value: Optional[datetime]) -> Any:
        return value

    def _from_db_time(self, value: Any) -> Optional[datetime]:
        return value

    def _to_db_bool(self, value: bool) -> Any:
        return value

    async def _create_schema(self):
        async with self._transaction() as db:
            for statement in schema_statements(self.dialect):
                await db.execute(statement)

    # Pages

    async def save_page(self, page: Page) -> int:
        """
        Insert or update a page keyed by url_hash.

        Also back-fills target_page_id on links already pointing at this URL
        and refreshes the domain's page_count/avg_quality_score.

        Returns:
            The page id
        """
        now = utcnow()
        async with self._transaction() as db:
            row = await db.fetchone(
                """
                INSERT INTO pages (url, url_hash, domain, title, description, content,
                                   content_hash, quality_score, word_count, language,
                                   crawl_depth, crawled_at, last_modified, status_code,
                                   content_type, content_length)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (url_hash) DO UPDATE SET
                    title = excluded.title,
                    description = excluded.description,
                    content = excluded.content,
                    content_hash = excluded.content_hash,
                    quality_score = excluded.quality_score,
                    word_count = excluded.word_count,
                    language = excluded.language,
                    crawled_at = excluded.crawled_at,
                    last_modified = excluded.last_modified,
                    status_code = excluded.status_code,
                    content_type = excluded.content_type,
                    content_length = excluded.content_length
                RETURNING id
                """,
                page.url, page.url_hash, page.domain, page.title, page.description,
                page.content, page.content_hash, page.quality_score, page.word_count,
                page.language, page.crawl_depth, self._to_db_time(page.crawled_at),
                self._to_db_time(page.last_modified), page.status_code,
                page.content_type, page.content_length,
            )
            page_id = row['id']

            await db.execute(
                "UPDATE links SET target_page_id = ? WHERE target_url = ? AND target_page_id IS NULL",
                page_id, page.url,
            )

            await db.execute(
                "INSERT INTO domains (domain) VALUES (?) ON CONFLICT (domain) DO NOTHING",
                page.domain,
            )
            await db.execute(
                """
                UPDATE domains SET
                    page_count = (SELECT COUNT(*) FROM pages WHERE domain = ?),
                    avg_quality_score = (SELECT AVG(quality_score) FROM pages WHERE domain = ?),
                    last_crawled = ?
                WHERE domain = ?
                """,
                page.domain, page.domain, self._to_db_time(now), page.domain,
            )

        page.id = page_id
        self.stats['pages_saved'] += 1
        self.logger.debug(f"Stored page {page.url} (id={page_id})")
        return page_id

    async def get_page_by_url(self, url: str) -> Optional[Page]:
        async with self._transaction() as db:
            row = await db.fetchone(f"SELECT {PAGE_COLUMNS} FROM pages WHERE url = ?", url)
        return self._row_to_page(row) if row else None

    async def get_page_by_id(self, page_id: int) -> Optional[Page]:
        async with self._transaction() as db:
            row = await db.fetchone(f"SELECT {PAGE_COLUMNS} FROM pages WHERE id = ?", page_id)
        return self._row_to_page(row) if row else None

    async def get_pages(self, page_filter: Optional[PageFilter] = None) -> List[Page]:
        """Pages matching the filter, ordered by id."""
        page_filter = page_filter or PageFilter()
        clauses, args = [], []
        if page_filter.domain is not None:
            clauses.append("domain = ?")
            args.append(page_filter.domain)
        if page_filter.min_quality is not None:
            clauses.append("quality_score >= ?")
            args.append(page_filter.min_quality)
        if page_filter.max_quality is not None:
            clauses.append("quality_score <= ?")
            args.append(page_filter.max_quality)
        if page_filter.status_code is not None:
            clauses.append("status_code = ?")
            args.append(page_filter.status_code)

        query = f"SELECT {PAGE_COLUMNS} FROM pages"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY id"
        if page_filter.limit is not None:
            query += " LIMIT ?"
            args.append(page_filter.limit)

        async with self._transaction() as db:
            rows = await db.fetchall(query, *args)
        return [self._row_to_page(row) for row in rows]

    async def delete_page(self, page_id: int):
        """Delete a page; its outbound links cascade, inbound links are unlinked."""
        async with self._transaction() as db:
            await db.execute("DELETE FROM pages WHERE id = ?", page_id)

    def _row_to_page(self, row) -> Page:
        return Page(
            id=row['id'],
            url=row['url'],
            domain=row['domain'],
            title=row['title'],
            description=row['description'],
            content=row['content'],
            content_hash=row['content_hash'],
            quality_score=row['quality_score'] or 0.0,
            word_count=row['word_count'] or 0,
            language=row['language'] or 'en',
            crawl_depth=row['crawl_depth'] or 0,
            crawled_at=self._from_db_time(row['crawled_at']),
            last_modified=self._from_db_time(row['last_modified']),
            status_code=row['status_code'],
            content_type=row['content_type'],
            content_length=row['content_length'],
            pagerank=row['pagerank'] or 0.0,
        )

    # Links

    async def save_links(self, source_page_id: int, links: Iterable[Link]) -> int:
        """
        Record outbound links of a page.

        Idempotent on (source_page_id, target_url): re-saving the same link
        updates it in place instead of adding a row. target_page_id is
        resolved immediately when the target page already exists.
        """
        rows = [
            (source_page_id, link.target_url, link.target_url, link.anchor_text,
             link.link_position, self._to_db_time(link.created_at))
            for link in links
        ]
        if not rows:
            return 0

        async with self._transaction() as db:
            await db.executemany(
                """
                INSERT INTO links (source_page_id, target_page_id, target_url,
                                   anchor_text, link_position, created_at)
                VALUES (?, (SELECT id FROM pages WHERE url = ?), ?, ?, ?, ?)
                ON CONFLICT (source_page_id, target_url) DO UPDATE SET
                    anchor_text = excluded.anchor_text,
                    link_position = excluded.link_position,
                    target_page_id = COALESCE(links.target_page_id, excluded.target_page_id)
                """,
                rows,
            )

        self.stats['links_saved'] += len(rows)
        return len(rows)

    async def get_links_from(self, source_page_id: int) -> List[Link]:
        async with self._transaction() as db:
            rows = await db.fetchall(
                f"SELECT {LINK_COLUMNS} FROM links WHERE source_page_id = ? ORDER BY link_position",
                source_page_id,
            )
        return [self._row_to_link(row) for row in rows]

    async def get_links_to(self, target_url: str) -> List[Link]:
        async with self._transaction() as db:
            rows = await db.fetchall(
                f"SELECT {LINK_COLUMNS} FROM links WHERE target_url = ? ORDER BY id",
                target_url,
            )
        return [self._row_to_link(row) for row in rows]

    def _row_to_link(self, row) -> Link:
        return Link(
            id=row['id'],
            source_page_id=row['source_page_id'],
            target_page_id=row['target_page_id'],
            target_url=row['target_url'],
            anchor_text=row['anchor_text'],
            link_position=row['link_position'] or 0,
            created_at=self._from_db_time(row['created_at']),
        )

    async def resolve_link_targets(self) -> None:
        """Fill target_page_id for links whose target page has since been stored."""
        async with self._transaction() as db:
            await db.execute(
                """
                UPDATE links SET target_page_id =
                    (SELECT pages.id FROM pages WHERE pages.url = links.target_url)
                WHERE target_page_id IS NULL
                  AND target_url IN (SELECT url FROM pages)
                """
            )

    # Domains

    async def get_domain(self, domain: str) -> Optional[Domain]:
        async with self._transaction() as db:
            row = await db.fetchone(f"SELECT {DOMAIN_COLUMNS} FROM domains WHERE domain = ?", domain)
        if not row:
            return None
        return Domain(
            domain=row['domain'],
            robots_txt=row['robots_txt'],
            robots_fetched_at=self._from_db_time(row['robots_fetched_at']),
            crawl_delay=row['crawl_delay'] if row['crawl_delay'] is not None else 1000,
            page_count=row['page_count'] or 0,
            avg_quality_score=row['avg_quality_score'],
            last_crawled=self._from_db_time(row['last_crawled']),
            crawl_allowed=bool(row['crawl_allowed']),
        )

    async def upsert_domain(self, domain: Domain):
        """Store robots metadata and politeness settings; page stats are left alone."""
        async with self._transaction() as db:
            await db.execute(
                """
                INSERT INTO domains (domain, robots_txt, robots_fetched_at, crawl_delay, crawl_allowed)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT (domain) DO UPDATE SET
                    robots_txt = excluded.robots_txt,
                    robots_fetched_at = excluded.robots_fetched_at,
                    crawl_delay = excluded.crawl_delay,
                    crawl_allowed = excluded.crawl_allowed
                """,
                domain.domain, domain.robots_txt, self._to_db_time(domain.robots_fetched_at),
                domain.crawl_delay, self._to_db_bool(domain.crawl_allowed),
            )

    # Crawl sessions

    async def create_session(self, seed_urls: List[str], config_snapshot: Dict[str, Any]) -> int:
        async with self._transaction() as db:
            row = await db.fetchone(
                """
                INSERT INTO crawl_sessions (started_at, pages_crawled, pages_failed,
                                            seed_urls, config_snapshot, status)
                VALUES (?, 0, 0, ?, ?, ?)
                RETURNING id
                """,
                self._to_db_time(utcnow()), json.dumps(seed_urls),
                json.dumps(config_snapshot, default=str), SessionStatus.RUNNING.value,
            )
        return row['id']

    async def update_session(self, session_id: int, pages_crawled: int, pages_failed: int):
        async with self._transaction() as db:
            await db.execute(
                "UPDATE crawl_sessions SET pages_crawled = ?, pages_failed = ? WHERE id = ?",
                pages_crawled, pages_failed, session_id,
            )

    async def close_session(self, session_id: int, status: SessionStatus,
                            pages_crawled: int, pages_failed: int):
        async with self._transaction() as db:
            await db.execute(
                """
                UPDATE crawl_sessions
                SET ended_at = ?, status = ?, pages_crawled = ?, pages_failed = ?
                WHERE id = ?
                """,
                self._to_db_time(utcnow()), status.value, pages_crawled, pages_failed, session_id,
            )

    async def get_session(self, session_id: int) -> Optional[CrawlSession]:
        async with self._transaction() as db:
            row = await db.fetchone(f"SELECT {SESSION_COLUMNS} FROM crawl_sessions WHERE id = ?",
                                    session_id)
        if not row:
            return None
        return CrawlSession(
            id=row['id'],
            started_at=self._from_db_time(row['started_at']),
            ended_at=self._from_db_time(row['ended_at']),
            pages_crawled=row['pages_crawled'] or 0,
            pages_failed=row['pages_failed'] or 0,
            seed_urls=json.loads(row['seed_urls']) if row['seed_urls'] else [],
            config_snapshot=json.loads(row['config_snapshot']) if row['config_snapshot'] else {},
            status=SessionStatus(row['status']),
        )

    # PageRank

    async def load_link_graph(self) -> Tuple[List[int], List[Tuple[int, int]]]:
        """
        Returns:
            (all page ids, edges as (source_page_id, target_page_id)) for
            links whose target page is known
        """
        async with self._transaction() as db:
            page_rows = await db.fetchall("SELECT id FROM pages ORDER BY id")
            edge_rows = await db.fetchall(
                "SELECT source_page_id, target_page_id FROM links WHERE target_page_id IS NOT NULL"
            )
        page_ids = [row['id'] for row in page_rows]
        edges = [(row['source_page_id'], row['target_page_id']) for row in edge_rows]
        return page_ids, edges

    async def update_pageranks(self, ranks: Dict[int, float]):
        if not ranks:
            return
        async with self._transaction() as db:
            await db.executemany(
                "UPDATE pages SET pagerank = ? WHERE id = ?",
                [(rank, page_id) for page_id, rank in ranks.items()],
            )

    async def top_pages_by_pagerank(self, limit: int = 10) -> List[Page]:
        async with self._transaction() as db:
            rows = await db.fetchall(
                f"SELECT {PAGE_COLUMNS} FROM pages ORDER BY pagerank DESC, id LIMIT ?", limit
            )
        return [self._row_to_page(row) for row in rows]

    async def get_stats(self) -> Dict[str, Any]:
        """Get storage statistics."""
        async with self._transaction() as db:
            pages = await db.fetchone("SELECT COUNT(*) AS n FROM pages")
            links = await db.fetchone("SELECT COUNT(*) AS n FROM links")
            resolved = await db.fetchone(
                "SELECT COUNT(*) AS n FROM links WHERE target_page_id IS NOT NULL")
            domains = await db.fetchone("SELECT COUNT(*) AS n FROM domains")
            sessions = await db.fetchone("SELECT COUNT(*) AS n FROM crawl_sessions")
        return {
            'backend': self.dialect,
            'total_pages': pages['n'],
            'total_links': links['n'],
            'resolved_links': resolved['n'],
            'total_domains': domains['n'],
            'total_sessions': sessions['n'],
            **self.stats,
        }


class SQLiteStorageBackend(StorageBackend):
    """SQLite backend for development and single-machine crawls."""

    dialect = "sqlite"

    def __init__(self, path: str):
        super().__init__()
        self.path = path
        self.conn: Optional[aiosqlite.Connection] = None
        # One shared connection; statements of a transaction must not interleave
        self._lock = asyncio.Lock()

    async def initialize(self):
        try:
            self.conn = await aiosqlite.connect(self.path)
            self.conn.row_factory = aiosqlite.Row
            await self.conn.execute("PRAGMA foreign_keys=ON")
            if self.path != ':memory:':
                await self.conn.execute("PRAGMA journal_mode=WAL")
            await self.conn.execute("PRAGMA synchronous=NORMAL")
            await self._create_schema()
        except (aiosqlite.Error, OSError) as e:
            raise DatabaseError(f"Failed to initialize SQLite storage at {self.path}: {e}") from e

        self.logger.info(f"SQLite storage initialized at {self.path}")

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[Executor]:
        if self.conn is None:
            raise DatabaseError("Database not initialized")
        async with self._lock:
            try:
                yield SQLiteExecutor(self.conn)
                await self.conn.commit()
            except aiosqlite.Error as e:
                self.stats['storage_errors'] += 1
                await self.conn.rollback()
                raise DatabaseError(f"SQLite error: {e}") from e
            except BaseException:
                await self.conn.rollback()
                raise

    def _to_db_time(self, value: Optional[datetime]) -> Optional[str]:
        return value.isoformat() if value else None

    def _from_db_time(self, value: Any) -> Optional[datetime]:
        if value is None or isinstance(value, datetime):
            return value
        return datetime.fromisoformat(value)

    def _to_db_bool(self, value: bool) -> int:
        return 1 if value else 0

    async def close(self):
        if self.conn:
            await self.conn.close()
            self.conn = None
            self.logger.info("SQLite connection closed")


class PostgreSQLStorageBackend(StorageBackend):
    """PostgreSQL backend using an asyncpg connection pool."""

    dialect = "postgresql"

    def __init__(self, dsn: str, pool_size: int = 10):
        super().__init__()
        self.dsn = dsn
        self.pool_size = pool_size
        self.pool: Optional[asyncpg.Pool] = None

    async def initialize(self):
        try:
            self.pool = await asyncpg.create_pool(
                dsn=self.dsn,
                min_size=1,
                max_size=self.pool_size,
                command_timeout=60,
            )
            await self._create_schema()
        except (asyncpg.PostgresError, OSError) as e:
            raise DatabaseError(f"Failed to connect to PostgreSQL: {e}") from e

        self.logger.info(f"PostgreSQL storage initialized (pool size {self.pool_size})")

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[Executor]:
        if self.pool is None:
            raise DatabaseError("Database not initialized")
        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    yield PostgresExecutor(conn)
        except asyncpg.PostgresError as e:
            self.stats['storage_errors'] += 1
            raise DatabaseError(f"PostgreSQL error: {e}") from e

    async def close(self):
        if self.pool:
            await self.pool.close()
            self.pool = None
            self.logger.info("PostgreSQL connections closed")


class DatabaseManager:
    """Main database manager that handles different storage backends."""

    def __init__(self, config: DatabaseConfig):
        self.config = config
        self.backend: Optional[StorageBackend] = None
        self.logger = logging.getLogger(__name__)

    async def initialize(self):
        """Initialize the appropriate storage backend."""
        backend_type = self.config.type.lower()

        if backend_type == 'sqlite':
            self.backend = SQLiteStorageBackend(self.config.sqlite['path'])
        elif backend_type == 'postgresql':
            self.backend = PostgreSQLStorageBackend(
                self.config.postgresql['dsn'],
                self.config.postgresql.get('pool_size', 10),
            )
        else:
            raise DatabaseError(f"Unknown database type: {backend_type}")

        await self.backend.initialize()
        self.logger.info(f"Database manager initialized with {backend_type} backend")

    def _require(self) -> StorageBackend:
        if not self.backend:
            raise DatabaseError("Database not initialized")
        return self.backend

    def __getattr__(self, name: str):
        # Delegate storage operations to the active backend
        if name.startswith('_') or name in ('config', 'backend', 'logger'):
            raise AttributeError(name)
        return getattr(self._require(), name)

    async def close(self):
        """Close database connections."""
        if self.backend:
            await self.backend.close()
