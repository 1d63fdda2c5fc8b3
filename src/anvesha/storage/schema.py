"""
Relational schema for the crawl store.

Both dialects share table and index names; only column types differ.
"""

from typing import List


POSTGRES_TABLES = [
    """
    CREATE TABLE IF NOT EXISTS domains (
        domain VARCHAR(255) PRIMARY KEY,
        robots_txt TEXT,
        robots_fetched_at TIMESTAMPTZ,
        crawl_delay INTEGER DEFAULT 1000 CHECK (crawl_delay >= 0),
        page_count INTEGER DEFAULT 0,
        avg_quality_score DOUBLE PRECISION,
        last_crawled TIMESTAMPTZ,
        crawl_allowed BOOLEAN DEFAULT TRUE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS pages (
        id BIGSERIAL PRIMARY KEY,
        url TEXT UNIQUE NOT NULL,
        url_hash VARCHAR(64) UNIQUE NOT NULL,
        domain TEXT NOT NULL,
        title TEXT,
        description TEXT,
        content TEXT,
        content_hash VARCHAR(64),
        quality_score DOUBLE PRECISION DEFAULT 0.0,
        word_count INTEGER DEFAULT 0,
        language VARCHAR(10) DEFAULT 'en',
        crawl_depth INTEGER DEFAULT 0,
        crawled_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP,
        last_modified TIMESTAMPTZ,
        status_code INTEGER,
        content_type VARCHAR(100),
        content_length INTEGER,
        pagerank DOUBLE PRECISION DEFAULT 0.0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS links (
        id BIGSERIAL PRIMARY KEY,
        source_page_id BIGINT NOT NULL REFERENCES pages(id) ON DELETE CASCADE,
        target_page_id BIGINT REFERENCES pages(id) ON DELETE SET NULL,
        target_url TEXT NOT NULL,
        anchor_text TEXT,
        link_position INTEGER DEFAULT 0,
        created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS crawl_sessions (
        id SERIAL PRIMARY KEY,
        started_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP,
        ended_at TIMESTAMPTZ,
        pages_crawled INTEGER DEFAULT 0,
        pages_failed INTEGER DEFAULT 0,
        seed_urls TEXT,
        config_snapshot TEXT,
        status VARCHAR(20) DEFAULT 'running'
    )
    """,
]

SQLITE_TABLES = [
    """
    CREATE TABLE IF NOT EXISTS domains (
        domain TEXT PRIMARY KEY,
        robots_txt TEXT,
        robots_fetched_at TEXT,
        crawl_delay INTEGER DEFAULT 1000 CHECK (crawl_delay >= 0),
        page_count INTEGER DEFAULT 0,
        avg_quality_score REAL,
        last_crawled TEXT,
        crawl_allowed INTEGER DEFAULT 1
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS pages (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        url TEXT UNIQUE NOT NULL,
        url_hash TEXT UNIQUE NOT NULL,
        domain TEXT NOT NULL,
        title TEXT,
        description TEXT,
        content TEXT,
        content_hash TEXT,
        quality_score REAL DEFAULT 0.0,
        word_count INTEGER DEFAULT 0,
        language TEXT DEFAULT 'en',
        crawl_depth INTEGER DEFAULT 0,
        crawled_at TEXT DEFAULT CURRENT_TIMESTAMP,
        last_modified TEXT,
        status_code INTEGER,
        content_type TEXT,
        content_length INTEGER,
        pagerank REAL DEFAULT 0.0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS links (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        source_page_id INTEGER NOT NULL REFERENCES pages(id) ON DELETE CASCADE,
        target_page_id INTEGER REFERENCES pages(id) ON DELETE SET NULL,
        target_url TEXT NOT NULL,
        anchor_text TEXT,
        link_position INTEGER DEFAULT 0,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS crawl_sessions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        started_at TEXT DEFAULT CURRENT_TIMESTAMP,
        ended_at TEXT,
        pages_crawled INTEGER DEFAULT 0,
        pages_failed INTEGER DEFAULT 0,
        seed_urls TEXT,
        config_snapshot TEXT,
        status TEXT DEFAULT 'running'
    )
    """,
]

INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_pages_url_hash ON pages(url_hash)",
    "CREATE INDEX IF NOT EXISTS idx_pages_domain ON pages(domain)",
    "CREATE INDEX IF NOT EXISTS idx_pages_quality ON pages(quality_score DESC)",
    "CREATE INDEX IF NOT EXISTS idx_pages_crawled_at ON pages(crawled_at DESC)",
    "CREATE INDEX IF NOT EXISTS idx_pagerank ON pages(pagerank DESC)",
    "CREATE INDEX IF NOT EXISTS idx_links_source ON links(source_page_id)",
    "CREATE INDEX IF NOT EXISTS idx_links_target_page ON links(target_page_id)",
    "CREATE INDEX IF NOT EXISTS idx_links_target_url ON links(target_url)",
    "CREATE INDEX IF NOT EXISTS idx_domains_last_crawled ON domains(last_crawled)",
    # Backs the idempotent link upsert
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_links_source_target ON links(source_page_id, target_url)",
]


def schema_statements(dialect: str) -> List[str]:
    """DDL statements for 'sqlite' or 'postgresql', in execution order."""
    if dialect == 'sqlite':
        tables = SQLITE_TABLES
    elif dialect == 'postgresql':
        tables = POSTGRES_TABLES
    else:
        raise ValueError(f"Unknown dialect: {dialect}")
    return [statement.strip() for statement in tables] + INDEXES
