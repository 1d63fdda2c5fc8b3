"""
Command line interface: `anvesha crawl`, `pagerank`, `search`, `export` and `stats`.
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional

from redis.exceptions import RedisError

from . import __version__
from .algorithms.pagerank import PageRankEngine
from .algorithms.tfidf import TfIdfSearch
from .crawler.errors import CrawlError
from .crawler.orchestrator import CrawlOrchestrator
from .storage.database import DatabaseError, DatabaseManager
from .storage.export import DataExporter
from .storage.models import PageFilter
from .utils.config import Config, ConfigManager, load_config
from .utils.logger import log_system_info, setup_logging


class CrawlerApp:
    """Main application class for the crawler."""

    def __init__(self):
        self.orchestrator: Optional[CrawlOrchestrator] = None
        self.logger = logging.getLogger(__name__)

    def setup_signal_handlers(self):
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        def signal_handler(signum):
            self.logger.info(f"Received signal {signum}, initiating shutdown...")
            if self.orchestrator:
                self.orchestrator.shutdown(f"signal {signum}")

        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, signal_handler, signum)
            except NotImplementedError:
                signal.signal(signum, lambda s, frame: signal_handler(s))

    async def crawl(self, config: Config) -> int:
        """Run a crawl; returns the process exit code."""
        self.logger.info("=== ANVESHA CRAWLER STARTING ===")
        self.logger.info(f"Seed URLs: {config.crawler.seed_urls}")
        self.logger.info(f"Max pages: {config.crawler.max_pages}")
        self.logger.info(f"Max depth: {config.crawler.max_depth}")
        self.logger.info(f"Concurrent requests: {config.crawler.concurrent_requests}")
        self.logger.info(f"Request delay: {config.crawler.request_delay_ms}ms")
        self.logger.info(f"Database type: {config.database.type}")

        self.orchestrator = CrawlOrchestrator(config)
        try:
            try:
                await self.orchestrator.initialize()
            except (DatabaseError, RedisError, OSError) as e:
                self.logger.error(f"Startup failed, storage or cache unavailable: {e}")
                return 1

            self.setup_signal_handlers()
            stats = await self.orchestrator.run()
            self.logger.info(f"Crawl finished: {stats.pages_crawled} pages crawled, "
                             f"{stats.pages_failed} failed, {stats.frontier_size} left in frontier")
            return 0

        except CrawlError as e:
            self.logger.error(f"Crawl could not start: {e}")
            return 1

        except (DatabaseError, RedisError) as e:
            self.logger.error(f"Fatal storage error: {e}", exc_info=True)
            return 1

        finally:
            await self.orchestrator.close()
            self.logger.info("=== ANVESHA CRAWLER FINISHED ===")

    async def pagerank(self, config: Config, top: int) -> int:
        """Run the PageRank batch stage and print the top pages."""
        database = DatabaseManager(config.database)
        try:
            await database.initialize()
            engine = PageRankEngine(database, config.pagerank)
            result = await engine.run()
            print(f"PageRank computed for {len(result.ranks)} pages "
                  f"in {result.iterations} iterations (converged={result.converged})")
            for page in await engine.top_pages(top):
                print(f"{page.pagerank:.6f}  {page.url}")
            return 0
        except DatabaseError as e:
            self.logger.error(f"PageRank failed: {e}")
            return 1
        finally:
            await database.close()

    async def search(self, config: Config, query: str, limit: int,
                     page_filter: PageFilter) -> int:
        """Rank stored pages against a query by TF-IDF similarity."""
        database = DatabaseManager(config.database)
        try:
            await database.initialize()
            engine = TfIdfSearch(database)
            stats = await engine.build(page_filter)
            results = engine.search(query, limit)
            print(f"{len(results)} results for '{query}' among {stats.total_documents} pages")
            for result in results:
                print(f"{result.score:.4f}  {result.page.url}  {result.page.title or ''}")
            return 0
        except DatabaseError as e:
            self.logger.error(f"Search failed: {e}")
            return 1
        finally:
            await database.close()

    async def export(self, config: Config, output: str, export_format: str,
                     page_filter: PageFilter) -> int:
        """Write stored pages to a JSON or CSV file."""
        database = DatabaseManager(config.database)
        try:
            await database.initialize()
            exporter = DataExporter(database)
            if export_format == 'csv':
                count = await exporter.pages_to_csv(output, page_filter)
            else:
                count = await exporter.pages_to_json(output, page_filter)
            print(f"Exported {count} pages to {output}")
            return 0
        except (DatabaseError, OSError) as e:
            self.logger.error(f"Export failed: {e}")
            return 1
        finally:
            await database.close()

    async def stats(self, config: Config) -> int:
        """Print storage statistics."""
        database = DatabaseManager(config.database)
        try:
            await database.initialize()
            for key, value in (await database.get_stats()).items():
                print(f"{key}: {value}")
            return 0
        except DatabaseError as e:
            self.logger.error(f"Could not read statistics: {e}")
            return 1
        finally:
            await database.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='anvesha',
        description="Polite concurrent web crawler with link-graph storage and PageRank",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  anvesha crawl -s https://example.com                 # Crawl with config.yaml
  anvesha crawl -s https://a.com -s https://b.com --config my_config.yaml
  anvesha crawl --max-pages 100                        # Seeds from the config file
  anvesha pagerank --top 20                            # Rank the stored link graph
  anvesha search "web crawler" --limit 5               # TF-IDF search over stored pages
  anvesha export --format csv --output pages.csv       # Export stored pages
  anvesha stats                                        # Show storage statistics
        """
    )
    parser.add_argument(
        '--version',
        action='version',
        version=f'Anvesha Crawler {__version__}'
    )

    subparsers = parser.add_subparsers(dest='command', required=True)

    crawl_parser = subparsers.add_parser('crawl', help='Crawl from seed URLs')
    crawl_parser.add_argument(
        '-s', '--seed',
        action='append',
        dest='seeds',
        metavar='URL',
        help='Seed URL (repeatable); replaces seeds from the config file'
    )
    crawl_parser.add_argument(
        '--max-pages',
        type=int,
        help='Maximum number of pages to crawl'
    )

    pagerank_parser = subparsers.add_parser('pagerank', help='Compute PageRank over stored pages')
    pagerank_parser.add_argument(
        '--top',
        type=int,
        default=10,
        help='Number of top pages to print (default: 10)'
    )

    search_parser = subparsers.add_parser('search', help='Search stored pages by TF-IDF')
    search_parser.add_argument('query', help='Search terms')
    search_parser.add_argument(
        '--limit',
        type=int,
        default=10,
        help='Number of results to print (default: 10)'
    )

    export_parser = subparsers.add_parser('export', help='Export stored pages')
    export_parser.add_argument(
        '--format',
        choices=['json', 'csv'],
        default='json',
        dest='export_format',
        help='Output format (default: json)'
    )
    export_parser.add_argument('-o', '--output', required=True, help='Output file path')
    export_parser.add_argument('--limit', type=int, help='Maximum number of pages')

    subparsers.add_parser('stats', help='Show storage statistics')

    for subparser in (search_parser, export_parser):
        subparser.add_argument('--domain', help='Only pages from this domain')
        subparser.add_argument('--min-quality', type=float, help='Minimum quality score')

    for subparser in subparsers.choices.values():
        subparser.add_argument(
            '--config',
            default='config.yaml',
            help='Path to configuration file (default: config.yaml)'
        )

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    try:
        if args.command == 'crawl':
            config = load_config(args.config, seed_urls=args.seeds, max_pages=args.max_pages)
        else:
            config = ConfigManager(args.config).load_config(require_seeds=False)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: invalid configuration: {e}", file=sys.stderr)
        return 1

    setup_logging(config.logging)
    log_system_info()

    app = CrawlerApp()
    try:
        if args.command == 'crawl':
            return asyncio.run(app.crawl(config))
        if args.command == 'pagerank':
            return asyncio.run(app.pagerank(config, args.top))
        if args.command == 'search':
            page_filter = PageFilter(domain=args.domain, min_quality=args.min_quality)
            return asyncio.run(app.search(config, args.query, args.limit, page_filter))
        if args.command == 'export':
            page_filter = PageFilter(domain=args.domain, min_quality=args.min_quality,
                                     limit=args.limit)
            return asyncio.run(app.export(config, args.output, args.export_format, page_filter))
        return asyncio.run(app.stats(config))
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        return 1


if __name__ == '__main__':
    sys.exit(main())
