import json
import logging

from anvesha.utils.logger import JSONFormatter, PerformanceFilter, get_crawler_logger
from anvesha.utils.monitoring import CrawlerMonitor, MetricsCollector


class TestCrawlerMonitor:
    def test_counters(self):
        collector = MetricsCollector()
        monitor = CrawlerMonitor(collector)

        monitor.record_page_crawled(200, 0.5, 2048)
        monitor.record_page_crawled(200, 1.5, 1024)
        monitor.record_failure('transient')
        monitor.record_failure('denied')
        monitor.record_retry()
        monitor.record_links(10, rejected=2)
        monitor.update_frontier_size(7)

        assert collector.get_value('anvesha_pages_crawled_total') == 2
        assert collector.get_value('anvesha_bytes_downloaded_total') == 3072
        assert collector.get_value('anvesha_fetch_duration_seconds_count') == 2
        assert collector.get_value('anvesha_fetch_retries_total') == 1
        assert collector.get_value('anvesha_frontier_rejected_total') == 2
        assert collector.get_value('anvesha_frontier_size') == 7

        summary = monitor.get_summary()
        assert summary['pages_crawled'] == 2
        assert summary['pages_failed'] == 2
        assert summary['links_discovered'] == 10

    def test_collectors_are_independent(self):
        first, second = MetricsCollector(), MetricsCollector()
        CrawlerMonitor(first).record_retry()
        assert second.get_value('anvesha_fetch_retries_total') == 0
        assert b'anvesha_fetch_retries_total 1.0' in first.export_text()


class TestLogging:
    def test_json_formatter_includes_context(self):
        record = logging.LogRecord("anvesha.test", logging.INFO, __file__, 10,
                                   "fetched %s", ("page",), None)
        record.worker_id = "worker-1"
        record.url = "https://example.com/"

        entry = json.loads(JSONFormatter().format(record))
        assert entry['message'] == "fetched page"
        assert entry['worker_id'] == "worker-1"
        assert entry['url'] == "https://example.com/"
        assert entry['level'] == "INFO"

    def test_adapter_merges_context(self, caplog):
        log = get_crawler_logger("anvesha.test", worker_id="worker-3")
        with caplog.at_level(logging.INFO, logger="anvesha.test"):
            log.log_url_event(logging.INFO, "https://example.com/x", "giving up")

        [record] = caplog.records
        assert record.worker_id == "worker-3"
        assert record.url == "https://example.com/x"
        assert record.event_type == "url_event"

    def test_performance_filter(self):
        noisy = logging.LogRecord("aiohttp.access", logging.INFO, __file__, 1, "GET /", None, None)
        warning = logging.LogRecord("aiohttp.access", logging.WARNING, __file__, 1, "slow", None, None)
        ours = logging.LogRecord("anvesha.crawler", logging.INFO, __file__, 1, "ok", None, None)

        log_filter = PerformanceFilter()
        assert not log_filter.filter(noisy)
        assert log_filter.filter(warning)
        assert log_filter.filter(ours)
