from recrawl.utils.monitoring import CrawlerMonitor, MetricsCollector


def test_monitor_records_counts():
    monitor = CrawlerMonitor()

    monitor.record_url_crawled(200, 0.1)
    monitor.record_url_crawled(302, 0.2)
    monitor.record_error("transport")
    monitor.record_duplicate_skipped("content")
    monitor.record_trap_skipped()
    monitor.update_queue_size(7)

    summary = monitor.get_summary()

    assert summary["metrics"]["urls_crawled_total"] == 2
    assert summary["metrics"]["errors_total"] == 1
    assert summary["metrics"]["duplicates_skipped_total"] == 1
    assert summary["metrics"]["traps_skipped_total"] == 1
    assert summary["metrics"]["queue_size"] == 7


def test_collectors_do_not_share_registries():
    first = MetricsCollector()
    second = MetricsCollector()

    first.increment_counter("traps_skipped_total")

    assert b"recrawl_traps_skipped_total 1.0" in first.export_text()
    assert b"recrawl_traps_skipped_total 0.0" in second.export_text()


def test_export_text_labels_status_codes():
    monitor = CrawlerMonitor()
    monitor.record_url_crawled(404, 0.05)

    assert b'recrawl_urls_crawled_total{status_code="404"} 1.0' in monitor.metrics.export_text()
