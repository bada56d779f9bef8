"""
Crawler scheduler that coordinates crawling tasks and manages the overall crawl process.
"""

import asyncio
import logging
import time
from typing import AsyncIterator, Dict, List, Optional
from dataclasses import dataclass
from urllib.parse import urlsplit

from .url_frontier import URLFrontier
from .fetcher import WebFetcher
from .parser import ContentParser
from .resolver import URLResolver, has_scheme, normalize_url
from .scope import Scope
from .traps import is_trapped
from ..storage.duplicate_detector import URLHistory, FingerprintIndex
from ..utils.config import Config
from ..utils.logger import CrawlerLogAdapter, get_crawler_logger
from ..utils.monitoring import CrawlerMonitor


class SeedError(ValueError):
    """A crawl target that cannot be turned into a URL."""


@dataclass(frozen=True)
class CrawlResult:
    """Outcome of one fetch or redirect hop."""
    url: str
    status_code: int
    error: Optional[str] = None

    def __str__(self) -> str:
        if self.error:
            return f"{self.status_code} {self.url} {self.error}"
        return f"{self.status_code} {self.url}"


@dataclass
class CrawlStats:
    """Statistics for crawl operations."""
    start_time: float
    urls_fetched: int = 0
    results: int = 0
    errors: int = 0
    redirects: int = 0
    url_duplicates: int = 0
    content_duplicates: int = 0
    traps_skipped: int = 0
    robots_scheduled: int = 0
    seeds_rejected: int = 0

    @property
    def elapsed_time(self) -> float:
        return time.time() - self.start_time

    @property
    def pages_per_minute(self) -> float:
        elapsed_minutes = self.elapsed_time / 60
        return self.urls_fetched / elapsed_minutes if elapsed_minutes > 0 else 0


class CrawlerScheduler:
    """
    Main scheduler that coordinates all crawler components.

    Seeds are normalized and queued on the frontier, a fixed pool of workers
    fetches what the frontier dispatches, and every fetch or redirect hop is
    pushed onto an unbounded result queue. A run ends when the frontier has
    been idle for ``idle_timeout`` seconds.

    Typical use::

        scheduler = CrawlerScheduler(config)
        run = asyncio.create_task(scheduler.run('example.com'))
        async for result in scheduler.results():
            print(result)
        await run
    """

    def __init__(self, config: Optional[Config] = None,
                 history: Optional[URLHistory] = None,
                 fingerprints: Optional[FingerprintIndex] = None,
                 monitor: Optional[CrawlerMonitor] = None):
        self.config = config or Config.default()
        crawler_config = self.config.crawler
        self.logger = logging.getLogger(__name__)
        self.stats_logger = get_crawler_logger(__name__)

        # Components
        self.scope = Scope(crawler_config.include, crawler_config.exclude)
        self.history = history if history is not None else URLHistory()
        self.fingerprints = fingerprints if fingerprints is not None else FingerprintIndex(
            threshold=crawler_config.similarity_threshold
        )
        self.monitor = monitor or CrawlerMonitor()
        self.parser = ContentParser()
        self.resolver = URLResolver()
        self.fetcher = WebFetcher(
            user_agent=crawler_config.user_agent,
            request_timeout=crawler_config.timeout,
            response_header_timeout=crawler_config.response_header_timeout,
            max_concurrent_requests=crawler_config.concurrency,
            delay=crawler_config.delay,
            delay_jitter=crawler_config.delay_jitter,
            proxy=crawler_config.proxy,
            resolvers=crawler_config.resolvers,
            verify_tls=crawler_config.verify_tls
        )
        self.frontier: Optional[URLFrontier] = None

        # Crawl state
        self.stats = CrawlStats(start_time=time.time())
        self.is_running = False
        self.workers: List[asyncio.Task] = []
        self.max_redirects = crawler_config.max_redirects
        self._results: asyncio.Queue = asyncio.Queue()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def run(self, *targets: str) -> CrawlStats:
        """
        Crawl from the given targets until the frontier goes idle.

        Targets are host names or URLs. A target without a scheme is probed
        over https first, then http. With exactly one target the crawl uses
        a single worker.

        Returns:
            Statistics of the finished run
        """
        if self.is_running:
            raise RuntimeError("Crawler is already running")

        self.is_running = True
        self.stats = CrawlStats(start_time=time.time())
        crawler_config = self.config.crawler
        num_workers = 1 if len(targets) == 1 else crawler_config.concurrency

        self.frontier = URLFrontier(self.scope, self.history, crawler_config.idle_timeout)
        stats_task = None
        dispatcher = None

        try:
            await self.fetcher.start()

            seeded = await self.add_seed_urls(targets)
            if not seeded:
                self.logger.warning("No valid targets, nothing to crawl")
                self.frontier.close()
                return self.stats

            self.workers = [
                asyncio.create_task(self._worker(i))
                for i in range(num_workers)
            ]
            dispatcher = asyncio.create_task(self.frontier.run(num_workers))
            stats_task = asyncio.create_task(self._stats_reporter())

            self.logger.info(f"Started crawling with {num_workers} workers")
            await asyncio.gather(dispatcher, *self.workers)

            self._log_final_stats()
            return self.stats

        finally:
            background = [task for task in (stats_task, dispatcher) if task]
            for task in background:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*background, return_exceptions=True)
            await self._cleanup_workers()
            await self.fetcher.close()
            self.is_running = False
            self._results.put_nowait(None)

    async def results(self) -> AsyncIterator[CrawlResult]:
        """Yield results of the current run as they arrive, until it finishes."""
        while True:
            result = await self._results.get()
            if result is None:
                return
            yield result

    async def crawl(self, *targets: str) -> List[CrawlResult]:
        """Run a crawl and collect all of its results."""
        await self.run(*targets)
        return [result async for result in self.results()]

    async def normalize_seed(self, target: str) -> str:
        """
        Turn a crawl target into a canonical absolute URL.

        Raises:
            SeedError: if the target is empty, malformed or its host does not
                answer on https nor http
        """
        target = target.strip()
        if not target:
            raise SeedError("empty target")

        if not has_scheme(target):
            host = target.split('/', 1)[0]
            scheme = await self.fetcher.probe_scheme(host)
            if scheme is None:
                raise SeedError(f"{host} does not answer on https or http")
            target = f"{scheme}://{target}"

        try:
            url = normalize_url(target)
        except ValueError as e:
            raise SeedError(f"malformed target {target!r}: {e}") from e

        parts = urlsplit(url)
        if parts.scheme not in ('http', 'https') or not parts.hostname:
            raise SeedError(f"unsupported target {target!r}")

        return url

    async def add_seed_urls(self, targets) -> int:
        """Normalize targets, add their hosts to the scope and queue them."""
        added_count = 0
        for target in targets:
            try:
                url = await self.normalize_seed(target)
            except SeedError as e:
                self.stats.seeds_rejected += 1
                self.logger.warning(f"Skipping target {target!r}: {e}")
                continue

            self.scope.add_include(urlsplit(url).hostname)
            if self.frontier.add_url(url):
                added_count += 1

        self.logger.info(f"Added {added_count} seed URLs to frontier")
        return added_count

    async def _worker(self, worker_id: int):
        """
        Worker coroutine that processes URLs from the frontier.
        """
        logger = get_crawler_logger(__name__, worker=worker_id)
        logger.debug("Worker started")

        while True:
            url = await self.frontier.get_next_url()
            if url is None:
                break

            self.monitor.update_active_workers(self.frontier.in_flight)
            try:
                await self._process_url(url, logger)
            except Exception as e:
                logger.error(f"Error processing {url}: {e}", exc_info=True)
                self.stats.errors += 1
            finally:
                self.frontier.task_done()

        logger.debug("Worker finished")

    async def _process_url(self, url: str, logger: CrawlerLogAdapter):
        """Process a single dispatched URL."""
        parts = urlsplit(url)
        if not parts.hostname:
            return

        if is_trapped(parts.path):
            self.stats.traps_skipped += 1
            self.monitor.record_trap_skipped()
            logger.log_url_event(logging.DEBUG, url, "Skipping crawler trap")
            return

        if self.history.is_redundant(url):
            self.stats.url_duplicates += 1
            self.monitor.record_duplicate_skipped('url')
            return

        if parts.path in ('', '/') and self.history.claim_host(parts.netloc):
            self.frontier.add_url(f"{parts.scheme}://{parts.netloc}/robots.txt")
            self.stats.robots_scheduled += 1

        await self._follow(url, logger)

    async def _follow(self, url: str, logger: CrawlerLogAdapter):
        """Fetch a URL, following redirects up to max_redirects hops."""
        current = url

        for _ in range(self.max_redirects):
            if not self.history.claim(current):
                self.stats.url_duplicates += 1
                self.monitor.record_duplicate_skipped('url')
                return

            fetch_result = await self.fetcher.fetch(current)
            self.stats.urls_fetched += 1

            if fetch_result.error:
                self.stats.errors += 1
                self.monitor.record_error('transport')
                self._emit(CrawlResult(current, 0, fetch_result.error))
                return

            self.monitor.record_url_crawled(fetch_result.status_code, fetch_result.fetch_time)

            host = urlsplit(current).netloc
            if await self.fingerprints.is_near_duplicate(host, fetch_result.body):
                self.stats.content_duplicates += 1
                self.monitor.record_duplicate_skipped('content')
                logger.log_url_event(logging.DEBUG, current, "Skipping near-duplicate content")
                return

            self._emit(CrawlResult(current, fetch_result.status_code))

            if not fetch_result.is_redirect:
                self._queue_new_urls(current, fetch_result.body)
                return

            target = self._redirect_target(current, fetch_result.location, logger)
            if target is None:
                return

            self.stats.redirects += 1
            current = target

        logger.debug(f"Redirect limit of {self.max_redirects} reached, last hop: {current}")

    def _redirect_target(self, url: str, location: Optional[str],
                         logger: CrawlerLogAdapter) -> Optional[str]:
        """Canonical redirect target, or None if the chain should end."""
        if not location:
            logger.debug(f"Redirect without Location header: {url}")
            return None

        try:
            target = normalize_url(location)
        except ValueError as e:
            logger.debug(f"Malformed redirect target {location!r} from {url}: {e}")
            return None

        parts = urlsplit(target)
        if parts.scheme not in ('http', 'https') or not parts.hostname:
            logger.debug(f"Unsupported redirect target {target} from {url}")
            return None

        # hops may leave the scope; links found after them are filtered at dispatch
        logger.debug(f"Following redirect: {url} -> {target}")
        return target

    def _queue_new_urls(self, url: str, body: bytes):
        """Queue the URLs found in a response body."""
        added_count = 0
        for link in self.resolver.resolve(url, self.parser.parse(url, body)):
            if self.frontier.add_url(link):
                added_count += 1

        self.monitor.update_queue_size(self.frontier.get_stats()['queue_size'])
        if added_count:
            self.logger.debug(f"Queued {added_count} new URLs from {url}")

    def _emit(self, result: CrawlResult):
        self.stats.results += 1
        self._results.put_nowait(result)

    async def _stats_reporter(self):
        """Periodically log crawl statistics."""
        while True:
            await asyncio.sleep(30)
            self._log_current_stats()

    def _log_current_stats(self):
        """Log current crawl statistics."""
        frontier_stats = self.frontier.get_stats()
        self.monitor.update_queue_size(frontier_stats['queue_size'])
        self.stats_logger.log_crawler_stat('pages_per_minute', round(self.stats.pages_per_minute, 1))

        self.logger.info(
            f"Crawl Progress: "
            f"Fetched={self.stats.urls_fetched}, "
            f"Queued={frontier_stats['queue_size']}, "
            f"InFlight={frontier_stats['in_flight']}, "
            f"Errors={self.stats.errors}, "
            f"Duplicates={self.stats.url_duplicates + self.stats.content_duplicates}, "
            f"Rate={self.stats.pages_per_minute:.1f} pages/min"
        )

    def _log_final_stats(self):
        """Log final crawl statistics."""
        self.logger.info("=== CRAWL COMPLETED ===")
        self.logger.info(f"Total URLs fetched: {self.stats.urls_fetched}")
        self.logger.info(f"Results emitted: {self.stats.results}")
        self.logger.info(f"Redirects followed: {self.stats.redirects}")
        self.logger.info(f"Duplicate URLs skipped: {self.stats.url_duplicates}")
        self.logger.info(f"Near-duplicate pages skipped: {self.stats.content_duplicates}")
        self.logger.info(f"Traps skipped: {self.stats.traps_skipped}")
        self.logger.info(f"Errors: {self.stats.errors}")
        self.logger.info(f"Total time: {self.stats.elapsed_time:.2f} seconds")
        self.logger.info(f"Frontier stats: {self.frontier.get_stats()}")
        self.logger.info(f"Fetcher stats: {self.fetcher.get_stats()}")
        self.logger.info(f"URL history stats: {self.history.get_stats()}")
        self.logger.info(f"Fingerprint stats: {self.fingerprints.get_stats()}")

    async def _cleanup_workers(self):
        """Cancel and cleanup worker tasks."""
        if self.workers:
            for worker in self.workers:
                if not worker.done():
                    worker.cancel()

            await asyncio.gather(*self.workers, return_exceptions=True)
            self.workers.clear()

    async def close(self):
        """Close all connections and cleanup resources."""
        await self._cleanup_workers()
        await self.fetcher.close()
        self.logger.debug("Crawler scheduler closed")

    def get_stats(self) -> Dict:
        """Get current crawl statistics."""
        return {
            'urls_fetched': self.stats.urls_fetched,
            'results': self.stats.results,
            'errors': self.stats.errors,
            'redirects': self.stats.redirects,
            'url_duplicates': self.stats.url_duplicates,
            'content_duplicates': self.stats.content_duplicates,
            'traps_skipped': self.stats.traps_skipped,
            'robots_scheduled': self.stats.robots_scheduled,
            'elapsed_time': self.stats.elapsed_time,
            'pages_per_minute': self.stats.pages_per_minute,
            'is_running': self.is_running
        }
