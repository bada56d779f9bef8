"""
URL Frontier implementation for managing URLs to crawl.
Implements dispatch-time filtering and idle-timeout termination.
"""

import asyncio
import logging
from typing import Dict, Optional
from urllib.parse import urlsplit

from .resolver import normalize_url
from .scope import Scope
from ..storage.duplicate_detector import URLHistory


DEFAULT_IDLE_TIMEOUT = 7.0


class URLFrontier:
    """
    Shared queue of URLs waiting to be fetched.

    Producers add URLs without ever blocking. A single dispatch loop hands
    them to workers one at a time, dropping out-of-scope and already visited
    URLs at dispatch time, so the same URL may be queued many times but is
    only handed out while it is still unvisited. The loop ends once nothing
    has been dispatched for ``idle_timeout`` seconds and no worker is still
    busy with a URL.
    """

    def __init__(self, scope: Scope, history: URLHistory,
                 idle_timeout: float = DEFAULT_IDLE_TIMEOUT):
        self.scope = scope
        self.history = history
        self.idle_timeout = idle_timeout
        self.logger = logging.getLogger(__name__)

        self._intake: asyncio.Queue = asyncio.Queue()
        self._dispatch: asyncio.Queue = asyncio.Queue(maxsize=1)
        self._in_flight = 0
        self._last_activity = 0.0
        self._closed = False

        self.stats = {
            'total_queued': 0,
            'total_dispatched': 0,
            'out_of_scope': 0,
            'already_visited': 0,
        }

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def in_flight(self) -> int:
        """Number of dispatched URLs a worker has not finished yet."""
        return self._in_flight

    def add_url(self, url: str) -> bool:
        """
        Queue a URL for dispatch.
        Returns True if the URL was queued, False if it was malformed or the
        frontier is already closed.
        """
        if self._closed:
            return False

        try:
            url = normalize_url(url)
        except ValueError as e:
            self.logger.debug(f"Not queueing malformed URL {url}: {e}")
            return False

        self._intake.put_nowait(url)
        self.stats['total_queued'] += 1
        self.logger.debug(f"Added URL to frontier: {url}")
        return True

    def _is_admissible(self, url: str) -> bool:
        """Check scope and visited state right before dispatch."""
        if not self.scope.is_in_scope(urlsplit(url).hostname or ''):
            self.stats['out_of_scope'] += 1
            self.logger.debug(f"Out of scope: {url}")
            return False

        if self.history.is_visited(url):
            self.stats['already_visited'] += 1
            return False

        return True

    async def run(self, workers: int):
        """
        Dispatch queued URLs until the crawl goes idle.

        Once idle, one ``None`` is sent per worker so that every consumer of
        get_next_url() stops.

        Args:
            workers: Number of workers consuming from this frontier
        """
        loop = asyncio.get_running_loop()
        self._last_activity = loop.time()

        while True:
            remaining = self.idle_timeout - (loop.time() - self._last_activity)
            if remaining <= 0:
                if self._in_flight == 0:
                    break
                # a busy worker may still discover more URLs
                remaining = self.idle_timeout

            try:
                url = await asyncio.wait_for(self._intake.get(), timeout=remaining)
            except asyncio.TimeoutError:
                continue

            if not self._is_admissible(url):
                continue

            self._in_flight += 1
            await self._dispatch.put(url)
            self._last_activity = loop.time()
            self.stats['total_dispatched'] += 1

        self._closed = True
        self.logger.debug(f"No URL dispatched for {self.idle_timeout}s, closing frontier")

        for _ in range(workers):
            await self._dispatch.put(None)

    async def get_next_url(self) -> Optional[str]:
        """
        Wait for the next URL to crawl.
        Returns None once the frontier has closed.
        """
        return await self._dispatch.get()

    def task_done(self):
        """Report that a worker finished a dispatched URL."""
        self._in_flight -= 1
        self._last_activity = asyncio.get_running_loop().time()

    def close(self):
        """Stop accepting new URLs."""
        self._closed = True

    def is_empty(self) -> bool:
        """Check if no URL is waiting for dispatch."""
        return self._intake.empty()

    def get_stats(self) -> Dict[str, int]:
        """Get frontier statistics."""
        return {
            **self.stats,
            'queue_size': self._intake.qsize(),
            'in_flight': self._in_flight,
        }
